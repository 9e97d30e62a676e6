import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Protocol, Tuple, TypeVar

from callsight.errors import RecordingNotFoundError, RemoteTransportError, TransportTimeoutError
from callsight.services.path_resolver import PathResolver
from callsight.services.sftp_store import RemoteStat

logger = logging.getLogger(__name__)

MB = 1024 * 1024

T = TypeVar("T")


class RemoteFileStore(Protocol):
    async def stat(self, path: str) -> RemoteStat: ...
    def read_chunks(self, path: str) -> AsyncIterator[bytes]: ...
    async def abort(self) -> None: ...


@dataclass
class FetchedAudio:
    path: str
    data: bytes
    elapsed_seconds: float

    @property
    def size(self) -> int:
        return len(self.data)


class AudioFetcher:
    """
    Walks the resolver's candidate paths until one yields a complete recording.

    A candidate is rejected (and the next one tried) when it is missing, empty,
    implausibly small, times out, or when fewer bytes arrive than stat reported.
    """

    def __init__(
        self,
        store: RemoteFileStore,
        resolver: PathResolver,
        stat_timeout: float = 10,
        download_base_timeout: float = 30,
        download_seconds_per_mb: float = 10,
        download_max_timeout: float = 600,
        min_bytes: int = 10_000,
    ):
        self.store = store
        self.resolver = resolver
        self.stat_timeout = stat_timeout
        self.download_base_timeout = download_base_timeout
        self.download_seconds_per_mb = download_seconds_per_mb
        self.download_max_timeout = download_max_timeout
        self.min_bytes = min_bytes

    def download_timeout(self, size: int) -> float:
        scaled = self.download_base_timeout + self.download_seconds_per_mb * (size / MB)
        return min(self.download_max_timeout, scaled)

    async def locate(self, recording_location: str) -> RemoteStat:
        """Returns the first candidate that exists with a plausible size, without downloading it."""
        return await self._walk(recording_location, self._checked_stat)

    async def fetch(self, recording_location: str) -> FetchedAudio:
        async def stat_then_download(path: str) -> FetchedAudio:
            return await self._download(await self._checked_stat(path))

        return await self._walk(recording_location, stat_then_download)

    async def _walk(self, recording_location: str, action: Callable[[str], Awaitable[T]]) -> T:
        """
        Applies `action` to each candidate path in turn and returns the first
        result. When every candidate fails, a transport error on the last one
        is re-raised as is; otherwise the recording counts as not found.
        """
        attempts: List[Tuple[str, str]] = []
        last_error: Optional[Exception] = None
        for path in self.resolver.resolve(recording_location):
            try:
                return await action(path)
            except _CandidateRejected as e:
                logger.info(f"Candidate {path} rejected: {e}")
                attempts.append((path, str(e)))
                last_error = None
            except (RemoteTransportError, TransportTimeoutError) as e:
                logger.warning(f"Candidate {path} failed: {e}")
                attempts.append((path, str(e)))
                last_error = e

        if last_error is not None:
            raise last_error
        raise RecordingNotFoundError(recording_location, attempts)

    async def _checked_stat(self, path: str) -> RemoteStat:
        try:
            stat = await asyncio.wait_for(self.store.stat(path), timeout=self.stat_timeout)
        except asyncio.TimeoutError:
            raise TransportTimeoutError(f"stat timed out after {self.stat_timeout}s for {path}")
        if not stat.exists:
            raise _CandidateRejected("not found")
        if stat.size == 0:
            raise _CandidateRejected("empty file")
        if stat.size < self.min_bytes:
            raise _CandidateRejected(f"too small for a call recording ({stat.size} bytes)")
        return stat

    async def _download(self, stat: RemoteStat) -> FetchedAudio:
        timeout = self.download_timeout(stat.size)
        logger.info(f"⬇️ Downloading {stat.path} ({stat.size / MB:.2f} MB, timeout {timeout:.0f}s)")
        started = time.monotonic()
        try:
            data = await asyncio.wait_for(self._read_all(stat.path), timeout=timeout)
        except asyncio.TimeoutError:
            await self.store.abort()
            raise TransportTimeoutError(f"download timed out after {timeout:.0f}s for {stat.path}")

        if len(data) != stat.size:
            raise _CandidateRejected(f"Size mismatch: expected {stat.size}, got {len(data)}")
        elapsed = time.monotonic() - started
        logger.info(f"✅ Downloaded {stat.path} in {elapsed:.1f}s")
        return FetchedAudio(path=stat.path, data=data, elapsed_seconds=elapsed)

    async def _read_all(self, path: str) -> bytes:
        chunks: List[bytes] = []
        received = 0
        next_report = MB
        async for chunk in self.store.read_chunks(path):
            chunks.append(chunk)
            received += len(chunk)
            if received >= next_report:
                logger.debug(f"{path}: {received / MB:.1f} MB received")
                next_report += MB
        return b"".join(chunks)


class _CandidateRejected(Exception):
    """A candidate path exists in name only: missing, empty, too small or truncated."""
