import asyncio
import errno
import logging
import threading
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import paramiko

from callsight.config import settings
from callsight.errors import RemoteTransportError

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 256 * 1024


@dataclass
class RemoteStat:
    path: str
    size: int
    exists: bool


class SftpFileStore:
    """
    Read-only access to the recording server over SFTP.

    paramiko is blocking, so every call is pushed to a worker thread. The SSH
    connection is opened lazily, kept alive, and torn down by `abort()` when a
    caller gives up on a slow transfer; the next call reconnects.
    """

    def __init__(
        self,
        host: str,
        username: str,
        port: int = 22,
        key_path: Optional[str] = None,
        passphrase: Optional[str] = None,
        password: Optional[str] = None,
        keepalive_seconds: int = 30,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.key_path = key_path
        self.passphrase = passphrase or None
        self.password = password or None
        self.keepalive_seconds = keepalive_seconds
        self._ssh: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None
        self._lock = threading.Lock()

    def _connect(self) -> paramiko.SFTPClient:
        with self._lock:
            if self._sftp is not None:
                return self._sftp
            logger.info(f"Connecting to SFTP {self.username}@{self.host}:{self.port}")
            ssh = paramiko.SSHClient()
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            try:
                ssh.connect(
                    hostname=self.host,
                    port=self.port,
                    username=self.username,
                    key_filename=self.key_path if self.key_path and not self.password else None,
                    passphrase=self.passphrase,
                    password=self.password,
                    timeout=30,
                    banner_timeout=30,
                    auth_timeout=30,
                )
                transport = ssh.get_transport()
                if transport is not None:
                    transport.set_keepalive(self.keepalive_seconds)
                self._sftp = ssh.open_sftp()
            except (paramiko.SSHException, OSError) as e:
                ssh.close()
                raise RemoteTransportError(f"SFTP connection to {self.host} failed: {e}") from e
            self._ssh = ssh
            logger.info("✅ SFTP connection established.")
            return self._sftp

    def _stat_sync(self, path: str) -> RemoteStat:
        sftp = self._connect()
        try:
            attrs = sftp.stat(path)
        except FileNotFoundError:
            return RemoteStat(path=path, size=0, exists=False)
        except IOError as e:
            if getattr(e, "errno", None) == errno.ENOENT:
                return RemoteStat(path=path, size=0, exists=False)
            raise RemoteTransportError(f"SFTP stat failed for {path}: {e}") from e
        except paramiko.SSHException as e:
            raise RemoteTransportError(f"SFTP stat failed for {path}: {e}") from e
        return RemoteStat(path=path, size=int(attrs.st_size or 0), exists=True)

    async def stat(self, path: str) -> RemoteStat:
        return await asyncio.to_thread(self._stat_sync, path)

    async def read_chunks(self, path: str, chunk_size: int = READ_CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Yields the file's bytes in chunks; the remote handle is closed when iteration stops."""
        sftp = await asyncio.to_thread(self._connect)
        try:
            handle = await asyncio.to_thread(sftp.open, path, "rb")
        except (IOError, paramiko.SSHException) as e:
            raise RemoteTransportError(f"SFTP open failed for {path}: {e}") from e
        try:
            handle.prefetch()
            while True:
                try:
                    chunk = await asyncio.to_thread(handle.read, chunk_size)
                except (IOError, paramiko.SSHException) as e:
                    raise RemoteTransportError(f"SFTP read failed for {path}: {e}") from e
                if not chunk:
                    break
                yield chunk
        finally:
            await asyncio.to_thread(handle.close)

    def _close_sync(self):
        with self._lock:
            sftp, ssh = self._sftp, self._ssh
            self._sftp = None
            self._ssh = None
        if sftp is not None:
            sftp.close()
        if ssh is not None:
            ssh.close()

    async def abort(self):
        """Drops the SSH session so an in-flight transfer stops holding the connection."""
        logger.warning(f"Aborting SFTP session to {self.host}")
        await asyncio.to_thread(self._close_sync)

    async def close(self):
        await asyncio.to_thread(self._close_sync)


_sftp_store_instance = None

def get_sftp_store() -> SftpFileStore:
    """
    Returns a singleton SftpFileStore initialized from settings.
    """
    global _sftp_store_instance
    if _sftp_store_instance is None:
        settings.require("SFTP_HOST", "SFTP_USERNAME")
        _sftp_store_instance = SftpFileStore(
            host=settings.SFTP_HOST,
            port=settings.SFTP_PORT,
            username=settings.SFTP_USERNAME,
            key_path=settings.SFTP_KEY_PATH,
            passphrase=settings.SFTP_PASSPHRASE,
            password=settings.SFTP_PASSWORD,
            keepalive_seconds=settings.SFTP_KEEPALIVE_SECONDS,
        )
    return _sftp_store_instance
