import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol

from callsight.services.call_logs import CallLogRecord, DateRange
from callsight.services.categorization import Categorizer
from callsight.services.discovery import Discovery, MissingWorkDiscoverer
from callsight.services.persistence import PersistenceWriter
from callsight.services.processing_lock import ProcessingLock
from callsight.services.transcription import TranscriptionService

logger = logging.getLogger(__name__)


@dataclass
class CallFailure:
    contact_id: str
    recording_location: Optional[str]
    error: str

    def to_dict(self) -> dict:
        return {"contact_id": self.contact_id, "recording_location": self.recording_location, "error": self.error}


@dataclass
class BatchSummary:
    attempted: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    cycles: int = 0
    cancelled: bool = False
    processed_ids: List[str] = field(default_factory=list)
    errors: List[CallFailure] = field(default_factory=list)

    def merge(self, other: "BatchSummary"):
        self.attempted += other.attempted
        self.succeeded += other.succeeded
        self.skipped += other.skipped
        self.failed += other.failed
        self.cancelled = self.cancelled or other.cancelled
        self.processed_ids.extend(other.processed_ids)
        self.errors.extend(other.errors)

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "processed": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "cycles": self.cycles,
            "cancelled": self.cancelled,
            "processed_ids": list(self.processed_ids),
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class RunResult:
    summary: BatchSummary
    discovery: Optional[Discovery] = None


class CallProcessor(Protocol):
    async def process(self, call: CallLogRecord) -> str: ...


class PipelineCallProcessor:
    """Runs transcription, categorisation and persistence for one call, in that order."""

    def __init__(self, transcriber: TranscriptionService, categorizer: Categorizer, writer: PersistenceWriter):
        self.transcriber = transcriber
        self.categorizer = categorizer
        self.writer = writer

    async def process(self, call: CallLogRecord) -> str:
        logger.info(f"[{call.contact_id}] Transcribing {call.recording_location}")
        transcript = await self.transcriber.transcribe(call.contact_id, call.recording_location or "")
        categorization = await self.categorizer.categorize(call.contact_id, transcript.utterances)
        return await self.writer.write(call, transcript, categorization)


class ExistenceCheck(Protocol):
    async def exists(self, contact_id: str) -> bool: ...


ProgressCallback = Callable[[BatchSummary, int], None]


class BatchOrchestrator:
    """
    Drives calls through the pipeline in small sequential batches.

    One call's failure is recorded and never stops the batch. Each call is
    re-checked against the store and claimed in the processing lock right
    before work starts, and released in `finally`.
    """

    def __init__(
        self,
        processor: CallProcessor,
        store: ExistenceCheck,
        lock: ProcessingLock,
        discoverer: Optional[MissingWorkDiscoverer] = None,
        batch_size: int = 3,
        batch_delay: float = 5,
        max_cycles: int = 10,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.processor = processor
        self.store = store
        self.lock = lock
        self.discoverer = discoverer
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.max_cycles = max_cycles
        self.sleep = sleep

    def _record_failure(self, call: CallLogRecord, summary: BatchSummary, error: Exception):
        summary.failed += 1
        summary.errors.append(CallFailure(call.contact_id, call.recording_location, str(error) or type(error).__name__))
        logger.error(f"❌ [{call.contact_id}] Processing failed: {error}", exc_info=True)

    async def process_call(self, call: CallLogRecord, summary: BatchSummary):
        contact_id = call.contact_id
        try:
            already_done = await self.store.exists(contact_id)
        except Exception as e:
            summary.attempted += 1
            self._record_failure(call, summary, e)
            return
        if already_done:
            logger.info(f"[{contact_id}] Already transcribed, skipping.")
            summary.skipped += 1
            return
        if not self.lock.try_acquire(contact_id):
            logger.info(f"[{contact_id}] In flight or out of attempts, skipping.")
            summary.skipped += 1
            return

        summary.attempted += 1
        success = False
        try:
            await self.processor.process(call)
            success = True
            summary.succeeded += 1
            summary.processed_ids.append(contact_id)
            logger.info(f"✅ [{contact_id}] Processed.")
        except Exception as e:
            self._record_failure(call, summary, e)
        finally:
            self.lock.release(contact_id, success)

    async def process_calls(
        self,
        calls: Iterable[CallLogRecord],
        should_continue: Optional[Callable[[], bool]] = None,
        on_progress: Optional[ProgressCallback] = None,
        delay_first: bool = False,
    ) -> BatchSummary:
        calls = list(calls)
        summary = BatchSummary()
        batches = [calls[i:i + self.batch_size] for i in range(0, len(calls), self.batch_size)]
        for index, batch in enumerate(batches):
            if should_continue is not None and not should_continue():
                logger.info("Processing cancelled before batch %d/%d", index + 1, len(batches))
                summary.cancelled = True
                break
            if index > 0 or delay_first:
                await self.sleep(self.batch_delay)
            logger.info(f"Batch {index + 1}/{len(batches)}: {[c.contact_id for c in batch]}")
            for call in batch:
                await self.process_call(call, summary)
            if on_progress is not None:
                on_progress(summary, len(calls))
        return summary

    async def run_calls(self, calls: Iterable[CallLogRecord], **kwargs) -> BatchSummary:
        """Processes an explicit list of calls as one top-level run."""
        self.lock.begin_run()
        try:
            return await self.process_calls(calls, **kwargs)
        finally:
            self.lock.end_run()

    async def run(
        self,
        date_range: DateRange,
        exclude_ids: Iterable[str] = (),
        max_process_count: Optional[int] = None,
        should_continue: Optional[Callable[[], bool]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RunResult:
        """
        Repeats discover-then-process until nothing is left, the cycle budget or
        `max_process_count` is spent, or `should_continue` returns False.
        Failed calls are retried on later cycles until they hit the attempt ceiling.
        """
        if self.discoverer is None:
            raise RuntimeError("BatchOrchestrator.run needs a discoverer")
        exclude_ids = list(exclude_ids)
        total = BatchSummary()
        first_discovery: Optional[Discovery] = None
        self.lock.begin_run()
        try:
            for cycle in range(1, self.max_cycles + 1):
                remaining = None if max_process_count is None else max_process_count - total.attempted
                if remaining is not None and remaining <= 0:
                    break
                discovery = await self.discoverer.discover(date_range, exclude_ids=exclude_ids, limit=remaining)
                if first_discovery is None:
                    first_discovery = discovery
                if not discovery.missing:
                    break
                logger.info(f"Cycle {cycle}: {len(discovery.missing)} calls to process")
                total.cycles = cycle
                cycle_summary = await self.process_calls(
                    discovery.missing,
                    should_continue=should_continue,
                    on_progress=on_progress,
                    delay_first=cycle > 1,
                )
                total.merge(cycle_summary)
                if cycle_summary.cancelled or cycle_summary.attempted == 0:
                    break
        finally:
            self.lock.end_run()
        logger.info(
            f"Run finished: {total.succeeded} processed, {total.failed} failed, "
            f"{total.skipped} skipped over {total.cycles} cycles"
        )
        return RunResult(summary=total, discovery=first_discovery)
