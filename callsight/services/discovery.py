import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Sequence, Set

from callsight.services.call_logs import CallLogRecord, DateRange
from callsight.services.processing_lock import ProcessingLock

logger = logging.getLogger(__name__)


class CallLogReader(Protocol):
    async def fetch(self, date_range: DateRange, limit: Optional[int] = None) -> List[CallLogRecord]: ...
    async def fetch_by_ids(self, contact_ids: Sequence[str]) -> List[CallLogRecord]: ...


class ExistenceIndex(Protocol):
    async def existing_ids(self, contact_ids: Iterable[str]) -> Set[str]: ...


@dataclass
class Discovery:
    """
    Snapshot of one discovery pass.

    Attributes:
        calls: Every call log returned for the range, most recent first.
        persisted_ids: Ids among `calls` that already have a record.
        missing: Calls still needing work, in the same order as `calls`.
    """
    calls: List[CallLogRecord] = field(default_factory=list)
    persisted_ids: Set[str] = field(default_factory=set)
    missing: List[CallLogRecord] = field(default_factory=list)

    @property
    def transcribable_count(self) -> int:
        return sum(1 for c in self.calls if c.is_transcribable)


class MissingWorkDiscoverer:
    def __init__(self, call_logs: CallLogReader, store: ExistenceIndex, lock: ProcessingLock):
        self.call_logs = call_logs
        self.store = store
        self.lock = lock

    async def discover(
        self,
        date_range: DateRange,
        exclude_ids: Iterable[str] = (),
        limit: Optional[int] = None,
    ) -> Discovery:
        calls = await self.call_logs.fetch(date_range)
        return await self.filter(calls, exclude_ids=exclude_ids, limit=limit)

    async def filter(
        self,
        calls: List[CallLogRecord],
        exclude_ids: Iterable[str] = (),
        limit: Optional[int] = None,
    ) -> Discovery:
        """Narrows `calls` to those with a usable recording, no record, not excluded, locked or exhausted."""
        excluded = set(exclude_ids)
        usable = [c for c in calls if c.is_transcribable]
        persisted = await self.store.existing_ids(c.contact_id for c in usable)

        missing = [
            c for c in usable
            if c.contact_id not in persisted
            and c.contact_id not in excluded
            and not self.lock.is_blocked(c.contact_id)
        ]
        if limit is not None and limit >= 0:
            missing = missing[:limit]

        logger.info(
            f"Discovery: {len(calls)} calls, {len(usable)} with recordings, "
            f"{len(persisted)} already transcribed, {len(missing)} to process"
        )
        return Discovery(calls=calls, persisted_ids=persisted, missing=missing)

    def annotate(self, discovery: Discovery) -> List[dict]:
        """Call logs as dicts, each flagged with its transcription and lock status."""
        rows = []
        for call in discovery.calls:
            row = call.to_dict()
            row["has_transcription"] = call.contact_id in discovery.persisted_ids
            row["transcribable"] = call.is_transcribable
            row["in_flight"] = self.lock.is_in_flight(call.contact_id)
            row["failed_attempts"] = self.lock.attempts(call.contact_id)
            rows.append(row)
        return rows
