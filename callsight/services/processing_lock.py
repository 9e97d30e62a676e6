"""
Process-local bookkeeping of which calls are being worked on right now and how
often each has failed.

Every mutation is synchronous, so a check-and-claim can never be interleaved
with another coroutine on the same event loop. State lives only in this
process: a second replica would not see it, and a restart forgets it.
"""
import logging
from typing import Dict, Set

from callsight.config import settings

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


class ProcessingLock:
    def __init__(self, max_attempts: int = MAX_ATTEMPTS):
        self.max_attempts = max_attempts
        self._in_flight: Set[str] = set()
        self._attempts: Dict[str, int] = {}
        self._active_runs = 0

    def try_acquire(self, contact_id: str) -> bool:
        """Claims a call. False if it is already in flight or has used up its attempts."""
        if contact_id in self._in_flight or self.is_exhausted(contact_id):
            return False
        self._in_flight.add(contact_id)
        return True

    def release(self, contact_id: str, success: bool):
        self._in_flight.discard(contact_id)
        if success:
            self._attempts.pop(contact_id, None)
        else:
            self._attempts[contact_id] = self._attempts.get(contact_id, 0) + 1
            logger.info(f"[{contact_id}] Failed attempt {self._attempts[contact_id]}/{self.max_attempts}")

    def is_in_flight(self, contact_id: str) -> bool:
        return contact_id in self._in_flight

    def attempts(self, contact_id: str) -> int:
        return self._attempts.get(contact_id, 0)

    def is_exhausted(self, contact_id: str) -> bool:
        return self._attempts.get(contact_id, 0) >= self.max_attempts

    def is_blocked(self, contact_id: str) -> bool:
        return self.is_in_flight(contact_id) or self.is_exhausted(contact_id)

    def begin_run(self):
        self._active_runs += 1

    def end_run(self):
        """Ends a top-level run; the last one to finish wipes all state."""
        self._active_runs = max(0, self._active_runs - 1)
        if self._active_runs == 0:
            self.clear()

    def clear(self):
        if self._in_flight or self._attempts:
            logger.info(
                f"Clearing processing state ({len(self._in_flight)} in flight, {len(self._attempts)} with failures)"
            )
        self._in_flight.clear()
        self._attempts.clear()

    def snapshot(self) -> dict:
        return {
            "in_flight": sorted(self._in_flight),
            "attempts": dict(self._attempts),
            "active_runs": self._active_runs,
        }


_processing_lock_instance = None

def get_processing_lock() -> ProcessingLock:
    global _processing_lock_instance
    if _processing_lock_instance is None:
        _processing_lock_instance = ProcessingLock(max_attempts=settings.MAX_ATTEMPTS)
    return _processing_lock_instance
