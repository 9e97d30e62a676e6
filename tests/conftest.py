import asyncio
import datetime
import struct
from typing import Dict, Iterable, List, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from callsight.database import create_db_and_tables, make_sessionmaker
from callsight.errors import RemoteTransportError
from callsight.services.call_logs import CallLogRecord
from callsight.services.categorization import Categorization
from callsight.services.persistence import build_record
from callsight.services.record_store import TranscriptionRecordStore
from callsight.services.sftp_store import RemoteStat
from callsight.services.transcription import Transcript, Utterance


def wav_bytes(size: int = 20_000) -> bytes:
    header = b"RIFF" + struct.pack("<I", size - 8) + b"WAVE" + b"fmt "
    return header + b"\x00" * (size - len(header))


def make_call(contact_id: str, location: Optional[str] = "2025/06/03/{id}.wav", minutes_ago: int = 0,
              agent: str = "agent.smith") -> CallLogRecord:
    return CallLogRecord(
        contact_id=contact_id,
        recording_location=location.format(id=contact_id) if location else location,
        agent_username=agent,
        initiation_timestamp=datetime.datetime(2025, 6, 3, 12, 0, tzinfo=datetime.timezone.utc)
        - datetime.timedelta(minutes=minutes_ago),
        queue_name="Outbound",
        disposition_title="Interested",
        campaign_name="Spring",
        campaign_id="42",
        customer_cli="+441234567890",
        total_call_seconds=185,
    )


def make_transcript(text: str = "Hello, this is Sam calling.") -> Transcript:
    return Transcript(
        job_id="job-1",
        text=text,
        utterances=[
            Utterance(speaker="A", role="Agent", text=text, start=0, end=1500, confidence=0.93),
            Utterance(speaker="B", role="Customer", text="Not interested, thanks.", start=1600, end=2900, confidence=0.9),
        ],
        sentiment=[{"text": text, "sentiment": "POSITIVE", "confidence": 0.8, "speaker": "A"}],
        entities=[{"entity_type": "person_name", "text": "Sam"}],
        summary="Agent introduced the service; customer declined.",
    )


class FakeCallLogSource:
    def __init__(self, calls: Iterable[CallLogRecord]):
        self.calls = list(calls)
        self.fetches = 0

    async def fetch(self, date_range, limit=None) -> List[CallLogRecord]:
        self.fetches += 1
        ordered = sorted(self.calls, key=lambda c: c.initiation_timestamp, reverse=True)
        return ordered[:limit] if limit else ordered

    async def fetch_by_ids(self, contact_ids) -> List[CallLogRecord]:
        wanted = set(contact_ids)
        return [c for c in self.calls if c.contact_id in wanted]


class FakeFileStore:
    """In-memory stand-in for the SFTP store."""

    def __init__(self, files: Optional[Dict[str, bytes]] = None, hang_stat: Iterable[str] = (),
                 fail_stat: Iterable[str] = (), reported_sizes: Optional[Dict[str, int]] = None,
                 read_delay: float = 0.0):
        self.files = dict(files or {})
        self.hang_stat = set(hang_stat)
        self.fail_stat = set(fail_stat)
        self.reported_sizes = dict(reported_sizes or {})
        self.read_delay = read_delay
        self.stat_calls: List[str] = []
        self.reads: List[str] = []
        self.aborted = 0

    async def stat(self, path: str) -> RemoteStat:
        self.stat_calls.append(path)
        if path in self.hang_stat:
            await asyncio.sleep(5)
        if path in self.fail_stat:
            raise RemoteTransportError(f"connection reset while stating {path}")
        if path not in self.files:
            return RemoteStat(path=path, size=0, exists=False)
        return RemoteStat(path=path, size=self.reported_sizes.get(path, len(self.files[path])), exists=True)

    async def read_chunks(self, path: str, chunk_size: int = 4096):
        self.reads.append(path)
        data = self.files[path]
        for i in range(0, len(data), chunk_size):
            if self.read_delay:
                await asyncio.sleep(self.read_delay)
            yield data[i:i + chunk_size]

    async def abort(self):
        self.aborted += 1


class RecordingProcessor:
    """Call processor that persists a canned transcript, optionally failing for some calls."""

    def __init__(self, store: TranscriptionRecordStore, fail_ids: Iterable[str] = (), delay: float = 0.0):
        self.store = store
        self.fail_ids = set(fail_ids)
        self.delay = delay
        self.calls: List[str] = []

    async def process(self, call: CallLogRecord) -> str:
        self.calls.append(call.contact_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if call.contact_id in self.fail_ids:
            raise RemoteTransportError(f"SFTP read failed for {call.recording_location}")
        categorization = Categorization(primary="Other", categories=["Other"], confidence=0.5)
        return await self.store.upsert(build_record(call, make_transcript(), categorization))


class FakeChatModel:
    """Stands in for the chat model; records every conversation it is sent."""

    def __init__(self, reply: Optional[str] = "Two calls were refused."):
        self.reply = reply
        self.conversations: List[list] = []
        self.options: List[dict] = []

    async def __call__(self, messages, **kwargs) -> Optional[str]:
        self.conversations.append(messages)
        self.options.append(kwargs)
        return self.reply


async def no_sleep(seconds: float):
    return None


@pytest.fixture
def record_store(tmp_path) -> TranscriptionRecordStore:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'records.db'}", poolclass=NullPool)
    asyncio.run(create_db_and_tables(engine))
    return TranscriptionRecordStore(make_sessionmaker(engine))
