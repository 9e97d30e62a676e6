import asyncio
import datetime

import pytest
from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, insert
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from callsight.database import make_sessionmaker
from callsight.services.call_logs import CallLogRecord, CallLogSource, DateRange, to_seconds

metadata = MetaData()
contact_log = Table(
    "contact_log",
    metadata,
    Column("contact_id", String, primary_key=True),
    Column("recording_location", String),
    Column("agent_username", String),
    Column("initiation_timestamp", DateTime(timezone=True)),
    Column("queue_name", String),
    Column("disposition_title", String),
    Column("campaign_name", String),
    Column("campaign_id", Integer),
    Column("customer_cli", String),
    Column("total_call_time", Integer),
    Column("agent_hold_time", Integer),
    Column("total_hold_time", Integer),
    Column("time_in_queue", Integer),
)


def at(day, hour):
    return datetime.datetime(2025, 6, day, hour, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture
def source(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'calls.db'}", poolclass=NullPool)
    rows = [
        {"contact_id": "early", "agent_username": "amy", "disposition_title": "Interested", "initiation_timestamp": at(2, 9)},
        {"contact_id": "late", "agent_username": "amy", "disposition_title": "Callback", "initiation_timestamp": at(3, 17)},
        {"contact_id": "engaged", "agent_username": "amy", "disposition_title": "Engaged", "initiation_timestamp": at(3, 10)},
        {"contact_id": "no-agent", "agent_username": None, "disposition_title": "Interested", "initiation_timestamp": at(3, 11)},
        {"contact_id": "outside", "agent_username": "amy", "disposition_title": "Interested", "initiation_timestamp": at(5, 9)},
    ]
    for row in rows:
        row.update(recording_location=f"{row['contact_id']}.wav", campaign_id=7, total_call_time=95)

    async def setup():
        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
            await conn.execute(insert(contact_log), rows)

    asyncio.run(setup())
    return CallLogSource(make_sessionmaker(engine), table="contact_log")


def test_fetch_filters_dispositions_and_orders_newest_first(source):
    calls = asyncio.run(source.fetch(DateRange.parse("2025-06-01", "2025-06-03")))

    assert [c.contact_id for c in calls] == ["late", "early"]
    assert calls[0].campaign_id == "7"
    assert calls[0].call_duration == {"minutes": 1, "seconds": 35}


def test_fetch_by_ids(source):
    calls = asyncio.run(source.fetch_by_ids(["outside", "early", "ghost"]))
    assert [c.contact_id for c in calls] == ["outside", "early"]


def test_table_name_is_validated():
    with pytest.raises(ValueError):
        CallLogSource(make_sessionmaker(create_async_engine("sqlite+aiosqlite://")), table="x; drop table y")


def test_date_range_parsing():
    rng = DateRange.parse(None, None, fallback_days=7, today=datetime.date(2025, 6, 10))
    assert (rng.start, rng.end) == (datetime.date(2025, 6, 3), datetime.date(2025, 6, 10))
    start, end = DateRange.parse("2025-06-01T00:00:00Z", "2025-06-01").bounds()
    assert end - start == datetime.timedelta(days=1)
    with pytest.raises(ValueError):
        DateRange.parse("2025-06-05", "2025-06-01")
    with pytest.raises(ValueError):
        DateRange.parse("June 1st", None)


def test_interval_normalisation():
    assert to_seconds(datetime.timedelta(minutes=2, seconds=3)) == 123
    assert to_seconds({"minutes": 2, "seconds": 3}) == 123
    assert to_seconds("02:03") == 123
    assert to_seconds("01:00:01") == 3601
    assert to_seconds(None) is None
    assert to_seconds("n/a") is None


def test_record_from_row_accepts_iso_timestamp():
    record = CallLogRecord.from_row({"contact_id": 12, "initiation_timestamp": "2025-06-03T12:00:00Z",
                                     "recording_location": "a.wav"})
    assert record.contact_id == "12"
    assert record.initiation_timestamp.tzinfo is not None
    assert record.is_transcribable
