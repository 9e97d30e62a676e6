import asyncio
import datetime
import json

from callsight.database import utcnow
from callsight.services.categorization import Categorization
from callsight.services.persistence import PersistenceWriter, build_record

from conftest import make_call, make_transcript


def test_build_record_serialises_structured_fields():
    call = make_call("c1")
    values = build_record(call, make_transcript(), Categorization("Other", ["Other", "No Lead - Call Refused"], 0.6))

    assert values["contact_id"] == "c1"
    assert json.loads(values["call_duration"]) == {"minutes": 3, "seconds": 5}
    speakers = json.loads(values["speaker_data"])
    assert speakers[0] == {"speaker": "A", "role": "Agent", "text": "Hello, this is Sam calling.",
                           "start": 0, "end": 1500, "confidence": 0.93}
    assert json.loads(values["categories"]) == ["Other", "No Lead - Call Refused"]
    assert values["primary_category"] == "Other"
    assert values["campaign_id"] == "42"
    assert values["satisfaction_score"] is None


def test_upsert_inserts_then_updates_one_row(record_store):
    writer = PersistenceWriter(record_store)
    call = make_call("c1")

    async def scenario():
        first = await writer.write(call, make_transcript("first"), Categorization("Other", ["Other"]))
        second = await writer.write(call, make_transcript("second"), Categorization("Other", ["Other"]))
        return first, second, await record_store.count(), await record_store.get("c1")

    first, second, count, record = asyncio.run(scenario())

    assert (first, second) == ("insert", "update")
    assert count == 1
    assert record.transcript_text == "second"
    assert record.updated_at >= record.created_at


def test_upsert_stamps_records_in_utc(record_store):
    asyncio.run(PersistenceWriter(record_store).write(make_call("c1"), make_transcript(), Categorization("Other", ["Other"])))
    record = asyncio.run(record_store.get("c1"))

    now = utcnow()
    assert now.tzinfo is datetime.timezone.utc
    assert abs((now.replace(tzinfo=None) - record.created_at.replace(tzinfo=None)).total_seconds()) < 60


def test_concurrent_upserts_leave_a_single_record(record_store):
    writer = PersistenceWriter(record_store)
    call = make_call("c1")

    async def scenario():
        await asyncio.gather(*[
            writer.write(call, make_transcript(f"take {i}"), Categorization("Other", ["Other"])) for i in range(4)
        ])
        return await record_store.count()

    assert asyncio.run(scenario()) == 1


def test_existing_ids_batches_large_lookups(record_store):
    writer = PersistenceWriter(record_store)

    async def scenario():
        for cid in ("c5", "c150", "c249"):
            await writer.write(make_call(cid), make_transcript(), Categorization("Other", ["Other"]))
        found = await record_store.existing_ids(f"c{i}" for i in range(250))
        many = await record_store.get_many(["c5", "c150", "missing"])
        return found, many, await record_store.exists("c150"), await record_store.exists("c151")

    found, many, exists_hit, exists_miss = asyncio.run(scenario())

    assert found == {"c5", "c150", "c249"}
    assert sorted(r.contact_id for r in many) == ["c150", "c5"]
    assert exists_hit and not exists_miss
