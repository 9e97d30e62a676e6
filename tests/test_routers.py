import asyncio
import types

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from callsight.api import router as api_router
from callsight.config import settings
from callsight.dependencies import get_pipeline_dependency
from callsight.services import task_manager
from callsight.services.audio_fetcher import AudioFetcher
from callsight.services.categorization import Categorization
from callsight.services.discovery import MissingWorkDiscoverer
from callsight.services.media_links import MediaLinkSigner
from callsight.services.orchestrator import BatchOrchestrator
from callsight.services.path_resolver import PathResolver
from callsight.services.persistence import build_record
from callsight.services.processing_lock import ProcessingLock
from callsight.services.query_agent import CallQueryAgent

from conftest import FakeCallLogSource, FakeChatModel, FakeFileStore, RecordingProcessor, make_call, make_transcript, no_sleep, wav_bytes

API_KEY = "test-key"
HEADERS = {"X-API-Key": API_KEY}
RECORDING = "./2025/06/03/c1.wav"


@pytest.fixture
def pipeline(record_store):
    calls = [make_call(f"c{i}", location="./2025/06/03/{id}.wav", minutes_ago=i) for i in range(1, 5)]
    calls.append(make_call("bad", location="notes.txt", minutes_ago=9))
    lock = ProcessingLock()
    call_logs = FakeCallLogSource(calls)
    discoverer = MissingWorkDiscoverer(call_logs, record_store, lock)
    processor = RecordingProcessor(record_store, fail_ids=["c4"])
    sftp = FakeFileStore(files={RECORDING: wav_bytes()})
    chat_model = FakeChatModel()
    return types.SimpleNamespace(
        store=record_store,
        call_logs=call_logs,
        lock=lock,
        discoverer=discoverer,
        processor=processor,
        sftp=sftp,
        fetcher=AudioFetcher(sftp, PathResolver()),
        signer=MediaLinkSigner(API_KEY, "http://testserver"),
        orchestrator=BatchOrchestrator(processor, record_store, lock, discoverer=discoverer, sleep=no_sleep),
        chat_model=chat_model,
        query_agent=CallQueryAgent(chat_model),
    )


@pytest.fixture
def client(pipeline, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", API_KEY)
    app = FastAPI()
    app.include_router(api_router, prefix="/api")
    app.dependency_overrides[get_pipeline_dependency] = lambda: pipeline
    return TestClient(app)


def test_processing_endpoints_require_api_key(client):
    assert client.get("/api/process-calls").status_code in (401, 403)
    assert client.get("/api/process-calls", headers={"X-API-Key": "wrong"}).status_code == 403


def test_invalid_dates_are_rejected(client):
    assert client.get("/api/process-calls?startDate=yesterday", headers=HEADERS).status_code == 400
    response = client.get("/api/process-calls?startDate=2025-06-05&endDate=2025-06-01", headers=HEADERS)
    assert response.status_code == 400


def test_listing_without_processing_reports_status(client, pipeline):
    response = client.get("/api/process-calls?startDate=2025-06-01&endDate=2025-06-03", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["totalCalls"] == 5
    assert body["summary"]["transcribableCalls"] == 4
    assert body["summary"]["missingTranscriptions"] == 4
    assert body["summary"]["processedThisRequest"] == 0
    assert pipeline.processor.calls == []


def test_processing_respects_max_count_and_exclusions(client, pipeline):
    response = client.get(
        "/api/process-calls?startDate=2025-06-01&endDate=2025-06-03"
        "&processTranscriptions=true&maxProcessCount=2&excludeContactIds=c1",
        headers=HEADERS,
    )

    body = response.json()
    assert pipeline.processor.calls == ["c2", "c3"]
    assert body["processedContactIds"] == ["c2", "c3"]
    assert body["summary"]["existingTranscriptions"] == 2
    assert body["errors"] == []


def test_process_specific_calls_reports_failures(client, pipeline):
    response = client.post("/api/process-calls", json={"contactIds": ["c4", "c2", "bad", "ghost"]}, headers=HEADERS)

    body = response.json()
    assert response.status_code == 200
    assert body["notFound"] == ["ghost"]
    assert body["notTranscribable"] == ["bad"]
    assert body["processedContactIds"] == ["c2"]
    assert body["errors"][0]["contact_id"] == "c4"


def test_auto_process_job_lifecycle(client, pipeline):
    response = client.post("/api/auto-process", json={"startDate": "2025-06-01", "endDate": "2025-06-03"},
                           headers=HEADERS)
    assert response.status_code == 202
    job_id = response.json()["job_id"]

    job = client.get(f"/api/processing-jobs/{job_id}", headers=HEADERS).json()
    assert job["status"] == "SUCCESS"
    assert job["result"]["processed"] == 3
    assert job["result"]["failed"] == 3
    assert sorted(job["result"]["processed_ids"]) == ["c1", "c2", "c3"]

    active = client.get("/api/processing-jobs", headers=HEADERS).json()
    assert job_id not in [j["job_id"] for j in active["jobs"]]

    assert client.delete(f"/api/processing-jobs/{job_id}", headers=HEADERS).json()["status"] == "REMOVED"
    assert client.get(f"/api/processing-jobs/{job_id}", headers=HEADERS).status_code == 404


def test_cancelling_an_active_job(client):
    job_id = task_manager.create_task()
    response = client.delete(f"/api/processing-jobs/{job_id}", headers=HEADERS)
    assert response.json()["status"] == "CANCEL_REQUESTED"
    assert task_manager.is_cancel_requested(job_id)
    task_manager.remove_task(job_id)


def test_signed_media_link(client, pipeline):
    url = pipeline.signer.build_url(RECORDING)
    path = url.replace("http://testserver", "")

    head = client.head(path)
    assert head.status_code == 200
    assert head.headers["content-length"] == str(len(wav_bytes()))

    body = client.get(path)
    assert body.status_code == 200
    assert body.content == wav_bytes()

    tampered = path.replace("c1.wav", "c2.wav")
    assert client.get(tampered).status_code == 403


def test_signed_media_link_for_missing_recording(client, pipeline):
    url = pipeline.signer.build_url("./2025/06/03/c9.wav")
    assert client.head(url.replace("http://testserver", "")).status_code == 404


def test_debug_audio_reports_header(client):
    response = client.post("/api/debug-audio", json={"recordingLocation": RECORDING}, headers=HEADERS)

    body = response.json()
    assert body["valid"] is True
    assert body["detectedType"] == "wav"
    assert body["headerHex"].startswith("52494646")
    assert body["candidates"] == [RECORDING]


def test_transcription_lookup_and_analytics(client, pipeline):
    async def seed():
        for cid, category in (("c1", "Other"), ("c2", "No Lead - Call Refused")):
            call = next(c for c in pipeline.call_logs.calls if c.contact_id == cid)
            await pipeline.store.upsert(build_record(call, make_transcript(), Categorization(category, [category])))

    asyncio.run(seed())

    assert client.get("/api/transcriptions/missing", headers=HEADERS).status_code == 404

    record = client.get("/api/transcriptions/c1", headers=HEADERS).json()
    assert record["speaker_data"][1]["role"] == "Customer"
    assert record["categories"] == ["Other"]
    assert record["call_duration"] == {"minutes": 3, "seconds": 5}

    listing = client.get("/api/transcriptions", headers=HEADERS).json()
    assert listing["total"] == 2

    stats = client.get("/api/transcriptions/analytics", headers=HEADERS).json()
    assert stats["total_calls"] == 2
    assert stats["category_distribution"] == {"Other": 1, "No Lead - Call Refused": 1}
    assert stats["sentiment"] == {"positive": 2, "negative": 0, "neutral": 0}
    assert stats["agents"][0]["agent"] == "agent.smith"
    assert stats["agents"][0]["average_duration_seconds"] == 185.0


def test_ai_query_over_recent_calls_and_single_call(client, pipeline):
    assert client.post("/api/ai-query", json={"message": "Anything?"}, headers=HEADERS).status_code == 404

    call = next(c for c in pipeline.call_logs.calls if c.contact_id == "c1")
    asyncio.run(pipeline.store.upsert(build_record(call, make_transcript(), Categorization("Other", ["Other"]))))

    response = client.post(
        "/api/ai-query",
        json={"message": "How did agent.smith do?", "conversationHistory": [{"role": "user", "content": "hi"}]},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json() == {"response": "Two calls were refused."}
    assert "[c1]" in pipeline.chat_model.conversations[0][0]["content"]
    assert pipeline.chat_model.conversations[0][1] == {"role": "user", "content": "hi"}

    single = client.post("/api/ai-query/c1", json={"message": "Summarise the call"}, headers=HEADERS)
    assert single.status_code == 200
    assert "Contact id: c1" in pipeline.chat_model.conversations[1][0]["content"]

    assert client.post("/api/ai-query/c9", json={"message": "Summarise"}, headers=HEADERS).status_code == 404
    assert client.post("/api/ai-query/c1", json={"message": "  "}, headers=HEADERS).status_code == 400
    assert client.post("/api/ai-query", json={"message": "hi"}).status_code in (401, 403)


def test_ai_query_model_failure_is_a_bad_gateway(client, pipeline):
    call = next(c for c in pipeline.call_logs.calls if c.contact_id == "c1")
    asyncio.run(pipeline.store.upsert(build_record(call, make_transcript(), Categorization("Other", ["Other"]))))
    pipeline.chat_model.reply = None

    response = client.post("/api/ai-query/c1", json={"message": "Summarise"}, headers=HEADERS)

    assert response.status_code == 502
