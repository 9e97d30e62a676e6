import json
import logging
from typing import Any, Dict, Literal

from callsight.services.call_logs import CallLogRecord
from callsight.services.categorization import Categorization
from callsight.services.record_store import TranscriptionRecordStore
from callsight.services.transcription import Transcript

logger = logging.getLogger(__name__)


def build_record(call: CallLogRecord, transcript: Transcript, categorization: Categorization) -> Dict[str, Any]:
    """Flattens a call, its transcript and its categories into a `call_records` row."""
    return {
        "contact_id": call.contact_id,
        "recording_location": call.recording_location,
        "agent_username": call.agent_username,
        "initiation_timestamp": call.initiation_timestamp,
        "queue_name": call.queue_name,
        "disposition_title": call.disposition_title,
        "campaign_name": call.campaign_name,
        "campaign_id": call.campaign_id,
        "customer_cli": call.customer_cli,
        "agent_hold_time": call.agent_hold_time,
        "total_hold_time": call.total_hold_time,
        "time_in_queue": call.time_in_queue,
        "call_duration": json.dumps(call.call_duration) if call.call_duration is not None else None,
        "transcript_text": transcript.text,
        "speaker_data": json.dumps([u.to_dict() for u in transcript.utterances]),
        "sentiment_analysis": json.dumps(transcript.sentiment),
        "entities": json.dumps(transcript.entities),
        "call_summary": transcript.summary,
        "primary_category": categorization.primary,
        "categories": json.dumps(categorization.categories),
        "satisfaction_score": None,
    }


class PersistenceWriter:
    def __init__(self, store: TranscriptionRecordStore):
        self.store = store

    async def write(
        self, call: CallLogRecord, transcript: Transcript, categorization: Categorization
    ) -> Literal["insert", "update"]:
        values = build_record(call, transcript, categorization)
        return await self.store.upsert(values)
