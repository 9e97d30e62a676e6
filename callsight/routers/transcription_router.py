import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from callsight.database import CallRecord
from callsight.dependencies import get_api_key, get_pipeline_dependency
from callsight.services import analytics
from callsight.services.pipeline import Pipeline

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_api_key)])

JSON_FIELDS = ("speaker_data", "sentiment_analysis", "entities", "categories", "call_duration")


def serialize_record(record: CallRecord) -> Dict[str, Any]:
    data = {column.name: getattr(record, column.name) for column in CallRecord.__table__.columns}
    for name in JSON_FIELDS:
        raw = data.get(name)
        if isinstance(raw, str):
            try:
                data[name] = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"[{record.contact_id}] Field {name} is not valid JSON")
    for name in ("initiation_timestamp", "created_at", "updated_at"):
        if data.get(name) is not None:
            data[name] = data[name].isoformat()
    return data


@router.get("/transcriptions", tags=["Transcriptions"])
async def list_transcriptions(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    pipeline: Pipeline = Depends(get_pipeline_dependency),
):
    records = await pipeline.store.recent(limit=limit, offset=offset)
    return {
        "total": await pipeline.store.count(),
        "items": [serialize_record(r) for r in records],
    }


@router.get("/transcriptions/analytics", tags=["Transcriptions"])
async def transcription_analytics(
    limit: int = Query(default=1000, ge=1, le=10000),
    pipeline: Pipeline = Depends(get_pipeline_dependency),
):
    """Category, sentiment and agent aggregates over the most recent records."""
    records = await pipeline.store.recent(limit=limit)
    return analytics.summarize(records)


@router.get("/transcriptions/{contact_id}", tags=["Transcriptions"])
async def get_transcription(contact_id: str, pipeline: Pipeline = Depends(get_pipeline_dependency)):
    record = await pipeline.store.get(contact_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Transcription not found")
    return serialize_record(record)
