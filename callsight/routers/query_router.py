import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from callsight.config import settings
from callsight.dependencies import get_api_key, get_pipeline_dependency
from callsight.services.pipeline import Pipeline
from callsight.services.query_agent import ChatTurn

# --- Logging Setup ---
logger = logging.getLogger(__name__)

# --- Router Setup ---
router = APIRouter(dependencies=[Depends(get_api_key)])

# --- Pydantic Models ---
class QueryRequest(BaseModel):
    message: str = ""
    conversationHistory: List[ChatTurn] = Field(default_factory=list)


class QueryResponse(BaseModel):
    response: str

# --- API Endpoints ---

def _require_message(request: QueryRequest) -> str:
    message = request.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required")
    return message


@router.post("/ai-query", response_model=QueryResponse, tags=["Query"])
async def query_calls(
    request: QueryRequest,
    limit: Optional[int] = Query(default=None, ge=1, le=2000),
    pipeline: Pipeline = Depends(get_pipeline_dependency),
):
    """Answers a question about the most recent transcribed calls as a whole."""
    message = _require_message(request)
    records = await pipeline.store.recent(limit=limit or settings.QUERY_CONTEXT_CALLS)
    if not records:
        raise HTTPException(status_code=404, detail="No transcribed calls to query")

    answer = await pipeline.query_agent.answer_overview(message, records, request.conversationHistory)
    if answer is None:
        raise HTTPException(status_code=502, detail="Failed to process AI query")
    return QueryResponse(response=answer)


@router.post("/ai-query/{contact_id}", response_model=QueryResponse, tags=["Query"])
async def query_single_call(
    contact_id: str,
    request: QueryRequest,
    pipeline: Pipeline = Depends(get_pipeline_dependency),
):
    """Answers a question about one transcribed call."""
    message = _require_message(request)
    record = await pipeline.store.get(contact_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Transcription not found")

    answer = await pipeline.query_agent.answer_call(message, record, request.conversationHistory)
    if answer is None:
        raise HTTPException(status_code=502, detail="Failed to process AI query")
    return QueryResponse(response=answer)
