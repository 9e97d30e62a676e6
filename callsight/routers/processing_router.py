import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from callsight.config import settings
from callsight.dependencies import get_api_key, get_pipeline_dependency
from callsight.services import task_manager
from callsight.services.call_logs import DateRange
from callsight.services.orchestrator import BatchSummary
from callsight.services.pipeline import Pipeline

# --- Logging Setup ---
logger = logging.getLogger(__name__)

# --- Router Setup ---
router = APIRouter(dependencies=[Depends(get_api_key)])

# --- Pydantic Models ---
class ProcessSpecificRequest(BaseModel):
    contactIds: List[str] = Field(..., min_length=1)
    processTranscriptions: bool = True


class AutoProcessRequest(BaseModel):
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    maxProcessCount: int = Field(default_factory=lambda: settings.AUTO_PROCESS_COUNT, ge=1)
    excludeContactIds: List[str] = Field(default_factory=list)


class JobStatus(BaseModel):
    job_id: str
    status: str
    progress: int
    message: str
    params: Dict[str, Any] = {}
    result: Optional[Dict[str, Any]] = None
    cancel_requested: bool = False
    created_at: str
    updated_at: str

# --- Helpers ---

def _parse_range(start: Optional[str], end: Optional[str]) -> DateRange:
    try:
        return DateRange.parse(start, end, fallback_days=settings.DATE_FALLBACK_DAYS)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _split_ids(raw: Optional[str]) -> List[str]:
    return [item.strip() for item in (raw or "").split(",") if item.strip()]


def _summary_block(discovery, run_summary: Optional[BatchSummary]) -> Dict[str, Any]:
    return {
        "totalCalls": len(discovery.calls),
        "transcribableCalls": discovery.transcribable_count,
        "existingTranscriptions": len(discovery.persisted_ids),
        "missingTranscriptions": len(discovery.missing),
        "processedThisRequest": run_summary.succeeded if run_summary else 0,
        "failedThisRequest": run_summary.failed if run_summary else 0,
    }

# --- Background Tasks ---

async def run_processing_job(job_id: str, pipeline: Pipeline, date_range: DateRange,
                             exclude_ids: List[str], max_process_count: int):
    """
    Runs a full discover-and-process loop for an auto-process job, reporting
    progress into the job registry and honouring cancellation between batches.
    """
    task_manager.update_task_status(job_id, "PROCESSING", 0, "Discovering calls without transcriptions...")

    def on_progress(summary: BatchSummary, batch_total: int):
        done = summary.succeeded + summary.failed
        progress = min(99, int(100 * done / max(1, max_process_count)))
        task_manager.update_task_status(
            job_id, "PROCESSING", progress,
            f"Processed {summary.succeeded}, failed {summary.failed} of {batch_total} in this cycle",
        )

    try:
        result = await pipeline.orchestrator.run(
            date_range,
            exclude_ids=exclude_ids,
            max_process_count=max_process_count,
            should_continue=lambda: not task_manager.is_cancel_requested(job_id),
            on_progress=on_progress,
        )
    except Exception as e:
        logger.error(f"Processing job {job_id} crashed: {e}", exc_info=True)
        task_manager.set_task_error(job_id, f"Processing failed: {e}")
        return

    if result.summary.cancelled:
        task_manager.set_task_cancelled(job_id, result.summary.to_dict())
    else:
        task_manager.set_task_success(job_id, result.summary.to_dict())

# --- API Endpoints ---

@router.get("/process-calls", tags=["Processing"])
async def process_calls(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    processTranscriptions: bool = False,
    maxProcessCount: int = Query(default=settings.DEFAULT_MAX_PROCESS_COUNT, ge=0),
    excludeContactIds: Optional[str] = None,
    pipeline: Pipeline = Depends(get_pipeline_dependency),
):
    """
    Lists call logs in range with their transcription status and, when asked,
    transcribes up to `maxProcessCount` of the missing ones first.
    """
    date_range = _parse_range(startDate, endDate)
    exclude_ids = _split_ids(excludeContactIds)

    run_summary = None
    if processTranscriptions and maxProcessCount > 0:
        result = await pipeline.orchestrator.run(
            date_range, exclude_ids=exclude_ids, max_process_count=maxProcessCount
        )
        run_summary = result.summary

    discovery = await pipeline.discoverer.discover(date_range, exclude_ids=exclude_ids)
    return {
        "callLogs": pipeline.discoverer.annotate(discovery),
        "summary": _summary_block(discovery, run_summary),
        "processedContactIds": run_summary.processed_ids if run_summary else [],
        "errors": [e.to_dict() for e in run_summary.errors] if run_summary else [],
    }


@router.post("/process-calls", tags=["Processing"])
async def process_specific_calls(request: ProcessSpecificRequest, pipeline: Pipeline = Depends(get_pipeline_dependency)):
    """Transcribes the given calls if they are usable and not yet transcribed."""
    requested = list(dict.fromkeys(request.contactIds))
    calls = await pipeline.call_logs.fetch_by_ids(requested)
    found = {c.contact_id for c in calls}
    discovery = await pipeline.discoverer.filter(calls)

    run_summary = None
    if request.processTranscriptions and discovery.missing:
        run_summary = await pipeline.orchestrator.run_calls(discovery.missing)

    return {
        "summary": _summary_block(discovery, run_summary),
        "notFound": [cid for cid in requested if cid not in found],
        "notTranscribable": [c.contact_id for c in calls if not c.is_transcribable],
        "processedContactIds": run_summary.processed_ids if run_summary else [],
        "errors": [e.to_dict() for e in run_summary.errors] if run_summary else [],
    }


@router.post("/auto-process", tags=["Processing"], status_code=202)
async def auto_process(
    background_tasks: BackgroundTasks,
    request: Optional[AutoProcessRequest] = None,
    pipeline: Pipeline = Depends(get_pipeline_dependency),
):
    request = request or AutoProcessRequest()
    date_range = _parse_range(request.startDate, request.endDate)
    job_id = task_manager.create_task(params={
        "startDate": date_range.start.isoformat(),
        "endDate": date_range.end.isoformat(),
        "maxProcessCount": request.maxProcessCount,
        "excludeContactIds": request.excludeContactIds,
    })
    background_tasks.add_task(
        run_processing_job, job_id, pipeline, date_range, request.excludeContactIds, request.maxProcessCount
    )
    return {"job_id": job_id, "status": "PENDING"}


@router.get("/processing-jobs", tags=["Processing"])
async def list_processing_jobs(pipeline: Pipeline = Depends(get_pipeline_dependency)):
    return {"jobs": task_manager.list_active_tasks(), "lock": pipeline.lock.snapshot()}


@router.get("/processing-jobs/{job_id}", response_model=JobStatus, tags=["Processing"])
async def get_processing_job(job_id: str):
    job = task_manager.get_task_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.delete("/processing-jobs/{job_id}", tags=["Processing"])
async def cancel_processing_job(job_id: str):
    """Cancels an active job before its next batch, or forgets a finished one."""
    job = task_manager.get_task_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if task_manager.request_cancel(job_id):
        return {"job_id": job_id, "status": "CANCEL_REQUESTED"}
    task_manager.remove_task(job_id)
    return {"job_id": job_id, "status": "REMOVED"}


@router.get("/call-logs", tags=["Processing"])
async def list_call_logs(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    pipeline: Pipeline = Depends(get_pipeline_dependency),
):
    date_range = _parse_range(startDate, endDate)
    discovery = await pipeline.discoverer.discover(date_range)
    return {"callLogs": pipeline.discoverer.annotate(discovery), "summary": _summary_block(discovery, None)}
