import datetime
import logging
from typing import Dict, Any, List, Literal, Optional
import uuid

logger = logging.getLogger(__name__)

# In-memory dictionary to store background processing jobs.
# Jobs do not survive a restart, which matches the processing lock's lifetime.
_tasks: Dict[str, Dict[str, Any]] = {}

Status = Literal["PENDING", "PROCESSING", "SUCCESS", "ERROR", "CANCELLED"]
ACTIVE_STATUSES = ("PENDING", "PROCESSING")


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def create_task(params: Optional[Dict[str, Any]] = None) -> str:
    """Creates a new job and returns its ID."""
    task_id = str(uuid.uuid4())
    _tasks[task_id] = {
        "job_id": task_id,
        "status": "PENDING",
        "progress": 0,
        "message": "Job has been created and is waiting to be processed.",
        "params": params or {},
        "result": None,
        "cancel_requested": False,
        "created_at": _now(),
        "updated_at": _now(),
    }
    logger.info(f"Job created with ID: {task_id}")
    return task_id


def get_task_status(task_id: str) -> Dict[str, Any] | None:
    """Retrieves the status of a specific job."""
    return _tasks.get(task_id)


def list_active_tasks() -> List[Dict[str, Any]]:
    return [task for task in _tasks.values() if task["status"] in ACTIVE_STATUSES]


def update_task_status(task_id: str, status: Status, progress: int, message: str, result: Any = None):
    """Updates the status, progress, and message of a job."""
    if task_id in _tasks:
        _tasks[task_id]["status"] = status
        _tasks[task_id]["progress"] = progress
        _tasks[task_id]["message"] = message
        if result is not None:
            _tasks[task_id]["result"] = result
        _tasks[task_id]["updated_at"] = _now()
        logger.debug(f"Job {task_id} updated: Status={status}, Progress={progress}%, Message='{message}'")
    else:
        logger.warning(f"Attempted to update non-existent job with ID: {task_id}")


def set_task_success(task_id: str, result: Any):
    """Marks a job as successful and stores its result."""
    if task_id in _tasks:
        _tasks[task_id]["status"] = "SUCCESS"
        _tasks[task_id]["progress"] = 100
        _tasks[task_id]["message"] = "Processing completed."
        _tasks[task_id]["result"] = result
        _tasks[task_id]["updated_at"] = _now()
        logger.info(f"Job {task_id} marked as SUCCESS.")
    else:
        logger.warning(f"Attempted to set success for non-existent job with ID: {task_id}")


def set_task_error(task_id: str, error_message: str):
    """Marks a job as failed and stores the error message."""
    if task_id in _tasks:
        _tasks[task_id]["status"] = "ERROR"
        _tasks[task_id]["message"] = error_message
        _tasks[task_id]["updated_at"] = _now()
        logger.error(f"Job {task_id} marked as ERROR: {error_message}")
    else:
        logger.warning(f"Attempted to set error for non-existent job with ID: {task_id}")


def set_task_cancelled(task_id: str, result: Any = None):
    if task_id in _tasks:
        _tasks[task_id]["status"] = "CANCELLED"
        _tasks[task_id]["message"] = "Job was cancelled."
        _tasks[task_id]["result"] = result
        _tasks[task_id]["updated_at"] = _now()
        logger.info(f"Job {task_id} marked as CANCELLED.")


def request_cancel(task_id: str) -> bool:
    """Flags an active job for cancellation; it stops before its next batch."""
    task = _tasks.get(task_id)
    if task is None or task["status"] not in ACTIVE_STATUSES:
        return False
    task["cancel_requested"] = True
    task["updated_at"] = _now()
    logger.info(f"Cancellation requested for job {task_id}.")
    return True


def is_cancel_requested(task_id: str) -> bool:
    task = _tasks.get(task_id)
    return bool(task and task["cancel_requested"])


def remove_task(task_id: str):
    """Removes a job from the store, e.g., after the result has been fetched."""
    if task_id in _tasks:
        del _tasks[task_id]
        logger.info(f"Job {task_id} removed from store.")
