"""
HTTP control surface for the encoding queue.

Thin adapter over QueueScheduler (app.state.scheduler). Producers enqueue
here; the GUI polls jobs and status.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from ..execution import LogNotFoundError
from ..jobs import Job, JobNotRemovableError, JobSpec, JobValidationError
from ..queue import QueueConfig, QueueConfigUpdate, QueueScheduler, QueueStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["queue"])


class OperationResponse(BaseModel):
    """Outcome of a control action."""
    
    model_config = ConfigDict(extra="forbid")
    
    success: bool
    message: str


class StartResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    
    running: bool
    started: int


class ClearHistoryResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    
    removed: int


class EnqueueRequest(BaseModel):
    """Request body for enqueueing a job."""
    
    model_config = ConfigDict(extra="forbid")
    
    input_path: str
    output_path: str
    overwrite_input: bool = False
    preset: Dict[str, Any] = Field(default_factory=dict)
    probe_data: Dict[str, Any] = Field(default_factory=dict)
    track_selections: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    priority: int = 0


def _scheduler(request: Request) -> QueueScheduler:
    return request.app.state.scheduler


def _job_or_404(scheduler: QueueScheduler, job_id: str) -> Job:
    job = scheduler.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return job


# ============================================================================
# JOBS
# ============================================================================

@router.post("/jobs", response_model=Job, status_code=201)
async def enqueue_job(body: EnqueueRequest, request: Request):
    """
    Enqueue a transcode.
    
    Raises:
        400: Invalid paths (empty, relative, missing input, input == output)
    """
    try:
        return _scheduler(request).enqueue(JobSpec(**body.model_dump()))
    except JobValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/jobs", response_model=List[Job])
async def list_jobs(request: Request, status: Optional[str] = None):
    """All jobs in insertion order, optionally filtered by status."""
    jobs = _scheduler(request).get_all_jobs()
    if status:
        jobs = [job for job in jobs if job.status.value == status]
    return jobs


@router.get("/jobs/{job_id}", response_model=Job)
async def get_job(job_id: str, request: Request):
    return _job_or_404(_scheduler(request), job_id)


@router.delete("/jobs/{job_id}", response_model=OperationResponse)
async def remove_job(job_id: str, request: Request):
    """
    Remove a queued or finished job.
    
    Raises:
        404: Job not found
        409: Job is processing (cancel it first)
    """
    scheduler = _scheduler(request)
    job = _job_or_404(scheduler, job_id)
    if not scheduler.remove_job(job_id):
        error = JobNotRemovableError(job_id, job.status.value)
        raise HTTPException(status_code=409, detail=str(error))
    return OperationResponse(success=True, message=f"Job {job_id} removed")


@router.post("/jobs/{job_id}/cancel", response_model=OperationResponse)
async def cancel_job(job_id: str, request: Request):
    """
    Cancel a queued or processing job.
    
    Processing jobs report cancelled once the transcoder has exited.
    
    Raises:
        404: Job not found
        409: Job already finished or already cancelling
    """
    scheduler = _scheduler(request)
    job = _job_or_404(scheduler, job_id)
    if not scheduler.cancel_job(job_id):
        raise HTTPException(
            status_code=409,
            detail=f"Job {job_id} ({job.status.value}) cannot be cancelled",
        )
    return OperationResponse(success=True, message=f"Cancellation requested for job {job_id}")


@router.get("/jobs/{job_id}/log", response_class=PlainTextResponse)
async def get_job_log(job_id: str, request: Request):
    """
    Raw log of a job.
    
    Raises:
        404: No log file for this job id (detail names the log, not the job)
    """
    try:
        return PlainTextResponse(_scheduler(request).get_job_log(job_id))
    except LogNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Log not found: {e}")


# ============================================================================
# QUEUE CONTROL
# ============================================================================

@router.post("/start", response_model=StartResponse)
async def start_processing(request: Request):
    scheduler = _scheduler(request)
    started = scheduler.start_processing()
    return StartResponse(running=scheduler.is_running, started=started)


@router.post("/pause", response_model=OperationResponse)
async def pause_processing(request: Request):
    _scheduler(request).pause_processing()
    return OperationResponse(success=True, message="Queue paused; running jobs will finish")


@router.post("/process", response_model=StartResponse)
async def force_process_queue(request: Request):
    scheduler = _scheduler(request)
    started = scheduler.force_process_queue()
    return StartResponse(running=scheduler.is_running, started=started)


@router.get("/config", response_model=QueueConfig)
async def get_config(request: Request):
    return _scheduler(request).get_config()


@router.patch("/config", response_model=QueueConfig)
async def update_config(body: QueueConfigUpdate, request: Request):
    try:
        return _scheduler(request).update_config(
            max_parallel_jobs=body.max_parallel_jobs,
            auto_start=body.auto_start,
        )
    except JobValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/clear-history", response_model=ClearHistoryResponse)
async def clear_history(request: Request):
    removed = _scheduler(request).clear_completed_and_failed_jobs()
    logger.info(f"Cleared {removed} finished jobs")
    return ClearHistoryResponse(removed=removed)


@router.get("/status", response_model=QueueStatus)
async def queue_status(request: Request):
    return _scheduler(request).status()
