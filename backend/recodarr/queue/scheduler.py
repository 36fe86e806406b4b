"""
Queue Scheduler: concurrency policy and job lifecycle driver.

Design rules:
- One reentrant lock serializes every Job Store mutation, promotion
  decision and event emission. Events therefore reach subscribers in the
  order the state changed.
- Each processing job is supervised by its own daemon worker thread
  (transcode-<job id>). Workers never touch another job; they report back
  through the locked _on_progress / _on_job_finished methods.
- Promotion is event-driven (enqueue, job finished, start, config change,
  forced check). There is no polling loop.
- Highest priority first, FIFO (created_at) among equal priorities.
- No automatic retry. A failed job stays failed; callers re-enqueue.
- No exception from a worker escapes: unexpected errors fail the job with
  failure_kind=internal and promotion continues.
"""

import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..catalog import CatalogError, MediaCatalog, MediaInfo, ProbeError, probe_media
from ..execution.results import RunOutcome, RunResult
from ..finalize import FileFinalizer
from ..jobs import (
    FailureKind,
    Job,
    JobError,
    JobResult,
    JobSpec,
    JobStatus,
    JobStore,
    JobValidationError,
    ProgressSnapshot,
)
from .events import EventBus, QueueEvent, QueueEventType, QueueListener
from .models import QueueConfig, QueueStatus

logger = logging.getLogger(__name__)


@dataclass
class _ActiveRun:
    """Book-keeping for one occupied worker slot."""
    
    job_id: str
    thread: Optional[threading.Thread] = None
    handle: Any = None
    cancel_requested: bool = False


def _promotion_key(job: Job) -> Tuple[int, datetime]:
    return (-job.priority, job.created_at)


class QueueScheduler:
    """
    Runs queued jobs through the transcoder, at most max_parallel_jobs at a time.
    
    The runner must provide start(job) -> handle, where handle.stream()
    yields ProgressSnapshots followed by one RunResult and handle.cancel()
    requests termination, plus a log_store used for job logs.
    """
    
    def __init__(
        self,
        store: JobStore,
        runner: Any,
        finalizer: Optional[FileFinalizer] = None,
        catalog: Optional[MediaCatalog] = None,
        config: Optional[QueueConfig] = None,
        event_bus: Optional[EventBus] = None,
        probe: Callable[[str], MediaInfo] = probe_media,
    ):
        """
        Initialize scheduler.
        
        Args:
            store: Job Store holding (possibly restored) jobs
            runner: Transcoder runner
            finalizer: Installs outputs of overwrite jobs
            catalog: Media catalog stamped after successful overwrites
            config: Queue configuration; auto_start sets the initial running state
            event_bus: Event fan-out (a private one is created if omitted)
            probe: Describes a finalized file for the catalog
        """
        self._store = store
        self._runner = runner
        self._finalizer = finalizer or FileFinalizer()
        self._catalog = catalog
        self._probe = probe
        self.events = event_bus or EventBus()
        
        self._config = (config or QueueConfig()).model_copy()
        self._running = self._config.auto_start
        
        self._lock = threading.RLock()
        self._active: Dict[str, _ActiveRun] = {}
        # True until a job is added or started, so an idle start stays silent
        self._empty_notified = True
        self._shutting_down = False
        
        self._store.config_payload = self._config.model_dump()
        
        logger.info(
            f"[Scheduler] Initialized (max_parallel_jobs={self._config.max_parallel_jobs}, "
            f"running={self._running})"
        )
    
    # =========================================================================
    # Events
    # =========================================================================
    
    def set_listener(self, listener: Optional[QueueListener]) -> None:
        """Register the callback bundle, replacing any previous one."""
        self.events.set_listener(listener)
    
    def _emit(self, event_type: QueueEventType, **fields: Any) -> None:
        self.events.emit(QueueEvent(type=event_type, **fields))
    
    # =========================================================================
    # Queries
    # =========================================================================
    
    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running
    
    def get_job(self, job_id: str) -> Optional[Job]:
        return self._store.get(job_id)
    
    def get_all_jobs(self) -> List[Job]:
        return self._store.list()
    
    def get_config(self) -> QueueConfig:
        with self._lock:
            return self._config.model_copy()
    
    def get_job_log(self, job_id: str) -> str:
        """
        Read a job's log file.
        
        Raises:
            LogNotFoundError: If no log exists for the job id
        """
        return self._runner.log_store.read(job_id)
    
    def active_job_ids(self) -> List[str]:
        with self._lock:
            return list(self._active)
    
    def status(self) -> QueueStatus:
        with self._lock:
            error = self._store.last_persistence_error
            return QueueStatus(
                running=self._running,
                max_parallel_jobs=self._config.max_parallel_jobs,
                active_job_ids=list(self._active),
                counts=self._store.counts(),
                last_persistence_error=str(error) if error else None,
            )
    
    # =========================================================================
    # Enqueue
    # =========================================================================
    
    def _validate_spec(self, spec: JobSpec) -> None:
        for label, path in (("input_path", spec.input_path), ("output_path", spec.output_path)):
            if not path or not path.strip():
                raise JobValidationError(f"{label} must not be empty")
            if not os.path.isabs(path):
                raise JobValidationError(f"{label} must be an absolute path: {path}")
        
        if os.path.abspath(spec.input_path) == os.path.abspath(spec.output_path):
            raise JobValidationError(
                "output_path must differ from input_path (use overwrite_input to replace the original)"
            )
        if not os.path.isfile(spec.input_path):
            raise JobValidationError(f"Input file not found: {spec.input_path}")
    
    def enqueue(self, spec: JobSpec) -> Job:
        """
        Validate and queue a job, starting it at once if a slot is free.
        
        Returns:
            The created job (status queued)
        
        Raises:
            JobValidationError: If the spec is unusable; nothing is queued
        """
        self._validate_spec(spec)
        
        with self._lock:
            job = self._store.add(spec)
            self._empty_notified = False
            logger.info(f"[Scheduler] Job {job.id} queued: {job.input_path}")
            self._emit(QueueEventType.JOB_ADDED, job=job, job_id=job.id)
            self._promote_locked()
            return job
    
    def add_job(
        self,
        input_path: str,
        output_path: str,
        overwrite_input: bool = False,
        preset: Optional[Dict[str, Any]] = None,
        probe_data: Optional[Dict[str, Any]] = None,
        track_selections: Optional[Dict[str, Dict[str, str]]] = None,
        priority: int = 0,
    ) -> Job:
        """Build a JobSpec from arguments and enqueue it."""
        try:
            spec = JobSpec(
                input_path=input_path,
                output_path=output_path,
                overwrite_input=overwrite_input,
                preset=preset or {},
                probe_data=probe_data or {},
                track_selections=track_selections or {},
                priority=priority,
            )
        except ValidationError as e:
            raise JobValidationError(f"Invalid job: {e}") from e
        return self.enqueue(spec)
    
    # =========================================================================
    # Control
    # =========================================================================
    
    def start_processing(self) -> int:
        """
        Resume promotions and drain the backlog.
        
        Returns:
            Number of jobs started
        """
        with self._lock:
            if self._shutting_down:
                return 0
            if not self._running:
                self._running = True
                logger.info("[Scheduler] Started")
                self._emit(QueueEventType.QUEUE_STARTED)
            started = self._promote_locked()
            self._check_empty_locked()
            return started
    
    def pause_processing(self) -> None:
        """Stop promoting. Processing jobs run to completion."""
        with self._lock:
            if self._running:
                self._running = False
                logger.info("[Scheduler] Paused")
                self._emit(QueueEventType.QUEUE_PAUSED)
    
    def force_process_queue(self) -> int:
        """
        Run a promotion check now (e.g. after a bulk enqueue).
        
        Returns:
            Number of jobs started
        """
        with self._lock:
            return self._promote_locked()
    
    def update_config(
        self,
        max_parallel_jobs: Optional[int] = None,
        auto_start: Optional[bool] = None,
    ) -> QueueConfig:
        """
        Change the configuration. The new config is persisted with the queue.
        
        Raises:
            JobValidationError: If max_parallel_jobs < 1
        """
        with self._lock:
            values = self._config.model_dump()
            if max_parallel_jobs is not None:
                values["max_parallel_jobs"] = max_parallel_jobs
            if auto_start is not None:
                values["auto_start"] = auto_start
            try:
                new_config = QueueConfig(**values)
            except ValidationError as e:
                raise JobValidationError(f"Invalid queue config: {e}") from e
            
            grew = new_config.max_parallel_jobs > self._config.max_parallel_jobs
            self._config = new_config
            self._store.config_payload = new_config.model_dump()
            self._store.persist()
            logger.info(
                f"[Scheduler] Config updated: max_parallel_jobs={new_config.max_parallel_jobs}, "
                f"auto_start={new_config.auto_start}"
            )
            
            if grew:
                self._promote_locked()
            return new_config.model_copy()
    
    def clear_completed_and_failed_jobs(self) -> int:
        """
        Drop every completed, failed and cancelled job.
        
        Returns:
            Number of jobs removed
        """
        with self._lock:
            count = self._store.clear_terminal()
            self._emit(QueueEventType.HISTORY_CLEARED, count=count)
            return count
    
    def remove_job(self, job_id: str) -> bool:
        """
        Remove a queued or finished job.
        
        Returns:
            False if the job is unknown or still processing
        """
        with self._lock:
            if not self._store.remove(job_id):
                return False
            self._emit(QueueEventType.JOB_REMOVED, job_id=job_id)
            self._check_empty_locked()
            return True
    
    def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a queued or processing job.
        
        Queued jobs become cancelled immediately. For processing jobs the
        transcoder is asked to stop; the job becomes cancelled (and
        JobCancelled fires) once the process has exited.
        
        Returns:
            True if the cancellation was accepted
        """
        with self._lock:
            job = self._store.get(job_id)
            if job is None:
                return False
            
            if job.status == JobStatus.QUEUED:
                cancelled = self._store.update_status(
                    job_id,
                    JobStatus.CANCELLED,
                    cancel_requested=True,
                    completed_at=datetime.now(),
                    result=JobResult(
                        success=False,
                        error="Cancelled by user",
                        failure_kind=FailureKind.CANCELLED,
                    ),
                )
                logger.info(f"[Scheduler] Cancelled queued job {job_id}")
                self._emit(QueueEventType.JOB_CANCELLED, job=cancelled, job_id=job_id)
                self._check_empty_locked()
                return True
            
            if job.status != JobStatus.PROCESSING:
                return False
            
            active = self._active.get(job_id)
            if active is None or active.cancel_requested:
                return False
            if active.handle is not None and active.handle.finished:
                # Transcode is done and the output is being installed
                logger.info(f"[Scheduler] Job {job_id} is finalizing; cancel ignored")
                return False
            
            active.cancel_requested = True
            self._store.update_status(job_id, JobStatus.PROCESSING, cancel_requested=True)
            if active.handle is not None:
                active.handle.cancel()
            logger.info(f"[Scheduler] Cancellation requested for job {job_id}")
            return True
    
    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """
        Stop promoting and terminate running transcoders.
        
        Jobs interrupted by shutdown keep status processing in the snapshot,
        so the next start requeues them.
        """
        with self._lock:
            self._shutting_down = True
            self._running = False
            runs = list(self._active.values())
            for run in runs:
                if run.handle is not None:
                    run.handle.cancel()
        
        logger.info(f"[Scheduler] Shutting down ({len(runs)} active job(s))")
        if wait:
            for run in runs:
                if run.thread is not None and run.thread is not threading.current_thread():
                    run.thread.join(timeout)
    
    # =========================================================================
    # Promotion (call with lock held)
    # =========================================================================
    
    def _promote_locked(self) -> int:
        if not self._running or self._shutting_down:
            return 0
        
        free_slots = self._config.max_parallel_jobs - len(self._active)
        if free_slots <= 0:
            return 0
        
        queued = sorted(self._store.with_status(JobStatus.QUEUED), key=_promotion_key)
        started = 0
        for job in queued[:free_slots]:
            self._start_job_locked(job)
            started += 1
        return started
    
    def _start_job_locked(self, job: Job) -> None:
        log_path = str(self._runner.log_store.path_for(job.id))
        started = self._store.update_status(
            job.id,
            JobStatus.PROCESSING,
            started_at=datetime.now(),
            progress=ProgressSnapshot(percent=0.0),
            log_path=log_path,
        )
        
        run = _ActiveRun(job_id=job.id)
        self._active[job.id] = run
        self._empty_notified = False
        
        logger.info(f"[Scheduler] Starting job {job.id} (priority {job.priority})")
        self._emit(QueueEventType.JOB_STARTED, job=started, job_id=job.id)
        
        run.thread = threading.Thread(
            target=self._run_job,
            args=(started,),
            name=f"transcode-{job.id}",
            daemon=True,
        )
        run.thread.start()
    
    def _check_empty_locked(self) -> None:
        if self._active or self._empty_notified:
            return
        if self._store.count(JobStatus.QUEUED) > 0:
            return
        self._empty_notified = True
        logger.info("[Scheduler] Queue empty")
        self._emit(QueueEventType.QUEUE_EMPTY)
    
    # =========================================================================
    # Worker side
    # =========================================================================
    
    def _run_job(self, job: Job) -> None:
        """Worker thread body: run, finalize, report. Never raises."""
        try:
            status, result = self._execute(job)
        except Exception as e:
            logger.exception(f"[Scheduler] Unexpected error in job {job.id}: {e}")
            status = JobStatus.FAILED
            result = JobResult(
                success=False,
                error=f"Internal error: {e}",
                failure_kind=FailureKind.INTERNAL,
            )
        self._on_job_finished(job.id, status, result)
    
    def _execute(self, job: Job) -> Tuple[JobStatus, JobResult]:
        handle = self._runner.start(job)
        
        with self._lock:
            run = self._active.get(job.id)
            if run is not None:
                run.handle = handle
                if run.cancel_requested or self._shutting_down:
                    handle.cancel()
        
        run_result: Optional[RunResult] = None
        for item in handle.stream():
            if isinstance(item, RunResult):
                run_result = item
            else:
                self._on_progress(job.id, item)
        
        if run_result is None:
            raise RuntimeError("transcoder run ended without a result")
        return self._complete_run(job, run_result)
    
    def _complete_run(self, job: Job, run_result: RunResult) -> Tuple[JobStatus, JobResult]:
        if run_result.outcome == RunOutcome.CANCELLED:
            return JobStatus.CANCELLED, run_result.to_job_result()
        
        if not run_result.succeeded:
            return JobStatus.FAILED, run_result.to_job_result()
        
        if not job.overwrite_input:
            return JobStatus.COMPLETED, run_result.to_job_result()
        
        finalized = self._finalizer.finalize(job.output_path, job.input_path, is_overwrite=True)
        if not finalized.success:
            message = finalized.describe_failure()
            if finalized.data_at_risk:
                logger.critical(f"[Scheduler] Job {job.id}: {message}")
            else:
                logger.error(f"[Scheduler] Job {job.id}: {message}")
            failed = run_result.to_job_result()
            return JobStatus.FAILED, failed.model_copy(update={
                "success": False,
                "output_path": finalized.temp_path if finalized.temp_preserved else None,
                "error": message,
                "failure_kind": FailureKind.FINALIZATION,
            })
        
        self._record_in_catalog(job)
        return JobStatus.COMPLETED, run_result.to_job_result(output_path=job.input_path)
    
    def _record_in_catalog(self, job: Job) -> None:
        if self._catalog is None:
            return
        try:
            info = self._probe(job.input_path)
            self._catalog.record_encoding(job.input_path, job.id, info)
        except (CatalogError, ProbeError) as e:
            logger.warning(f"[Scheduler] Catalog update for job {job.id} failed: {e}")
        except Exception as e:
            # The file is already installed; the job outcome stands
            logger.exception(f"[Scheduler] Unexpected error updating catalog for job {job.id}: {e}")
    
    def _on_progress(self, job_id: str, progress: ProgressSnapshot) -> None:
        with self._lock:
            updated = self._store.update_progress(job_id, progress)
            if updated is not None:
                self._emit(QueueEventType.JOB_PROGRESS, job=updated, job_id=job_id, progress=progress)
    
    def _on_job_finished(self, job_id: str, status: JobStatus, result: JobResult) -> None:
        with self._lock:
            run = self._active.pop(job_id, None)
            
            interrupted = (
                self._shutting_down
                and status == JobStatus.CANCELLED
                and not (run and run.cancel_requested)
            )
            if interrupted:
                logger.info(f"[Scheduler] Job {job_id} interrupted by shutdown; left for resume")
                return
            
            try:
                self._record_outcome(job_id, status, result)
            except JobError as e:
                logger.error(f"[Scheduler] Could not record outcome of job {job_id}: {e}")
            
            self._promote_locked()
            self._check_empty_locked()
    
    def _record_outcome(self, job_id: str, status: JobStatus, result: JobResult) -> None:
        patch: Dict[str, Any] = {"result": result, "completed_at": datetime.now()}
        if status == JobStatus.COMPLETED:
            current = self._store.get_or_raise(job_id)
            progress = current.progress or ProgressSnapshot()
            patch["progress"] = progress.model_copy(update={"percent": 100.0})
        
        job = self._store.update_status(job_id, status, **patch)
        
        if status == JobStatus.COMPLETED:
            logger.info(
                f"[Scheduler] Job {job_id} completed "
                f"({result.initial_size_mb} MB -> {result.final_size_mb} MB, "
                f"{result.reduction_percent}% saved)"
            )
            self._emit(QueueEventType.JOB_COMPLETED, job=job, job_id=job_id, result=result)
        elif status == JobStatus.CANCELLED:
            logger.info(f"[Scheduler] Job {job_id} cancelled")
            self._emit(QueueEventType.JOB_CANCELLED, job=job, job_id=job_id, result=result)
        else:
            logger.error(f"[Scheduler] Job {job_id} failed ({result.failure_kind}): {result.error}")
            self._emit(
                QueueEventType.JOB_FAILED,
                job=job,
                job_id=job_id,
                result=result,
                error=result.error,
            )
