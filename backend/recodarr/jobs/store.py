"""
Job Store: ordered in-memory job collection with a durable snapshot.

The store exclusively owns Job objects. Callers receive deep copies, so
nothing outside the store can mutate a job except through update_status
and update_progress.

Every mutating operation (add, remove, status change, clear) rewrites the
snapshot. A failed write is logged and remembered in
last_persistence_error; the in-memory state stays authoritative for the
lifetime of the process.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..persistence import LoadError, PersistenceError, SnapshotFile
from .errors import JobNotFoundError
from .models import Job, JobSpec, JobStatus, ProgressSnapshot
from .state import REMOVABLE_JOB_STATES, TERMINAL_JOB_STATES, validate_job_transition

logger = logging.getLogger(__name__)


# Fields update_status may patch alongside a status change
_PATCHABLE_FIELDS = frozenset({
    "progress",
    "result",
    "started_at",
    "completed_at",
    "cancel_requested",
    "log_path",
})


class JobStore:
    """
    Ordered job collection (insertion order) backed by a snapshot file.
    
    Priority is a scheduling concern; list() always returns jobs in the
    order they were added.
    """
    
    def __init__(self, snapshot: Optional[SnapshotFile] = None):
        """
        Initialize store.
        
        Args:
            snapshot: Optional SnapshotFile; without one the store is memory-only
        """
        # job_id -> Job, insertion ordered
        self._jobs: Dict[str, Job] = {}
        self._snapshot = snapshot
        self._lock = threading.RLock()
        
        # Extra document section written with every snapshot (queue config)
        self.config_payload: Optional[Dict[str, Any]] = None
        
        self.last_persistence_error: Optional[PersistenceError] = None
    
    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    
    def get(self, job_id: str) -> Optional[Job]:
        """Return a copy of the job, or None if not found."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None
    
    def get_or_raise(self, job_id: str) -> Job:
        """
        Return a copy of the job.
        
        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job
    
    def list(self) -> List[Job]:
        """Return copies of all jobs in insertion order."""
        with self._lock:
            return [job.model_copy(deep=True) for job in self._jobs.values()]
    
    def with_status(self, status: JobStatus) -> List[Job]:
        """Return copies of all jobs in the given status, insertion order."""
        with self._lock:
            return [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if job.status == status
            ]
    
    def count(self, status: Optional[JobStatus] = None) -> int:
        with self._lock:
            if status is None:
                return len(self._jobs)
            return sum(1 for job in self._jobs.values() if job.status == status)
    
    def counts(self) -> Dict[str, int]:
        """Number of jobs per status (every status present, zero if empty)."""
        with self._lock:
            result = {status.value: 0 for status in JobStatus}
            for job in self._jobs.values():
                result[job.status.value] += 1
            return result
    
    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    
    def add(self, spec: Union[JobSpec, Job]) -> Job:
        """
        Create a queued job from a spec, append it and persist.
        
        Returns:
            A copy of the created job
            
        Raises:
            ValueError: If a job with the same id already exists
        """
        job = Job.from_spec(spec) if isinstance(spec, JobSpec) else spec.model_copy(deep=True)
        
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job with ID '{job.id}' already exists")
            self._jobs[job.id] = job
            self.persist()
            logger.info(f"[JobStore] Added job {job.id} (priority {job.priority})")
            return job.model_copy(deep=True)
    
    def remove(self, job_id: str) -> bool:
        """
        Remove a queued or terminal job.
        
        Returns:
            True if removed; False if not found or still processing
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if job.status not in REMOVABLE_JOB_STATES:
                logger.warning(f"[JobStore] Refusing to remove {job.status.value} job {job_id}")
                return False
            del self._jobs[job_id]
            self.persist()
            logger.info(f"[JobStore] Removed job {job_id}")
            return True
    
    def update_status(self, job_id: str, status: JobStatus, **patch: Any) -> Job:
        """
        Apply an allowed status transition plus a partial field patch, then persist.
        
        Args:
            job_id: The job to update
            status: Target status (may equal the current one for patch-only updates)
            **patch: Any of progress, result, started_at, completed_at,
                cancel_requested, log_path
                
        Returns:
            A copy of the updated job
            
        Raises:
            JobNotFoundError: If the job does not exist
            InvalidStateTransitionError: If the transition is not allowed
            ValueError: If the patch names a field that cannot be patched
        """
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch job field(s): {', '.join(sorted(unknown))}")
        
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            
            validate_job_transition(job_id, job.status, status)
            
            previous = job.status
            job.status = status
            for field_name, value in patch.items():
                setattr(job, field_name, value)
            
            self.persist()
            if previous != status:
                logger.info(f"[JobStore] Job {job_id}: {previous.value} -> {status.value}")
            return job.model_copy(deep=True)
    
    def update_progress(self, job_id: str, progress: ProgressSnapshot) -> Optional[Job]:
        """
        Record the latest progress of a processing job.
        
        Progress is not persisted on its own; it is written with the next
        status change.
        
        Returns:
            A copy of the updated job, or None if the job is unknown or not processing
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                logger.debug(f"[JobStore] Ignoring progress for job {job_id} (not processing)")
                return None
            job.progress = progress.model_copy()
            return job.model_copy(deep=True)
    
    def clear_terminal(self) -> int:
        """
        Remove every completed, failed and cancelled job, then persist.
        
        Returns:
            Number of jobs removed
        """
        with self._lock:
            terminal_ids = [
                job_id for job_id, job in self._jobs.items()
                if job.status in TERMINAL_JOB_STATES
            ]
            for job_id in terminal_ids:
                del self._jobs[job_id]
            self.persist()
            logger.info(f"[JobStore] Cleared {len(terminal_ids)} finished job(s)")
            return len(terminal_ids)
    
    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    
    def persist(self) -> bool:
        """
        Rewrite the snapshot with the current state.
        
        Failures are logged and kept in last_persistence_error; they never
        raise, because in-memory state remains the source of truth.
        
        Returns:
            True if written (or no snapshot configured), False on failure
        """
        if self._snapshot is None:
            return True
        
        with self._lock:
            jobs_data = [job.model_dump(mode="json") for job in self._jobs.values()]
            try:
                self._snapshot.write(jobs_data, self.config_payload)
            except PersistenceError as e:
                self.last_persistence_error = e
                logger.error(f"[JobStore] Snapshot write failed, keeping in-memory state: {e}")
                return False
            
            self.last_persistence_error = None
            return True
    
    def load(self) -> Optional[Dict[str, Any]]:
        """
        Load jobs from the snapshot, replacing in-memory state.
        
        Jobs that were processing when the snapshot was written have lost
        their process; they come back as queued and eligible for promotion.
        Unreadable snapshots and malformed job entries are logged and skipped.
        
        Returns:
            The persisted config section, if any
        """
        if self._snapshot is None:
            return None
        
        try:
            payload = self._snapshot.read()
        except LoadError as e:
            self.last_persistence_error = e
            logger.error(f"[JobStore] {e}; starting with an empty queue")
            return None
        
        loaded: Dict[str, Job] = {}
        recovered = 0
        for entry in payload["jobs"]:
            try:
                job = Job.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"[JobStore] Skipping malformed job in snapshot: {e}")
                continue
            
            if job.status == JobStatus.PROCESSING:
                job.status = JobStatus.QUEUED
                job.progress = None
                job.started_at = None
                job.cancel_requested = False
                recovered += 1
            
            loaded[job.id] = job
        
        with self._lock:
            self._jobs = loaded
            self.config_payload = payload["config"]
        
        logger.info(
            f"[JobStore] Loaded {len(loaded)} job(s) from {self._snapshot.path}"
            + (f", {recovered} interrupted job(s) requeued" if recovered else "")
        )
        return payload["config"]
