"""
Jobs: the unit of work of the encoding queue.

This package owns the Job model, the status state machine and the Job
Store. It does NOT spawn processes or touch media files.
"""

from .errors import (
    JobError,
    JobNotFoundError,
    InvalidStateTransitionError,
    JobValidationError,
    JobNotRemovableError,
)
from .models import (
    JobStatus,
    FailureKind,
    ProgressSnapshot,
    JobResult,
    JobSpec,
    Job,
    generate_job_id,
)
from .state import (
    TERMINAL_JOB_STATES,
    is_job_terminal,
    can_transition_job,
    validate_job_transition,
)
from .store import JobStore

__all__ = [
    # Errors
    "JobError",
    "JobNotFoundError",
    "InvalidStateTransitionError",
    "JobValidationError",
    "JobNotRemovableError",
    # Models
    "JobStatus",
    "FailureKind",
    "ProgressSnapshot",
    "JobResult",
    "JobSpec",
    "Job",
    "generate_job_id",
    # State validation
    "TERMINAL_JOB_STATES",
    "is_job_terminal",
    "can_transition_job",
    "validate_job_transition",
    # Store
    "JobStore",
]
