"""
State transition validation for jobs.

Job lifecycle:
    queued -> processing -> completed | failed | cancelled
    queued -> cancelled

INVARIANT: Terminal job states (COMPLETED, FAILED, CANCELLED) are immutable.
A job that needs to run again is re-created as a new job with a new id.
"""

from typing import FrozenSet, Set, Tuple

from .errors import InvalidStateTransitionError
from .models import JobStatus


TERMINAL_JOB_STATES: FrozenSet[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})

# States that may be removed from the store without cancelling first
REMOVABLE_JOB_STATES: FrozenSet[JobStatus] = TERMINAL_JOB_STATES | {JobStatus.QUEUED}


_JOB_TRANSITIONS: Set[Tuple[JobStatus, JobStatus]] = {
    # Promotion
    (JobStatus.QUEUED, JobStatus.PROCESSING),
    
    # Process exit (and finalization, when overwriting)
    (JobStatus.PROCESSING, JobStatus.COMPLETED),
    (JobStatus.PROCESSING, JobStatus.FAILED),
    
    # Operator cancellation
    (JobStatus.QUEUED, JobStatus.CANCELLED),
    (JobStatus.PROCESSING, JobStatus.CANCELLED),
}


def is_job_terminal(status: JobStatus) -> bool:
    """Check if a job status is terminal (immutable)."""
    return status in TERMINAL_JOB_STATES


def can_transition_job(from_status: JobStatus, to_status: JobStatus) -> bool:
    """
    Check if a job state transition is legal.
    
    Staying in the same non-terminal state is allowed so that field
    patches can be applied without a status change.
    
    Args:
        from_status: Current job status
        to_status: Target job status
        
    Returns:
        True if the transition is allowed, False otherwise
    """
    if is_job_terminal(from_status):
        return False
    
    if from_status == to_status:
        return True
    
    return (from_status, to_status) in _JOB_TRANSITIONS


def validate_job_transition(job_id: str, from_status: JobStatus, to_status: JobStatus) -> None:
    """
    Validate a job state transition, raising an exception if illegal.
    
    Raises:
        InvalidStateTransitionError: If the transition is not allowed
    """
    if not can_transition_job(from_status, to_status):
        raise InvalidStateTransitionError(job_id, from_status.value, to_status.value)
