"""
Job-specific error types.

All errors inherit from JobError for easy catching.
Errors are explicit and provide actionable messages.
"""


class JobError(Exception):
    """Base exception for all job-related failures."""
    pass


class JobNotFoundError(JobError):
    """Raised when a job cannot be found in the store."""
    
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidStateTransitionError(JobError):
    """Raised when attempting an illegal state transition."""
    
    def __init__(self, job_id: str, current_state: str, target_state: str):
        self.job_id = job_id
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Invalid job state transition for {job_id}: "
            f"{current_state} -> {target_state}"
        )


class JobValidationError(JobError):
    """
    Raised when a job spec is rejected before it enters the queue.
    
    Validation errors never create a job and never spawn a process.
    """
    
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class JobNotRemovableError(JobError):
    """Raised when a processing job is removed without being cancelled first."""
    
    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(
            f"Job {job_id} cannot be removed while {status}; cancel it first"
        )
