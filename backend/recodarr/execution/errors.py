"""
Execution-specific errors.

Spawn and process failures of a single job never escape the runner as
exceptions; they are reported as a failed RunResult. These errors cover
the cases where the caller asked for something that does not exist.
"""


class ExecutionError(Exception):
    """Base exception for execution failures."""
    
    pass


class SpawnError(ExecutionError):
    """
    The transcoder process could not be started.
    
    Raised when:
    - The transcoder executable is missing
    - The executable is not permitted to run
    - The input file does not exist
    """
    
    pass


class LogNotFoundError(ExecutionError):
    """No log file exists for the requested job."""
    
    def __init__(self, job_id: str, path: str):
        self.job_id = job_id
        self.path = path
        super().__init__(f"No log file for job {job_id} at {path}")
