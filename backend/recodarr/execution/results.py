"""
Transcoder run result models.

A RunResult is the single terminal report of one transcoder invocation.
The scheduler converts it into the job's JobResult; when the job
overwrites its input, finalization may still turn a successful run into a
failed job.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..jobs.models import FailureKind, JobResult


BYTES_PER_MB = 1024 * 1024


def bytes_to_mb(size_bytes: Optional[int]) -> Optional[float]:
    """Size in MB rounded to two decimals."""
    if size_bytes is None:
        return None
    return round(size_bytes / BYTES_PER_MB, 2)


def reduction_percent(initial_bytes: Optional[int], final_bytes: Optional[int]) -> Optional[float]:
    """Percent saved relative to the initial size (negative if the file grew)."""
    if not initial_bytes or final_bytes is None:
        return None
    return round((initial_bytes - final_bytes) / initial_bytes * 100.0, 2)


class RunOutcome(str, Enum):
    """How the transcoder process ended."""
    
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunResult(BaseModel):
    """Terminal report of one transcoder run."""
    
    model_config = ConfigDict(extra="forbid")
    
    outcome: RunOutcome
    output_path: str
    exit_code: Optional[int] = None
    initial_size_bytes: Optional[int] = None
    final_size_bytes: Optional[int] = None
    error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    
    @property
    def succeeded(self) -> bool:
        return self.outcome == RunOutcome.SUCCEEDED
    
    def to_job_result(self, output_path: Optional[str] = None) -> JobResult:
        """
        Convert to the JobResult attached to the job.
        
        Args:
            output_path: Where the output finally lives, if not where it was written
        """
        if self.succeeded:
            return JobResult(
                success=True,
                output_path=output_path or self.output_path,
                initial_size_mb=bytes_to_mb(self.initial_size_bytes),
                final_size_mb=bytes_to_mb(self.final_size_bytes),
                reduction_percent=reduction_percent(self.initial_size_bytes, self.final_size_bytes),
            )
        return JobResult(
            success=False,
            initial_size_mb=bytes_to_mb(self.initial_size_bytes),
            error=self.error,
            failure_kind=self.failure_kind,
        )
