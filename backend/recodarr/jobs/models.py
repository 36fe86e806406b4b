"""
Job data models.

A Job is one requested transcode: an input file, an output (or staging)
path, opaque encoding parameters, and a lifecycle tracked through
JobStatus. Jobs are owned by the JobStore; everything else receives copies.

All models use Pydantic for validation.
State transitions are validated externally (see state.py).
"""

import random
import string
import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """
    Job lifecycle status.
    
    queued -> processing -> completed | failed | cancelled
    queued -> cancelled
    """
    
    QUEUED = "queued"  # Waiting for a worker slot
    PROCESSING = "processing"  # Transcoder process running (or finalizing)
    COMPLETED = "completed"  # Output produced (and installed, if overwriting)
    FAILED = "failed"  # Spawn, process, finalization or internal failure
    CANCELLED = "cancelled"  # Cancelled by operator (terminal)


class FailureKind(str, Enum):
    """
    Why a job ended without success.
    
    FINALIZATION means the encode succeeded but the output could not be
    installed over the original; SPAWN and PROCESS mean no usable output
    was produced.
    """
    
    SPAWN = "spawn"
    PROCESS = "process"
    FINALIZATION = "finalization"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


def generate_job_id() -> str:
    """Generate a job id of the form job_<epochMillis>_<7 base36 chars>."""
    alphabet = string.digits + string.ascii_lowercase
    suffix = "".join(random.choices(alphabet, k=7))
    return f"job_{int(time.time() * 1000)}_{suffix}"


class ProgressSnapshot(BaseModel):
    """Last known progress of a running transcode."""
    
    model_config = ConfigDict(extra="forbid")
    
    percent: Optional[float] = None  # 0.0 - 100.0
    fps: Optional[float] = None
    elapsed: Optional[float] = None  # Encoded media time in seconds
    frame: Optional[int] = None
    total_frames: Optional[int] = None


class JobResult(BaseModel):
    """
    Outcome attached to a job when it reaches a terminal state.
    
    Success populates the size metrics; failure populates error and
    failure_kind. Sizes are in MB rounded to two decimals.
    """
    
    model_config = ConfigDict(extra="forbid")
    
    success: bool
    output_path: Optional[str] = None
    initial_size_mb: Optional[float] = None
    final_size_mb: Optional[float] = None
    reduction_percent: Optional[float] = None
    error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None


class JobSpec(BaseModel):
    """
    A transcode request as submitted by a producer (GUI, automation, scheduler).
    
    preset, probe_data and track_selections are opaque to the queue; they
    are only consumed when the transcoder argument list is built.
    """
    
    model_config = ConfigDict(extra="forbid")
    
    input_path: str
    output_path: str
    overwrite_input: bool = False
    preset: Dict[str, Any] = Field(default_factory=dict)
    probe_data: Dict[str, Any] = Field(default_factory=dict)
    track_selections: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    priority: int = 0


class Job(BaseModel):
    """
    A single transcode job.
    
    id is assigned once at creation and never changes; it is the join key
    for log files and media catalog updates.
    """
    
    model_config = ConfigDict(extra="forbid")
    
    # Identity
    id: str = Field(default_factory=generate_job_id)
    
    # Request
    input_path: str
    output_path: str
    overwrite_input: bool = False
    preset: Dict[str, Any] = Field(default_factory=dict)
    probe_data: Dict[str, Any] = Field(default_factory=dict)
    track_selections: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    priority: int = 0
    
    # State
    status: JobStatus = JobStatus.QUEUED
    progress: Optional[ProgressSnapshot] = None
    result: Optional[JobResult] = None
    cancel_requested: bool = False
    log_path: Optional[str] = None
    
    # Timestamps
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    
    @classmethod
    def from_spec(cls, spec: JobSpec) -> "Job":
        """Create a queued job from a submitted spec."""
        return cls(**spec.model_dump())
    
    @property
    def final_path(self) -> str:
        """Where the transcoded content ends up once the job completes."""
        return self.input_path if self.overwrite_input else self.output_path
    
    def duration_seconds(self) -> Optional[float]:
        """Wall-clock processing time, once started and finished."""
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()
