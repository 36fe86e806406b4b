"""
Queue configuration and status models.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class QueueConfig(BaseModel):
    """
    Runtime-mutable queue configuration.
    
    Lowering max_parallel_jobs never aborts running jobs; it only throttles
    future promotions.
    """
    
    model_config = ConfigDict(extra="forbid")
    
    max_parallel_jobs: int = Field(default=2, ge=1)
    auto_start: bool = True


class QueueConfigUpdate(BaseModel):
    """Partial update of the queue configuration."""
    
    model_config = ConfigDict(extra="forbid")
    
    max_parallel_jobs: Optional[int] = Field(default=None, ge=1)
    auto_start: Optional[bool] = None


class QueueStatus(BaseModel):
    """Point-in-time summary of the scheduler."""
    
    model_config = ConfigDict(extra="forbid")
    
    running: bool
    max_parallel_jobs: int
    active_job_ids: List[str] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)
    last_persistence_error: Optional[str] = None
