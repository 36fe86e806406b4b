"""
Application settings.

Defaults put all state under ./recodarr-data:

    recodarr-data/
        queue.json      persisted queue snapshot
        catalog.db      media catalog
        logs/<job>.log  per-job transcoder logs

Every field can be overridden with a RECODARR_* environment variable.
"""

import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


ENV_PREFIX = "RECODARR_"

# Environment variable -> settings field
_ENV_FIELDS: Dict[str, str] = {
    "DATA_DIR": "data_dir",
    "SNAPSHOT_PATH": "snapshot_path",
    "LOG_DIR": "log_dir",
    "CATALOG_PATH": "catalog_path",
    "FFMPEG": "ffmpeg_path",
    "FFPROBE": "ffprobe_path",
    "MAX_PARALLEL_JOBS": "max_parallel_jobs",
    "AUTO_START": "auto_start",
    "FINALIZE_MAX_ATTEMPTS": "finalize_max_attempts",
    "FINALIZE_RETRY_DELAY": "finalize_retry_delay_seconds",
    "CANCEL_GRACE_SECONDS": "cancel_grace_seconds",
    "LOG_LEVEL": "log_level",
    "HOST": "host",
    "PORT": "port",
}


class AppSettings(BaseModel):
    """Resolved service configuration."""
    
    model_config = ConfigDict(extra="forbid")
    
    data_dir: Path = Path("recodarr-data")
    snapshot_path: Optional[Path] = None
    log_dir: Optional[Path] = None
    catalog_path: Optional[Path] = None
    
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    
    # Initial queue configuration; a persisted config takes precedence
    max_parallel_jobs: int = Field(default=2, ge=1)
    auto_start: bool = True
    
    finalize_max_attempts: int = Field(default=3, ge=1)
    finalize_retry_delay_seconds: float = Field(default=0.5, ge=0.0)
    cancel_grace_seconds: float = Field(default=5.0, gt=0.0)
    
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8085
    
    @property
    def resolved_snapshot_path(self) -> Path:
        return self.snapshot_path or self.data_dir / "queue.json"
    
    @property
    def resolved_log_dir(self) -> Path:
        return self.log_dir or self.data_dir / "logs"
    
    @property
    def resolved_catalog_path(self) -> Path:
        return self.catalog_path or self.data_dir / "catalog.db"
    
    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "AppSettings":
        """
        Build settings from RECODARR_* variables.
        
        Explicit keyword overrides win over the environment. Values are
        validated (and coerced) by pydantic.
        
        Raises:
            pydantic.ValidationError: If a value cannot be coerced
        """
        environ = os.environ if environ is None else environ
        values = {}
        for suffix, field_name in _ENV_FIELDS.items():
            raw = environ.get(ENV_PREFIX + suffix)
            if raw is not None and raw != "":
                values[field_name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
