"""
Queue snapshot file.

The whole queue is serialized to a single JSON document and rewritten
wholesale on every mutating operation:

    {"jobs": [...], "config": {...}, "saved_at": "2026-01-01T12:00:00"}

Writes are atomic: the document goes to a sibling temp file which is
fsync'ed and then os.replace'd over the target, so a crash mid-write
leaves either the previous snapshot or the new one, never half of one.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import LoadError, SaveError

logger = logging.getLogger(__name__)


class SnapshotFile:
    """
    Atomic JSON snapshot of the job queue.
    
    A missing file is an empty queue, not an error.
    """
    
    def __init__(self, path: Path):
        self.path = Path(path)
    
    @property
    def temp_path(self) -> Path:
        return self.path.with_name(self.path.name + ".tmp")
    
    def exists(self) -> bool:
        return self.path.is_file()
    
    def read(self) -> Dict[str, Any]:
        """
        Read the snapshot document.
        
        Returns:
            Dict with "jobs" (list) and "config" (dict or None)
            
        Raises:
            LoadError: If the file exists but cannot be read or parsed
        """
        if not self.path.exists():
            return {"jobs": [], "config": None}
        
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            raise LoadError(self.path, f"Failed to read snapshot: {e}") from e
        
        if not isinstance(payload, dict) or not isinstance(payload.get("jobs", []), list):
            raise LoadError(self.path, "Snapshot is not a {jobs: [...]} document")
        
        config = payload.get("config")
        return {
            "jobs": payload.get("jobs", []),
            "config": config if isinstance(config, dict) else None,
        }
    
    def write(self, jobs: List[Dict[str, Any]], config: Optional[Dict[str, Any]] = None) -> None:
        """
        Atomically replace the snapshot document.
        
        Raises:
            SaveError: If the document could not be written
        """
        document: Dict[str, Any] = {"jobs": jobs}
        if config is not None:
            document["config"] = config
        document["saved_at"] = datetime.now().isoformat()
        
        tmp_path = self.temp_path
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning(f"[Snapshot] Could not remove {tmp_path}: {cleanup_error}")
            raise SaveError(self.path, f"Failed to write snapshot: {e}") from e
        
        logger.debug(f"[Snapshot] Wrote {len(jobs)} job(s) to {self.path}")
