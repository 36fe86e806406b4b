"""
Per-job log files.

Every job gets one text file, <log_dir>/<job_id>.log, holding timestamped
runner messages and the transcoder's raw diagnostic stream.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import TextIO

from .errors import LogNotFoundError

logger = logging.getLogger(__name__)


class JobLogWriter:
    """
    Append-only writer for one job's log.
    
    Safe to share between the thread reading progress and the thread
    draining the diagnostic stream.
    """
    
    def __init__(self, path: Path, handle: TextIO):
        self.path = path
        self._handle = handle
        self._lock = threading.Lock()
        self._closed = False
    
    def write(self, message: str) -> None:
        """Append one timestamped line. Writes after close are dropped."""
        line = f"[{datetime.now().isoformat()}] {message.rstrip()}\n"
        with self._lock:
            if self._closed:
                return
            self._handle.write(line)
            self._handle.flush()
    
    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._closed = True
                self._handle.close()


class JobLogStore:
    """Locates, opens and reads per-job log files."""
    
    def __init__(self, log_dir: Path):
        self.log_dir = Path(log_dir)
    
    def path_for(self, job_id: str) -> Path:
        return self.log_dir / f"{job_id}.log"
    
    def open_for_append(self, job_id: str) -> JobLogWriter:
        """
        Open (creating if needed) the log for a job.
        
        Raises:
            OSError: If the log directory or file cannot be created
        """
        self.log_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(job_id)
        handle = open(path, "a", encoding="utf-8")
        return JobLogWriter(path, handle)
    
    def exists(self, job_id: str) -> bool:
        return self.path_for(job_id).is_file()
    
    def read(self, job_id: str) -> str:
        """
        Read the full log of a job.
        
        Raises:
            LogNotFoundError: If no log exists for the job
        """
        path = self.path_for(job_id)
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError as e:
            raise LogNotFoundError(job_id, str(path)) from e
