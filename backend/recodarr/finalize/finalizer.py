"""
File Finalizer: crash-safe replacement of a destination file.

Protocol (temp != destination):
1. Validate the temp file (exists, regular, non-empty). On failure nothing
   is touched.
2. If the destination exists, rename it to <dest>.backup-<epochMillis>
   (retried). If that keeps failing, continue without a backup.
3. Copy temp -> destination and compare sizes (retried).
4. Verified: delete temp, then the backup. Cleanup failures are logged only.
5. All copy attempts failed: rename the backup back over the destination.
   Without a backup (or if the restore fails) the destination may be
   partial; the result is flagged data_at_risk.

INVARIANT: the temp file is deleted only after a verified copy.
"""

import logging
import os
import shutil
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import CopyVerificationError, FinalizeError, FinalizeValidationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class FinalizePolicy(BaseModel):
    """Retry and naming constants for finalization."""
    
    model_config = ConfigDict(extra="forbid")
    
    max_attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = Field(default=0.5, ge=0.0)
    backup_suffix: str = Field(default="backup", min_length=1)


class FinalizeResult(BaseModel):
    """Detailed outcome of one finalize() call."""
    
    model_config = ConfigDict(extra="forbid")
    
    success: bool
    temp_path: str
    destination_path: str
    is_overwrite: bool = True
    
    backup_path: Optional[str] = None
    backup_created: bool = False
    rolled_back: bool = False
    
    # Failure details
    temp_preserved: bool = False
    data_at_risk: bool = False
    
    attempts: int = 0
    error: Optional[str] = None
    
    def describe_failure(self) -> str:
        """Operator-facing failure text including every path worth inspecting."""
        if self.success:
            return ""
        parts = [f"Failed to install output at {self.destination_path}: {self.error}"]
        if self.rolled_back:
            parts.append("original restored from backup")
        if self.data_at_risk:
            parts.append(f"DESTINATION MAY BE INCOMPLETE, inspect {self.destination_path}")
            if self.backup_path:
                parts.append(f"backup left at {self.backup_path}")
        if self.temp_preserved:
            parts.append(f"encoded output kept at {self.temp_path}")
        return "; ".join(parts)


class FileFinalizer:
    """
    Installs a finished transcode at its destination.
    
    Two finalize() calls for the same destination are serialized.
    """
    
    def __init__(
        self,
        policy: Optional[FinalizePolicy] = None,
        copy_file: Callable[[str, str], object] = shutil.copyfile,
        rename_file: Callable[[str, str], object] = os.replace,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize finalizer.
        
        Args:
            policy: Retry and naming constants
            copy_file: Copies (src, dst); replaceable for fault injection
            rename_file: Renames (src, dst); replaceable for fault injection
            sleep: Delay between attempts
        """
        self.policy = policy or FinalizePolicy()
        self._copy_file = copy_file
        self._rename_file = rename_file
        self._sleep = sleep
        
        # destination -> [lock, number of callers holding or waiting for it]
        self._path_locks: Dict[str, List] = {}
        self._path_locks_guard = threading.Lock()
    
    @contextmanager
    def _destination_lock(self, destination: str):
        """Serialize finalize() per destination; the entry is dropped once unused."""
        with self._path_locks_guard:
            entry = self._path_locks.get(destination)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._path_locks[destination] = entry
            entry[1] += 1
        
        try:
            with entry[0]:
                yield
        finally:
            with self._path_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._path_locks[destination]
    
    @property
    def locked_destinations(self) -> List[str]:
        """Destinations with a finalize in progress (or waiting)."""
        with self._path_locks_guard:
            return list(self._path_locks)
    
    def backup_path_for(self, destination: str) -> str:
        """Unique backup path next to the destination."""
        base = f"{destination}.{self.policy.backup_suffix}-{int(time.time() * 1000)}"
        candidate = base
        counter = 1
        while os.path.lexists(candidate):
            candidate = f"{base}-{counter}"
            counter += 1
        return candidate
    
    def _validate(self, temp_path: str, destination_path: str) -> None:
        if not temp_path or not destination_path:
            raise FinalizeValidationError(
                f"Invalid paths: temp={temp_path!r}, destination={destination_path!r}"
            )
        try:
            stats = os.stat(temp_path)
        except OSError as e:
            raise FinalizeValidationError(f"Cannot access temp file {temp_path}: {e}") from e
        if not os.path.isfile(temp_path):
            raise FinalizeValidationError(f"Temp file is not a regular file: {temp_path}")
        if stats.st_size == 0:
            raise FinalizeValidationError(f"Temp file is empty: {temp_path}")
    
    def _wait_before_retry(self, attempt: int) -> None:
        if attempt < self.policy.max_attempts and self.policy.retry_delay_seconds > 0:
            self._sleep(self.policy.retry_delay_seconds)
    
    def _create_backup(self, destination: str) -> Optional[str]:
        backup = self.backup_path_for(destination)
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                self._rename_file(destination, backup)
                logger.info(f"[Finalizer] Created backup at {backup} (attempt {attempt})")
                return backup
            except OSError as e:
                logger.warning(f"[Finalizer] Backup attempt {attempt} for {destination} failed: {e}")
                self._wait_before_retry(attempt)
        
        logger.error(
            f"[Finalizer] Could not back up {destination}; attempting direct overwrite"
        )
        return None
    
    def _copy_and_verify(self, temp_path: str, destination: str) -> None:
        self._copy_file(temp_path, destination)
        temp_size = os.stat(temp_path).st_size
        destination_size = os.stat(destination).st_size
        if temp_size != destination_size:
            raise CopyVerificationError(temp_size, destination_size)
    
    def _remove_quietly(self, path: str, what: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[Finalizer] Could not remove {what} {path}: {e}")
    
    def finalize(
        self,
        temp_path: PathLike,
        destination_path: PathLike,
        is_overwrite: bool = True,
    ) -> FinalizeResult:
        """
        Replace destination_path with temp_path.
        
        Args:
            temp_path: Freshly produced output
            destination_path: Where the output must end up
            is_overwrite: Destination is the job's original input
            
        Returns:
            FinalizeResult; never raises for file-system failures
        """
        temp = str(temp_path) if temp_path else ""
        destination = str(destination_path) if destination_path else ""
        
        result = FinalizeResult(
            success=False,
            temp_path=temp,
            destination_path=destination,
            is_overwrite=is_overwrite,
        )
        
        try:
            self._validate(temp, destination)
        except FinalizeValidationError as e:
            logger.error(f"[Finalizer] {e}")
            result.error = str(e)
            result.temp_preserved = bool(temp) and os.path.exists(temp)
            return result
        
        if os.path.abspath(temp) == os.path.abspath(destination):
            logger.info(f"[Finalizer] Temp and destination are the same file, nothing to do: {destination}")
            result.success = True
            return result
        
        with self._destination_lock(os.path.abspath(destination)):
            return self._replace(result, temp, destination)
    
    def _replace(self, result: FinalizeResult, temp: str, destination: str) -> FinalizeResult:
        logger.info(f"[Finalizer] Replacing {destination} with {temp}")
        
        destination_existed = os.path.lexists(destination)
        backup: Optional[str] = None
        if destination_existed:
            backup = self._create_backup(destination)
        result.backup_path = backup
        result.backup_created = backup is not None
        
        last_error: Optional[Exception] = None
        for attempt in range(1, self.policy.max_attempts + 1):
            result.attempts = attempt
            try:
                self._copy_and_verify(temp, destination)
            except (OSError, FinalizeError) as e:
                last_error = e
                logger.warning(f"[Finalizer] Copy attempt {attempt} to {destination} failed: {e}")
                self._wait_before_retry(attempt)
                continue
            
            logger.info(f"[Finalizer] Installed {destination} (attempt {attempt})")
            self._remove_quietly(temp, "temp file")
            if backup is not None:
                self._remove_quietly(backup, "backup file")
            result.success = True
            return result
        
        result.error = str(last_error)
        logger.error(f"[Finalizer] All {self.policy.max_attempts} copy attempts to {destination} failed: {last_error}")
        
        if backup is not None:
            try:
                self._rename_file(backup, destination)
                result.rolled_back = True
                logger.info(f"[Finalizer] Restored original {destination} from backup")
            except OSError as e:
                result.error = f"{result.error}; restore from backup failed: {e}"
                logger.critical(
                    f"[Finalizer] Failed to restore {destination} from {backup}: {e}"
                )
        
        result.data_at_risk = destination_existed and not result.rolled_back
        result.temp_preserved = os.path.exists(temp)
        if result.data_at_risk:
            logger.critical(
                f"[Finalizer] Destination {destination} may be incomplete; "
                f"backup={backup}, temp={temp if result.temp_preserved else 'missing'}"
            )
        return result
