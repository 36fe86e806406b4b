"""
Transcoder Runner: one external ffmpeg process per job.

TranscoderRunner.start(job) spawns the process and returns a
TranscodeHandle. Iterating handle.stream() yields ProgressSnapshots in the
order ffmpeg printed them and always ends with exactly one RunResult,
whether the process exited on its own, failed to spawn, or was cancelled.

Streams:
- stdout: `-progress pipe:1` key=value blocks, parsed by ProgressParser
- stderr: diagnostic text, drained by a helper thread into the job log;
  the last lines become the failure text on non-zero exit

Cancellation is cooperative: terminate() first, kill() if the process is
still alive after the grace window. A cancel that races with natural exit
is resolved under the handle lock, so the terminal report is never
duplicated.

The runner never mutates a Job; it only reads the fields it needs.
"""

import logging
import os
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Iterator, List, Optional, Union

from ..jobs.models import FailureKind, Job, ProgressSnapshot
from .command import build_transcode_command
from .errors import SpawnError
from .logs import JobLogStore, JobLogWriter
from .progress import ProgressParser, expected_totals
from .results import RunOutcome, RunResult

logger = logging.getLogger(__name__)


DEFAULT_CANCEL_GRACE_SECONDS = 5.0

# Diagnostic lines kept for the failure message
ERROR_TAIL_LINES = 20


def _popen(cmd: List[str]) -> subprocess.Popen:
    """
    Start the transcoder with piped stdout/stderr.
    
    Raises:
        SpawnError: If the executable is missing or cannot be run
    """
    try:
        return subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError as e:
        raise SpawnError(f"Transcoder executable not found: {cmd[0]}") from e
    except PermissionError as e:
        raise SpawnError(f"Permission denied running transcoder: {cmd[0]}") from e
    except OSError as e:
        raise SpawnError(f"Failed to start transcoder: {e}") from e


class TranscodeHandle:
    """
    Supervises one running transcoder process.
    
    Created by TranscoderRunner.start(); not constructed directly.
    """
    
    def __init__(
        self,
        job_id: str,
        input_path: str,
        output_path: str,
        log: Optional[JobLogWriter],
        parser: ProgressParser,
        cancel_grace_seconds: float,
    ):
        self.job_id = job_id
        self.input_path = input_path
        self.output_path = output_path
        self._log = log
        self._parser = parser
        self._cancel_grace_seconds = cancel_grace_seconds
        
        self._process: Optional[subprocess.Popen] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._stderr_tail: Deque[str] = deque(maxlen=ERROR_TAIL_LINES)
        self._kill_timer: Optional[threading.Timer] = None
        
        self._lock = threading.Lock()
        self._cancel_requested = False
        self._finished = False
        self._consumed = False
        
        self.initial_size_bytes: Optional[int] = None
        self._early_result: Optional[RunResult] = None
    
    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None
    
    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested
    
    @property
    def finished(self) -> bool:
        return self._finished
    
    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------
    
    def log_message(self, message: str) -> None:
        if self._log is not None:
            self._log.write(message)
    
    def _fail_early(self, message: str) -> None:
        logger.error(f"[Runner] Job {self.job_id}: {message}")
        self._early_result = RunResult(
            outcome=RunOutcome.FAILED,
            output_path=self.output_path,
            initial_size_bytes=self.initial_size_bytes,
            error=message,
            failure_kind=FailureKind.SPAWN,
        )
    
    def _spawn(self, cmd: List[str]) -> None:
        if not os.path.isfile(self.input_path):
            self._fail_early(f"Input file not found: {self.input_path}")
            return
        
        try:
            self.initial_size_bytes = os.path.getsize(self.input_path)
        except OSError as e:
            self._fail_early(f"Cannot read input file {self.input_path}: {e}")
            return
        
        self.log_message(f"Command: {' '.join(cmd)}")
        logger.info(f"[Runner] Executing: {' '.join(cmd)}")
        
        try:
            self._process = _popen(cmd)
        except SpawnError as e:
            self._fail_early(str(e))
            return
        
        logger.info(f"[Runner] Started PID {self._process.pid} for job {self.job_id}")
        
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr,
            name=f"transcode-stderr-{self.job_id}",
            daemon=True,
        )
        self._stderr_thread.start()
    
    def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        for line in self._process.stderr:
            line = line.rstrip()
            if not line:
                continue
            self._stderr_tail.append(line)
            self.log_message(line)
    
    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------
    
    def cancel(self) -> bool:
        """
        Request termination of the process.
        
        Returns:
            True if this call requested cancellation; False if the run had
            already finished or a cancel was already in progress
        """
        with self._lock:
            if self._finished or self._cancel_requested:
                return False
            self._cancel_requested = True
            process = self._process
            
            if process is None:
                return True
            
            logger.info(f"[Runner] Sending SIGTERM to PID {process.pid} (job {self.job_id})")
            self.log_message("[Info] Cancellation requested, terminating transcoder")
            try:
                process.terminate()
            except ProcessLookupError:
                # Already exited; stream() reports the outcome
                return True
            
            self._kill_timer = threading.Timer(self._cancel_grace_seconds, self._force_kill)
            self._kill_timer.daemon = True
            self._kill_timer.start()
            return True
    
    def _force_kill(self) -> None:
        process = self._process
        if process is None or process.poll() is not None:
            return
        logger.warning(f"[Runner] PID {process.pid} did not terminate, sending SIGKILL")
        self.log_message("[Warning] Transcoder did not exit in time, killing")
        try:
            process.kill()
        except ProcessLookupError:
            pass  # exited between poll and kill
    
    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------
    
    def stream(self) -> Iterator[Union[ProgressSnapshot, RunResult]]:
        """
        Yield progress snapshots, then exactly one RunResult.
        
        May only be iterated once.
        """
        with self._lock:
            if self._consumed:
                raise RuntimeError(f"Run of job {self.job_id} has already been consumed")
            self._consumed = True
        
        if self._early_result is not None:
            with self._lock:
                self._finished = True
            self._close_log(self._early_result)
            yield self._early_result
            return
        
        process = self._process
        assert process is not None and process.stdout is not None
        
        try:
            for line in process.stdout:
                snapshot = self._parser.feed_line(line)
                if snapshot is not None:
                    yield snapshot
            exit_code = process.wait()
        finally:
            # Abandoned or broken stream: never leave an orphan process
            if process.poll() is None:
                logger.warning(f"[Runner] Stream for job {self.job_id} closed early, killing PID {process.pid}")
                process.kill()
                process.wait()
        
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=5)
        
        result = self._conclude(exit_code)
        self._close_log(result)
        yield result
    
    def _conclude(self, exit_code: int) -> RunResult:
        with self._lock:
            self._finished = True
            cancelled = self._cancel_requested
            if self._kill_timer is not None:
                self._kill_timer.cancel()
        
        logger.info(f"[Runner] PID {self._process.pid} exited with code {exit_code}")
        
        if cancelled:
            self._remove_partial_output()
            return RunResult(
                outcome=RunOutcome.CANCELLED,
                output_path=self.output_path,
                exit_code=exit_code,
                initial_size_bytes=self.initial_size_bytes,
                error="Cancelled by user",
                failure_kind=FailureKind.CANCELLED,
            )
        
        if exit_code != 0:
            self._remove_partial_output()
            tail = "\n".join(self._stderr_tail)
            error = tail or f"Transcoder exited with code {exit_code}"
            logger.error(f"[Runner] Job {self.job_id} failed with exit code {exit_code}")
            return RunResult(
                outcome=RunOutcome.FAILED,
                output_path=self.output_path,
                exit_code=exit_code,
                initial_size_bytes=self.initial_size_bytes,
                error=error,
                failure_kind=FailureKind.PROCESS,
            )
        
        try:
            final_size = os.path.getsize(self.output_path)
        except OSError:
            return RunResult(
                outcome=RunOutcome.FAILED,
                output_path=self.output_path,
                exit_code=exit_code,
                initial_size_bytes=self.initial_size_bytes,
                error=f"Transcoder exited 0 but output was not created: {self.output_path}",
                failure_kind=FailureKind.PROCESS,
            )
        
        logger.info(f"[Runner] Completed: {self.output_path}")
        return RunResult(
            outcome=RunOutcome.SUCCEEDED,
            output_path=self.output_path,
            exit_code=exit_code,
            initial_size_bytes=self.initial_size_bytes,
            final_size_bytes=final_size,
        )
    
    def _remove_partial_output(self) -> None:
        # The input is never touched here, even if paths were misconfigured
        if os.path.abspath(self.output_path) == os.path.abspath(self.input_path):
            return
        try:
            Path(self.output_path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"[Runner] Could not remove partial output {self.output_path}: {e}")
    
    def _close_log(self, result: RunResult) -> None:
        if result.error and result.error.strip():
            self.log_message(f"[Error] {result.error.strip().splitlines()[-1]}")
        self.log_message(f"--- Encoding Job {self.job_id} finished: {result.outcome.value} ---")
        if self._log is not None:
            self._log.close()


class TranscoderRunner:
    """
    Starts transcoder processes for jobs.
    
    Stateless apart from its configuration; one runner serves every job.
    """
    
    def __init__(
        self,
        log_store: JobLogStore,
        ffmpeg_path: str = "ffmpeg",
        cancel_grace_seconds: float = DEFAULT_CANCEL_GRACE_SECONDS,
        command_builder: Callable[..., List[str]] = build_transcode_command,
    ):
        """
        Initialize runner.
        
        Args:
            log_store: Where per-job logs are written
            ffmpeg_path: Transcoder executable
            cancel_grace_seconds: Time between terminate() and kill() on cancel
            command_builder: Builds the argv from (ffmpeg_path, input, output,
                preset, track_selections)
        """
        self.log_store = log_store
        self.ffmpeg_path = ffmpeg_path
        self.cancel_grace_seconds = cancel_grace_seconds
        self._command_builder = command_builder
    
    def log_path_for(self, job_id: str) -> Path:
        return self.log_store.path_for(job_id)
    
    def start(self, job: Job) -> TranscodeHandle:
        """
        Spawn the transcoder for a job.
        
        Never raises for spawn problems; they surface as a failed
        RunResult from the handle's stream.
        """
        duration, total_frames = expected_totals(job.probe_data)
        
        log: Optional[JobLogWriter]
        try:
            log = self.log_store.open_for_append(job.id)
        except OSError as e:
            logger.warning(f"[Runner] Could not open log for job {job.id}: {e}")
            log = None
        
        handle = TranscodeHandle(
            job_id=job.id,
            input_path=job.input_path,
            output_path=job.output_path,
            log=log,
            parser=ProgressParser(duration=duration, total_frames=total_frames),
            cancel_grace_seconds=self.cancel_grace_seconds,
        )
        
        handle.log_message(f"--- Starting Encoding Job {job.id} ---")
        handle.log_message(f"Input Path: {job.input_path}")
        handle.log_message(f"Output Path: {job.output_path}")
        handle.log_message(f"Overwrite Input: {job.overwrite_input}")
        
        cmd = self._command_builder(
            self.ffmpeg_path,
            job.input_path,
            job.output_path,
            job.preset,
            job.track_selections,
        )
        handle._spawn(cmd)
        return handle
    
    def run(
        self,
        job: Job,
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
    ) -> RunResult:
        """Run a job to completion, blocking. Convenience for CLI and tests."""
        handle = self.start(job)
        for item in handle.stream():
            if isinstance(item, RunResult):
                return item
            if on_progress is not None:
                on_progress(item)
        raise RuntimeError(f"Run of job {job.id} ended without a result")
