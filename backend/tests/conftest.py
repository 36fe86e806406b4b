"""
Shared fixtures for the queue tests.

FakeRunner stands in for TranscoderRunner in scheduler and route tests:
each started job blocks until released (or cancelled), so tests control
exactly when slots free up.
"""

import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from recodarr.execution import JobLogStore, RunOutcome, RunResult
from recodarr.jobs import FailureKind, Job, ProgressSnapshot


class FakeHandle:
    """Scripted transcoder run."""
    
    def __init__(self, runner: "FakeRunner", job: Job):
        self.runner = runner
        self.job = job
        self.release = threading.Event()
        self.cancelled = False
        self._finished = False
    
    @property
    def finished(self) -> bool:
        return self._finished
    
    def cancel(self) -> bool:
        if self._finished or self.cancelled:
            return False
        self.cancelled = True
        self.release.set()
        return True
    
    def stream(self):
        with self.runner.lock:
            self.runner.running += 1
            self.runner.max_running = max(self.runner.max_running, self.runner.running)
        try:
            for percent in self.runner.progress_steps:
                yield ProgressSnapshot(percent=percent, fps=24.0)
            
            if not self.runner.auto_release:
                self.release.wait(timeout=10)
            
            outcome = self.runner.outcomes.get(Path(self.job.input_path).name, RunOutcome.SUCCEEDED)
            if self.cancelled:
                outcome = RunOutcome.CANCELLED
            
            if outcome == RunOutcome.SUCCEEDED:
                Path(self.job.output_path).write_bytes(b"encoded" * 10)
                result = RunResult(
                    outcome=outcome,
                    output_path=self.job.output_path,
                    exit_code=0,
                    initial_size_bytes=2 * 1024 * 1024,
                    final_size_bytes=1024 * 1024,
                )
            elif outcome == RunOutcome.CANCELLED:
                result = RunResult(
                    outcome=outcome,
                    output_path=self.job.output_path,
                    exit_code=-15,
                    error="Cancelled by user",
                    failure_kind=FailureKind.CANCELLED,
                )
            else:
                result = RunResult(
                    outcome=outcome,
                    output_path=self.job.output_path,
                    exit_code=1,
                    error="Invalid data found when processing input",
                    failure_kind=FailureKind.PROCESS,
                )
        finally:
            with self.runner.lock:
                self.runner.running -= 1
        
        self._finished = True
        yield result


class FakeRunner:
    """Records started jobs and the peak number of concurrent runs."""
    
    def __init__(self, log_dir: Path):
        self.log_store = JobLogStore(log_dir)
        self.lock = threading.Lock()
        self.handles: Dict[str, FakeHandle] = {}
        self.started: List[str] = []
        self.running = 0
        self.max_running = 0
        self.auto_release = False
        self.progress_steps: List[float] = [50.0]
        self.outcomes: Dict[str, RunOutcome] = {}
        # input basename -> exception raised by start()
        self.start_errors: Dict[str, Exception] = {}
    
    def start(self, job: Job) -> FakeHandle:
        error = self.start_errors.get(Path(job.input_path).name)
        if error is not None:
            raise error
        handle = FakeHandle(self, job)
        with self.lock:
            self.handles[job.id] = handle
            self.started.append(job.id)
        writer = self.log_store.open_for_append(job.id)
        writer.write(f"--- Starting Encoding Job {job.id} ---")
        writer.close()
        return handle
    
    def release(self, job_id: str) -> None:
        self.handles[job_id].release.set()
    
    def release_all(self) -> None:
        with self.lock:
            handles = list(self.handles.values())
        for handle in handles:
            handle.release.set()


@pytest.fixture
def fake_runner(tmp_path) -> FakeRunner:
    runner = FakeRunner(tmp_path / "logs")
    yield runner
    runner.release_all()


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    """Poll a predicate until it holds (or fail the test after a timeout)."""
    
    def _wait(predicate: Callable[[], bool], timeout: float = 5.0, message: Optional[str] = None) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        pytest.fail(message or "Condition not reached in time")
    
    return _wait


@pytest.fixture
def media_dir(tmp_path) -> Path:
    directory = tmp_path / "library"
    directory.mkdir()
    return directory


@pytest.fixture
def make_media(media_dir) -> Callable[[str, bytes], Path]:
    """Create a fake media file in the library directory."""
    
    def _make(name: str, content: bytes = b"original-media" * 100) -> Path:
        path = media_dir / name
        path.write_bytes(content)
        return path
    
    return _make
