"""
Execution: running the external transcoder for one job.

This package builds the ffmpeg argument list, supervises the process,
parses its progress stream and writes the per-job log. It has no
knowledge of the queue.
"""

from .errors import ExecutionError, SpawnError, LogNotFoundError
from .command import build_transcode_command, TRACK_KEEP, TRACK_CONVERT, TRACK_DISCARD
from .progress import ProgressParser, expected_totals, parse_out_time
from .results import RunOutcome, RunResult, bytes_to_mb, reduction_percent
from .logs import JobLogStore, JobLogWriter
from .runner import TranscoderRunner, TranscodeHandle, DEFAULT_CANCEL_GRACE_SECONDS

__all__ = [
    # Errors
    "ExecutionError",
    "SpawnError",
    "LogNotFoundError",
    # Command
    "build_transcode_command",
    "TRACK_KEEP",
    "TRACK_CONVERT",
    "TRACK_DISCARD",
    # Progress
    "ProgressParser",
    "expected_totals",
    "parse_out_time",
    # Results
    "RunOutcome",
    "RunResult",
    "bytes_to_mb",
    "reduction_percent",
    # Logs
    "JobLogStore",
    "JobLogWriter",
    # Runner
    "TranscoderRunner",
    "TranscodeHandle",
    "DEFAULT_CANCEL_GRACE_SECONDS",
]
