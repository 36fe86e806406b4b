"""
Recodarr CLI - thin entrypoint for operator commands.

Commands:
- serve: run the HTTP queue service
- jobs:  list the persisted queue
- log:   print a job's transcoder log
- run:   encode one file through the queue and wait for the result

Exit Codes:
===========
- 0: Success
- 1: Validation error
- 2: Execution error (job failed or was cancelled)
- 4: System error (file not found, unreadable snapshot, etc.)
"""

import argparse
import json
import sys
import threading
from pathlib import Path
from typing import List, NoReturn, Optional

from .execution import LogNotFoundError
from .jobs import JobStatus, JobStore, JobValidationError
from .persistence import SnapshotFile
from .queue import QueueEvent, QueueEventType
from .settings import AppSettings


def _settings(args: argparse.Namespace) -> AppSettings:
    return AppSettings.from_env(
        data_dir=getattr(args, "data_dir", None),
        ffmpeg_path=getattr(args, "ffmpeg", None),
        log_level=getattr(args, "log_level", None),
    )


def cmd_serve(args: argparse.Namespace) -> NoReturn:
    """Run the HTTP service until interrupted."""
    import uvicorn
    
    from .main import create_app
    
    settings = _settings(args)
    host = args.host or settings.host
    port = args.port or settings.port
    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.log_level.lower())
    sys.exit(0)


def cmd_jobs(args: argparse.Namespace) -> NoReturn:
    """Print the persisted queue without starting anything."""
    settings = _settings(args)
    store = JobStore(SnapshotFile(settings.resolved_snapshot_path))
    store.load()
    if store.last_persistence_error is not None:
        print(f"ERROR: {store.last_persistence_error}", file=sys.stderr)
        sys.exit(4)
    
    jobs = store.list()
    if args.json:
        print(json.dumps([job.model_dump(mode="json") for job in jobs], indent=2))
        sys.exit(0)
    
    if not jobs:
        print("Queue is empty")
        sys.exit(0)
    for job in jobs:
        percent = job.progress.percent if job.progress and job.progress.percent is not None else 0.0
        print(f"{job.id}  {job.status.value:<10}  p{job.priority:<3}  {percent:5.1f}%  {job.input_path}")
    sys.exit(0)


def cmd_log(args: argparse.Namespace) -> NoReturn:
    """Print the log of one job."""
    from .execution import JobLogStore
    
    settings = _settings(args)
    try:
        print(JobLogStore(settings.resolved_log_dir).read(args.job_id), end="")
    except LogNotFoundError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(4)
    sys.exit(0)


def cmd_run(args: argparse.Namespace) -> NoReturn:
    """Encode a single file and print the job as JSON."""
    from .main import build_queue, configure_logging
    
    settings = _settings(args).model_copy(update={"auto_start": True})
    configure_logging(settings.log_level)
    
    preset = {}
    if args.preset:
        try:
            preset = json.loads(Path(args.preset).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            print(f"ERROR: Cannot read preset {args.preset}: {e}", file=sys.stderr)
            sys.exit(4)
    
    scheduler = build_queue(settings)
    scheduler.pause_processing()
    
    done = threading.Event()
    job_id_holder: List[str] = []
    terminal_events = {
        QueueEventType.JOB_COMPLETED,
        QueueEventType.JOB_FAILED,
        QueueEventType.JOB_CANCELLED,
    }
    
    def on_event(event: QueueEvent) -> None:
        if event.type in terminal_events and job_id_holder and event.job_id == job_id_holder[0]:
            done.set()
    
    scheduler.events.subscribe(on_event)
    
    try:
        job = scheduler.add_job(
            input_path=str(Path(args.input).absolute()),
            output_path=str(Path(args.output).absolute()),
            overwrite_input=args.overwrite,
            preset=preset,
            priority=args.priority,
        )
    except JobValidationError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)
    
    job_id_holder.append(job.id)
    
    scheduler.start_processing()
    
    try:
        done.wait()
    except KeyboardInterrupt:
        scheduler.cancel_job(job.id)
        done.wait()
    finally:
        scheduler.shutdown(wait=True)
    
    final = scheduler.get_job(job.id)
    print(json.dumps(final.model_dump(mode="json"), indent=2))
    sys.exit(0 if final.status == JobStatus.COMPLETED else 2)


def main(argv: Optional[List[str]] = None) -> NoReturn:
    """
    Main CLI entrypoint.
    
    Parses arguments and dispatches to subcommands.
    """
    parser = argparse.ArgumentParser(
        prog='recodarr',
        description='Recodarr - media library transcoding queue',
    )
    parser.add_argument('--data-dir', type=Path, default=None, help='State directory (default: ./recodarr-data)')
    parser.add_argument('--ffmpeg', default=None, help='ffmpeg executable (default: ffmpeg on PATH)')
    parser.add_argument('--log-level', default=None, help='Logging level (default: INFO)')
    
    subparsers = parser.add_subparsers(dest='command', required=True, help='Command to execute')
    
    # Serve command
    parser_serve = subparsers.add_parser('serve', help='Run the HTTP queue service')
    parser_serve.add_argument('--host', default=None, help='Bind address (default: 127.0.0.1)')
    parser_serve.add_argument('--port', type=int, default=None, help='Port (default: 8085)')
    parser_serve.set_defaults(func=cmd_serve)
    
    # Jobs command
    parser_jobs = subparsers.add_parser('jobs', help='List the persisted queue')
    parser_jobs.add_argument('--json', action='store_true', help='Print jobs as JSON')
    parser_jobs.set_defaults(func=cmd_jobs)
    
    # Log command
    parser_log = subparsers.add_parser('log', help="Print a job's transcoder log")
    parser_log.add_argument('job_id', help='Job identifier')
    parser_log.set_defaults(func=cmd_log)
    
    # Run command
    parser_run = subparsers.add_parser('run', help='Encode one file and wait for the result')
    parser_run.add_argument('input', help='Input media file')
    parser_run.add_argument('output', help='Output (or staging, with --overwrite) path')
    parser_run.add_argument('--overwrite', action='store_true', help='Replace the input with the result')
    parser_run.add_argument('--preset', default=None, help='Preset JSON file')
    parser_run.add_argument('--priority', type=int, default=0, help='Job priority (default: 0)')
    parser_run.set_defaults(func=cmd_run)
    
    # Parse and dispatch
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == '__main__':
    main()
