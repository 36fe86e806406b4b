"""
Recodarr queue service: composition root.

Builds the queue from settings and exposes it over HTTP:

    uvicorn recodarr.main:create_app --factory

There is no module-level queue; everything hangs off app.state.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .catalog import MediaCatalog, probe_media
from .execution import JobLogStore, TranscoderRunner
from .finalize import FileFinalizer, FinalizePolicy
from .jobs import JobStore
from .persistence import SnapshotFile
from .queue import QueueConfig, QueueScheduler
from .routes import queue as queue_routes
from .settings import AppSettings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(threadName)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install the root log format. Later calls only change the level."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger().setLevel(level.upper())


def build_queue(settings: AppSettings) -> QueueScheduler:
    """
    Wire store, runner, finalizer and catalog into a scheduler.
    
    A persisted queue is restored; jobs that were processing when the
    previous process stopped come back queued. A persisted queue config
    overrides the settings defaults.
    """
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    
    store = JobStore(SnapshotFile(settings.resolved_snapshot_path))
    persisted_config = store.load()
    
    config = QueueConfig(
        max_parallel_jobs=settings.max_parallel_jobs,
        auto_start=settings.auto_start,
    )
    if persisted_config:
        try:
            config = QueueConfig(**{**config.model_dump(), **persisted_config})
        except ValueError as e:
            logger.warning(f"[Main] Ignoring invalid persisted queue config: {e}")
    
    runner = TranscoderRunner(
        log_store=JobLogStore(settings.resolved_log_dir),
        ffmpeg_path=settings.ffmpeg_path,
        cancel_grace_seconds=settings.cancel_grace_seconds,
    )
    finalizer = FileFinalizer(
        FinalizePolicy(
            max_attempts=settings.finalize_max_attempts,
            retry_delay_seconds=settings.finalize_retry_delay_seconds,
        )
    )
    catalog = MediaCatalog(settings.resolved_catalog_path)
    
    return QueueScheduler(
        store=store,
        runner=runner,
        finalizer=finalizer,
        catalog=catalog,
        config=config,
        probe=lambda path: probe_media(path, ffprobe_path=settings.ffprobe_path),
    )


def create_app(
    settings: Optional[AppSettings] = None,
    scheduler: Optional[QueueScheduler] = None,
) -> FastAPI:
    """
    Create the FastAPI application.
    
    Args:
        settings: Defaults to AppSettings.from_env()
        scheduler: Pre-built scheduler (tests); built from settings otherwise
    """
    settings = settings or AppSettings.from_env()
    configure_logging(settings.log_level)
    scheduler = scheduler or build_queue(settings)
    
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Restored queues resume as soon as the service is up
        if scheduler.is_running:
            scheduler.force_process_queue()
        yield
        scheduler.shutdown(wait=True, timeout=settings.cancel_grace_seconds + 5)
    
    app = FastAPI(title="Recodarr Queue", version="0.1.0", lifespan=lifespan)
    
    # CORS middleware for the desktop GUI dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    app.state.settings = settings
    app.state.scheduler = scheduler
    
    app.include_router(queue_routes.router)
    
    @app.get("/")
    async def root():
        return {"service": "recodarr-queue", "status": "running"}
    
    return app
