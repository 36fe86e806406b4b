"""
Queue lifecycle events.

Two ways to observe the queue:
- set_listener(QueueListener(...)): one callback bundle; registering again
  replaces the previous bundle entirely.
- subscribe(handler): any number of handlers receiving QueueEvent objects.

Every callback is guarded. An exception raised by a subscriber is logged
and never reaches the scheduler.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional

from ..jobs.models import Job, JobResult, ProgressSnapshot

logger = logging.getLogger(__name__)


class QueueEventType(str, Enum):
    JOB_ADDED = "job_added"
    JOB_STARTED = "job_started"
    JOB_PROGRESS = "job_progress"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_CANCELLED = "job_cancelled"
    JOB_REMOVED = "job_removed"
    QUEUE_EMPTY = "queue_empty"
    QUEUE_STARTED = "queue_started"
    QUEUE_PAUSED = "queue_paused"
    HISTORY_CLEARED = "history_cleared"


@dataclass
class QueueEvent:
    """One emitted lifecycle event."""
    
    type: QueueEventType
    job: Optional[Job] = None
    job_id: Optional[str] = None
    progress: Optional[ProgressSnapshot] = None
    result: Optional[JobResult] = None
    error: Optional[str] = None
    count: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class QueueListener:
    """
    Callback bundle. Unset callbacks are skipped.
    
    Signatures:
        on_job_added(job)
        on_job_started(job)
        on_job_progress(job, progress)
        on_job_completed(job, result)
        on_job_failed(job, error)
        on_job_cancelled(job)
        on_job_removed(job_id)
        on_queue_empty()
        on_queue_started()
        on_queue_paused()
        on_history_cleared(count)
    """
    
    on_job_added: Optional[Callable[[Job], Any]] = None
    on_job_started: Optional[Callable[[Job], Any]] = None
    on_job_progress: Optional[Callable[[Job, ProgressSnapshot], Any]] = None
    on_job_completed: Optional[Callable[[Job, JobResult], Any]] = None
    on_job_failed: Optional[Callable[[Job, str], Any]] = None
    on_job_cancelled: Optional[Callable[[Job], Any]] = None
    on_job_removed: Optional[Callable[[str], Any]] = None
    on_queue_empty: Optional[Callable[[], Any]] = None
    on_queue_started: Optional[Callable[[], Any]] = None
    on_queue_paused: Optional[Callable[[], Any]] = None
    on_history_cleared: Optional[Callable[[int], Any]] = None


def _listener_call(listener: QueueListener, event: QueueEvent) -> None:
    callback = getattr(listener, f"on_{event.type.value}", None)
    if callback is None:
        return
    
    if event.type in (QueueEventType.JOB_ADDED, QueueEventType.JOB_STARTED, QueueEventType.JOB_CANCELLED):
        callback(event.job)
    elif event.type == QueueEventType.JOB_PROGRESS:
        callback(event.job, event.progress)
    elif event.type == QueueEventType.JOB_COMPLETED:
        callback(event.job, event.result)
    elif event.type == QueueEventType.JOB_FAILED:
        callback(event.job, event.error)
    elif event.type == QueueEventType.JOB_REMOVED:
        callback(event.job_id)
    elif event.type == QueueEventType.HISTORY_CLEARED:
        callback(event.count)
    else:
        callback()


class EventBus:
    """Delivers QueueEvents to the listener bundle and subscribers, in emit order."""
    
    def __init__(self):
        self._lock = threading.Lock()
        self._listener: Optional[QueueListener] = None
        self._subscribers: List[Callable[[QueueEvent], Any]] = []
    
    def set_listener(self, listener: Optional[QueueListener]) -> None:
        """Replace the callback bundle (None clears it)."""
        with self._lock:
            self._listener = listener
    
    def subscribe(self, handler: Callable[[QueueEvent], Any]) -> Callable[[], None]:
        """
        Add an event handler.
        
        Returns:
            A function that removes the handler again
        """
        with self._lock:
            self._subscribers.append(handler)
        
        def unsubscribe() -> None:
            with self._lock:
                if handler in self._subscribers:
                    self._subscribers.remove(handler)
        
        return unsubscribe
    
    def emit(self, event: QueueEvent) -> None:
        with self._lock:
            listener = self._listener
            subscribers = list(self._subscribers)
        
        if listener is not None:
            try:
                _listener_call(listener, event)
            except Exception as e:
                logger.exception(f"[EventBus] Listener failed on {event.type.value}: {e}")
        
        for handler in subscribers:
            try:
                handler(event)
            except Exception as e:
                logger.exception(f"[EventBus] Subscriber failed on {event.type.value}: {e}")
