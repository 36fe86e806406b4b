"""
Queue: the encoding job scheduler.

This package owns the concurrency policy (max parallel jobs, priority
ordering), the queue configuration and lifecycle event delivery.
"""

from .models import QueueConfig, QueueConfigUpdate, QueueStatus
from .events import EventBus, QueueEvent, QueueEventType, QueueListener
from .scheduler import QueueScheduler

__all__ = [
    "QueueConfig",
    "QueueConfigUpdate",
    "QueueStatus",
    "EventBus",
    "QueueEvent",
    "QueueEventType",
    "QueueListener",
    "QueueScheduler",
]
