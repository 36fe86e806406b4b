"""
Persistence layer for the encoding queue.

A single JSON snapshot file, rewritten atomically, is the only state
shared across process restarts.
"""

from .errors import PersistenceError, LoadError, SaveError
from .snapshot import SnapshotFile

__all__ = ["PersistenceError", "LoadError", "SaveError", "SnapshotFile"]
