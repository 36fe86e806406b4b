"""
Snapshot persistence errors.

Both carry the snapshot path so callers can report which file is affected.
"""

from pathlib import Path
from typing import Union


class PersistenceError(Exception):
    """Base exception for queue snapshot failures."""
    
    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{reason} ({self.path})")


class LoadError(PersistenceError):
    """The snapshot exists but is unreadable or not a queue document."""


class SaveError(PersistenceError):
    """The snapshot could not be rewritten; the previous file is untouched."""
