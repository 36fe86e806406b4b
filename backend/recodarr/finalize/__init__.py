"""
Finalize: installing a finished transcode over its destination.

This package performs the backup -> copy -> verify -> cleanup (or
rollback) sequence. It does NOT run transcoders or update the catalog.
"""

from .errors import FinalizeError, FinalizeValidationError, CopyVerificationError
from .finalizer import FileFinalizer, FinalizePolicy, FinalizeResult

__all__ = [
    "FinalizeError",
    "FinalizeValidationError",
    "CopyVerificationError",
    "FileFinalizer",
    "FinalizePolicy",
    "FinalizeResult",
]
