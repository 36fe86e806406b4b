"""
Media catalog errors.
"""


class CatalogError(Exception):
    """
    Base exception for media catalog failures.
    
    Catalog updates after finalization are best-effort: callers log this
    error and keep the successfully replaced file.
    """
    
    pass


class ProbeError(CatalogError):
    """ffprobe could not be run or its output could not be parsed."""
    
    pass
