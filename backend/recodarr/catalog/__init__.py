"""
Catalog: the media library records touched after a successful overwrite.
"""

from .errors import CatalogError, ProbeError
from .models import MediaInfo, MediaRecord
from .probe import probe_media, media_info_from_probe
from .store import MediaCatalog

__all__ = [
    "CatalogError",
    "ProbeError",
    "MediaInfo",
    "MediaRecord",
    "probe_media",
    "media_info_from_probe",
    "MediaCatalog",
]
