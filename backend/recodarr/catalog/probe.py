"""
ffprobe-based inspection of finalized outputs.
"""

import json
import logging
import os
import subprocess
from typing import Any, Dict, Optional

from .errors import ProbeError
from .models import MediaInfo

logger = logging.getLogger(__name__)


# Probe timeout in seconds
PROBE_TIMEOUT_SECONDS = 30


def _run_ffprobe(ffprobe_path: str, filepath: str) -> Dict[str, Any]:
    """
    Run ffprobe and return parsed JSON output.
    
    Raises:
        ProbeError: If ffprobe is missing, fails, times out or prints invalid JSON
    """
    cmd = [
        ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        filepath,
    ]
    
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=PROBE_TIMEOUT_SECONDS,
        )
        return json.loads(result.stdout)
    except (OSError, subprocess.SubprocessError, json.JSONDecodeError) as e:
        raise ProbeError(f"ffprobe failed for {filepath}: {e}") from e


def _first_stream(probe_data: Dict[str, Any], codec_type: str) -> Optional[Dict[str, Any]]:
    for stream in probe_data.get("streams") or []:
        if isinstance(stream, dict) and stream.get("codec_type") == codec_type:
            return stream
    return None


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def media_info_from_probe(probe_data: Dict[str, Any], size_bytes: Optional[int] = None) -> MediaInfo:
    """Extract catalog fields from raw ffprobe JSON."""
    video = _first_stream(probe_data, "video") or {}
    audio = _first_stream(probe_data, "audio") or {}
    
    if size_bytes is None:
        size_bytes = _as_int((probe_data.get("format") or {}).get("size"))
    
    return MediaInfo(
        size_bytes=size_bytes,
        video_codec=video.get("codec_name"),
        audio_codec=audio.get("codec_name"),
        resolution_width=_as_int(video.get("width")),
        resolution_height=_as_int(video.get("height")),
        audio_channels=_as_int(audio.get("channels")),
    )


def probe_media(path: str, ffprobe_path: str = "ffprobe") -> MediaInfo:
    """
    Describe a media file for the catalog.
    
    When ffprobe is unavailable or fails, only the size is reported.
    
    Raises:
        ProbeError: If the file itself cannot be stat'ed
    """
    try:
        size_bytes = os.path.getsize(path)
    except OSError as e:
        raise ProbeError(f"Cannot stat {path}: {e}") from e
    
    try:
        probe_data = _run_ffprobe(ffprobe_path, path)
    except ProbeError as e:
        logger.warning(f"[Catalog] {e}; recording size only")
        return MediaInfo(size_bytes=size_bytes)
    
    return media_info_from_probe(probe_data, size_bytes=size_bytes)
