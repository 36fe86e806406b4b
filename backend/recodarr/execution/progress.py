"""
ffmpeg progress parsing.

ffmpeg is run with `-progress pipe:1`, which prints key=value lines on
stdout, one block per update:

    frame=240
    fps=48.0
    out_time_us=10010000
    out_time=00:00:10.010000
    speed=1.9x
    progress=continue

A block ends at the `progress=` line (`continue` or `end`). One
ProgressSnapshot is produced per completed block; everything else on the
stream, including malformed lines, is ignored.

Percent is derived from frame/total_frames when the frame count is known,
otherwise from encoded time/duration, and is capped to 0..100.
"""

import re
from typing import Any, Dict, Optional, Tuple

from ..jobs.models import ProgressSnapshot


# Matches: 00:01:23.456789 (ffmpeg prints microseconds)
OUT_TIME_PATTERN = re.compile(r'^(\d+):(\d{2}):(\d{2}(?:\.\d+)?)$')


def _to_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None


def _to_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


def parse_out_time(value: str) -> Optional[float]:
    """Convert HH:MM:SS.ffffff to seconds."""
    match = OUT_TIME_PATTERN.match(value.strip())
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def expected_totals(probe_data: Dict[str, Any]) -> Tuple[Optional[float], Optional[int]]:
    """
    Extract (duration_seconds, total_frames) from probe data.
    
    Accepts flat {"duration", "total_frames"} keys or raw ffprobe JSON
    ({"format": {"duration"}, "streams": [{"nb_frames"}]}).
    """
    duration = None
    total_frames = None
    
    raw_duration = probe_data.get("duration")
    if raw_duration is None:
        raw_duration = (probe_data.get("format") or {}).get("duration")
    if raw_duration is not None:
        duration = _to_float(str(raw_duration))
    
    raw_frames = probe_data.get("total_frames")
    if raw_frames is None:
        for stream in probe_data.get("streams") or []:
            if isinstance(stream, dict) and stream.get("codec_type") == "video":
                raw_frames = stream.get("nb_frames")
                break
    if raw_frames is not None:
        total_frames = _to_int(str(raw_frames))
    
    if duration is not None and duration <= 0:
        duration = None
    if total_frames is not None and total_frames <= 0:
        total_frames = None
    return duration, total_frames


class ProgressParser:
    """
    Parse ffmpeg `-progress` output into ProgressSnapshots.
    
    Usage:
        parser = ProgressParser(duration=120.0, total_frames=2880)
        for line in process.stdout:
            snapshot = parser.feed_line(line)
            if snapshot:
                publish(snapshot)
    """
    
    def __init__(self, duration: Optional[float] = None, total_frames: Optional[int] = None):
        """
        Initialize progress parser.
        
        Args:
            duration: Expected media duration in seconds, if known
            total_frames: Expected frame count, if known
        """
        self.duration = duration
        self.total_frames = total_frames
        self._block: Dict[str, str] = {}
        self._last: Optional[ProgressSnapshot] = None
    
    @property
    def last(self) -> Optional[ProgressSnapshot]:
        """The most recent snapshot produced."""
        return self._last
    
    def feed_line(self, line: str) -> Optional[ProgressSnapshot]:
        """
        Consume one line of progress output.
        
        Returns:
            A snapshot when the line terminates a block, None otherwise
        """
        line = line.strip()
        if "=" not in line:
            return None
        
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if not key:
            return None
        
        if key != "progress":
            self._block[key] = value
            return None
        
        snapshot = self._build_snapshot(self._block, finished=(value == "end"))
        self._block = {}
        self._last = snapshot
        return snapshot
    
    def _elapsed(self, block: Dict[str, str]) -> Optional[float]:
        # out_time_ms is microseconds too (long-standing ffmpeg quirk)
        for key in ("out_time_us", "out_time_ms"):
            if key in block:
                micros = _to_int(block[key])
                if micros is not None and micros >= 0:
                    return micros / 1_000_000
        if "out_time" in block:
            return parse_out_time(block["out_time"])
        return None
    
    def _build_snapshot(self, block: Dict[str, str], finished: bool) -> ProgressSnapshot:
        frame = _to_int(block["frame"]) if "frame" in block else None
        fps = _to_float(block["fps"]) if "fps" in block else None
        elapsed = self._elapsed(block)
        
        percent: Optional[float] = None
        if frame is not None and self.total_frames:
            percent = frame / self.total_frames * 100.0
        elif elapsed is not None and self.duration:
            percent = elapsed / self.duration * 100.0
        if finished:
            percent = 100.0
        if percent is not None:
            percent = round(min(100.0, max(0.0, percent)), 1)
        
        return ProgressSnapshot(
            percent=percent,
            fps=fps,
            elapsed=elapsed,
            frame=frame,
            total_frames=self.total_frames,
        )
