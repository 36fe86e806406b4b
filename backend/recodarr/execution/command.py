"""
ffmpeg argument list construction.

The preset and track selections are opaque to the queue; this is the only
place that interprets them. Recognised preset keys:

    hw_accel, video_codec, video_preset, video_quality, pixel_format,
    resolution, video_filter, audio_codec, audio_bitrate, audio_filter,
    subtitle_codec

Track selections map a stream type ("audio" / "subtitle") to
{"<relative stream index>": "keep" | "convert" | "discard"}. Kept tracks
are stream-copied, converted tracks are re-encoded with the preset codec,
discarded tracks are not mapped.
"""

from typing import Any, Dict, List, Optional

TRACK_KEEP = "keep"
TRACK_CONVERT = "convert"
TRACK_DISCARD = "discard"

PROCESSED_BY_TAG = "Recodarr"

# Codecs whose quality knob is -crf rather than -global_quality
_CRF_CODECS = {"libx264", "libx265", "libsvtav1", "libvpx-vp9"}


def _selected_indices(selections: Dict[str, str]) -> List[int]:
    """Relative stream indices marked keep/convert, ascending. Bad keys are skipped."""
    indices = []
    for key, action in selections.items():
        if action not in (TRACK_KEEP, TRACK_CONVERT):
            continue
        try:
            indices.append(int(key))
        except (TypeError, ValueError):
            continue
    return sorted(indices)


def _needs_conversion(selections: Dict[str, str]) -> bool:
    return any(action == TRACK_CONVERT for action in selections.values())


def _video_args(preset: Dict[str, Any]) -> List[str]:
    codec = preset.get("video_codec")
    if not codec or codec == "copy":
        return ["-c:v", "copy"]
    
    args = ["-c:v", str(codec)]
    if preset.get("video_preset"):
        args += ["-preset:v", str(preset["video_preset"])]
    quality = preset.get("video_quality")
    if quality is not None:
        if codec in _CRF_CODECS:
            args += ["-crf", str(quality)]
        else:
            args += ["-global_quality:v", str(quality)]
    if preset.get("pixel_format"):
        args += ["-pix_fmt", str(preset["pixel_format"])]
    if preset.get("resolution"):
        args += ["-s", str(preset["resolution"])]
    if preset.get("video_filter"):
        args += ["-vf", str(preset["video_filter"])]
    return args


def _audio_args(preset: Dict[str, Any], selections: Dict[str, str]) -> List[str]:
    codec = preset.get("audio_codec")
    if not codec or not _needs_conversion(selections):
        return ["-c:a", "copy"]
    
    args = ["-c:a", str(codec)]
    bitrate = preset.get("audio_bitrate")
    if bitrate:
        bitrate = str(bitrate)
        # Bare numbers are kbit/s
        args += ["-b:a", bitrate if bitrate[-1].isalpha() else f"{bitrate}k"]
    if preset.get("audio_filter"):
        args += ["-af", str(preset["audio_filter"])]
    return args


def _subtitle_args(preset: Dict[str, Any], selections: Dict[str, str]) -> List[str]:
    codec = preset.get("subtitle_codec")
    if codec and _needs_conversion(selections):
        return ["-c:s", str(codec)]
    return ["-c:s", "copy"]


def build_transcode_command(
    ffmpeg_path: str,
    input_path: str,
    output_path: str,
    preset: Optional[Dict[str, Any]] = None,
    track_selections: Optional[Dict[str, Dict[str, str]]] = None,
) -> List[str]:
    """
    Build the ffmpeg argv for one job.
    
    Without track selections every audio and subtitle stream is mapped and
    copied. Progress is requested as key=value blocks on stdout.
    
    Args:
        ffmpeg_path: Transcoder executable
        input_path: Source media file
        output_path: Where ffmpeg writes (staging path when overwriting)
        preset: Opaque encoding parameters
        track_selections: Per-stream keep/convert/discard decisions
        
    Returns:
        Argument list suitable for subprocess.Popen
    """
    preset = preset or {}
    track_selections = track_selections or {}
    
    cmd: List[str] = [ffmpeg_path, "-hide_banner", "-nostats"]
    
    hw_accel = preset.get("hw_accel")
    if hw_accel and hw_accel != "none":
        cmd += ["-hwaccel", str(hw_accel)]
    
    cmd += ["-i", input_path]
    
    # Video: first stream, optional
    cmd += ["-map", "0:v:0?"]
    
    # Audio
    audio = track_selections.get("audio")
    if audio is None:
        cmd += ["-map", "0:a?"]
        audio = {}
    else:
        for position, index in enumerate(_selected_indices(audio)):
            cmd += ["-map", f"0:a:{index}?"]
            cmd += [f"-disposition:a:{position}", "default" if position == 0 else "0"]
    
    # Subtitles
    subtitles = track_selections.get("subtitle")
    if subtitles is None:
        cmd += ["-map", "0:s?"]
        subtitles = {}
    else:
        for index in _selected_indices(subtitles):
            cmd += ["-map", f"0:s:{index}?"]
    
    cmd += _video_args(preset)
    cmd += _audio_args(preset, audio)
    cmd += _subtitle_args(preset, subtitles)
    
    # Carry container metadata and chapters, then tag as processed
    cmd += ["-map_metadata", "0", "-map_chapters", "0"]
    cmd += ["-metadata", f"encoded_by={PROCESSED_BY_TAG}"]
    cmd += ["-metadata", f"processed_by={PROCESSED_BY_TAG}"]
    if preset.get("video_codec"):
        cmd += ["-metadata", f"recodarr_video_codec={preset['video_codec']}"]
    if preset.get("audio_codec"):
        cmd += ["-metadata", f"recodarr_audio_codec={preset['audio_codec']}"]
    
    cmd += ["-progress", "pipe:1", "-y", output_path]
    return cmd
