"""
Tests for ffmpeg argument list construction.
"""

from recodarr.execution import build_transcode_command


def _pairs(cmd):
    """(flag, value) pairs for flags followed by a value."""
    return list(zip(cmd, cmd[1:]))


class TestBuildTranscodeCommand:
    
    def test_minimal_command_copies_everything(self):
        cmd = build_transcode_command("ffmpeg", "/in/movie.mkv", "/out/movie.mkv")
        
        assert cmd[0] == "ffmpeg"
        assert ("-i", "/in/movie.mkv") in _pairs(cmd)
        assert ("-map", "0:v:0?") in _pairs(cmd)
        assert ("-map", "0:a?") in _pairs(cmd)
        assert ("-map", "0:s?") in _pairs(cmd)
        assert ("-c:v", "copy") in _pairs(cmd)
        assert ("-c:a", "copy") in _pairs(cmd)
        assert cmd[-4:] == ["-progress", "pipe:1", "-y", "/out/movie.mkv"]
    
    def test_preset_video_settings(self):
        preset = {
            "hw_accel": "auto",
            "video_codec": "libx265",
            "video_preset": "medium",
            "video_quality": 24,
            "pixel_format": "yuv420p10le",
            "video_filter": "scale=-2:1080",
        }
        cmd = build_transcode_command("ffmpeg", "/in.mkv", "/out.mkv", preset)
        pairs = _pairs(cmd)
        
        assert cmd.index("-hwaccel") < cmd.index("-i")
        assert ("-c:v", "libx265") in pairs
        assert ("-preset:v", "medium") in pairs
        assert ("-crf", "24") in pairs
        assert ("-pix_fmt", "yuv420p10le") in pairs
        assert ("-vf", "scale=-2:1080") in pairs
    
    def test_hardware_codec_uses_global_quality(self):
        cmd = build_transcode_command("ffmpeg", "/in.mkv", "/out.mkv", {"video_codec": "hevc_qsv", "video_quality": 25})
        assert ("-global_quality:v", "25") in _pairs(cmd)
        assert "-crf" not in cmd
    
    def test_track_selections(self):
        """
        GIVEN: Audio 0 kept, audio 1 discarded, audio 2 converted; subtitle 1 kept
        WHEN: The command is built
        THEN: Only selected tracks are mapped and conversion uses the preset codec
        """
        selections = {
            "audio": {"0": "keep", "1": "discard", "2": "convert"},
            "subtitle": {"0": "discard", "1": "keep"},
        }
        preset = {"audio_codec": "libopus", "audio_bitrate": "128"}
        
        cmd = build_transcode_command("ffmpeg", "/in.mkv", "/out.mkv", preset, selections)
        maps = [value for flag, value in _pairs(cmd) if flag == "-map"]
        
        assert maps == ["0:v:0?", "0:a:0?", "0:a:2?", "0:s:1?"]
        assert ("-c:a", "libopus") in _pairs(cmd)
        assert ("-b:a", "128k") in _pairs(cmd)
        assert ("-disposition:a:0", "default") in _pairs(cmd)
        assert ("-c:s", "copy") in _pairs(cmd)
    
    def test_kept_audio_only_is_stream_copied(self):
        cmd = build_transcode_command(
            "ffmpeg", "/in.mkv", "/out.mkv",
            {"audio_codec": "aac"},
            {"audio": {"0": "keep"}},
        )
        assert ("-c:a", "copy") in _pairs(cmd)
    
    def test_all_subtitles_discarded_maps_none(self):
        cmd = build_transcode_command("ffmpeg", "/in.mkv", "/out.mkv", None, {"subtitle": {"0": "discard"}})
        maps = [value for flag, value in _pairs(cmd) if flag == "-map"]
        assert not any(value.startswith("0:s") for value in maps)
    
    def test_processed_metadata_tags(self):
        cmd = build_transcode_command("ffmpeg", "/in.mkv", "/out.mkv", {"video_codec": "libx264"})
        pairs = _pairs(cmd)
        
        assert ("-map_metadata", "0") in pairs
        assert ("-map_chapters", "0") in pairs
        assert ("-metadata", "processed_by=Recodarr") in pairs
        assert ("-metadata", "encoded_by=Recodarr") in pairs
        assert ("-metadata", "recodarr_video_codec=libx264") in pairs
