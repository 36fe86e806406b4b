"""
Tests for ffmpeg -progress parsing.
"""

import pytest

from recodarr.execution import ProgressParser, expected_totals, parse_out_time


def _block(**values) -> list:
    return [f"{key}={value}\n" for key, value in values.items()]


def _feed(parser, lines):
    return [snap for snap in (parser.feed_line(line) for line in lines) if snap is not None]


class TestProgressBlocks:
    
    def test_one_snapshot_per_block(self):
        parser = ProgressParser(duration=100.0)
        lines = (
            _block(frame=10, fps=25.0, out_time_us=10_000_000, progress="continue")
            + _block(frame=20, fps=26.5, out_time_us=20_000_000, progress="continue")
        )
        
        snapshots = _feed(parser, lines)
        
        assert len(snapshots) == 2
        assert snapshots[0].elapsed == 10.0
        assert snapshots[0].percent == 10.0
        assert snapshots[1].fps == 26.5
        assert snapshots[1].frame == 20
    
    def test_frame_count_preferred_over_time(self):
        parser = ProgressParser(duration=100.0, total_frames=200)
        [snapshot] = _feed(parser, _block(frame=50, out_time_us=10_000_000, progress="continue"))
        
        assert snapshot.percent == 25.0
        assert snapshot.total_frames == 200
    
    def test_out_time_string_used_when_microseconds_missing(self):
        parser = ProgressParser(duration=120.0)
        [snapshot] = _feed(parser, _block(out_time="00:01:00.000000", progress="continue"))
        
        assert snapshot.elapsed == 60.0
        assert snapshot.percent == 50.0
    
    def test_percent_capped_at_100(self):
        parser = ProgressParser(duration=10.0)
        [snapshot] = _feed(parser, _block(out_time_us=15_000_000, progress="continue"))
        assert snapshot.percent == 100.0
    
    def test_end_block_reports_complete(self):
        parser = ProgressParser()
        [snapshot] = _feed(parser, _block(frame=99, progress="end"))
        assert snapshot.percent == 100.0
    
    def test_unknown_duration_leaves_percent_empty(self):
        parser = ProgressParser()
        [snapshot] = _feed(parser, _block(frame=5, fps=12.0, progress="continue"))
        assert snapshot.percent is None
        assert snapshot.frame == 5
    
    def test_malformed_lines_are_ignored(self):
        """
        GIVEN: Garbage and unparsable values interleaved with a block
        WHEN: The lines are fed
        THEN: Exactly one snapshot is produced and bad values are dropped
        """
        parser = ProgressParser(duration=100.0)
        lines = [
            "Stream mapping:\n",
            "=novalue\n",
            "frame=abc\n",
            "fps=N/A\n",
            "out_time_us=N/A\n",
            "out_time=00:00:10.000000\n",
            "progress=continue\n",
        ]
        
        [snapshot] = _feed(parser, lines)
        
        assert snapshot.frame is None
        assert snapshot.fps is None
        assert snapshot.elapsed == 10.0
        assert parser.last is snapshot


class TestHelpers:
    
    @pytest.mark.parametrize("value,expected", [
        ("00:00:01.500000", 1.5),
        ("01:02:03.000000", 3723.0),
        ("bogus", None),
    ])
    def test_parse_out_time(self, value, expected):
        assert parse_out_time(value) == expected
    
    def test_expected_totals_from_flat_keys(self):
        assert expected_totals({"duration": 90.5, "total_frames": 2172}) == (90.5, 2172)
    
    def test_expected_totals_from_ffprobe_json(self):
        probe = {
            "format": {"duration": "60.000000"},
            "streams": [
                {"codec_type": "audio"},
                {"codec_type": "video", "nb_frames": "1440"},
            ],
        }
        assert expected_totals(probe) == (60.0, 1440)
    
    def test_expected_totals_missing_or_invalid(self):
        assert expected_totals({}) == (None, None)
        assert expected_totals({"duration": "N/A", "total_frames": 0}) == (None, None)
