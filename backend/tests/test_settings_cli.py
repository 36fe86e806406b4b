"""
Tests for environment settings and the operator CLI.
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from recodarr import cli
from recodarr.execution import JobLogStore
from recodarr.jobs import Job
from recodarr.persistence import SnapshotFile
from recodarr.settings import AppSettings


class TestAppSettings:
    
    def test_defaults(self):
        settings = AppSettings.from_env(environ={})
        
        assert settings.max_parallel_jobs == 2
        assert settings.auto_start is True
        assert settings.resolved_snapshot_path == Path("recodarr-data") / "queue.json"
        assert settings.resolved_log_dir == Path("recodarr-data") / "logs"
    
    def test_environment_values_are_coerced(self):
        settings = AppSettings.from_env(environ={
            "RECODARR_DATA_DIR": "/srv/recodarr",
            "RECODARR_MAX_PARALLEL_JOBS": "4",
            "RECODARR_AUTO_START": "false",
            "RECODARR_FINALIZE_RETRY_DELAY": "1.5",
            "RECODARR_PORT": "9000",
            "RECODARR_FFPROBE": "",
        })
        
        assert settings.max_parallel_jobs == 4
        assert settings.auto_start is False
        assert settings.finalize_retry_delay_seconds == 1.5
        assert settings.port == 9000
        assert settings.ffprobe_path == "ffprobe"
        assert settings.resolved_catalog_path == Path("/srv/recodarr") / "catalog.db"
    
    def test_overrides_win_over_environment(self, tmp_path):
        settings = AppSettings.from_env(
            environ={"RECODARR_DATA_DIR": "/srv/recodarr", "RECODARR_LOG_DIR": "/var/log/recodarr"},
            data_dir=tmp_path,
            ffmpeg_path=None,
        )
        
        assert settings.data_dir == tmp_path
        assert settings.resolved_log_dir == Path("/var/log/recodarr")
        assert settings.ffmpeg_path == "ffmpeg"
    
    def test_invalid_value(self):
        with pytest.raises(ValidationError):
            AppSettings.from_env(environ={"RECODARR_MAX_PARALLEL_JOBS": "0"})


class TestCli:
    
    def test_jobs_on_empty_queue(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--data-dir", str(tmp_path), "jobs"])
        
        assert exc_info.value.code == 0
        assert "Queue is empty" in capsys.readouterr().out
    
    def test_jobs_json(self, tmp_path, capsys):
        job = Job(input_path="/library/movie.mkv", output_path="/library/movie.out.mkv")
        SnapshotFile(tmp_path / "queue.json").write([job.model_dump(mode="json")])
        
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--data-dir", str(tmp_path), "jobs", "--json"])
        
        assert exc_info.value.code == 0
        listed = json.loads(capsys.readouterr().out)
        assert [entry["id"] for entry in listed] == [job.id]
    
    def test_jobs_with_corrupt_snapshot(self, tmp_path, capsys):
        (tmp_path / "queue.json").write_text("{not json", encoding="utf-8")
        
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--data-dir", str(tmp_path), "jobs"])
        
        assert exc_info.value.code == 4
        assert "ERROR" in capsys.readouterr().err
    
    def test_log(self, tmp_path, capsys):
        writer = JobLogStore(tmp_path / "logs").open_for_append("job_1_abcdefg")
        writer.write("frame=100")
        writer.close()
        
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--data-dir", str(tmp_path), "log", "job_1_abcdefg"])
        
        assert exc_info.value.code == 0
        assert "frame=100" in capsys.readouterr().out
    
    def test_missing_log(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--data-dir", str(tmp_path), "log", "job_0_missing"])
        
        assert exc_info.value.code == 4
    
    def test_run_rejects_missing_input(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main([
                "--data-dir", str(tmp_path / "data"),
                "run", str(tmp_path / "gone.mkv"), str(tmp_path / "out.mkv"),
            ])
        
        assert exc_info.value.code == 1
        assert "not found" in capsys.readouterr().err
