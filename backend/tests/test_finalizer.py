"""
Tests for the crash-safe file replacement protocol.

Copy and rename failures are injected through the finalizer's
copy_file / rename_file hooks.
"""

import os
import shutil
from pathlib import Path

import pytest

from recodarr.finalize import FileFinalizer, FinalizePolicy


def _no_wait_policy(**overrides) -> FinalizePolicy:
    return FinalizePolicy(retry_delay_seconds=0.0, **overrides)


@pytest.fixture
def files(tmp_path):
    temp = tmp_path / "movie_tmp.mkv"
    dest = tmp_path / "movie.mkv"
    temp.write_bytes(b"new-encode" * 50)
    dest.write_bytes(b"original" * 80)
    return temp, dest


def _backups(dest: Path):
    return sorted(dest.parent.glob(dest.name + ".backup-*"))


class FlakyCopy:
    """Fails the first `failures` calls, then copies for real."""
    
    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0
    
    def __call__(self, src, dst):
        self.calls += 1
        if self.calls <= self.failures:
            # Leave a truncated destination, as an interrupted copy would
            Path(dst).write_bytes(b"partial")
            raise OSError("The process cannot access the file because it is being used")
        return shutil.copyfile(src, dst)


class TestSuccessfulFinalize:
    
    def test_overwrite_replaces_destination(self, files):
        """
        GIVEN: A temp output and an existing destination
        WHEN: finalize succeeds
        THEN: dest holds the temp content, temp is gone and no backup remains
        """
        temp, dest = files
        expected = temp.read_bytes()
        
        result = FileFinalizer(_no_wait_policy()).finalize(temp, dest, True)
        
        assert result.success
        assert result.backup_created
        assert result.attempts == 1
        assert dest.read_bytes() == expected
        assert not temp.exists()
        assert _backups(dest) == []
    
    def test_new_destination_needs_no_backup(self, tmp_path, files):
        temp, _ = files
        dest = tmp_path / "sub" / "fresh.mkv"
        dest.parent.mkdir()
        
        result = FileFinalizer(_no_wait_policy()).finalize(temp, dest, False)
        
        assert result.success
        assert not result.backup_created
        assert dest.exists()
    
    def test_same_path_is_noop_success(self, files):
        temp, _ = files
        result = FileFinalizer().finalize(temp, temp)
        assert result.success
        assert temp.exists()
    
    def test_two_failed_copies_then_success(self, files):
        """Transient lock contention is absorbed by the retry policy."""
        temp, dest = files
        expected = temp.read_bytes()
        copy = FlakyCopy(failures=2)
        
        result = FileFinalizer(_no_wait_policy(), copy_file=copy).finalize(temp, dest)
        
        assert result.success
        assert result.attempts == 3
        assert copy.calls == 3
        assert dest.read_bytes() == expected
        assert not temp.exists()
        assert _backups(dest) == []
    
    def test_retry_delay_between_attempts(self, files):
        temp, dest = files
        delays = []
        
        FileFinalizer(
            FinalizePolicy(max_attempts=3, retry_delay_seconds=0.25),
            copy_file=FlakyCopy(failures=2),
            sleep=delays.append,
        ).finalize(temp, dest)
        
        assert delays == [0.25, 0.25]
    
    def test_size_mismatch_counts_as_failed_attempt(self, files):
        temp, dest = files
        calls = []
        
        def short_then_full(src, dst):
            calls.append(1)
            if len(calls) == 1:
                Path(dst).write_bytes(Path(src).read_bytes()[:10])
                return
            shutil.copyfile(src, dst)
        
        result = FileFinalizer(_no_wait_policy(), copy_file=short_then_full).finalize(temp, dest)
        
        assert result.success
        assert result.attempts == 2


class TestFailedFinalize:
    
    def test_all_copies_fail_restores_original(self, files):
        """
        GIVEN: Every copy attempt fails after a backup was made
        WHEN: finalize gives up
        THEN: dest is restored, temp is preserved and the failure is reported
        """
        temp, dest = files
        original = dest.read_bytes()
        copy = FlakyCopy(failures=99)
        
        result = FileFinalizer(_no_wait_policy(), copy_file=copy).finalize(temp, dest)
        
        assert not result.success
        assert copy.calls == 3
        assert result.rolled_back
        assert not result.data_at_risk
        assert result.temp_preserved
        assert "being used" in result.error
        assert dest.read_bytes() == original
        assert temp.exists()
        assert _backups(dest) == []
    
    def test_backup_failure_proceeds_with_direct_overwrite(self, files):
        temp, dest = files
        expected = temp.read_bytes()
        
        def rename_fails(src, dst):
            raise PermissionError("locked")
        
        result = FileFinalizer(_no_wait_policy(), rename_file=rename_fails).finalize(temp, dest)
        
        assert result.success
        assert not result.backup_created
        assert dest.read_bytes() == expected
    
    def test_no_backup_and_failed_copy_flags_data_at_risk(self, files):
        temp, dest = files
        
        def rename_fails(src, dst):
            raise PermissionError("locked")
        
        result = FileFinalizer(
            _no_wait_policy(),
            copy_file=FlakyCopy(failures=99),
            rename_file=rename_fails,
        ).finalize(temp, dest)
        
        assert not result.success
        assert result.data_at_risk
        assert result.temp_preserved
        assert "MAY BE INCOMPLETE" in result.describe_failure()
        assert str(temp) in result.describe_failure()
    
    def test_failed_restore_leaves_backup_and_flags_risk(self, files):
        temp, dest = files
        original = dest.read_bytes()
        renames = []
        
        def rename_once(src, dst):
            renames.append((src, dst))
            if len(renames) > 1:
                raise OSError("restore blocked")
            os.replace(src, dst)
        
        result = FileFinalizer(
            _no_wait_policy(),
            copy_file=FlakyCopy(failures=99),
            rename_file=rename_once,
        ).finalize(temp, dest)
        
        assert result.data_at_risk
        assert not result.rolled_back
        assert "restore from backup failed" in result.error
        [backup] = _backups(dest)
        assert backup.read_bytes() == original
        assert str(backup) in result.describe_failure()
    
    @pytest.mark.parametrize("content", [None, b""])
    def test_invalid_temp_never_touches_destination(self, tmp_path, content):
        temp = tmp_path / "missing_tmp.mkv"
        if content is not None:
            temp.write_bytes(content)
        dest = tmp_path / "movie.mkv"
        dest.write_bytes(b"original")
        
        result = FileFinalizer(_no_wait_policy()).finalize(temp, dest)
        
        assert not result.success
        assert result.attempts == 0
        assert dest.read_bytes() == b"original"
        assert _backups(dest) == []
    
    def test_empty_paths_rejected(self):
        result = FileFinalizer().finalize("", "")
        assert not result.success
        assert "Invalid paths" in result.error


class TestBackupNaming:
    
    def test_backup_path_is_unique(self, tmp_path):
        dest = tmp_path / "movie.mkv"
        finalizer = FileFinalizer(FinalizePolicy(backup_suffix="bak"))
        
        first = finalizer.backup_path_for(str(dest))
        Path(first).write_bytes(b"")
        second = finalizer.backup_path_for(str(dest))
        
        assert first.startswith(str(dest) + ".bak-")
        assert second != first


class TestDestinationLocks:
    
    def test_lock_is_held_during_replace_and_dropped_after(self, files):
        """
        GIVEN: A finalizer replacing one destination
        WHEN: The copy runs and finalize returns
        THEN: The destination is locked during the copy and no lock entry remains afterwards
        """
        temp, dest = files
        seen = []
        
        def copy_and_observe(src, dst):
            seen.append(finalizer.locked_destinations)
            shutil.copyfile(src, dst)
        
        finalizer = FileFinalizer(_no_wait_policy(), copy_file=copy_and_observe)
        result = finalizer.finalize(temp, dest)
        
        assert result.success
        assert seen == [[os.path.abspath(str(dest))]]
        assert finalizer.locked_destinations == []
    
    def test_failed_finalize_releases_lock(self, files):
        temp, dest = files
        finalizer = FileFinalizer(_no_wait_policy(), copy_file=FlakyCopy(failures=99))
        
        assert not finalizer.finalize(temp, dest).success
        assert finalizer.locked_destinations == []
    
    def test_many_destinations_leave_no_entries(self, tmp_path):
        finalizer = FileFinalizer(_no_wait_policy())
        for index in range(20):
            temp = tmp_path / f"episode{index}_tmp.mkv"
            temp.write_bytes(b"encoded")
            assert finalizer.finalize(temp, tmp_path / f"episode{index}.mkv").success
        
        assert finalizer.locked_destinations == []
