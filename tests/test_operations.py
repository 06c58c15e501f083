import pytest

from snapback.errors import BackupCorruptError
from snapback.operations import BackupOperations
from tests.conftest import TestBase, bump_mtime


class TestBackupOperations(TestBase):
    """The operations facade over one backup root."""

    def test_snapshot_and_list(self):
        with BackupOperations(str(self.backup_root)) as ops:
            first = ops.snapshot([str(self.source_dir)])
            bump_mtime(self.source_dir / "binary.bin")
            second = ops.snapshot([str(self.source_dir)])

            snapshots = ops.list_snapshots()

        assert [s["name"] for s in snapshots] == [first, second]
        assert snapshots[0]["entries"] == 6
        assert snapshots[0]["owned"] == 6
        assert snapshots[1]["entries"] == 6
        assert snapshots[1]["owned"] == 1
        assert snapshots[1]["size"] == 1
        assert snapshots[1]["timestamp"].strftime("%Y-%m-%d_%H.%M") == second

    def test_list_empty_root(self):
        assert self.ops.list_snapshots() == []

    def test_list_reports_corruption(self):
        (self.backup_root / "stray").write_text("x")
        with pytest.raises(BackupCorruptError):
            self.ops.list_snapshots()

    def test_check(self):
        name = self.ops.snapshot([str(self.source_dir)])
        healthy, problems = self.ops.check(name)
        assert healthy
        assert problems == []
