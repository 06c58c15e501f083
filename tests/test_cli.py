import os
import sys
import subprocess
from pathlib import Path

from snapback.snapshots import list_snapshots
from tests.conftest import TestBase

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class TestCLI(TestBase):
    """Test CLI commands with proper isolation."""

    def _run_cli_command(self, args):
        """Run snapback as a module in a subprocess."""
        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(PROJECT_ROOT), env.get("PYTHONPATH")]))
        cmd = [sys.executable, "-m", "snapback"] + args
        return subprocess.run(cmd, capture_output=True, text=True, env=env)

    def test_backup_command(self):
        result = self._run_cli_command(["backup", str(self.backup_root), str(self.source_dir)])

        assert result.returncode == 0, result.stderr
        snapshots = list_snapshots(str(self.backup_root))
        assert len(snapshots) == 1
        assert f"Created snapshot: {snapshots[0].name}" in result.stdout

    def test_backup_full_flag(self):
        self._run_cli_command(["backup", str(self.backup_root), str(self.source_dir)])
        result = self._run_cli_command(["backup", "--full", str(self.backup_root), str(self.source_dir)])

        assert result.returncode == 0, result.stderr
        second = list_snapshots(str(self.backup_root))[-1]
        owners = {line.split(" ", 1)[0] for line in self.read_index(second.name).splitlines()}
        assert owners == {second.name}

    def test_backup_into_missing_root(self):
        result = self._run_cli_command(["backup", str(self.working_dir / "nope"), str(self.source_dir)])

        assert result.returncode == 1
        assert "doesn't exist" in result.stderr

    def test_backup_error_exits_non_zero(self):
        (self.backup_root / "stray.txt").write_text("not a snapshot")

        result = self._run_cli_command(["backup", str(self.backup_root), str(self.source_dir)])

        assert result.returncode == 1
        assert "Error:" in result.stderr
        assert "stray.txt" in result.stderr

    def test_verbose_backup_logs_copies(self):
        result = self._run_cli_command(["backup", "-v", str(self.backup_root), str(self.source_dir)])

        assert result.returncode == 0, result.stderr
        assert "Copied (new)" in result.stderr

    def test_quiet_backup_logs_nothing(self):
        result = self._run_cli_command(["backup", str(self.backup_root), str(self.source_dir)])

        assert result.returncode == 0
        assert result.stderr == ""

    def test_log_file_argument(self):
        log_file = self.working_dir / "snapback.log"
        result = self._run_cli_command([
            "backup", "-vv", "--log-file", str(log_file),
            str(self.backup_root), str(self.source_dir),
        ])

        assert result.returncode == 0
        assert "Copied (new)" in log_file.read_text()

    def test_list_command(self):
        self._run_cli_command(["backup", str(self.backup_root), str(self.source_dir)])
        self._run_cli_command(["backup", str(self.backup_root), str(self.source_dir)])
        first, second = [s.name for s in list_snapshots(str(self.backup_root))]

        result = self._run_cli_command(["list", str(self.backup_root)])

        assert result.returncode == 0
        lines = result.stdout.splitlines()
        assert lines[0] == "Available snapshots:"
        assert lines[1].startswith(f"1. {second}")
        assert lines[2].startswith(f"2. {first}")
        assert "files: 6" in lines[1]

    def test_list_short_alias(self):
        self._run_cli_command(["backup", str(self.backup_root), str(self.source_dir)])
        name = list_snapshots(str(self.backup_root))[0].name

        result = self._run_cli_command(["ls", "-s", str(self.backup_root)])

        assert result.returncode == 0
        assert result.stdout == f"Available snapshots:\n1. {name}\n"

    def test_check_command(self):
        self._run_cli_command(["backup", str(self.backup_root), str(self.source_dir)])
        name = list_snapshots(str(self.backup_root))[0].name
        snapshot = self.snapshot_dir(name)

        result = self._run_cli_command(["check", str(snapshot)])
        assert result.returncode == 0
        assert "Snapshot integrity check completed. No problems found." in result.stdout

        for stored in self.stored_files(name)[:1]:
            os.unlink(stored)

        result = self._run_cli_command(["check", str(snapshot)])
        assert result.returncode == 1
        assert "Snapshot integrity check failed." in result.stdout
        assert "is indexed, but is missing in snapshot" in result.stdout

    def test_no_command_prints_help(self):
        result = self._run_cli_command([])

        assert result.returncode == 1
        assert "usage" in result.stdout
