import os
import pytest
import tempfile
from pathlib import Path

from snapback.operations import BackupOperations


# ---- Individual fixtures for flexible test composition ----

@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def backup_root(temp_dir):
    """Create an empty backup root."""
    backup_root = temp_dir / "backup"
    os.makedirs(backup_root)
    return backup_root


@pytest.fixture
def source_dir(temp_dir):
    """Create a source directory with test files."""
    source_dir = temp_dir / "source"
    os.makedirs(source_dir)
    create_test_files(source_dir)
    return source_dir


# ---- Base test class for inheritance-based testing ----

class TestBase:
    """Base class for snapback tests providing isolation and cleanup."""

    def setUp(self):
        """
        Set up the test environment.

        This method:
        1. Creates a temporary directory
        2. Sets up the source and backup directories
        3. Creates test files
        """
        self.temp_dir = tempfile.TemporaryDirectory()
        self.working_dir = Path(self.temp_dir.name)

        self.source_dir = self.working_dir / "source"
        self.backup_root = self.working_dir / "backup"
        os.makedirs(self.source_dir)
        os.makedirs(self.backup_root)

        self._create_test_files()

        self.ops = BackupOperations(str(self.backup_root))

    def tearDown(self):
        """Clean up the temporary directory."""
        try:
            self.temp_dir.cleanup()
        except (PermissionError, OSError) as e:
            print(f"Warning: Could not clean up temporary directory: {e}")

    @pytest.fixture(autouse=True)
    def _setup_teardown_fixture(self):
        """
        Pytest fixture to automatically call setUp and tearDown.

        This fixture is automatically used by all test methods in classes
        that inherit from TestBase.
        """
        self.setUp()
        yield
        self.tearDown()

    def _create_test_files(self):
        """Create test files in the source directory."""
        create_test_files(self.source_dir)

    def snapshot_dir(self, name):
        return self.backup_root / name

    def read_index(self, name):
        return (self.backup_root / name / "index.txt").read_text(encoding="utf-8")

    def stored_files(self, name):
        """All files held in a snapshot's files store."""
        files_root = self.backup_root / name / "files"
        return sorted(p for p in files_root.rglob("*") if p.is_file() or p.is_symlink())

    def index_owners(self, name):
        """Map of original path to owning snapshot for a snapshot's index."""
        owners = {}
        for line in self.read_index(name).splitlines():
            owner, path = line.split(" ", 1)
            owners[path] = owner
        return owners


# ---- Helper functions for both approaches ----

def create_test_files(directory, count=5):
    """Create text files, a nested directory and a binary file."""
    for i in range(1, count):
        with open(directory / f"file_{i}.txt", "w") as f:
            f.write(f"Content of file {i}")

    nested = directory / "nested" / "deeper"
    os.makedirs(nested)
    with open(nested / "inner.txt", "w") as f:
        f.write("Nested content")

    with open(directory / "binary.bin", "wb") as f:
        f.write(os.urandom(1024))  # 1KB of random data


def touch(path, mtime_ns):
    """Set both access and modification time of ``path``."""
    os.utime(path, ns=(mtime_ns, mtime_ns))


def bump_mtime(path, seconds=60):
    """Move the modification time of ``path`` forward."""
    st = os.stat(path)
    touch(path, st.st_mtime_ns + seconds * 1_000_000_000)
