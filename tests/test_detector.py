import os
import shutil
import pytest

from snapback.detector import (
    Classification,
    FileMetadata,
    classify,
    previous_metadata,
    read_metadata,
)
from snapback.errors import BackupCorruptError
from snapback.paths import WINDOWS, to_store_path
from snapback.snapshots import SnapshotEntry
from tests.conftest import touch


class TestClassify:
    """Metadata-based classification."""

    def test_new_without_previous_entry(self):
        assert classify(FileMetadata(10, 1000), None) is Classification.NEW

    def test_unchanged_when_size_and_mtime_match(self):
        assert classify(FileMetadata(10, 1000), FileMetadata(10, 1000)) is Classification.UNCHANGED

    def test_changed_when_mtime_differs(self):
        assert classify(FileMetadata(10, 2000), FileMetadata(10, 1000)) is Classification.CHANGED

    def test_changed_when_size_differs(self):
        assert classify(FileMetadata(11, 1000), FileMetadata(10, 1000)) is Classification.CHANGED

    def test_older_mtime_is_still_a_change(self):
        assert classify(FileMetadata(10, 500), FileMetadata(10, 1000)) is Classification.CHANGED

    def test_same_metadata_different_content_is_unchanged(self):
        # Known limitation of metadata-only detection
        assert classify(FileMetadata(3, 42), FileMetadata(3, 42)) is Classification.UNCHANGED

    def test_needs_copy(self):
        assert Classification.NEW.needs_copy()
        assert Classification.CHANGED.needs_copy()
        assert not Classification.UNCHANGED.needs_copy()


class TestStoredMetadata:
    """Metadata of the copy held by the owning snapshot."""

    def _store(self, temp_dir, source):
        snapshot = SnapshotEntry("2021-07-26_13.45", str(temp_dir / "backup" / "2021-07-26_13.45"))
        destination = to_store_path(snapshot.files_path, str(source))
        os.makedirs(os.path.dirname(destination))
        shutil.copy2(source, destination)
        return snapshot

    def test_copy_keeps_metadata(self, temp_dir):
        source = temp_dir / "a.txt"
        source.write_text("0123456789")
        touch(source, 1_600_000_000_123_456_789)

        snapshot = self._store(temp_dir, source)

        current = read_metadata(str(source))
        assert current.size == 10
        assert previous_metadata(snapshot, str(source)) == current
        assert classify(current, previous_metadata(snapshot, str(source))) is Classification.UNCHANGED

    def test_missing_stored_copy_is_corruption(self, temp_dir):
        snapshot = SnapshotEntry("2021-07-26_13.45", str(temp_dir / "2021-07-26_13.45"))
        with pytest.raises(BackupCorruptError) as excinfo:
            previous_metadata(snapshot, str(temp_dir / "a.txt"))
        assert excinfo.value.path == str(temp_dir / "a.txt")

    def test_stored_copy_located_with_given_flavor(self, temp_dir):
        snapshot = SnapshotEntry("2021-07-26_13.45", str(temp_dir / "2021-07-26_13.45"))
        stored = temp_dir / "2021-07-26_13.45" / "files" / "C" / "data" / "a.txt"
        os.makedirs(stored.parent)
        stored.write_text("abc")

        metadata = previous_metadata(snapshot, "C:\\data\\a.txt", WINDOWS)

        assert metadata.size == 3

    def test_coarse_stored_timestamp_counts_as_change(self, temp_dir):
        source = temp_dir / "a.txt"
        source.write_text("0123456789")
        touch(source, 1_600_000_000_123_456_789)
        snapshot = self._store(temp_dir, source)
        # What a filesystem keeping whole seconds leaves on the stored copy
        stored = to_store_path(snapshot.files_path, str(source))
        touch(stored, 1_600_000_000_000_000_000)

        current = read_metadata(str(source))
        assert classify(current, previous_metadata(snapshot, str(source))) is Classification.CHANGED
