"""
Change detection between a file on disk and its last stored copy.

Detection compares size and modification time only. Copies are made with
``shutil.copy2``, which preserves the modification time, so the stored copy
in the owning snapshot carries the metadata the file had when its bytes
were taken.

This is a heuristic. Two different contents with the same size and the
same modification time are reported as UNCHANGED. Hashing would close that
gap at the cost of reading every file in full on every run; snapback does
not do it.

Modification times are compared to the nanosecond. A backup root on a
filesystem with coarser timestamps (FAT keeps two seconds, some network
mounts keep whole seconds) truncates the time of every stored copy, so
every file is classified CHANGED and copied again on each run. Keep the
backup root on a filesystem at least as precise as the sources.
"""

import os
from collections import namedtuple
from enum import Enum
from typing import Optional

from .errors import BackupCorruptError, IoError
from .paths import to_store_path
from .snapshots import SnapshotEntry


FileMetadata = namedtuple('FileMetadata', ['size', 'mtime_ns'])


class Classification(Enum):
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"

    def needs_copy(self) -> bool:
        return self is not Classification.UNCHANGED


def read_metadata(path: str, follow_symlinks: bool = True) -> FileMetadata:
    """Size and nanosecond modification time of ``path``."""
    try:
        st = os.stat(path, follow_symlinks=follow_symlinks)
    except OSError as e:
        raise IoError("Cannot read file metadata", path, e) from e
    return FileMetadata(size=st.st_size, mtime_ns=st.st_mtime_ns)


def previous_metadata(owner: SnapshotEntry, path: str,
                      flavor: Optional[str] = None) -> FileMetadata:
    """
    Metadata recorded for ``path`` in the snapshot that owns its bytes.

    Symlinks are never followed here: a recorded link is stored as a link.

    Raises:
        BackupCorruptError: If the owning snapshot doesn't hold the file
    """
    stored = to_store_path(owner.files_path, path, flavor)
    if not os.path.lexists(stored):
        raise BackupCorruptError(f"Snapshot {owner.name} is missing the stored copy of", path)
    return read_metadata(stored, follow_symlinks=False)


def classify(current: FileMetadata, previous: Optional[FileMetadata]) -> Classification:
    if previous is None:
        return Classification.NEW
    if current.size == previous.size and current.mtime_ns == previous.mtime_ns:
        return Classification.UNCHANGED
    return Classification.CHANGED
