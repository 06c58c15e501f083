"""
Snapback - incremental file backup with timestamped snapshots.

Each run writes a snapshot holding an index of every backed-up file and a
copy of the files that changed since the previous snapshot. Unchanged
files are referenced in the snapshot that already holds their bytes, so
content that never changes is stored once.
"""

__version__ = "0.1.0"

# Export public API
from .builder import BuildResult, SnapshotBuilder, build
from .errors import (
    BackupCorruptError,
    BuildError,
    IndexParseError,
    IoError,
    LockContentionError,
    PathEncodingError,
)
from .operations import BackupOperations

__all__ = [
    "BackupOperations",
    "SnapshotBuilder",
    "BuildResult",
    "build",
    "BuildError",
    "PathEncodingError",
    "BackupCorruptError",
    "IndexParseError",
    "IoError",
    "LockContentionError",
]
