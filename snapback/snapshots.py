import os
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from .errors import BackupCorruptError


logger = logging.getLogger('snapback.snapshots')

SNAPSHOT_NAME_FORMAT = "%Y-%m-%d_%H.%M"
INDEX_FILE = "index.txt"
FILES_DIR = "files"
LOCK_FILE = ".lock"
BREAK_LOCK_FILE = ".lock.break"
STAGING_PREFIX = "in_progress_"


@dataclass
class SnapshotEntry:
    """A finalized snapshot directory inside a backup root."""

    name: str
    path: str

    @property
    def index_path(self) -> str:
        return os.path.join(self.path, INDEX_FILE)

    @property
    def files_path(self) -> str:
        return os.path.join(self.path, FILES_DIR)

    @property
    def timestamp(self) -> datetime:
        return parse_snapshot_name(self.name)

    def __str__(self) -> str:
        return self.name


def format_snapshot_name(moment: datetime) -> str:
    return moment.strftime(SNAPSHOT_NAME_FORMAT)


def parse_snapshot_name(name: str) -> datetime:
    """
    Parse a snapshot directory name.

    Only names that format back to themselves are accepted, so
    ``2021-7-5_1.2`` is rejected even though strptime would take it.

    Raises:
        ValueError: If ``name`` is not a snapshot timestamp
    """
    moment = datetime.strptime(name, SNAPSHOT_NAME_FORMAT)
    if format_snapshot_name(moment) != name:
        raise ValueError(f"'{name}' is not in canonical snapshot format")
    return moment


def is_snapshot_name(name: str) -> bool:
    try:
        parse_snapshot_name(name)
    except ValueError:
        return False
    return True


def staging_name(name: str) -> str:
    return f"{STAGING_PREFIX}{name}"


def create_snapshot_name(now: datetime, existing: Iterable[str] = ()) -> str:
    """
    Generate a name for a new snapshot.

    The result is strictly greater than every name in ``existing``. When
    the current minute is taken, or the clock is behind the newest
    snapshot, the name is one minute after the newest existing name.

    Args:
        now: Creation time of the snapshot
        existing: Names already present in the backup root, including
            names reserved by staging directories

    Returns:
        str: Snapshot name such as ``2021-07-26_13.45``
    """
    taken = set(existing)
    candidate = now.replace(second=0, microsecond=0)
    name = format_snapshot_name(candidate)
    if taken and name <= max(taken):
        candidate = parse_snapshot_name(max(taken)) + timedelta(minutes=1)
        name = format_snapshot_name(candidate)
    return name


def _load_entry(root: str, name: str) -> Optional[SnapshotEntry]:
    path = os.path.join(root, name)

    if name in (LOCK_FILE, BREAK_LOCK_FILE):
        return None
    if (name.startswith(STAGING_PREFIX) and os.path.isdir(path)
            and is_snapshot_name(name[len(STAGING_PREFIX):])):
        logger.warning(f"Ignoring unfinished snapshot '{path}'")
        return None

    if not os.path.isdir(path):
        raise BackupCorruptError("Unrecognized entry in backup root", path)
    if not is_snapshot_name(name):
        raise BackupCorruptError("Directory name is not a snapshot timestamp", path)

    snapshot = SnapshotEntry(name=name, path=path)
    if not os.path.isfile(snapshot.index_path):
        raise BackupCorruptError("Snapshot has no index", snapshot.index_path)
    if not os.path.isdir(snapshot.files_path):
        raise BackupCorruptError("Snapshot has no files folder", snapshot.files_path)
    return snapshot


def list_snapshots(root: str) -> List[SnapshotEntry]:
    """
    List all finalized snapshots in a backup root, oldest first.

    Args:
        root: Backup root directory

    Returns:
        List[SnapshotEntry]: Snapshots ordered by name, which is also
            chronological order

    Raises:
        BackupCorruptError: If the root is missing or holds an entry that
            is neither a valid snapshot nor a known transient file
    """
    if not os.path.isdir(root):
        raise BackupCorruptError("Backup root doesn't exist or isn't a directory", root)

    snapshots = []
    for name in sorted(os.listdir(root)):
        logger.debug(f"Loading snapshot '{name}'")
        snapshot = _load_entry(root, name)
        if snapshot is not None:
            snapshots.append(snapshot)
    return snapshots


def latest(root: str) -> Optional[SnapshotEntry]:
    snapshots = list_snapshots(root)
    return snapshots[-1] if snapshots else None


def reserved_names(root: str) -> List[str]:
    """Names that a new snapshot must not reuse: finalized and staging ones."""
    names = []
    for name in os.listdir(root):
        if name.startswith(STAGING_PREFIX):
            name = name[len(STAGING_PREFIX):]
        if is_snapshot_name(name):
            names.append(name)
    return names
