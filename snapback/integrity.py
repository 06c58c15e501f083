import os
import logging
from typing import List, Optional, Set

from . import index
from .errors import BuildError, PathEncodingError
from .paths import to_store_path
from .snapshots import FILES_DIR, SnapshotEntry, is_snapshot_name


logger = logging.getLogger('snapback.integrity')


def _indexed_store_paths(root: str, snapshot: SnapshotEntry,
                         entries: List[index.IndexEntry], problems: List[str],
                         flavor: Optional[str]) -> Set[str]:
    owned = set()
    for entry in entries:
        if entry.snapshot == snapshot.name:
            try:
                stored = to_store_path(snapshot.files_path, entry.path, flavor)
            except PathEncodingError as e:
                problems.append(str(e))
                continue
            owned.add(os.path.normpath(stored))
            if not os.path.lexists(stored):
                problems.append(f"Entry '{entry.path}' is indexed, but is missing in snapshot.")
            continue

        if entry.snapshot > snapshot.name:
            problems.append(
                f"Entry '{entry.path}' references later snapshot {entry.snapshot}.")
            continue

        owner_files = os.path.join(root, entry.snapshot, FILES_DIR)
        if not os.path.isdir(owner_files):
            problems.append(
                f"Entry '{entry.path}' references missing snapshot {entry.snapshot}.")
            continue
        try:
            stored = to_store_path(owner_files, entry.path, flavor)
        except PathEncodingError as e:
            problems.append(str(e))
            continue
        if not os.path.lexists(stored):
            problems.append(
                f"Entry '{entry.path}' references {entry.snapshot}, which doesn't hold it.")
    return owned


def check_integrity(root: str, name: str, flavor: Optional[str] = None) -> List[str]:
    """
    Verify one snapshot against its index and the snapshots it references.

    Args:
        root: Backup root directory
        name: Snapshot name
        flavor: Path flavor of the indexed paths; defaults to the host's

    Returns:
        List[str]: Problems found; empty when the snapshot is healthy
    """
    path = os.path.join(root, name)
    if not os.path.isdir(path):
        return ["Snapshot doesn't exist."]
    if not is_snapshot_name(name):
        return [f"Snapshot's name '{name}' is not a correct timestamp."]

    snapshot = SnapshotEntry(name=name, path=path)
    if not os.path.isfile(snapshot.index_path):
        return ["File index.txt is missing."]
    if not os.path.isdir(snapshot.files_path):
        return ["Folder files is missing."]

    logger.debug(f"Traversing index of {name}")
    try:
        entries = index.parse(snapshot, flavor)
    except BuildError as e:
        return [str(e)]

    problems: List[str] = []
    owned = _indexed_store_paths(root, snapshot, entries, problems, flavor)

    logger.debug(f"Traversing files of {name}")
    for dirpath, dirnames, filenames in os.walk(snapshot.files_path):
        # Links to directories are stored entries, not folders to descend into
        linked_dirs = [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]
        for filename in filenames + linked_dirs:
            stored = os.path.normpath(os.path.join(dirpath, filename))
            if stored not in owned:
                problems.append(f"Entry '{stored}' is present in snapshot, but is not indexed.")

    return problems
