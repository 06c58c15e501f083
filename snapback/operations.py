import os
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from . import index
from .builder import SnapshotBuilder
from .integrity import check_integrity
from .paths import to_store_path
from .snapshots import list_snapshots


# Get logger instance (configuration is handled in cli.py)
logger = logging.getLogger('snapback')


class BackupOperations:
    """Handles backup operations on one backup root: snapshot, list and check."""

    def __init__(self, root: str, flavor: Optional[str] = None):
        """
        Initialize BackupOperations for a backup root.

        Args:
            root (str): Directory holding the snapshots. It is not created.
            flavor (str, optional): Path flavor of indexed paths; defaults to the host's
        """
        self.root = os.path.abspath(root)
        self.flavor = flavor
        logger.debug(f"Initialized BackupOperations with backup root at {self.root}")

    def snapshot(self, inputs: Iterable[str], force_full: bool = False,
                 follow_symlinks: bool = False, workers: int = 1) -> str:
        """
        Take a snapshot of the given files and directories.

        Files unchanged since the latest snapshot are referenced rather
        than copied, unless ``force_full`` is set.

        Args:
            inputs (Iterable[str]): Files and directories to back up
            force_full (bool): Copy every file regardless of history
            follow_symlinks (bool): Back up link targets instead of the links
            workers (int): Number of copy threads

        Returns:
            str: Name of the new snapshot

        Raises:
            BuildError: If the build fails; the backup root is left unchanged
        """
        inputs = list(inputs)
        logger.info(f"Creating snapshot of {len(inputs)} input(s) in '{self.root}'")
        builder = SnapshotBuilder(self.root, follow_symlinks=follow_symlinks, workers=workers,
                                  flavor=self.flavor)
        result = builder.build(inputs, force_full=force_full)
        return result.snapshot

    def list_snapshots(self) -> List[Dict[str, Any]]:
        """
        List all snapshots with their content metrics.

        Returns:
            List[Dict[str, Any]]: One dict per snapshot, oldest first, with:
                - name: Snapshot name
                - timestamp: Creation time as a datetime
                - entries: Number of tracked files
                - owned: Number of files whose bytes this snapshot holds
                - size: Size of the bytes held by this snapshot in kilobytes

        Raises:
            BuildError: If the backup root or an index is malformed
        """
        snapshots = []
        for snapshot in list_snapshots(self.root):
            entries = index.parse(snapshot, self.flavor)
            owned = [entry for entry in entries if entry.snapshot == snapshot.name]
            size = 0
            for entry in owned:
                stored = to_store_path(snapshot.files_path, entry.path, self.flavor)
                if os.path.lexists(stored):
                    size += os.lstat(stored).st_size
            snapshots.append({
                'name': snapshot.name,
                'timestamp': snapshot.timestamp,
                'entries': len(entries),
                'owned': len(owned),
                'size': int(size / 1024),
            })
        logger.debug(f"Retrieved information for {len(snapshots)} snapshots")
        return snapshots

    def check(self, name: str) -> Tuple[bool, List[str]]:
        """
        Check one snapshot for integrity problems.

        Args:
            name (str): Snapshot name

        Returns:
            Tuple[bool, List[str]]: Whether the snapshot is healthy, and the
                problems found
        """
        logger.info(f"Starting integrity check of snapshot {name}")
        problems = check_integrity(self.root, name, self.flavor)
        if problems:
            logger.warning(f"Integrity check of {name} found {len(problems)} problem(s)")
            for problem in problems:
                logger.debug(problem)
        else:
            logger.info(f"Integrity check of {name} passed")
        return not problems, problems

    def __enter__(self) -> 'BackupOperations':
        logger.debug("Entering context manager for BackupOperations")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        # The root lock is scoped to each build, nothing stays open here
        logger.debug("Exiting context manager for BackupOperations")
