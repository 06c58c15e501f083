import os
import stat
import shutil
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from . import index
from .detector import Classification, FileMetadata, classify, previous_metadata, read_metadata
from .errors import BackupCorruptError, IoError
from .index import IndexEntry
from .lock import RootLock
from .paths import canonicalize, to_store_path
from .snapshots import (
    FILES_DIR,
    SnapshotEntry,
    create_snapshot_name,
    list_snapshots,
    reserved_names,
    staging_name,
)


logger = logging.getLogger('snapback.builder')


@dataclass
class BuildResult:
    """Outcome of a successful build."""

    snapshot: str
    entries: List[IndexEntry] = field(default_factory=list)
    copied: int = 0
    referenced: int = 0
    bytes_copied: int = 0


@dataclass
class _PlannedFile:
    source: str
    canonical: str
    metadata: FileMetadata
    classification: Classification
    owner: str


def _is_within(path: str, parent: str) -> bool:
    if path == parent:
        return False
    try:
        return os.path.commonpath([path, parent]) == parent
    except ValueError:
        # Different drives
        return False


def _fsync_file(path: str) -> None:
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _fsync_directory(path: str) -> None:
    # Directories cannot be opened for syncing on Windows
    if os.name == 'nt':
        return
    _fsync_file(path)


class SnapshotBuilder:
    """
    Builds one incremental snapshot inside a backup root.

    Files whose size and modification time match the copy held by the
    latest snapshot's history are not copied again; the new index points at
    the snapshot that already owns their bytes. Everything else is copied
    into the new snapshot.

    The snapshot is assembled in an ``in_progress_<name>`` directory and
    renamed into place only after every copy and the index have been
    written and synced to disk. On any error the staging directory is
    removed and the backup root is left as it was.

    Nothing under the backup root is ever backed up, even when an input
    points into it.
    """

    def __init__(self, root: str, follow_symlinks: bool, workers: int = 1,
                 flavor: Optional[str] = None,
                 now: Callable[[], datetime] = datetime.now):
        """
        Args:
            root: Backup root directory; must exist
            follow_symlinks: Copy the targets of symbolic links and descend
                into linked directories (True), or store links as links (False)
            workers: Number of threads used for copying
            flavor: Path flavor for canonicalization; defaults to the host's
            now: Clock used to name the snapshot
        """
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self.root = os.path.abspath(root)
        self.real_root = os.path.realpath(self.root)
        self.follow_symlinks = follow_symlinks
        self.workers = workers
        self.flavor = flavor
        self.now = now

    def build(self, inputs: Iterable, force_full: bool = False) -> BuildResult:
        """
        Create a new snapshot of ``inputs``.

        Args:
            inputs: Files and directories to back up
            force_full: Copy every file, ignoring earlier snapshots

        Returns:
            BuildResult: Name of the new snapshot and what went into it

        Raises:
            BuildError: Any error aborts the build; no snapshot is created
        """
        if not os.path.isdir(self.root):
            raise BackupCorruptError("Backup root doesn't exist or isn't a directory", self.root)

        with RootLock(self.root):
            history = list_snapshots(self.root)
            base = None if force_full or not history else history[-1]
            if base is None:
                logger.info("Full snapshot will be performed")
            else:
                logger.info(f"Incremental snapshot based on {base.name}")

            previous = self._load_previous(base)
            sources = self.discover(inputs)
            logger.info(f"Found {len(sources)} files to process")

            name = create_snapshot_name(self.now(), reserved_names(self.root))
            staging = os.path.join(self.root, staging_name(name))
            try:
                os.makedirs(os.path.join(staging, FILES_DIR))
            except OSError as e:
                raise IoError("Cannot create snapshot directory", staging, e) from e

            try:
                result = self._populate(name, staging, sources, previous, history)
                self._finalize(staging, os.path.join(self.root, name))
            except BaseException:
                logger.error(f"Snapshot {name} failed, discarding '{staging}'")
                shutil.rmtree(staging, ignore_errors=True)
                if os.path.lexists(staging):
                    logger.warning(f"Could not fully remove '{staging}'")
                raise

        logger.info(
            f"Snapshot {name} completed successfully: {result.copied} files copied, "
            f"{result.referenced} referenced, "
            f"{result.bytes_copied / 1_048_576:.2f} MB of new content added"
        )
        return result

    def _load_previous(self, base: Optional[SnapshotEntry]) -> Dict[str, IndexEntry]:
        if base is None:
            return {}
        previous = {}
        for entry in index.parse(base, self.flavor):
            previous[canonicalize(entry.path, self.flavor)] = entry
        return previous

    def _validate_inputs(self, inputs: Iterable) -> List[str]:
        paths = []
        for raw in inputs:
            path = os.path.abspath(os.fspath(raw))
            if not os.path.lexists(path):
                logger.warning(f"Provided path doesn't exist: '{raw}'")
                continue
            if path in paths:
                logger.warning(f"Path '{raw}' is the same as '{path}'")
                continue
            paths.append(path)

        filtered = []
        for path in paths:
            parent = next((p for p in paths if _is_within(path, p)), None)
            if parent is not None:
                logger.warning(f"Path '{parent}' includes '{path}'. Child path will be ignored")
                continue
            filtered.append(path)
        return filtered

    def _inside_root(self, path: str) -> bool:
        if self.follow_symlinks:
            resolved = os.path.realpath(path)
        else:
            # The last component is stored as is, only its parents resolve
            head, tail = os.path.split(path)
            resolved = os.path.join(os.path.realpath(head), tail)
        return resolved == self.real_root or _is_within(resolved, self.real_root)

    def _walk(self, top: str, found: List[str], visited: set) -> None:
        stack = [top]
        while stack:
            path = stack.pop()
            if self._inside_root(path):
                logger.warning(f"Skipping '{path}' inside the backup root")
                continue
            try:
                st = os.stat(path, follow_symlinks=self.follow_symlinks)
            except FileNotFoundError:
                if os.path.islink(path):
                    logger.warning(f"Skipping dangling symlink '{path}'")
                    continue
                raise IoError("File disappeared during backup", path) from None
            except OSError as e:
                raise IoError("Cannot access", path, e) from e

            if stat.S_ISDIR(st.st_mode):
                key = (st.st_dev, st.st_ino)
                if key in visited:
                    logger.warning(f"Skipping already visited directory '{path}'")
                    continue
                visited.add(key)
                try:
                    with os.scandir(path) as it:
                        children = sorted(entry.name for entry in it)
                except OSError as e:
                    raise IoError("Cannot list directory", path, e) from e
                stack.extend(os.path.join(path, child) for child in reversed(children))
            elif stat.S_ISREG(st.st_mode) or stat.S_ISLNK(st.st_mode):
                found.append(path)
            else:
                logger.warning(f"Skipping special file '{path}'")

    def discover(self, inputs: Iterable) -> List[Tuple[str, str]]:
        """
        Find every file to back up.

        Returns:
            List[Tuple[str, str]]: ``(canonical_path, absolute_path)`` pairs
                sorted by canonical path
        """
        found: List[str] = []
        visited: set = set()
        for path in self._validate_inputs(inputs):
            self._walk(path, found, visited)

        sources = {}
        for path in found:
            sources.setdefault(canonicalize(path, self.flavor), path)
        return sorted(sources.items())

    def _plan(self, name: str, sources: List[Tuple[str, str]],
              previous: Dict[str, IndexEntry],
              history: List[SnapshotEntry]) -> List[_PlannedFile]:
        known = {snapshot.name: snapshot for snapshot in history}
        plan = []
        for canonical, source in sources:
            metadata = read_metadata(source, follow_symlinks=self.follow_symlinks)
            prev_entry = previous.get(canonical)
            prev_metadata = None
            if prev_entry is not None:
                owner = known.get(prev_entry.snapshot)
                if owner is None:
                    raise BackupCorruptError(
                        f"Index references missing snapshot {prev_entry.snapshot} for",
                        prev_entry.path)
                prev_metadata = previous_metadata(owner, prev_entry.path, self.flavor)

            classification = classify(metadata, prev_metadata)
            owner_name = name if classification.needs_copy() else prev_entry.snapshot
            plan.append(_PlannedFile(source, canonical, metadata, classification, owner_name))
        return plan

    def _copy_one(self, files_root: str, item: _PlannedFile) -> int:
        destination = to_store_path(files_root, item.source, self.flavor)
        try:
            os.makedirs(os.path.dirname(destination), exist_ok=True)
            shutil.copy2(item.source, destination, follow_symlinks=self.follow_symlinks)
            if not os.path.islink(destination):
                _fsync_file(destination)
        except OSError as e:
            raise IoError("Failed to copy", item.source, e) from e
        logger.info(
            f"Copied ({item.classification.value}): '{item.source}' -> '{destination}'",
            extra={
                "path": item.source,
                "classification": item.classification.value,
                "bytes_copied": item.metadata.size,
            },
        )
        return item.metadata.size

    def _copy_all(self, files_root: str, to_copy: List[_PlannedFile]) -> int:
        if self.workers == 1:
            return sum(self._copy_one(files_root, item) for item in to_copy)

        total = 0
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = [executor.submit(self._copy_one, files_root, item) for item in to_copy]
            try:
                for future in as_completed(futures):
                    total += future.result()
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        return total

    def _populate(self, name: str, staging: str, sources: List[Tuple[str, str]],
                  previous: Dict[str, IndexEntry],
                  history: List[SnapshotEntry]) -> BuildResult:
        plan = self._plan(name, sources, previous, history)
        to_copy = [item for item in plan if item.classification.needs_copy()]

        for item in plan:
            if not item.classification.needs_copy():
                logger.debug(
                    f"Unchanged: '{item.source}' stays in {item.owner}",
                    extra={
                        "path": item.source,
                        "classification": item.classification.value,
                        "bytes_copied": 0,
                    },
                )

        files_root = os.path.join(staging, FILES_DIR)
        bytes_copied = self._copy_all(files_root, to_copy)
        self._sync_tree(files_root)
        entries = [IndexEntry(snapshot=item.owner, path=item.source) for item in plan]
        index.write(staging, entries)
        self._sync_directory(staging)

        return BuildResult(
            snapshot=name,
            entries=entries,
            copied=len(to_copy),
            referenced=len(plan) - len(to_copy),
            bytes_copied=bytes_copied,
        )

    def _sync_directory(self, path: str) -> None:
        try:
            _fsync_directory(path)
        except OSError as e:
            raise IoError("Cannot sync directory", path, e) from e

    def _sync_tree(self, top: str) -> None:
        """Flush the entries of every directory under ``top``, deepest first."""
        for dirpath, _, _ in os.walk(top, topdown=False):
            self._sync_directory(dirpath)

    def _finalize(self, staging: str, final: str) -> None:
        if os.path.lexists(final):
            raise IoError("Snapshot directory already exists", final)
        try:
            os.rename(staging, final)
        except OSError as e:
            raise IoError("Cannot finalize snapshot", final, e) from e
        logger.debug(f"Renamed '{staging}' -> '{final}'")
        # The snapshot is published; a failure here must not discard it
        try:
            _fsync_directory(self.root)
        except OSError as e:
            logger.warning(f"Could not sync backup root '{self.root}': {e}")


def build(root: str, inputs: Iterable, force_full: bool = False,
          follow_symlinks: bool = False, workers: int = 1) -> str:
    """Build a snapshot and return its name. See :class:`SnapshotBuilder`."""
    builder = SnapshotBuilder(root, follow_symlinks=follow_symlinks, workers=workers)
    return builder.build(inputs, force_full=force_full).snapshot
