"""
Reading and writing of a snapshot's ``index.txt``.

Each line maps one tracked file to the snapshot that physically holds its
bytes::

    2021-07-26_13.45 /home/user/notes.txt

The first space separates the two fields; the path may itself contain
spaces. There is no header and no escaping.
"""

import os
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .errors import BackupCorruptError, IndexParseError, IoError
from .paths import is_absolute
from .snapshots import INDEX_FILE, SnapshotEntry, is_snapshot_name


logger = logging.getLogger('snapback.index')

TEMP_SUFFIX = ".tmp"


@dataclass(frozen=True)
class IndexEntry:
    """One tracked file: the owning snapshot's name and the original absolute path."""

    snapshot: str
    path: str

    def to_line(self) -> str:
        return f"{self.snapshot} {self.path}\n"


def parse_line(line: str, line_number: int, index_path: Optional[str] = None,
               flavor: Optional[str] = None) -> IndexEntry:
    """
    Parse one line of an index.

    Paths must be absolute in ``flavor`` (the host's by default), so an
    index written on another platform is rejected here rather than later.

    Raises:
        IndexParseError: If the separator is missing, the snapshot name is
            not a timestamp or the path is not absolute
    """
    snapshot, sep, path = line.partition(" ")
    if not sep:
        raise IndexParseError("Missing separator", index_path, line_number)
    if not is_snapshot_name(snapshot):
        raise IndexParseError(f"Invalid snapshot name '{snapshot}'", index_path, line_number)
    if not path or not is_absolute(path, flavor):
        raise IndexParseError(f"Path '{path}' is not absolute", index_path, line_number)
    return IndexEntry(snapshot=snapshot, path=path)


def parse_file(index_path: str, flavor: Optional[str] = None) -> List[IndexEntry]:
    """
    Parse an index file.

    Args:
        index_path: Path of ``index.txt``
        flavor: Path flavor the entries must be absolute in

    Returns:
        List[IndexEntry]: Entries in file order

    Raises:
        BackupCorruptError: If the file doesn't exist
        IndexParseError: On the first malformed line
        IoError: If the file cannot be read
    """
    if not os.path.isfile(index_path):
        raise BackupCorruptError("Index file is missing", index_path)

    entries = []
    try:
        with open(index_path, 'rb') as f:
            for line_number, raw in enumerate(f, 1):
                if not raw.endswith(b"\n"):
                    raise IndexParseError("Line is not terminated", index_path, line_number)
                try:
                    line = raw[:-1].decode('utf-8')
                except UnicodeDecodeError:
                    raise IndexParseError("Line is not valid UTF-8", index_path, line_number) from None
                entries.append(parse_line(line, line_number, index_path, flavor))
    except OSError as e:
        raise IoError("Cannot read index", index_path, e) from e

    logger.debug(f"Parsed {len(entries)} entries from '{index_path}'")
    return entries


def parse(snapshot: SnapshotEntry, flavor: Optional[str] = None) -> List[IndexEntry]:
    return parse_file(snapshot.index_path, flavor)


def format_entries(entries: Iterable[IndexEntry]) -> str:
    return "".join(entry.to_line() for entry in entries)


def write(snapshot_dir: str, entries: Iterable[IndexEntry]) -> str:
    """
    Write ``index.txt`` into a snapshot directory.

    The text goes to a temporary file first, which is fsynced and then
    renamed over ``index.txt``. A reader therefore sees either no index or
    the complete one.

    Args:
        snapshot_dir: Directory of the snapshot being built
        entries: Index entries in their final order

    Returns:
        str: Path of the written index

    Raises:
        IoError: If writing or renaming fails
    """
    index_path = os.path.join(snapshot_dir, INDEX_FILE)
    temp_path = index_path + TEMP_SUFFIX
    content = format_entries(entries)
    try:
        with open(temp_path, 'w', encoding='utf-8', newline='\n') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, index_path)
    except OSError as e:
        raise IoError("Cannot write index", index_path, e) from e
    logger.debug(f"Wrote index '{index_path}'")
    return index_path
