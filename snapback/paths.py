"""
Mapping between platform absolute paths and the portable layout used
inside a snapshot's ``files`` store.

The mapping is pure: nothing here touches the filesystem.

    /home/user/notes.txt        ->  home/user/notes.txt
    C:\\Users\\me\\notes.txt      ->  C/Users/me/notes.txt
    \\\\server\\share\\notes.txt    ->  UNC/server/share/notes.txt

Portable paths always use ``/`` as separator regardless of the host.
"""

import os
import re
from typing import List, Optional

from .errors import PathEncodingError


POSIX = "posix"
WINDOWS = "windows"

# Marker segment for \\server\share roots. Drive letters are always one
# character so the two never collide.
UNC_SEGMENT = "UNC"

_VERBATIM_PREFIX = "\\\\?\\"
_VERBATIM_UNC_PREFIX = "\\\\?\\UNC\\"
_DRIVE_RE = re.compile(r"^([A-Za-z]):\\(.*)$", re.DOTALL)
_UNC_RE = re.compile(r"^\\\\([^\\]+)\\([^\\]+)(?:\\(.*))?$", re.DOTALL)

_FORBIDDEN_EVERYWHERE = ("\0", "\n", "\r")
_FORBIDDEN_ON_WINDOWS = '<>:"|?*'


def host_flavor() -> str:
    """Return the path flavor of the running platform."""
    return WINDOWS if os.name == "nt" else POSIX


def _check_segment(segment: str, path: str, flavor: str) -> None:
    if segment == "":
        raise PathEncodingError("Path contains an empty segment", path)
    if segment in (".", ".."):
        raise PathEncodingError("Path is not normalized", path)
    for char in _FORBIDDEN_EVERYWHERE:
        if char in segment:
            raise PathEncodingError(f"Path segment contains {char!r}", path)
    if flavor == WINDOWS:
        for char in _FORBIDDEN_ON_WINDOWS:
            if char in segment:
                raise PathEncodingError(f"Path segment contains {char!r}", path)
    try:
        segment.encode("utf-8")
    except UnicodeEncodeError:
        raise PathEncodingError("Path segment is not valid UTF-8", path) from None


def _split_rest(rest: Optional[str], sep: str) -> List[str]:
    if not rest:
        return []
    return rest.split(sep)


def _posix_segments(path: str) -> List[str]:
    if not path.startswith("/"):
        raise PathEncodingError("Path is not absolute", path)
    return _split_rest(path[1:], "/")


def _windows_segments(path: str) -> List[str]:
    path = path.replace("/", "\\")
    if path.startswith(_VERBATIM_UNC_PREFIX):
        path = "\\\\" + path[len(_VERBATIM_UNC_PREFIX):]
    elif path.startswith(_VERBATIM_PREFIX):
        path = path[len(_VERBATIM_PREFIX):]

    match = _DRIVE_RE.match(path)
    if match:
        return [match.group(1)] + _split_rest(match.group(2), "\\")

    match = _UNC_RE.match(path)
    if match:
        server, share, rest = match.groups()
        return [UNC_SEGMENT, server, share] + _split_rest(rest, "\\")

    raise PathEncodingError("Path is not absolute", path)


def canonicalize(absolute_path, flavor: Optional[str] = None) -> str:
    """
    Map an absolute path to its portable form.

    Args:
        absolute_path: Absolute path in the given flavor (str or PathLike)
        flavor: ``"posix"`` or ``"windows"``; defaults to the host flavor

    Returns:
        str: ``/``-separated path relative to a files store

    Raises:
        PathEncodingError: If the path is relative or has a segment that
            cannot be stored in the backup layout
    """
    flavor = flavor or host_flavor()
    path = os.fspath(absolute_path)
    if flavor == WINDOWS:
        segments = _windows_segments(path)
    else:
        segments = _posix_segments(path)

    for segment in segments:
        _check_segment(segment, path, flavor)
    return "/".join(segments)


def decanonicalize(portable_path: str, flavor: Optional[str] = None) -> str:
    """Inverse of :func:`canonicalize`."""
    flavor = flavor or host_flavor()
    segments = _split_rest(portable_path, "/")

    if flavor == POSIX:
        return "/" + "/".join(segments)

    if not segments:
        raise PathEncodingError("Portable path has no root segment", portable_path)
    root, rest = segments[0], segments[1:]
    if root == UNC_SEGMENT:
        if len(rest) < 2:
            raise PathEncodingError("UNC path needs a server and a share", portable_path)
        return "\\\\" + "\\".join(rest)
    if len(root) == 1 and root.isalpha():
        return f"{root}:\\" + "\\".join(rest)
    raise PathEncodingError("Unknown root segment", portable_path)


def is_absolute(path: str, flavor: Optional[str] = None) -> bool:
    """Whether ``path`` is absolute in the given flavor (the host's by default)."""
    flavor = flavor or host_flavor()
    if flavor == POSIX:
        return path.startswith("/")
    try:
        _windows_segments(path)
    except PathEncodingError:
        return False
    return True


def to_store_path(files_root, absolute_path, flavor: Optional[str] = None) -> str:
    """Location of ``absolute_path`` inside the files store at ``files_root``."""
    portable = canonicalize(absolute_path, flavor)
    return os.path.join(os.fspath(files_root), *portable.split("/"))
