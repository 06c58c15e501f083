"""Exceptions raised by snapback.

Every error that aborts a build derives from :class:`BuildError` and names
the offending path when there is one.
"""

from typing import Optional


class BuildError(Exception):
    """Base class for all errors that abort a backup run."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        if path is not None:
            message = f"{message}: '{path}'"
        super().__init__(message)


class PathEncodingError(BuildError):
    """A path cannot be represented in the backup layout."""


class BackupCorruptError(BuildError):
    """The backup root or one of its snapshots is malformed."""


class IndexParseError(BuildError):
    """A line of index.txt could not be parsed."""

    def __init__(self, message: str, path: Optional[str] = None, line_number: int = 0):
        self.line_number = line_number
        super().__init__(f"{message} (line {line_number})", path)


class IoError(BuildError):
    """An underlying filesystem operation failed."""

    def __init__(self, message: str, path: Optional[str] = None,
                 cause: Optional[OSError] = None):
        self.cause = cause
        if cause is not None:
            message = f"{message} ({cause.strerror or cause})"
        super().__init__(message, path)


class LockContentionError(BuildError):
    """Another process holds the lock on the backup root."""

    def __init__(self, message: str, path: Optional[str] = None, holder: str = ""):
        self.holder = holder
        super().__init__(message, path)
