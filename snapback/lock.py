import os
import json
import socket
import logging
from datetime import datetime, timezone

from .errors import IoError, LockContentionError
from .snapshots import BREAK_LOCK_FILE, LOCK_FILE


logger = logging.getLogger('snapback.lock')


def _is_process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    except OSError:
        return False
    return True


class RootLock:
    """
    Exclusive lock on a backup root, held for the duration of one build.

    The lock is a ``.lock`` file created with ``O_EXCL`` inside the root.
    A second build on the same root fails immediately with
    :class:`LockContentionError`; there is no waiting. A lock left behind by
    a dead process on this host is treated as stale and removed.

    Removing a stale lock is guarded by a second ``.lock.break`` file, also
    created with ``O_EXCL``, so two processes that find the same stale lock
    cannot both replace it. If a process dies while holding that guard, the
    guard has to be removed by hand.
    """

    def __init__(self, root: str):
        self.root = root
        self.path = os.path.join(root, LOCK_FILE)
        self.break_path = os.path.join(root, BREAK_LOCK_FILE)
        self.acquired = False

    def _read_holder(self) -> str:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return f.read()
        except OSError:
            return ""

    def _is_stale(self, holder: str) -> bool:
        try:
            data = json.loads(holder)
        except ValueError:
            return False
        if not isinstance(data, dict) or data.get("hostname") != socket.gethostname():
            return False
        pid = data.get("pid")
        return isinstance(pid, int) and not _is_process_alive(pid)

    def _try_create(self) -> bool:
        lock_data = {
            "pid": os.getpid(),
            "hostname": socket.gethostname(),
            "acquired_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            raise IoError("Cannot create lock file", self.path, e) from e
        try:
            os.write(fd, json.dumps(lock_data).encode('utf-8'))
            os.fsync(fd)
        finally:
            os.close(fd)
        return True

    def acquire(self) -> None:
        """
        Take the lock.

        Raises:
            LockContentionError: If another live process holds the lock
            IoError: If the lock file cannot be created
        """
        if self._try_create():
            self.acquired = True
            logger.debug(f"Acquired lock '{self.path}'")
            return

        holder = self._read_holder()
        if self._is_stale(holder) and self._break_stale(holder):
            self.acquired = True
            logger.debug(f"Acquired lock '{self.path}'")
            return

        raise LockContentionError("Backup root is locked by another process", self.path,
                                  self._read_holder() or holder)

    def _break_stale(self, holder: str) -> bool:
        """
        Replace the lock file with ours if it still belongs to ``holder``.

        Returns:
            bool: Whether the lock is now ours
        """
        try:
            fd = os.open(self.break_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            logger.debug(f"Another process is removing the stale lock '{self.path}'")
            return False
        except OSError as e:
            raise IoError("Cannot create lock file", self.break_path, e) from e
        os.close(fd)

        try:
            # Someone may have replaced the stale lock since it was read
            if self._read_holder() != holder:
                return False
            logger.warning(f"Removing stale lock '{self.path}' held by {holder}")
            try:
                os.unlink(self.path)
            except FileNotFoundError:
                pass
            return self._try_create()
        finally:
            try:
                os.unlink(self.break_path)
            except FileNotFoundError:
                logger.warning(f"Lock file '{self.break_path}' disappeared before release")

    def release(self) -> None:
        if not self.acquired:
            return
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            logger.warning(f"Lock file '{self.path}' disappeared before release")
        self.acquired = False
        logger.debug(f"Released lock '{self.path}'")

    def __enter__(self) -> 'RootLock':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
