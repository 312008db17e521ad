"""Single-writer lock for mutating configuration operations.

At most one mutating operation (create backup, restore, migration commit) may
be in flight at a time. The lock combines an in-process reentrant lock with a
PID lock file so that separate processes on the same host are serialized too.

Every MutationLock for the same lock file shares one in-process state (thread
lock and nesting depth), so independent BackupStore or Migrator instances in a
long-lived process exclude each other as well.

Read-only operations never take this lock.
"""

from __future__ import annotations

import contextlib
import logging
import os
import threading
import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from confkeeper.core.exceptions import ConfigIOError, MutationLockError

logger = logging.getLogger(__name__)

__all__ = ["MutationLock", "_is_pid_alive", "_read_lock_file"]


def _is_pid_alive(pid: int) -> bool:
    """Whether pid names a running process.

    A process owned by another user counts as alive; non-positive PIDs never do.
    """
    if pid <= 0:
        return False

    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False


def _read_lock_file(lock_path: Path) -> tuple[int | None, str | None]:
    """Return the (pid, acquired-at) pair recorded in a lock file.

    Both are None when the file is missing, half-written or garbled.
    """
    try:
        content = lock_path.read_text().strip().split("\n")
        if len(content) >= 2:
            pid = int(content[0].strip())
            timestamp = content[1].strip()
            return pid, timestamp
    except (ValueError, IndexError, OSError):
        pass
    return None, None


@dataclass
class _LockState:
    """In-process state shared by every MutationLock on one lock file."""

    thread_lock: threading.RLock = field(default_factory=threading.RLock)
    depth: int = 0


_states: dict[Path, _LockState] = {}
_states_guard = threading.Lock()


def _state_for(lock_path: Path) -> _LockState:
    key = lock_path.resolve()
    with _states_guard:
        state = _states.get(key)
        if state is None:
            state = _states[key] = _LockState()
        return state


class MutationLock:
    """Reentrant, cross-process mutual exclusion for mutating operations.

    The first acquisition in a thread creates the lock file; nested
    acquisitions (e.g. a safety snapshot taken inside a restore), through this
    instance or any other on the same path, only bump the shared depth. A lock
    file left by a dead process is removed. A live holder is retried
    ``attempts`` times before MutationLockError is raised.

    Attributes:
        lock_path: Location of the PID lock file.

    """

    def __init__(self, lock_path: Path, attempts: int = 20, delay: float = 0.1) -> None:
        """Initialize the lock.

        Args:
            lock_path: Path of the PID lock file.
            attempts: How many times to try acquiring a held lock.
            delay: Seconds to wait between attempts.

        """
        self.lock_path = lock_path
        self._attempts = max(1, attempts)
        self._delay = delay
        self._state = _state_for(lock_path)

    @property
    def held(self) -> bool:
        """Whether this process currently holds the lock."""
        return self._state.depth > 0

    def _try_create(self) -> bool:
        """Attempt to create the lock file exclusively."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(f"{os.getpid()}\n{datetime.now(UTC).isoformat()}\n")
        return True

    def _clear_if_stale(self) -> None:
        """Remove the lock file if its owner is gone."""
        existing_pid, lock_timestamp = _read_lock_file(self.lock_path)
        if existing_pid is None:
            # Possibly half-written by a concurrent holder: only reclaim once
            # the writer has had time to finish.
            try:
                age = time.time() - self.lock_path.stat().st_mtime
            except FileNotFoundError:
                return
            if age < self._delay * self._attempts:
                return
        elif existing_pid == os.getpid():
            # Our own PID is only a leftover when nothing in-process holds it
            if self._state.depth > 0:
                return
        elif _is_pid_alive(existing_pid):
            return

        logger.warning(
            "Removing stale lock file %s (pid %s, locked at %s)",
            self.lock_path,
            existing_pid,
            lock_timestamp,
        )
        with contextlib.suppress(FileNotFoundError):
            self.lock_path.unlink()

    def _acquire_file(self) -> None:
        for attempt in range(self._attempts):
            try:
                if self._try_create():
                    logger.debug("Acquired mutation lock %s", self.lock_path)
                    return
                self._clear_if_stale()
                if self._try_create():
                    logger.debug("Acquired mutation lock %s", self.lock_path)
                    return
            except OSError as e:
                raise ConfigIOError(f"Cannot create lock file {self.lock_path}: {e}") from e
            if attempt < self._attempts - 1:
                time.sleep(self._delay)

        holder, _ = _read_lock_file(self.lock_path)
        raise MutationLockError(
            f"Another mutating operation is in progress (PID {holder}). "
            f"If this is incorrect, remove the stale lock file: {self.lock_path}"
        )

    def _release_file(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self.lock_path.unlink()
        logger.debug("Released mutation lock %s", self.lock_path)

    @contextmanager
    def hold(self) -> Generator[None, None, None]:
        """Hold the lock for the duration of the with-block.

        Raises:
            MutationLockError: If another thread or process keeps the lock for
                every attempt.
            ConfigIOError: If the lock file cannot be created.

        """
        state = self._state
        if not state.thread_lock.acquire(timeout=self._attempts * self._delay):
            raise MutationLockError(
                f"Another mutating operation is in progress in this process: {self.lock_path}"
            )
        try:
            if state.depth == 0:
                self._acquire_file()
            state.depth += 1
            try:
                yield
            finally:
                state.depth -= 1
                if state.depth == 0:
                    self._release_file()
        finally:
            state.thread_lock.release()
