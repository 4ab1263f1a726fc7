"""File-backed locks keyed by release version.

A :class:`VersionLock` serializes invocations that target the same version,
both within one process and across processes sharing a repository checkout.
Locks for different keys are independent, so runs for different versions
proceed in parallel.

The lock is an exclusively created file holding the owner's pid. A lock
file whose owner no longer exists is considered stale and is reclaimed.
Reclaimers serialize on an ``flock`` guard and re-check the owner before
unlinking, so two processes never both take over the same stale lock.
"""

from __future__ import annotations

import asyncio
import fcntl
import logging
import os
import re
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from release_pipeline.config import LOCK_POLL_INTERVAL
from release_pipeline.exceptions import RunInProgressError

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")
_EMPTY_LOCK_GRACE = 5.0


def _lock_filename(key: str) -> str:
    return _UNSAFE.sub("_", key) + ".lock"


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class VersionLock:
    """Async context manager guarding one lock key.

    Parameters
    ----------
    lock_dir : Path
        Directory holding the lock files; created on demand.
    key : str
        Lock key, e.g. ``"run-2.3.0"`` or ``"tag-2.3.0"``.
    wait : float, optional
        Seconds to keep polling for a held lock before giving up.

    Examples
    --------
    >>> async def release():
    ...     async with VersionLock(Path(".release-locks"), "run-2.3.0"):
    ...         ...
    """

    def __init__(self, lock_dir: Path, key: str, *, wait: float = 0.0) -> None:
        self.lock_dir = Path(lock_dir)
        self.key = key
        self.wait = max(0.0, float(wait))
        self.path = self.lock_dir / _lock_filename(key)
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _try_acquire(self) -> bool:
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            if self._reclaim_stale():
                return self._try_acquire()
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(str(os.getpid()))
        self._held = True
        return True

    def _read_owner(self) -> int | None:
        """Return the pid in the lock file, ``None`` if it cannot be judged.

        Raises ``FileNotFoundError`` when the file is gone.
        """
        try:
            text = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            raise
        except OSError:
            return None
        if not text:
            # The owner may not have written its pid yet.
            try:
                age = time.time() - self.path.stat().st_mtime
            except FileNotFoundError:
                raise
            except OSError:
                return None
            return 0 if age > _EMPTY_LOCK_GRACE else None
        try:
            return int(text)
        except ValueError:
            return None

    @contextmanager
    def _reclaim_guard(self) -> Iterator[None]:
        # The guard file is never removed, so every reclaimer locks the same inode.
        fd = os.open(self.lock_dir / f".{self.path.name}.guard", os.O_CREAT | os.O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            os.close(fd)

    def _reclaim_stale(self) -> bool:
        try:
            owner = self._read_owner()
        except FileNotFoundError:
            # Released between our create attempt and the read.
            return True
        if owner is None or _pid_alive(owner):
            return False
        with self._reclaim_guard():
            # Another reclaimer may have replaced the file since it was read.
            try:
                current = self._read_owner()
            except FileNotFoundError:
                return True
            if current != owner:
                return False
            logger.warning("Reclaiming stale lock %s (owner pid %d)", self.path, owner)
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
        return True

    async def acquire(self) -> None:
        """Take the lock, polling for up to ``wait`` seconds.

        Raises
        ------
        RunInProgressError
            If the lock is still held by someone else after ``wait`` seconds.
        """
        deadline = time.monotonic() + self.wait
        while not self._try_acquire():
            if time.monotonic() >= deadline:
                raise RunInProgressError(self.key, context={"path": str(self.path)})
            await asyncio.sleep(LOCK_POLL_INTERVAL)
        logger.debug("Acquired lock %s", self.key)

    def release(self) -> None:
        if not self._held:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        self._held = False
        logger.debug("Released lock %s", self.key)

    async def __aenter__(self) -> VersionLock:
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False


__all__ = ["VersionLock"]
