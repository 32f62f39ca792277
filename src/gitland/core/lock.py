"""Advisory lock marker for an in-progress land.

The marker is a small JSON file at the repository root. It does not stop
git itself from being used concurrently; it tells an operator (and a second
``land`` invocation) that a workflow is running.

Replacing a stale marker re-reads it first and backs off if it changed.
A small window remains between that read and the unlink.

Usage:
    lock = LandLock(repo_root / ".land-in-progress", stale_after=3600)
    with lock.hold(landing="feature", target="main"):
        ...  # marker exists here, removed on every exit path
"""

from __future__ import annotations

import logging
import os
import socket
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import psutil
from pydantic import BaseModel, ValidationError

from gitland.core.result import LockHeldError

logger = logging.getLogger(__name__)


class LockRecord(BaseModel):
    """Contents of the marker file."""

    pid: int
    hostname: str
    started_at: float
    landing: str
    target: str

    def age(self, now: float | None = None) -> float:
        return (now if now is not None else time.time()) - self.started_at


class LandLock:
    """Scoped owner of the marker file.

    Re-entrant within one process: nested ``hold`` calls share the marker
    and only the outermost one removes it.
    """

    def __init__(self, path: Path, *, stale_after: float = 3600.0, force: bool = False) -> None:
        self._path = path
        self._stale_after = stale_after
        self._force = force
        self._depth = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._depth > 0

    def read(self) -> LockRecord | None:
        """Return the current marker contents, or None if absent or unreadable."""
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.debug("Could not read lock marker %s: %s", self._path, exc)
            return None
        try:
            return LockRecord.model_validate_json(raw)
        except ValidationError:
            logger.debug("Lock marker %s is not a valid record", self._path)
            return None

    def is_stale(self, record: LockRecord | None, now: float | None = None) -> bool:
        """A marker is stale when unreadable, too old, or owned by a dead local process."""
        if record is None:
            return True
        if record.age(now) > self._stale_after:
            return True
        if record.hostname == socket.gethostname() and not psutil.pid_exists(record.pid):
            return True
        return False

    def acquire(self, *, landing: str, target: str) -> None:
        if self._depth:
            self._depth += 1
            return

        record = LockRecord(
            pid=os.getpid(),
            hostname=socket.gethostname(),
            started_at=time.time(),
            landing=landing,
            target=target,
        )

        if self._path.exists():
            existing = self.read()
            if self.is_stale(existing):
                logger.warning("Replacing stale land marker %s", self._path)
            elif self._force:
                logger.warning("Overriding land marker held by pid %s (--force)", existing.pid)
            else:
                raise LockHeldError(
                    "Another land appears to be in progress in this repository",
                    context={
                        "marker": str(self._path),
                        "pid": existing.pid,
                        "landing": existing.landing,
                    },
                )
            # Another process may have replaced the same stale marker meanwhile.
            if self.read() != existing:
                raise LockHeldError(
                    "Another land replaced the marker while it was being inspected",
                    context={"marker": str(self._path)},
                )
            self._path.unlink(missing_ok=True)

        try:
            with self._path.open("x", encoding="utf-8") as handle:
                handle.write(record.model_dump_json())
        except FileExistsError as exc:
            raise LockHeldError(
                "Another land created its marker at the same time",
                context={"marker": str(self._path)},
            ) from exc

        self._depth = 1
        logger.debug("Acquired land marker %s", self._path)

    def release(self) -> None:
        if not self._depth:
            return
        self._depth -= 1
        if self._depth:
            return
        record = self.read()
        if record is not None and record.pid != os.getpid():
            logger.warning("Land marker %s was taken over by pid %s", self._path, record.pid)
            return
        self._path.unlink(missing_ok=True)
        logger.debug("Released land marker %s", self._path)

    @contextmanager
    def hold(self, *, landing: str, target: str) -> Iterator[LandLock]:
        self.acquire(landing=landing, target=target)
        try:
            yield self
        finally:
            self.release()


__all__ = ["LandLock", "LockRecord"]
