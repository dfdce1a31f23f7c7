"""Advisory file locks serialising mutations of the same application.

Locks are ``fcntl.flock`` exclusive locks on small files under the runtime
directory. Each lock file is rewritten with JSON metadata describing the
holder and is left in place after release for diagnostics.
"""
from __future__ import annotations

import fcntl
import json
import logging
import os
import time
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

from .cleanup import ensure_path_component
from .errors import StackAgentError

LOGGER = logging.getLogger(__name__)

GLOBAL_LOCK_NAME = "stackagent.lock"
_POLL_INTERVAL = 0.05


class LockTimeoutError(StackAgentError):
    """Raised when a lock cannot be acquired before the timeout expires."""

    def __init__(self, path: Path, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:.1f}s waiting for lock {path}")
        self.path = path
        self.timeout = timeout


@dataclass(slots=True)
class LockHandle:
    """A held lock and the time spent waiting for it."""

    path: Path
    wait_ms: int
    _handle: IO[str] = field(repr=False)

    def release(self) -> None:
        """Drop the lock and close the underlying descriptor."""
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()


@dataclass(slots=True)
class LockBundle:
    """Several locks acquired together."""

    handles: list[LockHandle] = field(default_factory=list)

    @property
    def wait_ms(self) -> int:
        """Total wait time across every lock in the bundle."""
        return sum(handle.wait_ms for handle in self.handles)


class LockManager:
    """Create and acquire global and per-application locks."""

    def __init__(self, runtime_dir: Path, default_timeout: float = 30.0) -> None:
        self.runtime_dir = Path(runtime_dir)
        self.default_timeout = default_timeout

    def global_lock_path(self) -> Path:
        """Return the path of the agent-wide lock file."""
        return self.runtime_dir / GLOBAL_LOCK_NAME

    def app_lock_path(self, app_id: str) -> Path:
        """Return the path of the lock file guarding *app_id*."""
        ensure_path_component(app_id, "application id")
        return self.runtime_dir / "apps" / f"{app_id}.lock"

    @contextmanager
    def global_lock(self, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the agent-wide lock for the duration of the block."""
        handle = self._acquire(self.global_lock_path(), timeout)
        try:
            yield handle
        finally:
            handle.release()

    @contextmanager
    def app_lock(self, app_id: str, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the lock for *app_id* for the duration of the block."""
        handle = self._acquire(self.app_lock_path(app_id), timeout)
        try:
            yield handle
        finally:
            handle.release()

    @contextmanager
    def mutate_apps(
        self,
        app_ids: Iterable[str],
        *,
        include_global: bool = True,
        timeout: float | None = None,
    ) -> Iterator[LockBundle]:
        """Acquire the global lock (optionally) then each app lock in sorted order."""
        bundle = LockBundle()
        with ExitStack() as stack:
            if include_global:
                handle = self._acquire(self.global_lock_path(), timeout)
                stack.callback(handle.release)
                bundle.handles.append(handle)
            for app_id in sorted(set(app_ids)):
                handle = self._acquire(self.app_lock_path(app_id), timeout)
                stack.callback(handle.release)
                bundle.handles.append(handle)
            yield bundle

    def _acquire(self, path: Path, timeout: float | None) -> LockHandle:
        limit = self.default_timeout if timeout is None else timeout
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = path.open("a+", encoding="utf-8")
        started = time.monotonic()
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - started >= limit:
                    handle.close()
                    raise LockTimeoutError(path, limit) from None
                time.sleep(_POLL_INTERVAL)
            except OSError:
                handle.close()
                raise
        wait_ms = int((time.monotonic() - started) * 1000)
        self._write_metadata(handle, path)
        LOGGER.debug("Acquired lock %s after %d ms", path, wait_ms)
        return LockHandle(path=path, wait_ms=wait_ms, _handle=handle)

    @staticmethod
    def _write_metadata(handle: IO[str], path: Path) -> None:
        metadata = {
            "pid": os.getpid(),
            "path": str(path),
            "acquired_at": datetime.now(UTC).isoformat(timespec="seconds"),
        }
        handle.seek(0)
        handle.truncate()
        handle.write(json.dumps(metadata))
        handle.flush()


__all__ = ["LockBundle", "LockHandle", "LockManager", "LockTimeoutError"]
