"""Named exclusive locks for tests that contend for a scarce shared resource.

Locks are files under a shared directory, so they serialize tests across
xdist workers and concurrent pytest processes on the same host. They are
not a distributed lock; separate CI runners rely on unique stack names.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout

from .exceptions import LockTimeoutError, ValidationError

logger = logging.getLogger(__name__)

LOCK_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def validate_lock_name(name: str) -> None:
    if not LOCK_NAME_PATTERN.match(name):
        raise ValidationError(
            "lock_name",
            name,
            "Must start with an alphanumeric character and contain only "
            "alphanumerics, '.', '_' and '-'.",
        )


class LockSet:
    """
    Acquires a set of named locks in a deterministic order.

    Locks are taken in sorted order, so two tests asking for overlapping
    sets cannot deadlock, and released in reverse order.

    Example:
        async with LockSet(["account-quota"], lock_dir, timeout=600):
            ...
    """

    def __init__(
        self,
        names: list[str] | tuple[str, ...],
        lock_dir: Path,
        timeout: float | None = None,
        poll_interval: float = 0.5,
    ) -> None:
        for name in names:
            validate_lock_name(name)
        self.names = sorted(set(names))
        self.lock_dir = lock_dir
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._held: list[tuple[str, FileLock]] = []

    @property
    def held(self) -> list[str]:
        return [name for name, _ in self._held]

    def _lock_for(self, name: str) -> FileLock:
        return FileLock(str(self.lock_dir / f"{name}.lock"), thread_local=False)

    async def acquire(self) -> None:
        """
        Acquire every lock, waiting at most ``timeout`` seconds in total.

        On failure, locks acquired so far are released before raising.

        Raises:
            LockTimeoutError: If any lock is not acquired before the deadline
        """
        if not self.names:
            return
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        deadline = None if self.timeout is None else time.monotonic() + self.timeout

        try:
            for name in self.names:
                lock = self._lock_for(name)
                logger.debug("Waiting for lock %s", name)
                started = time.monotonic()
                await self._acquire_one(name, lock, deadline)
                self._held.append((name, lock))
                logger.info("Acquired lock %s after %.1fs", name, time.monotonic() - started)
        except BaseException:
            self.release()
            raise

    async def _acquire_one(self, name: str, lock: FileLock, deadline: float | None) -> None:
        # Non-blocking attempts keep the wait cancellable by the test timeout
        while True:
            try:
                lock.acquire(timeout=0)
                return
            except Timeout:
                if deadline is not None and time.monotonic() >= deadline:
                    raise LockTimeoutError(name, self.timeout or 0.0) from None
            delay = self.poll_interval
            if deadline is not None:
                delay = min(delay, max(0.0, deadline - time.monotonic()))
            await asyncio.sleep(delay)

    def release(self) -> None:
        """Release held locks in reverse acquisition order."""
        while self._held:
            name, lock = self._held.pop()
            try:
                lock.release()
                logger.debug("Released lock %s", name)
            except Exception:
                logger.warning("Failed to release lock %s", name, exc_info=True)

    async def __aenter__(self) -> LockSet:
        await self.acquire()
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc_val: Any, exc_tb: Any
    ) -> None:
        self.release()
