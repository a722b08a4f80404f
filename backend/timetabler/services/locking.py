from __future__ import annotations

from collections import Counter
from contextlib import contextmanager
import logging
from threading import Lock
from typing import Iterator

from timetabler.core.exceptions import ResourceBusyError
from timetabler.schemas.entities import SchedulingKey

logger = logging.getLogger(__name__)


class KeyLockManager:
    """One lock per scheduling key, acquired with a bounded wait.

    A key's lock is dropped once no caller holds or waits for it.
    """

    def __init__(self, wait_seconds: float = 5.0) -> None:
        self.wait_seconds = wait_seconds
        self._locks: dict[str, Lock] = {}
        self._users: Counter[str] = Counter()
        self._guard = Lock()

    @staticmethod
    def _name(key: SchedulingKey | str) -> str:
        return key.as_string() if isinstance(key, SchedulingKey) else key

    def _checkout(self, name: str) -> Lock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = Lock()
                self._locks[name] = lock
            self._users[name] += 1
            return lock

    def _checkin(self, name: str) -> None:
        with self._guard:
            self._users[name] -= 1
            if self._users[name] <= 0:
                del self._users[name]
                del self._locks[name]

    @contextmanager
    def hold(self, key: SchedulingKey | str, *, wait_seconds: float | None = None) -> Iterator[None]:
        name = self._name(key)
        timeout = self.wait_seconds if wait_seconds is None else wait_seconds
        lock = self._checkout(name)
        try:
            if not lock.acquire(timeout=max(0.0, timeout)):
                logger.warning("Scheduling key busy key=%s waited=%ss", name, timeout)
                raise ResourceBusyError(name)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(name)

    def is_held(self, key: SchedulingKey | str) -> bool:
        with self._guard:
            lock = self._locks.get(self._name(key))
        return lock is not None and lock.locked()

    @property
    def tracked_keys(self) -> int:
        with self._guard:
            return len(self._locks)
