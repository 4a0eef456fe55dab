"""Named-resource locks guarding round closure, reopen and result writes.

Two backends share one interface:
- InMemoryLockBackend: a process-local map, fine for a single server
- PostgresAdvisoryLockBackend: session advisory locks, shared by every
  process connected to the same database

Acquisition never waits: a busy resource raises LockUnavailable so the
second caller gets a definitive "already being processed" answer.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Generator, Optional, Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine

from escalera.config import Settings
from escalera.errors import LockUnavailable

logger = logging.getLogger(__name__)


@dataclass
class LockHandle:
    """Proof of ownership of a named resource."""

    resource: str
    operation: str
    token: str
    acquired_at: float
    extra: Any = field(default=None, repr=False)


class LockBackend(Protocol):
    def acquire(self, resource: str, operation: str) -> LockHandle:
        ...

    def release(self, handle: LockHandle) -> None:
        ...

    def is_locked(self, resource: str) -> bool:
        ...


class InMemoryLockBackend:
    """
    Process-local named locks with a stale timeout.

    A lock older than ``timeout_seconds`` is force-released on the next
    acquisition attempt and logged as stale. This keeps the ladder live if
    a holder dies; it does not make overlapping holders safe.
    """

    def __init__(self, timeout_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._guard = threading.Lock()
        self._locks: dict[str, LockHandle] = {}

    def _evict_stale(self, resource: str, now: float) -> None:
        current = self._locks.get(resource)
        if current is not None and now - current.acquired_at > self.timeout_seconds:
            logger.warning(
                "Force-releasing stale lock %s held by '%s' for %.1fs",
                resource,
                current.operation,
                now - current.acquired_at,
            )
            del self._locks[resource]

    def acquire(self, resource: str, operation: str) -> LockHandle:
        with self._guard:
            now = self._clock()
            self._evict_stale(resource, now)
            current = self._locks.get(resource)
            if current is not None:
                raise LockUnavailable(
                    f"{resource} is locked by '{current.operation}'",
                    context={"resource": resource, "held_by": current.operation},
                )
            handle = LockHandle(resource, operation, uuid.uuid4().hex, now)
            self._locks[resource] = handle
            logger.debug("Lock acquired: %s (%s)", resource, operation)
            return handle

    def release(self, handle: LockHandle) -> None:
        with self._guard:
            current = self._locks.get(handle.resource)
            # A stale-evicted holder must not release its successor's lock
            if current is not None and current.token == handle.token:
                del self._locks[handle.resource]
                logger.debug("Lock released: %s (%s)", handle.resource, handle.operation)

    def is_locked(self, resource: str) -> bool:
        with self._guard:
            self._evict_stale(resource, self._clock())
            return resource in self._locks

    def active_locks(self) -> dict[str, str]:
        """resource -> operation for every live lock."""
        with self._guard:
            now = self._clock()
            for resource in list(self._locks):
                self._evict_stale(resource, now)
            return {r: h.operation for r, h in self._locks.items()}


def advisory_lock_key(name: str) -> int:
    """Return a deterministic signed 64-bit lock key from a resource name."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=True)


class PostgresAdvisoryLockBackend:
    """
    PostgreSQL session advisory locks.

    The lock lives on a dedicated connection kept open until release, so it
    is dropped by the server if the process dies.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def acquire(self, resource: str, operation: str) -> LockHandle:
        key = advisory_lock_key(resource)
        connection = self.engine.connect()
        try:
            acquired = bool(
                connection.execute(
                    text("SELECT pg_try_advisory_lock(:key)"),
                    {"key": key},
                ).scalar()
            )
        except Exception:
            connection.close()
            raise
        if not acquired:
            connection.close()
            raise LockUnavailable(
                f"{resource} is locked by another process",
                context={"resource": resource, "key": key},
            )
        return LockHandle(resource, operation, str(key), time.monotonic(), extra=connection)

    def release(self, handle: LockHandle) -> None:
        connection = handle.extra
        try:
            connection.execute(
                text("SELECT pg_advisory_unlock(:key)"),
                {"key": int(handle.token)},
            )
        finally:
            connection.close()

    def is_locked(self, resource: str) -> bool:
        key = advisory_lock_key(resource)
        with self.engine.connect() as connection:
            count = connection.execute(
                text("SELECT count(*) FROM pg_locks WHERE locktype = 'advisory' AND granted "
                     "AND objsubid = 1 AND ((classid::bigint << 32) | objid::bigint) = :key"),
                {"key": key},
            ).scalar()
        return bool(count)


class LockManager:
    """Front end used by the services: ``with locks.hold("round:7", "close"): ...``."""

    def __init__(self, backend: LockBackend):
        self.backend = backend

    @contextmanager
    def hold(self, resource: str, operation: str = "") -> Generator[LockHandle, None, None]:
        """
        Hold ``resource`` for the duration of the block.

        Raises:
            LockUnavailable: Someone else holds it
        """
        handle = self.backend.acquire(resource, operation)
        try:
            yield handle
        finally:
            self.backend.release(handle)

    def is_locked(self, resource: str) -> bool:
        return self.backend.is_locked(resource)


def round_resource(round_id: int) -> str:
    return f"round:{round_id}"


def match_resource(match_id: int) -> str:
    return f"match:{match_id}"


def build_lock_manager(settings: Settings, engine: Optional[Engine] = None) -> LockManager:
    """Lock manager for the configured backend."""
    if settings.lock_backend == "postgres":
        if engine is None:
            raise ValueError("The postgres lock backend needs an engine")
        return LockManager(PostgresAdvisoryLockBackend(engine))
    return LockManager(InMemoryLockBackend(timeout_seconds=settings.lock_timeout_seconds))
