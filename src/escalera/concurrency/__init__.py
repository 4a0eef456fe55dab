"""Named-resource locks and optimistic integrity checks."""

from escalera.concurrency.integrity import IntegrityGuard, IntegritySnapshot, round_integrity_hash
from escalera.concurrency.locks import (
    InMemoryLockBackend,
    LockBackend,
    LockHandle,
    LockManager,
    PostgresAdvisoryLockBackend,
    advisory_lock_key,
    build_lock_manager,
    match_resource,
    round_resource,
)

__all__ = [
    "IntegrityGuard",
    "IntegritySnapshot",
    "round_integrity_hash",
    "InMemoryLockBackend",
    "LockBackend",
    "LockHandle",
    "LockManager",
    "PostgresAdvisoryLockBackend",
    "advisory_lock_key",
    "build_lock_manager",
    "match_resource",
    "round_resource",
]
