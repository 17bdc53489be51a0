"""
Session management package.
Canonical session storage, the status state machine and per-session locking.

Version: 1.0.0
"""
from .session_store import SessionStore
from .in_memory_session_store import InMemorySessionStore
from .transitions import VALID_TRANSITIONS, can_transition, validate_transition
from .locking import (
    SessionLockManager,
    LocalLockManager,
    DistributedLock,
    RedisLockManager,
    LockAcquisitionError,
    LockReleaseError,
    create_lock_manager,
)


def create_session_store(store_type: str = "in_memory", **kwargs) -> SessionStore:
    """
    Factory function to create session store.

    Args:
        store_type: Type of store (only 'in_memory' is provided)
        **kwargs: Store-specific configuration
    """
    if store_type == "in_memory":
        return InMemorySessionStore(**kwargs)

    raise ValueError(f"Unknown store type: {store_type}")


__all__ = [
    'SessionStore',
    'InMemorySessionStore',
    'VALID_TRANSITIONS',
    'can_transition',
    'validate_transition',
    'SessionLockManager',
    'LocalLockManager',
    'DistributedLock',
    'RedisLockManager',
    'LockAcquisitionError',
    'LockReleaseError',
    'create_lock_manager',
    'create_session_store',
]
