"""Per-user mutual exclusion for engine operations.

Card creation and scheduler updates are read-modify-write sequences over
one user's cards, so operations for the same user are serialized. Other
users proceed in parallel. Acquisition is bounded; a timeout surfaces as
StoreUnavailable and the caller may retry the whole operation.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Optional

from finnest.config import settings
from finnest.errors import StoreUnavailable

logger = logging.getLogger(__name__)

_REGISTRY_LOCK = threading.Lock()
# One lock per user id seen by this process, kept for the process lifetime.
# Grows with the user count only; an idle lock is a few dozen bytes.
_USER_LOCKS: dict[int, threading.Lock] = {}


def _lock_for(user_id: int) -> threading.Lock:
    with _REGISTRY_LOCK:
        lock = _USER_LOCKS.get(user_id)
        if lock is None:
            lock = threading.Lock()
            _USER_LOCKS[user_id] = lock
        return lock


@contextmanager
def user_lock(user_id: int, timeout: Optional[float] = None):
    if timeout is None:
        timeout = settings.user_lock_timeout_seconds
    lock = _lock_for(user_id)
    if not lock.acquire(timeout=timeout):
        logger.warning("Timed out after %.1fs waiting for lock of user %s", timeout, user_id)
        raise StoreUnavailable(f"User {user_id} is busy, retry later")
    try:
        yield
    finally:
        lock.release()
