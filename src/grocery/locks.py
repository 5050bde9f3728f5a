"""Per-key mutual exclusion for the engines.

Every order transition, stock movement and delivery transition runs while
holding the lock for its key, so concurrent callers for the same order or
product are serialized and callers for different keys proceed in parallel.
Locks are re-entrant so an engine may call back into another engine on the
same key.

A key's lock exists only while someone holds or waits for it, so the
table stays as small as the number of keys in use.

Acquisition order is always order, then delivery, then product.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from grocery.config import get_settings
from grocery.exceptions import LockTimeoutError

logger = structlog.get_logger(__name__)


class KeyedLocks:
    def __init__(self, namespace: str, timeout: float | None = None) -> None:
        self.namespace = namespace
        self._timeout = timeout
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._entries: dict[str, list] = {}

    @property
    def timeout(self) -> float:
        if self._timeout is not None:
            return self._timeout
        return get_settings().lock_timeout_seconds

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._entries[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._entries[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for ``key`` or raise ``LockTimeoutError``."""
        key = str(key)
        lock = self._checkout(key)
        if not lock.acquire(timeout=self.timeout):
            self._checkin(key)
            logger.warning("Lock acquisition timed out", namespace=self.namespace, key=key, timeout=self.timeout)
            raise LockTimeoutError(f"{self.namespace}:{key}", self.timeout)
        try:
            yield
        finally:
            lock.release()
            self._checkin(key)


order_locks = KeyedLocks("order")
delivery_locks = KeyedLocks("delivery")
product_locks = KeyedLocks("product")
payment_locks = KeyedLocks("payment")
