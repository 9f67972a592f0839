"""
Replay protection for accepted payment proofs.

Remembers, for a bounded time, which payment IDs and transaction hashes
the gate has already accepted, so the same proof cannot unlock a second
request while it is still fresh. Uses in-memory storage guarded by a
lock; entries expire after the configured TTL.
"""
import logging
import threading
import time
from typing import Callable, Dict, Optional

from xapt.core.config import settings

logger = logging.getLogger(__name__)


class ConsumedPaymentCache:
    """
    TTL set of consumed payment IDs and transaction hashes.

    Thread-safe for concurrent access.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    @property
    def ttl_seconds(self) -> int:
        """Get the TTL (lazy load from settings if not set)."""
        if self._ttl_seconds is not None:
            return self._ttl_seconds
        return settings.XAPT_REPLAY_TTL_SECONDS

    @staticmethod
    def _keys(payment_id: str, transaction_hash: Optional[str]):
        keys = [f"payment:{payment_id}"]
        if transaction_hash:
            keys.append(f"tx:{transaction_hash.lower()}")
        return keys

    def is_consumed(self, payment_id: str, transaction_hash: Optional[str] = None) -> bool:
        """True if the payment ID or the transaction hash was accepted within the TTL."""
        now = self._clock()
        with self._lock:
            self._maybe_cleanup(now)
            for key in self._keys(payment_id, transaction_hash):
                expires_at = self._entries.get(key)
                if expires_at is not None and expires_at > now:
                    return True
        return False

    def consume(self, payment_id: str, transaction_hash: Optional[str] = None) -> bool:
        """
        Mark a proof as used.

        Returns:
            False if it was already consumed (the caller lost a race), True otherwise
        """
        now = self._clock()
        expires_at = now + self.ttl_seconds
        with self._lock:
            keys = self._keys(payment_id, transaction_hash)
            if any(self._entries.get(key, 0) > now for key in keys):
                logger.warning(f"Payment {payment_id} was already consumed")
                return False
            for key in keys:
                self._entries[key] = expires_at
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _maybe_cleanup(self, now: float) -> None:
        """Drop expired entries at most once per TTL period. Caller holds the lock."""
        if now - self._last_cleanup < self.ttl_seconds:
            return
        self._last_cleanup = now
        stale = [key for key, expires_at in self._entries.items() if expires_at <= now]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"Cleaned up {len(stale)} expired replay entries")
