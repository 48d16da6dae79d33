"""Per-client request throttling.

The limiter is process-local: each worker keeps its own table, so running
several instances multiplies the effective rate. Entries live in a bounded
LRU and expire after a TTL, so memory stays flat regardless of how many
distinct clients are seen.
"""
import threading
import time
from collections import OrderedDict
from typing import Callable
import structlog

from app import config

logger = structlog.get_logger()


class RateLimiter:
    """Minimum-interval throttle keyed by client id."""

    def __init__(
        self,
        min_interval: float = None,
        max_clients: int = None,
        ttl: float = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the limiter.

        Args:
            min_interval: Seconds a client must wait between allowed requests
            max_clients: Maximum tracked clients; least recently seen are evicted
            ttl: Seconds after which a client's entry is forgotten
            clock: Monotonic time source
        """
        self.min_interval = min_interval if min_interval is not None else config.RATE_LIMIT_SECONDS
        self.max_clients = max_clients or config.RATE_LIMIT_MAX_CLIENTS
        self.ttl = ttl or config.RATE_LIMIT_TTL
        self._clock = clock

        self._last_seen: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.RLock()

    def hit(self, client_id: str) -> bool:
        """Record a request from a client.

        Returns:
            True if the request is allowed, False if it came too soon
        """
        with self._lock:
            now = self._clock()
            self._evict_expired(now)

            last = self._last_seen.get(client_id)
            if last is not None and now - last < self.min_interval:
                logger.info("rate_limited", client_id=client_id)
                return False

            self._last_seen[client_id] = now
            self._last_seen.move_to_end(client_id)

            while len(self._last_seen) > self.max_clients:
                self._last_seen.popitem(last=False)

            return True

    def _evict_expired(self, now: float) -> None:
        # Oldest entries sit at the front
        while self._last_seen:
            client_id, seen_at = next(iter(self._last_seen.items()))
            if now - seen_at <= self.ttl:
                break
            del self._last_seen[client_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_seen)

    def clear(self) -> None:
        with self._lock:
            self._last_seen.clear()
