"""Revocation list for tokens that must stop working before they expire.

Entries are keyed by the exact token string and carry the token's own
expiry. A min-heap ordered by expiry lets the periodic sweep drop stale
entries without one timer per token; membership checks also compare against
the clock, so an entry stops counting the moment its token would have
expired anyway.
"""

import heapq
import logging
import threading
import time
from collections.abc import Callable

from portfolio_api.services.tokens import TokenCodec

logger = logging.getLogger(__name__)


class TokenBlacklist:
    """Thread-safe set of revoked tokens with expiry-based eviction."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._entries: dict[str, float] = {}  # token -> exp timestamp
        self._heap: list[tuple[float, str]] = []
        self._lock = threading.Lock()
        self._clock = clock

    def add(self, token: str) -> bool:
        """Blacklist ``token`` until its expiry.

        Malformed tokens and tokens that have already expired are ignored
        (verification rejects them anyway). Returns True if an entry was added.
        """
        exp = TokenCodec.peek_expiry(token)
        if exp is None:
            logger.debug("Not blacklisting undecodable token")
            return False
        if exp <= self._clock():
            return False

        with self._lock:
            self._entries[token] = exp
            heapq.heappush(self._heap, (exp, token))
        return True

    def is_blacklisted(self, token: str) -> bool:
        with self._lock:
            exp = self._entries.get(token)
            if exp is None:
                return False
            if exp <= self._clock():
                del self._entries[token]
                return False
            return True

    def sweep(self) -> int:
        """Drop every entry whose token has expired. Returns count removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                exp, token = heapq.heappop(self._heap)
                # The dict may hold a newer expiry if the token was re-added
                if self._entries.get(token) == exp:
                    del self._entries[token]
                    removed += 1
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._heap.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
