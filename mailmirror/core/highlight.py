"""Per-account "new mail" highlighting and badge counters."""

import threading
import time
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from mailmirror.utils.logging import get_logger

from .fingerprint import fingerprint
from .models import Message

logger = get_logger(__name__)


class HighlightTracker:
    """Ephemeral highlight sets and badge counts, one of each per account.

    The badge only grows by the number of fingerprints that were not already
    highlighted, so registering the same messages twice does not inflate it.
    Nothing here is persisted.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._keys: Dict[str, Set[str]] = {}
        self._badges: Dict[str, int] = {}
        self._touched: Dict[str, float] = {}
        self._lock = threading.Lock()

    def add_new(self, account: str, messages: Iterable[Message]) -> int:
        """Highlight ``messages`` for ``account``; return how many were newly added."""

        with self._lock:
            keys = self._keys.setdefault(account, set())
            added = 0
            for message in messages:
                if message is None:
                    continue
                key = fingerprint(message)
                if key not in keys:
                    keys.add(key)
                    added += 1

            if added:
                self._badges[account] = self._badges.get(account, 0) + added
                self._touched[account] = self._clock()

        if added:
            logger.debug("Registered new messages", extra={"added": added})
        return added

    def new_keys(self, account: str) -> FrozenSet[str]:
        """Fingerprints currently highlighted for ``account``."""
        with self._lock:
            return frozenset(self._keys.get(account, ()))

    def is_new(self, account: str, message: Message) -> bool:
        with self._lock:
            return fingerprint(message) in self._keys.get(account, ())

    def badge(self, account: str) -> int:
        with self._lock:
            return self._badges.get(account, 0)

    def clear(self, account: str) -> None:
        """Drop the highlight set; the badge is left alone."""
        with self._lock:
            self._keys.pop(account, None)

    def reset_badge(self, account: str) -> None:
        """Zero the badge; the highlight set is left alone."""
        with self._lock:
            self._badges[account] = 0

    def expire(self) -> List[str]:
        """Clear highlight set and badge together for accounts idle past the TTL."""

        if self.ttl_seconds is None:
            return []

        now = self._clock()
        with self._lock:
            expired = [
                account
                for account, touched in self._touched.items()
                if now - touched >= self.ttl_seconds
            ]
            for account in expired:
                self._keys.pop(account, None)
                self._badges[account] = 0
                del self._touched[account]

        if expired:
            logger.debug("Expired highlights", extra={"accounts": len(expired)})
        return expired
