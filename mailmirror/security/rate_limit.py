"""Per-resource connection backoff.

A resource (``account@host``) is clear until it collects ``max_attempts``
consecutive failures. From then on it is blocked for
``min(max_delay, base_delay * 2 ** (attempts - max_attempts))`` seconds after
its last failure; once that window has passed it is clear again without an
explicit reset. A success forgets the resource entirely.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from mailmirror.utils.logging import get_logger, log_event

logger = get_logger(__name__)

MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 5
MAX_DELAY_SECONDS = 300


@dataclass
class AttemptRecord:
    """Failure count and time of the latest failure for one resource."""

    attempts: int = 0
    last_attempt: float = 0.0


class RateLimiter:
    """Exponential backoff on failed connection attempts."""

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: int = BASE_DELAY_SECONDS,
        max_delay: int = MAX_DELAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._clock = clock
        self._records: Dict[str, AttemptRecord] = {}
        self._lock = threading.Lock()

    def record_success(self, resource: str) -> None:
        """Forget every failure recorded for ``resource``."""
        with self._lock:
            self._records.pop(resource, None)
        logger.debug("Rate limit: successful attempt", extra={"resource": resource})

    def record_failure(self, resource: str) -> None:
        """Count one more failure for ``resource``."""
        with self._lock:
            record = self._records.setdefault(resource, AttemptRecord())
            record.attempts += 1
            record.last_attempt = self._clock()
            attempts = record.attempts

        logger.warning(
            f"Rate limit: failed attempt #{attempts}", extra={"resource": resource}
        )

        if attempts >= self.max_attempts:
            log_event(
                "rate_limit_blocked",
                "Repeated connection failures, backing off",
                level="WARNING",
                resource=resource,
                attempts=attempts,
                delay_seconds=self._delay_for(attempts),
            )

    def _delay_for(self, attempts: int) -> int:
        if attempts < self.max_attempts:
            return 0
        return min(self.max_delay, self.base_delay * 2 ** (attempts - self.max_attempts))

    def _remaining(self, resource: str) -> float:
        with self._lock:
            record = self._records.get(resource)
            if record is None or record.attempts < self.max_attempts:
                return 0.0
            unblock_at = record.last_attempt + self._delay_for(record.attempts)

        return max(0.0, unblock_at - self._clock())

    def is_blocked(self, resource: str) -> bool:
        """True while ``resource`` is inside its backoff window."""
        return self._remaining(resource) > 0

    def wait_seconds(self, resource: str) -> int:
        """Whole seconds left before ``resource`` may connect again (0 when clear)."""
        return math.ceil(self._remaining(resource))

    def cleanup(self) -> int:
        """Evict records older than twice the maximum delay; return how many went."""

        cutoff = self._clock() - 2 * self.max_delay
        with self._lock:
            stale = [key for key, rec in self._records.items() if rec.last_attempt < cutoff]
            for key in stale:
                del self._records[key]

        if stale:
            logger.debug("Rate limit: evicted stale records", extra={"evicted": len(stale)})
        return len(stale)

    def reset(self, resource: str) -> None:
        """Administrative reset of a single resource."""
        with self._lock:
            self._records.pop(resource, None)
        logger.info("Rate limit: counter reset", extra={"resource": resource})

    def status(self, resource: str) -> str:
        """Human readable state of ``resource`` for diagnostics."""
        with self._lock:
            record = self._records.get(resource)
            if record is None:
                return "No attempts recorded"
            attempts = record.attempts

        return f"Attempts: {attempts}, wait: {self.wait_seconds(resource)}s"

    def __len__(self) -> int:
        return len(self._records)
