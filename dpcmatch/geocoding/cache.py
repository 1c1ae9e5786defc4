"""
Time-bounded cache and daily request budget for geocoding lookups.

Both objects are constructor-injected into the geocoding service. The clock
and calendar are injectable too, so tests can move time forward without
sleeping or touching process-wide state.
"""

import datetime
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def system_clock_millis() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


def system_today() -> str:
    """Current local calendar date as an ISO string."""
    return datetime.date.today().isoformat()


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    inserted_at_millis: int


@dataclass(frozen=True)
class RateLimiterState:
    calendar_date: str
    request_count: int


class TTLCache(Generic[T]):
    """
    Key/value cache whose entries expire a fixed time after insertion.

    An entry inserted at T is returned by ``get`` up to and including T + TTL
    and is evicted on the first lookup after that.
    """

    def __init__(self, ttl_seconds: float, clock: Optional[Callable[[], int]] = None):
        """
        Initialize cache.

        Args:
            ttl_seconds: Entry lifetime in seconds
            clock: Callable returning the current time in milliseconds
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds!r}")

        self.ttl_millis = int(ttl_seconds * 1000)
        self.clock = clock or system_clock_millis
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()

    def _expired(self, entry: CacheEntry[T], now: int) -> bool:
        return now - entry.inserted_at_millis > self.ttl_millis

    def get(self, key: str) -> Optional[T]:
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry, now):
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: T) -> None:
        entry = CacheEntry(value=value, inserted_at_millis=self.clock())
        with self._lock:
            self._entries[key] = entry

    def purge_expired(self) -> int:
        """
        Drop every expired entry.

        Returns:
            Number of entries removed
        """
        now = self.clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug(f"Purged {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class DailyRateLimiter:
    """
    Caps external requests per calendar date.

    The counter resets the first time it is consulted on a new date.
    ``try_acquire`` checks and consumes a unit under one lock, so concurrent
    callers can never overshoot the cap.
    """

    def __init__(self, max_daily_requests: int, today: Optional[Callable[[], str]] = None):
        """
        Initialize rate limiter.

        Args:
            max_daily_requests: Requests allowed per calendar date
            today: Callable returning the current date as an ISO string
        """
        if max_daily_requests < 0:
            raise ValueError(f"max_daily_requests must be non-negative, got {max_daily_requests!r}")

        self.max_daily_requests = max_daily_requests
        self.today = today or system_today
        self._date = self.today()
        self._count = 0
        self._lock = threading.Lock()

    def _roll_over(self) -> None:
        current = self.today()
        if current != self._date:
            logger.info(f"Geocoding request budget reset for {current} "
                        f"({self._count} requests used on {self._date})")
            self._date = current
            self._count = 0

    def try_acquire(self) -> bool:
        """
        Consume one request if the daily budget allows it.

        Returns:
            True if the request may proceed, False if the budget is exhausted
        """
        with self._lock:
            self._roll_over()
            if self._count >= self.max_daily_requests:
                return False
            self._count += 1
            return True

    @property
    def remaining(self) -> int:
        with self._lock:
            self._roll_over()
            return self.max_daily_requests - self._count

    @property
    def state(self) -> RateLimiterState:
        with self._lock:
            self._roll_over()
            return RateLimiterState(calendar_date=self._date, request_count=self._count)
