"""
Cached geocoding front for DPCMatch.

Wraps the forward and reverse resolvers with TTL caches, a daily request
budget and a per-call timeout. Concurrent lookups for the same key share a
single external call.
"""

import logging
import re
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, Optional

from ..config import get_default_config
from ..geo.distance import coordinate_or_none, haversine_miles
from ..models import GeoCoordinates, ReverseGeoResult
from .cache import DailyRateLimiter, TTLCache
from .resolvers import ForwardResolver, NominatimResolver, ReverseResolver, ZippopotamResolver

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def clean_zip(zip_code: Any) -> Optional[str]:
    """
    Reduce a raw ZIP to its 5-digit form.

    Args:
        zip_code: Raw ZIP, e.g. "78701-1234"

    Returns:
        "78701", or None if fewer than five digits remain
    """
    if zip_code is None:
        return None
    digits = _NON_DIGITS.sub("", str(zip_code))[:5]
    return digits if len(digits) == 5 else None


def reverse_cache_key(latitude: float, longitude: float) -> str:
    """Cache key for a point, rounded to four decimal places."""
    return f"{latitude:.4f},{longitude:.4f}"


class GeocodingService:
    """
    Resolves ZIP codes and points through cached, rate-limited lookups.

    Every external call runs on a worker thread and is abandoned after
    ``timeout_seconds``. Callers racing on the same key wait for the first
    caller's result instead of issuing (and paying for) their own request,
    and only that first caller writes the cache.
    """

    def __init__(self, forward_resolver: ForwardResolver,
                 reverse_resolver: Optional[ReverseResolver] = None,
                 forward_cache: Optional[TTLCache] = None,
                 reverse_cache: Optional[TTLCache] = None,
                 rate_limiter: Optional[DailyRateLimiter] = None,
                 timeout_seconds: float = 5.0,
                 batch_delay_seconds: float = 0.0,
                 max_workers: int = 4,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize geocoding service.

        Args:
            forward_resolver: ZIP -> coordinate resolver
            reverse_resolver: Point -> place resolver (optional)
            forward_cache: Cache for ZIP results (90-day TTL by default)
            reverse_cache: Cache for point results (24-hour TTL by default)
            rate_limiter: Daily external request budget
            timeout_seconds: Upper bound on one external call
            batch_delay_seconds: Pause after each external call in batch lookups
            max_workers: Threads available for external calls
            sleep: Sleep function used between batch requests
        """
        defaults = get_default_config()["geocoding"]

        self.forward_resolver = forward_resolver
        self.reverse_resolver = reverse_resolver
        # Empty caches are falsy, so compare against None explicitly
        if forward_cache is None:
            forward_cache = TTLCache(defaults["forward_ttl_seconds"])
        if reverse_cache is None:
            reverse_cache = TTLCache(defaults["reverse_ttl_seconds"])
        if rate_limiter is None:
            rate_limiter = DailyRateLimiter(defaults["max_daily_requests"])

        self.forward_cache = forward_cache
        self.reverse_cache = reverse_cache
        self.rate_limiter = rate_limiter
        self.timeout_seconds = timeout_seconds
        self.batch_delay_seconds = batch_delay_seconds
        self.sleep = sleep

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="geocoding")
        self._inflight: Dict[str, Future] = {}
        self._lock = threading.Lock()

        logger.info(f"Initialized GeocodingService (timeout={timeout_seconds}s, "
                    f"daily budget={self.rate_limiter.max_daily_requests})")

    @classmethod
    def from_config(cls, config: Dict) -> "GeocodingService":
        """
        Build a service backed by Zippopotam.us and Nominatim.

        Args:
            config: Full DPCMatch configuration

        Returns:
            Configured GeocodingService
        """
        geo_config = {**get_default_config()["geocoding"], **config.get("geocoding", {})}

        return cls(
            forward_resolver=ZippopotamResolver(base_url=geo_config["zippopotam_url"]),
            reverse_resolver=NominatimResolver(
                base_url=geo_config["nominatim_url"],
                user_agent=geo_config["user_agent"],
            ),
            forward_cache=TTLCache(geo_config["forward_ttl_seconds"]),
            reverse_cache=TTLCache(geo_config["reverse_ttl_seconds"]),
            rate_limiter=DailyRateLimiter(geo_config["max_daily_requests"]),
            timeout_seconds=geo_config["timeout_seconds"],
            batch_delay_seconds=geo_config.get("batch_delay_seconds", 0.0),
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def __enter__(self) -> "GeocodingService":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def _call_with_timeout(self, func: Callable, *args, description: str = "") -> Any:
        future = self._executor.submit(func, *args, self.timeout_seconds)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(f"Geocoding lookup timed out after {self.timeout_seconds}s for {description}")
            return None
        except Exception as e:
            logger.error(f"Geocoding lookup failed for {description}: {e}")
            return None

    def _shared_lookup(self, key: str, fetch: Callable[[], Any]) -> Any:
        with self._lock:
            pending = self._inflight.get(key)
            owner = pending is None
            if owner:
                pending = Future()
                self._inflight[key] = pending

        if not owner:
            logger.debug(f"Waiting on in-flight lookup for {key}")
            return pending.result()

        try:
            result = fetch()
        except BaseException as e:
            pending.set_exception(e)
            raise
        else:
            pending.set_result(result)
            return result
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def _fetch_forward(self, zip_code: str) -> Optional[GeoCoordinates]:
        cached = self.forward_cache.get(zip_code)
        if cached is not None:
            return replace(cached, cached=True)

        if not self.rate_limiter.try_acquire():
            logger.warning("Daily geocoding rate limit reached")
            return None

        result = self._call_with_timeout(self.forward_resolver.resolve_zip, zip_code,
                                         description=f"ZIP {zip_code}")
        if result is None:
            return None
        if result.to_coordinate() is None:
            logger.warning(f"Discarding invalid coordinates for ZIP {zip_code}: "
                           f"({result.latitude}, {result.longitude})")
            return None

        self.forward_cache.set(zip_code, result)
        return result

    def _fetch_reverse(self, key: str, latitude: float, longitude: float) -> Optional[ReverseGeoResult]:
        cached = self.reverse_cache.get(key)
        if cached is not None:
            return replace(cached, cached=True)

        if not self.rate_limiter.try_acquire():
            logger.warning("Daily geocoding rate limit reached")
            return None

        result = self._call_with_timeout(self.reverse_resolver.resolve_point, latitude, longitude,
                                         description=f"point ({key})")
        if result is not None:
            self.reverse_cache.set(key, result)
        return result

    def get_coordinates(self, zip_code: Any) -> Optional[GeoCoordinates]:
        """
        Resolve a ZIP code to its centroid.

        Args:
            zip_code: Raw ZIP code; anything after the first five digits is ignored

        Returns:
            GeoCoordinates (``cached=True`` on a cache hit), or None
        """
        zip5 = clean_zip(zip_code)
        if zip5 is None:
            logger.warning(f"Invalid ZIP code format: {zip_code!r}")
            return None

        cached = self.forward_cache.get(zip5)
        if cached is not None:
            return replace(cached, cached=True)

        return self._shared_lookup(f"zip:{zip5}", lambda: self._fetch_forward(zip5))

    def reverse_geocode(self, latitude: float, longitude: float) -> Optional[ReverseGeoResult]:
        """
        Resolve a point to city, state and ZIP.

        Args:
            latitude: Latitude in degrees
            longitude: Longitude in degrees

        Returns:
            ReverseGeoResult (``cached=True`` on a cache hit), or None
        """
        coordinate = coordinate_or_none(latitude, longitude)
        if coordinate is None:
            logger.warning(f"Invalid coordinates for reverse geocoding: ({latitude}, {longitude})")
            return None
        if self.reverse_resolver is None:
            logger.warning("No reverse resolver configured")
            return None

        key = reverse_cache_key(coordinate.latitude, coordinate.longitude)
        cached = self.reverse_cache.get(key)
        if cached is not None:
            return replace(cached, cached=True)

        return self._shared_lookup(
            f"point:{key}",
            lambda: self._fetch_reverse(key, coordinate.latitude, coordinate.longitude),
        )

    def distance_between_zip_codes(self, zip1: Any, zip2: Any) -> Optional[float]:
        """
        Great-circle distance in miles between two ZIP centroids.

        Returns:
            Distance in miles, or None if either ZIP cannot be resolved
        """
        first = self.get_coordinates(zip1)
        second = self.get_coordinates(zip2)
        if first is None or second is None:
            return None
        return haversine_miles(first.to_coordinate(), second.to_coordinate())

    def is_cached(self, zip_code: Any) -> bool:
        zip5 = clean_zip(zip_code)
        return zip5 is not None and self.forward_cache.get(zip5) is not None

    def batch_geocode(self, zip_codes: Iterable[Any]) -> Dict[str, Optional[GeoCoordinates]]:
        """
        Resolve many ZIP codes, looking each distinct value up once.

        Args:
            zip_codes: Raw ZIP codes

        Returns:
            Mapping of each distinct raw ZIP to its result (None if unresolved)
        """
        results: Dict[str, Optional[GeoCoordinates]] = {}

        for zip_code in dict.fromkeys(str(z) for z in zip_codes if z is not None):
            needs_request = clean_zip(zip_code) is not None and not self.is_cached(zip_code)
            results[zip_code] = self.get_coordinates(zip_code)
            if needs_request and self.batch_delay_seconds > 0:
                self.sleep(self.batch_delay_seconds)

        resolved = sum(1 for value in results.values() if value is not None)
        logger.info(f"Batch geocoded {resolved}/{len(results)} ZIP codes")
        return results

    def prewarm_cache(self, zip_codes: Iterable[Any]) -> int:
        """
        Populate the forward cache ahead of a run.

        Returns:
            Forward cache size after pre-warming
        """
        zip_codes = list(zip_codes)
        logger.info(f"Pre-warming geocoding cache with {len(zip_codes)} ZIP codes")
        self.batch_geocode(zip_codes)
        size = len(self.forward_cache)
        logger.info(f"Cache pre-warm complete. Size: {size}")
        return size

    def cache_stats(self) -> Dict[str, Any]:
        state = self.rate_limiter.state
        return {
            "size": len(self.forward_cache),
            "reverse_size": len(self.reverse_cache),
            "daily_requests": state.request_count,
            "remaining_requests": self.rate_limiter.remaining,
            "calendar_date": state.calendar_date,
        }

    def clear_cache(self) -> None:
        self.forward_cache.clear()
        self.reverse_cache.clear()
        logger.info("Geocoding cache cleared")
