"""
Weather retrieval service implementing the cache-aside protocol.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from shared.errors import InvalidRequestError, WeatherGatewayException
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from service_weather.app.caching.store import CacheStore
from service_weather.app.weather.models import SnapshotSource, WeatherSnapshot

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from service_weather.app.adapters.weather_api_client import WeatherApiClient


CACHE_NAMESPACE = "weather:"
DEFAULT_CACHE_TTL = 43200

_WHITESPACE_RUN = re.compile(r"\s+")


def make_cache_key(location: str) -> str:
    """Namespaced key; case and whitespace runs do not matter."""
    return CACHE_NAMESPACE + _WHITESPACE_RUN.sub("_", location.strip().lower())


def _now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class WeatherResult:
    """Either a served snapshot or the failure that prevented it."""

    snapshot: Optional[WeatherSnapshot] = None
    error: Optional[WeatherGatewayException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> WeatherSnapshot:
        """Return the snapshot, raising the carried error if there is one."""
        if self.error is not None:
            raise self.error
        return self.snapshot


class WeatherService:
    """Coordinates cache reads, upstream lookups and cache population."""

    def __init__(
        self,
        cache_store: CacheStore,
        api_client: "WeatherApiClient",
        *,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], int] = _now_millis,
    ) -> None:
        self.cache_store = cache_store
        self.api_client = api_client
        self.cache_ttl_seconds = cache_ttl_seconds
        self.metrics = metrics
        self.logger = get_logger("weather.service")
        self._clock = clock

    async def get_weather(self, location: Optional[str]) -> WeatherResult:
        """
        Resolve ``location`` to a weather snapshot.

        Served from the cache when possible (``source == "cache"``); otherwise
        fetched upstream, written back to the cache and stamped with
        ``source == "api"`` and ``cached_at``. Cache failures never fail the
        request.
        """
        if location is None or not location.strip():
            return WeatherResult(error=InvalidRequestError())

        cache_key = make_cache_key(location)

        cached = await self._read_cache(cache_key)
        if cached is not None:
            self.logger.info("Cache hit", location=location, key=cache_key)
            return WeatherResult(snapshot=cached.with_source(SnapshotSource.CACHE))

        self.logger.info("Cache miss, fetching from API", location=location, key=cache_key)
        upstream = await self.api_client.fetch_weather(location.strip())
        if not upstream.ok:
            return WeatherResult(error=upstream.error)

        await self._write_cache(cache_key, upstream.snapshot)

        return WeatherResult(snapshot=upstream.snapshot.with_source(SnapshotSource.API, cached_at=self._clock()))

    async def invalidate(self, location: str) -> bool:
        """Drop the cached entry for ``location``.

        Returns False only when the cache store failed; an absent entry is
        not an error.
        """
        cache_key = make_cache_key(location)
        try:
            removed = await self.cache_store.delete(cache_key)
        except Exception as exc:
            self._record_cache_error("delete")
            self.logger.warning("Error clearing cache", key=cache_key, error=str(exc))
            return False

        self.logger.info("Cleared cache for city", location=location, key=cache_key, removed=removed)
        return True

    async def invalidate_all(self) -> Optional[int]:
        """Drop every weather entry; returns the count removed, or None if the store failed."""
        try:
            removed = await self.cache_store.delete_prefix(CACHE_NAMESPACE)
        except Exception as exc:
            self._record_cache_error("delete_prefix")
            self.logger.warning("Error clearing all cache", error=str(exc))
            return None

        self.logger.info("Cleared cache entries", removed=removed)
        return removed

    async def check_cache(self) -> bool:
        """Return True when the cache store is reachable."""
        return await self.cache_store.ping()

    async def _read_cache(self, key: str) -> Optional[WeatherSnapshot]:
        """Read a cached snapshot; any failure counts as a miss."""
        try:
            raw = await self.cache_store.get(key)
        except Exception as exc:
            self._record_cache_error("get")
            self._record_lookup("error")
            self.logger.warning("Error reading from cache", key=key, error=str(exc))
            return None

        if not raw:
            self._record_lookup("miss")
            return None

        try:
            snapshot = WeatherSnapshot.from_cache_json(raw)
        except ValueError:
            self._record_cache_error("decode")
            self._record_lookup("error")
            self.logger.warning("Discarding malformed cache payload", key=key)
            return None

        self._record_lookup("hit")
        return snapshot

    async def _write_cache(self, key: str, snapshot: WeatherSnapshot) -> bool:
        """Persist a snapshot; failures are logged and reported as False."""
        try:
            await self.cache_store.set(key, snapshot.to_cache_json(), self.cache_ttl_seconds)
        except Exception as exc:
            self._record_cache_error("set")
            self.logger.warning("Error saving to cache", key=key, error=str(exc))
            return False

        self.logger.info("Cached weather data", key=key, ttl=self.cache_ttl_seconds)
        return True

    def _record_lookup(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_cache_result(result)

    def _record_cache_error(self, operation: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_errors_total", operation=operation)
