"""
Weather Gateway service.

Routes:
- GET /api/weather?city=<name> and GET /api/weather/<name>
- DELETE /api/cache?city=<name> and DELETE /api/cache/all
- GET /api/health (liveness) and GET /api/ready (cache reachability)
"""

import asyncio
import time
from typing import Any, Dict, Optional

from fastapi import Query
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import InvalidRequestError

from service_weather.app.adapters.weather_api_client import WeatherApiClient
from service_weather.app.caching.store import CacheStore, RedisCacheStore
from service_weather.app.ratelimit.token_bucket import RateLimitMiddleware, TokenBucketRateLimiter
from service_weather.app.weather.service import WeatherService


class WeatherGatewayService(BaseService):
    """Weather Gateway service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        cache_store: Optional[CacheStore] = None,
        api_client: Optional[WeatherApiClient] = None,
    ):
        self._injected_cache_store = cache_store
        self._injected_api_client = api_client
        self._sweep_task: Optional[asyncio.Task] = None
        super().__init__("weather", config=config)

        # Expose service instance via app state for introspection/testing
        self.app.state.weather_service = self

    def _build_components(self) -> None:
        config = self.config

        self.cache_store: CacheStore = self._injected_cache_store or RedisCacheStore(config.redis_url)
        self.api_client = self._injected_api_client or WeatherApiClient(
            config.weather_api_url,
            config.weather_api_key.get_secret_value(),
            timeout=config.weather_api_timeout,
            metrics=self.metrics,
        )
        self.weather_service = WeatherService(
            self.cache_store,
            self.api_client,
            cache_ttl_seconds=config.cache_ttl_seconds,
            metrics=self.metrics,
        )
        self.rate_limiter = TokenBucketRateLimiter(
            config.rate_limit_capacity,
            config.rate_limit_refill_tokens,
            config.rate_limit_refill_duration,
        )

        if not config.weather_api_key.get_secret_value():
            self.logger.warning("WEATHER_API_KEY is not set; upstream calls will be rejected")

    def _setup_service_middleware(self) -> None:
        self.app.add_middleware(RateLimitMiddleware, rate_limiter=self.rate_limiter, metrics=self.metrics)

    async def on_startup(self) -> None:
        interval = self.config.rate_limit_sweep_interval
        if interval > 0:
            self._sweep_task = asyncio.create_task(self.rate_limiter.sweep_forever(interval))
        self.logger.info(
            "Weather gateway started",
            cache_ttl=self.config.cache_ttl_seconds,
            rate_limit=self.rate_limiter.stats(),
        )

    async def on_shutdown(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        await self.api_client.close()
        try:
            await self.cache_store.close()
        except Exception as exc:  # pragma: no cover - close is best effort
            self.logger.warning("Cache store close failed", error=str(exc))
        self.logger.info("Weather gateway stopped")

    def _setup_service_routes(self) -> None:
        """Set up weather and cache routes."""

        @self.app.get("/api/weather")
        async def get_weather(city: str = Query(...)):
            """Get weather data for a city given as a query parameter."""
            return await self._serve_weather(city)

        @self.app.get("/api/weather/{city}")
        async def get_weather_by_path(city: str):
            """Get weather data for a city given as a path segment."""
            return await self._serve_weather(city)

        @self.app.delete("/api/cache/all")
        async def clear_all_cache():
            """Clear every cached weather entry."""
            self.logger.info("Clearing all weather cache")
            removed = await self.weather_service.invalidate_all()
            return {
                "status": "success",
                "message": "All weather cache cleared",
                "removed": removed,
            }

        @self.app.delete("/api/cache")
        async def clear_cache(city: str = Query(...)):
            """Clear the cached entry for one city."""
            if not city.strip():
                raise InvalidRequestError()
            self.logger.info("Clearing cache for city", city=city)
            await self.weather_service.invalidate(city)
            return {
                "status": "success",
                "message": f"Cache cleared for city: {city}",
            }

        @self.app.get("/api/health")
        async def health_check():
            """Liveness check; touches neither the cache nor the upstream."""
            return {
                "status": "UP",
                "service": "Weather API",
                "timestamp": int(time.time() * 1000),
            }

        @self.app.get("/api/ready")
        async def readiness_check():
            """Report cache reachability. The cache is optional, so this is always 200."""
            cache_ok = await self.weather_service.check_cache()
            dependencies: Dict[str, Any] = {"cache": "ok" if cache_ok else "error"}
            return {
                "status": "UP" if cache_ok else "DEGRADED",
                "service": "Weather API",
                "dependencies": dependencies,
                "uptime_seconds": round(self._get_uptime(), 3),
            }

    async def _serve_weather(self, city: str) -> JSONResponse:
        self.logger.info("Received weather request", city=city)
        result = await self.weather_service.get_weather(city)
        snapshot = result.unwrap()
        return JSONResponse(content=snapshot.to_response())


def create_app(config: Optional[ServiceConfig] = None, **components):
    """Create FastAPI application."""
    service = WeatherGatewayService(config, **components)
    return service.app


def main() -> None:
    """Console entry point."""
    service = WeatherGatewayService()
    service.run()


if __name__ == "__main__":
    main()
