"""
Weather Gateway service package.

The gateway resolves a city name to weather data, shielding clients from the
upstream provider's latency, rate limits and outages:
- Admission control: per-client token bucket, applied before any other work
- Cache-aside retrieval: Redis first, upstream on miss, write-back with TTL
- Graceful degradation: cache failures never fail a request

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.adapters: HTTP client for the upstream weather provider.
- app.caching: Cache store capability and its Redis implementation.
- app.ratelimit: Token-bucket admission controller and middleware.
- app.weather: Payload models and the retrieval service.
"""
