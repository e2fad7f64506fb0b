"""
Rate limiting package for the Weather Gateway.

Holds the per-client token-bucket admission controller and the middleware
that applies it to every request before any cache or upstream work.
"""

from .token_bucket import (
    Admission,
    RateBucket,
    RateLimitMiddleware,
    TokenBucketRateLimiter,
    get_client_identity,
)

__all__ = [
    "Admission",
    "RateBucket",
    "RateLimitMiddleware",
    "TokenBucketRateLimiter",
    "get_client_identity",
]
