"""
Caching package for the Weather Gateway.
"""

from .store import CacheStore, RedisCacheStore

__all__ = ["CacheStore", "RedisCacheStore"]
