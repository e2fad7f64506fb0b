"""
Weather retrieval layer for the Weather Gateway.
"""

from .models import CurrentConditions, DayWeather, HourWeather, SnapshotSource, WeatherSnapshot
from .service import CACHE_NAMESPACE, WeatherResult, WeatherService, make_cache_key

__all__ = [
    "CACHE_NAMESPACE",
    "CurrentConditions",
    "DayWeather",
    "HourWeather",
    "SnapshotSource",
    "WeatherResult",
    "WeatherService",
    "WeatherSnapshot",
    "make_cache_key",
]
