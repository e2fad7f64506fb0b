"""
Adapters package for the Weather Gateway.

Contains HTTP client wrappers for external dependencies. Adapters
encapsulate base URLs, request shapes and the translation of transport and
HTTP failures into the shared error kinds. Keep them thin and side-effect
free outside of explicit calls.
"""

from .weather_api_client import UpstreamResult, WeatherApiClient

__all__ = ["UpstreamResult", "WeatherApiClient"]
