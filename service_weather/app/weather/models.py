"""
Weather payload models.

Field aliases follow the upstream provider's wire names so that the same
models parse upstream responses, round-trip through the cache and render
API responses. Unknown fields are dropped rather than rejected.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SnapshotSource(str, Enum):
    """Where a served snapshot came from."""
    CACHE = "cache"
    API = "api"


class _WeatherModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class HourWeather(_WeatherModel):
    """Hourly conditions inside a forecast day."""

    datetime: Optional[str] = None
    temp: Optional[float] = None
    humidity: Optional[float] = None
    precip: Optional[float] = None
    precip_prob: Optional[float] = Field(None, alias="precipprob")
    windspeed: Optional[float] = None
    pressure: Optional[float] = None
    cloudcover: Optional[float] = None
    visibility: Optional[float] = None
    uv_index: Optional[float] = Field(None, alias="uvindex")
    conditions: Optional[str] = None
    icon: Optional[str] = None


class DayWeather(_WeatherModel):
    """One day of the forecast, with min/max/avg temperature and hours."""

    datetime: Optional[str] = None
    temp_max: Optional[float] = Field(None, alias="tempmax")
    temp_min: Optional[float] = Field(None, alias="tempmin")
    temp: Optional[float] = None
    humidity: Optional[float] = None
    precip: Optional[float] = None
    precip_prob: Optional[float] = Field(None, alias="precipprob")
    windspeed: Optional[float] = None
    pressure: Optional[float] = None
    cloudcover: Optional[float] = None
    visibility: Optional[float] = None
    uv_index: Optional[float] = Field(None, alias="uvindex")
    conditions: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    hours: Optional[List[HourWeather]] = None


class CurrentConditions(_WeatherModel):
    """Conditions observed at request time."""

    datetime: Optional[str] = None
    temp: Optional[float] = None
    feels_like: Optional[float] = Field(None, alias="feelslike")
    humidity: Optional[float] = None
    precip: Optional[float] = None
    precip_prob: Optional[float] = Field(None, alias="precipprob")
    windspeed: Optional[float] = None
    wind_dir: Optional[float] = Field(None, alias="winddir")
    pressure: Optional[float] = None
    cloudcover: Optional[float] = None
    visibility: Optional[float] = None
    uv_index: Optional[float] = Field(None, alias="uvindex")
    conditions: Optional[str] = None
    icon: Optional[str] = None
    sunrise: Optional[str] = None
    sunset: Optional[str] = None


class WeatherSnapshot(_WeatherModel):
    """Weather for one resolved location.

    ``source`` and ``cached_at`` are stamped when the snapshot is served and
    are never written to the cache.
    """

    resolved_address: Optional[str] = Field(None, alias="resolvedAddress")
    address: Optional[str] = None
    timezone: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    days: Optional[List[DayWeather]] = None
    current_conditions: Optional[CurrentConditions] = Field(None, alias="currentConditions")

    source: Optional[SnapshotSource] = None
    cached_at: Optional[int] = Field(None, alias="cachedAt")

    def with_source(self, source: SnapshotSource, cached_at: Optional[int] = None) -> "WeatherSnapshot":
        """Return a copy annotated for serving."""
        return self.model_copy(update={"source": source, "cached_at": cached_at})

    def to_cache_json(self) -> str:
        """Serialize the payload for the cache store, without serve-time fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True, exclude={"source", "cached_at"})

    @classmethod
    def from_cache_json(cls, raw: Any) -> "WeatherSnapshot":
        """Rehydrate a snapshot from cached JSON; raises ``ValueError`` on bad input."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        snapshot = cls.model_validate_json(raw)
        return snapshot.model_copy(update={"source": None, "cached_at": None})

    def to_response(self) -> Dict[str, Any]:
        """Render the JSON response body."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
