"""
Upstream weather provider client (Visual Crossing timeline API).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from shared.errors import (
    NotFoundError,
    UpstreamAuthError,
    UpstreamEmptyResponseError,
    UpstreamRequestError,
    UpstreamUnavailableError,
    WeatherGatewayException,
)
from shared.logging import get_logger, redact_text
from shared.metrics import MetricsCollector

from service_weather.app.weather.models import WeatherSnapshot


_BODY_SNIPPET_LIMIT = 200


@dataclass(frozen=True)
class UpstreamResult:
    """Either a parsed snapshot or the classified failure."""

    snapshot: Optional[WeatherSnapshot] = None
    error: Optional[WeatherGatewayException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, snapshot: WeatherSnapshot) -> "UpstreamResult":
        return cls(snapshot=snapshot)

    @classmethod
    def failure(cls, error: WeatherGatewayException) -> "UpstreamResult":
        return cls(error=error)


class WeatherApiClient:
    """Async client performing one timeline lookup per call."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        unit_group: str = "metric",
        include: str = "days,hours,current",
        metrics: Optional[MetricsCollector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.unit_group = unit_group
        self.include = include
        self.metrics = metrics
        self.logger = get_logger("weather.api_client")
        self._api_key = api_key
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def fetch_weather(self, location: str) -> UpstreamResult:
        """Fetch the timeline for ``location`` and classify the outcome."""
        start = time.perf_counter()
        result = await self._fetch(location)
        outcome = "ok" if result.ok else result.error.code.lower()
        if self.metrics:
            self.metrics.record_upstream_call(outcome, time.perf_counter() - start)
        return result

    async def _fetch(self, location: str) -> UpstreamResult:
        path = "/" + quote(location.strip(), safe="")
        params: Dict[str, Any] = {
            "key": self._api_key,
            "unitGroup": self.unit_group,
            "include": self.include,
        }

        self.logger.debug("Calling weather API", location=location)

        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            self.logger.error("Weather API timed out", location=location)
            return UpstreamResult.failure(UpstreamUnavailableError("request timed out", cause=exc))
        except httpx.HTTPError as exc:
            message = self._redact(str(exc)) or type(exc).__name__
            self.logger.error("Weather API transport error", location=location, error=message)
            return UpstreamResult.failure(UpstreamUnavailableError(message, cause=exc))
        except Exception as exc:
            message = self._redact(str(exc)) or type(exc).__name__
            self.logger.error("Error fetching weather data", location=location, error=message, exc_info=True)
            return UpstreamResult.failure(UpstreamUnavailableError(message, cause=exc))

        return self._classify(location, response)

    def _classify(self, location: str, response: httpx.Response) -> UpstreamResult:
        status = response.status_code

        if status == 404:
            self.logger.error("City not found", location=location)
            return UpstreamResult.failure(NotFoundError(location))

        if status == 401:
            self.logger.error("Invalid API key")
            return UpstreamResult.failure(UpstreamAuthError())

        if 400 <= status < 500:
            detail = self._describe(response)
            self.logger.error("Weather API client error", location=location, status_code=status, error=detail)
            return UpstreamResult.failure(UpstreamRequestError(status, detail, details={"upstream_status": status}))

        if not 200 <= status < 300:
            self.logger.error("Weather API unexpected status", location=location, status_code=status)
            return UpstreamResult.failure(
                UpstreamUnavailableError(f"weather API returned {status}", details={"upstream_status": status})
            )

        return self._parse(location, response)

    def _parse(self, location: str, response: httpx.Response) -> UpstreamResult:
        if not response.content.strip():
            self.logger.error("Weather API returned an empty body", location=location)
            return UpstreamResult.failure(UpstreamEmptyResponseError())

        try:
            data = response.json()
        except ValueError:
            self.logger.error("Weather API returned an unparseable body", location=location)
            return UpstreamResult.failure(UpstreamEmptyResponseError())

        if not isinstance(data, dict):
            self.logger.error("Weather API returned a non-object body", location=location)
            return UpstreamResult.failure(UpstreamEmptyResponseError())

        try:
            snapshot = WeatherSnapshot.model_validate(data)
        except ValidationError as exc:
            self.logger.error("Weather API payload failed validation", location=location, errors=exc.error_count())
            return UpstreamResult.failure(UpstreamEmptyResponseError())

        return UpstreamResult.success(snapshot)

    def _describe(self, response: httpx.Response) -> str:
        """Short, key-free description of an error response."""
        reason = response.reason_phrase or ""
        body = response.text.strip()[:_BODY_SNIPPET_LIMIT]
        summary = f"{response.status_code} {reason}".strip()
        if body:
            summary = f"{summary}: {body}"
        return self._redact(summary)

    def _redact(self, text: str) -> str:
        return redact_text(text, self._api_key)
