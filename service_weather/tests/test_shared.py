"""
Tests for shared configuration, errors and logging helpers.
"""

import pytest

from shared.config import ServiceConfig, get_config
from shared.errors import (
    ErrorKind,
    InternalUnexpectedError,
    NotFoundError,
    RateLimitError,
    UpstreamRequestError,
    UpstreamUnavailableError,
)
from shared.logging import redact_secrets, redact_text


class TestServiceConfig:
    """Test cases for ServiceConfig."""

    def test_defaults(self, monkeypatch):
        for name in ["WEATHER_CACHE_TTL", "RATE_LIMIT_CAPACITY", "WEATHER_PORT", "WEATHER_API_KEY", "WEATHER_API_TIMEOUT"]:
            monkeypatch.delenv(name, raising=False)

        config = get_config("weather")

        assert config.service_name == "weather"
        assert config.cache_ttl_seconds == 43200
        assert config.rate_limit_capacity == 100
        assert config.rate_limit_refill_tokens == 100
        assert config.rate_limit_refill_duration == 60
        assert config.port == 8080
        assert config.weather_api_timeout == 10.0
        assert config.weather_api_key.get_secret_value() == ""

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("WEATHER_CACHE_TTL", "600")
        monkeypatch.setenv("RATE_LIMIT_CAPACITY", "5")
        monkeypatch.setenv("WEATHER_API_KEY", "from-env")
        monkeypatch.setenv("WEATHER_API_TIMEOUT", "2.5")
        monkeypatch.setenv("WEATHER_PORT", "9090")

        config = ServiceConfig("weather")

        assert config.cache_ttl_seconds == 600
        assert config.rate_limit_capacity == 5
        assert config.weather_api_key.get_secret_value() == "from-env"
        assert config.port == 9090
        assert config.weather_api_timeout == 2.5

    def test_explicit_port_wins(self, monkeypatch):
        monkeypatch.setenv("WEATHER_PORT", "9090")

        assert get_config("weather", 8181).port == 8181

    def test_api_key_is_not_rendered(self):
        config = ServiceConfig("weather", weather_api_key="super-secret")

        assert "super-secret" not in repr(config)

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            ServiceConfig("weather", rate_limit_capacity=0)


class TestErrors:
    """Test cases for the error envelope."""

    def test_envelope_shape(self):
        body = NotFoundError("Atlantis").to_response().model_dump()

        assert set(body) == {"status", "message", "error", "timestamp"}
        assert body["status"] == 404
        assert body["error"] == "NOT_FOUND"
        assert body["message"] == "City not found: Atlantis"

    def test_upstream_request_error_takes_upstream_status(self):
        error = UpstreamRequestError(429, "429 Too Many Requests")

        assert error.status_code == 429
        assert error.kind == ErrorKind.UPSTREAM_REQUEST_ERROR
        assert error.message == "Invalid request to weather API: 429 Too Many Requests"

    def test_status_override_does_not_leak_to_class(self):
        UpstreamRequestError(418, "teapot")

        assert UpstreamRequestError(400, "bad").status_code == 400

    def test_unavailable_keeps_cause(self):
        cause = TimeoutError("slow")
        error = UpstreamUnavailableError("request timed out", cause=cause)

        assert error.cause is cause
        assert error.status_code == 500

    def test_default_messages(self):
        assert RateLimitError().status_code == 429
        assert InternalUnexpectedError().message == "An unexpected error occurred. Please try again later."


class TestRedaction:
    """Test cases for secret redaction."""

    def test_masks_key_query_parameter(self):
        url = "https://weather.example.com/timeline/London?key=abc123&unitGroup=metric"

        assert redact_text(url) == "https://weather.example.com/timeline/London?key=***&unitGroup=metric"

    def test_masks_explicit_secret(self):
        assert redact_text("token abc123 rejected", "abc123") == "token *** rejected"

    def test_processor_masks_event_fields(self):
        event = {"event": "Calling weather API", "url": "/timeline/London?apikey=abc123", "count": 3}

        result = redact_secrets(None, "info", event)

        assert result["url"] == "/timeline/London?apikey=***"
        assert result["count"] == 3
