"""
Shared utilities for the Weather Gateway.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation and secret redaction
- metrics: Prometheus metrics helpers
- errors: Canonical error kinds and responses
- base_service: FastAPI application shell

Do not import from service packages into shared/.
"""
