"""
Shared logging configuration for the Weather Gateway.

Log lines are structured events rendered as JSON (or as colourless console
lines in the local environment). Every event carries the service name and,
while a request is in flight, its request id and client identity. Upstream
API keys are masked before rendering.
"""

import sys
import structlog
import logging
import re
import uuid
from typing import Any, Callable, Dict, Optional
from contextvars import ContextVar

# Correlation for the request currently being served
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
client_id_var: ContextVar[Optional[str]] = ContextVar('client_id', default=None)

_SECRET_QUERY_PATTERN = re.compile(r"(?i)\b(key|api_key|apikey)=[^&\s\"']+")

Processor = Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]


def configure_logging(service_name: str, log_level: str = "info", json_logs: bool = True) -> None:
    """Configure structlog on top of stdlib logging for a service."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            service_context(service_name),
            add_correlation_context,
            redact_secrets,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)
    # httpx logs every request line, including the query string
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def service_context(service_name: str) -> Processor:
    """Build a processor stamping ``service`` on every event."""

    def add_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach request id and client identity when set."""
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)

    client_id = client_id_var.get()
    if client_id:
        event_dict.setdefault("client_id", client_id)

    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask API keys carried in URL query strings."""
    for field, value in event_dict.items():
        if isinstance(value, str) and "=" in value:
            event_dict[field] = redact_text(value)
    return event_dict


def redact_text(text: str, secret: Optional[str] = None) -> str:
    """Return text with key query parameters, and the given secret, masked."""
    if secret:
        text = text.replace(secret, "***")
    return _SECRET_QUERY_PATTERN.sub(lambda match: f"{match.group(1)}=***", text)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id, generating one when the caller sent none."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


def set_client_context(client_id: Optional[str] = None):
    """Bind the calling client's identity."""
    if client_id:
        client_id_var.set(client_id)


def clear_context():
    request_id_var.set(None)
    client_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
