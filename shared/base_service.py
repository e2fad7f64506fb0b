"""
Base service class for Weather Gateway services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.routing import Match
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
import time

from shared.config import ServiceConfig, get_config
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector
from shared.errors import InternalUnexpectedError, InvalidRequestError, WeatherGatewayException


# Metric label for requests that match no route
UNMATCHED_ROUTE = "unmatched"


class BaseService:
    """Base service class with common functionality.

    Subclasses build their components in ``_build_components`` and add
    routes and middleware through the ``_setup_service_*`` hooks. Startup
    and shutdown work goes in ``on_startup`` / ``on_shutdown``.
    """

    def __init__(self, service_name: str, port: Optional[int] = None, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.config = config or get_config(service_name, port)
        self.port = self.config.port
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        # Configure logging
        configure_logging(service_name, self.config.log_level, json_logs=self.config.env != "local")

        self._build_components()

        # Create FastAPI app
        self.app = self._create_app()

        # Set up middleware
        self._setup_middleware()

        # Set up routes
        self._setup_routes()

    def _build_components(self) -> None:
        """Construct service components. Override in subclasses."""

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.on_startup()
            try:
                yield
            finally:
                await self.on_shutdown()

        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Weather Gateway - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=lifespan,
        )

    async def on_startup(self) -> None:
        """Start background work. Override in subclasses."""

    async def on_shutdown(self) -> None:
        """Release resources. Override in subclasses."""

    def _setup_middleware(self):
        """Set up middleware.

        Middleware added later wraps middleware added earlier, so the
        request-timing layer goes last to see every response.
        """

        # CORS middleware
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_service_middleware()

        # Request timing middleware
        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            start_time = time.time()

            try:
                response = await call_next(request)
            except Exception as e:
                self.logger.error(
                    "HTTP request failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                    duration_ms=round((time.time() - start_time) * 1000, 2)
                )
                clear_context()
                raise

            duration = time.time() - start_time
            endpoint = self._route_template(request)

            self.metrics.record_http_request(
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
                duration=duration
            )

            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2)
            )

            response.headers["X-Request-ID"] = request_id
            clear_context()
            return response

    def _setup_service_middleware(self) -> None:
        """Add service-specific middleware. Override in subclasses."""

    def _setup_routes(self):
        """Set up common routes and error handlers."""

        @self.app.get("/metrics", include_in_schema=False)
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from prometheus_client import CONTENT_TYPE_LATEST
            return Response(
                content=self.metrics.render_latest(),
                media_type=CONTENT_TYPE_LATEST
            )

        @self.app.exception_handler(WeatherGatewayException)
        async def gateway_exception_handler(request: Request, exc: WeatherGatewayException):
            """Render a classified error."""
            log = self.logger.warning if exc.status_code < 500 else self.logger.error
            log(
                "Request failed",
                code=exc.code,
                status_code=exc.status_code,
                message=exc.message,
                path=request.url.path
            )
            self.metrics.record_error(exc.code)
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response().model_dump()
            )

        @self.app.exception_handler(RequestValidationError)
        async def validation_exception_handler(request: Request, exc: RequestValidationError):
            """Map request validation failures to INVALID_REQUEST."""
            error = InvalidRequestError(self._describe_validation_error(exc))
            self.logger.warning("Invalid request", message=error.message, path=request.url.path)
            self.metrics.record_error(error.code)
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_response().model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions without leaking detail."""
            self.logger.error("Unhandled exception", error=str(exc), path=request.url.path, exc_info=True)
            error = InternalUnexpectedError()
            self.metrics.record_error(error.code)
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_response().model_dump()
            )

        self._setup_service_routes()

    def _setup_service_routes(self) -> None:
        """Add service-specific routes. Override in subclasses."""

    @staticmethod
    def _describe_validation_error(exc: RequestValidationError) -> str:
        errors = exc.errors()
        if not errors:
            return "Invalid request"
        first: Dict[str, Any] = errors[0]
        location = first.get("loc") or ()
        name = location[-1] if location else "request"
        if first.get("type") == "missing":
            return f"Required parameter '{name}' is missing"
        return f"Invalid value for parameter '{name}'"

    @staticmethod
    def _route_template(request: Request) -> str:
        """Route path template, so path parameters do not explode label cardinality."""
        for route in request.app.router.routes:
            match, _ = route.matches(request.scope)
            if match == Match.FULL:
                return getattr(route, "path", UNMATCHED_ROUTE)
        return UNMATCHED_ROUTE

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
