"""
Base service class for the eligibility services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Dict, Optional
import time
import os

from shared.config import ServiceConfig, get_config
from shared.logging import get_logger
from shared.observability import get_observability_manager
from shared.errors import EligibilityEngineError, ValidationError

CORRELATION_HEADER = "X-Correlation-ID"


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.observability = get_observability_manager(
            service_name,
            log_level=self.config.log_level,
            otel_exporter=self.config.otel_exporter,
            enable_tracing=self.config.enable_tracing,
            enable_console=self.config.enable_console_tracing
        )
        self.metrics = self.observability.metrics
        self.logger = get_logger(service_name)
        self._start_time = time.time()

        # Create FastAPI app
        self.app = self._create_app()

        if self.config.enable_tracing:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
            FastAPIInstrumentor.instrument_app(self.app)

        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.start()
            try:
                yield
            finally:
                await self.stop()

        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Delay Repay - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=lifespan,
        )

    def _setup_middleware(self):
        """Set up middleware."""

        @self.app.middleware("http")
        async def add_request_context(request: Request, call_next):
            start_time = time.time()
            correlation_id = self.observability.trace_request(
                correlation_id=request.headers.get(CORRELATION_HEADER)
            )
            request.state.correlation_id = correlation_id

            try:
                response = await call_next(request)
            finally:
                self.observability.clear_request_context()

            duration = time.time() - start_time
            response.headers[CORRELATION_HEADER] = correlation_id

            self.metrics.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration=duration
            )

            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                correlation_id=correlation_id
            )

            return response

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            dependencies = await self._check_dependencies()
            healthy = all(status == "ok" for status in dependencies.values())
            self.metrics.record_health_check("ok" if healthy else "error")

            body = {
                "service": self.service_name,
                "status": "ok" if healthy else "error",
                "uptime_seconds": self._get_uptime(),
                "dependencies": dependencies,
                "version": "1.0.0",
                "commit": os.getenv("GIT_COMMIT", "unknown")
            }
            if not healthy:
                self.logger.error("Health check failed", dependencies=dependencies)
                return JSONResponse(status_code=503, content=body)
            return body

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from prometheus_client import CONTENT_TYPE_LATEST
            return Response(
                content=self.metrics.export(),
                media_type=CONTENT_TYPE_LATEST
            )

        @self.app.exception_handler(EligibilityEngineError)
        async def eligibility_exception_handler(request: Request, exc: EligibilityEngineError):
            """Handle EligibilityEngineError."""
            self.observability.log_error(exc.code, exc.message, details=exc.details, path=request.url.path)
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response().model_dump()
            )

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            """Report malformed request bodies in the standard error envelope."""
            errors = [
                {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
                for err in exc.errors()
            ]
            error = ValidationError(
                "; ".join(err["msg"] for err in errors) or "Validation failed",
                details={"errors": errors}
            )
            self.observability.log_error(error.code, error.message, path=request.url.path)
            return JSONResponse(status_code=error.status_code, content=error.to_response().model_dump())

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("internal_error")
            return JSONResponse(
                status_code=500,
                content={
                    "code": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "details": {}
                }
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    async def start(self):
        """Start service components. Override in subclasses."""

    async def stop(self):
        """Stop service components. Override in subclasses."""

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
