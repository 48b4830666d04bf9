"""
Shared utilities for the Delay Repay eligibility services.

This package aggregates common building blocks consumed by services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace and correlation context
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry tracing config
- observability: Logging, metrics and tracing behind one manager
- errors: Canonical error types and responses
- retry: Retry decorator for transient failures
- base_service: FastAPI service skeleton (health, metrics, error handlers)

Do not import from service packages into shared/.
"""
