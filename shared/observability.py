"""
Observability module for the eligibility services.
Integrates logging, metrics, and tracing.
"""

from typing import Optional

from .logging import configure_logging, get_logger, set_correlation_id, set_journey_context, clear_context
from .metrics import MetricsCollector, get_metrics_collector
from .tracing import configure_tracing, add_span_attributes, add_span_event


class ObservabilityManager:
    """Centralized observability manager for services."""

    def __init__(self, service_name: str, log_level: str = "info",
                 otel_exporter: Optional[str] = None, enable_tracing: bool = False,
                 enable_console: bool = False, metrics: Optional[MetricsCollector] = None):
        self.service_name = service_name
        self.log_level = log_level
        self.otel_exporter = otel_exporter
        self.enable_tracing = enable_tracing
        self.enable_console = enable_console

        configure_logging(self.service_name, self.log_level)
        if self.enable_tracing:
            configure_tracing(self.service_name, self.otel_exporter, self.enable_console)
        self.metrics = metrics or get_metrics_collector(self.service_name)

        self.logger = get_logger(f"{service_name}.observability")

        self.logger.info("Observability initialized",
                         service=service_name,
                         log_level=log_level,
                         tracing_enabled=enable_tracing)

    def trace_request(self, correlation_id: Optional[str] = None,
                      journey_id: Optional[str] = None) -> str:
        """Set up request context for logging and tracing."""
        correlation_id = set_correlation_id(correlation_id)
        set_journey_context(journey_id)

        add_span_attributes(correlation_id=correlation_id, journey_id=journey_id)
        return correlation_id

    def clear_request_context(self):
        """Clear request context."""
        clear_context()

    def log_error(self, error_type: str, error_message: str, **kwargs):
        """Log error with full context."""
        self.logger.error(
            "Error occurred",
            error_type=error_type,
            error_message=error_message,
            **kwargs
        )

        self.metrics.record_error(error_type)
        add_span_event("error", error_type=error_type, error_message=error_message)

    def log_business_event(self, event_type: str, **kwargs):
        """Log business event with full context."""
        self.logger.info(
            "Business event",
            event_type=event_type,
            **kwargs
        )

        self.metrics.record_business_event(event_type)
        add_span_event("business_event", event_type=event_type)


def get_observability_manager(service_name: str, **kwargs) -> ObservabilityManager:
    """Get an observability manager for a service."""
    return ObservabilityManager(service_name, **kwargs)
