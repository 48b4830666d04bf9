"""
Shared metrics configuration for the eligibility services.
"""

from prometheus_client import Counter, Histogram, Info, CollectorRegistry, generate_latest
from typing import Dict, Any, Optional


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        # Business metrics
        self._metrics["business_events_total"] = Counter(
            "business_events_total",
            "Total business events",
            ["event_type", "service"],
            registry=self.registry
        )

        if self.service_name == "eligibility":
            self._setup_eligibility_metrics()

    def _setup_eligibility_metrics(self):
        """Set up eligibility-specific metrics."""
        self._metrics["eligibility_evaluations_total"] = Counter(
            "eligibility_evaluations_total",
            "Total number of eligibility evaluations performed",
            ["toc_code", "scheme"],
            registry=self.registry
        )

        self._metrics["eligibility_eligible_total"] = Counter(
            "eligibility_eligible_total",
            "Total number of evaluations that resulted in eligible",
            ["toc_code", "scheme"],
            registry=self.registry
        )

        self._metrics["eligibility_ineligible_total"] = Counter(
            "eligibility_ineligible_total",
            "Total number of evaluations that resulted in ineligible",
            ["toc_code", "scheme", "reason"],
            registry=self.registry
        )

        self._metrics["eligibility_evaluation_duration_seconds"] = Histogram(
            "eligibility_evaluation_duration_seconds",
            "Duration of eligibility evaluation in seconds",
            ["toc_code", "eligible"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
            registry=self.registry
        )

        self._metrics["outbox_events_written_total"] = Counter(
            "outbox_events_written_total",
            "Total outbox events written alongside evaluations",
            ["event_type"],
            registry=self.registry
        )

    def export(self) -> bytes:
        """Render this collector's registry in Prometheus text format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_business_event(self, event_type: str, service: Optional[str] = None):
        """Record business event metrics."""
        service_name = service or self.service_name
        self._metrics["business_events_total"].labels(event_type=event_type, service=service_name).inc()

    def record_evaluation(self, toc_code: str, scheme: str, eligible: bool,
                          duration: float, reason: Optional[str] = None):
        """Record the outcome of a persisted eligibility evaluation."""
        if "eligibility_evaluations_total" not in self._metrics:
            return

        self._metrics["eligibility_evaluations_total"].labels(toc_code=toc_code, scheme=scheme).inc()
        if eligible:
            self._metrics["eligibility_eligible_total"].labels(toc_code=toc_code, scheme=scheme).inc()
        else:
            self._metrics["eligibility_ineligible_total"].labels(
                toc_code=toc_code, scheme=scheme, reason=reason or "unknown"
            ).inc()
        self._metrics["eligibility_evaluation_duration_seconds"].labels(
            toc_code=toc_code, eligible=str(eligible).lower()
        ).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)

