"""
Prometheus metrics for the identity bridge.
"""

from typing import Any, Dict, Optional, Tuple

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest

# name, help, labels
COUNTERS: Tuple[Tuple[str, str, Tuple[str, ...]], ...] = (
    ("http_requests_total", "HTTP requests handled by the host", ("method", "endpoint", "status_code")),
    ("errors_total", "Errors returned to callers by code", ("error_type",)),
    ("token_verifications_total", "ID token verifications by outcome", ("status",)),
    ("jwks_refresh_total", "Key set refreshes by outcome", ("status",)),
    ("wallets_provisioned_total", "Custodial wallets created", ("chain",)),
    ("transactions_signed_total", "Transaction signing attempts by outcome", ("status",)),
)

HISTOGRAMS: Tuple[Tuple[str, str, Tuple[str, ...]], ...] = (
    ("http_request_duration_seconds", "HTTP request latency", ("method", "endpoint")),
    ("jwks_refresh_duration_seconds", "Key set fetch latency", ()),
)


class MetricsCollector:
    """Metrics for one service, registered in a registry of its own.

    A private registry lets several services or test cases coexist in one
    process without duplicate-metric errors.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}

        info = Info("service_info", "Service information", registry=self.registry)
        info.info({"service": service_name, "version": "1.0.0"})
        self._metrics["service_info"] = info

        for name, documentation, labels in COUNTERS:
            self._metrics[name] = Counter(name, documentation, labels, registry=self.registry)
        for name, documentation, labels in HISTOGRAMS:
            self._metrics[name] = Histogram(name, documentation, labels, registry=self.registry)

    def get_metric(self, name: str):
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self._metrics["http_requests_total"].labels(
            method=method, endpoint=endpoint, status_code=str(status_code)
        ).inc()
        self._metrics["http_request_duration_seconds"].labels(method=method, endpoint=endpoint).observe(duration)

    def record_error(self, error_type: str):
        self._metrics["errors_total"].labels(error_type=error_type).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a labelled counter; unknown names are ignored."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            metric.labels(**labels).inc()

    def sample_value(self, metric_name: str, **labels) -> float:
        """Current value of a labelled sample, 0 if never set."""
        return self.registry.get_sample_value(metric_name, labels) or 0.0

    def render(self) -> bytes:
        """Registry contents in the Prometheus text exposition format."""
        return generate_latest(self.registry)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    return MetricsCollector(service_name, registry)
