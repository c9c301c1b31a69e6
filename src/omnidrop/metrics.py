"""
Prometheus metrics for the service.

Handlers and middleware talk to a `MetricsSink` so they only know metric
names and labels; `PrometheusMetrics` is the implementation wired into the
app and exposed on `/metrics`.
"""
from typing import Dict, Optional, Protocol, Sequence, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

NAMESPACE = "omnidrop"

_DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
_SIZE_BUCKETS = tuple(float(100 * 10**i) for i in range(8))

# name -> (description, label names)
COUNTERS: Dict[str, Tuple[str, Sequence[str]]] = {
    "http_requests": ("Total number of HTTP requests", ("method", "endpoint", "status")),
    "task_creations": ("Total number of task creation attempts", ("status",)),
    "tasks_with_project": ("Tasks created with a project", ()),
    "tasks_with_tags": ("Tasks created with at least one tag", ()),
    "file_creations": ("Total number of file creation attempts", ("status",)),
    "applescript_executions": ("Total number of task bridge executions", ("status",)),
    "applescript_errors": ("Task bridge failures by type", ("error_type",)),
    "oauth_tokens_issued": ("Access tokens issued", ("client_id",)),
    "oauth_token_validations": ("Bearer token validations", ("result",)),
    "oauth_scope_validation_failures": (
        "Requests rejected for insufficient scopes",
        ("client_id", "required_scope"),
    ),
}

# name -> (description, label names, buckets)
HISTOGRAMS: Dict[str, Tuple[str, Sequence[str], Sequence[float]]] = {
    "http_request_duration_seconds": (
        "HTTP request latency",
        ("method", "endpoint"),
        _DURATION_BUCKETS,
    ),
    "http_request_size_bytes": ("HTTP request body size", ("method", "endpoint"), _SIZE_BUCKETS),
    "http_response_size_bytes": ("HTTP response body size", ("method", "endpoint"), _SIZE_BUCKETS),
    "task_creation_duration_seconds": ("Task creation latency", (), _DURATION_BUCKETS),
    "file_creation_duration_seconds": ("File creation latency", (), _DURATION_BUCKETS),
    "files_size_bytes": ("Size of files written", (), _SIZE_BUCKETS),
    "applescript_execution_duration_seconds": (
        "Task bridge execution latency",
        (),
        _DURATION_BUCKETS,
    ),
}


class MetricsSink(Protocol):
    def increment(self, name: str, amount: float = 1.0, **labels: str) -> None:
        ...

    def observe(self, name: str, value: float, **labels: str) -> None:
        ...


class PrometheusMetrics:
    """MetricsSink backed by prometheus_client, one registry per instance."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._counters = {
            name: Counter(name, doc, labels, namespace=NAMESPACE, registry=self.registry)
            for name, (doc, labels) in COUNTERS.items()
        }
        self._histograms = {
            name: Histogram(
                name, doc, labels, namespace=NAMESPACE, buckets=buckets, registry=self.registry
            )
            for name, (doc, labels, buckets) in HISTOGRAMS.items()
        }

    def increment(self, name: str, amount: float = 1.0, **labels: str) -> None:
        counter = self._counters[name]
        (counter.labels(**labels) if labels else counter).inc(amount)

    def observe(self, name: str, value: float, **labels: str) -> None:
        histogram = self._histograms[name]
        (histogram.labels(**labels) if labels else histogram).observe(value)

    def render(self) -> bytes:
        return generate_latest(self.registry)

    def counter_value(self, name: str, **labels: str) -> float:
        """Current value of a counter; 0.0 when the label set was never touched."""
        value = self.registry.get_sample_value(f"{NAMESPACE}_{name}_total", labels)
        return value or 0.0

    def histogram_count(self, name: str, **labels: str) -> float:
        value = self.registry.get_sample_value(f"{NAMESPACE}_{name}_count", labels)
        return value or 0.0
