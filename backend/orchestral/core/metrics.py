"""
Metrics collection for Orchestral.

Provides application metrics using Prometheus format for
observability and monitoring dashboards.
"""

import time
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Tuple


@dataclass
class MetricValue:
    """A single metric value with labels."""

    value: float
    labels: Dict[str, str] = field(default_factory=dict)


class Counter:
    """
    A monotonically increasing counter metric.

    Used for counting events like requests, errors, etc.
    """

    def __init__(self, name: str, description: str, label_names: List[str] = None):
        self.name = name
        self.description = description
        self.label_names = label_names or []
        self._values: Dict[tuple, float] = defaultdict(float)
        self._lock = Lock()

    def inc(self, value: float = 1, **labels) -> None:
        """Increment the counter."""
        label_key = tuple(sorted(labels.items()))
        with self._lock:
            self._values[label_key] += value

    def get(self, **labels) -> float:
        """Get current counter value."""
        label_key = tuple(sorted(labels.items()))
        with self._lock:
            return self._values.get(label_key, 0)

    def get_all(self) -> List[MetricValue]:
        """Get all counter values with labels."""
        with self._lock:
            return [
                MetricValue(value=value, labels=dict(label_key))
                for label_key, value in self._values.items()
            ]


class Gauge:
    """
    A metric that can go up and down.

    Used for current values like active streams or live sessions.
    """

    def __init__(self, name: str, description: str, label_names: List[str] = None):
        self.name = name
        self.description = description
        self.label_names = label_names or []
        self._values: Dict[tuple, float] = defaultdict(float)
        self._lock = Lock()

    def set(self, value: float, **labels) -> None:
        """Set the gauge value."""
        label_key = tuple(sorted(labels.items()))
        with self._lock:
            self._values[label_key] = value

    def inc(self, value: float = 1, **labels) -> None:
        """Increment the gauge."""
        label_key = tuple(sorted(labels.items()))
        with self._lock:
            self._values[label_key] += value

    def dec(self, value: float = 1, **labels) -> None:
        """Decrement the gauge."""
        label_key = tuple(sorted(labels.items()))
        with self._lock:
            self._values[label_key] -= value

    def get(self, **labels) -> float:
        """Get current gauge value."""
        label_key = tuple(sorted(labels.items()))
        with self._lock:
            return self._values.get(label_key, 0)

    def get_all(self) -> List[MetricValue]:
        """Get all gauge values with labels."""
        with self._lock:
            return [
                MetricValue(value=value, labels=dict(label_key))
                for label_key, value in self._values.items()
            ]


class Histogram:
    """
    A histogram metric for measuring distributions.

    Used for request latencies, source query durations, etc.
    """

    DEFAULT_BUCKETS = (
        0.005,
        0.01,
        0.025,
        0.05,
        0.1,
        0.25,
        0.5,
        1.0,
        2.5,
        5.0,
        10.0,
        float("inf"),
    )

    def __init__(
        self,
        name: str,
        description: str,
        label_names: List[str] = None,
        buckets: tuple = None,
    ):
        self.name = name
        self.description = description
        self.label_names = label_names or []
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._observations: Dict[tuple, List[float]] = defaultdict(list)
        self._lock = Lock()

    def observe(self, value: float, **labels) -> None:
        """Record an observation."""
        label_key = tuple(sorted(labels.items()))
        with self._lock:
            self._observations[label_key].append(value)

    def collect(self) -> List[Tuple[Dict[str, str], List[float]]]:
        """Copy of the observations of every label set."""
        with self._lock:
            return [(dict(label_key), list(values)) for label_key, values in self._observations.items()]


# ============ Application Metrics ============


class ApplicationMetrics:
    """
    Central metrics registry for the application.

    Provides pre-defined metrics for the chat pipeline.
    """

    def __init__(self):
        # Request metrics
        self.requests_total = Counter(
            "orchestral_requests_total",
            "Total number of HTTP requests",
            ["method", "endpoint", "status"],
        )

        self.request_duration = Histogram(
            "orchestral_request_duration_seconds",
            "Request duration in seconds",
            ["method", "endpoint"],
        )

        # Chat metrics
        self.chat_requests_total = Counter(
            "orchestral_chat_requests_total",
            "Chat requests processed",
            ["mode", "status"],
        )

        self.chat_response_time = Histogram(
            "orchestral_chat_response_seconds",
            "Chat response time in seconds",
            ["mode"],
            buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, float("inf")),
        )

        # Knowledge source metrics
        self.source_queries_total = Counter(
            "orchestral_source_queries_total",
            "Knowledge source invocations",
            ["source_id", "status"],
        )

        self.source_query_duration = Histogram(
            "orchestral_source_query_seconds",
            "Knowledge source query duration in seconds",
            ["source_id"],
        )

        # LLM metrics
        self.llm_calls_total = Counter(
            "orchestral_llm_calls_total",
            "Total LLM API calls",
            ["model", "purpose", "status"],
        )

        self.llm_tokens = Counter(
            "orchestral_llm_tokens_total",
            "Total LLM tokens used",
            ["model", "direction"],  # direction: input or output
        )

        self.llm_duration = Histogram(
            "orchestral_llm_duration_seconds",
            "LLM call duration in seconds",
            ["model", "purpose"],
        )

        # Live state
        self.active_streams = Gauge(
            "orchestral_active_streams",
            "Number of active SSE streams",
        )

        self.active_sessions = Gauge(
            "orchestral_active_sessions",
            "Number of chat sessions held in memory",
        )

        # Error metrics
        self.errors_total = Counter(
            "orchestral_errors_total",
            "Total errors",
            ["error_type", "stage"],
        )

    # ============ Convenience Methods ============

    def record_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float,
    ) -> None:
        """Record an HTTP request."""
        self.requests_total.inc(method=method, endpoint=endpoint, status=str(status))
        self.request_duration.observe(duration, method=method, endpoint=endpoint)

    def record_chat(self, mode: str, success: bool, duration: float) -> None:
        """Record one chat exchange (mode is "single" or "stream")."""
        status = "success" if success else "error"
        self.chat_requests_total.inc(mode=mode, status=status)
        self.chat_response_time.observe(duration, mode=mode)

    def record_source_query(self, source_id: str, success: bool, duration: float) -> None:
        """Record a knowledge source invocation."""
        status = "success" if success else "error"
        self.source_queries_total.inc(source_id=source_id, status=status)
        self.source_query_duration.observe(duration, source_id=source_id)

    def record_llm_call(
        self,
        model: str,
        purpose: str,
        input_tokens: int,
        output_tokens: int,
        duration: float,
        success: bool = True,
    ) -> None:
        """Record an LLM API call."""
        status = "success" if success else "error"
        self.llm_calls_total.inc(model=model, purpose=purpose, status=status)
        self.llm_tokens.inc(input_tokens, model=model, direction="input")
        self.llm_tokens.inc(output_tokens, model=model, direction="output")
        self.llm_duration.observe(duration, model=model, purpose=purpose)

    def record_error(self, error_type: str, stage: str = "unknown") -> None:
        """Record an error."""
        self.errors_total.inc(error_type=error_type, stage=stage)

    # ============ Export Methods ============

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus format."""
        lines = []

        def label_part(labels: Dict[str, str]) -> str:
            if not labels:
                return ""
            return "{" + ",".join(f'{k}="{v}"' for k, v in labels.items()) + "}"

        def header(metric, metric_type: str):
            lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric_type}")

        for attr_name in sorted(vars(self)):
            attr = getattr(self, attr_name)
            if isinstance(attr, (Counter, Gauge)):
                header(attr, "counter" if isinstance(attr, Counter) else "gauge")
                for mv in attr.get_all():
                    lines.append(f"{attr.name}{label_part(mv.labels)} {mv.value}")
            elif isinstance(attr, Histogram):
                header(attr, "histogram")
                for labels, observations in attr.collect():
                    for bound in attr.buckets:
                        le = "+Inf" if bound == float("inf") else str(bound)
                        count = sum(1 for v in observations if v <= bound)
                        lines.append(f"{attr.name}_bucket{label_part({**labels, 'le': le})} {count}")
                    lines.append(f"{attr.name}_sum{label_part(labels)} {sum(observations)}")
                    lines.append(f"{attr.name}_count{label_part(labels)} {len(observations)}")

        return "\n".join(lines) + "\n"


# Global metrics instance
metrics = ApplicationMetrics()


def get_metrics() -> ApplicationMetrics:
    """Get the global metrics instance."""
    return metrics


# ============ Middleware for Request Metrics ============


class MetricsMiddleware:
    """ASGI middleware to automatically record request metrics."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500  # Default if something goes wrong

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration = time.perf_counter() - start
            metrics.record_request(
                method=scope.get("method", "UNKNOWN"),
                endpoint=scope.get("path", "/"),
                status=status_code,
                duration=duration,
            )
