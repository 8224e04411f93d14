"""Prometheus metrics exposition."""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, Info, generate_latest

from chat_client_kit import __version__

# Application info
APP_INFO = Info("chat_client_kit", "Application information")
APP_INFO.info({"version": __version__})

# Request counters
REQUESTS_TOTAL = Counter(
    "chat_client_requests_total",
    "Total chat requests processed",
    ["backend", "mode", "outcome"]
)

DROPPED_CHUNKS_TOTAL = Counter(
    "chat_client_dropped_chunks_total",
    "Stream chunks dropped because they could not be decoded",
    ["backend"]
)

STREAM_OBJECTS_TOTAL = Counter(
    "chat_client_stream_objects_total",
    "Stream objects delivered to callers",
    ["backend", "type"]
)

TOOL_CALLS_TOTAL = Counter(
    "chat_client_tool_calls_total",
    "Tool calls surfaced to callers",
    ["backend"]
)

MODEL_LOADS_TOTAL = Counter(
    "chat_client_model_loads_total",
    "Local model loads",
    ["kind", "outcome"]
)

# Response time
RESPONSE_TIME = Histogram(
    "chat_client_response_time_seconds",
    "Time until a response or stream finished",
    ["backend", "mode"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0]
)

INFERENCE_WAIT_TIME = Histogram(
    "chat_client_inference_wait_seconds",
    "Time spent waiting for the local inference slot",
    buckets=[0.01, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0]
)


class MetricsExporter:
    """Exports metrics in Prometheus format."""

    @staticmethod
    def get_prometheus_format() -> tuple[str, bytes]:
        """Get metrics in Prometheus exposition format.

        Returns:
            Tuple of (content_type, metrics_body)
        """
        return CONTENT_TYPE_LATEST, generate_latest()

    @staticmethod
    def record_request(backend: str, mode: str, outcome: str, duration: float) -> None:
        """Record a finished request.

        Args:
            backend: Backend name (remote, local, ondevice)
            mode: "stream" or "complete"
            outcome: "ok", "error" or "cancelled"
            duration: Elapsed seconds
        """
        REQUESTS_TOTAL.labels(backend=backend, mode=mode, outcome=outcome).inc()
        RESPONSE_TIME.labels(backend=backend, mode=mode).observe(duration)

    @staticmethod
    def record_dropped_chunk(backend: str = "remote") -> None:
        DROPPED_CHUNKS_TOTAL.labels(backend=backend).inc()

    @staticmethod
    def record_stream_object(backend: str, kind: str) -> None:
        STREAM_OBJECTS_TOTAL.labels(backend=backend, type=kind).inc()

    @staticmethod
    def record_tool_calls(backend: str, count: int) -> None:
        if count > 0:
            TOOL_CALLS_TOTAL.labels(backend=backend).inc(count)

    @staticmethod
    def record_model_load(kind: str, outcome: str) -> None:
        MODEL_LOADS_TOTAL.labels(kind=kind, outcome=outcome).inc()

    @staticmethod
    def record_inference_wait(seconds: float) -> None:
        INFERENCE_WAIT_TIME.observe(seconds)
