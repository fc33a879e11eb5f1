from prometheus_client import Counter, Histogram, make_asgi_app

# Route templates (e.g. /api/v1/files/{file_id}) keep label cardinality low.
REQUESTS = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)

LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency in seconds",
    ["method", "route"],
)

UPLOAD_EVENTS = Counter(
    "upload_sessions_total",
    "Upload session lifecycle transitions",
    ["event"],
)

PROVIDER_RETRIES = Counter(
    "upload_provider_retries_total",
    "Object storage calls retried after a transient failure",
    ["operation"],
)

metrics_app = make_asgi_app()
