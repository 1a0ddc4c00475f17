from __future__ import annotations

from prometheus_client import Counter, Histogram

# Relay metrics
relay_requests_total = Counter(
    "relay_requests_total",
    "Total relay chat requests",
    ["endpoint", "outcome"],
)

relay_stream_duration = Histogram(
    "relay_stream_duration_seconds",
    "Duration of a streamed provider reply, first byte to last",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120),
)

provider_errors_total = Counter(
    "relay_provider_errors_total",
    "Provider errors by HTTP status",
    ["status"],
)
