"""Prometheus metrics for the generation pipeline."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest

# --- Circuit breaker ---

BREAKER_STATE = Gauge(
    "quizguard_breaker_state",
    "Circuit state per service (0=closed, 1=half_open, 2=open)",
    ["service"],
)

BREAKER_TRANSITIONS = Counter(
    "quizguard_breaker_transitions_total",
    "Circuit state transitions",
    ["service", "to_state"],
)

# --- Rate limiter ---

RATE_LIMIT_REJECTIONS = Counter(
    "quizguard_rate_limit_rejections_total",
    "Requests rejected by the per-session rate limiter",
    ["reason"],
)

# --- Providers ---

PROVIDER_REQUESTS = Counter(
    "quizguard_provider_requests_total",
    "Provider generation calls by outcome",
    ["service", "outcome"],
)

PROVIDER_LATENCY = Histogram(
    "quizguard_provider_latency_seconds",
    "Provider transport round-trip time in seconds",
    ["service"],
    buckets=[0.5, 1, 2.5, 5, 10, 30, 60, 120, 180],
)

_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


def observe_breaker_state(service: str, state: str) -> None:
    """Publish a breaker transition."""
    BREAKER_STATE.labels(service=service).set(_STATE_VALUES.get(state, 0))
    BREAKER_TRANSITIONS.labels(service=service, to_state=state).inc()


def metrics_payload() -> bytes:
    """Render all metrics in the Prometheus text exposition format."""
    return generate_latest()
