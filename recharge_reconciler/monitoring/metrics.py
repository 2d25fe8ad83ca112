"""
Prometheus metrics for payment reconciliation.

Tracks:
- Sessions started and how they ended
- Status queries by trigger and verdict
- Status query duration
- Gateway requests by operation
"""
from prometheus_client import Counter, Gauge, Histogram

# Session metrics
recharge_sessions_started_total = Counter(
    "recharge_sessions_started_total",
    "Total number of reconciliation sessions started",
)

recharge_sessions_finished_total = Counter(
    "recharge_sessions_finished_total",
    "Total number of reconciliation sessions that reached a terminal state",
    ["outcome"],  # succeeded, failed, timed_out
)

recharge_session_active = Gauge(
    "recharge_session_active",
    "Whether a reconciliation session is in progress (0/1 per controller)",
)

# Status query metrics
recharge_status_queries_total = Counter(
    "recharge_status_queries_total",
    "Total payment status queries",
    ["source", "verdict"],  # source: resume, poll, manual
)

recharge_status_query_duration_seconds = Histogram(
    "recharge_status_query_duration_seconds",
    "Payment status query duration in seconds",
    ["source"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Gateway metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway requests",
    ["operation", "status"],  # operation: create_order, query_status
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_session_started() -> None:
        """Record a new session."""
        recharge_sessions_started_total.inc()
        recharge_session_active.set(1)

    @staticmethod
    def record_session_cleared() -> None:
        """Record that no session is active anymore."""
        recharge_session_active.set(0)

    @staticmethod
    def record_session_finished(outcome: str) -> None:
        """Record a terminal session outcome."""
        recharge_sessions_finished_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_status_query(source: str, verdict: str, duration_seconds: float = 0) -> None:
        """Record one status query."""
        recharge_status_queries_total.labels(source=source, verdict=verdict).inc()
        if duration_seconds > 0:
            recharge_status_query_duration_seconds.labels(source=source).observe(
                duration_seconds
            )

    @staticmethod
    def record_gateway_request(operation: str, status: str) -> None:
        """Record a gateway request."""
        gateway_requests_total.labels(operation=operation, status=status).inc()


# Export singleton instance
metrics = MetricsCollector()
