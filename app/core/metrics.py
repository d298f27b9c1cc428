"""
Prometheus metrics for the HTTP layer and the registration engine
"""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "app_requests_total",
    "Total requests",
    ["method", "endpoint", "status"]
)
REQUEST_DURATION = Histogram(
    "app_request_duration_seconds",
    "Request duration",
    ["method", "endpoint"]
)

# outcome: registered, waitlisted, promoted, cancelled, no_show, completed
REGISTRATION_EVENTS = Counter(
    "registration_events_total",
    "Registration state transitions",
    ["outcome"]
)
SESSIONS_ARCHIVED = Counter(
    "sessions_archived_total",
    "Sessions archived by the lifecycle job or manually"
)
NOTIFICATIONS = Counter(
    "notifications_total",
    "Notification dispatch attempts",
    ["kind", "result"]
)


def record_registration_event(outcome: str, amount: int = 1):
    REGISTRATION_EVENTS.labels(outcome=outcome).inc(amount)
