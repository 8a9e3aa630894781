"""
Prometheus counters for the notification and connector paths (served at /metrics)
"""
from prometheus_client import Counter

NOTIFICATIONS_SENT = Counter(
    "covrily_notifications_sent_total",
    "Milestone notifications delivered",
    ["milestone"],
)

NOTIFICATIONS_FAILED = Counter(
    "covrily_notifications_failed_total",
    "Milestone notifications the transport rejected",
    ["milestone"],
)

NOTIFICATIONS_SKIPPED = Counter(
    "covrily_notifications_skipped_total",
    "Due deadlines skipped (claimed elsewhere or no recipient)",
    ["milestone", "reason"],
)

TOKEN_REFRESHES = Counter(
    "covrily_token_refreshes_total",
    "Upstream access-token refresh attempts by outcome",
    ["provider", "outcome"],
)
