"""Prometheus metrics shared by the session services."""

from prometheus_client import Counter, Gauge

ROTATION_OUTCOMES = Counter(
    "sessionguard_rotation_outcomes_total",
    "Refresh token rotation outcomes",
    ["outcome"],
)
TOKENS_ISSUED = Counter(
    "sessionguard_tokens_issued_total",
    "Credentials minted",
    ["kind"],
)
SECURITY_ALERTS = Counter(
    "sessionguard_security_alerts_total",
    "Security alerts raised",
    ["alert_type"],
)
EVENT_QUEUE_DEPTH = Gauge("sessionguard_event_queue_depth", "Pending security event jobs")
