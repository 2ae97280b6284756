"""Prometheus metrics for the authentication subsystem."""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "taskcenter_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "taskcenter_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

LOGIN_ATTEMPTS = Counter(
    "taskcenter_login_attempts_total",
    "Login attempts by outcome",
    ["outcome"],
)
LOCKOUTS = Counter(
    "taskcenter_lockouts_total",
    "Lockouts started, by scope",
    ["scope"],
)
TOKEN_REJECTIONS = Counter(
    "taskcenter_token_rejections_total",
    "Rejected session tokens, by reason",
    ["reason"],
)
PASSWORD_RESET_REQUESTS = Counter(
    "taskcenter_password_reset_requests_total",
    "Password reset requests, by outcome",
    ["outcome"],
)
RESET_EMAIL_FAILURES = Counter(
    "taskcenter_reset_email_failures_total",
    "Password reset emails that could not be delivered",
)
HOUSEKEEPING_PURGED = Counter(
    "taskcenter_housekeeping_purged_total",
    "Rows removed by the housekeeping worker, by table",
    ["table"],
)
