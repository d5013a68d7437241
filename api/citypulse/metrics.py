from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi.responses import Response

# Ledger / engagement metrics
ledger_entries_posted = Counter(
    "citypulse_ledger_entries_posted_total",
    "Total ledger entries written",
    ["type"],  # earned | bonus | redeemed | adjustment
)

vote_transitions = Counter(
    "citypulse_vote_transitions_total",
    "Vote state machine transitions applied",
    ["transition", "vote_type"],  # transition: cast | switch | retract
)

counter_drift_repaired = Counter(
    "citypulse_counter_drift_repaired_total",
    "Reports whose denormalized vote counters were repaired by reconciliation",
)

redemptions = Counter(
    "citypulse_redemptions_total",
    "Reward redemption attempts by outcome",
    ["outcome"],  # success | replayed | insufficient_credits | out_of_stock | unavailable | error
)

# Rate limiter metrics
rate_limit_decisions = Counter(
    "citypulse_rate_limit_decisions_total",
    "Rate limiter decisions",
    ["scope", "allowed"],
)

# External dependency metrics
chat_requests = Counter(
    "citypulse_chat_requests_total",
    "AI chat upstream calls by outcome",
    ["outcome"],  # success | timeout | unavailable | error
)

chat_duration = Histogram(
    "citypulse_chat_duration_seconds",
    "Latency of one AI chat upstream call",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0],
)

uploads = Counter(
    "citypulse_uploads_total",
    "File uploads by outcome",
    ["outcome"],  # success | rejected | timeout | unavailable
)

# HTTP request metrics (from middleware)
http_requests = Counter(
    "citypulse_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration = Histogram(
    "citypulse_http_request_duration_seconds",
    "HTTP request duration",
    ["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


async def metrics_endpoint():
    """FastAPI endpoint handler that returns Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
