from prometheus_client import Counter, Histogram

# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "soulaware_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "soulaware_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)

# Chat pipeline metrics
CHAT_TURNS_TOTAL = Counter(
    "soulaware_chat_turns_total",
    "Chat turns answered",
    ["engine", "response_kind"],
)
CHAT_MODEL_SELECTED_TOTAL = Counter(
    "soulaware_chat_model_selected_total",
    "Model tier selections by the router",
    ["tier"],
)
CHAT_RETRIES_TOTAL = Counter(
    "soulaware_chat_quality_retries_total",
    "Drafts retried after a failed first attempt",
)
CHAT_FALLBACKS_TOTAL = Counter(
    "soulaware_chat_fallbacks_total",
    "Replies composed by the deterministic fallback",
    ["engine"],
)
CHAT_SUMMARY_UPDATES_TOTAL = Counter(
    "soulaware_chat_summary_updates_total",
    "Rolling memory summary updates",
)
CHAT_CLARIFIERS_TOTAL = Counter(
    "soulaware_chat_clarifiers_total",
    "Clarifying questions issued instead of coaching",
)
CHAT_TOKENS_TOTAL = Counter(
    "soulaware_chat_tokens_total",
    "Approximate model tokens used by chat turns",
    ["engine"],
)
CHAT_COST_USD_TOTAL = Counter(
    "soulaware_chat_estimated_cost_usd_total",
    "Estimated model spend in USD",
    ["engine"],
)
CHAT_TURN_LATENCY_SECONDS = Histogram(
    "soulaware_chat_turn_latency_seconds",
    "Reply engine latency per turn in seconds",
    ["engine"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 4, 8, 16, 32),
)

# Admission and safety
SAFETY_INTERCEPTIONS_TOTAL = Counter(
    "soulaware_safety_interceptions_total",
    "Messages answered with crisis resources instead of coaching",
    ["reason"],
)
RATE_LIMITED_TOTAL = Counter(
    "soulaware_rate_limited_total",
    "Requests rejected by the admission gate",
    ["scope"],
)
