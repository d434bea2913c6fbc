"""Best-effort analytics events and per-turn metrics. Failures never reach the caller."""

import logging
from typing import Any, Dict, Optional

from soulaware.logs import log_event
from soulaware.metrics import (
    CHAT_CLARIFIERS_TOTAL,
    CHAT_COST_USD_TOTAL,
    CHAT_FALLBACKS_TOTAL,
    CHAT_MODEL_SELECTED_TOTAL,
    CHAT_RETRIES_TOTAL,
    CHAT_SUMMARY_UPDATES_TOTAL,
    CHAT_TOKENS_TOTAL,
    CHAT_TURN_LATENCY_SECONDS,
    CHAT_TURNS_TOTAL,
)
from soulaware.repository import Repository

logger = logging.getLogger("soulaware.chat")

ALLOWED_EVENTS = frozenset([
    "session_started",
    "message_sent",
    "snapshot_created",
    "safety_triggered",
    "returned_within_7d",
    "chat_model_selected",
    "chat_retry_for_uniqueness",
    "chat_clarifier_triggered",
    "chat_summary_updated",
    "chat_low_quality_fallback",
])


async def track(
    repo: Repository,
    guest_id: str,
    event_name: str,
    metadata: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> bool:
    try:
        await repo.track_event(guest_id, event_name, metadata or {})
        return True
    except Exception as e:
        log_event(logger, "telemetry_failed", logging.WARNING, requestId=request_id, eventName=event_name, error=str(e))
        return False


def record_turn_metrics(
    engine: str,
    response_kind: str,
    *,
    tier: Optional[str] = None,
    retry_count: int = 0,
    fallback: bool = False,
    summary_updated: bool = False,
    tokens: int = 0,
    cost_usd: float = 0.0,
    latency_ms: int = 0,
) -> None:
    try:
        CHAT_TURNS_TOTAL.labels(engine=engine, response_kind=response_kind).inc()
        if response_kind == "clarify":
            CHAT_CLARIFIERS_TOTAL.inc()
        if tier:
            CHAT_MODEL_SELECTED_TOTAL.labels(tier=tier).inc()
        if retry_count:
            CHAT_RETRIES_TOTAL.inc(retry_count)
        if fallback:
            CHAT_FALLBACKS_TOTAL.labels(engine=engine).inc()
        if summary_updated:
            CHAT_SUMMARY_UPDATES_TOTAL.inc()
        if tokens > 0:
            CHAT_TOKENS_TOTAL.labels(engine=engine).inc(tokens)
        if cost_usd > 0:
            CHAT_COST_USD_TOTAL.labels(engine=engine).inc(cost_usd)
        CHAT_TURN_LATENCY_SECONDS.labels(engine=engine).observe(max(0, latency_ms) / 1000.0)
    except Exception as e:
        log_event(logger, "metrics_failed", logging.WARNING, error=str(e))
