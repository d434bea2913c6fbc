from fastapi import FastAPI, Request
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse, Response
from starlette.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import logging
import re
import time
import httpx

from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from soulaware import __version__
from soulaware import config
from soulaware.engine import generate_classic_reply, generate_coach_reply_v2, generate_purpose_snapshot
from soulaware.engine.usage import estimate_cost_from_total
from soulaware.guest import GuestIdentityError, client_ip, new_guest_id, read_guest_id
from soulaware.logs import get_logger, log_event
from soulaware.metrics import (
    HTTP_REQUESTS_TOTAL,
    HTTP_REQUEST_DURATION_SECONDS,
    RATE_LIMITED_TOTAL,
    SAFETY_INTERCEPTIONS_TOTAL,
)
from soulaware.middleware.guest_cookie import GuestCookieMiddleware, set_guest_cookie
from soulaware.middleware.request_id import RequestIdMiddleware, request_id_of
from soulaware.providers.factory import get_completion_client, get_moderation_client
from soulaware.rate_limit import SlidingWindowLimiter
from soulaware.repository import InMemoryRepository, Repository, StateStoreError
from soulaware.rollout import should_use_v2
from soulaware.safety import SAFETY_RESPONSE, evaluate_safety
from soulaware.telemetry import ALLOWED_EVENTS, record_turn_metrics, track

logger = get_logger("soulaware.chat")

LINK_RE = re.compile(r"https?://|www\.", re.I)
SNAPSHOT_CONTEXT_DEFAULT = 12
SNAPSHOT_CONTEXT_MAX = 24
CLASSIC_HISTORY_TURNS = 12
SAFETY_MODEL = "safety-guardrail"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Process-scoped collaborators, built once and injected into every turn
    tiers = config.load_model_tiers()
    app.state.repo = InMemoryRepository()  # type: ignore[attr-defined]
    app.state.completion_client = get_completion_client()  # type: ignore[attr-defined]
    app.state.moderation_client = get_moderation_client()  # type: ignore[attr-defined]
    app.state.model_tiers = tiers  # type: ignore[attr-defined]
    app.state.engine_settings = config.load_engine_settings()  # type: ignore[attr-defined]
    app.state.rate_limiter = SlidingWindowLimiter()  # type: ignore[attr-defined]
    client = app.state.completion_client
    log_event(
        logger,
        "startup",
        provider=getattr(client, "provider_name", None),
        fastModel=tiers.fast,
        primaryModel=tiers.primary,
        engine=config.chat_engine(),
        v2Percent=config.chat_v2_percent(),
    )
    yield
    log_event(logger, "shutdown")


app = FastAPI(
    title="Soulaware Coaching API",
    description="Guest-mode AI coaching chat with adaptive replies, purpose snapshots and safety interception.",
    version=__version__,
    lifespan=lifespan,
)
app.add_middleware(GuestCookieMiddleware, secure=config.cookie_secure())
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id"],
    allow_credentials=True,
)
app.add_middleware(RequestIdMiddleware)


# HTTP metrics middleware
@app.middleware("http")
async def _http_metrics_middleware(request: Request, call_next):
    t0 = time.perf_counter()
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = getattr(response, "status_code", 500)
        return response
    except Exception:
        status_code = 500
        raise
    finally:
        try:
            # Route template keeps label cardinality bounded for /api/purpose-snapshot/{id}
            route = request.scope.get("route")
            path = getattr(route, "path", None) or request.url.path
            status_class = f"{status_code // 100}xx"
            HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status_class=status_class).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(time.perf_counter() - t0)
        except Exception:
            pass


@app.exception_handler(GuestIdentityError)
async def _guest_identity_error(request: Request, exc: GuestIdentityError):
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(StateStoreError)
async def _state_store_error(request: Request, exc: StateStoreError):
    log_event(logger, "state_store_error", logging.ERROR, requestId=request_id_of(request), path=request.url.path, error=str(exc))
    return JSONResponse({"error": "Unable to process request. Please try again."}, status_code=500)


def _repo(request: Request) -> Repository:
    return request.app.state.repo


def _error(message: str, status_code: int, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=headers)


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except Exception:
        return {}
    return body if isinstance(body, dict) else {}


def _validate_text(text: str) -> Optional[str]:
    if not text:
        return "Message text is required."
    if len(text) > config.CHAT_MAX_MESSAGE_CHARS:
        return f"Message is too long. Keep it under {config.CHAT_MAX_MESSAGE_CHARS} characters."
    if len(LINK_RE.findall(text)) > config.CHAT_MAX_LINKS:
        return "Too many links in one message."
    return None


@app.get("/health", tags=["meta"], description="Liveness endpoint for health checks.")
async def health():
    return {"status": "ok"}


@app.get("/metrics", tags=["meta"], include_in_schema=False)
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/service-metrics", tags=["meta"], description="Lightweight service metrics for observability.")
async def service_metrics(request: Request):
    try:
        client = request.app.state.completion_client
        out: Dict[str, Any] = {"provider": getattr(client, "provider_name", None)}
        out.update(_repo(request).stats())
        return out
    except Exception:
        return {"provider": None, "sessionCount": None, "messageCount": None}


@app.post("/api/chat/message", tags=["chat"], description="Send one guest message and receive a coaching reply.")
async def chat_message(request: Request):
    guest_id = read_guest_id(request)
    request_id = request_id_of(request)
    payload = await _json_body(request)
    raw_text = payload.get("text")
    text = raw_text.strip() if isinstance(raw_text, str) else ""

    invalid = _validate_text(text)
    if invalid:
        return _error(invalid, 400)

    limiter: SlidingWindowLimiter = request.app.state.rate_limiter
    guest_limit = limiter.hit(f"guest:{guest_id}")
    ip_limit = limiter.hit(f"ip:{client_ip(request)}")
    if not guest_limit.success or not ip_limit.success:
        blocked = ip_limit if guest_limit.success else guest_limit
        RATE_LIMITED_TOTAL.labels(scope="guest" if not guest_limit.success else "ip").inc()
        log_event(logger, "rate_limited", logging.WARNING, requestId=request_id, guestId=guest_id)
        return _error("Too many messages. Please wait and try again.", 429, headers=blocked.headers())

    repo = _repo(request)
    session = await repo.get_or_create_session(guest_id)
    user_turn = await repo.create_message(session.id, "user", text, "coach")

    safety = await evaluate_safety(text, request.app.state.moderation_client, request_id)
    if safety.is_triggered:
        await repo.create_safety_event(guest_id, session.id, safety.level, text)
        assistant = await repo.create_message(session.id, "assistant", SAFETY_RESPONSE, "safety")
        SAFETY_INTERCEPTIONS_TOTAL.labels(reason=safety.reason).inc()
        await track(repo, guest_id, "safety_triggered", {"reason": safety.reason, "engine": "safety"}, request_id)
        log_event(logger, "safety_triggered", logging.WARNING, requestId=request_id, sessionId=session.id, reason=safety.reason)
        return {
            "reply": SAFETY_RESPONSE,
            "mode": "safety",
            "messageId": assistant.id,
            "safetyTriggered": True,
            "responseKind": "safety",
            "modelUsed": SAFETY_MODEL,
            "clarifierPending": False,
        }

    snapshot = await repo.get_latest_snapshot(session.id)
    client = request.app.state.completion_client
    tiers = request.app.state.model_tiers

    if should_use_v2(guest_id):
        settings = request.app.state.engine_settings
        recent = await repo.list_recent_messages(session.id, settings.history_window)
        history = [t for t in recent if t.id != user_turn.id]
        state = await repo.get_or_create_session_state(session.id)
        user_turns = await repo.count_user_turns(session.id)
        started = time.perf_counter()

        result = await generate_coach_reply_v2(
            text=text,
            history=history,
            session_state=state,
            client=client,
            tiers=tiers,
            snapshot=snapshot,
            user_turn_count=user_turns,
            settings=settings,
            request_id=request_id,
        )

        await repo.update_session_state(session.id, result.session_state_patch)
        assistant = await repo.create_message(session.id, "assistant", result.reply, "coach")
        latency_ms = int((time.perf_counter() - started) * 1000)

        record_turn_metrics(
            "v2",
            result.response_kind,
            tier=result.model_tier if result.response_kind == "coach" else None,
            retry_count=result.retry_count,
            fallback=result.low_quality_fallback,
            summary_updated=result.summary_updated,
            tokens=result.approximate_tokens,
            cost_usd=result.estimated_cost_usd,
            latency_ms=latency_ms,
        )
        await track(repo, guest_id, "chat_model_selected", {
            "engine": "v2",
            "modelUsed": result.model_used,
            "lens": result.lens,
            "responseKind": result.response_kind,
            "retryCount": result.retry_count,
            "approximateTokens": result.approximate_tokens,
            "estimatedCostUsd": result.estimated_cost_usd,
            "latencyMs": latency_ms,
        }, request_id)
        if result.retry_count > 0:
            await track(repo, guest_id, "chat_retry_for_uniqueness", {
                "engine": "v2", "retryCount": result.retry_count, "modelUsed": result.model_used,
            }, request_id)
        if result.response_kind == "clarify":
            await track(repo, guest_id, "chat_clarifier_triggered", {"engine": "v2", "lens": result.lens}, request_id)
        if result.summary_updated:
            await track(repo, guest_id, "chat_summary_updated", {"engine": "v2", "modelUsed": tiers.summary}, request_id)
        if result.low_quality_fallback:
            await track(repo, guest_id, "chat_low_quality_fallback", {
                "engine": "v2", "lens": result.lens, "modelUsed": result.model_used,
            }, request_id)

        return {
            "reply": result.reply,
            "mode": "coach",
            "messageId": assistant.id,
            "safetyTriggered": False,
            "responseKind": result.response_kind,
            "modelUsed": result.model_used,
            "lens": result.lens,
            "clarifierPending": result.clarifier_pending,
        }

    history = await repo.list_messages(session.id, limit=CLASSIC_HISTORY_TURNS)
    started = time.perf_counter()
    classic = await generate_classic_reply(client, tiers.classic, text, history, snapshot, request_id)
    reply = classic.reply.render()
    assistant = await repo.create_message(session.id, "assistant", reply, "coach")
    latency_ms = int((time.perf_counter() - started) * 1000)

    record_turn_metrics(
        "v1",
        "coach",
        fallback=classic.fallback,
        tokens=classic.usage.total_tokens,
        cost_usd=classic.estimated_cost_usd,
        latency_ms=latency_ms,
    )
    await track(repo, guest_id, "chat_model_selected", {
        "engine": "v1",
        "modelUsed": classic.model_used,
        "responseKind": "coach",
        "approximateTokens": classic.usage.total_tokens,
        "estimatedCostUsd": classic.estimated_cost_usd,
        "latencyMs": latency_ms,
    }, request_id)

    return {
        "reply": reply,
        "mode": "coach",
        "messageId": assistant.id,
        "safetyTriggered": False,
        "responseKind": "coach",
        "modelUsed": classic.model_used,
        "clarifierPending": False,
    }


@app.get("/api/chat/history", tags=["chat"], description="Full conversation history for the guest's session.")
async def chat_history(request: Request):
    guest_id = read_guest_id(request)
    repo = _repo(request)
    session = await repo.get_or_create_session(guest_id)
    turns = await repo.list_messages(session.id)
    return {"sessionId": session.id, "messages": [t.to_dict() for t in turns]}


@app.post("/api/session/clear", tags=["chat"], description="Clear messages, snapshots and memory for the guest's session.")
async def session_clear(request: Request):
    guest_id = read_guest_id(request)
    await _repo(request).clear_session(guest_id)
    log_event(logger, "session_cleared", requestId=request_id_of(request), guestId=guest_id)
    return {"ok": True}


@app.post("/api/data/delete", tags=["chat"], description="Erase every record for the guest and rotate the guest cookie.")
async def data_delete(request: Request):
    guest_id = read_guest_id(request)
    await _repo(request).delete_guest(guest_id)
    log_event(logger, "guest_data_deleted", requestId=request_id_of(request), guestId=guest_id)
    response = JSONResponse({"ok": True})
    set_guest_cookie(response, new_guest_id(), secure=config.cookie_secure())
    return response


@app.post("/api/purpose-snapshot", tags=["snapshots"], description="Generate and store a purpose snapshot from recent conversation.")
async def purpose_snapshot_create(request: Request):
    guest_id = read_guest_id(request)
    request_id = request_id_of(request)
    payload = await _json_body(request)
    window = payload.get("contextWindow")
    if isinstance(window, int) and not isinstance(window, bool) and window > 0:
        context_window = min(window, SNAPSHOT_CONTEXT_MAX)
    else:
        context_window = SNAPSHOT_CONTEXT_DEFAULT

    repo = _repo(request)
    session = await repo.get_or_create_session(guest_id)
    history = await repo.list_messages(session.id, limit=context_window)
    previous = await repo.get_latest_snapshot(session.id)

    draft = await generate_purpose_snapshot(
        request.app.state.completion_client,
        request.app.state.model_tiers.classic,
        history,
        previous,
        request_id,
    )
    snapshot = await repo.create_snapshot(session.id, draft.mission, draft.values, draft.next_actions)
    await repo.create_message(
        session.id, "assistant", f"Purpose Snapshot created. Open it here: /snapshot/{snapshot.id}", "coach"
    )
    await track(repo, guest_id, "snapshot_created", {"snapshotId": snapshot.id, "fallback": draft.fallback}, request_id)
    return snapshot.to_response()


@app.get("/api/purpose-snapshot/{snapshot_id}", tags=["snapshots"], description="Read one of the guest's purpose snapshots.")
async def purpose_snapshot_get(snapshot_id: str, request: Request):
    guest_id = read_guest_id(request)
    snapshot = await _repo(request).get_snapshot_for_guest(snapshot_id, guest_id)
    if snapshot is None:
        return _error("Snapshot not found.", 404)
    return snapshot.to_response()


@app.post("/api/analytics", tags=["analytics"], description="Record a client-side analytics event.")
async def analytics(request: Request):
    guest_id = read_guest_id(request)
    payload = await _json_body(request)
    event_name = payload.get("eventName")
    if not isinstance(event_name, str) or event_name not in ALLOWED_EVENTS:
        return _error("Invalid analytics event.", 400)
    metadata = payload.get("metadata")
    await _repo(request).track_event(guest_id, event_name, metadata if isinstance(metadata, dict) else {})
    return {"ok": True}


def _is_ops_authorized(request: Request) -> bool:
    expected = config.cron_secret()
    if not expected:
        return False
    auth = request.headers.get("authorization") or ""
    bearer = auth[len("Bearer "):] if auth.startswith("Bearer ") else ""
    return request.headers.get("x-cron-secret") == expected or bearer == expected


def _utc_day_start_iso() -> str:
    now = datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0).isoformat()


def _event_cost_usd(metadata: Dict[str, Any]) -> float:
    explicit = metadata.get("estimatedCostUsd")
    if isinstance(explicit, (int, float)) and not isinstance(explicit, bool):
        return float(explicit)
    model = metadata.get("modelUsed") if isinstance(metadata.get("modelUsed"), str) else ""
    tokens = metadata.get("approximateTokens")
    tokens = max(0.0, float(tokens)) if isinstance(tokens, (int, float)) and not isinstance(tokens, bool) else 0.0
    return estimate_cost_from_total(model, tokens)


async def _send_cost_webhook(url: str, payload: Dict[str, Any], request_id: Optional[str] = None) -> bool:
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.post(url, headers={"Content-Type": "application/json"}, json=payload)
        return 200 <= resp.status_code < 300
    except Exception as e:
        log_event(logger, "cost_alert_webhook_failed", logging.WARNING, requestId=request_id, error=str(e))
        return False


@app.get("/api/ops/cost-alert", tags=["ops"], description="Compare today's estimated model spend with the alert threshold.")
async def ops_cost_alert(request: Request):
    if not _is_ops_authorized(request):
        return _error("Unauthorized.", 401)

    threshold = config.cost_alert_daily_usd()
    if threshold <= 0:
        return {"ok": True, "enabled": False, "reason": "COST_ALERT_DAILY_USD is not configured."}

    since_iso = _utc_day_start_iso()
    events = await _repo(request).list_events_since("chat_model_selected", since_iso)
    estimated = round(sum(_event_cost_usd(e.metadata) for e in events), 6)
    exceeded = estimated >= threshold

    notified = False
    webhook_url = config.cost_alert_webhook_url()
    if exceeded and webhook_url:
        notified = await _send_cost_webhook(webhook_url, {
            "service": "soulaware",
            "alertType": "daily_cost_threshold_exceeded",
            "estimatedCostUsd": estimated,
            "thresholdUsd": threshold,
            "observedAt": datetime.now(timezone.utc).isoformat(),
            "sinceIso": since_iso,
            "eventsEvaluated": len(events),
        }, request_id_of(request))
    if exceeded:
        log_event(logger, "cost_alert_exceeded", logging.WARNING, estimatedCostUsd=estimated, thresholdUsd=threshold)

    return {
        "ok": True,
        "enabled": True,
        "exceeded": exceeded,
        "estimatedCostUsd": estimated,
        "thresholdUsd": threshold,
        "sinceIso": since_iso,
        "eventsEvaluated": len(events),
        "webhookNotified": notified,
    }


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema["tags"] = [
        {"name": "meta", "description": "Service metadata and liveness"},
        {"name": "chat", "description": "Guest chat turns, history and data controls"},
        {"name": "snapshots", "description": "Purpose snapshots"},
        {"name": "analytics", "description": "Client analytics events"},
        {"name": "ops", "description": "Operational checks"},
    ]
    openapi_schema["servers"] = [
        {"url": "http://localhost:8000", "description": "Local dev"}
    ]
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi  # type: ignore[assignment]
