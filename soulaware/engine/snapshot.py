"""Purpose snapshot extraction: mission, five values, three next actions."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from soulaware.logs import log_event
from soulaware.models import ConversationTurn, PurposeSnapshot
from soulaware.providers.base import CompletionClient
from .classic import format_conversation_context, format_snapshot_context
from .drafting import extract_json

logger = logging.getLogger("soulaware.engine")

SNAPSHOT_SYSTEM_PROMPT = " ".join([
    "You are Soulaware, creating a purpose snapshot.",
    "Return strict JSON only with keys: mission, values, nextActions.",
    "mission must be one sentence.",
    "values must contain exactly 5 short value labels.",
    "nextActions must contain exactly 3 concrete actions that can be done in 7 days.",
    "Do not include markdown.",
])

VALUES_COUNT = 5
ACTIONS_COUNT = 3

DEFAULT_VALUES = ("Growth", "Integrity", "Contribution", "Connection", "Courage")
DEFAULT_ACTIONS = (
    "Write a 10-minute reflection on what gives you energy this week.",
    "Schedule one focused 30-minute block for your most meaningful priority.",
    "Share one goal with a trusted person for accountability.",
)
DEFAULT_MISSION_FOCUS = "live with clarity, contribution, and aligned growth"


@dataclass
class SnapshotDraft:
    mission: str
    values: List[str]
    next_actions: List[str]
    fallback: bool = False


def _pad(items: Sequence[str], defaults: Sequence[str], size: int) -> List[str]:
    out: List[str] = []
    for item in items:
        value = item.strip() if isinstance(item, str) else ""
        if value and value not in out:
            out.append(value)
    for value in defaults:
        if len(out) >= size:
            break
        if value not in out:
            out.append(value)
    return out[:size]


def fill_values(values: Sequence[str]) -> List[str]:
    return _pad(values, DEFAULT_VALUES, VALUES_COUNT)


def fill_actions(actions: Sequence[str]) -> List[str]:
    return _pad(actions, DEFAULT_ACTIONS, ACTIONS_COUNT)


def fallback_snapshot(history: Sequence[ConversationTurn]) -> SnapshotDraft:
    latest = next((t.content for t in reversed(list(history)) if t.role == "user"), DEFAULT_MISSION_FOCUS)
    return SnapshotDraft(
        mission="Create a life aligned with your true priorities by focusing on what matters most: "
                f"{latest[:120]}.",
        values=fill_values(["Growth", "Authenticity", "Purpose"]),
        next_actions=fill_actions([
            "Define one meaningful weekly objective that reflects your core values.",
            "Identify one draining commitment you can reduce this week.",
            "Take one concrete step toward a purpose-aligned career or life move.",
        ]),
        fallback=True,
    )


def parse_snapshot(raw: str) -> Optional[SnapshotDraft]:
    data = extract_json(raw)
    if not data:
        return None
    mission = data.get("mission")
    mission = mission.strip() if isinstance(mission, str) else ""
    values = [v for v in data.get("values") or [] if isinstance(v, str)] if isinstance(data.get("values"), list) else []
    actions = [a for a in data.get("nextActions") or [] if isinstance(a, str)] if isinstance(data.get("nextActions"), list) else []
    if not mission or not values or not actions:
        return None
    return SnapshotDraft(mission, fill_values(values[:VALUES_COUNT]), fill_actions(actions[:ACTIONS_COUNT]))


async def generate_purpose_snapshot(
    client: Optional[CompletionClient],
    model: str,
    history: Sequence[ConversationTurn],
    previous: Optional[PurposeSnapshot] = None,
    request_id: Optional[str] = None,
) -> SnapshotDraft:
    if client is None:
        return fallback_snapshot(history)

    prompt = "\n".join([
        "Conversation context:",
        format_conversation_context(history),
        "",
        "Latest previous snapshot:",
        format_snapshot_context(previous),
        "",
        "Generate the updated purpose snapshot now.",
    ])
    try:
        completion = await client.complete(
            SNAPSHOT_SYSTEM_PROMPT, prompt, model=model, temperature=0.5, json_mode=True, request_id=request_id
        )
    except Exception as e:
        log_event(logger, "snapshot_generation_failed", logging.WARNING, requestId=request_id, model=model, error=str(e))
        return fallback_snapshot(history)

    parsed = parse_snapshot(completion.text or "")
    if parsed is None:
        log_event(logger, "snapshot_unparseable", logging.WARNING, requestId=request_id, model=model)
        return fallback_snapshot(history)
    return parsed
