import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from soulaware.config import EngineSettings
from soulaware.logs import log_event
from soulaware.models import (
    OPEN_LOOP_MAX_CHARS,
    OPEN_LOOPS_MAX,
    USER_FACT_MAX_CHARS,
    USER_FACTS_MAX,
    PurposeSnapshot,
    Usage,
    clip,
)
from soulaware.providers.base import CompletionClient
from .drafting import extract_json
from .profile import SessionProfile
from .usage import usage_or_estimate

logger = logging.getLogger("soulaware.engine")

SUMMARY_SYSTEM_PROMPT = " ".join([
    "Summarize coaching memory for continuity.",
    "Return strict JSON with keys rollingSummary, userFacts, openLoops.",
    "rollingSummary must be <= 80 words.",
    "userFacts must be 3-8 concise stable facts.",
    "openLoops must be 1-6 unresolved decisions/tasks.",
])

USER_TURN_CLIP_CHARS = 260


@dataclass
class MemoryUpdate:
    rolling_summary: str
    user_facts: List[str] = field(default_factory=list)
    open_loops: List[str] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    from_model: bool = False

    def as_patch(self) -> Dict[str, Any]:
        return {
            "rolling_summary": self.rolling_summary,
            "user_facts": list(self.user_facts),
            "open_loops": list(self.open_loops),
        }


def should_update_summary(profile: SessionProfile, settings: Optional[EngineSettings] = None) -> bool:
    settings = settings or EngineSettings()
    turns = profile.user_turn_count
    if turns <= 0:
        return False
    return turns % settings.summary_every_n_turns == 0 or profile.aggregate_char_count >= settings.summary_char_threshold


def build_summary_input(
    profile: SessionProfile,
    current_summary: str,
    current_facts: Sequence[str],
    current_loops: Sequence[str],
    snapshot: Optional[PurposeSnapshot],
) -> str:
    user_context = "\n".join(
        f"U{i + 1}: {clip(m, USER_TURN_CLIP_CHARS)}" for i, m in enumerate(profile.recent_user_messages)
    )
    snapshot_line = f"{snapshot.mission}; {', '.join(snapshot.values)}" if snapshot else "none"
    return "\n\n".join([
        f"Current rolling summary: {current_summary or 'none'}",
        f"Current facts: {' | '.join(current_facts) or 'none'}",
        f"Current open loops: {' | '.join(current_loops) or 'none'}",
        f"Recent user messages:\n{user_context or 'none'}",
        f"Latest snapshot: {snapshot_line}",
    ])


def _string_list(value: Any, fallback: Sequence[str], max_items: int, max_chars: int) -> List[str]:
    """Clean model strings; an empty or missing list keeps `fallback`."""
    items = value if isinstance(value, list) else []
    out = [clip(v.strip(), max_chars) for v in items if isinstance(v, str) and v.strip()]
    if not out:
        out = [clip(v, max_chars) for v in fallback]
    return out[:max_items]


def heuristic_memory(
    profile: SessionProfile,
    current_summary: str,
    current_facts: Sequence[str],
    current_loops: Sequence[str],
) -> MemoryUpdate:
    """Deterministic summary built from keywords, tone and stage."""
    keywords = list(dict.fromkeys(profile.keywords))
    facts = [f"User repeatedly referenced {kw}." for kw in keywords[:5]]
    if profile.recent_user_messages or profile.user_turn_count > 0:
        focus = ", ".join(keywords[:3]) or "core direction"
        summary = f"User is currently focused on {focus}, with a {profile.tone} tone in the {profile.stage} stage."
    else:
        summary = current_summary
    loops = list(current_loops) or [
        f"Clarify the next concrete step on {keywords[0] if keywords else 'current goal'}."
    ]
    facts = facts or list(current_facts) or ["User is exploring their current direction."]
    return MemoryUpdate(
        rolling_summary=summary,
        user_facts=facts[:USER_FACTS_MAX],
        open_loops=loops[:OPEN_LOOPS_MAX],
    )


async def summarize_session_state(
    client: Optional[CompletionClient],
    model: str,
    profile: SessionProfile,
    current_summary: str = "",
    current_facts: Sequence[str] = (),
    current_loops: Sequence[str] = (),
    snapshot: Optional[PurposeSnapshot] = None,
    settings: Optional[EngineSettings] = None,
    request_id: Optional[str] = None,
) -> MemoryUpdate:
    """Compress the conversation into rolling memory. Never raises.

    Uses the model when a client is available and its output parses; otherwise
    the heuristic summary.
    """
    settings = settings or EngineSettings()
    prompt = build_summary_input(profile, current_summary, current_facts, current_loops, snapshot)

    if client is not None:
        try:
            completion = await client.complete(
                SUMMARY_SYSTEM_PROMPT,
                prompt,
                model=model,
                temperature=settings.summary_temperature,
                json_mode=True,
                request_id=request_id,
            )
            raw = completion.text or ""
            parsed = extract_json(raw)
            if parsed:
                summary = parsed.get("rollingSummary")
                summary = summary.strip() if isinstance(summary, str) else ""
                heuristic = heuristic_memory(profile, current_summary, current_facts, current_loops)
                return MemoryUpdate(
                    rolling_summary=summary or current_summary,
                    user_facts=_string_list(parsed.get("userFacts"), list(current_facts) or heuristic.user_facts,
                                            USER_FACTS_MAX, USER_FACT_MAX_CHARS),
                    open_loops=_string_list(parsed.get("openLoops"), heuristic.open_loops,
                                            OPEN_LOOPS_MAX, OPEN_LOOP_MAX_CHARS),
                    usage=usage_or_estimate(completion.usage, SUMMARY_SYSTEM_PROMPT + "\n" + prompt, raw),
                    from_model=True,
                )
            log_event(logger, "summary_parse_failed", logging.WARNING, requestId=request_id, model=model)
        except Exception as e:
            log_event(logger, "summary_failed", logging.WARNING, requestId=request_id, model=model, error=str(e))

    return heuristic_memory(profile, current_summary, current_facts, current_loops)
