from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

ChatRole = Literal["user", "assistant"]
PromptMode = Literal["coach", "safety"]
SafetyLevel = Literal["none", "elevated", "high"]
ResponseKind = Literal["clarify", "coach", "safety"]
CoachingLens = Literal["clarify", "blocker", "values", "experiment", "decision", "accountability"]

LENSES: tuple = ("clarify", "blocker", "values", "experiment", "decision", "accountability")

ROLLING_SUMMARY_MAX_WORDS = 80
USER_FACTS_MAX = 8
USER_FACT_MAX_CHARS = 120
OPEN_LOOPS_MAX = 6
OPEN_LOOP_MAX_CHARS = 130

SESSION_STATE_FIELDS = (
    "rolling_summary",
    "user_facts",
    "open_loops",
    "pending_clarifier",
    "clarifier_topic",
    "last_lens",
    "last_model",
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def clip(text: str, max_chars: int) -> str:
    """Trim to at most `max_chars` characters, marking the cut with an ellipsis."""
    if len(text) <= max_chars:
        return text
    if max_chars <= 3:
        return text[:max_chars]
    return text[: max_chars - 3].rstrip() + "..."


def clip_words(text: str, max_words: int) -> str:
    words = (text or "").split()
    if len(words) <= max_words:
        return " ".join(words)
    return " ".join(words[:max_words])


def _bounded_list(items: Any, max_items: int, max_chars: int) -> List[str]:
    out: List[str] = []
    if not isinstance(items, (list, tuple)):
        return out
    for it in items:
        if not isinstance(it, str):
            continue
        s = clip(it.strip(), max_chars)
        if s:
            out.append(s)
        if len(out) >= max_items:
            break
    return out


@dataclass(frozen=True)
class ConversationTurn:
    id: str
    session_id: str
    role: ChatRole
    content: str
    mode: PromptMode
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at,
            "mode": self.mode,
        }


@dataclass
class GuestSession:
    id: str
    guest_id: str
    created_at: str
    updated_at: str


@dataclass
class SessionState:
    session_id: str
    rolling_summary: str = ""
    user_facts: List[str] = field(default_factory=list)
    open_loops: List[str] = field(default_factory=list)
    pending_clarifier: bool = False
    clarifier_topic: str = ""
    last_lens: str = ""
    last_model: str = ""
    updated_at: str = field(default_factory=utc_now_iso)

    def apply_patch(self, patch: Dict[str, Any]) -> "SessionState":
        """Return a copy with `patch` merged in, clamped to the state bounds.

        Unknown keys are ignored; missing keys keep their current value.
        """
        updates: Dict[str, Any] = {}
        for key in SESSION_STATE_FIELDS:
            if key in patch:
                updates[key] = patch[key]
        if "rolling_summary" in updates:
            updates["rolling_summary"] = clip_words(str(updates["rolling_summary"] or ""), ROLLING_SUMMARY_MAX_WORDS)
        if "user_facts" in updates:
            updates["user_facts"] = _bounded_list(updates["user_facts"], USER_FACTS_MAX, USER_FACT_MAX_CHARS)
        if "open_loops" in updates:
            updates["open_loops"] = _bounded_list(updates["open_loops"], OPEN_LOOPS_MAX, OPEN_LOOP_MAX_CHARS)
        if "pending_clarifier" in updates:
            updates["pending_clarifier"] = bool(updates["pending_clarifier"])
        for key in ("clarifier_topic", "last_lens", "last_model"):
            if key in updates:
                updates[key] = str(updates[key] or "")
        if "last_lens" in updates and updates["last_lens"] not in LENSES:
            updates["last_lens"] = ""
        updates["updated_at"] = utc_now_iso()
        return replace(self, **updates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "rollingSummary": self.rolling_summary,
            "userFacts": list(self.user_facts),
            "openLoops": list(self.open_loops),
            "pendingClarifier": self.pending_clarifier,
            "clarifierTopic": self.clarifier_topic,
            "lastLens": self.last_lens,
            "lastModel": self.last_model,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class PurposeSnapshot:
    id: str
    session_id: str
    mission: str
    values: List[str]
    next_actions: List[str]
    created_at: str

    def to_response(self) -> Dict[str, Any]:
        return {
            "snapshotId": self.id,
            "mission": self.mission,
            "values": list(self.values),
            "nextActions": list(self.next_actions),
        }


@dataclass(frozen=True)
class SafetyEvent:
    id: str
    guest_id: str
    session_id: str
    level: SafetyLevel
    trigger_text: str
    created_at: str


@dataclass(frozen=True)
class AnalyticsEvent:
    id: str
    guest_id: str
    event_name: str
    metadata: Dict[str, Any]
    created_at: str


@dataclass
class CoachDraft:
    reflection: str
    action_step: str
    follow_up_question: str

    def is_complete(self) -> bool:
        return bool(self.reflection.strip() and self.action_step.strip() and self.follow_up_question.strip())


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


@dataclass(frozen=True)
class Completion:
    """Raw text returned by a provider plus its usage metadata, when reported."""

    text: str
    usage: Optional[Usage] = None
    model: Optional[str] = None
