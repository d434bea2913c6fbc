"""Single-call coaching reply used by the v1 engine."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from soulaware.logs import log_event
from soulaware.models import ConversationTurn, PurposeSnapshot, Usage
from soulaware.providers.base import CompletionClient
from .drafting import extract_json
from .usage import estimate_cost_usd, usage_or_estimate

logger = logging.getLogger("soulaware.engine")

CLASSIC_SYSTEM_PROMPT = " ".join([
    "You are Soulaware, an AI life guidance coach.",
    "You are not a licensed therapist and must avoid clinical diagnosis claims.",
    "Respond with practical, compassionate coaching for adults.",
    "Output strict JSON only with keys: reflection, actionStep, deeperQuestion.",
    "Each field must be one to two sentences and under 70 words.",
])

CONTEXT_TURNS = 12


@dataclass
class ClassicReply:
    reflection: str
    action_step: str
    deeper_question: str

    def render(self) -> str:
        return "\n\n".join([
            f"Reflection: {self.reflection}",
            f"Action step: {self.action_step}",
            f"Deeper question: {self.deeper_question}",
        ])


@dataclass
class ClassicResult:
    reply: ClassicReply
    model_used: str
    usage: Usage
    estimated_cost_usd: float = 0.0
    fallback: bool = False


def format_conversation_context(history: Sequence[ConversationTurn], limit: int = CONTEXT_TURNS) -> str:
    return "\n".join(f"{t.role.upper()}: {t.content}" for t in list(history)[-limit:])


def format_snapshot_context(snapshot: Optional[PurposeSnapshot]) -> str:
    if not snapshot:
        return "No previous purpose snapshot available."
    return "\n".join([
        f"Mission: {snapshot.mission}",
        f"Values: {', '.join(snapshot.values)}",
        f"Next actions: {' | '.join(snapshot.next_actions)}",
    ])


def fallback_classic_reply(text: str) -> ClassicReply:
    return ClassicReply(
        reflection="You are taking a meaningful step by putting this into words. "
                   "That usually signals clarity is already starting.",
        action_step="Take 15 minutes today to write: what you want more of, what you want less of, "
                    f"and one next action connected to \"{(text or '')[:60]}\".",
        deeper_question="If you trusted yourself 10% more this week, what decision would you make first?",
    )


def parse_classic_reply(raw: str) -> Optional[ClassicReply]:
    data = extract_json(raw)
    if not data:
        return None
    fields = []
    for key in ("reflection", "actionStep", "deeperQuestion"):
        value = data.get(key)
        fields.append(value.strip() if isinstance(value, str) else "")
    if not all(fields):
        return None
    return ClassicReply(*fields)


async def generate_classic_reply(
    client: Optional[CompletionClient],
    model: str,
    text: str,
    history: Sequence[ConversationTurn],
    snapshot: Optional[PurposeSnapshot] = None,
    request_id: Optional[str] = None,
) -> ClassicResult:
    if client is None:
        return ClassicResult(fallback_classic_reply(text), model, Usage(), fallback=True)

    prompt = "\n".join([
        "Context from the latest conversation:",
        format_conversation_context(history),
        "",
        "Latest purpose snapshot:",
        format_snapshot_context(snapshot),
        "",
        f"Current user message: {text}",
    ])
    try:
        completion = await client.complete(
            CLASSIC_SYSTEM_PROMPT, prompt, model=model, temperature=0.6, json_mode=True, request_id=request_id
        )
    except Exception as e:
        log_event(logger, "classic_reply_failed", logging.WARNING, requestId=request_id, model=model, error=str(e))
        return ClassicResult(fallback_classic_reply(text), model, Usage(), fallback=True)

    raw = completion.text or ""
    usage = usage_or_estimate(completion.usage, CLASSIC_SYSTEM_PROMPT + "\n" + prompt, raw)
    cost = estimate_cost_usd(model, usage)
    parsed = parse_classic_reply(raw)
    if parsed is None:
        log_event(logger, "classic_reply_unparseable", logging.WARNING, requestId=request_id, model=model)
        return ClassicResult(fallback_classic_reply(text), model, usage, cost, fallback=True)
    return ClassicResult(parsed, model, usage, cost)
