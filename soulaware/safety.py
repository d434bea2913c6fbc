"""Self-harm pre-filter: rule patterns first, then provider moderation."""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from soulaware.logs import log_event
from soulaware.models import SafetyLevel
from soulaware.providers.base import ModerationClient

logger = logging.getLogger("soulaware.chat")

HIGH_RISK_PATTERNS = tuple(re.compile(p, re.I) for p in (
    r"\bkill myself\b",
    r"\bend my life\b",
    r"\bsuicide\b",
    r"\bi want to die\b",
    r"\bhurt someone\b",
    r"\bself harm\b",
    r"\boverdose\b",
    r"\bno reason to live\b",
))

ELEVATED_PATTERNS = tuple(re.compile(p, re.I) for p in (
    r"\bhopeless\b",
    r"\bcan'?t go on\b",
    r"\bpanic attack\b",
    r"\bworthless\b",
))

SELF_HARM_CATEGORIES = ("self-harm", "self-harm/intent", "self-harm/instructions")

SAFETY_RESPONSE = "\n".join([
    "I’m really glad you reached out. Your safety matters most right now.",
    "I can’t provide crisis support, but I strongly encourage you to connect with immediate help:",
    "- Call or text **988** (Suicide & Crisis Lifeline, US, 24/7)",
    "- If you may act on these thoughts or are in immediate danger, call **911** now",
    "- If possible, contact a trusted person who can stay with you right now",
])


@dataclass(frozen=True)
class SafetyResult:
    level: SafetyLevel
    is_triggered: bool
    reason: str


def evaluate_rules(text: str) -> SafetyResult:
    if any(p.search(text or "") for p in HIGH_RISK_PATTERNS):
        return SafetyResult("high", True, "rule_high_risk")
    if any(p.search(text or "") for p in ELEVATED_PATTERNS):
        return SafetyResult("elevated", False, "rule_elevated")
    return SafetyResult("none", False, "rule_clear")


async def evaluate_moderation(
    client: Optional[ModerationClient], text: str, request_id: Optional[str] = None
) -> SafetyResult:
    if client is None:
        return SafetyResult("none", False, "moderation_skipped")
    try:
        result = await client.moderate(text, request_id=request_id)
    except Exception as e:
        log_event(logger, "moderation_failed", logging.WARNING, requestId=request_id, error=str(e))
        return SafetyResult("none", False, "moderation_failed")

    categories = result.get("categories") or {}
    if any(categories.get(c) for c in SELF_HARM_CATEGORIES):
        return SafetyResult("high", True, "moderation_self_harm")
    if result.get("flagged"):
        return SafetyResult("elevated", False, "moderation_flagged")
    return SafetyResult("none", False, "moderation_clear")


async def evaluate_safety(
    text: str, client: Optional[ModerationClient] = None, request_id: Optional[str] = None
) -> SafetyResult:
    """Triggered results bypass the reply engine; elevated ones are only logged."""
    rules = evaluate_rules(text)
    if rules.is_triggered:
        return rules
    moderation = await evaluate_moderation(client, text, request_id)
    if moderation.is_triggered:
        return moderation
    reason = f"{rules.reason}+{moderation.reason}"
    if "elevated" in (rules.level, moderation.level):
        log_event(logger, "safety_elevated", logging.INFO, requestId=request_id, reason=reason)
        return SafetyResult("elevated", False, reason)
    return SafetyResult("none", False, reason)
