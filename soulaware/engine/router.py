import re
from dataclasses import dataclass
from typing import Optional

from soulaware.config import EngineSettings, ModelTiers
from .profile import SessionProfile
from .text import tokenize

TRADEOFF_RE = re.compile(r"between|tradeoff|multiple|options|conflict")


@dataclass(frozen=True)
class ModelRoute:
    tier: str
    model: str
    score: int


def complexity_score(profile: SessionProfile, text: str, settings: Optional[EngineSettings] = None) -> int:
    settings = settings or EngineSettings()
    score = 0
    if len(tokenize(text)) >= settings.long_input_tokens:
        score += 2
    if profile.stage in ("planning", "accountability"):
        score += 1
    if profile.dominant_intent in ("decision", "purpose"):
        score += 2
    if profile.tone in ("stressed", "uncertain"):
        score += 1
    if TRADEOFF_RE.search((text or "").lower()):
        score += 2
    if profile.aggregate_char_count >= settings.context_char_threshold:
        score += 1
    return score


def select_model(
    profile: SessionProfile,
    text: str,
    tiers: ModelTiers,
    settings: Optional[EngineSettings] = None,
) -> ModelRoute:
    """Reserve the primary tier for long, loaded or decision-heavy turns."""
    settings = settings or EngineSettings()
    score = complexity_score(profile, text, settings)
    if score >= settings.primary_score_threshold:
        return ModelRoute(tier="primary", model=tiers.primary, score=score)
    return ModelRoute(tier="fast", model=tiers.fast, score=score)
