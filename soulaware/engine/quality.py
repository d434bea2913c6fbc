import re
from typing import Optional, Sequence

from soulaware.config import EngineSettings
from soulaware.models import CoachDraft
from .drafting import QUESTION_OPENERS, REFLECTION_OPENERS, STEP_OPENERS
from .text import lexical_overlap_score, normalize_for_compare

GENERIC_PATTERNS = (
    re.compile(r"what would progress look like", re.I),
    re.compile(r"trusted yourself", re.I),
    re.compile(r"meaningful step", re.I),
    re.compile(r"clarity is already starting", re.I),
)

_LABELS = ("Reflection:", "Action step:", "Deeper question:", "Follow-up question:")
_LABEL_RE = re.compile(
    "|".join(re.escape(p) for p in sorted(_LABELS + REFLECTION_OPENERS + STEP_OPENERS + QUESTION_OPENERS, key=len, reverse=True)),
    re.I,
)


def flatten_draft(draft: CoachDraft) -> str:
    return " ".join([draft.reflection, draft.action_step, draft.follow_up_question])


def strip_section_labels(text: str) -> str:
    return _LABEL_RE.sub(" ", text or "")


def comparable(text: str) -> str:
    return normalize_for_compare(strip_section_labels(text))


def is_low_quality_reply(
    candidate: str,
    previous_replies: Sequence[str],
    settings: Optional[EngineSettings] = None,
) -> bool:
    """Novelty gate: generic phrasing, an exact repeat or heavy word overlap fails.

    `previous_replies` are recent coach-mode assistant turns, newest last; only
    the last `gate_history` of them are considered.
    """
    settings = settings or EngineSettings()
    if any(p.search(candidate or "") for p in GENERIC_PATTERNS):
        return True

    window = list(previous_replies)[-settings.gate_history:] if settings.gate_history > 0 else []
    normalized = comparable(candidate)
    for prior in window:
        prior_norm = comparable(prior)
        if not prior_norm:
            continue
        if normalized == prior_norm:
            return True
        score = lexical_overlap_score(normalized, prior_norm, settings.overlap_min_word_len)
        if score >= settings.overlap_threshold:
            return True
    return False
