from typing import Dict, Optional, Tuple

from .profile import SessionProfile
from .text import seeded_index

LENS_BY_INTENT: Dict[str, Tuple[str, ...]] = {
    "decision": ("decision", "values", "experiment", "accountability"),
    "career": ("decision", "blocker", "experiment", "accountability"),
    "purpose": ("values", "clarify", "experiment", "decision"),
    "emotion": ("clarify", "blocker", "values", "accountability"),
    "habit": ("accountability", "experiment", "blocker", "decision"),
    "general": ("clarify", "experiment", "values", "decision"),
}


def lens_seed(text: str, previous_lens: Optional[str], profile: SessionProfile) -> str:
    return f"{text}:{previous_lens or ''}:{profile.stage}:{profile.dominant_intent}"


def choose_lens(profile: SessionProfile, previous_lens: Optional[str], seed: str) -> str:
    """Pick this turn's coaching lens.

    Opening turns always clarify. Otherwise the seed indexes the intent's
    candidate list, and a repeat of the previous non-clarify lens is swapped
    for the first candidate that differs from it.
    """
    if profile.stage == "opening":
        return "clarify"

    options = LENS_BY_INTENT.get(profile.dominant_intent) or LENS_BY_INTENT["general"]
    selected = options[seeded_index(seed, len(options))]

    if previous_lens and selected == previous_lens and selected != "clarify":
        for lens in options:
            if lens != previous_lens:
                return lens
    return selected
