"""Offline reply composer used when no model draft can be accepted."""

from typing import Dict, Optional, Sequence, Tuple

from soulaware.config import EngineSettings
from soulaware.models import CoachDraft, clip
from .detectors import TOPIC_MAX_CHARS, pick_topic
from .drafting import FIELD_MAX_CHARS, QUESTION_REPLACEMENTS
from .profile import SessionProfile
from .quality import flatten_draft, is_low_quality_reply
from .text import seeded_index

REFLECTIONS_BY_TONE: Dict[str, Tuple[str, ...]] = {
    "stressed": (
        "there is a lot of pressure sitting around {kw}, and naming it is the first way to take some of it back.",
        "the load around {kw} sounds heavy, so the goal for this turn is one small thing that lowers it.",
        "when {kw} feels this intense, narrowing to one controllable piece matters more than solving all of it.",
    ),
    "uncertain": (
        "{kw} still feels unsettled, which usually means one key question has not been answered yet.",
        "you are circling {kw} without a firm footing, so a small test will teach you more than more thinking.",
        "the uncertainty around {kw} is information about what you still need to find out.",
    ),
    "motivated": (
        "you have real energy behind {kw}, and the best use of it is a commitment you can keep this week.",
        "your momentum on {kw} is worth protecting with a clear, measurable next move.",
        "{kw} has your attention right now, so turning that drive into a concrete plan is the priority.",
    ),
    "neutral": (
        "your focus on {kw} is the right anchor for this turn.",
        "{kw} keeps coming up, which makes it the clearest place to start.",
        "it helps to treat {kw} as the one thread worth pulling on today.",
    ),
}

ACTIONS_BY_LENS: Dict[str, Tuple[str, ...]] = {
    "clarify": (
        "Write one sentence defining what success on {kw} means by next week, then remove one distraction that does not support it.",
        "List what you already know about {kw} and circle the single unknown that blocks your next move.",
    ),
    "blocker": (
        "Identify the single largest blocker on {kw} and shrink it into a 20-minute task you can complete today.",
        "Name the friction point that stalls {kw} most often and remove or reroute it before tomorrow.",
    ),
    "values": (
        "List your top three values and pick the option on {kw} that best matches them, even if it is less comfortable.",
        "Rank two paths on {kw} against the value you least want to compromise, then choose the higher one.",
    ),
    "experiment": (
        "Run a 48-hour experiment on {kw} with one measurable metric so you can learn quickly.",
        "Try one small version of {kw} before Friday and note what worked and what did not.",
    ),
    "decision": (
        "Define three criteria for this {kw} decision, score each option, and commit to one next move.",
        "Set a decision deadline for {kw} and write down what would have to be true to choose each option.",
    ),
    "accountability": (
        "Set a 7-day commitment for {kw}, include one measurable milestone, and schedule a check-in.",
        "Tell one person your next step on {kw} and the date you will report back to them.",
    ),
}

FALLBACK_QUESTION = "What is the first concrete move on {kw} you can complete in the next 24 hours?"

MAX_RESEEDS = 6


def _variant(options: Sequence[str], seed: str, offset: int) -> str:
    return options[(seeded_index(seed, len(options)) + offset) % len(options)]


def _questions_for(intent: str) -> Tuple[str, ...]:
    return (FALLBACK_QUESTION,) + (QUESTION_REPLACEMENTS.get(intent) or QUESTION_REPLACEMENTS["general"])


def compose_fallback_draft(profile: SessionProfile, lens: str, text: str, offset: int = 0) -> CoachDraft:
    keyword = clip(profile.keywords[0] if profile.keywords else pick_topic(text, profile), TOPIC_MAX_CHARS)
    reflections = REFLECTIONS_BY_TONE.get(profile.tone) or REFLECTIONS_BY_TONE["neutral"]
    actions = ACTIONS_BY_LENS.get(lens) or ACTIONS_BY_LENS["clarify"]
    questions = _questions_for(profile.dominant_intent)

    reflection = _variant(reflections, f"{text}:reflection", offset).format(kw=keyword)
    return CoachDraft(
        reflection=clip(reflection, FIELD_MAX_CHARS),
        action_step=clip(_variant(actions, f"{text}:{lens}", offset).format(kw=keyword), FIELD_MAX_CHARS),
        follow_up_question=clip(_variant(questions, f"{text}:{profile.stage}", offset).format(kw=keyword), FIELD_MAX_CHARS),
    )


def deterministic_fallback(
    profile: SessionProfile,
    lens: str,
    text: str,
    previous_replies: Sequence[str] = (),
    settings: Optional[EngineSettings] = None,
) -> CoachDraft:
    """Compose a complete draft without any external call.

    Variants rotate together until one passes the quality gate against
    `previous_replies`; the first composition is returned when none does.
    """
    first = compose_fallback_draft(profile, lens, text)
    if not previous_replies:
        return first
    for offset in range(MAX_RESEEDS):
        draft = first if offset == 0 else compose_fallback_draft(profile, lens, text, offset)
        if not is_low_quality_reply(flatten_draft(draft), previous_replies, settings):
            return draft
    return first
