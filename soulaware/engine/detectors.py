from typing import Dict, Optional

from soulaware.config import EngineSettings
from soulaware.models import clip
from .profile import SessionProfile
from .text import ACTION_VERBS, STOPWORDS, tokenize

DEFAULT_TOPIC = "this"
TOPIC_MAX_CHARS = 40

CLARIFIER_QUESTIONS: Dict[str, str] = {
    "decision": 'When you say "{topic}", what exact decision are you trying to make right now?',
    "career": 'For "{topic}", what outcome are you aiming for in your career over the next 30 days?',
    "purpose": 'For "{topic}", what feels most meaningful to you right now, and why?',
    "emotion": 'When "{topic}" shows up, what is happening in the moment and what feels hardest?',
    "habit": 'For "{topic}", what specific habit are you trying to start, stop, or stabilize?',
    "general": 'When you say "{topic}", what exactly do you want to change first?',
}


def is_low_information_input(text: str, settings: Optional[EngineSettings] = None) -> bool:
    """True when the input is too sparse to coach on and deserves a clarifying question."""
    settings = settings or EngineSettings()
    tokens = tokenize(text)
    if len(tokens) <= settings.low_info_max_tokens:
        return True

    stopword_ratio = sum(1 for t in tokens if t in STOPWORDS) / max(len(tokens), 1)
    if len(tokens) <= settings.low_info_stopword_window and stopword_ratio >= settings.low_info_stopword_ratio:
        return True

    has_action_verb = any(t in ACTION_VERBS for t in tokens)
    if len(tokens) <= settings.low_info_verb_window and not has_action_verb:
        return True

    return False


def pick_topic(text: str, profile: SessionProfile) -> str:
    if profile.keywords:
        return clip(profile.keywords[0], TOPIC_MAX_CHARS)
    tokens = tokenize(text)
    return clip(tokens[0], TOPIC_MAX_CHARS) if tokens else DEFAULT_TOPIC


def build_clarifier_question(topic: str, intent: str) -> str:
    template = CLARIFIER_QUESTIONS.get(intent) or CLARIFIER_QUESTIONS["general"]
    return template.format(topic=topic or DEFAULT_TOPIC)
