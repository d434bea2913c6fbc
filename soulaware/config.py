import os
from dataclasses import dataclass
from typing import Optional

# Load environment variables from .env if available, but avoid during pytest to keep tests deterministic
from dotenv import load_dotenv

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()


def env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def env_bool(name: str, default: bool) -> bool:
    try:
        v = os.getenv(name, "1" if default else "0").strip().lower()
        return v in ("1", "true", "yes", "on")
    except Exception:
        return default


@dataclass(frozen=True)
class ModelTiers:
    fast: str
    primary: str
    summary: str
    classic: str


def load_model_tiers() -> ModelTiers:
    return ModelTiers(
        fast=env_str("AI_CHAT_MODEL_FAST") or "gpt-4.1-mini",
        primary=env_str("AI_CHAT_MODEL_PRIMARY") or "gpt-4.1",
        summary=env_str("AI_SUMMARY_MODEL") or "gpt-4.1-mini",
        classic=env_str("AI_CHAT_MODEL") or "gpt-4.1-mini",
    )


@dataclass(frozen=True)
class EngineSettings:
    """Tunable heuristics for the adaptive reply engine.

    Every threshold here is empirical; they live in one place so they can be
    adjusted per deployment without touching the pipeline.
    """

    # Low-information detection
    low_info_max_tokens: int = 3
    low_info_stopword_window: int = 8
    low_info_stopword_ratio: float = 0.68
    low_info_verb_window: int = 6

    # Quality gate
    overlap_threshold: float = 0.70
    overlap_min_word_len: int = 4
    gate_history: int = 3

    # Model routing
    primary_score_threshold: int = 4
    long_input_tokens: int = 35
    context_char_threshold: int = 3200

    # Memory summarization cadence
    summary_every_n_turns: int = 4
    summary_char_threshold: int = 5000

    # Profiling windows
    profile_user_turns: int = 8
    profile_assistant_turns: int = 4
    history_window: int = 24

    # Sampling
    draft_temperature: float = 0.82
    retry_temperature: float = 0.95
    summary_temperature: float = 0.3


def load_engine_settings() -> EngineSettings:
    d = EngineSettings()
    return EngineSettings(
        low_info_max_tokens=env_int("ENGINE_LOW_INFO_MAX_TOKENS", d.low_info_max_tokens),
        low_info_stopword_window=env_int("ENGINE_LOW_INFO_STOPWORD_WINDOW", d.low_info_stopword_window),
        low_info_stopword_ratio=env_float("ENGINE_LOW_INFO_STOPWORD_RATIO", d.low_info_stopword_ratio),
        low_info_verb_window=env_int("ENGINE_LOW_INFO_VERB_WINDOW", d.low_info_verb_window),
        overlap_threshold=env_float("ENGINE_OVERLAP_THRESHOLD", d.overlap_threshold),
        overlap_min_word_len=env_int("ENGINE_OVERLAP_MIN_WORD_LEN", d.overlap_min_word_len),
        gate_history=env_int("ENGINE_GATE_HISTORY", d.gate_history),
        primary_score_threshold=env_int("ENGINE_PRIMARY_SCORE_THRESHOLD", d.primary_score_threshold),
        long_input_tokens=env_int("ENGINE_LONG_INPUT_TOKENS", d.long_input_tokens),
        context_char_threshold=env_int("ENGINE_CONTEXT_CHAR_THRESHOLD", d.context_char_threshold),
        summary_every_n_turns=max(1, env_int("ENGINE_SUMMARY_EVERY_N_TURNS", d.summary_every_n_turns)),
        summary_char_threshold=env_int("ENGINE_SUMMARY_CHAR_THRESHOLD", d.summary_char_threshold),
        profile_user_turns=env_int("ENGINE_PROFILE_USER_TURNS", d.profile_user_turns),
        profile_assistant_turns=env_int("ENGINE_PROFILE_ASSISTANT_TURNS", d.profile_assistant_turns),
        history_window=env_int("ENGINE_HISTORY_WINDOW", d.history_window),
        draft_temperature=env_float("ENGINE_DRAFT_TEMPERATURE", d.draft_temperature),
        retry_temperature=env_float("ENGINE_RETRY_TEMPERATURE", d.retry_temperature),
        summary_temperature=env_float("ENGINE_SUMMARY_TEMPERATURE", d.summary_temperature),
    )


# Rollout
def chat_engine() -> str:
    return (env_str("CHAT_ENGINE") or "v1").lower()


def chat_v2_percent() -> int:
    return env_int("CHAT_V2_PERCENT", 10)


# Request limits
CHAT_MAX_MESSAGE_CHARS = env_int("CHAT_MAX_MESSAGE_CHARS", 1200)
CHAT_MAX_LINKS = env_int("CHAT_MAX_LINKS", 2)
RATE_LIMIT_PER_MINUTE = env_int("RATE_LIMIT_PER_MINUTE", 12)
RATE_LIMIT_WINDOW_SECONDS = env_int("RATE_LIMIT_WINDOW_SECONDS", 60)


# Cookies
def cookie_secure() -> bool:
    return env_bool("COOKIE_SECURE", env_str("ENV").lower() == "production")


# Ops
def cron_secret() -> Optional[str]:
    return env_str("CRON_SECRET") or None


def cost_alert_daily_usd() -> float:
    return max(0.0, env_float("COST_ALERT_DAILY_USD", 0.0))


def cost_alert_webhook_url() -> Optional[str]:
    return env_str("COST_ALERT_WEBHOOK_URL") or None
