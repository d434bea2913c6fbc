import logging
from typing import Optional

from soulaware.config import env_str
from soulaware.logs import log_event
from .base import CompletionClient, ModerationClient
from .mock import MockCompletionClient, MockModerationClient

logger = logging.getLogger("soulaware.providers")

_DISABLED = ("none", "off", "disabled", "0")


def get_completion_client(provider: Optional[str] = None, model: Optional[str] = None) -> Optional[CompletionClient]:
    """Return a completion client based on env or explicit overrides.

    Env precedence:
      - AI_PROVIDER_CHAT
      - AI_PROVIDER
      - defaults to 'mock'
    Returns None when the provider is disabled or its credentials are missing;
    callers then take the deterministic fallback path.
    """
    prov = (provider or env_str("AI_PROVIDER_CHAT") or env_str("AI_PROVIDER") or "mock").lower()
    mdl = model or env_str("AI_CHAT_MODEL") or None

    if prov in _DISABLED:
        return None

    if prov in ("mock", "test"):
        return MockCompletionClient(model=mdl)

    try:
        if prov in ("openai",):
            from .openai_compat import OpenAICompletionClient
            return OpenAICompletionClient(model=mdl)
        if prov in ("openrouter", "router"):
            from .openai_compat import OpenRouterCompletionClient
            return OpenRouterCompletionClient(model=mdl)
        if prov in ("google", "gemini"):
            from .google import GoogleCompletionClient
            return GoogleCompletionClient(model=mdl)
    except Exception as e:
        log_event(logger, "completion_client_unavailable", logging.WARNING, provider=prov, error=str(e))
        return None

    # Unknown -> mock
    return MockCompletionClient(model=mdl)


def get_moderation_client(provider: Optional[str] = None) -> Optional[ModerationClient]:
    prov = (provider or env_str("AI_PROVIDER_MODERATION") or env_str("AI_PROVIDER") or "mock").lower()

    if prov in _DISABLED:
        return None

    if prov in ("mock", "test"):
        return MockModerationClient()

    if prov in ("openai",):
        try:
            from .openai_compat import OpenAIModerationClient
            return OpenAIModerationClient()
        except Exception as e:
            log_event(logger, "moderation_client_unavailable", logging.WARNING, provider=prov, error=str(e))
            return None

    # Providers without a moderation endpoint rely on the rule-based filter only
    return None
