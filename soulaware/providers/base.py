from __future__ import annotations

import abc
from typing import Any, Dict, Optional

from soulaware.models import Completion


class ProviderError(RuntimeError):
    """Transport, HTTP status or response-shape failure from a model provider."""


class CompletionClient(abc.ABC):
    """Abstract structured-completion client.

    One instance is built per process and shared; implementations must not keep
    per-request state on the instance.
    """

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        model: Optional[str] = None,
        temperature: float = 0.7,
        json_mode: bool = True,
        request_id: Optional[str] = None,
    ) -> Completion:
        ...


class ModerationClient(abc.ABC):
    """Content moderation interface used by the safety filter."""

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def moderate(self, text: str, request_id: Optional[str] = None) -> Dict[str, Any]:
        """Return {"flagged": bool, "categories": {name: bool}}."""
        ...
