import json
import re
from typing import Any, Dict, List, Optional

from soulaware.models import Completion, Usage
from .base import CompletionClient, ModerationClient


def _labelled_value(prompt: str, label: str) -> str:
    for line in reversed((prompt or "").splitlines()):
        if line.startswith(label):
            return line[len(label):].strip()
    return ""


def _focus_words(text: str, limit: int = 3) -> List[str]:
    seen: List[str] = []
    for w in re.findall(r"[a-z][a-z'-]{3,}", (text or "").lower()):
        if w not in seen:
            seen.append(w)
        if len(seen) >= limit:
            break
    return seen


class MockCompletionClient(CompletionClient):
    """Deterministic offline client.

    Picks the response shape from cues in the system instruction so every
    engine stage gets well-formed JSON without network access.
    """

    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "mock-chat-1")

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
        sys_text = system or ""
        message = _labelled_value(prompt, "Current user message:") or (prompt or "")[-200:]
        words = _focus_words(message) or ["this"]
        topic = words[0]

        obj: Dict[str, Any]
        if "rollingSummary" in sys_text:
            obj = {
                "rollingSummary": f"User is working through {', '.join(words)} and wants a clearer next step.",
                "userFacts": [f"User is focused on {w}." for w in words],
                "openLoops": [f"Decide the next concrete step on {topic}."],
            }
        elif "mission" in sys_text:
            obj = {
                "mission": f"Build a life that puts {topic} in service of what matters most.",
                "values": ["Growth", "Integrity", "Courage"],
                "nextActions": [f"Block 30 minutes this week for {topic}."],
            }
        else:
            variation = "a different angle" if "retry" in sys_text.lower() else "the current angle"
            obj = {
                "reflection": f"You keep returning to {topic}, which suggests it carries real weight right now ({variation}).",
                "actionStep": f"Write down the one part of {topic} you control and take a 20-minute step on it today.",
                "followUpQuestion": f"What would change this week if {topic} got your first hour of focus?",
                "deeperQuestion": f"What would change this week if {topic} got your first hour of focus?",
            }
        text = json.dumps(obj)
        usage = Usage(prompt_tokens=max(1, len(prompt or "") // 4), completion_tokens=max(1, len(text) // 4))
        return Completion(text=text, usage=usage, model=model or self.model)


class MockModerationClient(ModerationClient):
    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "mock-moderation-1")

    async def moderate(self, text: str, request_id: Optional[str] = None) -> Dict[str, Any]:
        return {"flagged": False, "categories": {}}
