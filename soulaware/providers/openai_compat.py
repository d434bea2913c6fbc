import os
import json
import logging
from typing import Any, Dict, Optional

import httpx

from soulaware.models import Completion, Usage
from .base import CompletionClient, ModerationClient, ProviderError


def _timeout_seconds(*names: str) -> float:
    for name in names:
        raw = os.getenv(name)
        if raw:
            try:
                return float(raw)
            except Exception:
                continue
    return 30.0


def _usage_from_openai(data: Dict[str, Any]) -> Optional[Usage]:
    usage = (data or {}).get("usage")
    if not isinstance(usage, dict):
        return None
    try:
        return Usage(
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
        )
    except Exception:
        return None


class OpenAICompletionClient(CompletionClient):
    """Chat-completions client for any OpenAI-compatible endpoint."""

    provider_name: str = "openai"
    api_key_env: str = "OPENAI_API_KEY"
    default_base_url: str = "https://api.openai.com/v1"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_CHAT_MODEL") or "gpt-4.1-mini")
        api_key = os.getenv(self.api_key_env, "").strip()
        if not api_key:
            raise RuntimeError(f"{self.api_key_env} is required for {self.provider_name} provider")
        self._api_key = api_key
        self._base_url = (os.getenv("OPENAI_BASE_URL", "").strip() or self.default_base_url).rstrip("/")
        self._timeout = _timeout_seconds("OPENAI_TIMEOUT_SECONDS", "AI_HTTP_TIMEOUT_SECONDS")

    def _headers(self, request_id: Optional[str]) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "User-Agent": "soulaware/0.1.0",
        }
        if request_id:
            headers["X-Request-Id"] = request_id
        return headers

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
        mdl = model or self.model
        payload: Dict[str, Any] = {
            "model": mdl,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        url = f"{self._base_url}/chat/completions"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, headers=self._headers(request_id), json=payload)
                if resp.status_code >= 400:
                    try:
                        logging.getLogger("soulaware.providers").error(json.dumps({
                            "event": "completion_http_error",
                            "provider": self.provider_name,
                            "status": resp.status_code,
                            "body": (resp.text or "")[:1024],
                            "model": mdl,
                        }))
                    except Exception:
                        pass
                    raise ProviderError(f"{self.provider_name} completion error {resp.status_code}")
                data = resp.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.provider_name} transport error: {type(e).__name__}") from e

        try:
            msg = (((data or {}).get("choices") or [{}])[0].get("message") or {})
            content_text = msg.get("content") or ""
        except Exception as e:
            raise ProviderError(f"{self.provider_name} malformed response") from e
        return Completion(text=str(content_text), usage=_usage_from_openai(data), model=mdl)


class OpenRouterCompletionClient(OpenAICompletionClient):
    provider_name: str = "openrouter"
    api_key_env: str = "OPENROUTER_API_KEY"
    default_base_url: str = "https://openrouter.ai/api/v1"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model)
        if not os.getenv("OPENAI_BASE_URL", "").strip():
            self._base_url = self.default_base_url
        self._timeout = _timeout_seconds("OPENROUTER_TIMEOUT_SECONDS", "AI_HTTP_TIMEOUT_SECONDS")
        # Origin metadata (optional but recommended by OpenRouter)
        self._referer = os.getenv("PUBLIC_APP_ORIGIN", "http://localhost:3000").strip() or "http://localhost:3000"
        self._title = os.getenv("OPENROUTER_APP_TITLE", "Soulaware").strip() or "Soulaware"

    def _headers(self, request_id: Optional[str]) -> Dict[str, str]:
        headers = super()._headers(request_id)
        headers["HTTP-Referer"] = self._referer
        headers["X-Title"] = self._title
        return headers


class OpenAIModerationClient(ModerationClient):
    provider_name: str = "openai"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "omni-moderation-latest")
        api_key = os.getenv("OPENAI_API_KEY", "").strip()
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is required for openai moderation")
        self._api_key = api_key
        self._base_url = (os.getenv("OPENAI_BASE_URL", "").strip() or "https://api.openai.com/v1").rstrip("/")
        self._timeout = _timeout_seconds("OPENAI_TIMEOUT_SECONDS", "AI_HTTP_TIMEOUT_SECONDS")

    async def moderate(self, text: str, request_id: Optional[str] = None) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if request_id:
            headers["X-Request-Id"] = request_id
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    f"{self._base_url}/moderations",
                    headers=headers,
                    json={"model": self.model, "input": text},
                )
                if resp.status_code >= 400:
                    raise ProviderError(f"openai moderation error {resp.status_code}")
                data = resp.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"openai moderation transport error: {type(e).__name__}") from e
        result = ((data or {}).get("results") or [{}])[0] or {}
        return {
            "flagged": bool(result.get("flagged")),
            "categories": dict(result.get("categories") or {}),
        }
