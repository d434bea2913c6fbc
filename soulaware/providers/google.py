import os
import json
import logging
from typing import Any, Dict, Optional

import httpx

from soulaware.models import Completion, Usage
from .base import CompletionClient, ProviderError


class GoogleCompletionClient(CompletionClient):
    provider_name: str = "google"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_CHAT_MODEL") or "gemini-1.5-flash")
        api_key = os.getenv("GOOGLE_API_KEY", "").strip()
        if not api_key:
            raise RuntimeError("GOOGLE_API_KEY is required for Google provider")
        self._api_key = api_key
        # HTTP timeout (seconds)
        try:
            self._timeout = float(os.getenv("GOOGLE_TIMEOUT_SECONDS") or os.getenv("AI_HTTP_TIMEOUT_SECONDS") or 30)
        except Exception:
            self._timeout = 30.0

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
        """Call Gemini generateContent.

        Endpoint: POST https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent
        """
        mdl = (model or self.model or "gemini-1.5-flash").strip()
        url = f"https://generativelanguage.googleapis.com/v1beta/models/{mdl}:generateContent"
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "soulaware/0.1.0",
        }
        if request_id:
            headers["X-Request-Id"] = request_id

        generation_config: Dict[str, Any] = {
            "temperature": temperature,
            "candidateCount": 1,
        }
        if json_mode:
            generation_config["responseMimeType"] = "application/json"
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
            # v1beta supports systemInstruction as a Content object
            "systemInstruction": {"parts": [{"text": system}]},
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, headers=headers, json=payload, params={"key": self._api_key})
                if resp.status_code >= 400:
                    try:
                        logging.getLogger("soulaware.providers").error(json.dumps({
                            "event": "google_generate_http_error",
                            "status": resp.status_code,
                            "body": (resp.text or "")[:1024],
                            "model": mdl,
                        }))
                    except Exception:
                        pass
                    raise ProviderError(f"Google generateContent error {resp.status_code}")
                data = resp.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"google transport error: {type(e).__name__}") from e

        candidates = (data or {}).get("candidates") or []
        if not candidates:
            raise ProviderError("google response has no candidates")
        parts = ((candidates[0].get("content") or {}).get("parts")) or []
        content_text = "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict))

        usage: Optional[Usage] = None
        meta = (data or {}).get("usageMetadata")
        if isinstance(meta, dict):
            try:
                usage = Usage(
                    prompt_tokens=int(meta.get("promptTokenCount") or 0),
                    completion_tokens=int(meta.get("candidatesTokenCount") or 0),
                )
            except Exception:
                usage = None
        return Completion(text=content_text, usage=usage, model=mdl)
