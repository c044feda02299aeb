"""
Minimal Google Gemini client over the public REST API.

Only the two calls the advisor needs are wrapped:

- ``generate``: one-shot ``models/{model}:generateContent``.
- ``stream``: ``models/{model}:streamGenerateContent?alt=sse``, yielding
  text chunks as they arrive.
"""
from __future__ import annotations

import json
import logging
from typing import AsyncIterator

import httpx

from campusnet.config import settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    pass


class GeminiClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        self.model = model or settings.GEMINI_MODEL
        self._http = http or httpx.AsyncClient(
            base_url=settings.GEMINI_BASE_URL, timeout=settings.GEMINI_TIMEOUT,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def aclose(self) -> None:
        await self._http.aclose()

    @staticmethod
    def _body(prompt: str) -> dict:
        return {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}

    @staticmethod
    def _extract_text(payload: dict) -> str:
        candidates = payload.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    async def generate(self, prompt: str) -> str:
        try:
            r = await self._http.post(
                f"/models/{self.model}:generateContent",
                params={"key": self.api_key},
                json=self._body(prompt),
            )
            r.raise_for_status()
            return self._extract_text(r.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Gemini generateContent failed: %s", e)
            raise LLMError(str(e)) from e

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        try:
            async with self._http.stream(
                "POST",
                f"/models/{self.model}:streamGenerateContent",
                params={"alt": "sse", "key": self.api_key},
                json=self._body(prompt),
            ) as r:
                r.raise_for_status()
                async for line in r.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if not data:
                        continue
                    text = self._extract_text(json.loads(data))
                    if text:
                        yield text
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Gemini streamGenerateContent failed: %s", e)
            raise LLMError(str(e)) from e


gemini = GeminiClient()


def get_llm() -> GeminiClient:
    return gemini
