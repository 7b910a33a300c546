"""Google Gemini generateContent judge over httpx."""

from __future__ import annotations

from consensus_judge.contracts import ErrorKind
from consensus_judge.errors import ProviderCallError

from . import register_provider
from .base import Completion, HttpJudgeProvider

_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiJudge(HttpJudgeProvider):
    kind = "gemini"

    @property
    def url(self) -> str:
        if self.endpoint:
            return self.endpoint
        return f"{_BASE_URL}/{self.model}:generateContent"

    async def _complete(self, system: str, prompt: str) -> Completion:
        generation_config = {
            "temperature": self.config.temperature,
            "maxOutputTokens": self.config.max_tokens,
            "topP": 0.95,
            "topK": 40,
            "responseMimeType": "application/json",
        }
        generation_config.update(self.config.extra)
        payload = {
            "systemInstruction": {"parts": [{"text": system}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }

        data = await self._post_json(self.url, payload, headers={"x-goog-api-key": self._api_key})

        try:
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError) as e:
            reason = (data.get("promptFeedback") or {}).get("blockReason", "")
            detail = f" (blocked: {reason})" if reason else ""
            raise ProviderCallError(
                self.name, f"Unexpected response shape: missing {e}{detail}", kind=ErrorKind.PARSE
            ) from e

        usage = data.get("usageMetadata") or {}
        return Completion(
            text=text,
            input_tokens=int(usage.get("promptTokenCount", 0)),
            output_tokens=int(usage.get("candidatesTokenCount", 0)),
        )


register_provider("gemini", GeminiJudge)
