"""OpenAI Chat Completions judge over httpx."""

from __future__ import annotations

from consensus_judge.contracts import ErrorKind
from consensus_judge.errors import ProviderCallError

from . import register_provider
from .base import Completion, HttpJudgeProvider


class OpenAIJudge(HttpJudgeProvider):
    kind = "openai"
    default_endpoint = "https://api.openai.com/v1/chat/completions"

    async def _complete(self, system: str, prompt: str) -> Completion:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "response_format": {"type": "json_object"},
        }
        payload.update(self.config.extra)

        data = await self._post_json(
            self.endpoint,
            payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderCallError(
                self.name, f"Unexpected response shape: missing {e}", kind=ErrorKind.PARSE
            ) from e

        usage = data.get("usage") or {}
        return Completion(
            text=text,
            input_tokens=int(usage.get("prompt_tokens", 0)),
            output_tokens=int(usage.get("completion_tokens", 0)),
        )


register_provider("openai", OpenAIJudge)
