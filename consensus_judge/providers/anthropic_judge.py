"""Anthropic Messages API judge."""

from __future__ import annotations

import anthropic

from consensus_judge.config import ProviderConfig
from consensus_judge.contracts import ErrorKind, TelemetrySink
from consensus_judge.errors import ProviderCallError

from . import register_provider
from .base import Completion, JudgeProvider, is_retryable_status


class AnthropicJudge(JudgeProvider):
    kind = "anthropic"

    def __init__(
        self,
        config: ProviderConfig,
        *,
        api_key: str,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        super().__init__(config, api_key=api_key, telemetry=telemetry)
        # Retries are owned by JudgeProvider.evaluate, not the SDK
        self._client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=config.endpoint or None,
            max_retries=0,
            timeout=config.timeout_s,
        )

    async def aclose(self) -> None:
        await self._client.close()

    async def _complete(self, system: str, prompt: str) -> Completion:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            system=system,
            messages=[{"role": "user", "content": prompt}],
            **self.config.extra,
        )

        text = ""
        for block in response.content:
            if block.type == "text":
                text += block.text

        return Completion(
            text=text,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    def classify_error(self, exc: BaseException) -> ProviderCallError:
        if isinstance(exc, anthropic.APIStatusError):
            return ProviderCallError(
                self.name,
                f"HTTP {exc.status_code}: {exc.message}",
                kind=ErrorKind.HTTP,
                status_code=exc.status_code,
                retryable=is_retryable_status(exc.status_code),
            )
        if isinstance(exc, anthropic.APITimeoutError):
            return ProviderCallError(self.name, str(exc), kind=ErrorKind.TIMEOUT, retryable=True)
        if isinstance(exc, anthropic.APIConnectionError):
            return ProviderCallError(self.name, str(exc), kind=ErrorKind.TRANSPORT, retryable=True)
        return super().classify_error(exc)


register_provider("anthropic", AnthropicJudge)
