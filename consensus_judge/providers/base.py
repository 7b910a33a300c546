"""JudgeProvider: shared prompt/retry/validation loop around one vendor call."""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from consensus_judge.config import ProviderConfig
from consensus_judge.contracts import (
    EvaluationRequest,
    ErrorKind,
    JudgeError,
    JudgeResult,
    Message,
    Speaker,
    TelemetrySink,
    TokenUsage,
)
from consensus_judge.errors import ProviderCallError, ProviderExhaustedError
from consensus_judge.event_log.writer import NullTelemetry, make_event
from consensus_judge.prompts import build_system_prompt, build_user_prompt
from consensus_judge.rubric import default_rubric
from consensus_judge.validation import parse_json, validate_judgment


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in (408, 429)


@dataclass(frozen=True)
class Completion:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class JudgeProvider:
    """One configured judge.

    Subclasses implement ``_complete`` (one raw vendor call) and may extend
    ``classify_error``. Everything else is shared: prompt building, the
    per-call timeout, retry with exponential backoff, JSON extraction,
    schema validation, cost tracking and telemetry.

    ``evaluate`` never raises except on cancellation; every failure comes
    back as a JudgeResult with ``success=False``.
    """

    kind: str = ""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        api_key: str,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        self.config = config
        self.name = config.name
        self.model = config.model
        self._api_key = api_key
        self._telemetry = telemetry or NullTelemetry()

    async def _complete(self, system: str, prompt: str) -> Completion:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None

    def classify_error(self, exc: BaseException) -> ProviderCallError:
        """Map any exception from one attempt onto a ProviderCallError."""
        if isinstance(exc, ProviderCallError):
            return exc
        if isinstance(exc, TimeoutError):
            return ProviderCallError(
                self.name,
                f"No response within {self.config.timeout_s}s",
                kind=ErrorKind.TIMEOUT,
                retryable=True,
            )
        if isinstance(exc, OSError):
            # socket-level failures: refused, reset, unreachable, DNS
            return ProviderCallError(
                self.name, f"{type(exc).__name__}: {exc}", kind=ErrorKind.TRANSPORT, retryable=True
            )
        return ProviderCallError(
            self.name, f"{type(exc).__name__}: {exc}", kind=ErrorKind.UNKNOWN, retryable=False
        )

    def _emit(self, event: str, transcript_id: str, **data: Any) -> None:
        self._telemetry.emit(
            make_event(event, transcript_id=transcript_id, provider=self.name, **data)
        )

    def _track_usage(self, completion: Completion) -> TokenUsage:
        cost = self.config.cost.estimate(completion.input_tokens, completion.output_tokens)
        return TokenUsage(
            provider=self.name,
            model=self.model,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            cost_usd=round(cost, 6),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    async def evaluate(self, request: EvaluationRequest) -> JudgeResult:
        system = build_system_prompt(request.rubric)
        prompt = build_user_prompt(request)
        policy = self.config.retry
        tid = request.transcript_id
        started = time.monotonic()
        last_error: ProviderCallError | None = None
        attempt = 0

        for attempt in range(1, policy.max_attempts + 1):
            try:
                completion = await asyncio.wait_for(
                    self._complete(system, prompt), timeout=self.config.timeout_s
                )
                data = parse_json(self.name, completion.text)
                judgment = validate_judgment(data, request.rubric, self.name)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = self.classify_error(exc)
                self._emit(
                    "provider.attempt_failed",
                    tid,
                    attempt=attempt,
                    kind=last_error.kind.value,
                    status_code=last_error.status_code,
                    retryable=last_error.retryable,
                    message=str(last_error),
                )
                if not last_error.retryable or attempt >= policy.max_attempts:
                    break
                wait = policy.delay_for(attempt)
                print(
                    f"WARNING: {self.name} ({self.model}) {last_error.kind.value} error, "
                    f"retry {attempt + 1}/{policy.max_attempts} in {wait:g}s: {last_error}",
                    file=sys.stderr,
                )
                self._emit("provider.backoff", tid, attempt=attempt, delay_s=wait)
                await asyncio.sleep(wait)
                continue

            usage = self._track_usage(completion)
            latency = time.monotonic() - started
            self._emit(
                "provider.succeeded",
                tid,
                attempts=attempt,
                latency_s=round(latency, 3),
                tokens=usage["input_tokens"] + usage["output_tokens"],
                cost_usd=usage["cost_usd"],
            )
            return JudgeResult(
                provider=self.name,
                model=self.model,
                success=True,
                scores=judgment["scores"],
                subcriterion_scores=judgment["subcriterion_scores"],
                evidence=judgment["evidence"],
                improvements=tuple(judgment["improvements"]),
                latency_s=latency,
                attempts=attempt,
                usage=usage,
                warnings=tuple(judgment["warnings"]),
            )

        assert last_error is not None
        exhausted = ProviderExhaustedError(last_error, attempt)
        latency = time.monotonic() - started
        print(f"WARNING: {exhausted}", file=sys.stderr)
        self._emit(
            "provider.failed",
            tid,
            attempts=attempt,
            kind=exhausted.kind.value,
            status_code=exhausted.status_code,
            message=str(exhausted),
        )
        return JudgeResult(
            provider=self.name,
            model=self.model,
            success=False,
            latency_s=latency,
            attempts=attempt,
            error=JudgeError(
                kind=exhausted.kind.value,
                message=str(exhausted),
                status_code=exhausted.status_code,
                retryable=exhausted.retryable,
                attempts=attempt,
            ),
        )

    async def health_check(self) -> dict[str, Any]:
        """Run a minimal evaluation. Returns {success, message, latency_s}."""
        request = EvaluationRequest(
            transcript_id="health-check",
            messages=(
                Message(Speaker.CUSTOMER, "Hi, where is my order?"),
                Message(Speaker.AGENT, "Hello! It shipped today; here is the tracking link."),
            ),
            rubric=default_rubric(),
        )
        result = await self.evaluate(request)
        if result.success:
            message = f"{self.name} ({self.model}) responded with a valid evaluation"
        else:
            message = result.error["message"] if result.error else "unknown error"
        return {"success": result.success, "message": message, "latency_s": round(result.latency_s, 3)}


class HttpJudgeProvider(JudgeProvider):
    """Base for judges reached over plain HTTPS JSON APIs via httpx."""

    default_endpoint: str = ""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        api_key: str,
        telemetry: TelemetrySink | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config, api_key=api_key, telemetry=telemetry)
        self.endpoint = config.endpoint or self.default_endpoint
        self._client = httpx.AsyncClient(
            headers={"User-Agent": "consensus-judge/0.1"},
            timeout=config.timeout_s,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        resp = await self._client.post(url, json=payload, headers=headers)
        if resp.status_code >= 400:
            raise ProviderCallError(
                self.name,
                f"HTTP {resp.status_code}: {resp.text[:300]}",
                kind=ErrorKind.HTTP,
                status_code=resp.status_code,
                retryable=is_retryable_status(resp.status_code),
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderCallError(
                self.name, f"Response body is not JSON: {e}", kind=ErrorKind.PARSE
            ) from e
        if not isinstance(data, dict):
            raise ProviderCallError(self.name, "Response body is not an object", kind=ErrorKind.PARSE)
        return data

    def classify_error(self, exc: BaseException) -> ProviderCallError:
        if isinstance(exc, httpx.TimeoutException):
            return ProviderCallError(self.name, f"Timed out: {exc}", kind=ErrorKind.TIMEOUT, retryable=True)
        if isinstance(exc, httpx.TransportError):
            return ProviderCallError(
                self.name, f"{type(exc).__name__}: {exc}", kind=ErrorKind.TRANSPORT, retryable=True
            )
        return super().classify_error(exc)
