"""Test fixtures and fakes."""

from __future__ import annotations

import asyncio
import json

import pytest

from consensus_judge.config import ProviderConfig, RetryPolicy
from consensus_judge.contracts import (
    TOTAL_SCORE,
    EvaluationOptions,
    EvaluationRequest,
    JudgeResult,
    Message,
    Rubric,
    Speaker,
    TokenUsage,
)
from consensus_judge.event_log.writer import MemoryTelemetry
from consensus_judge.providers import register_provider
from consensus_judge.providers.base import Completion, JudgeProvider
from consensus_judge.rubric import default_rubric


class ScriptedJudge(JudgeProvider):
    """Judge whose vendor call replays a script.

    Script items: response text, an exception to raise, or ``(delay_s, text)``.
    The last item repeats once the script runs out.
    """

    kind = "scripted"

    def __init__(self, config, *, api_key="test-key", telemetry=None, script=None):
        super().__init__(config, api_key=api_key, telemetry=telemetry)
        self.script = list(script or [])
        self.calls = 0

    async def _complete(self, system: str, prompt: str) -> Completion:
        self.calls += 1
        item = self.script[min(self.calls, len(self.script)) - 1]
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, tuple):
            delay, item = item
            await asyncio.sleep(delay)
        return Completion(text=item, input_tokens=400, output_tokens=200)


register_provider("scripted", ScriptedJudge)


def judge_payload(
    rubric: Rubric,
    score: float = 4.0,
    *,
    overrides: dict[str, dict[str, float]] | None = None,
    evidence: dict[str, list[str]] | None = None,
    improvements: list[str] | None = None,
) -> str:
    """JSON a judge would return, every subcriterion at ``score`` unless overridden."""
    scores: dict = {}
    for category in rubric.categories:
        entry = {sub.name: score for sub in category.subcriteria}
        entry.update((overrides or {}).get(category.name, {}))
        scores[category.name] = entry
    scores[TOTAL_SCORE] = score
    return json.dumps(
        {
            "scores": scores,
            "evidence": evidence or {"positive": ["Greeted the customer"], "negative": [], "quotes": []},
            "improvements": improvements or [],
        }
    )


def provider_config(
    name: str,
    *,
    kind: str = "scripted",
    priority: int = 100,
    timeout_s: float = 5.0,
    max_attempts: int = 1,
    initial_delay_s: float = 0.0,
    **kwargs,
) -> ProviderConfig:
    kwargs.setdefault("model", f"{name}-model")
    return ProviderConfig(
        name=name,
        kind=kind,
        priority=priority,
        timeout_s=timeout_s,
        retry=RetryPolicy(max_attempts=max_attempts, initial_delay_s=initial_delay_s),
        **kwargs,
    )


@pytest.fixture
def rubric() -> Rubric:
    return default_rubric()


@pytest.fixture
def sample_request(rubric) -> EvaluationRequest:
    return EvaluationRequest(
        transcript_id="chat-001",
        messages=(
            Message(Speaker.CUSTOMER, "My refund hasn't arrived after two weeks.", "2026-02-20T09:00:00Z"),
            Message(Speaker.AUTOMATED, "An agent will be with you shortly."),
            Message(
                Speaker.AGENT,
                "Sorry for the wait. I can see the refund was issued on the 12th; "
                "it should reach your card within 3 business days.",
                "2026-02-20T09:02:00Z",
            ),
            Message(Speaker.CUSTOMER, "Great, thanks."),
            Message(Speaker.AGENT, "Anything else I can help with today?"),
        ),
        rubric=rubric,
        options=EvaluationOptions(),
        agent_id="agent-42",
        channel="web",
    )


@pytest.fixture
def telemetry() -> MemoryTelemetry:
    return MemoryTelemetry()


@pytest.fixture
def make_judge(telemetry):
    """Factory for ScriptedJudge instances wired to the shared telemetry sink."""

    def factory(name: str, script: list, **config_kwargs) -> ScriptedJudge:
        return ScriptedJudge(provider_config(name, **config_kwargs), telemetry=telemetry, script=script)

    return factory


@pytest.fixture
def make_result(rubric):
    """Factory for successful JudgeResults with uniform scores."""

    def factory(provider: str, score: float, *, latency_s: float = 2.0, tokens: int = 600) -> JudgeResult:
        scores = {c.name: score for c in rubric.categories}
        scores[TOTAL_SCORE] = score
        subs = {c.name: {s.name: score for s in c.subcriteria} for c in rubric.categories}
        return JudgeResult(
            provider=provider,
            model=f"{provider}-model",
            success=True,
            scores=scores,
            subcriterion_scores=subs,
            latency_s=latency_s,
            attempts=1,
            usage=TokenUsage(
                provider=provider,
                model=f"{provider}-model",
                input_tokens=tokens // 2,
                output_tokens=tokens - tokens // 2,
                cost_usd=0.001,
                timestamp="2026-02-20T00:00:00Z",
            ),
        )

    return factory


@pytest.fixture
def payload(rubric):
    def factory(score: float = 4.0, **kwargs) -> str:
        return judge_payload(rubric, score, **kwargs)

    return factory


@pytest.fixture
def make_config():
    """Factory for ProviderConfigs with test-friendly retry settings."""
    return provider_config
