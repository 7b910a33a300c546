"""Batch evaluation and health reporting on top of the Orchestrator."""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Callable

from consensus_judge.budget.tracker import UsageTracker
from consensus_judge.contracts import ConsolidatedResult, EvaluationRequest
from consensus_judge.errors import (
    AllProvidersFailedError,
    ConfigurationError,
    ConsensusJudgeError,
    RequestValidationError,
)
from consensus_judge.event_log.writer import make_event
from consensus_judge.orchestrator import Orchestrator


class FailureStrategy(str, Enum):
    CONTINUE = "continue"
    FAIL_FAST = "fail-fast"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # a single judge; no cross-checking
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class BatchOutcome:
    transcript_id: str
    result: ConsolidatedResult | None = None
    error: str = ""
    attempts: int = 0
    skipped: bool = False

    @property
    def success(self) -> bool:
        return self.result is not None


@dataclass(frozen=True)
class BatchReport:
    outcomes: tuple[BatchOutcome, ...]
    elapsed_s: float
    total_tokens: int
    total_cost_usd: float
    usage_by_provider: dict[str, dict[str, int | float]]
    usage_summary: str

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success and not o.skipped)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)


# Errors that a re-run cannot fix
_NOT_RETRYABLE = (RequestValidationError, ConfigurationError)

ProgressCallback = Callable[[int, int, BatchOutcome], None]


class EvaluationService:
    def __init__(self, orchestrator: Orchestrator, *, retry_delay_s: float = 1.0) -> None:
        self.orchestrator = orchestrator
        self._retry_delay_s = retry_delay_s

    async def evaluate(self, request: EvaluationRequest) -> ConsolidatedResult:
        return await self.orchestrator.evaluate(request)

    async def evaluate_batch(
        self,
        requests: list[EvaluationRequest],
        *,
        parallelism: int = 3,
        retries: int = 2,
        failure_strategy: FailureStrategy | str = FailureStrategy.CONTINUE,
        token_budget: int = 0,
        progress: ProgressCallback | None = None,
    ) -> BatchReport:
        """Evaluate many transcripts with bounded concurrency.

        A transcript whose judges all fail is re-run up to ``retries`` times
        with a linear delay. With ``fail-fast`` the first exhausted transcript
        stops new work; transcripts not yet started are reported as skipped.
        Once ``token_budget`` (0 = unlimited) is spent, remaining transcripts
        are skipped too. Outcomes keep the input order.
        """
        strategy = FailureStrategy(failure_strategy)
        semaphore = asyncio.Semaphore(max(1, parallelism))
        tracker = UsageTracker(token_budget)
        stop = asyncio.Event()
        completed = 0
        started = time.monotonic()

        async def run_one(request: EvaluationRequest) -> BatchOutcome:
            nonlocal completed
            async with semaphore:
                outcome = await self._attempt(request, retries, stop, tracker)
            if not outcome.success and not outcome.skipped and strategy is FailureStrategy.FAIL_FAST:
                stop.set()
            completed += 1
            if progress is not None:
                progress(completed, len(requests), outcome)
            return outcome

        outcomes = await asyncio.gather(*(run_one(r) for r in requests))
        return BatchReport(
            outcomes=tuple(outcomes),
            elapsed_s=round(time.monotonic() - started, 3),
            total_tokens=tracker.total_tokens,
            total_cost_usd=round(tracker.total_cost, 6),
            usage_by_provider=tracker.usage_by_provider(),
            usage_summary=tracker.summary(),
        )

    async def evaluate_stream(
        self,
        requests: AsyncIterable[EvaluationRequest],
        *,
        buffer_size: int = 5,
        flush_interval_s: float = 1.0,
        retries: int = 0,
        token_budget: int = 0,
    ) -> AsyncIterator[BatchOutcome]:
        """Evaluate transcripts as they arrive.

        Requests are buffered until ``buffer_size`` is reached or
        ``flush_interval_s`` has passed since the last flush; each buffer is
        evaluated concurrently and outcomes are yielded as they finish. A
        failed transcript becomes an outcome with ``error`` set and never
        stops the stream. Whatever is buffered when the source ends is
        flushed last.
        """
        loop = asyncio.get_running_loop()
        tracker = UsageTracker(token_budget)
        stop = asyncio.Event()  # streams never fail fast
        buffer: list[EvaluationRequest] = []
        last_flush = loop.time()

        async for request in requests:
            buffer.append(request)
            if len(buffer) >= max(1, buffer_size) or loop.time() - last_flush >= flush_interval_s:
                async for outcome in self._flush(buffer, retries, stop, tracker):
                    yield outcome
                buffer = []
                last_flush = loop.time()

        if buffer:
            async for outcome in self._flush(buffer, retries, stop, tracker):
                yield outcome

    async def _flush(
        self,
        buffer: list[EvaluationRequest],
        retries: int,
        stop: asyncio.Event,
        tracker: UsageTracker,
    ) -> AsyncIterator[BatchOutcome]:
        tasks = [asyncio.ensure_future(self._attempt(r, retries, stop, tracker)) for r in buffer]
        try:
            for next_done in asyncio.as_completed(tasks):
                yield await next_done
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _attempt(
        self,
        request: EvaluationRequest,
        retries: int,
        stop: asyncio.Event,
        tracker: UsageTracker,
    ) -> BatchOutcome:
        tid = request.transcript_id
        if stop.is_set():
            return BatchOutcome(tid, error="skipped after an earlier failure (fail-fast)", skipped=True)
        if not tracker.has_budget():
            return BatchOutcome(tid, error="skipped: token budget exhausted", skipped=True)

        last_error: ConsensusJudgeError | None = None
        attempts = 0
        while attempts <= retries:
            attempts += 1
            try:
                result = await self.orchestrator.evaluate(request)
            except _NOT_RETRYABLE as e:
                last_error = e
                break
            except AllProvidersFailedError as e:
                last_error = e
                if attempts <= retries:
                    wait = self._retry_delay_s * attempts
                    print(
                        f"WARNING: {tid} retry {attempts}/{retries} in {wait:g}s: {e}",
                        file=sys.stderr,
                    )
                    await asyncio.sleep(wait)
                continue
            tracker.record_results(result.judge_results)
            return BatchOutcome(tid, result=result, attempts=attempts)

        return BatchOutcome(tid, error=str(last_error), attempts=attempts)

    async def health(self, *, probe: bool = False) -> dict[str, Any]:
        """Service health by number of usable judges.

        Without ``probe`` the configured providers are counted; with it each
        one runs a minimal live evaluation and only passing ones count.
        """
        registry = self.orchestrator.registry
        providers = registry.active_providers()
        checks: dict[str, dict[str, Any]] = {}
        if probe and providers:
            outcomes = await asyncio.gather(*(p.health_check() for p in providers))
            checks = {p.name: outcome for p, outcome in zip(providers, outcomes)}
            usable = sum(1 for c in checks.values() if c["success"])
        else:
            usable = len(providers)

        if usable == 0:
            status, reason = HealthStatus.UNHEALTHY, "No usable providers"
        elif usable == 1:
            status, reason = HealthStatus.DEGRADED, "Only one provider usable"
        else:
            status, reason = HealthStatus.HEALTHY, f"{usable} providers usable"

        report = {
            "status": status.value,
            "reason": reason,
            "providers": registry.names(),
            "usable": usable,
            "multi_judge_available": registry.is_multi_judge_available(),
            "checks": checks,
        }
        self.orchestrator.telemetry.emit(make_event("service.health", status=status.value, usable=usable))
        return report
