"""Concurrent fan-out of one request to the selected judges."""

from __future__ import annotations

import asyncio
import sys

from consensus_judge.contracts import (
    EvaluationRequest,
    ErrorKind,
    JudgeError,
    JudgeResult,
    TelemetrySink,
)
from consensus_judge.errors import AllProvidersFailedError
from consensus_judge.event_log.writer import NullTelemetry, make_event
from consensus_judge.providers.base import JudgeProvider


def _failed(provider: JudgeProvider, kind: ErrorKind, message: str, latency_s: float) -> JudgeResult:
    return JudgeResult(
        provider=provider.name,
        model=provider.model,
        success=False,
        latency_s=latency_s,
        error=JudgeError(
            kind=kind.value,
            message=message,
            status_code=None,
            retryable=False,
            attempts=0,
        ),
    )


async def dispatch(
    providers: list[JudgeProvider],
    request: EvaluationRequest,
    deadline_s: float,
    *,
    telemetry: TelemetrySink | None = None,
) -> list[JudgeResult]:
    """Run every provider concurrently and collect one result per provider.

    Failures never cancel siblings. Tasks still running at the deadline are
    cancelled and recorded as failed (kind ``cancelled``). Results come back
    in the order ``providers`` was given. Raises AllProvidersFailedError when
    nothing succeeded.
    """
    telemetry = telemetry or NullTelemetry()
    if not providers:
        raise AllProvidersFailedError([])

    loop = asyncio.get_running_loop()
    started = loop.time()
    tasks = [
        asyncio.create_task(p.evaluate(request), name=f"judge-{p.name}") for p in providers
    ]
    try:
        _, pending = await asyncio.wait(tasks, timeout=deadline_s)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
    elapsed = loop.time() - started

    results: list[JudgeResult] = []
    for provider, task in zip(providers, tasks):
        if task in pending or task.cancelled():
            message = f"{provider.name} cancelled at request deadline ({deadline_s:g}s)"
            print(f"WARNING: {message}", file=sys.stderr)
            telemetry.emit(
                make_event(
                    "provider.cancelled",
                    transcript_id=request.transcript_id,
                    provider=provider.name,
                    deadline_s=deadline_s,
                )
            )
            results.append(_failed(provider, ErrorKind.CANCELLED, message, elapsed))
        elif task.exception() is not None:
            exc = task.exception()
            message = f"{provider.name} raised {type(exc).__name__}: {exc}"
            print(f"WARNING: {message}", file=sys.stderr)
            results.append(_failed(provider, ErrorKind.UNKNOWN, message, elapsed))
        else:
            results.append(task.result())

    if not any(r.success for r in results):
        failures = [(r.provider, r.error["message"] if r.error else "unknown") for r in results]
        raise AllProvidersFailedError(failures)
    return results
