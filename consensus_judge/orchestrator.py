"""Orchestrator: select judges, dispatch, and consolidate into one scored result."""

from __future__ import annotations

import sys
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from consensus_judge.budget.tracker import UsageTracker
from consensus_judge.config import JudgeConfig
from consensus_judge.contracts import (
    TOTAL_SCORE,
    ConsolidatedResult,
    EvaluationMode,
    EvaluationRequest,
    ResultMetadata,
    TelemetrySink,
)
from consensus_judge.dispatch import dispatch
from consensus_judge.errors import AllProvidersFailedError, RequestValidationError
from consensus_judge.event_log.writer import NullTelemetry, make_event
from consensus_judge.registry import ProviderRegistry
from consensus_judge.rubric import validate_rubric
from consensus_judge.scoring.confidence import ConfidenceCalculator, analyze, secondary_signals_from
from consensus_judge.scoring.consistency import ConsistencyValidator
from consensus_judge.scoring.consolidate import consolidate_scores, merge_evidence, merge_improvements
from consensus_judge.scoring.outliers import OutlierDetector


def validate_request(request: EvaluationRequest) -> list[str]:
    """Return list of request problems. Empty list means the request can be dispatched."""
    errors = []
    if not request.transcript_id:
        errors.append("transcript_id is required")
    if not any(m.text.strip() for m in request.messages):
        errors.append("transcript has no message text")
    errors.extend(f"rubric: {e}" for e in validate_rubric(request.rubric))
    timeout = request.options.timeout_s
    if timeout is not None and timeout <= 0:
        errors.append(f"options.timeout_s must be > 0, got {timeout}")
    scale = request.rubric.scale
    out_of_scale = [v for v in request.options.historical_scores if not scale.contains(v)]
    if out_of_scale:
        errors.append(f"options.historical_scores outside {scale.min}-{scale.max}: {out_of_scale}")
    return errors


@dataclass(frozen=True)
class _Snapshot:
    config: JudgeConfig
    registry: ProviderRegistry


class Orchestrator:
    """Request-scoped multi-judge evaluation.

    Holds one immutable (config, registry) snapshot. ``reload`` swaps the
    reference; evaluations already running keep the snapshot they started with.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        config: JudgeConfig | None = None,
        *,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        self._snapshot = _Snapshot(config or JudgeConfig(mode=registry.mode), registry)
        self._telemetry = telemetry or NullTelemetry()

    @classmethod
    def from_config(
        cls,
        config: JudgeConfig,
        credentials: Mapping[str, str],
        *,
        telemetry: TelemetrySink | None = None,
    ) -> Orchestrator:
        registry = ProviderRegistry.build(config, credentials, telemetry=telemetry)
        return cls(registry, config, telemetry=telemetry)

    @property
    def registry(self) -> ProviderRegistry:
        return self._snapshot.registry

    @property
    def config(self) -> JudgeConfig:
        return self._snapshot.config

    @property
    def telemetry(self) -> TelemetrySink:
        return self._telemetry

    def reload(self, config: JudgeConfig, credentials: Mapping[str, str]) -> ProviderRegistry:
        """Build a registry for ``config`` and swap it in.

        Returns the previous registry so the caller can close it once
        in-flight evaluations have drained. On ConfigurationError the
        current snapshot is left untouched.
        """
        registry = ProviderRegistry.build(config, credentials, telemetry=self._telemetry)
        previous = self._snapshot.registry
        self._snapshot = _Snapshot(config, registry)
        self._telemetry.emit(make_event("config.reloaded", providers=registry.names()))
        return previous

    def status(self) -> dict[str, Any]:
        snapshot = self._snapshot
        return {
            "providers": snapshot.registry.describe(),
            "multi_judge_available": snapshot.registry.is_multi_judge_available(),
            "mode": asdict(snapshot.registry.mode),
            "thresholds": asdict(snapshot.config.thresholds),
        }

    async def evaluate(self, request: EvaluationRequest) -> ConsolidatedResult:
        """Score one transcript with several judges.

        Raises RequestValidationError or ConfigurationError before dispatch,
        and AllProvidersFailedError when no judge succeeded.
        """
        problems = validate_request(request)
        if problems:
            raise RequestValidationError(problems)

        snapshot = self._snapshot
        thresholds = snapshot.config.thresholds
        rubric = request.rubric
        tid = request.transcript_id

        providers = snapshot.registry.select_for_evaluation(request.options.providers)
        deadline = request.options.timeout_s or thresholds.performance.request_timeout_s
        too_slow = [p for p in providers if p.config.timeout_s >= deadline]
        if too_slow:
            raise RequestValidationError(
                [
                    f"request deadline ({deadline:g}s) must exceed {p.name} timeout_s ({p.config.timeout_s:g}s)"
                    for p in too_slow
                ]
            )
        started = time.monotonic()
        self._telemetry.emit(
            make_event(
                "evaluation.started",
                transcript_id=tid,
                providers=[p.name for p in providers],
                deadline_s=deadline,
            )
        )

        try:
            results = await dispatch(providers, request, deadline, telemetry=self._telemetry)
        except AllProvidersFailedError as e:
            print(f"ERROR: {tid}: {e}", file=sys.stderr)
            self._telemetry.emit(
                make_event("evaluation.failed", transcript_id=tid, failures=e.failures)
            )
            raise

        successful = [r for r in results if r.success]
        failed = [r.provider for r in results if not r.success]

        # Consolidated scores exclude outliers; consistency is measured on raw values.
        detector = OutlierDetector(thresholds.outlier.multiplier, thresholds.outlier.min_samples)
        scores, sub_scores, outlier_reports = consolidate_scores(results, rubric, detector)
        consistency = ConsistencyValidator(thresholds.consistency).validate(results, rubric)

        total_report = outlier_reports.get(TOTAL_SCORE)
        outlier_count = len(total_report["outliers"]) if total_report else 0
        confidence = ConfidenceCalculator(thresholds.confidence).calculate(
            consistency["consistency"],
            outlier_count,
            len(successful),
            secondary_signals_from(results),
        )

        series = {
            dim: [r.scores[dim] for r in successful]
            for dim in rubric.dimensions
            if all(dim in r.scores for r in successful)
        }
        multi = detector.detect_multi_series(series)
        consistent_outliers = tuple(successful[i].provider for i in multi["consistent_outliers"])

        analysis = None
        if request.options.advanced_analysis:
            totals = [r.scores[TOTAL_SCORE] for r in successful if TOTAL_SCORE in r.scores]
            analysis = analyze(
                totals,
                confidence,
                detector,
                history=request.options.historical_scores,
                scale=rubric.scale,
            )

        usage = UsageTracker()
        usage.record_results(results)
        elapsed = time.monotonic() - started

        result = ConsolidatedResult(
            transcript_id=tid,
            scores=scores,
            subcriterion_scores=sub_scores,
            outliers=outlier_reports,
            consistent_outliers=consistent_outliers,
            consistency=consistency,
            confidence=confidence,
            judge_results=tuple(results),
            failed_providers=tuple(failed),
            evidence=merge_evidence(results),
            improvements=tuple(merge_improvements(results)),
            analysis=analysis,
            metadata=ResultMetadata(
                timestamp=datetime.now(timezone.utc).isoformat(),
                rubric_version=rubric.version,
                processing_time_s=round(elapsed, 3),
                mode=(EvaluationMode.MULTI if len(providers) > 1 else EvaluationMode.SINGLE).value,
                providers_used=[r.provider for r in successful],
                total_tokens=usage.total_tokens,
                total_cost_usd=round(usage.total_cost, 6),
            ),
        )

        self._telemetry.emit(
            make_event(
                "consolidation.completed",
                transcript_id=tid,
                total_score=round(scores[TOTAL_SCORE], 3),
                confidence=round(confidence["confidence"], 3),
                reliability=confidence["reliability"],
                consistency=round(consistency["consistency"], 3),
                providers_used=result.metadata["providers_used"],
                failed_providers=failed,
                elapsed_s=round(elapsed, 3),
                tokens=usage.total_tokens,
                cost_usd=round(usage.total_cost, 6),
            )
        )
        return result
