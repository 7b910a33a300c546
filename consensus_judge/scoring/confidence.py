"""Confidence scoring and reliability classification for a consolidated result."""

from __future__ import annotations

import math
from statistics import fmean, stdev

from consensus_judge.config import ConfidenceThresholds
from consensus_judge.contracts import (
    AdvancedAnalysis,
    ConfidenceComponents,
    ConfidenceReport,
    JudgeResult,
    Reliability,
    ReportStatus,
    ScoreScale,
    SecondarySignals,
    UncertaintyReport,
)
from consensus_judge.rubric import clamp
from consensus_judge.scoring.outliers import OutlierDetector

SIGNAL_SHARE = 0.1
QUALITY_WEIGHTS = {"confidence": 0.4, "temporal": 0.2, "cross_validation": 0.2, "precision": 0.2}
# Leave-one-out gaps are normalised by this multiple of the scale's half range
LOO_TOLERANCE = 1.25
HIGH_OUTLIER_RATIO = 0.3

# Two-sided 95% Student t critical values by degrees of freedom
_T_95 = {
    1: 12.706, 2: 4.303, 3: 3.182, 4: 2.776, 5: 2.571, 6: 2.447, 7: 2.365, 8: 2.306,
    9: 2.262, 10: 2.228, 15: 2.131, 20: 2.086, 25: 2.060, 30: 2.042,
}


def classify_reliability(confidence: float, consistency: float) -> Reliability:
    """Both confidence and consistency must clear a level to earn it."""
    if confidence >= 0.8 and consistency >= 0.8:
        return Reliability.HIGH
    if confidence >= 0.6 and consistency >= 0.6:
        return Reliability.MEDIUM
    return Reliability.LOW


def score_response_time(seconds: float) -> float:
    if seconds < 1:
        return 0.5  # suspiciously fast
    if seconds <= 10:
        return 1.0
    if seconds <= 30:
        return 0.8
    if seconds <= 60:
        return 0.6
    return 0.3


def score_token_usage(tokens: float) -> float:
    if tokens < 100:
        return 0.3
    if tokens <= 500:
        return 0.7
    if tokens <= 2000:
        return 1.0
    if tokens <= 4000:
        return 0.8
    return 0.5


def secondary_signals_from(results: list[JudgeResult]) -> SecondarySignals:
    """Response time and token use of successful judges, error rate over all."""
    signals = SecondarySignals()
    if not results:
        return signals
    successful = [r for r in results if r.success]
    if successful:
        signals["response_time_s"] = fmean(r.latency_s for r in successful)
        with_usage = [r.tokens for r in successful if r.usage]
        if with_usage:
            signals["token_usage"] = fmean(with_usage)
    signals["error_rate"] = (len(results) - len(successful)) / len(results)
    return signals


def _signal_average(signals: SecondarySignals) -> float | None:
    scores = []
    if "response_time_s" in signals:
        scores.append(score_response_time(signals["response_time_s"]))
    if "token_usage" in signals:
        scores.append(score_token_usage(signals["token_usage"]))
    if "error_rate" in signals:
        scores.append(1.0 - min(1.0, max(0.0, signals["error_rate"])))
    if "historical_performance" in signals:
        scores.append(min(1.0, max(0.0, signals["historical_performance"])))
    return fmean(scores) if scores else None


class ConfidenceCalculator:
    def __init__(self, thresholds: ConfidenceThresholds | None = None) -> None:
        self.thresholds = thresholds or ConfidenceThresholds()

    def calculate(
        self,
        consistency: float,
        outlier_count: int,
        total_results: int,
        signals: SecondarySignals | None = None,
    ) -> ConfidenceReport:
        """Combine consistency, outlier share and sample size into a 0-1 confidence.

        Secondary signals, when given, take a fixed 10% share on top of the
        three mandatory components. A lone judge yields a SINGLE_PROVIDER
        report with low reliability and no consistency credit.
        """
        t = self.thresholds
        if total_results <= 0:
            return ConfidenceReport(
                confidence=0.0,
                reliability=Reliability.LOW.value,
                components=ConfidenceComponents(consistency=0.0, outlier=0.0, sample_size=0.0),
                status=ReportStatus.INSUFFICIENT_DATA.value,
                assessment="No results to assess.",
                recommendations=["No successful judge results. Enable or fix providers."],
            )

        # One judge has nothing to agree with; its placeholder consistency earns no credit.
        single = total_results == 1
        if single:
            consistency = 0.0
        consistency_part = min(1.0, max(0.0, consistency)) * t.consistency_weight
        outlier_part = max(0.0, 1.0 - outlier_count / total_results) * t.outlier_weight
        sample_factor = min(1.0, total_results / t.optimal_sample_size)
        sample_part = math.log(1 + sample_factor) / math.log(2) * t.sample_size_weight

        components = ConfidenceComponents(
            consistency=consistency_part,
            outlier=outlier_part,
            sample_size=sample_part,
        )
        confidence = consistency_part + outlier_part + sample_part

        signal_avg = _signal_average(signals) if signals else None
        if signal_avg is not None:
            components["additional"] = signal_avg
            confidence = (1 - SIGNAL_SHARE) * confidence + SIGNAL_SHARE * signal_avg

        confidence = min(1.0, max(0.0, confidence))
        if single:
            reliability = Reliability.LOW
            status = ReportStatus.SINGLE_PROVIDER
        else:
            reliability = classify_reliability(confidence, consistency)
            status = ReportStatus.PASS if confidence >= t.minimum else ReportStatus.FAIL
        return ConfidenceReport(
            confidence=confidence,
            reliability=reliability.value,
            components=components,
            status=status.value,
            assessment=self._assessment(confidence),
            recommendations=self._recommendations(
                confidence, consistency, outlier_count, total_results
            ),
        )

    def _assessment(self, confidence: float) -> str:
        if confidence >= self.thresholds.target:
            return f"High confidence ({confidence:.2f}); the result can be used as-is."
        if confidence >= self.thresholds.minimum:
            return f"Moderate confidence ({confidence:.2f}); spot-check before relying on it."
        return f"Low confidence ({confidence:.2f}); manual review recommended."

    def _recommendations(
        self, confidence: float, consistency: float, outlier_count: int, total_results: int
    ) -> list[str]:
        recs: list[str] = []
        if confidence < self.thresholds.minimum:
            recs.append("Confidence is below the minimum. Enable more providers or re-run.")
        if total_results > 1 and consistency < 0.6:
            recs.append("Judges disagree. Tighten the rubric definitions or prompt wording.")
        if outlier_count / total_results > HIGH_OUTLIER_RATIO:
            recs.append("Many outlying scores. Inspect the settings of the outlying providers.")
        if total_results < 2:
            recs.append("Only one judge contributed. Enable more providers for cross-checking.")
        return recs

    @staticmethod
    def quantify_uncertainty(values: list[float], scale: ScoreScale | None = None) -> UncertaintyReport:
        """Mean with 95% confidence and prediction intervals, clamped to the score scale."""
        scale = scale or ScoreScale()
        n = len(values)
        if n == 0:
            raise ValueError("quantify_uncertainty needs at least one value")
        mean = fmean(values)
        if n < 2:
            return UncertaintyReport(
                n=n,
                mean=mean,
                std_dev=0.0,
                standard_error=0.0,
                confidence_interval=(mean, mean),
                prediction_interval=(mean, mean),
            )

        sd = stdev(values)
        se = sd / math.sqrt(n)
        t = _t_critical(n - 1)
        ci = t * se
        pi = t * sd * math.sqrt(1 + 1 / n)

        return UncertaintyReport(
            n=n,
            mean=mean,
            std_dev=sd,
            standard_error=se,
            confidence_interval=(clamp(mean - ci, scale), clamp(mean + ci, scale)),
            prediction_interval=(clamp(mean - pi, scale), clamp(mean + pi, scale)),
        )


def _t_critical(df: int) -> float:
    if df in _T_95:
        return _T_95[df]
    if df > 30:
        return 1.96
    # nearest tabulated df below
    return _T_95[max(k for k in _T_95 if k < df)]


def temporal_stability(
    current: list[float], history: tuple[float, ...] | list[float], scale: ScoreScale | None = None
) -> float:
    """How close today's mean total is to past totals, 1 at equal and 0 at half the scale apart.

    Returns a neutral 0.5 when either side is empty.
    """
    scale = scale or ScoreScale()
    if not current or not history:
        return 0.5
    difference = abs(fmean(current) - fmean(history))
    return max(0.0, 1.0 - difference / scale.half_range)


def leave_one_out(values: list[float], scale: ScoreScale | None = None) -> float:
    """Mean agreement of each judge with the average of the others; 0.5 below three judges."""
    scale = scale or ScoreScale()
    n = len(values)
    if n < 3:
        return 0.5
    tolerance = LOO_TOLERANCE * scale.half_range
    total = 0.0
    for i, held_out in enumerate(values):
        others = fmean(v for j, v in enumerate(values) if j != i)
        total += max(0.0, 1.0 - abs(others - held_out) / tolerance)
    return total / n


def quality_score(
    confidence: float, temporal: float, cross_validation: float, standard_error: float
) -> float:
    precision = max(0.0, 1.0 - standard_error)
    w = QUALITY_WEIGHTS
    return (
        confidence * w["confidence"]
        + temporal * w["temporal"]
        + cross_validation * w["cross_validation"]
        + precision * w["precision"]
    )


def analyze(
    totals: list[float],
    confidence: ConfidenceReport,
    detector: OutlierDetector,
    *,
    history: tuple[float, ...] | list[float] = (),
    scale: ScoreScale | None = None,
) -> AdvancedAnalysis:
    """Stability, cross-validation, uncertainty and adaptive outliers over judge totals."""
    scale = scale or ScoreScale()
    uncertainty = ConfidenceCalculator.quantify_uncertainty(totals, scale)
    temporal = temporal_stability(totals, history, scale)
    cross_validation = leave_one_out(totals, scale)
    return AdvancedAnalysis(
        temporal_stability=temporal,
        cross_validation=cross_validation,
        uncertainty=uncertainty,
        adaptive_outliers=detector.detect_adaptive(totals),
        quality_score=quality_score(
            confidence["confidence"], temporal, cross_validation, uncertainty["standard_error"]
        ),
    )
