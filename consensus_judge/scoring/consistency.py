"""Cross-judge consistency: how closely successful judges agree per score dimension."""

from __future__ import annotations

from itertools import combinations
from statistics import fmean, pstdev

from consensus_judge.config import ConsistencyThresholds
from consensus_judge.contracts import (
    TOTAL_SCORE,
    AgreementReport,
    ConsistencyReport,
    DimensionConsistency,
    JudgeResult,
    ReportStatus,
    Rubric,
)

TOTAL_WEIGHT = 0.4
DIMENSION_WEIGHT = 0.2
HIGH_SPREAD_STD = 1.0


def assess(consistency: float, std_dev: float) -> str:
    if consistency >= 0.8 and std_dev <= 0.3:
        return "EXCELLENT"
    if consistency >= 0.6 and std_dev <= 0.5:
        return "GOOD"
    if consistency >= 0.4 and std_dev <= 0.8:
        return "ACCEPTABLE"
    return "POOR"


def dimension_stats(values: list[float], half_range: float) -> DimensionConsistency:
    mean = fmean(values)
    std = pstdev(values)
    consistency = max(0.0, 1.0 - std / half_range)
    return DimensionConsistency(
        values=list(values),
        mean=mean,
        std_dev=std,
        coefficient_of_variation=std / mean if mean else 0.0,
        min=min(values),
        max=max(values),
        range=max(values) - min(values),
        consistency=consistency,
        assessment=assess(consistency, std),
    )


class ConsistencyValidator:
    def __init__(self, thresholds: ConsistencyThresholds | None = None) -> None:
        self.thresholds = thresholds or ConsistencyThresholds()

    def _report(
        self,
        consistency: float,
        status: ReportStatus,
        dimensions: dict[str, DimensionConsistency],
        agreement: AgreementReport,
        recommendations: list[str],
    ) -> ConsistencyReport:
        return ConsistencyReport(
            consistency=consistency,
            is_consistent=consistency >= self.thresholds.minimum,
            status=status.value,
            target=self.thresholds.target,
            minimum=self.thresholds.minimum,
            dimensions=dimensions,
            agreement=agreement,
            recommendations=recommendations,
        )

    def validate(self, results: list[JudgeResult], rubric: Rubric) -> ConsistencyReport:
        """Per-dimension spread across successful judges, combined into one 0-1 score.

        One successful judge gives a SINGLE_PROVIDER report (1.0), which is not
        a real agreement measurement. None, or no dimension with two values,
        gives INSUFFICIENT_DATA (0.0).
        """
        successful = [r for r in results if r.success]
        if len(successful) == 1:
            return self._report(
                1.0,
                ReportStatus.SINGLE_PROVIDER,
                {},
                self.agreement(successful),
                ["Only one judge succeeded; agreement cannot be measured."],
            )

        dimensions: dict[str, DimensionConsistency] = {}
        half_range = rubric.scale.half_range
        for dimension in rubric.dimensions:
            values = [r.scores[dimension] for r in successful if dimension in r.scores]
            if len(values) >= 2:
                dimensions[dimension] = dimension_stats(values, half_range)

        if not dimensions:
            return self._report(
                0.0,
                ReportStatus.INSUFFICIENT_DATA,
                {},
                self.agreement(successful),
                ["Not enough successful judges to measure agreement."],
            )

        weighted = 0.0
        total_weight = 0.0
        for name, stats in dimensions.items():
            weight = TOTAL_WEIGHT if name == TOTAL_SCORE else DIMENSION_WEIGHT
            weighted += stats["consistency"] * weight
            total_weight += weight
        overall = weighted / total_weight

        status = ReportStatus.PASS if overall >= self.thresholds.minimum else ReportStatus.FAIL
        return self._report(
            overall,
            status,
            dimensions,
            self.agreement(successful),
            self._recommendations(overall, dimensions),
        )

    def _recommendations(
        self, overall: float, dimensions: dict[str, DimensionConsistency]
    ) -> list[str]:
        recs: list[str] = []
        if overall < self.thresholds.minimum:
            recs.append(
                "Overall consistency is below the minimum. Review provider settings "
                "or add a verification pass."
            )
        elif overall < self.thresholds.target:
            recs.append(
                "Consistency is below target. Consider tightening the rubric wording or prompt."
            )
        for name, stats in dimensions.items():
            if stats["assessment"] == "POOR":
                recs.append(f"{name}: judges disagree strongly; define this criterion more precisely.")
            if stats["std_dev"] > HIGH_SPREAD_STD:
                recs.append(
                    f"{name}: high spread (std={stats['std_dev']:.2f}); compare judges on this dimension."
                )
        if not recs:
            recs.append("Consistency is good. Keep the current settings.")
        return recs

    @staticmethod
    def agreement(
        results: list[JudgeResult],
        dimension: str = TOTAL_SCORE,
        tolerance: float = 0.5,
    ) -> AgreementReport:
        """Pairwise agreement between successful judges on one dimension."""
        values = [r.scores[dimension] for r in results if r.success and dimension in r.scores]
        pairs = list(combinations(values, 2))
        if not pairs:
            return AgreementReport(
                dimension=dimension, pairs=0, exact_agreement=0.0, within_tolerance=0.0, max_gap=0.0
            )
        gaps = [abs(a - b) for a, b in pairs]
        return AgreementReport(
            dimension=dimension,
            pairs=len(pairs),
            exact_agreement=sum(1 for g in gaps if g < 1e-9) / len(gaps),
            within_tolerance=sum(1 for g in gaps if g <= tolerance) / len(gaps),
            max_gap=max(gaps),
        )
