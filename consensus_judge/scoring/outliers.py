"""IQR outlier detection over small samples of judge scores."""

from __future__ import annotations

import math
from statistics import fmean, median, pstdev

from consensus_judge.contracts import (
    AdaptiveOutlierReport,
    DistributionProfile,
    MultiSeriesOutlierReport,
    OutlierReport,
)


def quantile(sorted_values: list[float], p: float) -> float:
    """Linear interpolation at rank (n-1)*p on an already-sorted sample."""
    if not sorted_values:
        raise ValueError("quantile of empty sample")
    pos = (len(sorted_values) - 1) * p
    lo = math.floor(pos)
    hi = math.ceil(pos)
    return sorted_values[lo] + (sorted_values[hi] - sorted_values[lo]) * (pos - lo)


def _empty_report(values: list[float]) -> OutlierReport:
    return OutlierReport(
        values=list(values),
        q1=0.0,
        q3=0.0,
        iqr=0.0,
        lower_bound=0.0,
        upper_bound=0.0,
        outliers=[],
        outlier_indices=[],
        inliers=list(values),
        outlier_ratio=0.0,
        sufficient=False,
    )


def describe_distribution(values: list[float]) -> DistributionProfile:
    mean = fmean(values)
    std = pstdev(values)
    if std > 0:
        z = [(v - mean) / std for v in values]
        skewness = fmean(x**3 for x in z)
        kurtosis = fmean(x**4 for x in z) - 3.0
    else:
        skewness = 0.0
        kurtosis = 0.0
    return DistributionProfile(
        mean=mean,
        median=median(values),
        std_dev=std,
        skewness=skewness,
        kurtosis=kurtosis,
        approximately_normal=abs(skewness) < 0.5 and abs(kurtosis) < 0.5,
    )


class OutlierDetector:
    """Tukey fences: values strictly outside [Q1 - k*IQR, Q3 + k*IQR]."""

    def __init__(self, multiplier: float = 1.5, min_samples: int = 3) -> None:
        self.multiplier = multiplier
        self.min_samples = min_samples

    def detect(self, values: list[float]) -> OutlierReport:
        if len(values) < self.min_samples:
            return _empty_report(values)

        ordered = sorted(values)
        q1 = quantile(ordered, 0.25)
        q3 = quantile(ordered, 0.75)
        iqr = q3 - q1
        lower = q1 - self.multiplier * iqr
        upper = q3 + self.multiplier * iqr

        outlier_indices = [i for i, v in enumerate(values) if v < lower or v > upper]
        flagged = set(outlier_indices)
        return OutlierReport(
            values=list(values),
            q1=q1,
            q3=q3,
            iqr=iqr,
            lower_bound=lower,
            upper_bound=upper,
            outliers=[values[i] for i in outlier_indices],
            outlier_indices=outlier_indices,
            inliers=[v for i, v in enumerate(values) if i not in flagged],
            outlier_ratio=len(outlier_indices) / len(values),
            sufficient=True,
        )

    def detect_multi_series(self, series: dict[str, list[float]]) -> MultiSeriesOutlierReport:
        """Run detect per series; an index flagged in at least half the series is consistent."""
        reports = {key: self.detect(values) for key, values in series.items()}

        counts: dict[int, int] = {}
        for report in reports.values():
            for idx in report["outlier_indices"]:
                counts[idx] = counts.get(idx, 0) + 1

        threshold = math.ceil(len(reports) * 0.5)
        consistent = sorted(i for i, c in counts.items() if c >= threshold) if threshold else []
        ratios = [r["outlier_ratio"] for r in reports.values()]
        return MultiSeriesOutlierReport(
            series=reports,
            consistent_outliers=consistent,
            total_series=len(reports),
            series_with_outliers=sum(1 for r in reports.values() if r["outliers"]),
            average_outlier_ratio=fmean(ratios) if ratios else 0.0,
        )

    def detect_adaptive(self, values: list[float]) -> AdaptiveOutlierReport:
        """Widen the fences for skewed or heavy-tailed samples and compare both runs."""
        base = self.detect(values)
        if len(values) < self.min_samples:
            return AdaptiveOutlierReport(
                base=base,
                adapted=base,
                adapted_multiplier=self.multiplier,
                recommendation="Sample too small for adaptive detection.",
            )

        profile = describe_distribution(values)
        multiplier = self.multiplier
        if abs(profile["skewness"]) > 1:
            multiplier *= 1.2
        if abs(profile["kurtosis"]) > 2:
            multiplier *= 1.1
        if not profile["approximately_normal"]:
            multiplier *= 1.1
        multiplier = min(3.0, max(1.0, multiplier))

        adapted = OutlierDetector(multiplier, self.min_samples).detect(values)

        if base["outlier_ratio"] > 0.2:
            recommendation = (
                "High outlier ratio. Review judge output quality or apply a more lenient fence."
            )
        elif adapted["outlier_ratio"] < base["outlier_ratio"] * 0.5:
            recommendation = "Adaptive fences give the more plausible split; prefer the adapted result."
        elif not profile["approximately_normal"]:
            recommendation = "Scores are not approximately normal; consider a non-parametric summary."
        else:
            recommendation = "Default fences are appropriate."

        return AdaptiveOutlierReport(
            base=base,
            adapted=adapted,
            adapted_multiplier=multiplier,
            distribution=profile,
            recommendation=recommendation,
        )
