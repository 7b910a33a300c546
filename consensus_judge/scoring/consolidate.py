"""Merge successful judge outputs into one rubric score, evidence set and improvement list."""

from __future__ import annotations

from statistics import fmean, median

from consensus_judge.contracts import Evidence, JudgeResult, OutlierReport, Rubric
from consensus_judge.rubric import clamp
from consensus_judge.scoring.outliers import OutlierDetector


def central_value(report: OutlierReport) -> float:
    """Mean of inliers; the median of the full sample when everything was flagged."""
    if report["inliers"]:
        return fmean(report["inliers"])
    return median(report["values"])


def consolidate_values(
    values: list[float],
    detector: OutlierDetector,
) -> tuple[float, OutlierReport]:
    """One consolidated value for one dimension.

    Samples at or above the detector's ``min_samples`` are filtered for
    outliers first; smaller ones are averaged as-is.
    """
    if not values:
        raise ValueError("cannot consolidate an empty sample")
    report = detector.detect(values)
    return central_value(report), report


def consolidate_scores(
    results: list[JudgeResult],
    rubric: Rubric,
    detector: OutlierDetector,
) -> tuple[dict[str, float], dict[str, dict[str, float]], dict[str, OutlierReport]]:
    """Consolidate every dimension and subcriterion over successful results.

    Returns (scores, subcriterion_scores, outlier reports keyed by dimension).
    """
    successful = [r for r in results if r.success]
    scores: dict[str, float] = {}
    reports: dict[str, OutlierReport] = {}
    for dimension in rubric.dimensions:
        values = [r.scores[dimension] for r in successful if dimension in r.scores]
        if not values:
            continue
        value, report = consolidate_values(values, detector)
        scores[dimension] = clamp(value, rubric.scale)
        reports[dimension] = report

    sub_scores: dict[str, dict[str, float]] = {}
    for category in rubric.categories:
        merged: dict[str, float] = {}
        for sub in category.subcriteria:
            values = [
                r.subcriterion_scores[category.name][sub.name]
                for r in successful
                if sub.name in r.subcriterion_scores.get(category.name, {})
            ]
            if values:
                value, _ = consolidate_values(values, detector)
                merged[sub.name] = clamp(value, rubric.scale)
        sub_scores[category.name] = merged

    return scores, sub_scores, reports


def _normalize(text: str) -> str:
    return " ".join(text.split()).casefold()


def merge_unique(groups: list[list[str]]) -> list[str]:
    """Order-preserving union; duplicates compared case- and whitespace-insensitively."""
    seen: set[str] = set()
    merged: list[str] = []
    for group in groups:
        for item in group:
            key = _normalize(item)
            if key and key not in seen:
                seen.add(key)
                merged.append(item.strip())
    return merged


def merge_evidence(results: list[JudgeResult]) -> Evidence:
    successful = [r for r in results if r.success]
    return Evidence(
        positive=merge_unique([r.evidence["positive"] for r in successful]),
        negative=merge_unique([r.evidence["negative"] for r in successful]),
        quotes=merge_unique([r.evidence["quotes"] for r in successful]),
    )


def merge_improvements(results: list[JudgeResult]) -> list[str]:
    return merge_unique([list(r.improvements) for r in results if r.success])
