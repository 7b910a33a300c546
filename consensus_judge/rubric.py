"""Rubric model: default customer-service rubric, loading, weight checks, weighted scores."""

from __future__ import annotations

from typing import Any

from consensus_judge.contracts import TOTAL_SCORE, Category, Rubric, ScoreScale, Subcriterion
from consensus_judge.errors import ConfigurationError

WEIGHT_TOLERANCE = 0.01

_DEFAULT_CATEGORIES: list[tuple[str, float, str, list[tuple[str, float, str]]]] = [
    (
        "work_competence",
        0.60,
        "Ability to understand and resolve the customer's issue",
        [
            ("query_understanding", 0.15, "Grasps what the customer is actually asking"),
            ("resolution_initiative", 0.10, "Actively investigates and drives toward a fix"),
            ("answer_accuracy", 0.15, "Answers are correct and fit the question"),
            ("domain_expertise", 0.05, "Shows product and policy knowledge"),
            ("responsiveness", 0.10, "Replies promptly without needless delays"),
            ("empathy", 0.05, "Acknowledges the customer's situation"),
        ],
    ),
    (
        "writing",
        0.25,
        "Quality of the written replies",
        [
            ("spelling", 0.05, "Correct spelling and grammar"),
            ("appropriate_language", 0.05, "Polite, professional register"),
            ("plain_wording", 0.10, "Avoids jargon; easy to follow"),
            ("step_by_step_guidance", 0.05, "Instructions broken into clear steps"),
        ],
    ),
    (
        "basic_attitude",
        0.15,
        "Baseline courtesy",
        [
            ("greeting_and_follow_up", 0.10, "Greets and offers further help"),
            ("apology_expressions", 0.05, "Apologises where the situation calls for it"),
        ],
    ),
]


def default_rubric() -> Rubric:
    """Customer-service rubric v1.0 on a 1-5 scale."""
    categories = tuple(
        Category(
            name=name,
            weight=weight,
            description=description,
            subcriteria=tuple(Subcriterion(n, w, d) for n, w, d in subs),
        )
        for name, weight, description, subs in _DEFAULT_CATEGORIES
    )
    return Rubric(version="1.0", categories=categories, scale=ScoreScale(1.0, 5.0))


def _field(raw: Any, key: str, where: str) -> Any:
    if not isinstance(raw, dict) or key not in raw:
        raise ConfigurationError(f"rubric {where}: missing '{key}'")
    return raw[key]


def _weight(raw: Any, where: str) -> float:
    value = _field(raw, "weight", where)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"rubric {where}: weight must be a number, got {value!r}") from None


def rubric_from_mapping(data: dict[str, Any]) -> Rubric:
    """Build a Rubric from a parsed YAML/JSON document.

    Raises ConfigurationError naming the first missing or malformed field.

    Expected shape::

        version: "2.0"
        scale: {min: 1, max: 5}
        categories:
          - name: work_competence
            weight: 0.6
            subcriteria:
              - {name: answer_accuracy, weight: 0.6}
    """
    if not isinstance(data, dict):
        raise ConfigurationError("rubric document must be a mapping")
    scale_data = data.get("scale") or {}
    try:
        scale = ScoreScale(float(scale_data.get("min", 1.0)), float(scale_data.get("max", 5.0)))
    except (AttributeError, TypeError, ValueError):
        raise ConfigurationError(f"rubric scale must be {{min, max}} numbers, got {scale_data!r}") from None
    categories = []
    for i, raw in enumerate(data.get("categories") or []):
        name = str(_field(raw, "name", f"category #{i + 1}"))
        subs = tuple(
            Subcriterion(
                name=str(_field(s, "name", f"{name} subcriterion #{j + 1}")),
                weight=_weight(s, f"{name} subcriterion #{j + 1}"),
                description=str(s.get("description", "")),
            )
            for j, s in enumerate(raw.get("subcriteria") or [])
        )
        categories.append(
            Category(
                name=name,
                weight=_weight(raw, name),
                subcriteria=subs,
                description=str(raw.get("description", "")),
            )
        )
    return Rubric(version=str(data.get("version", "1.0")), categories=tuple(categories), scale=scale)


def validate_rubric(rubric: Rubric) -> list[str]:
    """Return list of weight/shape errors. Empty list means valid."""
    errors = []
    if rubric.scale.min >= rubric.scale.max:
        errors.append(f"scale min ({rubric.scale.min}) must be below max ({rubric.scale.max})")
    if not rubric.categories:
        errors.append("rubric has no categories")
        return errors

    names = [c.name for c in rubric.categories]
    if len(names) != len(set(names)):
        errors.append("category names must be unique")
    if TOTAL_SCORE in names:
        errors.append(f"'{TOTAL_SCORE}' is reserved and cannot be a category name")

    total_weight = sum(c.weight for c in rubric.categories)
    if abs(total_weight - 1.0) > WEIGHT_TOLERANCE:
        errors.append(f"category weights sum to {total_weight:.4f}, expected 1.0")

    for category in rubric.categories:
        if category.weight <= 0:
            errors.append(f"{category.name}: weight must be > 0")
        if not category.subcriteria:
            errors.append(f"{category.name}: no subcriteria")
            continue
        for sub in category.subcriteria:
            if sub.weight <= 0:
                errors.append(f"{category.name}.{sub.name}: weight must be > 0")
        sub_weight = sum(s.weight for s in category.subcriteria)
        if abs(sub_weight - category.weight) > WEIGHT_TOLERANCE:
            errors.append(
                f"{category.name}: subcriterion weights sum to {sub_weight:.4f}, "
                f"expected {category.weight}"
            )
    return errors


def category_subtotal(category: Category, sub_scores: dict[str, float]) -> float:
    """Weighted subtotal of one category, back on the score scale."""
    weighted = sum(sub_scores[s.name] * s.weight for s in category.subcriteria)
    return weighted / category.weight


def weighted_total(rubric: Rubric, subtotals: dict[str, float]) -> float:
    return sum(subtotals[c.name] * c.weight for c in rubric.categories)


def clamp(value: float, scale: ScoreScale) -> float:
    return min(scale.max, max(scale.min, value))
