"""Central schema validation for every provider's judge output."""

from __future__ import annotations

import json
import math
from typing import Any

from consensus_judge.contracts import (
    TOTAL_SCORE,
    ErrorKind,
    Evidence,
    Rubric,
    ValidatedJudgment,
)
from consensus_judge.errors import ResponseValidationError
from consensus_judge.rubric import category_subtotal, weighted_total

# Self-reported subtotal/total may drift from the recomputed value by this much
# before a warning is attached.
MAX_REPORTED_DEVIATION = 0.1


def extract_json(text: str) -> str:
    """Extract JSON from model response, handling fenced blocks and prose wrapping."""
    cleaned = text.strip()

    # Handle ```json fenced blocks
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")[1:]
        json_lines = []
        for line in lines:
            if line.strip() == "```":
                break
            json_lines.append(line)
        cleaned = "\n".join(json_lines).strip()

    if cleaned.startswith("{"):
        return cleaned

    # Find a JSON object embedded in prose by tracking brace depth
    start = cleaned.find("{")
    if start != -1:
        depth = 0
        for i in range(start, len(cleaned)):
            if cleaned[i] == "{":
                depth += 1
            elif cleaned[i] == "}":
                depth -= 1
                if depth == 0:
                    return cleaned[start : i + 1]
        # No matching close; parsing will report truncation
        return cleaned[start:]

    return ""


def parse_json(provider: str, text: str) -> dict[str, Any]:
    """Parse a judge's raw text into a JSON object or raise a terminal parse error."""
    cleaned = extract_json(text)
    if not cleaned:
        raise ResponseValidationError(
            provider, f"No JSON object in response: {text[:200]!r}", kind=ErrorKind.PARSE
        )
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        stripped = cleaned.rstrip()
        if stripped and stripped[-1] != "}":
            raise ResponseValidationError(
                provider,
                f"Truncated JSON (likely hit max_tokens). Response ends at char {len(cleaned)}",
                kind=ErrorKind.PARSE,
            ) from e
        raise ResponseValidationError(
            provider, f"Failed to parse JSON: {e}", kind=ErrorKind.PARSE
        ) from e
    if not isinstance(data, dict):
        raise ResponseValidationError(provider, "Top-level JSON value must be an object")
    return data


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return result if math.isfinite(result) else None


def _string_list(value: Any) -> list[str] | None:
    if value is None:
        return []
    if not isinstance(value, list):
        return None
    return [str(v).strip() for v in value if str(v).strip()]


def validate_judgment(data: dict[str, Any], rubric: Rubric, provider: str = "") -> ValidatedJudgment:
    """Check a parsed judge response against the rubric.

    Every subcriterion must carry a numeric score inside the rubric scale.
    Category subtotals and the total are recomputed from subcriterion scores;
    a self-reported value that drifts more than MAX_REPORTED_DEVIATION becomes
    a warning, not an error. Raises ResponseValidationError on schema violations.
    """
    problems: list[str] = []
    warnings: list[str] = []
    scale = rubric.scale

    raw_scores = data.get("scores")
    if not isinstance(raw_scores, dict):
        raise ResponseValidationError(provider, "Missing 'scores' object")

    sub_scores: dict[str, dict[str, float]] = {}
    for category in rubric.categories:
        raw_category = raw_scores.get(category.name)
        if not isinstance(raw_category, dict):
            problems.append(f"missing category '{category.name}'")
            continue
        values: dict[str, float] = {}
        for sub in category.subcriteria:
            value = _number(raw_category.get(sub.name))
            if value is None:
                problems.append(f"{category.name}.{sub.name}: missing or non-numeric score")
            elif not scale.contains(value):
                problems.append(
                    f"{category.name}.{sub.name}: {value} outside [{scale.min}, {scale.max}]"
                )
            else:
                values[sub.name] = value
        sub_scores[category.name] = values

    if problems:
        raise ResponseValidationError(provider, "Schema violation: " + "; ".join(problems))

    scores: dict[str, float] = {}
    for category in rubric.categories:
        subtotal = category_subtotal(category, sub_scores[category.name])
        scores[category.name] = subtotal
        reported = _number(raw_scores[category.name].get("subtotal"))
        if reported is not None and abs(reported - subtotal) > MAX_REPORTED_DEVIATION:
            warnings.append(
                f"{category.name}: reported subtotal {reported} differs from computed {subtotal:.3f}"
            )

    total = weighted_total(rubric, scores)
    scores[TOTAL_SCORE] = total
    reported_total = _number(raw_scores.get(TOTAL_SCORE))
    if reported_total is not None and abs(reported_total - total) > MAX_REPORTED_DEVIATION:
        warnings.append(f"{TOTAL_SCORE}: reported {reported_total} differs from computed {total:.3f}")

    raw_evidence = data.get("evidence") or {}
    if not isinstance(raw_evidence, dict):
        warnings.append("evidence is not an object; ignored")
        raw_evidence = {}
    evidence_lists: dict[str, list[str]] = {}
    for key in ("positive", "negative", "quotes"):
        items = _string_list(raw_evidence.get(key))
        if items is None:
            warnings.append(f"evidence.{key} is not a list; ignored")
            items = []
        evidence_lists[key] = items

    improvements = _string_list(data.get("improvements"))
    if improvements is None:
        warnings.append("improvements is not a list; ignored")
        improvements = []

    return ValidatedJudgment(
        scores=scores,
        subcriterion_scores=sub_scores,
        evidence=Evidence(
            positive=evidence_lists["positive"],
            negative=evidence_lists["negative"],
            quotes=evidence_lists["quotes"],
        ),
        improvements=improvements,
        warnings=warnings,
    )
