"""Judge prompts shared by every provider."""

from __future__ import annotations

import json

from consensus_judge.contracts import TOTAL_SCORE, EvaluationRequest, Rubric, Speaker

JUDGE_SYSTEM = """\
You are an experienced quality-assurance reviewer for a customer-service \
team. Score the agent's handling of one chat transcript against the rubric \
below. Judge only the agent's messages; customer and automated messages are \
context.

Score every subcriterion from {min:g} to {max:g} (decimals allowed):
{max:g} = exemplary, nothing to improve
{mid:g} = adequate, some clear gaps
{min:g} = failed the criterion

Rubric (version {version}):
{rubric_lines}

Ground every judgment in the transcript. Quote the agent verbatim in \
"quotes". Keep each evidence item and improvement to one sentence.

Output STRICT JSON, no prose:
{schema}
"""

_SPEAKER_LABELS = {
    Speaker.CUSTOMER: "CUSTOMER",
    Speaker.AGENT: "AGENT",
    Speaker.AUTOMATED: "SYSTEM",
}


def _rubric_lines(rubric: Rubric) -> str:
    lines = []
    for category in rubric.categories:
        summary = f": {category.description}" if category.description else ""
        lines.append(f"- {category.name} (weight {category.weight:g}){summary}")
        for sub in category.subcriteria:
            detail = f": {sub.description}" if sub.description else ""
            lines.append(f"    - {sub.name} (weight {sub.weight:g}){detail}")
    return "\n".join(lines)


def _schema_example(rubric: Rubric) -> str:
    mid = (rubric.scale.min + rubric.scale.max) / 2
    scores: dict = {}
    for category in rubric.categories:
        entry = {sub.name: mid for sub in category.subcriteria}
        entry["subtotal"] = mid
        scores[category.name] = entry
    scores[TOTAL_SCORE] = mid
    example = {
        "scores": scores,
        "evidence": {"positive": ["..."], "negative": ["..."], "quotes": ["..."]},
        "improvements": ["..."],
    }
    return json.dumps(example, ensure_ascii=False, indent=2)


def build_system_prompt(rubric: Rubric) -> str:
    return JUDGE_SYSTEM.format(
        min=rubric.scale.min,
        max=rubric.scale.max,
        mid=(rubric.scale.min + rubric.scale.max) / 2,
        version=rubric.version,
        rubric_lines=_rubric_lines(rubric),
        schema=_schema_example(rubric),
    )


def build_user_prompt(request: EvaluationRequest) -> str:
    header = [f"Transcript ID: {request.transcript_id}"]
    if request.agent_id:
        header.append(f"Agent: {request.agent_id}")
    if request.channel:
        header.append(f"Channel: {request.channel}")

    turns = []
    for message in request.messages:
        stamp = f"[{message.timestamp}] " if message.timestamp else ""
        turns.append(f"{stamp}{_SPEAKER_LABELS[message.speaker]}: {message.text}")

    return "\n".join(header) + "\n\nTRANSCRIPT:\n" + "\n".join(turns) + "\n\nReturn the JSON evaluation."
