"""CLI entry point: python -m consensus_judge <transcript.json> [...]"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from consensus_judge.config import get_settings, load_judge_config
from consensus_judge.contracts import (
    TOTAL_SCORE,
    ConsolidatedResult,
    EvaluationOptions,
    EvaluationRequest,
    Message,
    Rubric,
    Speaker,
    TelemetrySink,
)
from consensus_judge.errors import ConsensusJudgeError
from consensus_judge.event_log.writer import EventLog, NullTelemetry
from consensus_judge.orchestrator import Orchestrator
from consensus_judge.rubric import default_rubric, rubric_from_mapping
from consensus_judge.service import EvaluationService, FailureStrategy


def _generate_run_id() -> str:
    """Generate a unique run ID: eval-YYYYMMDD-HHMMSS-XXXX."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    suffix = os.urandom(2).hex()
    return f"eval-{ts}-{suffix}"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="consensus-judge",
        description="Score customer-service transcripts with several LLM judges",
    )
    parser.add_argument(
        "transcripts",
        type=str,
        nargs="*",
        help="Transcript JSON files (one object, or a list of objects, per file)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Judge config YAML/JSON (default: JUDGE_CONFIG or config/judges.yaml)",
    )
    parser.add_argument(
        "--rubric",
        type=str,
        default=None,
        help="Rubric YAML/JSON (default: built-in customer-service rubric)",
    )
    parser.add_argument(
        "--providers",
        type=str,
        nargs="+",
        default=None,
        help="Restrict evaluation to these provider names",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Request deadline in seconds (default: from config)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write full JSON results to this file instead of stdout",
    )
    parser.add_argument(
        "--parallelism",
        type=int,
        default=None,
        help="Transcripts evaluated concurrently (default: BATCH_PARALLELISM)",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=2,
        help="Re-runs per transcript when every judge fails",
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        default=False,
        help="Stop starting new transcripts after the first failure",
    )
    parser.add_argument(
        "--token-budget",
        type=int,
        default=0,
        help="Skip remaining transcripts once this many tokens are spent (0 = unlimited)",
    )
    parser.add_argument(
        "--health",
        action="store_true",
        default=False,
        help="Probe every configured provider and exit",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        default=False,
        help="Print providers and thresholds and exit",
    )
    parser.add_argument(
        "--no-log",
        action="store_true",
        default=False,
        help="Disable the JSONL event log",
    )
    return parser.parse_args(argv)


def _load_document(path: str | Path) -> Any:
    return yaml.safe_load(Path(path).read_text(encoding="utf-8"))


def request_from_mapping(
    data: dict[str, Any],
    rubric: Rubric,
    options: EvaluationOptions,
) -> EvaluationRequest:
    messages = tuple(
        Message(
            speaker=Speaker(str(m.get("speaker", "customer")).lower()),
            text=str(m.get("text", "")),
            timestamp=str(m.get("timestamp", "") or ""),
        )
        for m in data.get("messages") or []
    )
    history = data.get("historical_scores")
    if history:
        options = replace(options, historical_scores=tuple(float(v) for v in history))
    return EvaluationRequest(
        transcript_id=str(data.get("transcript_id", "")),
        messages=messages,
        rubric=rubric,
        options=options,
        agent_id=str(data.get("agent_id", "") or ""),
        channel=str(data.get("channel", "") or ""),
    )


def load_requests(
    paths: list[str],
    rubric: Rubric,
    options: EvaluationOptions,
) -> list[EvaluationRequest]:
    requests = []
    for path in paths:
        doc = _load_document(path)
        items = doc if isinstance(doc, list) else [doc]
        for item in items:
            requests.append(request_from_mapping(item, rubric, options))
    return requests


def _print_summary(result: ConsolidatedResult) -> None:
    scores = ", ".join(
        f"{dim}={value:.2f}" for dim, value in result.scores.items() if dim != TOTAL_SCORE
    )
    print(
        f"{result.transcript_id}: total={result.total_score:.2f} "
        f"confidence={result.confidence['confidence']:.2f} ({result.reliability}) "
        f"consistency={result.consistency['consistency']:.2f} [{scores}]",
        file=sys.stderr,
    )
    if result.failed_providers:
        print(f"  failed providers: {', '.join(result.failed_providers)}", file=sys.stderr)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()

    errors = settings.validate()
    if errors:
        for err in errors:
            print(f"ERROR: {err}", file=sys.stderr)
        return 1
    for warning in settings.warnings():
        print(f"WARNING: {warning}", file=sys.stderr)

    run_id = _generate_run_id()
    telemetry: TelemetrySink
    event_log: EventLog | None = None
    if settings.event_log_enabled and not args.no_log:
        event_log = EventLog(settings.run_log_dir, run_id)
        telemetry = event_log
    else:
        telemetry = NullTelemetry()

    try:
        config = load_judge_config(args.config or settings.judge_config_path)
        orchestrator = Orchestrator.from_config(config, settings.credentials(), telemetry=telemetry)
    except ConsensusJudgeError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    service = EvaluationService(orchestrator)
    try:
        if args.status:
            print(json.dumps(orchestrator.status(), indent=2, ensure_ascii=False))
            return 0

        if args.health:
            report = await service.health(probe=True)
            print(json.dumps(report, indent=2, ensure_ascii=False))
            return 0 if report["status"] != "unhealthy" else 1

        if not args.transcripts:
            print("ERROR: no transcripts given", file=sys.stderr)
            return 2

        try:
            rubric = rubric_from_mapping(_load_document(args.rubric)) if args.rubric else default_rubric()
        except (OSError, yaml.YAMLError, ConsensusJudgeError) as e:
            print(f"ERROR: cannot read rubric: {e}", file=sys.stderr)
            return 2
        options = EvaluationOptions(
            timeout_s=args.timeout,
            providers=tuple(args.providers) if args.providers else None,
        )
        try:
            requests = load_requests(args.transcripts, rubric, options)
        except (OSError, ValueError, KeyError, TypeError, yaml.YAMLError) as e:
            print(f"ERROR: cannot read transcripts: {e}", file=sys.stderr)
            return 2

        batch = await service.evaluate_batch(
            requests,
            parallelism=args.parallelism or settings.batch_parallelism,
            retries=args.retries,
            failure_strategy=FailureStrategy.FAIL_FAST if args.fail_fast else FailureStrategy.CONTINUE,
            token_budget=args.token_budget,
        )
    finally:
        await orchestrator.registry.aclose()

    payload = []
    for outcome in batch.outcomes:
        if outcome.result is not None:
            _print_summary(outcome.result)
            payload.append(outcome.result.to_dict())
        else:
            label = "SKIPPED" if outcome.skipped else "FAILED"
            print(f"{outcome.transcript_id}: {label}: {outcome.error}", file=sys.stderr)
            payload.append({"transcript_id": outcome.transcript_id, "error": outcome.error})

    text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    if args.output:
        Path(args.output).parent.mkdir(parents=True, exist_ok=True)
        Path(args.output).write_text(text, encoding="utf-8")
        print(f"Results: {args.output}", file=sys.stderr)
    else:
        print(text)

    print(
        f"Done: {batch.succeeded} succeeded, {batch.failed} failed, {batch.skipped} skipped | "
        f"{batch.usage_summary} | {batch.elapsed_s:.1f}s",
        file=sys.stderr,
    )
    for provider, usage in batch.usage_by_provider.items():
        print(
            f"  {provider}: {usage['calls']} calls, "
            f"{usage['input_tokens'] + usage['output_tokens']:,} tokens, ${usage['cost_usd']:.4f}",
            file=sys.stderr,
        )
    if event_log is not None:
        print(f"Event log: {event_log.path}", file=sys.stderr)
    return 0 if batch.failed == 0 else 1


def main() -> None:
    args = parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
