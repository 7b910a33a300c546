"""Append-only JSONL event log for evaluation observability."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from consensus_judge.contracts import TelemetryEvent


def make_event(
    event: str,
    *,
    transcript_id: str = "",
    provider: str = "",
    **data: Any,
) -> TelemetryEvent:
    """Factory for creating a TelemetryEvent with timestamp."""
    return TelemetryEvent(
        event=event,
        ts=datetime.now(timezone.utc).isoformat(),
        transcript_id=transcript_id,
        provider=provider,
        data=data,
    )


class EventLog:
    """JSONL-backed event log for a single evaluation run.

    File-based, directory auto-creation, graceful degradation on read errors.
    """

    _FILENAME = "events.jsonl"

    def __init__(self, log_dir: str | Path, run_id: str) -> None:
        self._dir = Path(log_dir) / run_id
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._dir / self._FILENAME

    def emit(self, event: TelemetryEvent) -> None:
        """Append a single event as a JSON line."""
        line = json.dumps(event, ensure_ascii=False, default=str)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def read_all(self) -> list[TelemetryEvent]:
        """Read all events. Skips corrupt lines, returns [] on missing file."""
        if not self.path.exists():
            return []
        events: list[TelemetryEvent] = []
        try:
            for line in self.path.read_text(encoding="utf-8").splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        except OSError:
            return []
        return events


class NullTelemetry:
    """Sink that drops every event."""

    def emit(self, event: TelemetryEvent) -> None:
        return None


class MemoryTelemetry:
    """Sink that keeps events in a list; used for batch summaries and tests."""

    def __init__(self) -> None:
        self.events: list[TelemetryEvent] = []

    def emit(self, event: TelemetryEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> list[TelemetryEvent]:
        return [e for e in self.events if e["event"] == name]
