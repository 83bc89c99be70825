from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class TimelineEvent:
    phase: str
    ts: str
    metadata: dict[str, Any] = field(default_factory=dict)


class Telemetry:
    """Phase timeline and counters for one scrape run."""

    def __init__(self) -> None:
        self._start = time.perf_counter()
        self._timeline: list[TimelineEvent] = []
        self._counters: dict[str, int] = {
            "cookies_restored": 0,
            "storage_keys_restored": 0,
            "suspicious_responses": 0,
        }

    def event(self, phase: str, metadata: dict[str, Any] | None = None) -> None:
        self._timeline.append(
            TimelineEvent(
                phase=phase,
                ts=datetime.now(tz=timezone.utc).isoformat(),
                metadata=metadata or {},
            )
        )

    def incr(self, counter: str, value: int = 1) -> None:
        self._counters[counter] = self._counters.get(counter, 0) + value

    def phases(self) -> list[str]:
        return [event.phase for event in self._timeline]

    def snapshot(self) -> dict[str, Any]:
        elapsed_ms = int((time.perf_counter() - self._start) * 1000)
        return {
            "elapsed_ms": elapsed_ms,
            "counters": dict(self._counters),
            "timeline": [
                {"phase": event.phase, "ts": event.ts, "metadata": event.metadata}
                for event in self._timeline
            ],
        }
