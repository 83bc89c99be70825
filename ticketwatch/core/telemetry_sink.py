from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ticketwatch.core.state_models import ScrapeResult


class TelemetrySink:
    async def emit(self, event: dict[str, Any]) -> None:
        raise NotImplementedError


class NullTelemetrySink(TelemetrySink):
    async def emit(self, event: dict[str, Any]) -> None:
        return None


class JsonlTelemetrySink(TelemetrySink):
    def __init__(self, root_dir: str = ".ticketwatch-telemetry") -> None:
        self._root = Path(root_dir)
        self._root.mkdir(parents=True, exist_ok=True)
        self._file = self._root / "events.jsonl"

    @property
    def path(self) -> Path:
        return self._file

    async def emit(self, event: dict[str, Any]) -> None:
        payload = json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str)
        with self._file.open("a", encoding="utf-8") as file_handle:
            file_handle.write(payload + "\n")


def scrape_result_event(result: ScrapeResult) -> dict[str, Any]:
    stats = result.stats
    return {
        "event": "scrape_result",
        "source": result.site,
        "url": result.url,
        "site_key": result.site_key,
        "scraped_at": result.scraped_at,
        "success": result.success,
        "error": result.error,
        "site_state": result.site_state.value if result.site_state else None,
        "flow_terminal_state": result.flow.terminal_state.value if result.flow else None,
        "count": stats.count if stats else 0,
        "avg": stats.avg if stats else 0.0,
        "median": stats.median if stats else 0.0,
        "min": stats.min if stats else 0.0,
    }
