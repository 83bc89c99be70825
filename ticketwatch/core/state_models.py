from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ticketwatch.core.contracts import FlowState, SiteState, StepStatus


@dataclass(frozen=True)
class ReadinessSignal:
    document_state: str
    spinner_visible: bool
    loading_text_visible: bool
    network_quiet: bool = False

    @property
    def stable(self) -> bool:
        # readyState is corroborating only; SPAs report "complete" long before content renders.
        return not self.spinner_visible and not self.loading_text_visible


@dataclass(frozen=True)
class ReadinessReport:
    converged: bool
    polls: int
    elapsed_ms: int
    last_signal: ReadinessSignal | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "converged": self.converged,
            "polls": self.polls,
            "elapsed_ms": self.elapsed_ms,
            "last_signal": None
            if self.last_signal is None
            else {
                "document_state": self.last_signal.document_state,
                "spinner_visible": self.last_signal.spinner_visible,
                "loading_text_visible": self.last_signal.loading_text_visible,
                "network_quiet": self.last_signal.network_quiet,
            },
        }


@dataclass(frozen=True)
class StepResult:
    name: str
    state: FlowState
    status: StepStatus
    detail: str = ""
    elapsed_ms: int = 0


@dataclass(frozen=True)
class FlowOutcome:
    terminal_state: FlowState
    steps: tuple[StepResult, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "terminal_state": self.terminal_state.value,
            "steps": [
                {
                    "name": step.name,
                    "state": step.state.value,
                    "status": step.status.value,
                    "detail": step.detail,
                    "elapsed_ms": step.elapsed_ms,
                }
                for step in self.steps
            ],
        }


@dataclass(frozen=True)
class PriceStats:
    prices: tuple[float, ...]
    count: int
    avg: float
    median: float
    min: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "prices": list(self.prices),
            "count": self.count,
            "avg": self.avg,
            "median": self.median,
            "min": self.min,
        }


@dataclass
class SessionSnapshot:
    cookies: list[dict[str, Any]] = field(default_factory=list)
    local_storage: dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.cookies and not self.local_storage


@dataclass
class ScrapeResult:
    site: str
    url: str
    site_key: str
    success: bool
    error: str | None = None
    site_state: SiteState | None = None
    flow: FlowOutcome | None = None
    readiness: ReadinessReport | None = None
    network_quiet: bool = False
    stats: PriceStats | None = None
    artifacts: list[dict[str, Any]] = field(default_factory=list)
    telemetry: dict[str, Any] = field(default_factory=dict)
    scraped_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "site": self.site,
            "url": self.url,
            "site_key": self.site_key,
            "success": self.success,
            "error": self.error,
            "site_state": self.site_state.value if self.site_state else None,
            "flow": self.flow.to_dict() if self.flow else None,
            "readiness": self.readiness.to_dict() if self.readiness else None,
            "network_quiet": self.network_quiet,
            "stats": self.stats.to_dict() if self.stats else None,
            "artifacts": list(self.artifacts),
            "telemetry": self.telemetry,
            "scraped_at": self.scraped_at,
        }
