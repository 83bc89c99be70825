from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TicketwatchError(Exception):
    """Base class for errors raised by the scraping core."""


class WaitTimeout(TicketwatchError):
    """A bounded wait exceeded its budget. Callers degrade and proceed."""


class ElementNotFound(TicketwatchError):
    """A selector or text predicate never matched."""


class DriverError(TicketwatchError):
    """The browser connection itself failed. Surfaced to the orchestrator."""


class SiteState(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    INDETERMINATE = "indeterminate"


class PersistencePolicy(str, Enum):
    NONE = "none"
    LIGHT = "light"
    FULL = "full"

    @classmethod
    def parse(cls, value: str | None, default: "PersistencePolicy | None" = None) -> "PersistencePolicy":
        fallback = default or cls.LIGHT
        if not value:
            return fallback
        try:
            return cls(value.strip().lower())
        except ValueError:
            return fallback


class FlowState(str, Enum):
    START = "start"
    CONSENT_DISMISSED = "consent_dismissed"
    SEARCH_FOCUSED = "search_focused"
    QUERY_TYPED = "query_typed"
    RESULTS_SUBMITTED = "results_submitted"
    TILE_MATCHED = "tile_matched"
    DONE = "done"


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ReadinessBudget:
    timeout_ms: int = 15_000
    poll_interval_ms: int = 250

    def __post_init__(self) -> None:
        if self.timeout_ms < 0 or self.poll_interval_ms <= 0:
            raise ValueError("ReadinessBudget requires timeout_ms >= 0 and poll_interval_ms > 0")
        if self.poll_interval_ms > self.timeout_ms:
            raise ValueError("ReadinessBudget.poll_interval_ms must not exceed timeout_ms")

    @classmethod
    def clamped(cls, timeout_ms: int, poll_interval_ms: int = 250) -> "ReadinessBudget":
        """Budget for caller-supplied limits; a zero or negative timeout becomes a single poll."""
        poll = max(1, int(poll_interval_ms))
        return cls(timeout_ms=max(poll, int(timeout_ms)), poll_interval_ms=poll)


@dataclass(frozen=True)
class QuietOptions:
    idle_ms: int = 800
    max_inflight: int = 2
    timeout_ms: int = 10_000


@dataclass(frozen=True)
class EvidencePredicates:
    """Text patterns (case-insensitive regex sources) and selectors per outcome."""

    present_text_patterns: tuple[str, ...] = ()
    present_selectors: tuple[str, ...] = ()
    absent_text_patterns: tuple[str, ...] = ()
    absent_selectors: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (
            self.present_text_patterns
            or self.present_selectors
            or self.absent_text_patterns
            or self.absent_selectors
        )

    def to_script_arg(self) -> dict[str, list[str]]:
        return {
            "presentText": list(self.present_text_patterns),
            "presentSelectors": list(self.present_selectors),
            "absentText": list(self.absent_text_patterns),
            "absentSelectors": list(self.absent_selectors),
        }


@dataclass(frozen=True)
class FlowOptions:
    target_text_query: str | None = None
    target_date_iso: str | None = None
    target_venue_name: str | None = None
    target_venue_city: str | None = None
    target_venue_state: str | None = None
    persistence_policy: PersistencePolicy = PersistencePolicy.LIGHT
    readiness_timeout_ms: int = 15_000
    flow_step_timeout_ms: int = 4_500

    @property
    def has_interactive_goal(self) -> bool:
        return bool(self.target_text_query and self.target_text_query.strip())

    def venue_constraints(self) -> tuple[str, ...]:
        values = (self.target_venue_name, self.target_venue_city, self.target_venue_state)
        return tuple(value.strip() for value in values if value and value.strip())
