"""Ticketwatch scraping core."""

from ticketwatch.core.classifier import SiteStateClassifier
from ticketwatch.core.contracts import (
    DriverError,
    ElementNotFound,
    EvidencePredicates,
    FlowOptions,
    FlowState,
    PersistencePolicy,
    QuietOptions,
    ReadinessBudget,
    SiteState,
    StepStatus,
    TicketwatchError,
    WaitTimeout,
)
from ticketwatch.core.engine import EngineConfig, ScrapeEngine, ScrapeTarget
from ticketwatch.core.flow_executor import FlowExecutor, FlowStep, build_search_flow
from ticketwatch.core.jitter import HumanJitter, JitterPolicy
from ticketwatch.core.network_observer import NetworkObserver
from ticketwatch.core.readiness import ReadinessDetector
from ticketwatch.core.session_manager import SessionConfig, SessionManager
from ticketwatch.core.session_store import SnapshotGate, SnapshotStore
from ticketwatch.core.site_profiles import DEFAULT_PROFILES, SiteProfile, select_profile
from ticketwatch.core.state_models import FlowOutcome, PriceStats, ReadinessReport, ScrapeResult
from ticketwatch.core.telemetry_sink import JsonlTelemetrySink, NullTelemetrySink, TelemetrySink

__all__ = [
    "DEFAULT_PROFILES",
    "DriverError",
    "ElementNotFound",
    "EngineConfig",
    "EvidencePredicates",
    "FlowExecutor",
    "FlowOptions",
    "FlowOutcome",
    "FlowState",
    "FlowStep",
    "HumanJitter",
    "JitterPolicy",
    "JsonlTelemetrySink",
    "NetworkObserver",
    "NullTelemetrySink",
    "PersistencePolicy",
    "PriceStats",
    "QuietOptions",
    "ReadinessBudget",
    "ReadinessDetector",
    "ReadinessReport",
    "ScrapeEngine",
    "ScrapeResult",
    "ScrapeTarget",
    "SessionConfig",
    "SessionManager",
    "SiteProfile",
    "SiteState",
    "SiteStateClassifier",
    "SnapshotGate",
    "SnapshotStore",
    "StepStatus",
    "TelemetrySink",
    "TicketwatchError",
    "WaitTimeout",
    "build_search_flow",
    "select_profile",
]
