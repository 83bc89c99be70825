"""Environment-driven settings for the scheduler and MCP server.

Values come from the process environment after ``load_dotenv()`` has merged
a ``.env`` file (existing variables win). Malformed numbers fall back to
their defaults rather than aborting start-up.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv

from ticketwatch.core.contracts import FlowOptions, PersistencePolicy
from ticketwatch.core.engine import EngineConfig, ScrapeTarget
from ticketwatch.core.session_manager import DEFAULT_USER_AGENT, SessionConfig

logger = logging.getLogger("ticketwatch.config")

DEFAULT_SCHEDULE_CRON = "*/30 * * * *"

# Env var -> profile name, in scheduling order.
TARGET_ENV_VARS: tuple[tuple[str, str], ...] = (
    ("STUBHUB_URL", "stubhub"),
    ("TICKETMASTER_URL", "ticketmaster"),
    ("VIVIDSEATS_URL", "vividseats"),
    ("SEATGEEK_URL", "seatgeek"),
)

_LIST_SPLIT_RE = re.compile(r"[\n,;]+")
_TRUTHY = {"1", "true", "yes", "on"}


def split_urls(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in _LIST_SPLIT_RE.split(raw) if part.strip()]


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning("[Config] %s=%r is not an integer; using %d", key, raw, default)
        return default


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def _opt(env: Mapping[str, str], key: str) -> Optional[str]:
    value = (env.get(key) or "").strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    persist_level: PersistencePolicy = PersistencePolicy.LIGHT
    nav_timeout_ms: int = 90_000
    session_base_dir: str = ".session_data"
    artifact_dir: Optional[str] = None
    telemetry_dir: str = ".ticketwatch-telemetry"
    ws_endpoint: Optional[str] = None
    headless: bool = False
    timezone_id: str = "America/Los_Angeles"
    user_agent: str = DEFAULT_USER_AGENT
    artist_name: Optional[str] = None
    event_date: Optional[str] = None
    venue_name: Optional[str] = None
    venue_city: Optional[str] = None
    venue_state: Optional[str] = None
    readiness_timeout_ms: int = 15_000
    flow_step_timeout_ms: int = 4_500
    schedule_cron: str = DEFAULT_SCHEDULE_CRON
    targets: tuple[ScrapeTarget, ...] = field(default_factory=tuple)
    log_level: str = "INFO"

    def flow_options(self) -> FlowOptions:
        return FlowOptions(
            target_text_query=self.artist_name,
            target_date_iso=self.event_date,
            target_venue_name=self.venue_name,
            target_venue_city=self.venue_city,
            target_venue_state=self.venue_state,
            persistence_policy=self.persist_level,
            readiness_timeout_ms=self.readiness_timeout_ms,
            flow_step_timeout_ms=self.flow_step_timeout_ms,
        )

    def session_config(self) -> SessionConfig:
        return SessionConfig(
            headless=self.headless,
            ws_endpoint=self.ws_endpoint,
            user_agent=self.user_agent,
            timezone_id=self.timezone_id,
            nav_timeout_ms=self.nav_timeout_ms,
        )

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            session_base_dir=self.session_base_dir,
            artifact_root_dir=self.artifact_dir,
            nav_timeout_ms=self.nav_timeout_ms,
        )


def load_settings(env_file: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build ``Settings``; pass ``environ`` to bypass the process environment and .env."""
    if environ is None:
        load_dotenv(env_file)
        environ = os.environ
    env = environ

    targets: list[ScrapeTarget] = []
    for key, site in TARGET_ENV_VARS:
        targets.extend(ScrapeTarget(url=url, site=site) for url in split_urls(env.get(key)))

    return Settings(
        persist_level=PersistencePolicy.parse(env.get("PERSIST_LEVEL")),
        nav_timeout_ms=_int(env, "NAV_TIMEOUT_MS", 90_000),
        session_base_dir=_opt(env, "SESSION_BASE_DIR") or ".session_data",
        artifact_dir=_opt(env, "ARTIFACT_DIR"),
        telemetry_dir=_opt(env, "TELEMETRY_DIR") or ".ticketwatch-telemetry",
        ws_endpoint=_opt(env, "BRIGHT_DATA_SCRAPING_BROWSER_WEBSOCKET_ENDPOINT"),
        headless=_bool(env, "HEADLESS", False),
        timezone_id=_opt(env, "TIMEZONE") or "America/Los_Angeles",
        user_agent=_opt(env, "USER_AGENT") or DEFAULT_USER_AGENT,
        artist_name=_opt(env, "ARTIST_NAME"),
        event_date=_opt(env, "EVENT_DATE"),
        venue_name=_opt(env, "VENUE_NAME"),
        venue_city=_opt(env, "VENUE_CITY"),
        venue_state=_opt(env, "VENUE_STATE"),
        readiness_timeout_ms=_int(env, "READINESS_TIMEOUT_MS", 15_000),
        flow_step_timeout_ms=_int(env, "FLOW_STEP_TIMEOUT_MS", 4_500),
        schedule_cron=_opt(env, "SCHEDULE_CRON") or DEFAULT_SCHEDULE_CRON,
        targets=tuple(targets),
        log_level=(_opt(env, "LOG_LEVEL") or "INFO").upper(),
    )
