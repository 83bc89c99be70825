from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from playwright.async_api import Page
from playwright.async_api import Error as PlaywrightError

from ticketwatch.core.artifact_manager import ArtifactManager
from ticketwatch.core.classifier import SiteStateClassifier
from ticketwatch.core.contracts import (
    DriverError,
    ElementNotFound,
    FlowOptions,
    QuietOptions,
    ReadinessBudget,
    WaitTimeout,
)
from ticketwatch.core.flow_executor import FlowExecutor
from ticketwatch.core.jitter import HumanJitter, JitterPolicy
from ticketwatch.core.network_observer import NetworkObserver
from ticketwatch.core.readiness import ReadinessDetector
from ticketwatch.core.session_manager import BrowserSession, SessionConfig, SessionManager
from ticketwatch.core.session_store import SnapshotGate, SnapshotStore, site_key_from_url
from ticketwatch.core.site_profiles import DEFAULT_PROFILES, SiteProfile, profile_by_name, select_profile
from ticketwatch.core.state_models import ScrapeResult
from ticketwatch.core.telemetry import Telemetry
from ticketwatch.core.telemetry_sink import NullTelemetrySink, TelemetrySink, scrape_result_event
from ticketwatch.core.wait_manager import WaitManager

logger = logging.getLogger("ticketwatch.engine")

APP_ROOT_SELECTOR = "#__next, main"


@dataclass(frozen=True)
class ScrapeTarget:
    url: str
    site: str | None = None
    options: FlowOptions | None = None


@dataclass(frozen=True)
class EngineConfig:
    session_base_dir: str = ".session_data"
    artifact_root_dir: str | None = None
    nav_timeout_ms: int = 90_000
    root_selector_timeout_ms: int = 15_000
    readiness_poll_interval_ms: int = 250
    classifier_poll_interval_ms: int = 800
    quiet: QuietOptions = field(default_factory=QuietOptions)
    jitter: JitterPolicy = field(default_factory=JitterPolicy)


class ScrapeEngine:
    """Orchestrates one scrape per target.

    navigate -> restore snapshot -> readiness -> quiescence -> profile prep ->
    classify -> interactive flow -> capture -> persist. Only ``DriverError``
    interrupts the sequence; everything else degrades and continues, and
    artifacts are written however far the run got.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        session_config: SessionConfig | None = None,
        flow_options: FlowOptions | None = None,
        telemetry_sink: TelemetrySink | None = None,
        profiles: tuple[SiteProfile, ...] = DEFAULT_PROFILES,
        session_manager: SessionManager | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._sessions = session_manager or SessionManager(session_config)
        self._options = flow_options or FlowOptions()
        self._sink = telemetry_sink or NullTelemetrySink()
        self._profiles = profiles
        self._artifacts = ArtifactManager(root_dir=self._config.artifact_root_dir or self._config.session_base_dir)
        self._classifier = SiteStateClassifier(poll_interval_ms=self._config.classifier_poll_interval_ms)
        self._ledger: dict[str, ScrapeResult] = {}
        self._lock = asyncio.Lock()

    @property
    def default_options(self) -> FlowOptions:
        return self._options

    @property
    def profiles(self) -> tuple[SiteProfile, ...]:
        return self._profiles

    def last_result(self, site_key: str) -> Optional[ScrapeResult]:
        return self._ledger.get(site_key)

    def resolve_profile(self, site_key: str, site: str | None = None) -> SiteProfile:
        if site:
            named = profile_by_name(site, self._profiles)
            if named is not None:
                return named
        return select_profile(site_key, self._profiles)

    def _store_for(self, options: FlowOptions) -> SnapshotStore:
        return SnapshotStore(root_dir=self._config.session_base_dir, gate=SnapshotGate(options.persistence_policy))

    async def run_scrape(self, url: str, site: str | None = None, options: FlowOptions | None = None) -> ScrapeResult:
        options = options or self._options
        site_key = site_key_from_url(url)
        profile = self.resolve_profile(site_key, site)
        telemetry = Telemetry()
        result = ScrapeResult(
            site=site or profile.name,
            url=url,
            site_key=site_key,
            success=False,
            scraped_at=datetime.now(tz=timezone.utc).isoformat(),
        )
        logger.info("[Engine] starting scrape for %s at %s (profile=%s)", result.site, url, profile.name)
        telemetry.event("scrape_start", {"url": url, "profile": profile.name})

        try:
            async with self._sessions.open() as session:
                await self._scrape_in_session(session, url, site_key, profile, options, telemetry, result)
        except DriverError as exc:
            result.error = str(exc)
            logger.error("[Engine] driver failure for %s: %s", url, exc)
            telemetry.event("driver_error", {"error": str(exc)})

        telemetry.event("scrape_end", {"success": result.success})
        result.telemetry = telemetry.snapshot()
        async with self._lock:
            self._ledger[site_key] = result
        await self._sink.emit(scrape_result_event(result))
        return result

    async def scrape_all(self, targets: Sequence[ScrapeTarget]) -> list[ScrapeResult]:
        """Run targets concurrently; one target's failure never cancels another."""
        outcomes = await asyncio.gather(
            *(self.run_scrape(t.url, site=t.site, options=t.options) for t in targets),
            return_exceptions=True,
        )
        results: list[ScrapeResult] = []
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("[Engine] scrape for %s failed: %r", target.url, outcome)
                continue
            results.append(outcome)
        return results

    async def _scrape_in_session(
        self,
        session: BrowserSession,
        url: str,
        site_key: str,
        profile: SiteProfile,
        options: FlowOptions,
        telemetry: Telemetry,
        result: ScrapeResult,
    ) -> None:
        page = session.page
        store = self._store_for(options)
        observer = NetworkObserver()
        await observer.attach(page)
        try:
            try:
                await self._drive(session, url, site_key, profile, options, store, observer, telemetry, result)
                result.success = True
            except DriverError as exc:
                result.error = str(exc)
                logger.error("[Engine] driver failure for %s: %s", url, exc)
                telemetry.event("driver_error", {"error": str(exc)})
            await self._capture(page, site_key, profile, store, observer, telemetry, result)
        finally:
            await observer.detach()

    async def _goto_loose(self, page: Page, waits: WaitManager, url: str) -> None:
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self._config.nav_timeout_ms)
        except PlaywrightError as exc:
            raise DriverError(f"navigation to {url} failed: {exc}") from exc
        await self._await_app_root(waits)

    async def _reload(self, page: Page, waits: WaitManager) -> None:
        try:
            await page.reload(wait_until="domcontentloaded", timeout=self._config.nav_timeout_ms)
        except PlaywrightError as exc:
            raise DriverError(f"reload failed: {exc}") from exc
        await self._await_app_root(waits)

    async def _await_app_root(self, waits: WaitManager) -> None:
        try:
            await waits.wait_for_selector("body", timeout_ms=self._config.root_selector_timeout_ms, state="attached")
            await waits.wait_for_selector(
                APP_ROOT_SELECTOR,
                timeout_ms=self._config.root_selector_timeout_ms,
                state="attached",
            )
        except ElementNotFound as exc:
            logger.debug("[Engine] app root not found: %s", exc)

    async def _drive(
        self,
        session: BrowserSession,
        url: str,
        site_key: str,
        profile: SiteProfile,
        options: FlowOptions,
        store: SnapshotStore,
        observer: NetworkObserver,
        telemetry: Telemetry,
        result: ScrapeResult,
    ) -> None:
        page = session.page
        waits = WaitManager(page)
        jitter = HumanJitter(self._config.jitter)
        readiness = ReadinessDetector(jitter=jitter).with_extra_loaders(profile.loader_selectors)

        await self._goto_loose(page, waits, url)
        telemetry.event("navigated", {"url": page.url})

        restored_cookies = await store.restore_cookies(session.context, site_key)
        telemetry.incr("cookies_restored", restored_cookies)
        await self._reload(page, waits)
        try:
            restored_keys = await store.restore_local_storage(page, site_key)
        except PlaywrightError as exc:
            logger.warning("[Engine] localStorage restore failed: %s", exc)
            restored_keys = 0
        telemetry.incr("storage_keys_restored", restored_keys)
        await self._reload(page, waits)
        telemetry.event("snapshot_restored", {"cookies": restored_cookies, "storage_keys": restored_keys})

        await jitter.pause(600, 1_500)
        await jitter.jitter(page)

        budget = ReadinessBudget.clamped(
            options.readiness_timeout_ms,
            min(self._config.readiness_poll_interval_ms, max(1, options.readiness_timeout_ms)),
        )
        result.readiness = await readiness.await_stable(page, budget)
        telemetry.event("readiness", {"converged": result.readiness.converged, "polls": result.readiness.polls})

        try:
            await observer.await_quiet(self._config.quiet)
            result.network_quiet = True
        except WaitTimeout as exc:
            logger.info("[Engine] %s", exc)
        telemetry.event("network_quiet", {"quiet": result.network_quiet, "inflight": observer.inflight})

        if profile.prepare is not None:
            try:
                await profile.prepare(page, waits, jitter)
                telemetry.event("profile_prepared", {"profile": profile.name})
            except (PlaywrightError, ElementNotFound, WaitTimeout) as exc:
                logger.warning("[Engine] %s preparation failed: %s", profile.name, exc)

        if profile.has_semantics:
            result.site_state = await self._classifier.classify(page, profile.evidence, profile.classify_timeout_ms)
            telemetry.event("classified", {"state": result.site_state.value})

        if options.has_interactive_goal and profile.flow_factory is not None:
            steps = profile.flow_factory(options.flow_step_timeout_ms, options.target_text_query)
            executor = FlowExecutor(steps, jitter=jitter, readiness=readiness)
            result.flow = await executor.run(page, options)
            telemetry.event("flow", {"terminal_state": result.flow.terminal_state.value})
            await readiness.await_stable(page, budget)

    def _annotation(self, profile: SiteProfile, result: ScrapeResult) -> dict[str, Any]:
        return {
            "site": result.site,
            "url": result.url,
            "profile": profile.name,
            "scraped_at": result.scraped_at,
            "success": result.success,
            "error": result.error,
            "site_state": result.site_state.value if result.site_state else None,
            "flow": result.flow.to_dict() if result.flow else None,
            "readiness": result.readiness.to_dict() if result.readiness else None,
            "network_quiet": result.network_quiet,
        }

    async def _capture(
        self,
        page: Page,
        site_key: str,
        profile: SiteProfile,
        store: SnapshotStore,
        observer: NetworkObserver,
        telemetry: Telemetry,
        result: ScrapeResult,
    ) -> None:
        html: str | None = None
        try:
            html = await page.content()
            records = await self._artifacts.capture_page(page, site_key, self._annotation(profile, result), html=html)
            result.artifacts.extend(record.to_dict() for record in records)
            for record in records:
                logger.info("[Engine] saved %s: %s", record.kind, record.path)
        except (PlaywrightError, OSError) as exc:
            logger.warning("[Engine] artifact capture failed for %s: %s", site_key, exc)

        if html is not None:
            result.stats = profile.parser(html)
            telemetry.event("parsed", {"count": result.stats.count, "min": result.stats.min})

        if result.success:
            try:
                await store.persist(page, site_key)
            except (PlaywrightError, OSError) as exc:
                logger.warning("[Engine] snapshot persist failed for %s: %s", site_key, exc)

        suspicious = observer.drain_suspicious()
        telemetry.incr("suspicious_responses", len(suspicious))
        try:
            for item in suspicious:
                stamp = ArtifactManager.timestamp_ms()
                record = self._artifacts.write_text(site_key, "suspicious", f"suspicious_response_{stamp}.html", item.body)
                result.artifacts.append(record.to_dict())
            log_record = self._artifacts.write_json(site_key, "network_log", "network_log.json", observer.network_log())
            result.artifacts.append(log_record.to_dict())
        except OSError as exc:
            logger.warning("[Engine] network log write failed for %s: %s", site_key, exc)
