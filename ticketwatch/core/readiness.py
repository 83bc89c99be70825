from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

from playwright.async_api import Page

from ticketwatch.core.contracts import ReadinessBudget
from ticketwatch.core.jitter import HumanJitter
from ticketwatch.core.state_models import ReadinessReport, ReadinessSignal

logger = logging.getLogger("ticketwatch.readiness")

DEFAULT_LOADER_SELECTORS: tuple[str, ...] = (
    '[aria-busy="true"]',
    '[role="progressbar"]',
    '[class*="spinner" i]',
    '[class*="loading" i]',
    '[data-testid*="spinner" i]',
    '[data-testid*="loading" i]',
    '[data-qa*="loading" i]',
)

LOADING_TEXT_PATTERN = r"(^|\n)\s*(loading|please wait|fetching tickets|finding (the )?best seats)[.…\s]*($|\n)"

READINESS_SIGNAL_JS = """
({ loaderSelectors, loadingPattern }) => {
    const isVisible = (el) => {
        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        return style.visibility !== 'hidden' && style.display !== 'none' && rect.width > 0 && rect.height > 0;
    };
    let spinnerVisible = false;
    for (const sel of loaderSelectors) {
        let nodes = [];
        try { nodes = Array.from(document.querySelectorAll(sel)); } catch (_) { continue; }
        if (nodes.some(isVisible)) { spinnerVisible = true; break; }
    }
    const text = (document.body && document.body.innerText) || '';
    let loadingTextVisible = false;
    try { loadingTextVisible = new RegExp(loadingPattern, 'i').test(text); } catch (_) {}
    return { documentState: document.readyState, spinnerVisible, loadingTextVisible };
}
"""

DOUBLE_RAF_JS = """
() => new Promise((resolve) => requestAnimationFrame(() => requestAnimationFrame(() => resolve(true))))
"""


class ReadinessDetector:
    """Decides when a client-rendered page is settled enough to read.

    There is no "render complete" event to listen for, so this polls loader
    signatures and loading text, lets layout settle for two animation frames,
    then adds a short randomized cushion for trailing renders. A false "stable"
    on a slow page is possible; the call never blocks past its budget.
    """

    def __init__(
        self,
        jitter: HumanJitter | None = None,
        loader_selectors: tuple[str, ...] = DEFAULT_LOADER_SELECTORS,
        loading_text_pattern: str = LOADING_TEXT_PATTERN,
        cushion_ms: tuple[int, int] = (300, 700),
        seed: int | None = None,
    ) -> None:
        self._jitter = jitter or HumanJitter()
        self._loader_selectors = tuple(loader_selectors)
        self._loading_pattern = loading_text_pattern
        self._cushion_ms = cushion_ms
        self._rng = random.Random(seed)

    def with_extra_loaders(self, selectors: tuple[str, ...]) -> "ReadinessDetector":
        if not selectors:
            return self
        merged = self._loader_selectors + tuple(s for s in selectors if s not in self._loader_selectors)
        detector = ReadinessDetector(
            jitter=self._jitter,
            loader_selectors=merged,
            loading_text_pattern=self._loading_pattern,
            cushion_ms=self._cushion_ms,
        )
        detector._rng = self._rng
        return detector

    async def sample(self, page: Page) -> ReadinessSignal:
        payload: dict[str, Any] = await page.evaluate(
            READINESS_SIGNAL_JS,
            {"loaderSelectors": list(self._loader_selectors), "loadingPattern": self._loading_pattern},
        )
        payload = payload or {}
        return ReadinessSignal(
            document_state=str(payload.get("documentState", "loading")),
            spinner_visible=bool(payload.get("spinnerVisible", False)),
            loading_text_visible=bool(payload.get("loadingTextVisible", False)),
        )

    async def _settle_frames(self, page: Page, remaining_s: float) -> None:
        if remaining_s <= 0:
            return
        try:
            await asyncio.wait_for(page.evaluate(DOUBLE_RAF_JS), timeout=remaining_s)
        except Exception as exc:
            # Background tabs may never paint; the frame wait is best effort.
            logger.debug("[Readiness] frame settle skipped: %s", exc)

    async def _cushion(self, remaining_s: float) -> None:
        low, high = self._cushion_ms
        delay_s = self._rng.randint(min(low, high), max(low, high)) / 1000.0
        delay_s = min(delay_s, max(0.0, remaining_s))
        if delay_s > 0:
            await asyncio.sleep(delay_s)

    async def await_stable(self, page: Page, budget: ReadinessBudget | None = None) -> ReadinessReport:
        budget = budget or ReadinessBudget()
        loop = asyncio.get_running_loop()
        start = loop.time()
        deadline = start + budget.timeout_ms / 1000.0
        poll_s = budget.poll_interval_ms / 1000.0
        polls = 0
        converged = False
        last_signal: ReadinessSignal | None = None

        while True:
            polls += 1
            try:
                last_signal = await asyncio.wait_for(self.sample(page), timeout=max(0.001, deadline - loop.time()))
            except Exception as exc:
                logger.debug("[Readiness] signal script failed: %s", exc)
                last_signal = None

            if last_signal is not None and last_signal.stable:
                await self._settle_frames(page, deadline - loop.time())
                converged = True
                break

            if loop.time() >= deadline:
                break

            try:
                await asyncio.wait_for(self._jitter.jitter(page), timeout=deadline - loop.time())
            except asyncio.TimeoutError:
                break
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(poll_s, remaining))

        await self._cushion(deadline - loop.time())
        elapsed_ms = int((loop.time() - start) * 1000)
        if converged:
            logger.info("[Readiness] stable after %d polls (%dms)", polls, elapsed_ms)
        else:
            logger.warning("[Readiness] budget exhausted after %d polls (%dms); proceeding", polls, elapsed_ms)
        return ReadinessReport(converged=converged, polls=polls, elapsed_ms=elapsed_ms, last_signal=last_signal)
