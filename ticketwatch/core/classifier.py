from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from playwright.async_api import Page

from ticketwatch.core.contracts import EvidencePredicates, SiteState

logger = logging.getLogger("ticketwatch.classifier")

EVIDENCE_JS = """
({ presentText, presentSelectors, absentText, absentSelectors }) => {
    const text = (document.body && document.body.innerText) || '';
    const textHit = (patterns) => patterns.some((p) => {
        try { return new RegExp(p, 'i').test(text); } catch (_) { return false; }
    });
    const selectorHit = (selectors) => selectors.some((sel) => {
        try { return document.querySelectorAll(sel).length > 0; } catch (_) { return false; }
    });
    return {
        present: textHit(presentText) || selectorHit(presentSelectors),
        absent: textHit(absentText) || selectorHit(absentSelectors),
    };
}
"""


@dataclass(frozen=True)
class Evidence:
    present: bool
    absent: bool

    def resolve(self) -> SiteState | None:
        # An explicit "no tickets" banner outranks stray matching text elsewhere.
        if self.absent:
            return SiteState.ABSENT
        if self.present:
            return SiteState.PRESENT
        return None


class SiteStateClassifier:
    def __init__(self, poll_interval_ms: int = 800, nudge_delta_y: int = 400) -> None:
        self._poll_interval_ms = poll_interval_ms
        self._nudge_delta_y = nudge_delta_y

    async def evaluate(self, page: Page, predicates: EvidencePredicates) -> Evidence:
        payload = await page.evaluate(EVIDENCE_JS, predicates.to_script_arg()) or {}
        return Evidence(present=bool(payload.get("present")), absent=bool(payload.get("absent")))

    async def _nudge(self, page: Page, timeout_s: float) -> None:
        try:
            await asyncio.wait_for(page.mouse.wheel(0, self._nudge_delta_y), timeout=timeout_s)
        except Exception as exc:
            logger.debug("[Classifier] scroll nudge failed: %s", exc)

    async def classify(self, page: Page, predicates: EvidencePredicates, timeout_ms: int) -> SiteState:
        """Poll the live DOM until evidence resolves or ``timeout_ms`` passes.

        ``INDETERMINATE`` is returned only once the full budget has elapsed and
        means "proceed cautiously", not failure.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0, timeout_ms) / 1000.0
        poll_s = self._poll_interval_ms / 1000.0
        polls = 0

        while True:
            polls += 1
            try:
                evidence = await asyncio.wait_for(
                    self.evaluate(page, predicates), timeout=max(0.001, deadline - loop.time())
                )
                state = evidence.resolve()
            except asyncio.TimeoutError:
                logger.debug("[Classifier] evidence script did not return before the deadline")
                state = None
            except Exception as exc:
                logger.debug("[Classifier] evidence script failed: %s", exc)
                state = None
            if state is not None:
                logger.info("[Classifier] resolved %s after %d polls", state.value, polls)
                return state

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning("[Classifier] indeterminate after %d polls (%dms)", polls, timeout_ms)
                return SiteState.INDETERMINATE
            await asyncio.sleep(min(poll_s, remaining))
            await self._nudge(page, max(0.001, deadline - loop.time()))
