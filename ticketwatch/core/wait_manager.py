from __future__ import annotations

import asyncio
import re
from typing import Any, Sequence

from playwright.async_api import ElementHandle, Page, Response
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from ticketwatch.core.contracts import ElementNotFound, WaitTimeout

ACTION_CONTROLS = 'button,[role="button"],a'

HAS_TEXT_CONTROL_JS = """
({ labels, selector }) => {
    const wanted = labels.map((l) => l.toLowerCase());
    return Array.from(document.querySelectorAll(selector)).some((node) => {
        const text = (node.textContent || '').trim().toLowerCase();
        return text && wanted.some((label) => text.includes(label));
    });
}
"""

CLICK_TEXT_CONTROL_JS = """
({ labels, selector }) => {
    const wanted = labels.map((l) => l.toLowerCase());
    for (const node of Array.from(document.querySelectorAll(selector))) {
        const text = (node.textContent || '').trim().toLowerCase();
        if (!text) continue;
        const hit = wanted.find((label) => text.includes(label));
        if (hit) {
            node.scrollIntoView({ block: 'center' });
            node.click();
            return hit;
        }
    }
    return null;
}
"""

BODY_TEXT_LENGTH_JS = """
(minLength) => !!document.body && (document.body.innerText || '').length > minLength
"""


class WaitManager:
    """Bounded waits over a single page; Playwright timeouts become core errors."""

    def __init__(self, page: Page) -> None:
        self._page = page

    @property
    def page(self) -> Page:
        return self._page

    async def wait_for_selector(
        self,
        selector: str,
        timeout_ms: int = 5_000,
        state: str = "visible",
    ) -> ElementHandle:
        try:
            handle = await self._page.wait_for_selector(selector, timeout=timeout_ms, state=state)
        except PlaywrightTimeout as exc:
            raise ElementNotFound(f"selector '{selector}' not found within {timeout_ms}ms") from exc
        if handle is None:
            raise ElementNotFound(f"selector '{selector}' resolved to nothing")
        return handle

    async def wait_for_any_selector(
        self,
        selectors: Sequence[str],
        timeout_ms: int = 5_000,
    ) -> ElementHandle:
        if not selectors:
            raise ElementNotFound("no selectors given")
        return await self.wait_for_selector(", ".join(selectors), timeout_ms=timeout_ms)

    async def wait_for_text_control(
        self,
        labels: Sequence[str],
        timeout_ms: int = 4_500,
        selector: str = ACTION_CONTROLS,
    ) -> None:
        arg = {"labels": list(labels), "selector": selector}
        try:
            await self._page.wait_for_function(HAS_TEXT_CONTROL_JS, arg=arg, timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise ElementNotFound(f"no control labelled {list(labels)} within {timeout_ms}ms") from exc

    async def click_text_control(
        self,
        labels: Sequence[str],
        timeout_ms: int = 4_500,
        selector: str = ACTION_CONTROLS,
    ) -> str:
        """Click the first button/link whose text contains any label; return the label hit."""
        await self.wait_for_text_control(labels, timeout_ms=timeout_ms, selector=selector)
        hit = await self._page.evaluate(CLICK_TEXT_CONTROL_JS, {"labels": list(labels), "selector": selector})
        if not hit:
            raise ElementNotFound(f"control labelled {list(labels)} vanished before click")
        return str(hit)

    async def wait_for_body_text(self, min_length: int = 1_200, timeout_ms: int = 15_000) -> None:
        try:
            await self._page.wait_for_function(BODY_TEXT_LENGTH_JS, arg=min_length, timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise WaitTimeout(f"body text shorter than {min_length} chars after {timeout_ms}ms") from exc

    async def wait_for_response(
        self,
        url_pattern: str,
        timeout_ms: int = 10_000,
        status_min: int | None = None,
        status_max: int | None = None,
    ) -> Response:
        regex = re.compile(url_pattern, re.IGNORECASE)

        def predicate(response: Response) -> bool:
            if not regex.search(response.url):
                return False
            if status_min is not None and response.status < status_min:
                return False
            if status_max is not None and response.status > status_max:
                return False
            return True

        try:
            return await self._page.wait_for_event("response", predicate=predicate, timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise WaitTimeout(f"no response matching '{url_pattern}' within {timeout_ms}ms") from exc

    async def wait_for_navigation(self, previous_url: str, timeout_ms: int = 15_000) -> bool:
        """Best-effort: True when the URL changed and the new document parsed.

        Single-page apps may never navigate, so a timeout returns False.
        """

        async def navigated() -> None:
            await self._page.wait_for_url(lambda url: url != previous_url, timeout=timeout_ms)
            await self._page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)

        try:
            await asyncio.wait_for(navigated(), timeout=timeout_ms / 1000.0)
            return True
        except (asyncio.TimeoutError, PlaywrightTimeout, PlaywrightError):
            return False

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._page.evaluate(script, arg)
