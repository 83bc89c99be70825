from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from ticketwatch.core.contracts import DriverError

logger = logging.getLogger("ticketwatch.session")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119 Safari/537.36"
)


@dataclass(frozen=True)
class SessionConfig:
    headless: bool = False
    ws_endpoint: str | None = None
    user_agent: str = DEFAULT_USER_AGENT
    timezone_id: str = "America/Los_Angeles"
    locale: str = "en-US"
    viewport_width: int = 1366
    viewport_height: int = 768
    nav_timeout_ms: int = 90_000
    extra_chromium_args: tuple[str, ...] = (
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-blink-features=AutomationControlled",
    )


@dataclass
class BrowserSession:
    browser: Browser
    context: BrowserContext
    page: Page
    remote: bool


class SessionManager:
    """One browser per scrape: launched locally, or a remote one attached over CDP.

    ``open()`` guarantees the browser is closed (local) or disconnected (remote)
    however the body exits.
    """

    def __init__(self, config: SessionConfig | None = None) -> None:
        self._config = config or SessionConfig()

    @property
    def config(self) -> SessionConfig:
        return self._config

    async def _launch(self, playwright: Playwright) -> Browser:
        if self._config.ws_endpoint:
            logger.info("[Session] connecting to remote browser over CDP")
            return await playwright.chromium.connect_over_cdp(self._config.ws_endpoint)
        return await playwright.chromium.launch(
            headless=self._config.headless,
            args=list(self._config.extra_chromium_args),
        )

    async def _new_context(self, browser: Browser) -> BrowserContext:
        if self._config.ws_endpoint:
            # Remote scraping browsers reject header and timezone overrides.
            return await browser.new_context(
                viewport={"width": self._config.viewport_width, "height": self._config.viewport_height},
            )
        return await browser.new_context(
            user_agent=self._config.user_agent,
            timezone_id=self._config.timezone_id,
            locale=self._config.locale,
            viewport={"width": self._config.viewport_width, "height": self._config.viewport_height},
            extra_http_headers={"accept-language": "en-US,en;q=0.9"},
        )

    async def _close(self, browser: Optional[Browser]) -> None:
        if browser is None:
            return
        try:
            await browser.close()
        except PlaywrightError as exc:
            logger.warning("[Session] browser close failed: %s", exc)

    @asynccontextmanager
    async def open(self) -> AsyncIterator[BrowserSession]:
        playwright = await async_playwright().start()
        browser: Optional[Browser] = None
        try:
            try:
                browser = await self._launch(playwright)
                context = await self._new_context(browser)
                page = await context.new_page()
            except PlaywrightError as exc:
                raise DriverError(f"browser session could not be opened: {exc}") from exc
            page.set_default_navigation_timeout(self._config.nav_timeout_ms)
            yield BrowserSession(
                browser=browser,
                context=context,
                page=page,
                remote=bool(self._config.ws_endpoint),
            )
        finally:
            await self._close(browser)
            await playwright.stop()
