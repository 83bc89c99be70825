"""Per-site knowledge, selected once per scrape.

The classifier and flow executor stay generic; everything that differs
between marketplaces (evidence patterns, loader skeletons, flows, parsers,
pre-read preparation) lives in a ``SiteProfile`` row. The pattern lists are
hand-tuned against current markup and degrade silently when it changes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from playwright.async_api import Page

from ticketwatch.core.contracts import EvidencePredicates, ElementNotFound, WaitTimeout
from ticketwatch.core.flow_executor import FlowStep, build_search_flow
from ticketwatch.core.jitter import HumanJitter
from ticketwatch.core.parsers import HtmlParser, parse_generic, parse_stubhub, parse_ticketmaster, parse_vividseats
from ticketwatch.core.wait_manager import WaitManager

logger = logging.getLogger("ticketwatch.profiles")

PrepareHook = Callable[[Page, WaitManager, HumanJitter], Awaitable[None]]
FlowFactory = Callable[[int, Optional[str]], list[FlowStep]]

PRICE_TEXT_PATTERN = r"\$\s*\d{1,3}(?:,\d{3})*(?:\.\d{2})?"


@dataclass(frozen=True)
class SiteProfile:
    name: str
    site_key_matcher: re.Pattern[str]
    evidence: EvidencePredicates = EvidencePredicates()
    loader_selectors: tuple[str, ...] = ()
    classify_timeout_ms: int = 35_000
    flow_factory: Optional[FlowFactory] = None
    prepare: Optional[PrepareHook] = None
    parser: HtmlParser = parse_generic

    def matches(self, site_key: str) -> bool:
        return bool(self.site_key_matcher.search(site_key))

    @property
    def has_semantics(self) -> bool:
        return not self.evidence.is_empty()


NUDGE_LISTINGS_JS = """
async () => {
    const sleep = (ms) => new Promise((r) => setTimeout(r, ms));
    const candidates = [];
    document.querySelectorAll('[data-testid*="list"], [data-qa*="list"]').forEach((el) => candidates.push(el));
    document.querySelectorAll('aside, section, div').forEach((el) => {
        if ((el.innerText || '').toLowerCase().includes('listings')) candidates.push(el);
    });
    const unique = Array.from(new Set(candidates)).filter(Boolean);
    for (let i = 0; i < 4; i++) { window.scrollBy(0, 300); await sleep(120); }
    window.scrollTo({ top: 0 });
    const container = unique.find((el) => el.scrollHeight > el.clientHeight + 40)
        || unique.find((el) => getComputedStyle(el).overflowY === 'auto')
        || null;
    if (container) {
        for (let i = 0; i < 6; i++) { container.scrollTop += 200; await sleep(120); }
        container.scrollTop = 0;
    }
    return !!container;
}
"""

CLICK_SKIP_JS = """
() => {
    const isVisible = (el) => {
        const s = window.getComputedStyle(el);
        const r = el.getBoundingClientRect();
        return s.visibility !== 'hidden' && s.display !== 'none' && r.width > 0 && r.height > 0;
    };
    const btn = Array.from(document.querySelectorAll('button'))
        .find((b) => (b.textContent || '').trim().toLowerCase() === 'skip' && isVisible(b));
    if (btn) btn.click();
    return !!btn;
}
"""


async def prepare_vividseats(page: Page, waits: WaitManager, jitter: HumanJitter) -> None:
    """Dismiss the seat-count modal, wait for the inventory XHR, wake virtualized lists."""
    try:
        handle = await waits.wait_for_selector('[aria-label="Skip"]', timeout_ms=1_500)
        await handle.click()
    except ElementNotFound:
        try:
            if not await page.evaluate(CLICK_SKIP_JS):
                await page.keyboard.press("Escape")
        except Exception as exc:
            logger.debug("[Profiles] seat-count modal dismissal failed: %s", exc)

    try:
        await waits.wait_for_response(
            r"(inventory|listings|tickets|offers|event-availability)",
            timeout_ms=15_000,
            status_min=200,
            status_max=399,
        )
    except WaitTimeout as exc:
        logger.info("[Profiles] inventory response not observed: %s", exc)

    try:
        await page.evaluate(NUDGE_LISTINGS_JS)
    except Exception as exc:
        logger.debug("[Profiles] listing nudge failed: %s", exc)
    await jitter.jitter(page)


TICKETMASTER = SiteProfile(
    name="ticketmaster",
    site_key_matcher=re.compile(r"(^|\.)ticketmaster\.", re.IGNORECASE),
    evidence=EvidencePredicates(
        present_text_patterns=(
            r"LOWEST PRICE|BEST SEATS|Verified Resale Ticket|GENERAL ADMISSION|Price includes fees",
        ),
        present_selectors=(
            'input[type="range"]',
            '[data-qa*="price" i]',
            '[aria-label*="price" i]',
            '[data-qa*="ticket" i]',
            '[data-testid*="ticket" i]',
            '[class*="Ticket" i]',
        ),
        absent_text_patterns=(
            r"tickets are not currently available online|no tickets currently available",
        ),
    ),
    classify_timeout_ms=35_000,
    flow_factory=build_search_flow,
    parser=parse_ticketmaster,
)

VIVIDSEATS = SiteProfile(
    name="vividseats",
    site_key_matcher=re.compile(r"(^|\.)vividseats\.", re.IGNORECASE),
    evidence=EvidencePredicates(
        present_text_patterns=(PRICE_TEXT_PATTERN,),
        present_selectors=(
            '[data-testid="ticketCard"]',
            '[data-qa="ticket-card"]',
            '[data-testid="listing"]',
            '[data-qa="listing"]',
            'li[role="listitem"]',
        ),
        absent_text_patterns=(r"no listings (are )?available|there are no tickets|this event (is|has) sold out",),
    ),
    loader_selectors=(
        '[data-testid*="skeleton"]',
        '[class*="Skeleton"]',
        '[data-testid="loading"]',
        '[role="status"][aria-live="polite"]',
    ),
    classify_timeout_ms=25_000,
    prepare=prepare_vividseats,
    parser=parse_vividseats,
)

STUBHUB = SiteProfile(
    name="stubhub",
    site_key_matcher=re.compile(r"(^|\.)stubhub\.", re.IGNORECASE),
    evidence=EvidencePredicates(
        present_text_patterns=(PRICE_TEXT_PATTERN,),
        present_selectors=('[data-listing-id]', '[data-testid*="listing" i]'),
        absent_text_patterns=(r"no listings (are )?available|there are currently no tickets|this event (is|has) sold out",),
    ),
    classify_timeout_ms=25_000,
    parser=parse_stubhub,
)

SEATGEEK = SiteProfile(
    name="seatgeek",
    site_key_matcher=re.compile(r"(^|\.)seatgeek\.", re.IGNORECASE),
    evidence=EvidencePredicates(
        present_text_patterns=(PRICE_TEXT_PATTERN,),
        present_selectors=('[data-testid*="listing" i]',),
        absent_text_patterns=(r"no tickets (are )?available|this event (is|has) sold out",),
    ),
    classify_timeout_ms=25_000,
    parser=parse_generic,
)

GENERIC = SiteProfile(
    name="generic",
    site_key_matcher=re.compile(r".*"),
    parser=parse_generic,
)

DEFAULT_PROFILES: tuple[SiteProfile, ...] = (TICKETMASTER, VIVIDSEATS, STUBHUB, SEATGEEK)


def select_profile(site_key: str, profiles: tuple[SiteProfile, ...] = DEFAULT_PROFILES) -> SiteProfile:
    for profile in profiles:
        if profile.matches(site_key):
            return profile
    return GENERIC


def profile_by_name(name: str, profiles: tuple[SiteProfile, ...] = DEFAULT_PROFILES) -> SiteProfile | None:
    wanted = (name or "").strip().lower()
    for profile in profiles:
        if profile.name == wanted:
            return profile
    if wanted == GENERIC.name:
        return GENERIC
    return None
