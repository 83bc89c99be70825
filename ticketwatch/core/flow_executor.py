from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence

from playwright.async_api import Page

from ticketwatch.core.contracts import (
    ElementNotFound,
    FlowOptions,
    FlowState,
    ReadinessBudget,
    StepStatus,
    WaitTimeout,
)
from ticketwatch.core.date_match import TILE_CLICK_JS, TILE_COLLECT_JS, build_date_candidates, select_tile
from ticketwatch.core.jitter import HumanJitter
from ticketwatch.core.readiness import ReadinessDetector
from ticketwatch.core.state_models import FlowOutcome, StepResult
from ticketwatch.core.wait_manager import WaitManager

logger = logging.getLogger("ticketwatch.flow")

CONSENT_LABELS: tuple[str, ...] = ("accept", "agree", "got it", "continue", "confirm", "allow")
SEARCH_SELECTORS: tuple[str, ...] = (
    'input[aria-label="Search"]',
    'input[type="search"]',
    'input[name="keyword"]',
    'input[placeholder*="Search"]',
    'input[id*="search"]',
)
SEARCH_ICON_LABELS: tuple[str, ...] = ("search",)
FIND_TICKETS_LABELS: tuple[str, ...] = ("find tickets",)
FIND_TICKETS_AFFORDANCE = r"find tickets"


@dataclass
class FlowContext:
    options: FlowOptions
    waits: WaitManager
    jitter: HumanJitter
    step_timeout_ms: int
    readiness: Optional[ReadinessDetector] = None
    completed: set[str] = field(default_factory=set)
    notes: dict[str, Any] = field(default_factory=dict)


StepAttempt = Callable[[Page, FlowContext], Awaitable[bool]]


@dataclass(frozen=True)
class FlowStep:
    name: str
    state: FlowState
    attempt: StepAttempt
    requires: str | None = None
    timeout_ms: int | None = None


class FlowExecutor:
    """Bounded sequential state machine over a fixed list of steps.

    Each step runs once under its own timeout. Failures are recorded and the
    machine moves on; a step whose ``requires`` did not succeed is skipped.
    ``run`` never raises.
    """

    def __init__(
        self,
        steps: Sequence[FlowStep],
        jitter: HumanJitter | None = None,
        readiness: ReadinessDetector | None = None,
        between_steps_ms: tuple[int, int] = (250, 800),
    ) -> None:
        self._steps = tuple(steps)
        self._jitter = jitter or HumanJitter()
        self._readiness = readiness
        self._between_steps_ms = between_steps_ms

    @property
    def steps(self) -> tuple[FlowStep, ...]:
        return self._steps

    async def run(self, page: Page, options: FlowOptions) -> FlowOutcome:
        ctx = FlowContext(
            options=options,
            waits=WaitManager(page),
            jitter=self._jitter,
            step_timeout_ms=options.flow_step_timeout_ms,
            readiness=self._readiness,
        )
        results: list[StepResult] = []
        terminal = FlowState.START

        for index, step in enumerate(self._steps):
            if step.requires and step.requires not in ctx.completed:
                results.append(
                    StepResult(
                        name=step.name,
                        state=step.state,
                        status=StepStatus.SKIPPED,
                        detail=f"requires {step.requires}",
                    )
                )
                logger.info("[Flow] %s skipped (requires %s)", step.name, step.requires)
                continue

            timeout_ms = step.timeout_ms or ctx.step_timeout_ms
            started = time.perf_counter()
            status = StepStatus.FAILED
            detail = ""
            try:
                ok = await asyncio.wait_for(step.attempt(page, ctx), timeout=timeout_ms / 1000.0)
                if ok:
                    status = StepStatus.SUCCEEDED
                else:
                    detail = "attempt reported no progress"
            except asyncio.TimeoutError:
                detail = f"timed out after {timeout_ms}ms"
            except Exception as exc:
                detail = f"{type(exc).__name__}: {exc}"
            elapsed_ms = int((time.perf_counter() - started) * 1000)

            if status == StepStatus.SUCCEEDED:
                ctx.completed.add(step.name)
                terminal = step.state
                logger.info("[Flow] %s -> %s (%dms)", step.name, step.state.value, elapsed_ms)
            else:
                logger.warning("[Flow] %s failed: %s", step.name, detail)
            results.append(
                StepResult(name=step.name, state=step.state, status=status, detail=detail, elapsed_ms=elapsed_ms)
            )

            if index < len(self._steps) - 1:
                await self._jitter.pause(*self._between_steps_ms)

        return FlowOutcome(terminal_state=terminal, steps=tuple(results))


async def dismiss_consent(page: Page, ctx: FlowContext) -> bool:
    await ctx.waits.click_text_control(CONSENT_LABELS, timeout_ms=min(3_000, ctx.step_timeout_ms))
    return True


async def focus_search(page: Page, ctx: FlowContext) -> bool:
    try:
        handle = await ctx.waits.wait_for_any_selector(SEARCH_SELECTORS, timeout_ms=ctx.step_timeout_ms)
    except ElementNotFound:
        # The input is often hidden behind a search icon.
        await ctx.waits.click_text_control(SEARCH_ICON_LABELS, timeout_ms=min(2_500, ctx.step_timeout_ms))
        await ctx.jitter.pause()
        handle = await ctx.waits.wait_for_any_selector(SEARCH_SELECTORS, timeout_ms=ctx.step_timeout_ms)
    await handle.click(click_count=3)
    await ctx.jitter.pause(150, 400)
    return True


async def type_query(page: Page, ctx: FlowContext) -> bool:
    query = (ctx.options.target_text_query or "").strip()
    if not query:
        return False
    await page.keyboard.type(query, delay=35 + ctx.jitter.randint(0, 40))
    return True


async def submit_search(page: Page, ctx: FlowContext) -> bool:
    previous_url = page.url
    await page.keyboard.press("Enter")
    await ctx.waits.wait_for_navigation(previous_url, timeout_ms=ctx.step_timeout_ms)
    if ctx.readiness is not None:
        await ctx.readiness.await_stable(
            page,
            ReadinessBudget.clamped(ctx.step_timeout_ms, min(250, max(1, ctx.step_timeout_ms))),
        )
    await ctx.jitter.pause(500, 1_500)
    return True


async def _click_generic_find_tickets(page: Page, ctx: FlowContext) -> bool:
    ctx.notes["previous_url"] = page.url
    await ctx.waits.click_text_control(FIND_TICKETS_LABELS, timeout_ms=ctx.step_timeout_ms)
    ctx.notes["click"] = "fallback"
    return True


async def match_tile(page: Page, ctx: FlowContext) -> bool:
    options = ctx.options
    if not options.target_date_iso or "focus_search" not in ctx.completed:
        return await _click_generic_find_tickets(page, ctx)

    try:
        candidates = build_date_candidates(options.target_date_iso)
    except ValueError:
        logger.warning("[Flow] unparseable target date %r; using generic fallback", options.target_date_iso)
        return await _click_generic_find_tickets(page, ctx)

    try:
        await ctx.waits.wait_for_body_text(min_length=1_200, timeout_ms=ctx.step_timeout_ms)
    except WaitTimeout as exc:
        logger.debug("[Flow] results text still short: %s", exc)

    ctx.notes["previous_url"] = page.url
    tiles = await ctx.waits.evaluate(
        TILE_COLLECT_JS, {"affordance": FIND_TICKETS_AFFORDANCE, "minTextLength": 40}
    )
    index = select_tile(tiles or [], candidates, options.venue_constraints())
    if index is not None:
        clicked = await ctx.waits.evaluate(TILE_CLICK_JS, {"index": index, "affordance": FIND_TICKETS_AFFORDANCE})
        if clicked:
            ctx.notes["click"] = str(clicked)
            ctx.notes["tile_index"] = index
            return True
    logger.info("[Flow] no tile matched %s; falling back to first find-tickets control", options.target_date_iso)
    return await _click_generic_find_tickets(page, ctx)


async def await_click_through(page: Page, ctx: FlowContext) -> bool:
    previous_url = ctx.notes.get("previous_url", page.url)
    navigated = await ctx.waits.wait_for_navigation(previous_url, timeout_ms=ctx.step_timeout_ms * 3)
    ctx.notes["navigated"] = navigated
    return True


def build_search_flow(step_timeout_ms: int, query: str | None = None) -> list[FlowStep]:
    """Consent -> search -> type -> submit -> tile match -> click-through."""
    typing_budget = max(step_timeout_ms, len(query or "") * 120 + 1_000)
    return [
        FlowStep("dismiss_consent", FlowState.CONSENT_DISMISSED, dismiss_consent),
        FlowStep("focus_search", FlowState.SEARCH_FOCUSED, focus_search, timeout_ms=step_timeout_ms * 3),
        FlowStep("type_query", FlowState.QUERY_TYPED, type_query, requires="focus_search", timeout_ms=typing_budget),
        FlowStep(
            "submit_search",
            FlowState.RESULTS_SUBMITTED,
            submit_search,
            requires="type_query",
            timeout_ms=step_timeout_ms * 3,
        ),
        FlowStep("match_tile", FlowState.TILE_MATCHED, match_tile, timeout_ms=step_timeout_ms * 3),
        FlowStep(
            "await_click_through",
            FlowState.DONE,
            await_click_through,
            requires="match_tile",
            timeout_ms=step_timeout_ms * 3 + 1_000,
        ),
    ]
