import asyncio

import pytest

from ticketwatch.core.contracts import FlowOptions, FlowState, StepStatus
from ticketwatch.core.flow_executor import FlowContext, FlowExecutor, FlowStep, build_search_flow, submit_search
from ticketwatch.core.jitter import HumanJitter, JitterPolicy
from ticketwatch.core.readiness import ReadinessDetector
from ticketwatch.core.wait_manager import WaitManager

STEP_TIMEOUT_MS = 300
VENUE = "The Greek Theatre  Los Angeles, CA"
NOV_7_TILE = f"Fri Nov 7, 2025 8:00 PM  Phoebe Bridgers  {VENUE}  Find tickets"
NOV_8_TILE = f"Sat Nov 8, 2025 8:00 PM  Phoebe Bridgers  {VENUE}  Find tickets"


def _options(**overrides) -> FlowOptions:
    values = dict(
        target_text_query="Phoebe Bridgers",
        target_date_iso="2025-11-07",
        target_venue_name="The Greek Theatre",
        target_venue_city="Los Angeles",
        flow_step_timeout_ms=STEP_TIMEOUT_MS,
    )
    values.update(overrides)
    return FlowOptions(**values)


def _executor(steps=None) -> FlowExecutor:
    steps = steps if steps is not None else build_search_flow(STEP_TIMEOUT_MS, "Phoebe Bridgers")
    return FlowExecutor(steps, jitter=HumanJitter(JitterPolicy(enabled=False)))


def _search_page(fake_page):
    fake_page.controls = ["Accept cookies", "Find tickets"]
    fake_page.selectors = {'input[type="search"]'}
    fake_page.next_url = "https://www.example.com/search?q=phoebe"
    fake_page.tiles = [{"text": NOV_7_TILE, "has_affordance": True}]
    return fake_page


def _statuses(outcome) -> list:
    return [step.status for step in outcome.steps]


def test_search_flow_shape() -> None:
    steps = build_search_flow(4_500, "x" * 100)

    assert [step.name for step in steps] == [
        "dismiss_consent",
        "focus_search",
        "type_query",
        "submit_search",
        "match_tile",
        "await_click_through",
    ]
    assert steps[2].requires == "focus_search"
    assert steps[2].timeout_ms == 100 * 120 + 1_000
    assert steps[5].requires == "match_tile"


@pytest.mark.asyncio
async def test_full_search_flow_reaches_done(fake_page) -> None:
    page = _search_page(fake_page)

    outcome = await _executor().run(page, _options())

    assert outcome.terminal_state == FlowState.DONE
    assert all(status == StepStatus.SUCCEEDED for status in _statuses(outcome))
    page.keyboard.type.assert_awaited_once()
    assert page.keyboard.type.await_args.args[0] == "Phoebe Bridgers"
    page.keyboard.press.assert_awaited_with("Enter")
    assert page.url == "https://www.example.com/search?q=phoebe"
    assert page.tile_clicks == [0]
    assert outcome.steps[4].status == StepStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_running_twice_yields_same_terminal_state(fake_page) -> None:
    page = _search_page(fake_page)
    executor = _executor()

    first = await executor.run(page, _options())
    second = await executor.run(page, _options())

    assert first.terminal_state == second.terminal_state == FlowState.DONE


@pytest.mark.asyncio
async def test_missing_search_box_falls_back_to_find_tickets(fake_page) -> None:
    fake_page.controls = ["Find tickets"]

    outcome = await _executor().run(fake_page, _options())

    assert _statuses(outcome) == [
        StepStatus.FAILED,
        StepStatus.FAILED,
        StepStatus.SKIPPED,
        StepStatus.SKIPPED,
        StepStatus.SUCCEEDED,
        StepStatus.SUCCEEDED,
    ]
    assert outcome.terminal_state == FlowState.DONE
    assert fake_page.clicked == ["find tickets"]
    assert fake_page.tile_clicks == []


@pytest.mark.asyncio
async def test_unmatched_tile_clicks_first_find_tickets(fake_page) -> None:
    page = _search_page(fake_page)
    page.tiles = [{"text": NOV_8_TILE, "has_affordance": True}]

    outcome = await _executor().run(page, _options())

    assert outcome.terminal_state == FlowState.DONE
    assert page.clicked[-1] == "find tickets"
    assert page.tile_clicks == []


@pytest.mark.asyncio
async def test_tile_inside_shared_wrapper_is_clicked_not_the_wrapper(fake_page) -> None:
    page = _search_page(fake_page)
    page.tiles = [
        {"text": f"{NOV_8_TILE}\n{NOV_7_TILE}", "has_affordance": True},
        {"text": NOV_8_TILE, "has_affordance": True},
        {"text": NOV_7_TILE, "has_affordance": True},
    ]

    outcome = await _executor().run(page, _options())

    assert outcome.terminal_state == FlowState.DONE
    assert page.tile_clicks == [2]
    assert "find tickets" not in page.clicked


@pytest.mark.asyncio
async def test_submit_search_with_zero_step_timeout_still_waits_for_readiness(fake_page) -> None:
    page = _search_page(fake_page)
    jitter = HumanJitter(JitterPolicy(enabled=False))
    ctx = FlowContext(
        options=_options(flow_step_timeout_ms=0),
        waits=WaitManager(page),
        jitter=jitter,
        step_timeout_ms=0,
        readiness=ReadinessDetector(jitter=jitter, cushion_ms=(0, 0)),
    )

    assert await submit_search(page, ctx) is True
    page.keyboard.press.assert_awaited_with("Enter")


@pytest.mark.asyncio
async def test_empty_page_stays_at_start(fake_page) -> None:
    outcome = await _executor().run(fake_page, _options())

    assert outcome.terminal_state == FlowState.START
    assert outcome.steps[-1].status == StepStatus.SKIPPED
    assert outcome.to_dict()["terminal_state"] == "start"


@pytest.mark.asyncio
async def test_step_timeout_is_recorded_and_dependents_skip(fake_page) -> None:
    async def hang(page, ctx) -> bool:
        await asyncio.sleep(5)
        return True

    async def ok(page, ctx) -> bool:
        return True

    steps = [
        FlowStep("focus_search", FlowState.SEARCH_FOCUSED, hang, timeout_ms=50),
        FlowStep("type_query", FlowState.QUERY_TYPED, ok, requires="focus_search"),
        FlowStep("match_tile", FlowState.TILE_MATCHED, ok),
    ]

    outcome = await _executor(steps).run(fake_page, _options())

    assert _statuses(outcome) == [StepStatus.FAILED, StepStatus.SKIPPED, StepStatus.SUCCEEDED]
    assert "timed out" in outcome.steps[0].detail
    assert outcome.terminal_state == FlowState.TILE_MATCHED


@pytest.mark.asyncio
async def test_step_exception_does_not_escape(fake_page) -> None:
    async def boom(page, ctx) -> bool:
        raise RuntimeError("target closed")

    outcome = await _executor([FlowStep("dismiss_consent", FlowState.CONSENT_DISMISSED, boom)]).run(
        fake_page, _options()
    )

    assert outcome.steps[0].status == StepStatus.FAILED
    assert "RuntimeError" in outcome.steps[0].detail
