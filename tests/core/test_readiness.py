import asyncio

import pytest

from ticketwatch.core.contracts import ReadinessBudget
from ticketwatch.core.jitter import HumanJitter, JitterPolicy
from ticketwatch.core.readiness import DEFAULT_LOADER_SELECTORS, ReadinessDetector


def _detector(cushion_ms=(0, 0)) -> ReadinessDetector:
    return ReadinessDetector(jitter=HumanJitter(JitterPolicy(enabled=False)), cushion_ms=cushion_ms, seed=7)


def test_budget_rejects_poll_longer_than_timeout() -> None:
    with pytest.raises(ValueError):
        ReadinessBudget(timeout_ms=100, poll_interval_ms=250)
    with pytest.raises(ValueError):
        ReadinessBudget(timeout_ms=1_000, poll_interval_ms=0)


def test_clamped_budget_accepts_zero_and_negative_timeouts() -> None:
    assert ReadinessBudget.clamped(0, 250) == ReadinessBudget(timeout_ms=250, poll_interval_ms=250)
    assert ReadinessBudget.clamped(-5, 0) == ReadinessBudget(timeout_ms=1, poll_interval_ms=1)
    assert ReadinessBudget.clamped(4_500, 250) == ReadinessBudget(timeout_ms=4_500, poll_interval_ms=250)


def test_extra_loaders_are_merged_without_duplicates() -> None:
    detector = _detector()
    extended = detector.with_extra_loaders(('[class*="Skeleton"]', DEFAULT_LOADER_SELECTORS[0]))

    assert extended is not detector
    assert extended._loader_selectors == DEFAULT_LOADER_SELECTORS + ('[class*="Skeleton"]',)
    assert detector.with_extra_loaders(()) is detector


@pytest.mark.asyncio
async def test_no_loader_returns_within_one_poll_plus_cushion(fake_page) -> None:
    detector = _detector(cushion_ms=(300, 700))
    loop = asyncio.get_running_loop()
    started = loop.time()

    report = await detector.await_stable(fake_page, ReadinessBudget(timeout_ms=10_000, poll_interval_ms=250))

    assert report.converged is True
    assert report.polls == 1
    assert loop.time() - started < 0.25 + 0.7 + 0.2


@pytest.mark.asyncio
async def test_visible_spinner_holds_until_removed(fake_page) -> None:
    fake_page.spinner_until = 1.0
    detector = _detector()

    report = await detector.await_stable(fake_page, ReadinessBudget(timeout_ms=5_000, poll_interval_ms=100))

    assert report.converged is True
    assert fake_page.elapsed() >= 1.0
    assert report.polls > 1
    assert report.last_signal is not None and report.last_signal.spinner_visible is False


@pytest.mark.asyncio
async def test_permanent_spinner_exhausts_budget_without_raising(fake_page) -> None:
    fake_page.spinner_until = 60.0
    detector = _detector()
    loop = asyncio.get_running_loop()
    started = loop.time()

    report = await detector.await_stable(fake_page, ReadinessBudget(timeout_ms=600, poll_interval_ms=100))

    assert report.converged is False
    assert 0.6 <= loop.time() - started < 1.0


@pytest.mark.asyncio
async def test_loading_text_counts_as_not_ready(fake_page) -> None:
    fake_page.loading_text = True
    report = await _detector().await_stable(fake_page, ReadinessBudget(timeout_ms=400, poll_interval_ms=100))

    assert report.converged is False
    assert report.last_signal is not None and report.last_signal.loading_text_visible is True


@pytest.mark.asyncio
async def test_script_failures_are_treated_as_not_stable(fake_page) -> None:
    fake_page.fail_scripts = True
    report = await _detector().await_stable(fake_page, ReadinessBudget(timeout_ms=300, poll_interval_ms=100))

    assert report.converged is False
    assert report.last_signal is None


@pytest.mark.asyncio
async def test_jitter_runs_between_polls(fake_page) -> None:
    fake_page.spinner_until = 0.3
    detector = ReadinessDetector(
        jitter=HumanJitter(JitterPolicy(seed=1, sleep_ms_min=0, sleep_ms_max=1)),
        cushion_ms=(0, 0),
    )

    await detector.await_stable(fake_page, ReadinessBudget(timeout_ms=3_000, poll_interval_ms=50))

    assert fake_page.mouse.wheel.await_count >= 1
    assert fake_page.mouse.move.await_count >= 1
