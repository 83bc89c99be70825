"""Recurring scrape runner.

Runs every configured target once at start-up, then on the cron schedule.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ticketwatch.config import DEFAULT_SCHEDULE_CRON, Settings, load_settings
from ticketwatch.core.engine import ScrapeEngine, ScrapeTarget
from ticketwatch.core.state_models import ScrapeResult
from ticketwatch.core.telemetry_sink import JsonlTelemetrySink

logger = logging.getLogger("ticketwatch.scheduler")


def build_trigger(expression: str, timezone: Optional[str] = None) -> CronTrigger:
    try:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    except ValueError as exc:
        logger.warning("[Scheduler] invalid cron %r (%s); using %s", expression, exc, DEFAULT_SCHEDULE_CRON)
        return CronTrigger.from_crontab(DEFAULT_SCHEDULE_CRON, timezone=timezone)


def build_engine(settings: Settings) -> ScrapeEngine:
    return ScrapeEngine(
        config=settings.engine_config(),
        session_config=settings.session_config(),
        flow_options=settings.flow_options(),
        telemetry_sink=JsonlTelemetrySink(root_dir=settings.telemetry_dir),
    )


async def run_cycle(engine: ScrapeEngine, targets: tuple[ScrapeTarget, ...]) -> list[ScrapeResult]:
    if not targets:
        logger.warning("[Scheduler] no target URLs configured")
        return []
    logger.info("[Scheduler] scraping %d targets", len(targets))
    results = await engine.scrape_all(targets)
    for result in results:
        stats = result.stats
        logger.info(
            "[Scheduler] %s success=%s state=%s count=%d min=%.2f",
            result.url,
            result.success,
            result.site_state.value if result.site_state else "n/a",
            stats.count if stats else 0,
            stats.min if stats else 0.0,
        )
    return results


async def main(settings: Optional[Settings] = None) -> None:
    settings = settings or load_settings()
    engine = build_engine(settings)

    await run_cycle(engine, settings.targets)

    scheduler = AsyncIOScheduler(timezone=settings.timezone_id)

    async def scheduled_cycle() -> None:
        try:
            await run_cycle(engine, settings.targets)
        except Exception:
            logger.exception("[Scheduler] scheduled cycle failed")

    scheduler.add_job(
        scheduled_cycle,
        build_trigger(settings.schedule_cron, settings.timezone_id),
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("[Scheduler] started with cron=%r", settings.schedule_cron)

    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)


def run() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        logger.info("[Scheduler] interrupted")


if __name__ == "__main__":
    run()
