import json

import pytest

from ticketwatch.core.artifact_manager import ArtifactManager
from ticketwatch.core.contracts import FlowState, SiteState
from ticketwatch.core.parsers import summarize
from ticketwatch.core.state_models import FlowOutcome, ScrapeResult
from ticketwatch.core.telemetry import Telemetry
from ticketwatch.core.telemetry_sink import JsonlTelemetrySink, scrape_result_event


def _result() -> ScrapeResult:
    return ScrapeResult(
        site="stubhub",
        url="https://www.stubhub.com/e/1",
        site_key="stubhub.com",
        success=True,
        site_state=SiteState.PRESENT,
        flow=FlowOutcome(terminal_state=FlowState.DONE, steps=()),
        stats=summarize([80.0, 120.0]),
        scraped_at="2025-11-01T00:00:00+00:00",
    )


def test_telemetry_tracks_phases_and_counters() -> None:
    telemetry = Telemetry()
    telemetry.event("navigated", {"url": "https://x"})
    telemetry.incr("cookies_restored", 3)
    telemetry.incr("suspicious_responses")

    snapshot = telemetry.snapshot()

    assert telemetry.phases() == ["navigated"]
    assert snapshot["counters"]["cookies_restored"] == 3
    assert snapshot["counters"]["suspicious_responses"] == 1
    assert snapshot["counters"]["storage_keys_restored"] == 0


def test_scrape_result_event_fields() -> None:
    event = scrape_result_event(_result())

    assert event["event"] == "scrape_result"
    assert event["source"] == "stubhub"
    assert event["site_state"] == "present"
    assert event["flow_terminal_state"] == "done"
    assert event["count"] == 2
    assert event["median"] == 100.0
    assert event["min"] == 80.0


@pytest.mark.asyncio
async def test_jsonl_sink_appends_one_line_per_event(tmp_path) -> None:
    sink = JsonlTelemetrySink(root_dir=str(tmp_path))

    await sink.emit(scrape_result_event(_result()))
    await sink.emit({"event": "scrape_result", "success": False})

    lines = sink.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert json.loads(lines[0])["url"] == "https://www.stubhub.com/e/1"


@pytest.mark.asyncio
async def test_capture_page_writes_timestamped_artifacts(tmp_path, fake_page) -> None:
    manager = ArtifactManager(root_dir=str(tmp_path))
    fake_page.html = "<html><body>$99</body></html>"

    records = await manager.capture_page(fake_page, "stubhub.com", {"site_state": "present"}, ts=1700000000000)

    names = sorted(record.path.rsplit("/", 1)[-1] for record in records)
    assert names == ["page_1700000000000.html", "run_1700000000000.json", "screenshot_1700000000000.png"]
    assert all(record.size > 0 for record in records)
    assert manager.get_record(records[0].artifact_id) == records[0]
    assert len(manager.list_site_records("stubhub.com")) == 3
