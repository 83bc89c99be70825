import json

import pytest

from ticketwatch import server
from ticketwatch.core.contracts import FlowOptions, PersistencePolicy
from ticketwatch.core.engine import EngineConfig, ScrapeEngine
from ticketwatch.core.state_models import ScrapeResult


def test_flow_overrides_merge_onto_defaults() -> None:
    base = FlowOptions(target_text_query="Default", flow_step_timeout_ms=4_500)

    merged = server._to_flow_options(
        base,
        {"target_date_iso": "2025-11-07", "persistence_policy": "none", "flow_step_timeout_ms": "3000"},
    )

    assert merged.target_text_query == "Default"
    assert merged.target_date_iso == "2025-11-07"
    assert merged.persistence_policy == PersistencePolicy.NONE
    assert merged.flow_step_timeout_ms == 3_000


@pytest.mark.asyncio
async def test_list_tools_names() -> None:
    tools = await server.list_tools()

    assert {tool.name for tool in tools} == {"scrape_target", "list_site_profiles", "get_last_result"}


@pytest.mark.asyncio
async def test_profiles_and_last_result_tools(monkeypatch, tmp_path) -> None:
    engine = ScrapeEngine(config=EngineConfig(session_base_dir=str(tmp_path)))
    engine._ledger["stubhub.com"] = ScrapeResult(
        site="stubhub", url="https://www.stubhub.com/e", site_key="stubhub.com", success=True
    )
    monkeypatch.setattr(server, "_engine", engine)

    profiles = json.loads((await server.call_tool("list_site_profiles", {}))[0].text)
    last = json.loads((await server.call_tool("get_last_result", {"url": "https://www.stubhub.com/other"}))[0].text)
    missing = json.loads((await server.call_tool("get_last_result", {"site_key": "seatgeek.com"}))[0].text)
    unknown = json.loads((await server.call_tool("nope", {}))[0].text)

    assert [p["name"] for p in profiles][-1] == "generic"
    assert last["site"] == "stubhub"
    assert "error" in missing
    assert "Unknown tool" in unknown["error"]
