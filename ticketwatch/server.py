"""Ticketwatch MCP server.

Exposes on-demand scrapes, the site profile table, and the latest result per site.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from ticketwatch.config import load_settings
from ticketwatch.core.contracts import FlowOptions, PersistencePolicy
from ticketwatch.core.engine import ScrapeEngine
from ticketwatch.core.session_store import site_key_from_url
from ticketwatch.core.site_profiles import GENERIC
from ticketwatch.core.telemetry_sink import JsonlTelemetrySink

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger("ticketwatch.server")

_engine: ScrapeEngine | None = None


def get_engine() -> ScrapeEngine:
    global _engine
    if _engine is None:
        settings = load_settings()
        logging.getLogger().setLevel(getattr(logging, settings.log_level, logging.INFO))
        _engine = ScrapeEngine(
            config=settings.engine_config(),
            session_config=settings.session_config(),
            flow_options=settings.flow_options(),
            telemetry_sink=JsonlTelemetrySink(root_dir=settings.telemetry_dir),
        )
    return _engine


def _to_flow_options(base: FlowOptions, payload: dict[str, Any]) -> FlowOptions:
    overrides: dict[str, Any] = {}
    for key in (
        "target_text_query",
        "target_date_iso",
        "target_venue_name",
        "target_venue_city",
        "target_venue_state",
    ):
        if key in payload:
            overrides[key] = payload[key] or None
    if "persistence_policy" in payload:
        overrides["persistence_policy"] = PersistencePolicy.parse(payload["persistence_policy"], base.persistence_policy)
    for key in ("readiness_timeout_ms", "flow_step_timeout_ms"):
        if key in payload:
            overrides[key] = int(payload[key])
    return replace(base, **overrides)


def _profile_summary(engine: ScrapeEngine) -> list[dict[str, Any]]:
    return [
        {
            "name": profile.name,
            "site_key_matcher": profile.site_key_matcher.pattern,
            "has_semantics": profile.has_semantics,
            "interactive_flow": profile.flow_factory is not None,
            "has_prepare_hook": profile.prepare is not None,
            "classify_timeout_ms": profile.classify_timeout_ms,
        }
        for profile in (*engine.profiles, GENERIC)
    ]


def _text(payload: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2))]


server = Server("ticketwatch")


@server.list_tools()
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="scrape_target",
            description="Scrape one ticket listing URL and return site state, flow outcome and price stats.",
            inputSchema={
                "type": "object",
                "properties": {
                    "url": {"type": "string"},
                    "site": {"type": "string", "description": "Profile name; inferred from the URL when omitted."},
                    "flow": {
                        "type": "object",
                        "description": "FlowOptions overrides (target_text_query, target_date_iso, ...).",
                    },
                },
                "required": ["url"],
            },
        ),
        Tool(
            name="list_site_profiles",
            description="List the configured site profiles.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="get_last_result",
            description="Get the latest scrape result recorded for a URL or site key.",
            inputSchema={
                "type": "object",
                "properties": {
                    "url": {"type": "string"},
                    "site_key": {"type": "string"},
                },
                "required": [],
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    engine = get_engine()

    try:
        if name == "scrape_target":
            options = _to_flow_options(engine.default_options, arguments.get("flow") or {})
            result = await engine.run_scrape(arguments["url"], site=arguments.get("site"), options=options)
            return _text(result.to_dict())

        if name == "list_site_profiles":
            return _text(_profile_summary(engine))

        if name == "get_last_result":
            site_key = arguments.get("site_key") or site_key_from_url(arguments.get("url", ""))
            result = engine.last_result(site_key)
            if result is None:
                return _text({"error": f"No result recorded for {site_key}"})
            return _text(result.to_dict())

        return _text({"error": f"Unknown tool: {name}"})

    except Exception as exc:
        logger.exception("tool failure: %s", exc)
        return _text({"error": str(exc), "tool": name})


async def main() -> None:
    logger.info("[Server] Starting Ticketwatch MCP Server...")
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
