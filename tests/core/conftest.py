import asyncio
import time
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeout

from ticketwatch.core.classifier import EVIDENCE_JS
from ticketwatch.core.date_match import TILE_CLICK_JS, TILE_COLLECT_JS
from ticketwatch.core.readiness import DOUBLE_RAF_JS, READINESS_SIGNAL_JS
from ticketwatch.core.session_store import COLLECT_LOCAL_STORAGE_JS, RESTORE_LOCAL_STORAGE_JS
from ticketwatch.core.wait_manager import BODY_TEXT_LENGTH_JS, CLICK_TEXT_CONTROL_JS, HAS_TEXT_CONTROL_JS


class FakePage:
    """In-memory stand-in for a Playwright page, driven by the page scripts it receives."""

    def __init__(self) -> None:
        self._t0 = time.monotonic()
        self.url = "https://www.example.com/"
        self.document_state = "complete"
        self.spinner_until = 0.0
        self.loading_text = False
        self.present: Callable[[float], bool] = lambda elapsed: False
        self.absent: Callable[[float], bool] = lambda elapsed: False
        self.controls: list[str] = []
        self.clicked: list[str] = []
        self.selectors: set[str] = set()
        self.handles: dict[str, MagicMock] = {}
        self.body_text_length = 0
        self.tiles: list[dict[str, Any]] = []
        self.tile_clicks: list[int] = []
        self.next_url: Optional[str] = None
        self.local_storage: dict[str, str] = {}
        self.html = "<html><body></body></html>"
        self.fail_scripts = False
        self.hang_evidence = False
        self.listeners: dict[str, list[Callable[..., Any]]] = {}
        self.viewport_size = {"width": 1280, "height": 800}

        self.mouse = MagicMock()
        self.mouse.wheel = AsyncMock()
        self.mouse.move = AsyncMock()
        self.keyboard = MagicMock()
        self.keyboard.type = AsyncMock()
        self.keyboard.press = AsyncMock()
        self.context = MagicMock()
        self.context.cookies = AsyncMock(return_value=[])
        self.context.add_cookies = AsyncMock()
        self.wait_for_load_state = AsyncMock()
        self.goto = AsyncMock()
        self.reload = AsyncMock()

    def elapsed(self) -> float:
        return time.monotonic() - self._t0

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if script == READINESS_SIGNAL_JS:
            if self.fail_scripts:
                raise RuntimeError("execution context was destroyed")
            return {
                "documentState": self.document_state,
                "spinnerVisible": self.elapsed() < self.spinner_until,
                "loadingTextVisible": self.loading_text,
            }
        if script == DOUBLE_RAF_JS:
            return True
        if script == EVIDENCE_JS:
            if self.hang_evidence:
                await asyncio.Event().wait()
            if self.fail_scripts:
                raise RuntimeError("execution context was destroyed")
            elapsed = self.elapsed()
            return {"present": self.present(elapsed), "absent": self.absent(elapsed)}
        if script == CLICK_TEXT_CONTROL_JS:
            for label in arg["labels"]:
                if any(label in control.lower() for control in self.controls):
                    self.clicked.append(label)
                    return label
            return None
        if script == TILE_COLLECT_JS:
            return [
                {"index": index, "text": tile["text"], "hasAffordance": bool(tile.get("has_affordance"))}
                for index, tile in enumerate(self.tiles)
                if len(tile["text"]) > arg["minTextLength"]
            ]
        if script == TILE_CLICK_JS:
            self.tile_clicks.append(arg["index"])
            tile = self.tiles[arg["index"]]
            if tile.get("has_affordance"):
                return "affordance"
            return "link" if tile.get("has_link") else None
        if script == COLLECT_LOCAL_STORAGE_JS:
            return dict(self.local_storage)
        if script == RESTORE_LOCAL_STORAGE_JS:
            self.local_storage.update(arg)
            return len(arg)
        return None

    async def wait_for_function(self, script: str, arg: Any = None, timeout: float = 30_000) -> bool:
        if script == HAS_TEXT_CONTROL_JS:
            wanted = [label.lower() for label in arg["labels"]]
            if any(label in control.lower() for control in self.controls for label in wanted):
                return True
        elif script == BODY_TEXT_LENGTH_JS:
            if self.body_text_length > arg:
                return True
        raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded.")

    async def wait_for_selector(self, selector: str, timeout: float = 30_000, state: str = "visible") -> MagicMock:
        for part in selector.split(", "):
            if part in self.selectors:
                handle = self.handles.setdefault(part, MagicMock())
                handle.click = AsyncMock()
                return handle
        raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def wait_for_url(self, predicate: Callable[[str], bool], timeout: float = 30_000) -> None:
        if self.next_url and predicate(self.next_url):
            self.url = self.next_url
            self.next_url = None
            return
        raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for navigation")

    async def wait_for_event(self, event: str, predicate: Any = None, timeout: float = 30_000) -> Any:
        raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {event}")

    async def content(self) -> str:
        return self.html

    async def screenshot(self, path: str, full_page: bool = False, type: str = "png") -> bytes:
        data = b"\x89PNG\r\n\x1a\nfake"
        with open(path, "wb") as handle:
            handle.write(data)
        return data

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        self.listeners.setdefault(event, []).append(callback)

    def remove_listener(self, event: str, callback: Callable[..., Any]) -> None:
        if callback in self.listeners.get(event, []):
            self.listeners[event].remove(callback)

    def emit(self, event: str, payload: Any) -> None:
        for callback in list(self.listeners.get(event, [])):
            callback(payload)


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage()
