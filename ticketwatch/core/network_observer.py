from __future__ import annotations

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Optional

from playwright.async_api import Page, Request, Response

from ticketwatch.core.contracts import QuietOptions, WaitTimeout

logger = logging.getLogger("ticketwatch.network")

SUSPICIOUS_PATTERN = re.compile(r"robot|captcha|unique id|we think you", re.IGNORECASE)


@dataclass(frozen=True)
class NetworkEvent:
    seq: int
    ts: str
    kind: str
    method: str
    url: str
    status: int | None = None
    error_signature: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "ts": self.ts,
            "kind": self.kind,
            "method": self.method,
            "url": self.url,
            "status": self.status,
            "error_signature": self.error_signature,
        }


@dataclass(frozen=True)
class SuspiciousResponse:
    ts: str
    url: str
    status: int
    body: str


class _QuietWaiter:
    def __init__(self, loop: asyncio.AbstractEventLoop, idle_ms: int, max_inflight: int) -> None:
        self.loop = loop
        self.idle_s = max(0, idle_ms) / 1000.0
        self.max_inflight = max_inflight
        self.future: asyncio.Future[None] = loop.create_future()
        self.timer: asyncio.TimerHandle | None = None

    def arm(self) -> None:
        if self.timer is not None or self.future.done():
            return
        self.timer = self.loop.call_later(self.idle_s, self._fire)

    def disarm(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def _fire(self) -> None:
        self.timer = None
        if not self.future.done():
            self.future.set_result(None)


class NetworkObserver:
    """Per-page network monitor.

    Owns the in-flight request counter for exactly one page. Quiescence waits are
    debounced over the request event stream rather than polled, so short bursts
    between polls cannot be missed.
    """

    def __init__(self, max_events: int = 512, max_suspicious: int = 20) -> None:
        self._page: Optional[Page] = None
        self._events: Deque[NetworkEvent] = deque(maxlen=max_events)
        self._suspicious: Deque[SuspiciousResponse] = deque(maxlen=max_suspicious)
        self._active = False
        self._seq = 0
        self._inflight = 0
        self._waiters: set[_QuietWaiter] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def inflight(self) -> int:
        return self._inflight

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    async def attach(self, page: Page) -> None:
        if self._active:
            return
        self._page = page
        self._active = True
        page.on("request", self._on_request)
        page.on("requestfinished", self._on_request_finished)
        page.on("requestfailed", self._on_request_failed)
        page.on("response", self._on_response)

    async def detach(self) -> None:
        if not self._page:
            return
        self._page.remove_listener("request", self._on_request)
        self._page.remove_listener("requestfinished", self._on_request_finished)
        self._page.remove_listener("requestfailed", self._on_request_failed)
        self._page.remove_listener("response", self._on_response)
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        for waiter in list(self._waiters):
            waiter.disarm()
            if not waiter.future.done():
                waiter.future.cancel()
        self._waiters.clear()
        self._active = False
        self._page = None

    def _now(self) -> str:
        return datetime.now(tz=timezone.utc).isoformat()

    def _track_task(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_request(self, request: Request) -> None:
        self._inflight += 1
        for waiter in self._waiters:
            waiter.disarm()
        self._events.append(
            NetworkEvent(
                seq=self._next_seq(),
                ts=self._now(),
                kind="request",
                method=request.method,
                url=request.url,
            )
        )

    def _request_done(self) -> None:
        self._inflight = max(0, self._inflight - 1)
        for waiter in self._waiters:
            if self._inflight <= waiter.max_inflight:
                waiter.arm()

    def _on_request_finished(self, request: Request) -> None:
        self._request_done()

    def _on_request_failed(self, request: Request) -> None:
        self._request_done()
        failure = request.failure
        self._events.append(
            NetworkEvent(
                seq=self._next_seq(),
                ts=self._now(),
                kind="request_failed",
                method=request.method,
                url=request.url,
                error_signature=failure or "request_failed",
            )
        )
        logger.debug("[Network] request failed %s (%s)", request.url, failure)

    def _on_response(self, response: Response) -> None:
        self._events.append(
            NetworkEvent(
                seq=self._next_seq(),
                ts=self._now(),
                kind="response",
                method=response.request.method,
                url=response.url,
                status=response.status,
            )
        )
        if self.is_suspicious(response.url, response.status, response.status_text):
            self._track_task(self._capture_suspicious(response))

    @staticmethod
    def is_suspicious(url: str, status: int, status_text: str = "") -> bool:
        return status >= 400 or bool(SUSPICIOUS_PATTERN.search(f"{url} {status_text or ''}"))

    async def _capture_suspicious(self, response: Response) -> None:
        try:
            body = await response.text()
        except Exception as exc:
            logger.debug("[Network] could not read body of %s: %s", response.url, exc)
            body = ""
        self._suspicious.append(
            SuspiciousResponse(ts=self._now(), url=response.url, status=response.status, body=body)
        )
        logger.info("[Network] suspicious response %s -> %s", response.url, response.status)

    async def await_quiet(self, options: QuietOptions | None = None) -> None:
        """Resolve once no more than ``max_inflight`` requests stay open for ``idle_ms``.

        Raises WaitTimeout when ``timeout_ms`` elapses first.
        """
        opts = options or QuietOptions()
        loop = asyncio.get_running_loop()
        waiter = _QuietWaiter(loop, idle_ms=opts.idle_ms, max_inflight=opts.max_inflight)
        self._waiters.add(waiter)
        if self._inflight <= waiter.max_inflight:
            waiter.arm()
        try:
            await asyncio.wait_for(asyncio.shield(waiter.future), timeout=max(0, opts.timeout_ms) / 1000.0)
        except asyncio.TimeoutError as exc:
            raise WaitTimeout(
                f"network not quiet within {opts.timeout_ms}ms (inflight={self._inflight})"
            ) from exc
        finally:
            waiter.disarm()
            if not waiter.future.done():
                waiter.future.cancel()
            self._waiters.discard(waiter)

    def network_log(self) -> list[dict[str, Any]]:
        return [event.to_dict() for event in self._events]

    def drain_suspicious(self) -> list[SuspiciousResponse]:
        items = list(self._suspicious)
        self._suspicious.clear()
        return items
