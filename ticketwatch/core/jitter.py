from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass

from playwright.async_api import Page


@dataclass(frozen=True)
class JitterPolicy:
    enabled: bool = True
    seed: int | None = None
    scroll_delta_min: int = -120
    scroll_delta_max: int = 240
    sleep_ms_min: int = 60
    sleep_ms_max: int = 220


class HumanJitter:
    """Small scroll/mouse/sleep perturbations so polling is not perfectly periodic."""

    def __init__(self, policy: JitterPolicy | None = None) -> None:
        self._policy = policy or JitterPolicy()
        self._rng = random.Random(self._policy.seed)

    @property
    def policy(self) -> JitterPolicy:
        return self._policy

    def randint(self, minimum: int, maximum: int) -> int:
        if maximum < minimum:
            minimum, maximum = maximum, minimum
        return self._rng.randint(minimum, maximum)

    async def _sleep_ms(self, minimum_ms: int, maximum_ms: int) -> None:
        if maximum_ms <= 0:
            return
        delay_ms = self.randint(max(0, minimum_ms), maximum_ms)
        if delay_ms <= 0:
            return
        await asyncio.sleep(delay_ms / 1000.0)

    async def jitter(self, page: Page) -> None:
        if not self._policy.enabled:
            return
        try:
            delta = self.randint(self._policy.scroll_delta_min, self._policy.scroll_delta_max)
            await page.mouse.wheel(0, delta)
        except Exception:
            pass
        try:
            await self._sleep_ms(self._policy.sleep_ms_min, self._policy.sleep_ms_max)
        except Exception:
            pass
        try:
            viewport = page.viewport_size or {"width": 1280, "height": 800}
            x = self.randint(10, max(11, int(viewport["width"]) - 10))
            y = self.randint(10, max(11, int(viewport["height"]) - 10))
            await page.mouse.move(x, y, steps=self.randint(2, 6))
        except Exception:
            pass

    async def pause(self, minimum_ms: int = 200, maximum_ms: int = 700) -> None:
        """Human "think time" between interactions."""
        if not self._policy.enabled:
            return
        await self._sleep_ms(minimum_ms, maximum_ms)
