"""Human-like pointer, scroll and typing patterns for Playwright pages."""

from __future__ import annotations
from tracking import t

import asyncio
import random
from typing import Optional, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page


class HumanLikeActions:
    """Drive a page with the pacing of a person filling a form."""

    def __init__(self, page: Page, *, speed_multiplier: float = 1.0) -> None:
        t('automation.driver.human_behaviors.HumanLikeActions.__init__')
        self.page = page
        self.speed_multiplier = speed_multiplier
        self._pointer: Optional[Tuple[float, float]] = None

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------
    def _scaled(self, seconds: float) -> float:
        t('automation.driver.human_behaviors.HumanLikeActions._scaled')
        return max(0.02, seconds / self.speed_multiplier)

    async def pause(self, minimum: float, maximum: float) -> None:
        t('automation.driver.human_behaviors.HumanLikeActions.pause')
        await asyncio.sleep(self._scaled(random.uniform(minimum, maximum)))

    async def quick_pause(self) -> None:
        """Short hesitation between two form actions."""
        t('automation.driver.human_behaviors.HumanLikeActions.quick_pause')
        await self.pause(0.15, 0.45)

    # ------------------------------------------------------------------
    # Typing
    # ------------------------------------------------------------------
    async def type_text(self, locator, text: str) -> None:
        """Click into a field, clear it and type character by character."""
        t('automation.driver.human_behaviors.HumanLikeActions.type_text')
        await locator.click()
        await self.quick_pause()
        await locator.fill("")
        for char in text or "":
            delay = max(25, int(random.randint(60, 160) / self.speed_multiplier))
            await locator.type(char, delay=delay)
        await self.pause(0.2, 0.6)

    # ------------------------------------------------------------------
    # Pointer
    # ------------------------------------------------------------------
    async def _viewport(self) -> Tuple[float, float]:
        t('automation.driver.human_behaviors.HumanLikeActions._viewport')
        size = self.page.viewport_size
        if size:
            return float(size.get("width", 1280)), float(size.get("height", 800))
        dims = await self.page.evaluate(
            "({width: window.innerWidth || 1280, height: window.innerHeight || 800})"
        )
        return float(dims.get("width", 1280)), float(dims.get("height", 800))

    async def _glide_to(self, x: float, y: float) -> None:
        """Move the pointer along a cubic Bezier curve instead of a straight line."""
        t('automation.driver.human_behaviors.HumanLikeActions._glide_to')
        if self._pointer is None:
            width, height = await self._viewport()
            self._pointer = (width / 2, height * 0.7)
        start_x, start_y = self._pointer

        bend_a = (start_x + random.uniform(-90, 90), start_y + random.uniform(-90, 90))
        bend_b = (x + random.uniform(-90, 90), y + random.uniform(-90, 90))
        steps = random.randint(8, 14)

        for step in range(1, steps + 1):
            ratio = step / steps
            rest = 1 - ratio
            px = (rest ** 3 * start_x + 3 * rest ** 2 * ratio * bend_a[0]
                  + 3 * rest * ratio ** 2 * bend_b[0] + ratio ** 3 * x)
            py = (rest ** 3 * start_y + 3 * rest ** 2 * ratio * bend_a[1]
                  + 3 * rest * ratio ** 2 * bend_b[1] + ratio ** 3 * y)
            try:
                await self.page.mouse.move(px, py)
            except PlaywrightError:
                continue
            await asyncio.sleep(self._scaled(random.uniform(0.03, 0.08)))

        self._pointer = (x, y)

    async def wander_pointer(self, moves: int = 2) -> None:
        """Drift the pointer around the visible page."""
        t('automation.driver.human_behaviors.HumanLikeActions.wander_pointer')
        width, height = await self._viewport()
        for _ in range(moves):
            await self._glide_to(
                random.uniform(width * 0.2, width * 0.8),
                random.uniform(height * 0.2, height * 0.8),
            )
            await self.pause(0.1, 0.35)

    async def scroll_a_little(self) -> None:
        """Scroll down and partly back up, like skimming the page."""
        t('automation.driver.human_behaviors.HumanLikeActions.scroll_a_little')
        try:
            await self.page.mouse.wheel(0, random.randint(120, 320))
            await self.pause(0.3, 0.7)
            if random.random() < 0.5:
                await self.page.mouse.wheel(0, -random.randint(40, 140))
                await self.pause(0.2, 0.5)
        except PlaywrightError:
            pass

    async def click_like_a_person(self, locator) -> None:
        """Aim near the element, settle on its centre, then click."""
        t('automation.driver.human_behaviors.HumanLikeActions.click_like_a_person')
        try:
            box = await locator.bounding_box()
        except PlaywrightError:
            box = None
        if box:
            await self._glide_to(
                box["x"] + box["width"] * random.uniform(0.3, 0.7) + random.uniform(-12, 12),
                box["y"] + box["height"] * random.uniform(0.3, 0.7) + random.uniform(-8, 8),
            )
            await self.pause(0.1, 0.3)
            await self._glide_to(box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)
        await locator.click()

    async def retry_page_interaction(self) -> None:
        """Sequence used when the site answers a submit with its retry page."""
        t('automation.driver.human_behaviors.HumanLikeActions.retry_page_interaction')
        await self.wander_pointer(moves=random.randint(2, 3))
        await self.scroll_a_little()
        await self.quick_pause()


__all__ = ["HumanLikeActions"]
