"""Rendering collaborator: Playwright-based headless browser.

Concurrent renders are capped by a semaphore; the timeout starts once a
slot is held. Every render gets a fresh context carrying only that call's
locale cookies.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from playwright.async_api import Browser, async_playwright

from pricehunt.config.settings import BrowserConfig
from pricehunt.errors import RenderError
from pricehunt.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class PlaywrightRenderer:
    """Renders a URL with scripts enabled and returns the settled DOM."""

    def __init__(self, config: BrowserConfig | None = None) -> None:
        self._config = config or BrowserConfig()
        self._semaphore = asyncio.Semaphore(max(1, self._config.max_concurrent_renders))
        self._playwright: Any = None
        self._browser: Browser | None = None
        self._start_lock = asyncio.Lock()

    async def start(self) -> None:
        async with self._start_lock:
            if self._browser is not None:
                return
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._config.headless,
            )

    async def stop(self) -> None:
        """Clean up browser resources."""
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def render(
        self, url: str, locale: str, wait_selector: str | None, timeout_s: float
    ) -> str | None:
        async with self._semaphore:
            html = await asyncio.wait_for(
                self._render(url, locale, wait_selector, timeout_s), timeout_s
            )
        if not html or not html.strip():
            raise RenderError(f"Empty render output for {url}")
        return html

    async def _render(
        self, url: str, locale: str, wait_selector: str | None, timeout_s: float
    ) -> str:
        try:
            await self.start()
            if self._browser is None:
                raise RenderError("browser did not start")
            context = await self._browser.new_context(
                viewport={
                    "width": self._config.viewport_width,
                    "height": self._config.viewport_height,
                },
                user_agent=self._config.user_agent,
                locale="en-IN",
            )
        except Exception as exc:
            raise RenderError(f"Browser unavailable: {exc}") from exc

        try:
            await context.add_cookies(
                [
                    {"name": "pincode", "value": locale, "url": url},
                    {"name": "location", "value": locale, "url": url},
                ]
            )
            page = await context.new_page()
            timeout_ms = int(timeout_s * 1000)
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            if wait_selector:
                try:
                    await page.wait_for_selector(wait_selector, timeout=timeout_ms)
                except Exception:
                    logger.debug("Wait selector %s not found on %s", wait_selector, url)
            if self._config.settle_ms > 0:
                await page.wait_for_timeout(self._config.settle_ms)
            return await page.content()
        except Exception as exc:
            raise RenderError(f"Render failed for {url}: {exc}") from exc
        finally:
            await self._close_context(context)

    async def _close_context(self, context: Any) -> None:
        try:
            await context.close()
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.BROWSER_CLEANUP_FAILED,
                message=str(exc),
                suppressed=True,
            )
