"""
Probe Page Interface
====================
The browsing-context surface the probe runner drives.

ProbePage is the contract step execution depends on; PlaywrightPage
implements it over a real Chromium page and tests supply an in-memory
double. Console errors and network requests are not read from the page
on demand: the page appends them to a ProbeLogs instance that the runner
passes by reference into every step.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class ProbeLogs:
    """Append-only console/network capture for one flow run."""
    console_errors: List[str] = field(default_factory=list)
    network_requests: List[str] = field(default_factory=list)


class ProbePage(Protocol):
    def url(self) -> str: ...

    async def goto(self, url: str, timeout_ms: int) -> None: ...

    async def click(self, selector: str, timeout_ms: int) -> None: ...

    async def fill(self, selector: str, value: str) -> None: ...

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> None: ...

    async def evaluate(self, script: str) -> Any: ...

    async def screenshot(self, path: str, full_page: bool = True, clip: Optional[Dict[str, float]] = None) -> bytes: ...

    async def wait_for_popup(self, timeout_ms: int) -> bool: ...

    async def set_viewport_size(self, width: int, height: int) -> None: ...

    async def wait(self, ms: int) -> None: ...

    async def close(self) -> None: ...


class PlaywrightPage:
    """ProbePage backed by a Playwright page."""

    def __init__(self, page: Page, logs: ProbeLogs):
        self._page = page
        self.logs = logs
        page.on("console", self._on_console)
        page.on("request", self._on_request)

    def _on_console(self, message) -> None:
        if message.type == "error":
            self.logs.console_errors.append(message.text)

    def _on_request(self, request) -> None:
        self.logs.network_requests.append(f"{request.method} {request.url}")

    def url(self) -> str:
        return self._page.url

    async def goto(self, url: str, timeout_ms: int) -> None:
        await self._page.goto(url, wait_until="networkidle", timeout=timeout_ms)

    async def click(self, selector: str, timeout_ms: int) -> None:
        await self._page.click(selector, timeout=timeout_ms)

    async def fill(self, selector: str, value: str) -> None:
        await self._page.fill(selector, value)

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        await self._page.wait_for_selector(selector, timeout=timeout_ms)

    async def evaluate(self, script: str) -> Any:
        return await self._page.evaluate(script)

    async def screenshot(self, path: str, full_page: bool = True, clip: Optional[Dict[str, float]] = None) -> bytes:
        if clip:
            return await self._page.screenshot(path=path, clip=clip)
        return await self._page.screenshot(path=path, full_page=full_page)

    async def wait_for_popup(self, timeout_ms: int) -> bool:
        try:
            popup = await self._page.wait_for_event("popup", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        try:
            await popup.close()
        except PlaywrightError:
            logger.debug("Popup already closed")
        return True

    async def set_viewport_size(self, width: int, height: int) -> None:
        await self._page.set_viewport_size({"width": width, "height": height})

    async def wait(self, ms: int) -> None:
        await self._page.wait_for_timeout(ms)

    async def close(self) -> None:
        await self._page.close()


class PlaywrightSession:
    """Launches Chromium and hands out one PlaywrightPage per flow run."""

    def __init__(self, headless: bool = True):
        self.headless = headless
        self.logs = ProbeLogs()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self.page: Optional[PlaywrightPage] = None

    async def __aenter__(self) -> "PlaywrightSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=self.headless)
            self._context = await self._browser.new_context()
            self.page = PlaywrightPage(await self._context.new_page(), self.logs)
            logger.info("[PROBE] Browser started | headless=%s", self.headless)

    async def stop(self) -> None:
        if self._context:
            await self._context.close()
            self._context = None
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        self.page = None
        logger.info("[PROBE] Browser stopped")
