"""Playwright browser adapter.

Implements the core BrowserSessionPort with a visible Chromium window. All
Playwright failures are translated into core portal errors here.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import Any, Callable, Iterator, Optional

from playwright.async_api import Browser, ElementHandle, Error as PlaywrightError, Page, Playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from core.errors import PortalError, PortalTimeout

LOGGER = logging.getLogger(__name__)

HIGHLIGHT_SCRIPT = """
(el) => {
    el.style.outline = '3px solid #25D366';
    el.style.boxShadow = '0 0 10px #25D366';
    el.scrollIntoView({ behavior: 'smooth', block: 'center', inline: 'center' });
}
"""


def _ms(seconds: float) -> float:
    return max(seconds, 0) * 1000


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except PlaywrightTimeoutError as exc:
        raise PortalTimeout(f"{action} timed out: {exc}") from exc
    except PlaywrightError as exc:
        raise PortalError(f"{action} failed: {exc}") from exc


class PlaywrightSession:
    """One Chromium window driven through Playwright's async API."""

    def __init__(self, headless: bool = False) -> None:
        self._headless = headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._page: Optional[Page] = None
        self._close_callbacks: list[Callable[[], None]] = []
        self._closing = False

    def on_close(self, callback: Callable[[], None]) -> None:
        self._close_callbacks.append(callback)

    def _handle_external_close(self, *_: Any) -> None:
        # Our own close() sets _closing first, so only user-initiated closes notify.
        if self._closing:
            return
        self._closing = True
        self._page = None
        for callback in list(self._close_callbacks):
            callback()

    def _require_page(self) -> Page:
        if self._page is None:
            raise PortalError("No portal page is open")
        return self._page

    async def open_page(self, url: str, timeout: float) -> None:
        with _translate_errors("Opening the portal"):
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                args=["--start-maximized"],
            )
            context = await self._browser.new_context(no_viewport=True)
            self._page = await context.new_page()
            self._page.on("close", self._handle_external_close)
            self._browser.on("disconnected", self._handle_external_close)
            LOGGER.info("Navigating to portal entry page")
            await self._page.goto(url, wait_until="networkidle", timeout=_ms(timeout))

    async def navigate(self, url: str, timeout: float) -> None:
        page = self._require_page()
        with _translate_errors(f"Navigating to {url}"):
            await page.goto(url, wait_until="networkidle", timeout=_ms(timeout))

    async def wait_for_navigation(self, timeout: float) -> None:
        page = self._require_page()
        with _translate_errors("Waiting for the portal login"):
            await page.wait_for_event(
                "framenavigated",
                predicate=lambda frame: frame == page.main_frame,
                timeout=_ms(timeout),
            )
            await page.wait_for_load_state("networkidle", timeout=_ms(timeout))

    async def fill(self, selector: str, value: str, timeout: float) -> None:
        page = self._require_page()
        with _translate_errors(f"Filling {selector}"):
            await page.fill(selector, value, timeout=_ms(timeout))

    async def click_selector(self, selector: str, timeout: float) -> None:
        page = self._require_page()
        with _translate_errors(f"Clicking {selector}"):
            await page.click(selector, timeout=_ms(timeout))

    async def find_element(self, selector: str, timeout_ms: int = 0) -> Optional[ElementHandle]:
        page = self._require_page()
        with _translate_errors(f"Looking up {selector}"):
            if timeout_ms <= 0:
                return await page.query_selector(selector)
            try:
                return await page.wait_for_selector(selector, state="attached", timeout=timeout_ms)
            except PlaywrightTimeoutError:
                return None

    async def highlight(self, element: ElementHandle) -> None:
        try:
            await element.evaluate(HIGHLIGHT_SCRIPT)
        except PlaywrightError as exc:
            LOGGER.warning("Could not highlight element: %s", exc)

    async def click(self, element: ElementHandle) -> None:
        with _translate_errors("Clicking element"):
            await element.click()

    async def close(self) -> None:
        self._closing = True
        self._page = None
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None
        with _translate_errors("Closing the browser"):
            try:
                # Still needed after an external close: the process may outlive the window.
                if browser is not None:
                    await browser.close()
            finally:
                if playwright is not None:
                    await playwright.stop()
