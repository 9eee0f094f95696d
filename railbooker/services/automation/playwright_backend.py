"""
Playwright implementation of the browser port

Launches Chrome with anti-detection tweaks, restores saved cookies,
watches network responses for the login signal and exposes the
selector-based operations the booking steps use.
"""

import asyncio
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from playwright.async_api import (
    Browser, BrowserContext, Dialog, Locator, Page, Playwright, Response, async_playwright
)
from playwright.async_api import TimeoutError as PlaywrightTimeoutError, Error as PlaywrightError

from ...config import AutomationSettings, ResponseSignature
from ...exceptions import (
    BrowserInitializationError, ElementNotFoundError, FormInteractionError, PageNavigationError
)
from ...models.booking import ProxyConfig
from .browser_port import BrowserPort

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-ipc-flooding-protection",
    "--disable-hang-monitor",
    "--disable-prompt-on-repost",
    "--disable-sync",
]

STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
window.chrome = { runtime: {} };
const originalQuery = window.navigator.permissions.query;
window.navigator.permissions.query = (parameters) => (
    parameters.name === 'notifications'
        ? Promise.resolve({ state: Notification.permission })
        : originalQuery(parameters)
);
"""

CLICK_COUNTER_SCRIPT = """
(threshold) => {
    if (window.__railbookerClickCounter) {
        window.__railbookerClickCounter.threshold = threshold;
        return;
    }
    window.__railbookerClickCounter = { count: 0, threshold: threshold, reached: false };
    document.addEventListener('click', () => {
        const counter = window.__railbookerClickCounter;
        counter.count += 1;
        if (counter.count >= counter.threshold) {
            counter.reached = true;
        }
    }, true);
}
"""

CLICK_THRESHOLD_REACHED = "() => !!(window.__railbookerClickCounter && window.__railbookerClickCounter.reached)"


class PlaywrightBrowser(BrowserPort):
    """Playwright automation backend for the booking workflow"""

    def __init__(self, settings: Optional[AutomationSettings] = None,
                 screenshot_dir: Optional[Path] = None):
        super().__init__()
        self.settings = settings or AutomationSettings()
        self.screenshot_dir = Path(screenshot_dir or "screenshots")
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        # Playwright browser management
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.browser_context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

        self._observed: Dict[ResponseSignature, asyncio.Event] = {}

    @property
    def is_initialized(self) -> bool:
        return self.page is not None

    @property
    def current_url(self) -> str:
        self._require_initialized("read the current URL")
        return self.page.url

    @property
    def _timeout_ms(self) -> float:
        return self.settings.element_timeout * 1000

    async def initialize(self, headless: bool = True, proxy: Optional[ProxyConfig] = None,
                         cookies: Optional[List[Dict[str, Any]]] = None):
        """Initialize Playwright browser, context and page"""
        await self.close()
        try:
            self.playwright = await async_playwright().start()

            launch_options: Dict[str, Any] = {
                "headless": headless,
                "args": LAUNCH_ARGS,
                "timeout": 60000,
            }
            if self.settings.browser_channel:
                launch_options["channel"] = self.settings.browser_channel
            self.browser = await self.playwright.chromium.launch(**launch_options)

            context_options: Dict[str, Any] = {
                "viewport": {"width": self.settings.viewport_width, "height": self.settings.viewport_height},
                "user_agent": self.settings.user_agent,
                "locale": self.settings.locale,
                "timezone_id": self.settings.timezone_id,
            }
            if proxy is not None and proxy.enabled:
                if proxy.is_valid:
                    context_options["proxy"] = proxy.to_playwright()
                    self._log(f"Using proxy {proxy.server}")
                else:
                    self.logger.warning("Proxy is enabled but invalid, launching without it")
            self.browser_context = await self.browser.new_context(**context_options)

            # Block media files but keep images for captcha
            await self.browser_context.route(
                "**/*.{mp4,avi,mov,wmv,flv,webm,mp3,wav,ogg}", lambda route: route.abort()
            )

            if cookies:
                await self.browser_context.add_cookies(cookies)
                self._log(f"Restored {len(cookies)} session cookies")

            self.page = await self.browser_context.new_page()
            self.page.on("response", self._on_response)
            self._log("Browser initialized successfully")

        except PlaywrightError as e:
            await self.close()
            error = BrowserInitializationError(f"Failed to initialize browser: {str(e)}", "playwright")
            self.logger.error(str(error))
            raise error from e

    async def close(self):
        """Clean up Playwright browser resources"""
        try:
            if self.browser_context:
                await self.browser_context.close()
            if self.browser:
                await self.browser.close()
            if self.playwright:
                await self.playwright.stop()
        except PlaywrightError as e:
            self.logger.warning(f"Error during browser cleanup: {e}")
        finally:
            self.page = None
            self.browser_context = None
            self.browser = None
            self.playwright = None
            self._observed.clear()

    async def install_stealth(self):
        self._require_initialized("install stealth script")
        await self.page.add_init_script(STEALTH_SCRIPT)

    async def handle_native_dialogs(self):
        self._require_initialized("register dialog handler")
        self.page.on("dialog", self._accept_dialog)

    async def _accept_dialog(self, dialog: Dialog):
        self.logger.info(f"Accepting {dialog.type} dialog: {dialog.message}")
        await dialog.accept()

    def _on_response(self, response: Response):
        for signature, event in self._observed.items():
            if signature.matches(response.url, response.request.method, response.status):
                self.logger.debug(f"Observed response {response.status} {response.url}")
                event.set()

    # Navigation and waits

    async def navigate(self, url: str, timeout: float = 90.0):
        """Navigate to URL, tolerating slow network idle on the booking site"""
        self._require_initialized("navigate")
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            current = self.page.url
            if any(marker in current for marker in self.settings.trusted_url_markers):
                self.logger.warning(f"Navigation timed out but page is on {current}, continuing")
                return
            raise PageNavigationError(url, 1, f"Timeout after {timeout}s")
        except PlaywrightError as e:
            raise PageNavigationError(url, 1, str(e)) from e

        if not await self.wait_for_load("networkidle", self.settings.network_idle_timeout):
            self.logger.warning(f"Network did not go idle on {url}, continuing")

    async def wait_for_load(self, state: str = "networkidle", timeout: float = 30.0) -> bool:
        self._require_initialized("wait for load state")
        try:
            await self.page.wait_for_load_state(state, timeout=timeout * 1000)
            return True
        except PlaywrightTimeoutError:
            return False

    async def wait_for_element(self, selectors: Sequence[str], timeout: float = 10.0,
                               visible: bool = True) -> str:
        """Wait for element with multiple selectors"""
        self._require_initialized("wait for element")
        per_selector = max(timeout / max(len(selectors), 1), 0.5)
        for selector in selectors:
            try:
                await self.page.locator(selector).first.wait_for(
                    state="visible" if visible else "attached", timeout=per_selector * 1000
                )
                return selector
            except PlaywrightTimeoutError:
                continue

        shot = await self.screenshot("error")
        raise ElementNotFoundError(
            selector=" or ".join(selectors),
            element_type="element",
            timeout=timeout,
            screenshot=shot
        )

    async def observe_response(self, signature: ResponseSignature):
        self._observed.setdefault(signature, asyncio.Event())

    async def wait_for_response(self, signature: ResponseSignature, timeout: float) -> bool:
        self._require_initialized("wait for response")
        event = self._observed.setdefault(signature, asyncio.Event())
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def wait_for_interactions(self, threshold: int, timeout: float) -> bool:
        self._require_initialized("wait for user interactions")
        deadline = time.monotonic() + timeout
        try:
            await self.page.evaluate(CLICK_COUNTER_SCRIPT, threshold)
            while time.monotonic() < deadline:
                if await self.page.evaluate(CLICK_THRESHOLD_REACHED):
                    await asyncio.sleep(1)
                    return True
                await asyncio.sleep(0.1)
        except PlaywrightError as e:
            self.logger.warning(f"Click counter unavailable: {e}")
        return False

    # Element interaction

    async def _visible(self, selector: str) -> Locator:
        await self.wait_for_element([selector], self.settings.element_timeout)
        locator = self.page.locator(selector).first
        try:
            await locator.scroll_into_view_if_needed(timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise FormInteractionError("scroll to", selector, {"error": str(e)}) from e
        return locator

    async def click(self, selector: str, force: bool = False):
        self._require_initialized("click")
        locator = await self._visible(selector)
        try:
            await locator.click(force=force, timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise FormInteractionError("click", selector, {"error": str(e)}) from e

    async def fill(self, selector: str, value: str, clear_first: bool = True):
        self._require_initialized("fill")
        locator = await self._visible(selector)
        try:
            if clear_first:
                await locator.clear(timeout=self._timeout_ms)
            await locator.fill(value, timeout=self._timeout_ms)
            if await locator.input_value() != value:
                self.logger.debug(f"Value mismatch on {selector}, refilling")
                await locator.clear()
                await locator.fill(value)
        except PlaywrightError as e:
            raise FormInteractionError("fill", selector, {"error": str(e), "value_length": len(value)}) from e

    async def press(self, selector: str, key: str):
        self._require_initialized("press key")
        try:
            await self.page.locator(selector).first.press(key, timeout=self.settings.element_timeout * 1000)
        except PlaywrightError as e:
            raise FormInteractionError(f"press {key}", selector, {"error": str(e)}) from e

    async def select_option(self, selector: str, value: str):
        self._require_initialized("select option")
        locator = await self._visible(selector)
        try:
            await locator.select_option(value, timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise FormInteractionError("select", selector, {"value": value, "error": str(e)}) from e

    async def get_text(self, selector: str) -> str:
        self._require_initialized("read text")
        try:
            return (await self.page.locator(selector).first.inner_text(timeout=self._timeout_ms)).strip()
        except PlaywrightError as e:
            raise FormInteractionError("read text", selector, {"error": str(e)}) from e

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        self._require_initialized("read attribute")
        try:
            return await self.page.locator(selector).first.get_attribute(name, timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise FormInteractionError(f"read {name}", selector, {"error": str(e)}) from e

    async def input_value(self, selector: str) -> str:
        self._require_initialized("read input value")
        try:
            return await self.page.locator(selector).first.input_value(timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise FormInteractionError("read value", selector, {"error": str(e)}) from e

    async def element_exists(self, selector: str) -> bool:
        return await self.count(selector) > 0

    async def is_visible(self, selector: str) -> bool:
        if not self.is_initialized:
            return False
        try:
            return await self.page.locator(selector).first.is_visible()
        except PlaywrightError:
            return False

    async def count(self, selector: str) -> int:
        if not self.is_initialized:
            return 0
        try:
            return await self.page.locator(selector).count()
        except PlaywrightError:
            return 0

    async def fill_nth(self, selector: str, index: int, value: str):
        self._require_initialized("fill")
        locator = self.page.locator(selector).nth(index)
        try:
            await locator.scroll_into_view_if_needed(timeout=self._timeout_ms)
            await locator.fill(value, timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise FormInteractionError(f"fill #{index}", selector, {"error": str(e), "value_length": len(value)}) from e

    async def select_nth(self, selector: str, index: int, value: str):
        self._require_initialized("select option")
        try:
            await self.page.locator(selector).nth(index).select_option(value, timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise FormInteractionError(f"select #{index}", selector, {"value": value, "error": str(e)}) from e

    async def click_nth(self, selector: str, index: int):
        self._require_initialized("click")
        locator = self.page.locator(selector).nth(index)
        try:
            await locator.scroll_into_view_if_needed(timeout=self._timeout_ms)
            await locator.click(timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise FormInteractionError(f"click #{index}", selector, {"error": str(e)}) from e

    async def texts(self, selector: str) -> List[str]:
        self._require_initialized("read texts")
        try:
            return await self.page.locator(selector).all_inner_texts()
        except PlaywrightError as e:
            raise FormInteractionError("read texts", selector, {"error": str(e)}) from e

    async def click_within(self, parent_selector: str, child_selector: str) -> bool:
        self._require_initialized("click")
        child = self.page.locator(parent_selector).first.locator(child_selector).first
        try:
            if await child.count() == 0:
                return False
            await child.scroll_into_view_if_needed(timeout=self._timeout_ms)
            await child.click(timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise FormInteractionError("click", f"{parent_selector} >> {child_selector}", {"error": str(e)}) from e
        return True

    # Page level

    async def body_text(self) -> str:
        self._require_initialized("read page text")
        try:
            return await self.page.locator("body").inner_text(timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise FormInteractionError("read text", "body", {"error": str(e)}) from e

    async def screenshot(self, name: str) -> Optional[str]:
        if not self.is_initialized:
            return None
        self.screenshot_dir.mkdir(parents=True, exist_ok=True)
        path = self.screenshot_dir / f"{name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.png"
        try:
            await self.page.screenshot(path=str(path), full_page=True)
        except PlaywrightError as e:
            self.logger.warning(f"Could not save screenshot {path}: {e}")
            return None
        self.logger.info(f"Screenshot saved: {path}")
        return str(path)

    async def evaluate(self, script: str) -> Any:
        self._require_initialized("evaluate script")
        try:
            return await self.page.evaluate(script)
        except PlaywrightError as e:
            raise FormInteractionError("evaluate", "page", {"error": str(e)}) from e

    async def get_cookies(self) -> List[Dict[str, Any]]:
        self._require_initialized("read cookies")
        return await self.browser_context.cookies()

    async def add_cookies(self, cookies: List[Dict[str, Any]]):
        self._require_initialized("add cookies")
        await self.browser_context.add_cookies(cookies)
