"""
Abstract base class for browser automation

Defines the surface the booking steps drive. The steps only ever see
selector strings, never driver-specific element objects, so any adapter
(Playwright, or an in-memory fake in tests) can stand behind it.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence

from ...config import ResponseSignature
from ...exceptions import BrowserNotInitializedError
from ...models.booking import ProxyConfig


class BrowserPort(ABC):
    """Abstract base class for browser automation backends"""

    def __init__(self):
        """Initialize the backend"""
        self.on_log_message: Optional[Callable[[str], None]] = None

    def set_log_callback(self, callback: Optional[Callable[[str], None]]):
        """Set the logging callback function"""
        self.on_log_message = callback

    def _log(self, message: str):
        """Internal logging helper"""
        if self.on_log_message:
            self.on_log_message(message)

    def _require_initialized(self, operation: str):
        if not self.is_initialized:
            raise BrowserNotInitializedError(operation)

    @property
    @abstractmethod
    def is_initialized(self) -> bool:
        """True once initialize() has produced a page"""

    @property
    @abstractmethod
    def current_url(self) -> str:
        """URL of the active page"""

    # Lifecycle

    @abstractmethod
    async def initialize(self, headless: bool = True, proxy: Optional[ProxyConfig] = None,
                         cookies: Optional[List[Dict[str, Any]]] = None):
        """
        Launch a browser context and open a page

        Args:
            headless: Run without a visible window
            proxy: Route traffic through this proxy when enabled and valid
            cookies: Playwright-format cookies restored into the context
        """

    @abstractmethod
    async def close(self):
        """Release every browser resource; safe to call twice"""

    @abstractmethod
    async def install_stealth(self):
        """Install anti-automation-detection measures on the page"""

    @abstractmethod
    async def handle_native_dialogs(self):
        """Auto-accept native alert/confirm dialogs"""

    # Navigation and waits

    @abstractmethod
    async def navigate(self, url: str, timeout: float = 90.0):
        """Open ``url`` and wait for it to settle"""

    @abstractmethod
    async def wait_for_load(self, state: str = "networkidle", timeout: float = 30.0) -> bool:
        """Wait for a load state; False on timeout"""

    @abstractmethod
    async def wait_for_element(self, selectors: Sequence[str], timeout: float = 10.0,
                               visible: bool = True) -> str:
        """
        Wait for the first of ``selectors`` to appear

        Returns:
            The selector that matched

        Raises:
            ElementNotFoundError: none matched in time; a screenshot is attached
        """

    @abstractmethod
    async def observe_response(self, signature: ResponseSignature):
        """Start recording network responses matching ``signature``"""

    @abstractmethod
    async def wait_for_response(self, signature: ResponseSignature, timeout: float) -> bool:
        """Wait for an observed response; False on timeout"""

    @abstractmethod
    async def wait_for_interactions(self, threshold: int, timeout: float) -> bool:
        """Wait until the user has clicked ``threshold`` times on the page; False on timeout"""

    # Element interaction

    @abstractmethod
    async def click(self, selector: str, force: bool = False):
        """Scroll the first match into view and click it"""

    @abstractmethod
    async def fill(self, selector: str, value: str, clear_first: bool = True):
        """Fill an input and verify the value stuck, refilling once on mismatch"""

    @abstractmethod
    async def press(self, selector: str, key: str):
        """Press a keyboard key on an element"""

    @abstractmethod
    async def select_option(self, selector: str, value: str):
        """Select an option of a <select> by value or label"""

    @abstractmethod
    async def get_text(self, selector: str) -> str:
        """Inner text of the first match"""

    @abstractmethod
    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        """Attribute of the first match"""

    @abstractmethod
    async def input_value(self, selector: str) -> str:
        """Current value of an input"""

    @abstractmethod
    async def element_exists(self, selector: str) -> bool:
        """True if at least one element matches; never raises"""

    @abstractmethod
    async def is_visible(self, selector: str) -> bool:
        """True if the first match is visible; never raises"""

    @abstractmethod
    async def count(self, selector: str) -> int:
        """Number of matches; 0 on error"""

    @abstractmethod
    async def fill_nth(self, selector: str, index: int, value: str):
        """Fill the ``index``-th match"""

    @abstractmethod
    async def select_nth(self, selector: str, index: int, value: str):
        """Select an option in the ``index``-th match"""

    @abstractmethod
    async def click_nth(self, selector: str, index: int):
        """Click the ``index``-th match"""

    @abstractmethod
    async def texts(self, selector: str) -> List[str]:
        """Text content of every match"""

    @abstractmethod
    async def click_within(self, parent_selector: str, child_selector: str) -> bool:
        """Click ``child_selector`` inside the first ``parent_selector``; False if absent"""

    # Page level

    @abstractmethod
    async def body_text(self) -> str:
        """Visible text of the page body"""

    @abstractmethod
    async def screenshot(self, name: str) -> Optional[str]:
        """Save a full-page screenshot and return its path"""

    @abstractmethod
    async def evaluate(self, script: str) -> Any:
        """Evaluate JavaScript on the page"""

    @abstractmethod
    async def get_cookies(self) -> List[Dict[str, Any]]:
        """Cookies of the browser context, Playwright format"""

    @abstractmethod
    async def add_cookies(self, cookies: List[Dict[str, Any]]):
        """Add Playwright-format cookies to the browser context"""
