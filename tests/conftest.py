"""
Shared fixtures: an in-memory browser, instant settings and sample requests
"""

from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from railbooker.config import AppPaths, AutomationSettings, RetryConfig
from railbooker.exceptions import ElementNotFoundError
from railbooker.models.booking import BookingRequest
from railbooker.services.automation.browser_port import BrowserPort
from railbooker.services.captcha_service import OcrEngine

ENTRY_URL = "https://www.irctc.co.in/nget/train-search"
CAPTCHA_SRC = "data:image/png;base64,iVBORw0KGgo="


class FakeBrowser(BrowserPort):
    """BrowserPort backed by sets and dicts; hooks simulate page reactions"""

    def __init__(self):
        super().__init__()
        self.initialized = False
        self.url = "about:blank"
        self.body = ""
        self.visible: Set[str] = set()
        self.counts: Dict[str, int] = {}
        self.values: Dict[str, str] = {}
        self.nth_values: Dict[Tuple[str, int], str] = {}
        self.selected: Dict[Tuple[str, int], str] = {}
        self.attributes: Dict[Tuple[str, str], str] = {}
        self.text: Dict[str, str] = {}
        self.row_texts: Dict[str, List[str]] = {}
        self.nested: Set[Tuple[str, str]] = set()
        self.cookies: List[Dict[str, Any]] = []

        self.clicks: List[str] = []
        self.presses: List[Tuple[str, str]] = []
        self.navigations: List[str] = []
        self.on_click: Dict[str, Callable[["FakeBrowser"], None]] = {}
        self.on_press: Dict[Tuple[str, str], Callable[["FakeBrowser"], None]] = {}
        self.click_failures: Dict[str, int] = {}

        self.response_arrives = True
        self.interactions_reached = True
        self.init_kwargs: Optional[Dict[str, Any]] = None
        self.stealth_installed = False
        self.dialogs_handled = False
        self.observed: List[Any] = []
        self.closed = False

    # helpers for tests
    def show(self, *selectors: str):
        self.visible.update(selectors)

    def hide(self, *selectors: str):
        self.visible.difference_update(selectors)

    @property
    def is_initialized(self) -> bool:
        return self.initialized

    @property
    def current_url(self) -> str:
        self._require_initialized("read the current URL")
        return self.url

    async def initialize(self, headless=True, proxy=None, cookies=None):
        self.initialized = True
        self.init_kwargs = {"headless": headless, "proxy": proxy, "cookies": cookies}
        if cookies:
            self.cookies.extend(cookies)

    async def close(self):
        self.closed = True
        self.initialized = False

    async def install_stealth(self):
        self._require_initialized("install stealth script")
        self.stealth_installed = True

    async def handle_native_dialogs(self):
        self._require_initialized("register dialog handler")
        self.dialogs_handled = True

    async def navigate(self, url, timeout=90.0):
        self._require_initialized("navigate")
        self.navigations.append(url)
        self.url = url

    async def wait_for_load(self, state="networkidle", timeout=30.0):
        self._require_initialized("wait for load state")
        return True

    async def wait_for_element(self, selectors: Sequence[str], timeout=10.0, visible=True):
        self._require_initialized("wait for element")
        for selector in selectors:
            if await self.element_exists(selector):
                return selector
        raise ElementNotFoundError(" or ".join(selectors), "element", timeout)

    async def observe_response(self, signature):
        self.observed.append(signature)

    async def wait_for_response(self, signature, timeout):
        self._require_initialized("wait for response")
        return self.response_arrives

    async def wait_for_interactions(self, threshold, timeout):
        self._require_initialized("wait for user interactions")
        return self.interactions_reached

    def _require_present(self, selector: str):
        if selector not in self.visible and self.counts.get(selector, 0) == 0:
            raise ElementNotFoundError(selector, "element", 0.1)

    async def click(self, selector, force=False):
        self._require_initialized("click")
        self._require_present(selector)
        if self.click_failures.get(selector, 0) > 0:
            self.click_failures[selector] -= 1
            raise ElementNotFoundError(selector, "flaky element", 0.1)
        self.clicks.append(selector)
        if selector in self.on_click:
            self.on_click[selector](self)

    async def fill(self, selector, value, clear_first=True):
        self._require_initialized("fill")
        self._require_present(selector)
        self.values[selector] = value

    async def press(self, selector, key):
        self._require_initialized("press key")
        self.presses.append((selector, key))
        if (selector, key) in self.on_press:
            self.on_press[(selector, key)](self)

    async def select_option(self, selector, value):
        self._require_initialized("select option")
        self.selected[(selector, 0)] = value

    async def get_text(self, selector):
        self._require_initialized("read text")
        return self.text.get(selector, "")

    async def get_attribute(self, selector, name):
        self._require_initialized("read attribute")
        return self.attributes.get((selector, name))

    async def input_value(self, selector):
        self._require_initialized("read input value")
        return self.values.get(selector, "")

    async def element_exists(self, selector):
        return await self.count(selector) > 0

    async def is_visible(self, selector):
        return self.initialized and selector in self.visible

    async def count(self, selector):
        if not self.initialized:
            return 0
        return self.counts.get(selector, 1 if selector in self.visible else 0)

    async def fill_nth(self, selector, index, value):
        self._require_initialized("fill")
        self.nth_values[(selector, index)] = value

    async def select_nth(self, selector, index, value):
        self._require_initialized("select option")
        self.selected[(selector, index)] = value

    async def click_nth(self, selector, index):
        self._require_initialized("click")
        self.clicks.append(f"{selector}[{index}]")

    async def texts(self, selector):
        self._require_initialized("read texts")
        return list(self.row_texts.get(selector, []))

    async def click_within(self, parent_selector, child_selector):
        self._require_initialized("click")
        if (parent_selector, child_selector) not in self.nested:
            return False
        self.clicks.append(f"{parent_selector} >> {child_selector}")
        return True

    async def body_text(self):
        self._require_initialized("read page text")
        return self.body

    async def screenshot(self, name):
        return None

    async def evaluate(self, script):
        self._require_initialized("evaluate script")
        return None

    async def get_cookies(self):
        self._require_initialized("read cookies")
        return list(self.cookies)

    async def add_cookies(self, cookies):
        self._require_initialized("add cookies")
        self.cookies.extend(cookies)


class FakeOcrEngine(OcrEngine):
    """Returns scripted answers in order, repeating the last one; exceptions are raised"""

    name = "FakeOCR"

    def __init__(self, answers: Sequence[str] = ("ab 12c",)):
        self.answers = list(answers)
        self.calls = 0

    async def extract_text(self, image_src):
        answer = self.answers[min(self.calls, len(self.answers) - 1)]
        self.calls += 1
        if isinstance(answer, Exception):
            raise answer
        return answer


def make_request_data(**overrides) -> Dict[str, Any]:
    data = {
        "TRAIN_NO": "12951",
        "TRAIN_COACH": "SL",
        "SOURCE_STATION": "NDLS",
        "DESTINATION_STATION": "MMCT",
        "TRAVEL_DATE": "05/11/2026",
        "BOARDING_STATION": None,
        "TATKAL": False,
        "PREMIUM_TATKAL": False,
        "PASSENGER_DETAILS": [
            {"NAME": "Asha Rao", "AGE": 34, "GENDER": "Female", "SEAT": "Lower", "FOOD": "Veg"}
        ],
        "USERNAME": "traveller01",
        "PASSWORD": "s3cret-pass",
        "UPI_ID": "traveller@upi",
        "CAPTCHA_SOLVER_TYPE": "EasyOCR",
        "HEADLESS_MODE": True,
    }
    data.update(overrides)
    return data


def script_happy_site(browser: FakeBrowser, request: BookingRequest):
    """Make every step of the journey find what it looks for"""
    # login
    browser.show(
        ".h_head1 > .search_btn",
        "input[placeholder='User Name']",
        "input[placeholder='Password']",
        ".captcha-img",
        "#captcha",
    )
    browser.attributes[(".captcha-img", "src")] = CAPTCHA_SRC
    browser.cookies = [{
        "name": "JSESSIONID", "value": "abc", "domain": ".irctc.co.in", "path": "/",
        "expires": -1, "httpOnly": True, "secure": True, "sameSite": "Lax",
    }]

    def captcha_accepted(page: FakeBrowser):
        page.body = "Book Ticket  My Account"
        page.hide(".captcha-img", "#captcha")
        page.show("text=Logout")

    browser.on_press[("#captcha", "Enter")] = captcha_accepted

    # search
    browser.show(
        "input[placeholder*='From']",
        "input[placeholder*='To']",
        "#p-highlighted-option",
        ".ui-calendar input",
        "#journeyQuota > .ui-dropdown",
        ".ui-dropdown-item:has-text('Tatkal')",
        ".col-md-3 > .search_btn",
    )

    # train selection
    row = f".bull-back:has-text('{request.train_no}'):has-text('{request.train_coach}')"
    browser.show(row)
    browser.nested.add((row, "button:has-text('Book')"))

    # passenger details
    passengers = len(request.passengers)
    browser.counts["input[placeholder*='Name']"] = 1
    browser.counts["input[formcontrolname='passengerAge']"] = 1
    for name in ("select[formcontrolname='passengerGender']",
                 "select[formcontrolname='passengerBerthChoice']",
                 "select[formcontrolname='passengerFoodChoice']"):
        browser.counts[name] = passengers
    browser.show("a:has-text('Add')", ".train_Search")

    def add_row(page: FakeBrowser):
        page.counts["input[placeholder*='Name']"] += 1
        page.counts["input[formcontrolname='passengerAge']"] += 1

    browser.on_click["a:has-text('Add')"] = add_row

    # payment
    browser.show(
        "[class*='upi']",
        "#bank-type",
        "li:has-text('UPI')",
        "#ptm-upi",
        "input[id*='upi']",
        "button:has-text('Pay')",
    )


@pytest.fixture
def fast_settings() -> AutomationSettings:
    """Settings with every delay at zero and a single retry"""
    return replace(
        AutomationSettings(),
        settle_delay=0,
        short_delay=0,
        suggestion_delay=0,
        step_delay=0,
        pause_poll_interval=0.01,
        login_signal_timeout=0.1,
        click_threshold_timeout=0.1,
        captcha_retry_delay=0,
        captcha_settle_delay=0,
        captcha_image_timeout=0.1,
        manual_poll_interval=0.01,
        manual_captcha_timeout=0.05,
        quota_poll_interval=0.01,
        quota_poll_attempts=5,
        step_retry=RetryConfig(max_retries=1, initial_delay=0, max_delay=0),
    )


@pytest.fixture
def fake_browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def ocr_engine() -> FakeOcrEngine:
    return FakeOcrEngine()


@pytest.fixture
def request_data() -> Dict[str, Any]:
    return make_request_data()


@pytest.fixture
def request_factory() -> Callable[..., BookingRequest]:
    return lambda **overrides: BookingRequest.from_dict(make_request_data(**overrides))


@pytest.fixture
def booking_request(request_factory) -> BookingRequest:
    return request_factory()


@pytest.fixture
def app_paths(tmp_path) -> AppPaths:
    return AppPaths(tmp_path / "railbooker")


@pytest.fixture
def happy_site() -> Callable[[FakeBrowser, BookingRequest], None]:
    return script_happy_site


@pytest.fixture
def ocr_engine_factory() -> Callable[..., FakeOcrEngine]:
    return FakeOcrEngine
