"""
Form interaction helpers for the booking steps

Selectors are data: FormSelectors holds the default fallback chains for
the booking site, SelectorCatalog lets a JSON file replace or extend any
chain, and the probe/require helpers interpret a chain against a
BrowserPort. A probe that finds nothing is a normal result; only
require() turns an exhausted chain into an error.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple, Union

from ...exceptions import ElementNotFoundError
from .browser_port import BrowserPort

logger = logging.getLogger(__name__)


class FormSelectors:
    """Default selector chains for the IRCTC booking pages"""

    LOGGED_IN_INDICATORS = [
        "text=Logout",
        "text=LOGOUT",
        "[class*='logout']",
        "[id*='logout']",
        "[class*='user-menu']",
        "[id*='user-menu']",
        ".user-name",
        "[class*='profile']",
    ]

    LOGIN_OPEN_BUTTONS = [
        ".h_head1 > .search_btn",
        ".search_btn",
        "button:has-text('LOGIN')",
        ".loginText",
        "[class*='login']",
        "[id*='login']",
    ]

    USERNAME_FIELDS = [
        "input[placeholder='User Name']",
        "input[placeholder*='User']",
        "input[placeholder*='Username']",
        "input[name*='user']",
        "input[id*='user']",
        "input[type='text']",
    ]

    PASSWORD_FIELDS = [
        "input[placeholder='Password']",
        "input[placeholder*='Password']",
        "input[type='password']",
        "input[name*='pass']",
        "input[id*='pass']",
    ]

    LOGIN_SUBMIT_BUTTONS = [
        ".search_btn.loginText",
        "button[type='submit']",
        "button:has-text('LOGIN')",
        "button:has-text('Login')",
        ".loginText",
        "[class*='login'][class*='btn']",
    ]

    LOGIN_ERROR_MESSAGES = [
        ".error",
        "[class*='error']",
        "[class*='alert']",
        "[id*='error']",
        ".message",
        "[role='alert']",
    ]

    ALERT_BUTTONS = [
        "[role='dialog'] button:has-text('OK')",
        "[role='dialog'] button:has-text('Accept')",
        "[role='dialog'] button:has-text('Agree')",
        ".ui-dialog button:has-text('OK')",
        ".ui-dialog-footer button",
    ]

    CAPTCHA_IMAGES = [
        ".captcha-img",
        "img[class*='captcha']",
        "img[id*='captcha']",
    ]

    CAPTCHA_INPUTS = [
        "#captcha",
        "input[id*='captcha']",
        "input[name*='captcha']",
        "input[placeholder*='Captcha']",
        "input[type='text']",
    ]

    CAPTCHA_SUBMIT_BUTTONS = [
        "button[type='submit']",
        "button:has-text('Submit')",
        "button:has-text('SUBMIT')",
        ".submit-btn",
        "[class*='submit']",
    ]

    SOURCE_STATION_FIELDS = [
        ".ui-autocomplete > .ng-tns-c57-8",
        "input[placeholder*='From']",
        "input[id*='source']",
        "input[name*='source']",
        ".ui-autocomplete input:first-of-type",
    ]

    DESTINATION_STATION_FIELDS = [
        ".ui-autocomplete > .ng-tns-c57-9",
        "input[placeholder*='To']",
        "input[id*='dest']",
        "input[name*='dest']",
        ".ui-autocomplete input:nth-of-type(2)",
    ]

    STATION_SUGGESTIONS = [
        "#p-highlighted-option",
        ".ui-autocomplete-item:first-child",
        "[role='option']:first-child",
        ".ui-autocomplete-list-item:first-child",
    ]

    CALENDAR_INPUTS = [
        ".ui-calendar input",
        ".ui-calendar",
    ]

    CALENDAR_POPUPS = [
        ".ui-datepicker",
        ".p-calendar",
        "[role='dialog']",
    ]

    CALENDAR_MONTHS = [
        ".ui-datepicker-month",
        ".p-datepicker-month",
    ]

    CALENDAR_DAYS = [
        ".ui-datepicker-calendar td a:has-text('{day}')",
        ".p-datepicker-calendar td span:has-text('{day}')",
    ]

    QUOTA_DROPDOWNS = [
        "#journeyQuota > .ui-dropdown",
        "[id*='quota']",
        "[class*='quota']",
        "select[id*='quota']",
    ]

    TATKAL_OPTIONS = [
        ":nth-child(6) > .ui-dropdown-item",
        ".ui-dropdown-item:has-text('Tatkal')",
        "[role='option']:has-text('Tatkal')",
        "li:has-text('Tatkal')",
    ]

    PREMIUM_TATKAL_OPTIONS = [
        ":nth-child(7) > .ui-dropdown-item",
        ".ui-dropdown-item:has-text('Premium Tatkal')",
        "[role='option']:has-text('Premium Tatkal')",
        "li:has-text('Premium Tatkal')",
    ]

    SEARCH_BUTTONS = [
        ".col-md-3 > .search_btn",
        ".search_btn",
        "button:has-text('Search')",
        "button:has-text('SEARCH')",
        "[class*='search'][class*='btn']",
        "[id*='search']",
    ]

    QUOTA_OPEN_INDICATORS = [
        ".bull-back:has-text('{train_no}') button:has-text('Book Now'):not([disabled])",
        ".bull-back:has-text('{train_no}') .link:has-text('AVAILABLE')",
    ]

    TRAIN_ROWS = [
        ".bull-back:has-text('{train_no}'):has-text('{coach}')",
        ".bull-back:has-text('{train_no}')",
        "[class*='train']:has-text('{train_no}')",
        "div:has-text('{train_no}'):has-text('{coach}')",
        "tr:has-text('{train_no}')",
    ]

    BOOK_BUTTONS = [
        "button:has-text('Book')",
        "button:has-text('BOOK')",
        ".book-btn",
        "[class*='book']",
        "a:has-text('Book')",
    ]

    TRAIN_SCAN_ROWS = [
        "[class*='train'], [class*='bull-back'], tr",
    ]

    ADD_PASSENGER_BUTTONS = [
        ".pull-left > a > :nth-child(1)",
        "a:has-text('Add')",
        "button:has-text('Add Passenger')",
        "[class*='add'][class*='passenger']",
    ]

    PASSENGER_NAME_FIELDS = [
        ".ui-autocomplete input",
        "input[placeholder*='Name']",
        "input[formcontrolname*='name']",
        "input[id*='name']",
    ]

    PASSENGER_AGE_FIELDS = [
        "input[formcontrolname='passengerAge']",
        "input[placeholder*='Age']",
        "input[formcontrolname*='age']",
        "input[id*='age']",
        "input[type='number']",
    ]

    PASSENGER_GENDER_FIELDS = [
        "select[formcontrolname='passengerGender']",
        "select[id*='gender']",
        "select[name*='gender']",
    ]

    PASSENGER_BERTH_FIELDS = [
        "select[formcontrolname='passengerBerthChoice']",
        "select[id*='berth']",
        "select[name*='berth']",
        "select[id*='seat']",
    ]

    PASSENGER_FOOD_FIELDS = [
        "select[formcontrolname='passengerFoodChoice']",
        "select[id*='food']",
        "select[name*='food']",
    ]

    BOARDING_DROPDOWNS = [
        ".ui-dropdown.ui-widget.ui-corner-all",
        "[id*='boarding']",
        "[class*='boarding']",
        "select[id*='boarding']",
    ]

    BOARDING_OPTIONS = [
        "li.ui-dropdown-item:has-text('{station}')",
        "[role='option']:has-text('{station}')",
        "li:has-text('{station}')",
    ]

    PAYMENT_CATEGORY_OPTIONS = [
        "#\\32  > .ui-radiobutton > .ui-radiobutton-box",
        "[id*='payment']:has-text('UPI')",
        "input[value*='UPI']",
        "[class*='payment'][class*='upi']",
    ]

    PROCEED_BUTTONS = [
        ".train_Search",
        "button:has-text('Proceed')",
        "button:has-text('PROCEED')",
        "[class*='proceed']",
        "[id*='proceed']",
    ]

    PAYMENT_CAPTCHA_MARKERS = [
        ".captcha-img",
        "[class*='captcha']",
        "[id*='captcha']",
    ]

    UPI_METHOD_TILES = [
        ":nth-child(3) > .col-pad",
        "[class*='upi']",
        "[id*='upi']",
        "button:has-text('UPI')",
        "[class*='payment'][class*='upi']",
    ]

    BANK_TYPE_SELECTORS = [
        ".col-sm-9 > app-bank > #bank-type",
        "#bank-type",
        "[id*='bank-type']",
        "[class*='bank'][class*='type']",
    ]

    BANK_TYPE_UPI_OPTIONS = [
        "#bank-type :has-text('UPI')",
        "[role='option']:has-text('UPI')",
        "li:has-text('UPI')",
    ]

    UPI_ID_TRIGGERS = [
        "#ptm-upi",
        "[id*='upi']",
        "input[placeholder*='UPI']",
        "input[id*='upi-id']",
    ]

    UPI_ID_FIELDS = [
        ".brdr-box .form-ctrl",
        "input[id*='upi']",
        "input[type='text']:visible",
        "input[placeholder*='UPI']",
    ]

    PAY_BUTTONS = [
        ":nth-child(5) > section > .btn",
        "button:has-text('Pay')",
        "button:has-text('PAY')",
        "button:has-text('Submit')",
        "[class*='btn'][class*='pay']",
        "[id*='submit']",
    ]

    @classmethod
    def as_dict(cls) -> Dict[str, Tuple[str, ...]]:
        """All chains keyed by lower-case name (``USERNAME_FIELDS`` -> ``username_fields``)"""
        return {
            name.lower(): tuple(value)
            for name, value in vars(cls).items()
            if name.isupper() and isinstance(value, list)
        }


@dataclass(frozen=True)
class LocatorChain:
    """An ordered list of selectors tried until one matches"""
    name: str
    selectors: Tuple[str, ...]

    def format(self, **values) -> "LocatorChain":
        """Fill ``{placeholders}`` such as ``{train_no}`` in every selector"""
        return LocatorChain(self.name, tuple(s.format(**values) for s in self.selectors))

    def with_hint(self, hint: Optional[str]) -> "LocatorChain":
        """Prepend a caller-supplied selector that is tried first"""
        if not hint:
            return self
        return LocatorChain(self.name, (hint,) + tuple(s for s in self.selectors if s != hint))

    def describe(self) -> str:
        return " or ".join(self.selectors)


@dataclass(frozen=True)
class Probe:
    """Result of interpreting a chain: found or not, and which selector matched"""
    found: bool
    selector: Optional[str] = None


MISSING = Probe(False)


class SelectorCatalog:
    """Named selector chains, defaults merged with optional JSON overrides"""

    def __init__(self, overrides: Optional[Dict[str, Sequence[str]]] = None):
        self._chains: Dict[str, Tuple[str, ...]] = FormSelectors.as_dict()
        for name, selectors in (overrides or {}).items():
            self._chains[name.lower()] = tuple(selectors)

    @classmethod
    def from_file(cls, path: Optional[Union[str, Path]]) -> "SelectorCatalog":
        if not path:
            return cls()
        with open(path, "r", encoding="utf-8") as handle:
            overrides = json.load(handle)
        logger.info(f"Loaded {len(overrides)} selector overrides from {path}")
        return cls(overrides)

    def __getitem__(self, name: str) -> LocatorChain:
        key = name.lower()
        if key not in self._chains:
            raise KeyError(f"Unknown selector chain: {name}")
        return LocatorChain(key, self._chains[key])

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._chains

    def names(self) -> Iterable[str]:
        return sorted(self._chains)


async def probe(browser: BrowserPort, chain: LocatorChain, visible: bool = False) -> Probe:
    """Return the first selector of ``chain`` present on the page"""
    for selector in chain.selectors:
        present = await (browser.is_visible(selector) if visible else browser.element_exists(selector))
        if present:
            return Probe(True, selector)
    return MISSING


async def require(browser: BrowserPort, chain: LocatorChain, visible: bool = False) -> str:
    """Like probe(), but an exhausted chain raises ElementNotFoundError"""
    result = await probe(browser, chain, visible)
    if not result.found:
        raise ElementNotFoundError(chain.describe(), chain.name)
    return result.selector


async def click_first(browser: BrowserPort, chain: LocatorChain, required: bool = False,
                      force: bool = False) -> Probe:
    """Click the first present selector of ``chain``"""
    result = await probe(browser, chain)
    if result.found:
        await browser.click(result.selector, force=force)
    elif required:
        raise ElementNotFoundError(chain.describe(), chain.name)
    return result


async def fill_first(browser: BrowserPort, chain: LocatorChain, value: str,
                     required: bool = False) -> Probe:
    """Fill the first present selector of ``chain`` with ``value``"""
    result = await probe(browser, chain)
    if result.found:
        await browser.fill(result.selector, value)
    elif required:
        raise ElementNotFoundError(chain.describe(), chain.name)
    return result


async def fill_nth(browser: BrowserPort, chain: LocatorChain, index: int, value: str,
                   required: bool = False) -> Probe:
    """Fill the ``index``-th match of the first selector with enough matches"""
    for selector in chain.selectors:
        if await browser.count(selector) > index:
            await browser.fill_nth(selector, index, value)
            return Probe(True, selector)
    if required:
        raise ElementNotFoundError(chain.describe(), f"{chain.name}[{index}]")
    return MISSING


async def select_nth(browser: BrowserPort, chain: LocatorChain, index: int, value: str) -> Probe:
    """Select ``value`` in the ``index``-th match of the first selector with enough matches"""
    for selector in chain.selectors:
        if await browser.count(selector) > index:
            await browser.select_nth(selector, index, value)
            return Probe(True, selector)
    return MISSING
