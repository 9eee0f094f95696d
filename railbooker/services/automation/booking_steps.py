"""
Step handlers for each active booking state

Each handler performs the page work of one state and either returns
(the workflow then fires Next) or raises (the workflow fires Error).
Browser interactions run inside the step RetryExecutor so that slow or
flaky pages are retried, while verification failures surface at once.
"""

import logging
from datetime import datetime, time as dtime, timedelta, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from ...config import AutomationSettings
from ...exceptions import (
    AutomationError, BrowserNotInitializedError, CaptchaBackendError, CaptchaSolveError,
    ElementNotFoundError, FormInteractionError, ItemNotFoundError, LoginFailedError, NetworkError,
    PersistenceError, QuotaWindowTimeoutError, RequestValidationError, VerificationError
)
from ...models.booking import BookingRequest, Passenger
from ..captcha_service import CaptchaService
from ..session_service import SessionStore
from ..token_service import TokenService
from .browser_port import BrowserPort
from .cancellation import CancellationToken
from .form_helpers import (
    LocatorChain, SelectorCatalog, click_first, fill_first, fill_nth, probe, require, select_nth
)
from .result_detector import LoginStateDetector
from .retry_executor import RetryExecutor

T = TypeVar("T")

IST = timezone(timedelta(hours=5, minutes=30), "IST")

NON_RETRYABLE_ERRORS = (
    VerificationError,
    CaptchaSolveError,
    CaptchaBackendError,
    BrowserNotInitializedError,
    RequestValidationError,
)

LogFunction = Callable[..., None]


def is_transient(error: Exception) -> bool:
    """Errors worth retrying: missing elements, flaky clicks, navigation hiccups"""
    return not isinstance(error, NON_RETRYABLE_ERRORS)


def quota_window_opens_at(request: BookingRequest, settings: AutomationSettings) -> datetime:
    """Tatkal booking opens the day before the journey, earlier for AC classes"""
    if request.train_coach.upper() in settings.ac_classes:
        open_time = settings.ac_quota_open_time
    else:
        open_time = settings.non_ac_quota_open_time
    hour, minute = (int(part) for part in open_time.split(":"))
    day_before = request.journey_date - timedelta(days=1)
    return datetime.combine(day_before, dtime(hour, minute), tzinfo=IST)


class BookingSteps:
    """Page work for every active state of the booking journey"""

    def __init__(self, request: BookingRequest, browser: BrowserPort, captcha: CaptchaService,
                 session_store: SessionStore, settings: AutomationSettings, selectors: SelectorCatalog,
                 retry: RetryExecutor, cancel_token: CancellationToken, log: LogFunction,
                 token_service: Optional[TokenService] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.request = request
        self.browser = browser
        self.captcha = captcha
        self.session_store = session_store
        self.settings = settings
        self.selectors = selectors
        self.retry = retry
        self.cancel_token = cancel_token
        self.log = log
        self.token_service = token_service
        self._clock = clock or (lambda: datetime.now(IST))

        # fetched during Authenticating; login itself still goes through the form
        self.auth_token: Optional[str] = None
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def _attempt(self, description: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.retry.execute(operation, should_retry=is_transient, description=description)

    async def _pause(self, delay: float):
        await self.cancel_token.sleep(delay)

    def _chain(self, name: str) -> LocatorChain:
        return self.selectors[name]

    # Initializing

    async def initialize(self):
        cookies = self.session_store.prepare_for_run(self.request.proxy_enabled)
        if self.request.proxy_enabled:
            self.log("Proxy enabled, starting with a fresh session")
        elif cookies:
            self.log(f"Restoring saved session ({len(cookies)} cookies)")

        await self._attempt("launch browser", lambda: self.browser.initialize(
            headless=self.request.headless, proxy=self.request.proxy, cookies=cookies
        ))
        await self._attempt("install stealth script", self.browser.install_stealth)
        await self._attempt("register dialog handler", self.browser.handle_native_dialogs)
        await self.browser.observe_response(self.settings.login_signal)
        self.log("Browser ready")

    # Authenticating

    async def authenticate(self):
        await self._pause(self.settings.settle_delay)
        token_config = self.request.token
        if token_config is None or not token_config.use_token or self.token_service is None:
            return

        try:
            self.auth_token = await self.token_service.fetch_token(token_config)
            self.log("Auth token ready")
        except NetworkError as e:
            self.log(f"Could not fetch auth token, continuing with form login: {e.message}", logging.WARNING)

    # LoggingIn

    async def login(self):
        await self._attempt("open booking site", lambda: self.browser.navigate(
            self.settings.entry_url, self.settings.navigation_timeout
        ))
        await self._pause(self.settings.settle_delay)
        await self._dismiss_alerts()

        if await self._is_logged_in():
            self.log("Already logged in, reusing saved session")
            await self._save_session()
            return

        self.log(f"Logging in as {self.request.username}")
        await self._attempt("open login form", lambda: click_first(
            self.browser, self._chain("login_open_buttons"), required=True
        ))
        await self._pause(self.settings.short_delay)

        await self._attempt("fill username", lambda: fill_first(
            self.browser, self._chain("username_fields"), self.request.username, required=True
        ))
        password = await self._attempt("fill password", lambda: fill_first(
            self.browser, self._chain("password_fields"), self.request.password, required=True
        ))

        await self.captcha.solve_and_submit(self.browser)

        if not await self._is_logged_in():
            submit = await probe(self.browser, self._chain("login_submit_buttons"), visible=True)
            if submit.found:
                await self._attempt("submit login", lambda: self.browser.click(submit.selector))
            else:
                await self._attempt("submit login", lambda: self.browser.press(password.selector, "Enter"))

        if not await self.cancel_token.wait(self.browser.wait_for_response(
            self.settings.login_signal, self.settings.login_signal_timeout
        )):
            self.log("Login response not observed, checking page state", logging.WARNING)

        await self._pause(self.settings.settle_delay)
        if not await self._is_logged_in():
            raise LoginFailedError(self.request.username, await self._login_error_message())

        self.log("Login successful")
        if not await self.cancel_token.wait(self.browser.wait_for_interactions(
            self.settings.click_threshold, self.settings.click_threshold_timeout
        )):
            self.log("Click threshold not reached, continuing", logging.WARNING)
        await self._save_session()

    async def _is_logged_in(self) -> bool:
        indicator = await probe(self.browser, self._chain("logged_in_indicators"), visible=True)
        if indicator.found:
            return True
        return LoginStateDetector.looks_logged_in(
            await self.browser.body_text(), self.browser.current_url, self.settings.logged_in_keywords
        )

    async def _login_error_message(self) -> Optional[str]:
        for selector in self._chain("login_error_messages").selectors:
            if await self.browser.is_visible(selector):
                try:
                    text = await self.browser.get_text(selector)
                except FormInteractionError as e:
                    self.logger.debug(f"Could not read login error {selector}: {e.message}")
                    continue
                if text:
                    return text
        return None

    async def _dismiss_alerts(self):
        for selector in self._chain("alert_buttons").selectors:
            if await self.browser.is_visible(selector):
                try:
                    await self.browser.click(selector)
                    self.log("Dismissed site alert")
                except (ElementNotFoundError, FormInteractionError) as e:
                    self.logger.debug(f"Could not dismiss alert {selector}: {e.message}")

    async def _save_session(self):
        try:
            self.session_store.save_from_browser(await self.browser.get_cookies())
        except PersistenceError as e:
            self.log(f"Could not save session: {e.message}", logging.WARNING)

    # Searching

    async def search(self):
        if self.settings.search_url_marker not in self.browser.current_url:
            await self._attempt("open search page", lambda: self.browser.navigate(
                self.settings.entry_url, self.settings.navigation_timeout
            ))
            await self._pause(self.settings.settle_delay)

        await self._attempt("fill source station", lambda: self._fill_station(
            self._chain("source_station_fields"), self.request.source_station, "source"
        ))
        await self._attempt("fill destination station", lambda: self._fill_station(
            self._chain("destination_station_fields"), self.request.destination_station, "destination"
        ))
        await self._select_travel_date()

        if self.request.is_quota_booking:
            await self._attempt("select quota", self._select_quota)

        await self._attempt("search trains", lambda: click_first(
            self.browser, self._chain("search_buttons"), required=True
        ))
        self.log(f"Searching trains {self.request.source_station} -> {self.request.destination_station}")
        await self._pause(self.settings.settle_delay)
        await self.browser.wait_for_load("networkidle", self.settings.network_idle_timeout)

    async def _fill_station(self, chain: LocatorChain, station: str, label: str):
        field = await require(self.browser, chain, visible=True)
        await self.browser.click(field)
        await self.browser.fill(field, station)
        await self._pause(self.settings.suggestion_delay)

        suggestion = await click_first(self.browser, self._chain("station_suggestions"))
        if not suggestion.found:
            await self.browser.press(field, "Enter")
        self.log(f"Selected {label} station: {station}")

    async def _select_travel_date(self):
        strategies = [
            ("typed date", self._type_date),
            ("calendar widget", self._pick_date_from_calendar),
        ]
        for name, strategy in strategies:
            try:
                if await strategy():
                    self.log(f"Travel date {self.request.travel_date} set via {name}")
                    return
            except AutomationError as e:
                self.logger.debug(f"Date strategy '{name}' failed: {e.message}")

        await self._attempt("type travel date", self._type_date_and_tab)
        self.log(f"Travel date {self.request.travel_date} typed without confirmation", logging.WARNING)

    async def _type_date(self) -> bool:
        field = await require(self.browser, self._chain("calendar_inputs"))
        await self.browser.click(field)
        await self.browser.fill(field, self.request.travel_date)
        await self.browser.press(field, "Enter")
        await self._pause(self.settings.short_delay)

        day, _, year = self.request.travel_date.split("/")
        value = await self.browser.input_value(field)
        return day in value and year in value

    async def _pick_date_from_calendar(self) -> bool:
        field = await require(self.browser, self._chain("calendar_inputs"))
        await self.browser.click(field)
        popup = await probe(self.browser, self._chain("calendar_popups"), visible=True)
        if not popup.found:
            return False

        await click_first(self.browser, self._chain("calendar_months"))
        day = str(self.request.journey_date.day)
        picked = await click_first(self.browser, self._chain("calendar_days").format(day=day))
        return picked.found

    async def _type_date_and_tab(self):
        field = await require(self.browser, self._chain("calendar_inputs"))
        await self.browser.fill(field, self.request.travel_date)
        await self.browser.press(field, "Tab")

    async def _select_quota(self):
        dropdown = await click_first(self.browser, self._chain("quota_dropdowns"))
        if not dropdown.found:
            self.log("Quota dropdown not found, searching with the general quota", logging.WARNING)
            return

        await self._pause(self.settings.short_delay)
        if self.request.premium_tatkal:
            quota, chain = "Premium Tatkal", self._chain("premium_tatkal_options")
        else:
            quota, chain = "Tatkal", self._chain("tatkal_options")

        option = await click_first(self.browser, chain)
        if option.found:
            self.log(f"Selected {quota} quota")
        else:
            self.log(f"{quota} option not found in quota dropdown", logging.WARNING)

    # WaitingForQuotaWindow

    async def wait_for_quota_window(self):
        if not self.request.is_quota_booking:
            self.log("No Tatkal quota requested, skipping booking window wait")
            return

        opens_at = quota_window_opens_at(self.request, self.settings)
        self.log(f"Waiting for the Tatkal window (opens {opens_at:%d/%m/%Y %H:%M} IST)")

        attempts = self.settings.quota_poll_attempts
        for _ in range(attempts):
            self.cancel_token.raise_if_cancelled()
            if await self._quota_window_open(opens_at):
                self.log("Tatkal booking window is open")
                return
            await self._pause(self.settings.quota_poll_interval)

        raise QuotaWindowTimeoutError(attempts, self.settings.quota_poll_interval)

    async def _quota_window_open(self, opens_at: datetime) -> bool:
        if self._clock() >= opens_at:
            return True
        indicators = self._chain("quota_open_indicators").format(train_no=self.request.train_no)
        return (await probe(self.browser, indicators)).found

    # SelectingItem

    async def select_item(self):
        await self._pause(self.settings.settle_delay)
        await self._attempt("select train", self._click_train)
        await self._pause(self.settings.settle_delay)
        await self.browser.wait_for_load("networkidle", self.settings.network_idle_timeout)

    async def _click_train(self):
        train_no, coach = self.request.train_no, self.request.train_coach
        rows = self._chain("train_rows").format(train_no=train_no, coach=coach)

        for row in rows.selectors:
            if not await self.browser.element_exists(row):
                continue
            for button in self._chain("book_buttons").selectors:
                if await self.browser.click_within(row, button):
                    self.log(f"Booking train {train_no} ({coach})")
                    return
            await self.browser.click(row)
            self.log(f"Selected train row {train_no} ({coach})")
            return

        if train_no in await self.browser.body_text():
            for scan in self._chain("train_scan_rows").selectors:
                for index, text in enumerate(await self.browser.texts(scan)):
                    if train_no in text and coach in text:
                        await self.browser.click_nth(scan, index)
                        self.log(f"Selected train {train_no} ({coach}) by text scan")
                        return

        raise ItemNotFoundError(train_no, coach)

    # FillingDetails

    async def fill_details(self):
        await self._pause(self.settings.settle_delay)

        for index, passenger in enumerate(self.request.passengers):
            if index > 0:
                added = await self._attempt("add passenger row", lambda: click_first(
                    self.browser, self._chain("add_passenger_buttons")
                ))
                if not added.found:
                    self.log("Add passenger button not found", logging.WARNING)
                await self._pause(self.settings.short_delay)

            await self._attempt(
                f"fill passenger {index + 1}",
                lambda i=index, p=passenger: self._fill_passenger(i, p)
            )

        if self.request.boarding_station:
            await self._attempt("select boarding station", self._select_boarding_station)

        category = await self._attempt("select payment category", lambda: click_first(
            self.browser, self._chain("payment_category_options")
        ))
        if not category.found:
            self.log("Payment category option not found", logging.WARNING)

        await self._attempt("continue to payment", lambda: click_first(
            self.browser, self._chain("proceed_buttons"), required=True
        ))
        self.log("Passenger details submitted")
        await self._pause(self.settings.settle_delay)
        await self.browser.wait_for_load("networkidle", self.settings.network_idle_timeout)

    async def _fill_passenger(self, index: int, passenger: Passenger):
        await fill_nth(self.browser, self._chain("passenger_name_fields"), index, passenger.name, required=True)
        await fill_nth(self.browser, self._chain("passenger_age_fields"), index, str(passenger.age), required=True)

        preferences = [
            ("passenger_gender_fields", passenger.gender, "gender"),
            ("passenger_berth_fields", passenger.seat, "berth preference"),
            ("passenger_food_fields", passenger.food, "food choice"),
        ]
        for chain_name, value, label in preferences:
            try:
                selected = await select_nth(self.browser, self._chain(chain_name), index, value)
            except FormInteractionError as e:
                self.log(f"Passenger {index + 1}: could not set {label}: {e.message}", logging.WARNING)
                continue
            if not selected.found:
                self.log(f"Passenger {index + 1}: {label} field not found", logging.WARNING)

        self.log(f"Filled passenger {index + 1}: {passenger.name}")

    async def _select_boarding_station(self):
        dropdown = await click_first(self.browser, self._chain("boarding_dropdowns"))
        if not dropdown.found:
            self.log("Boarding station dropdown not found", logging.WARNING)
            return

        await self._pause(self.settings.short_delay)
        station = self.request.boarding_station
        option = await click_first(self.browser, self._chain("boarding_options").format(station=station))
        if option.found:
            self.log(f"Selected boarding station: {station}")
        else:
            self.log(f"Boarding station {station} not offered", logging.WARNING)

    # Payment

    async def payment(self):
        await self._pause(self.settings.settle_delay)
        await self.browser.wait_for_load("domcontentloaded", self.settings.network_idle_timeout)

        captcha_marker = await probe(self.browser, self._chain("payment_captcha_markers"), visible=True)
        if captcha_marker.found:
            self.log("Payment page CAPTCHA detected")
            await self.captcha.solve_and_submit(self.browser)

        tile = await self._attempt("select UPI payment", lambda: click_first(
            self.browser, self._chain("upi_method_tiles")
        ))
        if not tile.found:
            self.log("UPI payment option not found", logging.WARNING)

        await self._attempt("select UPI bank type", self._select_bank_type)

        if not self.request.payment_id:
            self.log("No UPI ID provided, leaving the payment page for manual completion", logging.WARNING)
            return

        await self._attempt("open UPI ID entry", lambda: click_first(
            self.browser, self._chain("upi_id_triggers")
        ))
        await self._attempt("enter UPI ID", lambda: fill_first(
            self.browser, self._chain("upi_id_fields"), self.request.payment_id, required=True
        ))
        await self._attempt("submit payment", lambda: click_first(
            self.browser, self._chain("pay_buttons"), required=True
        ))
        await self._pause(self.settings.settle_delay)
        self.log("Payment submitted, approve the collect request in your UPI app")

    async def _select_bank_type(self):
        bank_type = await click_first(self.browser, self._chain("bank_type_selectors"))
        if bank_type.found:
            await self._pause(self.settings.short_delay)
            await click_first(self.browser, self._chain("bank_type_upi_options"))
