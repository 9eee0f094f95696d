"""
CaptchaService for the booking workflow

Reads the CAPTCHA image from the page, extracts its text with the OCR
engine chosen for the run, types the answer and checks how the site
reacted. The engine is picked once from the CaptchaBackend of the
booking request:

- EasyOcrEngine posts the image to an EasyOCR HTTP server
- TesseractEngine runs pytesseract locally in a worker thread
- ManualEngine does no OCR and waits for the user to solve it in the browser
"""

import asyncio
import base64
import binascii
import io
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import httpx
import pytesseract
from PIL import Image

from ..config import AutomationSettings
from ..exceptions import (
    AutomationError, CaptchaBackendError, CaptchaSolveError, ElementNotFoundError, FormInteractionError
)
from ..models.booking import CaptchaBackend
from .automation.browser_port import BrowserPort
from .automation.form_helpers import LocatorChain, SelectorCatalog, click_first, probe
from .automation.result_detector import CaptchaOutcome, CaptchaOutcomeDetector

_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")
_DATA_URL = re.compile(r"^data:image/[A-Za-z0-9.+-]+;base64,")


def clean_captcha_text(text: Optional[str]) -> str:
    """Strip everything but ASCII letters and digits and upper-case the rest"""
    if not text:
        return ""
    return _NON_ALPHANUMERIC.sub("", text).upper()


def decode_image_source(image_src: str) -> bytes:
    """Decode a data URL or bare base64 string into image bytes"""
    payload = _DATA_URL.sub("", image_src.strip())
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CaptchaBackendError("image", f"CAPTCHA image is not base64 data: {e}") from e


@dataclass
class CaptchaAttempt:
    """One read of the CAPTCHA image"""
    raw_image_ref: str
    extracted_text: str
    cleaned_text: str
    accepted: bool = False


class OcrEngine(ABC):
    """Turns a CAPTCHA image source into text"""

    name = "ocr"
    requires_user = False

    @abstractmethod
    async def extract_text(self, image_src: str) -> str:
        """Return the raw text read from ``image_src`` (a data URL or base64 string)"""


class EasyOcrEngine(OcrEngine):
    """Client for an EasyOCR HTTP server exposing /extract-text and /health"""

    name = "EasyOCR"

    def __init__(self, server_url: str = "http://localhost:5000", timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def extract_text(self, image_src: str) -> str:
        payload = {"image": _DATA_URL.sub("", image_src.strip())}
        try:
            async with self._client() as client:
                response = await client.post(f"{self.server_url}/extract-text", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise CaptchaBackendError(self.name, str(e)) from e
        except ValueError as e:
            raise CaptchaBackendError(self.name, f"invalid JSON response: {e}") from e

        return data.get("extractedText") or data.get("extracted_text") or ""

    async def health_check(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get(f"{self.server_url}/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            self.logger.warning(f"EasyOCR server not reachable at {self.server_url}: {e}")
            return False


class TesseractEngine(OcrEngine):
    """Local OCR with Tesseract; the image is binarised before recognition"""

    name = "Tesseract"

    def __init__(self, config: str = "--oem 3 --psm 7", threshold: int = 140):
        self.config = config
        self.threshold = threshold

    async def extract_text(self, image_src: str) -> str:
        image_bytes = decode_image_source(image_src)
        return await asyncio.to_thread(self._recognize, image_bytes)

    def _recognize(self, image_bytes: bytes) -> str:
        try:
            image = Image.open(io.BytesIO(image_bytes)).convert("L")
            image = image.point(lambda pixel: 255 if pixel > self.threshold else 0)
            return pytesseract.image_to_string(image, config=self.config)
        except (OSError, pytesseract.TesseractError) as e:
            raise CaptchaBackendError(self.name, str(e)) from e


class ManualEngine(OcrEngine):
    """No OCR: the user types the CAPTCHA in the visible browser"""

    name = "Manual"
    requires_user = True

    async def extract_text(self, image_src: str) -> str:
        return ""


class CaptchaService:
    """Solves and submits text CAPTCHAs through a BrowserPort"""

    def __init__(self, engine: OcrEngine, settings: Optional[AutomationSettings] = None,
                 selectors: Optional[SelectorCatalog] = None,
                 sleep: Optional[Callable[[float], Awaitable[None]]] = None):
        self.engine = engine
        self.settings = settings or AutomationSettings()
        self.selectors = selectors or SelectorCatalog()
        self._sleep = sleep or asyncio.sleep

        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.on_log_message: Optional[Callable[[str], None]] = None
        self.attempts: List[CaptchaAttempt] = []

    @classmethod
    def for_backend(cls, backend: CaptchaBackend, settings: Optional[AutomationSettings] = None,
                    **kwargs) -> "CaptchaService":
        """Build the service with the engine matching ``backend``"""
        settings = settings or AutomationSettings()
        if backend is CaptchaBackend.TESSERACT:
            engine: OcrEngine = TesseractEngine()
        elif backend is CaptchaBackend.MANUAL:
            engine = ManualEngine()
        else:
            engine = EasyOcrEngine(settings.ocr_server_url, settings.ocr_timeout)
        return cls(engine, settings, **kwargs)

    def set_sleep(self, sleep: Callable[[float], Awaitable[None]]):
        self._sleep = sleep

    def _log(self, message: str):
        self.logger.info(message)
        if self.on_log_message:
            self.on_log_message(message)

    async def solve(self, browser: BrowserPort, image_chain: Optional[LocatorChain] = None) -> Optional[str]:
        """Read the CAPTCHA image and return its cleaned text, or None if unreadable"""
        attempt = await self._read(browser, image_chain)
        return attempt.cleaned_text if attempt and attempt.cleaned_text else None

    async def _read(self, browser: BrowserPort, image_chain: Optional[LocatorChain] = None) -> Optional[CaptchaAttempt]:
        chain = image_chain or self.selectors["captcha_images"]
        try:
            selector = await browser.wait_for_element(
                chain.selectors, timeout=self.settings.captcha_image_timeout
            )
        except ElementNotFoundError as e:
            self.logger.warning(f"CAPTCHA image not found: {e.message}")
            return None

        image_src = await browser.get_attribute(selector, "src")
        if not image_src:
            self.logger.warning("CAPTCHA image has no src attribute")
            return None

        extracted = await self.engine.extract_text(image_src)
        attempt = CaptchaAttempt(
            raw_image_ref=image_src[:64],
            extracted_text=extracted,
            cleaned_text=clean_captcha_text(extracted),
        )
        self.attempts.append(attempt)
        return attempt

    async def solve_and_submit(self, browser: BrowserPort, input_hint: Optional[str] = None,
                               max_attempts: Optional[int] = None) -> CaptchaAttempt:
        """
        Solve, type and submit the CAPTCHA until the site accepts it

        Args:
            browser: Page to work on
            input_hint: Selector tried before the default CAPTCHA input chain
            max_attempts: Attempt budget; defaults to settings.captcha_attempts

        Returns:
            The accepted attempt

        Raises:
            CaptchaSolveError: every attempt was unreadable or rejected
        """
        if self.engine.requires_user:
            return await self._await_manual_entry(browser)

        max_attempts = max_attempts or self.settings.captcha_attempts
        input_chain = self.selectors["captcha_inputs"].with_hint(input_hint)

        for number in range(1, max_attempts + 1):
            try:
                attempt = await self._attempt(browser, input_chain, number, max_attempts)
            except AutomationError as e:
                self._log(f"CAPTCHA attempt {number}/{max_attempts} failed: {e.message}")
                attempt = None

            if attempt is not None:
                return attempt
            await self._sleep(self.settings.captcha_retry_delay)

        raise CaptchaSolveError(max_attempts, self.engine.name)

    async def _attempt(self, browser: BrowserPort, input_chain: LocatorChain,
                       number: int, max_attempts: int) -> Optional[CaptchaAttempt]:
        """One read-type-submit cycle; returns the attempt only if the site accepted it"""
        await self._sleep(self.settings.short_delay)
        attempt = await self._read(browser)

        if attempt is None or len(attempt.cleaned_text) < self.settings.captcha_min_length:
            self._log(f"CAPTCHA attempt {number}/{max_attempts}: text unreadable, retrying")
            return None

        self._log(f"CAPTCHA attempt {number}/{max_attempts}: solved as {attempt.cleaned_text}")
        input_probe = await probe(browser, input_chain, visible=True)
        if not input_probe.found:
            self.logger.warning("CAPTCHA input not found")
            return None

        await browser.fill(input_probe.selector, attempt.cleaned_text)
        await self._submit(browser, input_probe.selector)
        await self._sleep(self.settings.captcha_settle_delay)

        outcome = CaptchaOutcomeDetector.classify(await browser.body_text(), browser.current_url)
        if outcome is CaptchaOutcome.ACCEPTED:
            attempt.accepted = True
            self._log("CAPTCHA accepted")
            return attempt

        self._log(f"CAPTCHA not accepted ({outcome.value}), retrying")
        return None

    async def _submit(self, browser: BrowserPort, input_selector: str):
        try:
            await browser.press(input_selector, "Enter")
        except FormInteractionError as e:
            self.logger.debug(f"Enter on CAPTCHA input failed ({e.message}), clicking submit")
            await click_first(browser, self.selectors["captcha_submit_buttons"], required=True)

    async def _await_manual_entry(self, browser: BrowserPort) -> CaptchaAttempt:
        """Poll until the user has solved the CAPTCHA in the browser"""
        interval = self.settings.manual_poll_interval
        polls = max(1, math.ceil(self.settings.manual_captcha_timeout / interval))
        self._log("Waiting for the CAPTCHA to be solved manually in the browser")

        for _ in range(polls):
            outcome = CaptchaOutcomeDetector.classify(await browser.body_text(), browser.current_url)
            if outcome is CaptchaOutcome.ACCEPTED:
                self._log("CAPTCHA solved manually")
                attempt = CaptchaAttempt("manual", "", "", accepted=True)
                self.attempts.append(attempt)
                return attempt
            await self._sleep(interval)

        raise CaptchaSolveError(1, self.engine.name)
