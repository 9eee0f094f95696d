"""
Unit tests for CAPTCHA solving
"""

import base64
import io
from unittest.mock import patch

import httpx
import pytest
from PIL import Image

from railbooker.exceptions import CaptchaBackendError, CaptchaSolveError, FormInteractionError, WorkflowCancelledError
from railbooker.models.booking import CaptchaBackend
from railbooker.services.captcha_service import (
    CaptchaService, EasyOcrEngine, ManualEngine, TesseractEngine, clean_captcha_text, decode_image_source
)

CAPTCHA_SRC = "data:image/png;base64,iVBORw0KGgo="


def png_data_url() -> str:
    buffer = io.BytesIO()
    Image.new("L", (40, 12), color=200).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


class TestCaptchaText:

    @pytest.mark.parametrize("raw,cleaned", [
        ("ab 12c", "AB12C"),
        ("  x-Y_z!9 ", "XYZ9"),
        ("", ""),
        (None, ""),
        ("çà7", "7"),
    ])
    def test_clean_captcha_text(self, raw, cleaned):
        assert clean_captcha_text(raw) == cleaned

    @pytest.mark.parametrize("raw", ["ab 12c", "  x-Y_z!9 ", "", None, "çà7", "ÄBC\t\n 4", "--", "Q0O o"])
    def test_clean_is_idempotent(self, raw):
        once = clean_captcha_text(raw)

        assert clean_captcha_text(once) == once
        assert once == once.upper()
        assert once.isalnum() or once == ""

    def test_decode_data_url_and_bare_base64(self):
        assert decode_image_source("data:image/png;base64,aGVsbG8=") == b"hello"
        assert decode_image_source("aGVsbG8=") == b"hello"

    def test_decode_rejects_garbage(self):
        with pytest.raises(CaptchaBackendError):
            decode_image_source("data:image/png;base64,@@not-base64@@")


class TestEasyOcrEngine:
    """EasyOCR server client"""

    @pytest.mark.asyncio
    async def test_posts_image_without_data_url_prefix(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = request.content
            return httpx.Response(200, json={"extractedText": "x7k2p"})

        engine = EasyOcrEngine("http://ocr.local:5000/", transport=httpx.MockTransport(handler))

        assert await engine.extract_text(CAPTCHA_SRC) == "x7k2p"
        assert seen["path"] == "/extract-text"
        assert b'"image": "iVBORw0KGgo="' in seen["body"] or b'"image":"iVBORw0KGgo="' in seen["body"]

    @pytest.mark.asyncio
    async def test_snake_case_response_key(self):
        engine = EasyOcrEngine(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"extracted_text": "abc"})
        ))

        assert await engine.extract_text(CAPTCHA_SRC) == "abc"

    @pytest.mark.asyncio
    async def test_server_error_raises_backend_error(self):
        engine = EasyOcrEngine(transport=httpx.MockTransport(lambda request: httpx.Response(500)))

        with pytest.raises(CaptchaBackendError) as exc_info:
            await engine.extract_text(CAPTCHA_SRC)
        assert exc_info.value.backend == "EasyOCR"

    @pytest.mark.asyncio
    async def test_unreachable_server_raises_backend_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        engine = EasyOcrEngine(transport=httpx.MockTransport(handler))

        with pytest.raises(CaptchaBackendError):
            await engine.extract_text(CAPTCHA_SRC)

    @pytest.mark.asyncio
    async def test_health_check(self):
        healthy = EasyOcrEngine(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        broken = EasyOcrEngine(transport=httpx.MockTransport(lambda request: httpx.Response(503)))

        assert await healthy.health_check() is True
        assert await broken.health_check() is False


class TestTesseractEngine:

    @pytest.mark.asyncio
    async def test_runs_pytesseract_on_binarised_image(self):
        engine = TesseractEngine()

        with patch("railbooker.services.captcha_service.pytesseract.image_to_string",
                   return_value="Q8 WZ\n") as ocr:
            text = await engine.extract_text(png_data_url())

        assert text == "Q8 WZ\n"
        image = ocr.call_args.args[0]
        assert image.mode == "L"
        assert set(image.getdata()) <= {0, 255}
        assert ocr.call_args.kwargs["config"] == "--oem 3 --psm 7"

    @pytest.mark.asyncio
    async def test_unreadable_image_raises_backend_error(self):
        with pytest.raises(CaptchaBackendError):
            await TesseractEngine().extract_text("data:image/png;base64,aGVsbG8=")


class TestCaptchaService:
    """Test class for CaptchaService"""

    @pytest.fixture(autouse=True)
    def _site(self, fake_browser, fast_settings, ocr_engine_factory):
        self.browser = fake_browser
        self.settings = fast_settings
        self.engine_factory = ocr_engine_factory
        self.browser.initialized = True
        self.browser.url = "https://www.irctc.co.in/nget/train-search"
        self.browser.show(".captcha-img", "#captcha")
        self.browser.attributes[(".captcha-img", "src")] = CAPTCHA_SRC

    def accept_on_enter(self):
        def accepted(page):
            page.body = "Select Train"

        self.browser.on_press[("#captcha", "Enter")] = accepted

    @pytest.mark.parametrize("backend,engine_type", [
        (CaptchaBackend.EASYOCR, EasyOcrEngine),
        (CaptchaBackend.TESSERACT, TesseractEngine),
        (CaptchaBackend.MANUAL, ManualEngine),
    ])
    def test_for_backend(self, backend, engine_type):
        service = CaptchaService.for_backend(backend, self.settings)

        assert isinstance(service.engine, engine_type)

    @pytest.mark.asyncio
    async def test_solve_returns_cleaned_text(self):
        service = CaptchaService(self.engine_factory(["ab 12c"]), self.settings)

        assert await service.solve(self.browser) == "AB12C"
        assert service.attempts[0].extracted_text == "ab 12c"

    @pytest.mark.asyncio
    async def test_solve_without_image_returns_none(self):
        self.browser.hide(".captcha-img")
        service = CaptchaService(self.engine_factory(), self.settings)

        assert await service.solve(self.browser) is None

    @pytest.mark.asyncio
    async def test_solve_and_submit_accepted_first_try(self):
        self.accept_on_enter()
        service = CaptchaService(self.engine_factory(["ab 12c"]), self.settings)

        attempt = await service.solve_and_submit(self.browser)

        assert attempt.accepted
        assert self.browser.values["#captcha"] == "AB12C"
        assert ("#captcha", "Enter") in self.browser.presses

    @pytest.mark.asyncio
    async def test_short_text_is_retried(self):
        self.accept_on_enter()
        engine = self.engine_factory(["a1", "XY9Z"])
        service = CaptchaService(engine, self.settings)

        attempt = await service.solve_and_submit(self.browser)

        assert attempt.cleaned_text == "XY9Z"
        assert engine.calls == 2

    @pytest.mark.asyncio
    async def test_rejected_every_time_raises(self):
        self.browser.url = "https://www.irctc.co.in/nget/login"
        self.browser.body = "Invalid Captcha"
        service = CaptchaService(self.engine_factory(["ABCD"]), self.settings)

        with pytest.raises(CaptchaSolveError) as exc_info:
            await service.solve_and_submit(self.browser, max_attempts=3)

        assert exc_info.value.attempts == 3
        assert exc_info.value.error_code == "CAPTCHA_FAILED"
        assert "Failed to solve captcha after 3 attempts" in str(exc_info.value)
        assert len(service.attempts) == 3

    @pytest.mark.asyncio
    async def test_backend_error_uses_up_one_attempt(self):
        self.accept_on_enter()
        engine = self.engine_factory([CaptchaBackendError("EasyOCR", "connection reset"), "ab 12c"])
        messages = []
        service = CaptchaService(engine, self.settings)
        service.on_log_message = messages.append

        attempt = await service.solve_and_submit(self.browser, max_attempts=5)

        assert attempt.cleaned_text == "AB12C"
        assert engine.calls == 2
        assert any(message.startswith("CAPTCHA attempt 1/5 failed") for message in messages)

    @pytest.mark.asyncio
    async def test_fill_failure_is_retried(self):
        self.accept_on_enter()
        original_fill = self.browser.fill
        failures = []

        async def flaky_fill(selector, value, clear_first=True):
            if not failures:
                failures.append(selector)
                raise FormInteractionError("fill", selector)
            await original_fill(selector, value, clear_first)

        self.browser.fill = flaky_fill
        engine = self.engine_factory(["ABCD"])
        service = CaptchaService(engine, self.settings)

        attempt = await service.solve_and_submit(self.browser)

        assert attempt.accepted
        assert failures == ["#captcha"]
        assert engine.calls == 2

    @pytest.mark.asyncio
    async def test_backend_failing_every_time_raises_solve_error(self):
        engine = self.engine_factory([CaptchaBackendError("EasyOCR", "connection refused")])
        service = CaptchaService(engine, self.settings)

        with pytest.raises(CaptchaSolveError) as exc_info:
            await service.solve_and_submit(self.browser, max_attempts=3)

        assert exc_info.value.attempts == 3
        assert engine.calls == 3

    @pytest.mark.asyncio
    async def test_cancellation_is_not_swallowed(self):
        async def cancelled(delay):
            raise WorkflowCancelledError("Workflow cancelled")

        engine = self.engine_factory(["ABCD"])
        service = CaptchaService(engine, self.settings, sleep=cancelled)

        with pytest.raises(WorkflowCancelledError):
            await service.solve_and_submit(self.browser)
        assert engine.calls == 0

    @pytest.mark.asyncio
    async def test_input_hint_is_tried_first(self):
        self.browser.show("#payment-captcha")
        self.browser.on_press[("#payment-captcha", "Enter")] = lambda page: setattr(page, "body", "Payment Methods")
        service = CaptchaService(self.engine_factory(["ABCD"]), self.settings)

        await service.solve_and_submit(self.browser, input_hint="#payment-captcha")

        assert self.browser.values["#payment-captcha"] == "ABCD"

    @pytest.mark.asyncio
    async def test_progress_is_reported(self):
        self.accept_on_enter()
        messages = []
        service = CaptchaService(self.engine_factory(["ABCD"]), self.settings)
        service.on_log_message = messages.append

        await service.solve_and_submit(self.browser)

        assert "CAPTCHA attempt 1/5: solved as ABCD" in messages
        assert "CAPTCHA accepted" in messages

    @pytest.mark.asyncio
    async def test_manual_mode_waits_for_user(self):
        polls = []

        async def sleep(delay):
            polls.append(delay)
            if len(polls) == 2:
                self.browser.body = "Book Ticket"

        self.browser.url = "https://www.irctc.co.in/nget/login"
        service = CaptchaService(ManualEngine(), self.settings, sleep=sleep)

        attempt = await service.solve_and_submit(self.browser)

        assert attempt.accepted
        assert self.browser.values == {}
        assert len(polls) == 2

    @pytest.mark.asyncio
    async def test_manual_mode_times_out(self):
        self.browser.url = "https://www.irctc.co.in/nget/login"
        service = CaptchaService(ManualEngine(), self.settings)

        with pytest.raises(CaptchaSolveError):
            await service.solve_and_submit(self.browser)
