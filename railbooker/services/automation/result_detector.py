"""
Page result detection logic

Interprets page text after a CAPTCHA submission, and decides from text
alone whether the user already has a logged-in session.
"""

from enum import Enum
from typing import Sequence


class CaptchaOutcome(Enum):
    """How the site reacted to a submitted CAPTCHA"""
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    UNCLEAR = "unclear"


class CaptchaOutcomeDetector:
    """Classifies page text after a CAPTCHA submission"""

    # Text that only appears once the journey moved past the CAPTCHA
    SUCCESS_KEYWORDS = [
        "Payment Methods",
        "Passenger Details",
        "Book Ticket",
        "Select Train",
    ]

    FAILURE_KEYWORDS = [
        "Enter Captcha",
        "Invalid Captcha",
        "Wrong Captcha",
        "Captcha Error",
    ]

    # URLs that still sit on a CAPTCHA-bearing page
    PENDING_URL_MARKERS = ["login", "captcha"]

    @classmethod
    def classify(cls, page_text: str, url: str) -> CaptchaOutcome:
        has_success = any(keyword in page_text for keyword in cls.SUCCESS_KEYWORDS)
        has_failure = any(keyword in page_text for keyword in cls.FAILURE_KEYWORDS)

        if has_success and not has_failure:
            return CaptchaOutcome.ACCEPTED
        if has_failure:
            return CaptchaOutcome.REJECTED

        lowered = url.lower()
        if not any(marker in lowered for marker in cls.PENDING_URL_MARKERS):
            return CaptchaOutcome.ACCEPTED
        return CaptchaOutcome.UNCLEAR


class LoginStateDetector:
    """Text-based logged-in check used when no indicator element matched"""

    LOGIN_URL_MARKERS = ["login", "auth"]

    @classmethod
    def looks_logged_in(cls, page_text: str, url: str, keywords: Sequence[str]) -> bool:
        lowered = url.lower()
        if any(marker in lowered for marker in cls.LOGIN_URL_MARKERS):
            return False
        return any(keyword in page_text for keyword in keywords)
