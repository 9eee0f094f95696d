"""
Configuration for the booking automation

AutomationSettings collects every timing, threshold and URL the workflow
uses so none of them are hard-coded in the step handlers. AppPaths lays
out the data directory, and ConfigManager persists booking requests in
their wire format.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from filelock import FileLock

from .models.booking import BookingRequest

DEFAULT_HOME_ENV = "RAILBOOKER_HOME"


@dataclass(frozen=True)
class RetryConfig:
    """Exponential backoff policy for the retry executor"""
    max_retries: int = 3
    initial_delay: float = 2.0
    backoff_multiplier: float = 2.0
    max_delay: float = 120.0


@dataclass(frozen=True)
class ResponseSignature:
    """Identifies a network response the workflow waits for"""
    url_fragment: str
    method: str = "POST"
    status: int = 200

    def matches(self, url: str, method: str, status: int) -> bool:
        return (
            self.url_fragment in url
            and method.upper() == self.method.upper()
            and status == self.status
        )


@dataclass
class AutomationSettings:
    """Tunables for a booking run"""
    # Navigation
    entry_url: str = "https://www.irctc.co.in/nget/train-search"
    search_url_marker: str = "train-search"
    trusted_url_markers: tuple = ("irctc", "train-search")
    navigation_timeout: float = 90.0
    network_idle_timeout: float = 30.0
    element_timeout: float = 10.0

    # Delays between interactions
    settle_delay: float = 2.0
    short_delay: float = 0.5
    suggestion_delay: float = 1.5
    step_delay: float = 0.5
    pause_poll_interval: float = 1.0

    # Login
    login_signal: ResponseSignature = field(
        default_factory=lambda: ResponseSignature("/authprovider/webtoken")
    )
    login_signal_timeout: float = 60.0
    click_threshold: int = 2
    click_threshold_timeout: float = 60.0
    logged_in_keywords: tuple = ("Book Ticket", "My Account")

    # CAPTCHA
    captcha_attempts: int = 5
    captcha_min_length: int = 3
    captcha_retry_delay: float = 2.0
    captcha_settle_delay: float = 3.0
    captcha_image_timeout: float = 10.0
    manual_captcha_timeout: float = 300.0
    manual_poll_interval: float = 5.0
    ocr_server_url: str = "http://localhost:5000"
    ocr_timeout: float = 30.0

    # Tatkal quota window
    quota_poll_interval: float = 1.0
    quota_poll_attempts: int = 300
    ac_quota_open_time: str = "10:00"
    non_ac_quota_open_time: str = "11:00"
    ac_classes: tuple = ("1A", "2A", "3A", "3E", "CC", "EC", "EA")

    # Step-level retry for browser interactions
    step_retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(max_retries=2, initial_delay=2.0)
    )

    # Browser
    browser_channel: Optional[str] = "chrome"
    viewport_width: int = 1478
    viewport_height: int = 1056
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    locale: str = "en-US"
    timezone_id: str = "Asia/Kolkata"
    keep_browser_open: bool = True

    # Housekeeping
    log_buffer_size: int = 1000
    selector_overrides: Optional[str] = None

    def with_overrides(self, **changes) -> "AutomationSettings":
        return replace(self, **changes)


def load_settings(path: Optional[Union[str, Path]] = None) -> AutomationSettings:
    """Load settings from a JSON file, merged over the defaults.

    Nested ``login_signal`` and ``step_retry`` objects are given as plain
    JSON objects. Unknown keys raise ValueError so typos do not pass
    silently.
    """
    settings = AutomationSettings()
    if path is None:
        return settings

    with open(path, "r", encoding="utf-8") as handle:
        overrides: Dict[str, Any] = json.load(handle)

    known = {f.name for f in fields(AutomationSettings)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(unknown)}")

    if "login_signal" in overrides:
        overrides["login_signal"] = ResponseSignature(**overrides["login_signal"])
    if "step_retry" in overrides:
        overrides["step_retry"] = RetryConfig(**overrides["step_retry"])
    for name in ("trusted_url_markers", "logged_in_keywords", "ac_classes"):
        if name in overrides:
            overrides[name] = tuple(overrides[name])
    return replace(settings, **overrides)


class AppPaths:
    """Locations of the files railbooker keeps between runs"""

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        if base_dir is None:
            base_dir = os.environ.get(DEFAULT_HOME_ENV) or Path.home() / ".railbooker"
        self.base_dir = Path(base_dir)

    @property
    def cookie_file(self) -> Path:
        return self.base_dir / "cookies" / "robot.json"

    @property
    def checkpoint_file(self) -> Path:
        return self.base_dir / "recovery" / "last_state.json"

    @property
    def log_dir(self) -> Path:
        return self.base_dir / "logs"

    @property
    def screenshot_dir(self) -> Path:
        return self.base_dir / "screenshots"

    @property
    def request_file(self) -> Path:
        return self.base_dir / "config.json"


class ConfigManager:
    """Saves and loads booking requests as wire-format JSON"""

    def __init__(self, paths: Optional[AppPaths] = None):
        self.paths = paths or AppPaths()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def load_request(self, path: Optional[Union[str, Path]] = None) -> BookingRequest:
        target = Path(path) if path else self.paths.request_file
        with open(target, "r", encoding="utf-8") as handle:
            data = json.load(handle)
        self.logger.debug(f"Loaded booking request from {target}")
        return BookingRequest.from_dict(data)

    def save_request(self, request: BookingRequest, path: Optional[Union[str, Path]] = None) -> Path:
        target = Path(path) if path else self.paths.request_file
        target.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(str(target) + ".lock"):
            with open(target, "w", encoding="utf-8") as handle:
                json.dump(request.to_dict(), handle, indent=2)
        self.logger.info(f"Booking request saved to {target}")
        return target

    @staticmethod
    def validate_request(request: BookingRequest) -> List[str]:
        return request.validate()
