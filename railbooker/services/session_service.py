"""
Session cookie persistence between runs

Cookies are kept in a single JSON file in browser-extension export format,
written under a file lock and replaced atomically so a crash mid-write
never leaves a truncated file behind.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from filelock import FileLock

from ..exceptions import PersistenceError
from ..models.session import SessionCookie


class SessionStore:
    """Saves, restores and validates the site session cookies"""

    def __init__(self, cookie_file: Union[str, Path]):
        self.cookie_file = Path(cookie_file)
        self.lock = FileLock(str(self.cookie_file) + ".lock")
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def save(self, cookies: Sequence[SessionCookie]):
        temp_file = self.cookie_file.with_suffix(".tmp")
        try:
            self.cookie_file.parent.mkdir(parents=True, exist_ok=True)
            with self.lock:
                with open(temp_file, "w", encoding="utf-8") as handle:
                    json.dump([cookie.to_record() for cookie in cookies], handle, indent=2)
                os.replace(temp_file, self.cookie_file)
        except OSError as e:
            raise PersistenceError(str(self.cookie_file), str(e)) from e
        self.logger.info(f"Saved {len(cookies)} cookies to {self.cookie_file}")

    def load(self) -> Optional[List[SessionCookie]]:
        """Return the stored cookies, or None when absent or unreadable"""
        if not self.cookie_file.exists():
            return None
        try:
            with self.lock:
                with open(self.cookie_file, "r", encoding="utf-8") as handle:
                    records = json.load(handle)
            return [SessionCookie.from_record(record) for record in records]
        except (OSError, ValueError, KeyError, TypeError) as e:
            self.logger.error(f"Could not load cookies from {self.cookie_file}: {e}")
            return None

    def clear(self):
        if not self.cookie_file.exists():
            return
        with self.lock:
            if self.cookie_file.exists():
                self.cookie_file.unlink()
                self.logger.info("Cleared stored session cookies")

    @staticmethod
    def is_valid(cookies: Optional[Sequence[SessionCookie]], now: Optional[float] = None) -> bool:
        """True when there is at least one cookie and none has expired"""
        if not cookies:
            return False
        now = time.time() if now is None else now
        return all(not cookie.is_expired(now) for cookie in cookies)

    def prepare_for_run(self, proxy_enabled: bool) -> Optional[List[Dict[str, Any]]]:
        """
        Apply the session policy for a new run

        With a proxy the stored session belongs to a different egress IP and is
        discarded. Otherwise valid cookies are returned in Playwright format.
        """
        if proxy_enabled:
            self.clear()
            return None

        cookies = self.load()
        if not self.is_valid(cookies):
            if cookies:
                self.logger.info("Stored session expired, logging in fresh")
            return None
        return [cookie.to_playwright() for cookie in cookies]

    def save_from_browser(self, cookies: Sequence[Dict[str, Any]]):
        self.save([SessionCookie.from_playwright(cookie) for cookie in cookies])
