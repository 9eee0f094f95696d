"""
Session cookie and recovery checkpoint data models
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SAME_SITE_VALUES = ("Strict", "Lax", "None")


@dataclass
class SessionCookie:
    """A browser cookie as persisted between runs.

    ``expires`` is a Unix timestamp in seconds; 0 marks a session cookie
    that never counts as expired.
    """
    name: str
    value: str
    domain: str
    path: str = "/"
    expires: float = 0
    http_only: bool = False
    secure: bool = False
    same_site: str = "None"

    def is_expired(self, now: float) -> bool:
        return self.expires != 0 and self.expires <= now

    @classmethod
    def from_playwright(cls, cookie: Dict[str, Any]) -> "SessionCookie":
        expires = cookie.get("expires", -1)
        return cls(
            name=cookie["name"],
            value=cookie.get("value", ""),
            domain=cookie.get("domain", ""),
            path=cookie.get("path") or "/",
            expires=expires if expires and expires > 0 else 0,
            http_only=bool(cookie.get("httpOnly", False)),
            secure=bool(cookie.get("secure", False)),
            same_site=_normalize_same_site(cookie.get("sameSite")),
        )

    def to_playwright(self) -> Dict[str, Any]:
        cookie = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path or "/",
            "httpOnly": self.http_only,
            "secure": self.secure,
            "sameSite": _normalize_same_site(self.same_site),
        }
        if self.expires > 0:
            cookie["expires"] = self.expires
        return cookie

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "SessionCookie":
        """Parse the on-disk record (browser-extension export format)"""
        return cls(
            name=record["name"],
            value=record.get("value", ""),
            domain=record.get("domain", ""),
            path=record.get("path") or "/",
            expires=float(record.get("expirationDate") or 0),
            http_only=bool(record.get("httpOnly", False)),
            secure=bool(record.get("secure", False)),
            same_site=_normalize_same_site(record.get("sameSite")),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "expirationDate": self.expires,
            "httpOnly": self.http_only,
            "secure": self.secure,
            "sameSite": self.same_site,
        }


@dataclass
class RecoveryCheckpoint:
    """Last known workflow position, written after every state change"""
    request: Dict[str, Any]
    current_state: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempt_count: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.request,
            "currentState": self.current_state,
            "timestamp": self.timestamp.isoformat(),
            "attemptCount": self.attempt_count,
            "lastError": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecoveryCheckpoint":
        return cls(
            request=data.get("config") or {},
            current_state=data["currentState"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            attempt_count=int(data.get("attemptCount", 0)),
            last_error=data.get("lastError"),
        )


def _normalize_same_site(value: Optional[str]) -> str:
    if not value:
        return "None"
    for candidate in SAME_SITE_VALUES:
        if str(value).lower() == candidate.lower():
            return candidate
    # chrome exports use "no_restriction" / "unspecified"
    return "None"
