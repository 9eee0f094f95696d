"""
Booking request data model

The request is parsed from the wire format used by booking JSON files
(upper-case keys such as TRAIN_NO, PASSENGER_DETAILS) and validated once
before a run starts. It is immutable for the lifetime of the run.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from ..exceptions import RequestValidationError

DATE_FORMAT = "%d/%m/%Y"
REDACTED = "***"
PROXY_SCHEMES = ("http", "https", "socks4", "socks5")


class CaptchaBackend(Enum):
    """OCR strategy used to read CAPTCHA images"""
    EASYOCR = "EasyOCR"
    TESSERACT = "Tesseract"
    MANUAL = "Manual"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "CaptchaBackend":
        """Map a wire name to a backend; unknown names fall back to EasyOCR"""
        if isinstance(value, CaptchaBackend):
            return value
        for backend in cls:
            if value and backend.value.lower() == str(value).strip().lower():
                return backend
        return cls.EASYOCR


@dataclass(frozen=True)
class Passenger:
    """A single traveller on the booking"""
    name: str
    age: Union[int, str]
    gender: str = "Male"
    seat: str = "No Preference"
    food: str = "No Food"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Passenger":
        return cls(
            name=str(data.get("NAME", "")).strip(),
            age=_to_int(data.get("AGE"), 0),
            gender=data.get("GENDER") or "Male",
            seat=data.get("SEAT") or "No Preference",
            food=data.get("FOOD") or "No Food",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "NAME": self.name,
            "AGE": self.age,
            "GENDER": self.gender,
            "SEAT": self.seat,
            "FOOD": self.food,
        }


@dataclass(frozen=True)
class ProxyConfig:
    """Outbound proxy for the browser context"""
    enabled: bool = False
    host: str = ""
    port: Union[int, str] = 8080
    username: Optional[str] = None
    password: Optional[str] = None
    scheme: str = "http"

    @property
    def server(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def is_valid(self) -> bool:
        return not self.validate()

    def validate(self) -> List[str]:
        if not self.enabled:
            return []
        errors = []
        if not self.host or not self.host.strip():
            errors.append("PROXY_CONFIG.Host is required when the proxy is enabled")
        if not isinstance(self.port, int):
            errors.append(f"PROXY_CONFIG.Port must be an integer, got '{self.port}'")
        elif not 0 < self.port <= 65535:
            errors.append(f"PROXY_CONFIG.Port must be between 1 and 65535, got {self.port}")
        if self.scheme not in PROXY_SCHEMES:
            errors.append(f"PROXY_CONFIG.Type must be one of {', '.join(PROXY_SCHEMES)}")
        return errors

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProxyConfig":
        return cls(
            enabled=bool(data.get("Enabled", False)),
            host=str(data.get("Host") or "").strip(),
            port=_to_int(data.get("Port"), 8080),
            username=data.get("Username") or None,
            password=data.get("Password") or None,
            scheme=str(data.get("Type") or "http").strip().lower(),
        )

    def to_dict(self, redact: bool = False) -> Dict[str, Any]:
        password = self.password
        if redact and password:
            password = REDACTED
        return {
            "Enabled": self.enabled,
            "Host": self.host,
            "Port": self.port,
            "Username": self.username,
            "Password": password,
            "Type": self.scheme.capitalize(),
        }

    def to_playwright(self) -> Dict[str, str]:
        """Proxy settings in the shape Browser.new_context() expects"""
        settings = {"server": self.server}
        if self.username:
            settings["username"] = self.username
            settings["password"] = self.password or ""
        return settings


@dataclass(frozen=True)
class TokenConfig:
    """Optional pre-authentication token source"""
    api_url: Optional[str] = None
    token: Optional[str] = None
    auth_header_name: Optional[str] = None
    auth_header_value: Optional[str] = None
    use_token: bool = False
    refresh_interval_seconds: Union[int, str] = 3600

    def validate(self) -> List[str]:
        errors = []
        if self.use_token and not (self.api_url or self.token):
            errors.append("TOKEN_CONFIG needs TokenApiUrl or Token when UseToken is set")
        if not isinstance(self.refresh_interval_seconds, int):
            errors.append(
                f"TOKEN_CONFIG.TokenRefreshInterval must be an integer, got '{self.refresh_interval_seconds}'"
            )
        return errors

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenConfig":
        return cls(
            api_url=data.get("TokenApiUrl") or None,
            token=data.get("Token") or None,
            auth_header_name=data.get("TokenAuthHeader") or None,
            auth_header_value=data.get("TokenAuthValue") or None,
            use_token=bool(data.get("UseToken", False)),
            refresh_interval_seconds=_to_int(data.get("TokenRefreshInterval"), 3600),
        )

    def to_dict(self, redact: bool = False) -> Dict[str, Any]:
        token, auth_value = self.token, self.auth_header_value
        if redact:
            token = REDACTED if token else token
            auth_value = REDACTED if auth_value else auth_value
        return {
            "TokenApiUrl": self.api_url,
            "Token": token,
            "TokenAuthHeader": self.auth_header_name,
            "TokenAuthValue": auth_value,
            "UseToken": self.use_token,
            "TokenRefreshInterval": self.refresh_interval_seconds,
        }


@dataclass(frozen=True)
class BookingRequest:
    """Everything a single booking run needs"""
    train_no: str
    source_station: str
    destination_station: str
    travel_date: str
    username: str
    password: str
    passengers: Tuple[Passenger, ...] = field(default_factory=tuple)
    train_coach: str = "SL"
    boarding_station: Optional[str] = None
    tatkal: bool = False
    premium_tatkal: bool = False
    payment_id: Optional[str] = None
    proxy: Optional[ProxyConfig] = None
    captcha_backend: CaptchaBackend = CaptchaBackend.EASYOCR
    headless: bool = True
    token: Optional[TokenConfig] = None

    @property
    def is_quota_booking(self) -> bool:
        return self.tatkal or self.premium_tatkal

    @property
    def proxy_enabled(self) -> bool:
        return self.proxy is not None and self.proxy.enabled

    @property
    def journey_date(self) -> date:
        """travel_date parsed; raises ValueError for malformed dates"""
        return datetime.strptime(self.travel_date, DATE_FORMAT).date()

    def validate(self) -> List[str]:
        """Return every validation problem; an empty list means the request is usable"""
        errors = []
        required = {
            "TRAIN_NO": self.train_no,
            "SOURCE_STATION": self.source_station,
            "DESTINATION_STATION": self.destination_station,
            "TRAVEL_DATE": self.travel_date,
            "USERNAME": self.username,
            "PASSWORD": self.password,
        }
        for name, value in required.items():
            if not value or not str(value).strip():
                errors.append(f"{name} is required")

        if self.travel_date:
            try:
                self.journey_date
            except ValueError:
                errors.append(f"TRAVEL_DATE must be DD/MM/YYYY, got '{self.travel_date}'")

        if not self.passengers:
            errors.append("PASSENGER_DETAILS must contain at least one passenger")
        for index, passenger in enumerate(self.passengers, start=1):
            if not passenger.name:
                errors.append(f"Passenger {index}: NAME is required")
            if not isinstance(passenger.age, int):
                errors.append(f"Passenger {index}: AGE must be an integer, got '{passenger.age}'")
            elif not 0 < passenger.age <= 125:
                errors.append(f"Passenger {index}: AGE must be between 1 and 125")

        if self.tatkal and self.premium_tatkal:
            errors.append("TATKAL and PREMIUM_TATKAL cannot both be set")
        if self.proxy is not None:
            errors.extend(self.proxy.validate())
        if self.token is not None:
            errors.extend(self.token.validate())
        return errors

    def ensure_valid(self) -> "BookingRequest":
        errors = self.validate()
        if errors:
            raise RequestValidationError(errors)
        return self

    def with_overrides(self, **changes) -> "BookingRequest":
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookingRequest":
        """Build a request from the upper-case wire format

        Raises:
            RequestValidationError: the payload or one of its nested blocks has the wrong shape
        """
        _check_shape(data)
        proxy_data = data.get("PROXY_CONFIG")
        token_data = data.get("TOKEN_CONFIG")
        return cls(
            train_no=str(data.get("TRAIN_NO") or "").strip(),
            train_coach=str(data.get("TRAIN_COACH") or "SL").strip(),
            source_station=str(data.get("SOURCE_STATION") or "").strip(),
            destination_station=str(data.get("DESTINATION_STATION") or "").strip(),
            travel_date=str(data.get("TRAVEL_DATE") or "").strip(),
            boarding_station=data.get("BOARDING_STATION") or None,
            tatkal=bool(data.get("TATKAL", False)),
            premium_tatkal=bool(data.get("PREMIUM_TATKAL", False)),
            passengers=tuple(Passenger.from_dict(p) for p in data.get("PASSENGER_DETAILS") or []),
            username=str(data.get("USERNAME") or "").strip(),
            password=data.get("PASSWORD") or "",
            payment_id=data.get("UPI_ID") or None,
            proxy=ProxyConfig.from_dict(proxy_data) if proxy_data else None,
            captcha_backend=CaptchaBackend.from_wire(data.get("CAPTCHA_SOLVER_TYPE")),
            headless=bool(data.get("HEADLESS_MODE", True)),
            token=TokenConfig.from_dict(token_data) if token_data else None,
        )

    def to_dict(self, redact: bool = False) -> Dict[str, Any]:
        """Serialize to the wire format; redact masks credentials for checkpoints"""
        return {
            "TRAIN_NO": self.train_no,
            "TRAIN_COACH": self.train_coach,
            "SOURCE_STATION": self.source_station,
            "DESTINATION_STATION": self.destination_station,
            "TRAVEL_DATE": self.travel_date,
            "BOARDING_STATION": self.boarding_station,
            "TATKAL": self.tatkal,
            "PREMIUM_TATKAL": self.premium_tatkal,
            "PASSENGER_DETAILS": [p.to_dict() for p in self.passengers],
            "USERNAME": self.username,
            "PASSWORD": REDACTED if redact and self.password else self.password,
            "UPI_ID": self.payment_id,
            "PROXY_CONFIG": self.proxy.to_dict(redact) if self.proxy else None,
            "CAPTCHA_SOLVER_TYPE": self.captcha_backend.value,
            "HEADLESS_MODE": self.headless,
            "TOKEN_CONFIG": self.token.to_dict(redact) if self.token else None,
        }


def _check_shape(data: Any):
    if not isinstance(data, dict):
        raise RequestValidationError([f"Booking request must be a JSON object, got {type(data).__name__}"])

    errors = []
    passengers = data.get("PASSENGER_DETAILS")
    if passengers:
        if not isinstance(passengers, list):
            errors.append("PASSENGER_DETAILS must be a list of passenger objects")
        else:
            for index, passenger in enumerate(passengers, start=1):
                if not isinstance(passenger, dict):
                    errors.append(f"Passenger {index}: must be an object with NAME and AGE")
    for key in ("PROXY_CONFIG", "TOKEN_CONFIG"):
        value = data.get(key)
        if value and not isinstance(value, dict):
            errors.append(f"{key} must be an object")
    if errors:
        raise RequestValidationError(errors)


def _to_int(value: Any, default: int) -> Union[int, str]:
    """Parse an integer field; unparsable input is kept as text so validate() can report it"""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return str(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        return str(value)
