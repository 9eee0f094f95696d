"""
Custom exceptions for booking automation error handling
"""

from typing import List, Optional, Sequence


class AutomationError(Exception):
    """Base exception class for all automation-related errors"""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "AUTOMATION_ERROR"
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} (Code: {self.error_code}, Details: {self.details})"
        return f"{self.message} (Code: {self.error_code})"


class RequestValidationError(AutomationError):
    """Exception raised when a booking request fails validation"""

    def __init__(self, errors: Sequence[str]):
        self.errors: List[str] = list(errors)
        message = "Invalid booking request: " + "; ".join(self.errors)
        super().__init__(message, "VALIDATION_ERROR", {"errors": self.errors})


class EngineBusyError(AutomationError):
    """Exception raised when a workflow is started while another one runs"""

    def __init__(self):
        super().__init__("Automation is already running", "ALREADY_RUNNING")


class BrowserInitializationError(AutomationError):
    """Exception raised when browser initialization fails"""

    def __init__(self, message: str, backend: str = "unknown", details: Optional[dict] = None):
        super().__init__(message, "BROWSER_INIT_ERROR", details)
        self.backend = backend


class BrowserNotInitializedError(AutomationError):
    """Exception raised when the browser port is used before initialize()"""

    def __init__(self, operation: str):
        super().__init__(
            f"Browser not initialized, cannot {operation}",
            "NOT_INITIALIZED",
            {"operation": operation}
        )
        self.operation = operation


class ElementNotFoundError(AutomationError):
    """Exception raised when a required element cannot be found on the page"""

    def __init__(self, selector: str, element_type: str = "element", timeout: Optional[float] = None,
                 screenshot: Optional[str] = None):
        message = f"Could not find {element_type} with selector: {selector}"
        if timeout:
            message += f" (timeout: {timeout}s)"

        details = {
            "selector": selector,
            "element_type": element_type,
            "timeout": timeout
        }
        if screenshot:
            details["screenshot"] = screenshot
        super().__init__(message, "ELEMENT_NOT_FOUND", details)
        self.selector = selector
        self.element_type = element_type
        self.timeout = timeout
        self.screenshot = screenshot


class PageNavigationError(AutomationError):
    """Exception raised when page navigation fails"""

    def __init__(self, url: str, attempts: int = 1, last_error: Optional[str] = None):
        message = f"Failed to navigate to {url}"
        if attempts > 1:
            message += f" after {attempts} attempts"

        details = {
            "url": url,
            "attempts": attempts,
            "last_error": last_error
        }
        super().__init__(message, "NAVIGATION_ERROR", details)
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


class FormInteractionError(AutomationError):
    """Exception raised when form interaction fails"""

    def __init__(self, action: str, field: str, details: Optional[dict] = None):
        message = f"Failed to {action} on field: {field}"
        error_details = {"action": action, "field": field}
        if details:
            error_details.update(details)

        super().__init__(message, "FORM_INTERACTION_ERROR", error_details)
        self.action = action
        self.field = field


class VerificationError(AutomationError):
    """Exception raised when the page does not reach the state a step expects"""

    def __init__(self, step: str, reason: str, details: Optional[dict] = None):
        message = f"{step} failed: {reason}"
        error_details = {"step": step, "reason": reason}
        if details:
            error_details.update(details)

        super().__init__(message, "VERIFICATION_FAILED", error_details)
        self.step = step
        self.reason = reason


class LoginFailedError(VerificationError):
    """Exception raised when the login form was submitted but no session appeared"""

    def __init__(self, username: str, detected_message: Optional[str] = None):
        reason = f"user '{username}' is not logged in"
        if detected_message:
            reason += f" (site says: {detected_message})"

        super().__init__("Login", reason, {"username": username, "detected_message": detected_message})
        self.username = username
        self.detected_message = detected_message


class ItemNotFoundError(VerificationError):
    """Exception raised when the requested train/class row is not on the results page"""

    def __init__(self, train_no: str, coach: str):
        super().__init__(
            "Train selection",
            f"Train {train_no} with coach {coach} not found on the page",
            {"train_no": train_no, "coach": coach}
        )
        self.train_no = train_no
        self.coach = coach


class OperationTimeoutError(AutomationError):
    """Exception raised when operations timeout"""

    def __init__(self, operation: str, timeout: float, details: Optional[dict] = None):
        message = f"Operation '{operation}' timed out after {timeout} seconds"
        error_details = {
            "operation": operation,
            "timeout": timeout
        }
        if details:
            error_details.update(details)

        super().__init__(message, "TIMEOUT_ERROR", error_details)
        self.operation = operation
        self.timeout = timeout


class QuotaWindowTimeoutError(OperationTimeoutError):
    """Exception raised when the Tatkal quota window does not open in time"""

    def __init__(self, attempts: int, interval: float):
        super().__init__(
            "Tatkal booking did not open within timeout period",
            attempts * interval,
            {"attempts": attempts, "interval": interval}
        )
        self.attempts = attempts


class CaptchaSolveError(AutomationError):
    """Exception raised when every CAPTCHA attempt was rejected or unreadable"""

    def __init__(self, attempts: int, backend: str = "unknown"):
        super().__init__(
            f"Failed to solve captcha after {attempts} attempts",
            "CAPTCHA_FAILED",
            {"attempts": attempts, "backend": backend}
        )
        self.attempts = attempts
        self.backend = backend


class CaptchaBackendError(AutomationError):
    """Exception raised when an OCR backend cannot be reached or fails"""

    def __init__(self, backend: str, reason: str):
        super().__init__(
            f"Captcha backend {backend} failed: {reason}",
            "CAPTCHA_BACKEND_ERROR",
            {"backend": backend}
        )
        self.backend = backend
        self.reason = reason


class NetworkError(AutomationError):
    """Exception raised when network-related errors occur"""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        error_details = {}
        if url:
            error_details["url"] = url
        if status_code:
            error_details["status_code"] = status_code

        super().__init__(message, "NETWORK_ERROR", error_details)
        self.url = url
        self.status_code = status_code


class RetryExhaustedError(AutomationError):
    """Exception raised when an operation kept failing through every retry"""

    def __init__(self, attempts: int, last_exception: BaseException):
        super().__init__(
            f"Action failed after {attempts} attempts: {last_exception}",
            "RETRY_EXHAUSTED",
            {"attempts": attempts, "last_error": type(last_exception).__name__}
        )
        self.attempts = attempts
        self.last_exception = last_exception


class PersistenceError(AutomationError):
    """Exception raised when a session or checkpoint file cannot be written"""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not write {path}: {reason}", "PERSISTENCE_ERROR", {"path": path})
        self.path = path


class WorkflowCancelledError(Exception):
    """Raised inside a workflow when its cancellation token fires"""
