"""
Automation service coordinator

The control surface callers use: start a booking, pause, resume or stop
it, and read status, events and logs. At most one workflow runs per
service; the run guard enforces it.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from ...config import AppPaths, AutomationSettings
from ...exceptions import AutomationError, EngineBusyError, RequestValidationError
from ...models.booking import BookingRequest, CaptchaBackend
from ..captcha_service import CaptchaService
from ..log_service import LogBuffer, LogEntry
from ..recovery_service import RecoveryStore
from ..session_service import SessionStore
from ..token_service import TokenService
from .booking_workflow import BookingWorkflow
from .browser_port import BrowserPort
from .events import EventChannel, LogEvent, WorkflowEvent
from .form_helpers import SelectorCatalog
from .playwright_backend import PlaywrightBrowser
from .state_machine import BookingState, StateTransition

BrowserFactory = Callable[[], BrowserPort]
CaptchaFactory = Callable[[CaptchaBackend], CaptchaService]


@dataclass(frozen=True)
class EngineResult:
    """Outcome of a control-surface call"""
    ok: bool
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def success(cls) -> "EngineResult":
        return cls(True)

    @classmethod
    def failure(cls, error: Union[AutomationError, str], error_code: Optional[str] = None) -> "EngineResult":
        if isinstance(error, AutomationError):
            return cls(False, error.message, error.error_code)
        return cls(False, error, error_code)


class RunGuard:
    """Single-writer flag marking that a workflow is running"""

    def __init__(self):
        self._lock = threading.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def try_acquire(self) -> bool:
        with self._lock:
            if self._running:
                return False
            self._running = True
            return True

    def release(self):
        with self._lock:
            self._running = False


class AutomationService:
    """
    Automation service coordinator

    Builds a BookingWorkflow per run from its factories and runs it as a
    background task. Events from the workflow are fanned out to subscribers
    and log events are kept in a bounded in-memory buffer.
    """

    def __init__(self, settings: Optional[AutomationSettings] = None,
                 paths: Optional[AppPaths] = None,
                 browser_factory: Optional[BrowserFactory] = None,
                 captcha_factory: Optional[CaptchaFactory] = None,
                 session_store: Optional[SessionStore] = None,
                 recovery_store: Optional[RecoveryStore] = None,
                 token_service: Optional[TokenService] = None):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.settings = settings or AutomationSettings()
        self.paths = paths or AppPaths()

        self._browser_factory = browser_factory or (
            lambda: PlaywrightBrowser(self.settings, self.paths.screenshot_dir)
        )
        self.selectors = SelectorCatalog.from_file(self.settings.selector_overrides)
        self._captcha_factory = captcha_factory or (
            lambda backend: CaptchaService.for_backend(backend, self.settings, selectors=self.selectors)
        )
        self.session_store = session_store or SessionStore(self.paths.cookie_file)
        self.recovery_store = recovery_store or RecoveryStore(self.paths.checkpoint_file)
        self.token_service = token_service or TokenService()

        self.events = EventChannel()
        self.log_buffer = LogBuffer(self.settings.log_buffer_size)

        self._guard = RunGuard()
        self._workflow: Optional[BookingWorkflow] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._guard.is_running

    @property
    def current_state(self) -> BookingState:
        if self._workflow is None:
            return BookingState.IDLE
        return self._workflow.current_state

    def _publish(self, event: WorkflowEvent):
        if isinstance(event, LogEvent):
            self.log_buffer.append(LogEntry(event.level, event.message, event.timestamp))
        self.events.publish(event)

    async def start(self, request: Union[BookingRequest, Dict[str, Any]]) -> EngineResult:
        """
        Validate ``request`` and start its workflow in the background

        Returns as soon as the workflow task is scheduled. Fails with
        VALIDATION_ERROR for a bad request and ALREADY_RUNNING when a
        workflow is active.
        """
        try:
            if isinstance(request, dict):
                request = BookingRequest.from_dict(request)
            request.ensure_valid()
        except RequestValidationError as e:
            self.logger.warning(e.message)
            return EngineResult.failure(e)

        if not self._guard.try_acquire():
            error = EngineBusyError()
            self.logger.warning(error.message)
            return EngineResult.failure(error)

        try:
            browser = self._browser_factory()
            self._workflow = BookingWorkflow(
                request=request,
                browser=browser,
                captcha=self._captcha_factory(request.captcha_backend),
                session_store=self.session_store,
                recovery_store=self.recovery_store,
                settings=self.settings,
                selectors=self.selectors,
                token_service=self.token_service,
                publish=self._publish,
            )
            self._task = asyncio.create_task(self._run(self._workflow))
        except Exception:
            self._guard.release()
            raise

        self.logger.info(f"Booking started for train {request.train_no}")
        return EngineResult.success()

    async def _run(self, workflow: BookingWorkflow):
        try:
            await workflow.run()
        except Exception as e:
            self.logger.error(f"Workflow crashed: {e}", exc_info=True)
            self._publish(LogEvent("ERROR", f"Workflow crashed: {e}"))
        finally:
            self._guard.release()

    def _control(self, action: Callable[[BookingWorkflow], StateTransition]) -> EngineResult:
        if not self.is_running or self._workflow is None:
            return EngineResult.failure("Automation is not running", "NOT_RUNNING")
        transition = action(self._workflow)
        if not transition.is_valid:
            return EngineResult.failure(transition.error_message, "INVALID_TRANSITION")
        return EngineResult.success()

    def pause(self) -> EngineResult:
        return self._control(lambda workflow: workflow.pause())

    def resume(self) -> EngineResult:
        return self._control(lambda workflow: workflow.resume())

    def stop(self) -> EngineResult:
        return self._control(lambda workflow: workflow.stop())

    def get_status(self) -> Dict[str, Any]:
        valid_actions: List[str] = []
        if self._workflow is not None:
            valid_actions = [action.value for action in self._workflow.state_machine.get_valid_actions()]
        return {
            "is_running": self.is_running,
            "current_state": self.current_state.value,
            "valid_actions": valid_actions,
        }

    def subscribe(self, maxsize: int = 0) -> asyncio.Queue:
        return self.events.subscribe(maxsize)

    def unsubscribe(self, queue: asyncio.Queue):
        self.events.unsubscribe(queue)

    def get_logs(self, limit: Optional[int] = None) -> List[LogEntry]:
        return self.log_buffer.get_logs(limit)

    def clear_logs(self):
        self.log_buffer.clear()

    async def wait(self) -> BookingState:
        """Wait for the current run (if any) to finish and return its state"""
        if self._task is not None:
            await asyncio.shield(self._task)
        return self.current_state

    async def shutdown(self):
        """Stop any run, wait for it, and release the browser"""
        if self.is_running:
            self.stop()
        await self.wait()
        if self._workflow is not None:
            await self._workflow.browser.close()
