"""
Booking workflow orchestrator

Runs the state machine loop: every active state gets its step handler,
success fires Next, a raised error fires Error. Pause, resume and stop
arrive as actions applied between loop iterations; cancellation wakes
any pending wait so stop takes effect promptly.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional

from ...config import AutomationSettings
from ...exceptions import PersistenceError, WorkflowCancelledError
from ...models.booking import BookingRequest
from ...models.session import RecoveryCheckpoint
from ..captcha_service import CaptchaService
from ..recovery_service import RecoveryStore
from ..session_service import SessionStore
from ..token_service import TokenService
from .booking_steps import BookingSteps
from .browser_port import BrowserPort
from .cancellation import CancellationToken
from .events import LogEvent, StateChangeEvent, WorkflowEvent
from .form_helpers import SelectorCatalog
from .retry_executor import RetryExecutor
from .state_machine import (
    BookingAction, BookingState, BookingStateMachine, StateChange, StateTransition, TERMINAL_STATES
)

Publish = Callable[[WorkflowEvent], None]


class BookingWorkflow:
    """Drives one booking request from Idle to a terminal state"""

    def __init__(self, request: BookingRequest, browser: BrowserPort, captcha: CaptchaService,
                 session_store: SessionStore, recovery_store: RecoveryStore,
                 settings: Optional[AutomationSettings] = None,
                 selectors: Optional[SelectorCatalog] = None,
                 token_service: Optional[TokenService] = None,
                 publish: Optional[Publish] = None):
        self.request = request
        self.browser = browser
        self.captcha = captcha
        self.recovery_store = recovery_store
        self.settings = settings or AutomationSettings()
        self._publish = publish
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self.cancel_token = CancellationToken()
        self.attempt_count = 0
        self.last_error: Optional[str] = None

        self.state_machine = BookingStateMachine()
        self.state_machine.add_listener(self._on_state_changed)

        captcha.set_sleep(self.cancel_token.sleep)
        captcha.on_log_message = self._log
        browser.set_log_callback(self._log)

        self.steps = BookingSteps(
            request=request,
            browser=browser,
            captcha=captcha,
            session_store=session_store,
            settings=self.settings,
            selectors=selectors or SelectorCatalog.from_file(self.settings.selector_overrides),
            retry=RetryExecutor(self.settings.step_retry, sleep=self.cancel_token.sleep),
            cancel_token=self.cancel_token,
            log=self._log,
            token_service=token_service,
        )

        self._handlers: Dict[BookingState, Callable[[], Awaitable[None]]] = {
            BookingState.INITIALIZING: self.steps.initialize,
            BookingState.AUTHENTICATING: self.steps.authenticate,
            BookingState.LOGGING_IN: self.steps.login,
            BookingState.SEARCHING: self.steps.search,
            BookingState.WAITING_FOR_QUOTA_WINDOW: self.steps.wait_for_quota_window,
            BookingState.SELECTING_ITEM: self.steps.select_item,
            BookingState.FILLING_DETAILS: self.steps.fill_details,
            BookingState.PAYMENT: self.steps.payment,
        }

    @property
    def current_state(self) -> BookingState:
        return self.state_machine.current_state

    def _log(self, message: str, level: int = logging.INFO):
        self.logger.log(level, message)
        if self._publish:
            self._publish(LogEvent(logging.getLevelName(level), message))

    async def run(self) -> BookingState:
        """Run until Completed, Failed or Stopped and return the final state"""
        self._log(f"Starting booking for train {self.request.train_no} on {self.request.travel_date}")
        try:
            self.state_machine.execute_action(BookingAction.START)
            await self._process_state(self.current_state)

            while self.current_state not in TERMINAL_STATES:
                if self.current_state is BookingState.PAUSED:
                    await self.cancel_token.sleep(self.settings.pause_poll_interval)
                    continue

                await self._process_state(self.current_state)
                await self.cancel_token.sleep(self.settings.step_delay)

        except WorkflowCancelledError:
            self._log("Booking cancelled", logging.WARNING)
            if self.current_state is not BookingState.STOPPED:
                self.state_machine.execute_action(BookingAction.STOP)

        finally:
            if not self.settings.keep_browser_open:
                await self.browser.close()

        final_state = self.current_state
        if final_state is BookingState.COMPLETED:
            self._log("Booking workflow completed")
        elif final_state is BookingState.FAILED:
            self._log(f"Booking workflow failed: {self.last_error}", logging.ERROR)
        return final_state

    async def _process_state(self, state: BookingState):
        handler = self._handlers.get(state)
        if handler is None:
            return

        self.attempt_count += 1
        self.logger.debug(f"Processing state: {state.value}")
        try:
            await handler()
        except WorkflowCancelledError:
            raise
        except Exception as e:
            self.last_error = str(e)
            self.logger.error(f"Step {state.value} failed: {e}", exc_info=True)
            self._log(f"Step {state.value} failed: {e}", logging.ERROR)
            if self.current_state is state:
                self.state_machine.execute_action(BookingAction.ERROR)
            return

        # a pause or stop landed while the handler ran; its result no longer applies
        if self.current_state is not state:
            self.logger.debug(f"State moved to {self.current_state.value} during {state.value}")
            return
        self.state_machine.execute_action(BookingAction.NEXT)

    def _on_state_changed(self, change: StateChange):
        self._log(f"State changed: {change.previous.value} -> {change.current.value}")
        if self._publish:
            self._publish(StateChangeEvent(change.previous, change.current, change.action, change.timestamp))

        try:
            if change.current is BookingState.COMPLETED:
                self.recovery_store.clear()
            else:
                self.recovery_store.save_checkpoint(RecoveryCheckpoint(
                    request=self.request.to_dict(redact=True),
                    current_state=change.current.value,
                    timestamp=change.timestamp,
                    attempt_count=self.attempt_count,
                    last_error=self.last_error,
                ))
        except PersistenceError as e:
            self.logger.error(f"Checkpoint not written: {e}")

    def pause(self) -> StateTransition:
        transition = self.state_machine.execute_action(BookingAction.PAUSE)
        if transition.is_valid:
            self._log("Booking paused")
        return transition

    def resume(self) -> StateTransition:
        transition = self.state_machine.execute_action(BookingAction.RESUME)
        if transition.is_valid:
            self._log(f"Booking resumed at {transition.to_state.value}")
        return transition

    def stop(self) -> StateTransition:
        self.cancel_token.cancel()
        transition = self.state_machine.execute_action(BookingAction.STOP)
        if transition.is_valid:
            self._log("Booking stopped")
        return transition
