"""
Booking workflow state machine built on the transitions framework

The machine is pure: it owns the current state and the fixed transition
table, and performs no I/O. Invalid (state, action) pairs are reported
back as an invalid StateTransition and never raise.

State Flow Diagram:
==================

    [IDLE] ──start──► [INITIALIZING] ──next──► [AUTHENTICATING] ──next──► [LOGGING_IN]
                                                                              │
        ┌────────────────────────────── next ─────────────────────────────────┘
        ▼
    [SEARCHING] ──next──► [WAITING_FOR_QUOTA_WINDOW] ──next──► [SELECTING_ITEM]
                                                                     │
        ┌──────────────────────────── next ──────────────────────────┘
        ▼
    [FILLING_DETAILS] ──next──► [PAYMENT] ──next──► [COMPLETED]

    Every active state:  error ──► [FAILED]
                         stop  ──► [STOPPED]
                         pause ──► [PAUSED] ──resume──► [SEARCHING]
                                            ──stop────► [STOPPED]
    [FAILED] ──retry──► [INITIALIZING]
    [COMPLETED] / [FAILED] / [STOPPED] ──start──► [INITIALIZING]
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from transitions import Machine


class BookingState(Enum):
    """Positions in the booking journey"""
    IDLE = "Idle"
    INITIALIZING = "Initializing"
    AUTHENTICATING = "Authenticating"
    LOGGING_IN = "LoggingIn"
    SEARCHING = "Searching"
    WAITING_FOR_QUOTA_WINDOW = "WaitingForQuotaWindow"
    SELECTING_ITEM = "SelectingItem"
    FILLING_DETAILS = "FillingDetails"
    PAYMENT = "Payment"
    COMPLETED = "Completed"
    FAILED = "Failed"
    PAUSED = "Paused"
    STOPPED = "Stopped"


class BookingAction(Enum):
    """Triggers accepted by the state machine"""
    START = "start"
    STOP = "stop"
    PAUSE = "pause"
    RESUME = "resume"
    RETRY = "retry"
    NEXT = "next"
    ERROR = "error"


ACTIVE_STATES = (
    BookingState.INITIALIZING,
    BookingState.AUTHENTICATING,
    BookingState.LOGGING_IN,
    BookingState.SEARCHING,
    BookingState.WAITING_FOR_QUOTA_WINDOW,
    BookingState.SELECTING_ITEM,
    BookingState.FILLING_DETAILS,
    BookingState.PAYMENT,
)

TERMINAL_STATES = (BookingState.COMPLETED, BookingState.FAILED, BookingState.STOPPED)

LINEAR_PATH = ACTIVE_STATES + (BookingState.COMPLETED,)

RESUME_STATE = BookingState.SEARCHING


def _build_transition_table() -> Dict[Tuple[BookingState, BookingAction], BookingState]:
    table = {(BookingState.IDLE, BookingAction.START): BookingState.INITIALIZING}

    for current, following in zip(LINEAR_PATH, LINEAR_PATH[1:]):
        table[(current, BookingAction.NEXT)] = following

    for state in ACTIVE_STATES:
        table[(state, BookingAction.ERROR)] = BookingState.FAILED
        table[(state, BookingAction.PAUSE)] = BookingState.PAUSED
        table[(state, BookingAction.STOP)] = BookingState.STOPPED

    table[(BookingState.PAUSED, BookingAction.RESUME)] = RESUME_STATE
    table[(BookingState.PAUSED, BookingAction.STOP)] = BookingState.STOPPED
    table[(BookingState.FAILED, BookingAction.RETRY)] = BookingState.INITIALIZING

    for state in TERMINAL_STATES:
        table[(state, BookingAction.START)] = BookingState.INITIALIZING
    return table


TRANSITION_TABLE = _build_transition_table()


@dataclass(frozen=True)
class StateTransition:
    """Outcome of executing one action"""
    from_state: BookingState
    action: BookingAction
    to_state: BookingState
    is_valid: bool
    error_message: Optional[str] = None


@dataclass(frozen=True)
class StateChange:
    """Notification delivered to listeners after a committed transition"""
    previous: BookingState
    current: BookingState
    action: BookingAction
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


StateListener = Callable[[StateChange], None]


class BookingStateMachine:
    """
    Booking state machine using the transitions framework

    Triggers are bound to this model by transitions (``self.next()``,
    ``self.pause()`` ...); callers should go through execute_action() so
    that invalid pairs are reported and listeners are notified.
    """

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._listeners: List[StateListener] = []

        self.machine = Machine(
            model=self,
            states=BookingState,
            transitions=[
                {"trigger": action.value, "source": source, "dest": dest}
                for (source, action), dest in TRANSITION_TABLE.items()
            ],
            initial=BookingState.IDLE,
            auto_transitions=False,
            ignore_invalid_triggers=True,
        )

    @property
    def current_state(self) -> BookingState:
        return self.state

    def add_listener(self, listener: StateListener):
        """Register a passive listener for committed transitions"""
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def execute_action(self, action: BookingAction) -> StateTransition:
        previous = self.state
        if (previous, action) not in TRANSITION_TABLE:
            message = f"Invalid transition from {previous.value} with action {action.value}"
            self.logger.debug(message)
            return StateTransition(previous, action, previous, False, message)

        self.trigger(action.value)
        transition = StateTransition(previous, action, self.state, True)
        self._notify(StateChange(previous, self.state, action))
        return transition

    def get_valid_actions(self) -> List[BookingAction]:
        return [action for action in BookingAction if (self.state, action) in TRANSITION_TABLE]

    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    def reset(self):
        """Return to Idle without notifying listeners"""
        self.machine.set_state(BookingState.IDLE)

    def _notify(self, change: StateChange):
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                self.logger.error(f"State listener failed: {e}", exc_info=True)
