"""
Event channel carrying log and state-change events to subscribers

Each subscriber gets its own asyncio.Queue. Publishing never blocks: when a
bounded queue is full its oldest event is dropped to make room.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Union

from .state_machine import BookingAction, BookingState


@dataclass(frozen=True)
class LogEvent:
    """A user-facing progress message"""
    level: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class StateChangeEvent:
    """Emitted after every committed state transition"""
    previous: BookingState
    current: BookingState
    action: BookingAction
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


WorkflowEvent = Union[LogEvent, StateChangeEvent]


class EventChannel:
    """Fan-out of workflow events to any number of queues"""

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._subscribers: List[asyncio.Queue] = []

    def subscribe(self, maxsize: int = 0) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: WorkflowEvent):
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
                self.logger.debug("Subscriber queue full, dropped oldest event")
            queue.put_nowait(event)
