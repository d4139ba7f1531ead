"""
Flow Events - Lifecycle notifications emitted by the runner

Listeners are plain callables (sync or async) registered on a runner. They are
called in registration order; a listener that raises is logged and skipped.
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from apiflow.flow_engine.errors import EngineError
from apiflow.flow_engine.models import StepStatus

logger = logging.getLogger(__name__)


class FlowEventType(str, Enum):
    STARTED = 'flow:started'
    STEP_STARTED = 'flow:step:started'
    STEP_COMPLETED = 'flow:step:completed'
    STEP_SKIPPED = 'flow:step:skipped'
    STEP_ERROR = 'flow:step:error'
    ERROR = 'flow:error'
    COMPLETED = 'flow:completed'
    STOPPED = 'flow:stopped'


@dataclass
class FlowEvent:
    type: FlowEventType
    flow_id: str
    step_id: Optional[str] = None
    status: Optional[StepStatus] = None
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[EngineError] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'flow_id': self.flow_id,
            'step_id': self.step_id,
            'status': self.status.value if self.status else None,
            'data': self.data,
            'error': self.error.to_dict() if self.error else None,
            'timestamp': self.timestamp.isoformat(),
        }


Listener = Callable[[FlowEvent], Union[None, Awaitable[None]]]


class EventDispatcher:
    """Ordered listener list with fault-isolated delivery"""

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def emit(self, event: FlowEvent):
        logger.debug(f"Event {event.type.value} flow={event.flow_id} step={event.step_id}")
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Event listener failed on {event.type.value}: {e}", exc_info=True)


class EventRecorder:
    """
    Listener that keeps every event it receives.

    Usage:
        recorder = EventRecorder()
        runner.subscribe(recorder)
        await runner.run(flow)
        types = recorder.types()
    """

    def __init__(self):
        self.events: List[FlowEvent] = []

    def __call__(self, event: FlowEvent):
        self.events.append(event)

    def types(self) -> List[str]:
        return [e.type.value for e in self.events]

    def for_step(self, step_id: str) -> List[FlowEvent]:
        return [e for e in self.events if e.step_id == step_id]

    def drain(self) -> List[FlowEvent]:
        events, self.events = self.events, []
        return events
