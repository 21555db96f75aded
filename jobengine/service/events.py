"""
In-process event bus for job notifications.

Publishing is fire-and-forget: a failing listener is logged and skipped,
never reported back to the job that emitted the event.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable

from jobengine.types.events import JobEvent

logger = logging.getLogger(__name__)

JobEventListener = Callable[[JobEvent], Awaitable[None] | None]


class JobEventBus:
    """Delivers job events to subscribed listeners in subscription order."""

    def __init__(self):
        self._listeners: list[JobEventListener] = []

    def subscribe(self, listener: JobEventListener) -> None:
        """Register a listener; it may be a plain function or a coroutine function."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: JobEventListener) -> None:
        """Remove a listener if it is subscribed."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def publish(self, event: JobEvent) -> None:
        """Deliver an event to every listener."""
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Job event listener failed",
                    extra={"event_type": event.event_type, "job_id": event.job_id},
                )
