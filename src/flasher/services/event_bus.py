"""In-process event bus feeding presentation adapters."""

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from flasher.models.events import FlasherEvent


Subscriber = Callable[[FlasherEvent], Any]


class EventBus:
    """Delivers core events to subscribers in publish order.

    Plain callables run synchronously inside ``publish``. Coroutine
    functions are scheduled as tasks on the running loop. A failing
    subscriber is logged and never affects the publisher or other
    subscribers.
    """

    def __init__(self):
        self.logger = logging.getLogger("flasher.events")
        self._subscribers: list[Subscriber] = []
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: FlasherEvent) -> None:
        self.logger.debug(f"Event: {event.type} {event.model_dump(exclude={'type'})}")
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
            except Exception as e:
                self.logger.error(f"Error in event subscriber: {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait for scheduled coroutine subscribers to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
