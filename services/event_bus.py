"""In-process event bus that fans committed assessment events out to subscribers."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Type, TypeVar

from loguru import logger

EventT = TypeVar("EventT")
EventHandler = Callable[[EventT], Awaitable[None]]


class EventBus:
    """Asynchronous event bus with a single dispatcher task.

    Handlers are matched on the event's type and its base classes. A failing
    handler is logged and never affects other handlers or the publisher.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._subscribers: Dict[Type[object], List[EventHandler]] = defaultdict(list)
        self._dispatcher: asyncio.Task | None = None

    def subscribe(self, event_type: Type[EventT], handler: EventHandler[EventT]) -> None:
        """Register an asynchronous handler for the given event type."""

        self._subscribers[event_type].append(handler)  # type: ignore[arg-type]

    def handlers_for(self, event: object) -> List[EventHandler]:
        handlers: List[EventHandler] = []
        for event_type in type(event).__mro__:
            handlers.extend(self._subscribers.get(event_type, []))
        return handlers

    @property
    def is_running(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    async def start(self) -> None:
        """Start the dispatcher loop if not already running."""

        if self.is_running:
            return
        self._dispatcher = asyncio.create_task(self._dispatch_loop())

    async def stop(self) -> None:
        """Deliver queued events, then stop the dispatcher."""

        if self._dispatcher is None:
            return

        await self._queue.put(None)  # Sentinel
        try:
            await self._dispatcher
        finally:
            self._dispatcher = None

    async def publish(self, event: object) -> None:
        """Enqueue an event for asynchronous fan-out."""

        await self._queue.put(event)

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""

        await self._queue.join()

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                self._queue.task_done()
                break

            try:
                handlers = self.handlers_for(event)
                if not handlers:
                    logger.debug("No subscribers for event", event_type=type(event).__name__)
                    continue
                await asyncio.gather(
                    *(self._invoke_handler(handler, event) for handler in handlers)
                )
            finally:
                self._queue.task_done()

    async def _invoke_handler(self, handler: EventHandler, event: object) -> None:
        try:
            await handler(event)  # type: ignore[arg-type]
        except Exception:
            logger.exception(
                "Event handler failed",
                handler=getattr(handler, "__name__", repr(handler)),
                event_type=type(event).__name__,
            )
