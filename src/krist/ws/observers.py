"""Observer registry for WebSocket client signals."""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

from .messages import WsEvent

logger = logging.getLogger(__name__)


class Observers:
    """
    Per-category observer lists.

    Observers are called synchronously in registration order. An observer
    returning a coroutine is scheduled as a task on the running loop. Errors
    raised by an observer are logged and do not reach the emitter.
    """

    def __init__(self):
        self._handlers: Dict[WsEvent, List[Callable]] = defaultdict(list)
        self._tasks = set()

    def on(self, event: WsEvent, handler: Callable) -> Callable:
        """Register a handler for an event category. Returns the handler."""
        if not isinstance(event, WsEvent):
            raise TypeError(f"Expected a WsEvent, got {event!r}")
        self._handlers[event].append(handler)
        logger.debug(f"Registered handler for {event.value}")
        return handler

    def off(self, event: WsEvent, handler: Callable):
        try:
            self._handlers[event].remove(handler)
        except ValueError:
            pass

    def count(self, event: WsEvent) -> int:
        return len(self._handlers.get(event, ()))

    def emit(self, event: WsEvent, *args: Any):
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(*args)
            except Exception as e:
                logger.error(f"Handler error for {event.value}: {e}", exc_info=True)
                continue

            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done(event))

    def _task_done(self, event: WsEvent):
        def callback(task: asyncio.Task):
            self._tasks.discard(task)
            if task.cancelled():
                return
            error = task.exception()
            if error is not None:
                logger.error(f"Async handler error for {event.value}: {error}")
        return callback
