"""
Event Dispatcher - Ordered, synchronous delivery of page events to listeners.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Union

from frame_sync.core.errors import OperationTimeoutError, TargetDetachedError

logger = logging.getLogger("frame_sync")


class PageEvent(str, Enum):
    FRAME_ATTACHED = "frameattached"
    FRAME_NAVIGATED = "framenavigated"
    FRAME_DETACHED = "framedetached"
    CONSOLE = "console"
    LOAD = "load"
    DOMCONTENTLOADED = "domcontentloaded"
    CLOSE = "close"


EventName = Union[PageEvent, str]
Listener = Callable[[Any], Any]
Predicate = Callable[[Any], bool]


def _event_key(event: EventName) -> str:
    return event.value if isinstance(event, PageEvent) else str(event)


class EventDispatcher:
    """
    Single ordered event stream for one page.

    Each emit() delivers to a snapshot of the listener list taken when the
    dispatch starts. Listeners removed mid-dispatch still finish the current
    event and miss the following ones; listeners added mid-dispatch start with
    the next event.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def on(self, event: EventName, listener: Listener) -> Listener:
        """Subscribe a listener. Returns it so it can be passed to off()."""
        self._listeners.setdefault(_event_key(event), []).append(listener)
        return listener

    def off(self, event: EventName, listener: Listener) -> bool:
        """Unsubscribe a listener. Returns False if it was not registered."""
        listeners = self._listeners.get(_event_key(event))
        if not listeners:
            return False
        try:
            listeners.remove(listener)
        except ValueError:
            return False
        return True

    def once(self, event: EventName, listener: Listener) -> Listener:
        """Subscribe a listener that removes itself after one delivery."""
        def wrapper(payload: Any) -> Any:
            self.off(event, wrapper)
            return listener(payload)

        return self.on(event, wrapper)

    def listener_count(self, event: EventName) -> int:
        return len(self._listeners.get(_event_key(event), []))

    def remove_all_listeners(self, event: Optional[EventName] = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(_event_key(event), None)

    def emit(self, event: EventName, payload: Any = None) -> int:
        """
        Deliver an event to every listener subscribed at dispatch start.

        Returns:
            Number of listeners invoked.
        """
        key = _event_key(event)
        snapshot = list(self._listeners.get(key, ()))
        for listener in snapshot:
            try:
                result = listener(payload)
            except Exception:
                logger.exception(
                    f"Listener for {key} raised",
                    extra={"event": key},
                )
                continue
            if inspect.isawaitable(result):
                self._schedule(key, result)
        return len(snapshot)

    def _schedule(self, key: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(
                    f"Async listener for {key} failed: {t.exception()}",
                    extra={"event": key, "error_type": type(t.exception()).__name__},
                )

        task.add_done_callback(_done)

    def waiter(self, event: EventName, predicate: Optional[Predicate] = None) -> asyncio.Future:
        """
        Register a one-shot subscription right away and return its future.

        The future resolves with the first payload accepted by the predicate.
        It fails with TargetDetachedError if the page closes first.
        """
        key = _event_key(event)
        future = asyncio.get_running_loop().create_future()

        def on_event(payload: Any) -> None:
            if future.done():
                return
            try:
                if predicate is not None and not predicate(payload):
                    return
            except Exception as e:
                future.set_exception(e)
                return
            future.set_result(payload)

        def on_close(_: Any) -> None:
            if not future.done():
                future.set_exception(TargetDetachedError(
                    f"Page closed while waiting for event \"{key}\"",
                    method="wait_for_event",
                ))

        self.on(key, on_event)
        watch_close = key != PageEvent.CLOSE.value
        if watch_close:
            self.on(PageEvent.CLOSE, on_close)

        def cleanup(_: asyncio.Future) -> None:
            self.off(key, on_event)
            if watch_close:
                self.off(PageEvent.CLOSE, on_close)

        future.add_done_callback(cleanup)
        return future

    async def wait_for(self, event: EventName, predicate: Optional[Predicate] = None,
                       timeout: Optional[float] = None) -> Any:
        """Wait for the next matching event, optionally bounded by timeout seconds."""
        future = self.waiter(event, predicate)
        return await wait_future(future, timeout, f"event \"{_event_key(event)}\"")


async def wait_future(future: asyncio.Future, timeout: Optional[float], what: str) -> Any:
    """Await a waiter future, turning an expired bound into OperationTimeoutError."""
    if timeout is None:
        return await future
    try:
        return await asyncio.wait_for(future, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise OperationTimeoutError(
            f"Timeout {round(timeout * 1000)}ms exceeded while waiting for {what}",
            timeout=timeout,
            condition=what,
        ) from e
