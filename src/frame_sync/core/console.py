"""
Console capture - Ordered console messages with lazily resolved arguments.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Tuple

from frame_sync.core.events import EventDispatcher, PageEvent
from frame_sync.core.handles import JSHandle
from frame_sync.core.models import SourceLocation

logger = logging.getLogger("frame_sync")

DEFAULT_BUFFER_SIZE = 1000


class ConsoleMessageType(str, Enum):
    LOG = "log"
    DEBUG = "debug"
    INFO = "info"
    ERROR = "error"
    WARNING = "warning"
    DIR = "dir"
    DIRXML = "dirxml"
    TABLE = "table"
    TRACE = "trace"
    CLEAR = "clear"
    START_GROUP = "startGroup"
    START_GROUP_COLLAPSED = "startGroupCollapsed"
    END_GROUP = "endGroup"
    ASSERT = "assert"
    PROFILE = "profile"
    PROFILE_END = "profileEnd"
    COUNT = "count"
    TIME_END = "timeEnd"

    @classmethod
    def parse(cls, value: str) -> ConsoleMessageType:
        # Log.entryAdded uses "verbose" where the console API says "debug"
        if value == "verbose":
            return cls.DEBUG
        try:
            return cls(value)
        except ValueError:
            logger.warning(f"Unknown console message type {value!r}, reporting as log")
            return cls.LOG


HandleFactory = Callable[[Dict[str, Any], Optional[int]], JSHandle]


@dataclass(frozen=True)
class ConsoleMessage:
    """One console API call or browser log entry."""
    type: ConsoleMessageType
    text: str
    args: Tuple[JSHandle, ...] = ()
    location: Optional[SourceLocation] = None

    @classmethod
    def from_console_api(cls, params: Dict[str, Any],
                         handle_factory: HandleFactory) -> ConsoleMessage:
        """Build from a Runtime.consoleAPICalled event."""
        context_id = params.get("executionContextId")
        args = tuple(handle_factory(arg, context_id) for arg in params.get("args", []))
        return cls(
            type=ConsoleMessageType.parse(params.get("type", "log")),
            text=" ".join(str(arg) for arg in args),
            args=args,
            location=SourceLocation.from_stack_trace(params.get("stackTrace")),
        )

    @classmethod
    def from_log_entry(cls, entry: Dict[str, Any]) -> ConsoleMessage:
        """Build from a Log.entryAdded entry (network, security, intervention...)."""
        url = entry.get("url")
        location = None
        if url:
            location = SourceLocation(url=url, line_number=int(entry.get("lineNumber", 0)))
        return cls(
            type=ConsoleMessageType.parse(entry.get("level", "log")),
            text=entry.get("text", ""),
            location=location,
        )

    def __str__(self) -> str:
        return self.text


class ConsoleMessageBuffer:
    """
    Console messages of a page in emission order.

    Appending a message also publishes it as a "console" event. Argument
    resolution never happens here, so a slow json_value() on one message
    cannot hold back delivery of the next.
    """

    def __init__(self, dispatcher: EventDispatcher, maxlen: int = DEFAULT_BUFFER_SIZE):
        self._dispatcher = dispatcher
        self._messages: Deque[ConsoleMessage] = deque(maxlen=maxlen)

    def append(self, message: ConsoleMessage) -> ConsoleMessage:
        self._messages.append(message)
        self._dispatcher.emit(PageEvent.CONSOLE, message)
        return message

    @property
    def messages(self) -> List[ConsoleMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ConsoleMessage]:
        return iter(list(self._messages))

    def clear(self) -> None:
        self._messages.clear()

    async def wait_for_message(self, predicate: Optional[Callable[[ConsoleMessage], bool]] = None,
                               timeout: Optional[float] = None) -> ConsoleMessage:
        """Wait for the next console message accepted by predicate."""
        return await self._dispatcher.wait_for(PageEvent.CONSOLE, predicate, timeout)
