"""
Frame Sync - Client-side frame tree, event stream and console capture for Chrome pages.

This package keeps a consistent picture of a remote page's frames and console
while driving it over the Chrome DevTools Protocol.

Usage:
    from frame_sync import Page, PageConfig

    async with Page() as page:
        page.on("frameattached", lambda frame: print("attached", frame.url))
        await page.goto("https://example.com")
        message = await page.wait_for_console_message()

Screenshots that wait for visibility:
    element = await page.query_selector("#banner")
    png = await element.screenshot(timeout=3.0)
"""
from frame_sync.page import Page, PageConfig
from frame_sync.element import ElementHandle
from frame_sync.cdp.client import CDPClient, get_page_ws_url, setup_logging
from frame_sync.cdp.session import PageSession
from frame_sync.core.console import ConsoleMessage, ConsoleMessageBuffer, ConsoleMessageType
from frame_sync.core.events import EventDispatcher, PageEvent
from frame_sync.core.frames import Frame, FrameTree
from frame_sync.core.handles import JSHandle
from frame_sync.core.models import BoundingBox, SourceLocation
from frame_sync.core.pending import OperationState, PendingOperation, PendingOperationRegistry
from frame_sync.core.errors import (
    FrameSyncError,
    CDPConnectionError,
    CDPTimeoutError,
    CDPProtocolError,
    CDPTargetError,
    FrameTreeError,
    UnknownParentError,
    UnknownFrameError,
    StaleRemoteObjectError,
    EvaluationError,
    TargetDetachedError,
    OperationTimeoutError,
    OperationCancelledError,
)

__version__ = "0.1.0"

__all__ = [
    # Main API
    "Page",
    "PageConfig",
    "ElementHandle",
    # CDP
    "CDPClient",
    "PageSession",
    "get_page_ws_url",
    "setup_logging",
    # Core
    "Frame",
    "FrameTree",
    "EventDispatcher",
    "PageEvent",
    "JSHandle",
    "ConsoleMessage",
    "ConsoleMessageBuffer",
    "ConsoleMessageType",
    "OperationState",
    "PendingOperation",
    "PendingOperationRegistry",
    "BoundingBox",
    "SourceLocation",
    # Errors
    "FrameSyncError",
    "CDPConnectionError",
    "CDPTimeoutError",
    "CDPProtocolError",
    "CDPTargetError",
    "FrameTreeError",
    "UnknownParentError",
    "UnknownFrameError",
    "StaleRemoteObjectError",
    "EvaluationError",
    "TargetDetachedError",
    "OperationTimeoutError",
    "OperationCancelledError",
    # Version
    "__version__",
]
