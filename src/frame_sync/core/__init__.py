"""
Core module - Frame tree, event dispatch, console capture and pending operations.
"""
from frame_sync.core.console import ConsoleMessage, ConsoleMessageBuffer, ConsoleMessageType
from frame_sync.core.errors import (
    CDPConnectionError,
    CDPProtocolError,
    CDPTargetError,
    CDPTimeoutError,
    EvaluationError,
    FrameSyncError,
    FrameTreeError,
    OperationCancelledError,
    OperationTimeoutError,
    StaleRemoteObjectError,
    TargetDetachedError,
    UnknownFrameError,
    UnknownParentError,
)
from frame_sync.core.events import EventDispatcher, PageEvent
from frame_sync.core.frames import Frame, FrameTree
from frame_sync.core.handles import JSHandle
from frame_sync.core.models import BoundingBox, SourceLocation
from frame_sync.core.pending import OperationState, PendingOperation, PendingOperationRegistry

__all__ = [
    "BoundingBox",
    "SourceLocation",
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
]
