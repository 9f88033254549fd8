"""
Frame Sync Error Taxonomy - Custom exception classes for page state tracking.

This module defines a hierarchy of exceptions for the frame tree, remote
values, pending operations and the CDP transport, so callers can tell
protocol bugs apart from expected timing failures.
"""
from typing import Optional


class FrameSyncError(Exception):
    """Base exception for all frame sync errors."""

    def __init__(self, message: str, session_id: Optional[str] = None,
                 target_id: Optional[str] = None, method: Optional[str] = None,
                 **context):
        super().__init__(message)
        self.message = message
        self.session_id = session_id
        self.target_id = target_id
        self.method = method
        self.context = context

    def __str__(self):
        parts = [self.message]
        if self.session_id:
            parts.append(f"session_id={self.session_id}")
        if self.target_id:
            parts.append(f"target_id={self.target_id}")
        if self.method:
            parts.append(f"method={self.method}")
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"context=({context_str})")
        return " | ".join(parts)


# =============================================================================
# Transport
# =============================================================================

class CDPConnectionError(FrameSyncError):
    """Raised when connection to Chrome/CDP fails or is lost."""
    pass


class CDPTimeoutError(FrameSyncError):
    """Raised when a CDP command gets no response in time."""

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class CDPProtocolError(FrameSyncError):
    """Raised when CDP returns an error response."""

    def __init__(self, message: str, code: Optional[int] = None,
                 cdp_error: Optional[dict] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.code = code
        self.cdp_error = cdp_error


class CDPTargetError(FrameSyncError):
    """Raised when no usable page target can be found."""
    pass


# =============================================================================
# Frame tree
# =============================================================================

class FrameTreeError(FrameSyncError):
    """Raised on a structurally invalid frame tree mutation."""
    pass


class UnknownParentError(FrameTreeError):
    """Raised when a frame is attached under a parent that is not live."""

    def __init__(self, message: str, parent_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.parent_id = parent_id


class UnknownFrameError(FrameTreeError):
    """Raised when a mutation references a frame that is not live."""

    def __init__(self, message: str, frame_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.frame_id = frame_id


# =============================================================================
# Remote values
# =============================================================================

class StaleRemoteObjectError(FrameSyncError):
    """Raised when a remote value is resolved after it was disposed."""

    def __init__(self, message: str, object_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.object_id = object_id


class EvaluationError(FrameSyncError):
    """Raised when evaluated JavaScript throws inside the page."""

    def __init__(self, message: str, exception_details: Optional[dict] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.exception_details = exception_details


# =============================================================================
# Pending operations
# =============================================================================

class TargetDetachedError(FrameSyncError):
    """Raised when an action targets a frame or element that is no longer live."""
    pass


class OperationTimeoutError(FrameSyncError):
    """Raised when a condition is not met within its time bound."""

    def __init__(self, message: str, timeout: Optional[float] = None,
                 condition: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout
        self.condition = condition


class OperationCancelledError(FrameSyncError):
    """Raised when a pending operation is cancelled by its caller."""
    pass
