"""
CDP Page Session - Translates one page's CDP event stream into frame tree,
console and pending-operation state, and wraps the remote calls the handles
need.
"""
import base64
import json
import logging
import weakref
from typing import Any, Dict, List, Optional

from frame_sync.cdp.client import CDPClient
from frame_sync.core.console import DEFAULT_BUFFER_SIZE, ConsoleMessage, ConsoleMessageBuffer
from frame_sync.core.errors import EvaluationError, FrameSyncError, TargetDetachedError
from frame_sync.core.events import EventDispatcher, PageEvent
from frame_sync.core.frames import Frame, FrameTree
from frame_sync.core.handles import JSHandle, value_from_remote_object
from frame_sync.core.models import BoundingBox
from frame_sync.core.pending import DEFAULT_POLL_INTERVAL, DEFAULT_TIMEOUT, PendingOperationRegistry
from frame_sync.element import ElementHandle

logger = logging.getLogger("frame_sync")

PAGE_DOMAINS = ["Page", "Runtime", "Log"]


class PageSession:
    """State of one attached page, fed by CDP events."""

    def __init__(self, client: CDPClient, *, session_id: Optional[str] = None,
                 default_timeout: float = DEFAULT_TIMEOUT,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 console_buffer_size: int = DEFAULT_BUFFER_SIZE):
        self.client = client
        self.session_id = session_id or client.session_id
        self.dispatcher = EventDispatcher()
        self.frames = FrameTree(self.dispatcher)
        self.console = ConsoleMessageBuffer(self.dispatcher, maxlen=console_buffer_size)
        self.operations = PendingOperationRegistry(
            self.frames,
            self.dispatcher,
            default_timeout=default_timeout,
            poll_interval=poll_interval,
        )
        self._context_frames: Dict[int, str] = {}
        self._frame_contexts: Dict[str, int] = {}
        self._handles: "weakref.WeakSet[JSHandle]" = weakref.WeakSet()
        self._closed = False

        client.add_event_listener(self._handle_event)
        client.add_disconnect_listener(self._on_disconnect)

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def initialize(self) -> None:
        """Enable domains and load the current frame tree."""
        await self.client.enable_domains(PAGE_DOMAINS, self.session_id)

        result = await self.send("Page.getFrameTree")
        frame_tree = result.get("frameTree")
        if frame_tree:
            self._load_frame_tree(frame_tree, parent_frame_id=None)

        try:
            await self.send("Page.setLifecycleEventsEnabled", {"enabled": True})
        except FrameSyncError as e:
            logger.debug(f"Lifecycle events unavailable: {e}", extra={"session_id": self.session_id})

        logger.info(
            "Page session initialized",
            extra={"session_id": self.session_id, "frame_count": len(self.frames)},
        )

    def _load_frame_tree(self, node: Dict[str, Any], parent_frame_id: Optional[str]) -> None:
        """
        Mirror a Page.getFrameTree node and its children.

        node structure:
        {
          "frame": {"id": "...", "parentId": "...", "url": "...", "name": "..."},
          "childFrames": [...]
        }
        """
        frame_data = node.get("frame", {})
        frame_id = frame_data.get("id")
        if not frame_id:
            return

        url = frame_data.get("url", "") + frame_data.get("urlFragment", "")
        name = frame_data.get("name", "")

        if parent_frame_id is None:
            self.frames.ensure_main_frame(frame_id, url=url, name=name)
        elif frame_id not in self.frames:
            self.frames.attach(parent_frame_id, frame_id, name=name)
            self.frames.navigate(frame_id, url, name=name)

        for child in node.get("childFrames", []):
            self._load_frame_tree(child, parent_frame_id=frame_id)

    # =========================================================================
    # Event translation
    # =========================================================================

    def _handle_event(self, method: str, params: Dict[str, Any], session_id: Optional[str]) -> None:
        if method == "Target.detachedFromTarget":
            if params.get("sessionId") == self.session_id:
                self.close("target detached")
            return

        if session_id != self.session_id or self._closed:
            return

        if method == "Page.frameAttached":
            frame_id = params.get("frameId")
            parent_frame_id = params.get("parentFrameId")
            if frame_id and parent_frame_id:
                self.frames.attach(parent_frame_id, frame_id)

        elif method == "Page.frameNavigated":
            frame_data = params.get("frame")
            if frame_data:
                self._on_frame_navigated(frame_data)

        elif method == "Page.navigatedWithinDocument":
            frame_id = params.get("frameId")
            if frame_id in self.frames:
                self.frames.navigate_within_document(frame_id, params.get("url", ""))

        elif method == "Page.frameDetached":
            self._on_frame_detached(params)

        elif method == "Page.loadEventFired":
            self.dispatcher.emit(PageEvent.LOAD, self.frames.main_frame)

        elif method == "Page.domContentEventFired":
            self.dispatcher.emit(PageEvent.DOMCONTENTLOADED, self.frames.main_frame)

        elif method == "Runtime.executionContextCreated":
            context = params.get("context", {})
            aux_data = context.get("auxData") or {}
            frame_id = aux_data.get("frameId")
            context_id = context.get("id")
            if frame_id and context_id is not None:
                self._context_frames[context_id] = frame_id
                if aux_data.get("isDefault"):
                    self._frame_contexts[frame_id] = context_id

        elif method == "Runtime.executionContextDestroyed":
            context_id = params.get("executionContextId")
            frame_id = self._context_frames.pop(context_id, None)
            if frame_id is not None and self._frame_contexts.get(frame_id) == context_id:
                del self._frame_contexts[frame_id]
            self._stale_handles(context_id)

        elif method == "Runtime.executionContextsCleared":
            self._context_frames.clear()
            self._frame_contexts.clear()
            self._stale_handles()

        elif method == "Runtime.consoleAPICalled":
            self.console.append(ConsoleMessage.from_console_api(params, self.create_handle))

        elif method == "Log.entryAdded":
            entry = params.get("entry")
            if entry:
                self.console.append(ConsoleMessage.from_log_entry(entry))

        elif method == "Inspector.detached":
            self.close(params.get("reason", "inspector detached"))

        elif method == "Inspector.targetCrashed":
            self.close("target crashed")

    def _on_frame_navigated(self, frame_data: Dict[str, Any]) -> None:
        frame_id = frame_data.get("id")
        if not frame_id:
            return
        url = frame_data.get("url", "") + frame_data.get("urlFragment", "")
        name = frame_data.get("name", "")
        parent_frame_id = frame_data.get("parentId")

        if parent_frame_id is None:
            if self.frames.main_frame is None:
                self.frames.ensure_main_frame(frame_id)
            else:
                self.frames.reset(frame_id)
        else:
            if frame_id not in self.frames:
                # Out-of-process frames can commit without a local attach
                self.frames.attach(parent_frame_id, frame_id, name=name)
            self.frames.detach_children(frame_id)

        self.frames.navigate(frame_id, url, name=name)

    def _on_frame_detached(self, params: Dict[str, Any]) -> None:
        frame_id = params.get("frameId")
        # "swap" means the frame moved to its own process; it is still attached
        if params.get("reason") == "swap":
            return
        frame = self.frames.frame(frame_id) if frame_id else None
        if frame is None or frame.is_main_frame:
            return
        self.frames.detach(frame_id)

    def _on_disconnect(self, reason: str) -> None:
        self.close(reason)

    # =========================================================================
    # Handles
    # =========================================================================

    def create_handle(self, remote_object: Dict[str, Any], context_id: Optional[int] = None) -> JSHandle:
        handle = JSHandle(self, remote_object, context_id)
        if handle.object_id is not None:
            self._handles.add(handle)
        return handle

    def _create_element_handle(self, remote_object: Dict[str, Any], context_id: Optional[int],
                               frame: Frame) -> ElementHandle:
        handle = ElementHandle(self, remote_object, context_id, frame)
        self._handles.add(handle)
        return handle

    def _stale_handles(self, context_id: Optional[int] = None) -> None:
        for handle in list(self._handles):
            if context_id is None or handle.context_id == context_id:
                handle.mark_stale()

    def context_for(self, frame: Optional[Frame]) -> Optional[int]:
        """Default execution context of a frame, if one is known."""
        if frame is None:
            return None
        return self._frame_contexts.get(frame.id)

    # =========================================================================
    # Remote calls
    # =========================================================================

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None,
                   timeout: Optional[float] = None) -> Dict[str, Any]:
        if self._closed:
            raise TargetDetachedError(
                "Target page, context or browser has been closed",
                session_id=self.session_id,
                method=method,
            )
        return await self.client.send(method, params, session_id=self.session_id, timeout=timeout)

    def _raise_for_exception(self, result: Dict[str, Any], method: str) -> None:
        details = result.get("exceptionDetails")
        if not details:
            return
        exception = details.get("exception") or {}
        description = exception.get("description") or details.get("text", "Evaluation failed")
        raise EvaluationError(
            description,
            exception_details=details,
            session_id=self.session_id,
            method=method,
        )

    async def evaluate(self, expression: str, frame: Optional[Frame] = None,
                       await_promise: bool = True) -> Any:
        """Evaluate an expression and return its JSON value."""
        params: Dict[str, Any] = {
            "expression": expression,
            "returnByValue": True,
            "awaitPromise": await_promise,
        }
        context_id = self.context_for(frame)
        if context_id is not None:
            params["contextId"] = context_id
        result = await self.send("Runtime.evaluate", params)
        self._raise_for_exception(result, "Runtime.evaluate")
        return value_from_remote_object(result.get("result", {}))

    async def evaluate_handle(self, expression: str, frame: Optional[Frame] = None) -> JSHandle:
        """Evaluate an expression and keep the result in the page."""
        params: Dict[str, Any] = {"expression": expression, "returnByValue": False, "awaitPromise": True}
        context_id = self.context_for(frame)
        if context_id is not None:
            params["contextId"] = context_id
        result = await self.send("Runtime.evaluate", params)
        self._raise_for_exception(result, "Runtime.evaluate")
        return self.create_handle(result.get("result", {}), context_id)

    async def call_function_on(self, object_id: str, function_declaration: str, *,
                               args: Optional[List[Any]] = None,
                               return_by_value: bool = True,
                               await_promise: bool = True) -> Dict[str, Any]:
        """Call a function with a remote object as `this`. Returns the result RemoteObject."""
        params: Dict[str, Any] = {
            "objectId": object_id,
            "functionDeclaration": function_declaration,
            "returnByValue": return_by_value,
            "awaitPromise": await_promise,
        }
        if args:
            params["arguments"] = [{"value": arg} for arg in args]
        result = await self.send("Runtime.callFunctionOn", params)
        self._raise_for_exception(result, "Runtime.callFunctionOn")
        return result.get("result", {})

    async def release_object(self, object_id: str) -> None:
        await self.send("Runtime.releaseObject", {"objectId": object_id})

    async def query_selector(self, selector: str, frame: Optional[Frame] = None) -> Optional[ElementHandle]:
        """Find the first element matching selector in frame (main frame by default)."""
        frame = frame or self.frames.main_frame
        if frame is None or frame.is_detached:
            raise TargetDetachedError("Frame has been detached", method="query_selector")

        params: Dict[str, Any] = {
            "expression": f"document.querySelector({json.dumps(selector)})",
            "returnByValue": False,
        }
        context_id = self.context_for(frame)
        if context_id is not None:
            params["contextId"] = context_id
        result = await self.send("Runtime.evaluate", params)
        self._raise_for_exception(result, "Runtime.evaluate")

        remote_object = result.get("result", {})
        if not remote_object.get("objectId"):
            return None
        return self._create_element_handle(remote_object, context_id, frame)

    async def navigate(self, url: str, frame: Optional[Frame] = None) -> Optional[str]:
        """
        Start a navigation.

        Returns:
            The loader id, or None for a same-document navigation.
        """
        params: Dict[str, Any] = {"url": url}
        if frame is not None:
            params["frameId"] = frame.id
        result = await self.send("Page.navigate", params)
        error_text = result.get("errorText")
        if error_text:
            raise FrameSyncError(
                f"Navigation to {url} failed: {error_text}",
                session_id=self.session_id,
                method="Page.navigate",
            )
        return result.get("loaderId")

    async def capture_screenshot(self, *, clip: Optional[BoundingBox] = None, format: str = "png",
                                 quality: Optional[int] = None, full_page: bool = False,
                                 timeout: Optional[float] = None) -> bytes:
        """
        Ask the browser for an encoded image of the page or a region of it.

        Args:
            clip: Region in document coordinates (CSS pixels).
            format: "png" or "jpeg".
            quality: JPEG quality (0-100). Ignored for PNG.
            full_page: Capture the whole scrollable document.
            timeout: Seconds to wait for the capture; None uses the command timeout.
        """
        params: Dict[str, Any] = {"format": format}
        if format == "jpeg" and quality is not None:
            params["quality"] = quality

        if full_page and clip is None:
            metrics = await self.send("Page.getLayoutMetrics")
            size = metrics.get("cssContentSize") or metrics.get("contentSize") or {}
            clip = BoundingBox(0, 0, size.get("width", 0), size.get("height", 0)).enclosing_int_rect()

        if clip is not None:
            params["clip"] = clip.to_clip()
            params["captureBeyondViewport"] = True

        result = await self.send("Page.captureScreenshot", params, timeout=timeout)
        return base64.b64decode(result.get("data", ""))

    # =========================================================================
    # Teardown
    # =========================================================================

    def close(self, reason: str = "page closed") -> None:
        """Detach everything, fail pending work and emit "close". Idempotent."""
        if self._closed:
            return
        self._closed = True
        logger.info(f"Page session closed: {reason}", extra={"session_id": self.session_id})

        self.frames.close()
        self._stale_handles()
        self.operations.cancel_all(TargetDetachedError(
            f"Target page, context or browser has been closed ({reason})",
            session_id=self.session_id,
        ))
        self.client.remove_event_listener(self._handle_event)
        self.dispatcher.emit(PageEvent.CLOSE, reason)
