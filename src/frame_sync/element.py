"""
Element handles - DOM node references with wait-for-visible screenshots.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

from frame_sync.core.errors import (
    CDPConnectionError,
    CDPProtocolError,
    StaleRemoteObjectError,
    TargetDetachedError,
)
from frame_sync.core.handles import JSHandle
from frame_sync.core.models import BoundingBox

if TYPE_CHECKING:
    from frame_sync.cdp.session import PageSession
    from frame_sync.core.frames import Frame
    from frame_sync.core.pending import PendingOperation

logger = logging.getLogger("frame_sync")

NOT_ATTACHED = "Element is not attached to the DOM"

_VISIBILITY_STATE = """function() {
    if (!this.isConnected) return 'detached';
    const element = this.nodeType === Node.ELEMENT_NODE ? this : this.parentElement;
    if (!element) return 'hidden';
    const style = element.ownerDocument.defaultView.getComputedStyle(element);
    if (!style || style.visibility === 'hidden') return 'hidden';
    const rect = element.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0 ? 'visible' : 'hidden';
}"""

_SCROLL_OFFSET = "({x: window.scrollX, y: window.scrollY})"


def _quad_to_box(quad) -> BoundingBox:
    xs = quad[0::2]
    ys = quad[1::2]
    x = min(xs)
    y = min(ys)
    return BoundingBox(x, y, max(xs) - x, max(ys) - y)


class ElementHandle(JSHandle):
    """Handle to a DOM element living in a specific frame."""

    def __init__(self, session: PageSession, remote_object: Dict[str, Any],
                 context_id: Optional[int], frame: Frame):
        super().__init__(session, remote_object, context_id)
        self._frame_token = frame.token

    @property
    def owner_frame(self) -> Optional[Frame]:
        """The frame holding this element, or None once that frame detached."""
        return self._session.frames.resolve(self._frame_token)

    def _require_frame(self) -> Frame:
        frame = self.owner_frame
        if frame is None or self.is_disposed:
            raise TargetDetachedError(NOT_ATTACHED, method="ElementHandle")
        return frame

    async def _visibility_state(self) -> str:
        """One of "detached", "hidden" or "visible"."""
        if self.is_disposed:
            return "detached"
        try:
            result = await self._session.call_function_on(
                self.object_id, _VISIBILITY_STATE, return_by_value=True,
            )
        except (CDPProtocolError, StaleRemoteObjectError):
            return "detached"
        return result.get("value", "hidden")

    async def is_attached(self) -> bool:
        return await self._visibility_state() != "detached"

    async def is_visible(self) -> bool:
        return await self._visibility_state() == "visible"

    async def bounding_box(self) -> Optional[BoundingBox]:
        """Border box in main-frame viewport coordinates, or None if not rendered."""
        if self.is_disposed:
            return None
        try:
            result = await self._session.send("DOM.getBoxModel", {"objectId": self.object_id})
        except CDPProtocolError:
            return None
        model = result.get("model")
        if not model or not model.get("border"):
            return None
        return _quad_to_box(model["border"])

    async def scroll_into_view_if_needed(self) -> None:
        self._require_frame()
        try:
            await self._session.send("DOM.scrollIntoViewIfNeeded", {"objectId": self.object_id})
        except CDPProtocolError as e:
            if "not attached" in (e.message or "").lower():
                raise TargetDetachedError(NOT_ATTACHED, method="scroll_into_view_if_needed") from e
            logger.debug(
                "scrollIntoViewIfNeeded failed, capturing anyway",
                extra={"object_id": self.object_id, "error_type": type(e).__name__},
            )

    async def screenshot(
        self,
        *,
        timeout: Optional[float] = None,
        format: str = "png",
        quality: Optional[int] = None,
        path: Optional[Union[str, Path]] = None,
    ) -> bytes:
        """
        Capture the element once it is attached, visible and stable.

        Args:
            timeout: Seconds to wait for the element; None uses the page default.
            format: "png" or "jpeg".
            quality: JPEG quality (0-100).
            path: Optional file to write the image to.

        Returns:
            Encoded image bytes.

        Raises:
            TargetDetachedError: the element or its frame is gone.
            OperationTimeoutError: the element did not become visible in time.
        """
        frame = self._require_frame()
        last_box: Dict[str, Optional[BoundingBox]] = {"box": None}

        async def ready(op: PendingOperation) -> bool:
            state = await self._visibility_state()
            if state == "detached":
                raise TargetDetachedError(NOT_ATTACHED, method="ElementHandle.screenshot")
            box = await self.bounding_box() if state == "visible" else None
            if box is None or box.is_empty:
                op.condition = "element is not visible"
                last_box["box"] = None
                return False
            # Stable means the same box on two consecutive checks
            if box != last_box["box"]:
                op.condition = "element is not stable"
                last_box["box"] = box
                return False
            return True

        async def capture() -> bytes:
            await self.scroll_into_view_if_needed()
            box = await self.bounding_box()
            if box is None:
                raise TargetDetachedError(NOT_ATTACHED, method="ElementHandle.screenshot")
            try:
                offset = await self._session.evaluate(_SCROLL_OFFSET)
            except CDPConnectionError as e:
                raise TargetDetachedError(NOT_ATTACHED, method="ElementHandle.screenshot") from e
            clip = box.translate(offset.get("x", 0), offset.get("y", 0)).enclosing_int_rect()
            return await self._session.capture_screenshot(clip=clip, format=format, quality=quality)

        data = await self._session.operations.run(
            "screenshot",
            ready,
            capture,
            condition="element is not visible",
            target=frame,
            timeout=timeout,
        )
        if path is not None:
            target = Path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        return data
