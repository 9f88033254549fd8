"""
Frame Tree - Client-side mirror of a page's browsing contexts.

FrameTree is the only owner of frame structure. Frames expose read-only views
of their url, name, parent and children; every mutation goes through the
tree's attach/navigate/detach entry points, which also emit the matching
page events.
"""
from __future__ import annotations

import itertools
import logging
import weakref
from typing import Dict, Iterator, List, Optional, Tuple

from frame_sync.core.errors import FrameTreeError, UnknownFrameError, UnknownParentError
from frame_sync.core.events import EventDispatcher, PageEvent

logger = logging.getLogger("frame_sync")

_tokens = itertools.count(1)


class Frame:
    """
    One browsing context (main document or embedded sub-document).

    Frames compare by identity. Re-attaching a removed iframe yields a new
    Frame with a new token even when its id, url and name are unchanged.
    """

    def __init__(self, frame_id: str, parent: Optional[Frame] = None,
                 url: str = "", name: str = ""):
        self._token = next(_tokens)
        self._id = frame_id
        self._url = url
        self._name = name
        self._parent_ref = weakref.ref(parent) if parent is not None else None
        self._children: List[Frame] = []
        self._detached = False

    @property
    def token(self) -> int:
        """Identity token, unique for the lifetime of the process."""
        return self._token

    @property
    def id(self) -> str:
        """Remote frame id. The main frame may be re-keyed on cross-process navigation."""
        return self._id

    @property
    def url(self) -> str:
        return self._url

    @property
    def name(self) -> str:
        return self._name

    @property
    def parent_frame(self) -> Optional[Frame]:
        if self._parent_ref is None:
            return None
        return self._parent_ref()

    @property
    def child_frames(self) -> Tuple[Frame, ...]:
        return tuple(self._children)

    @property
    def is_detached(self) -> bool:
        return self._detached

    @property
    def is_main_frame(self) -> bool:
        return self._parent_ref is None

    def walk(self) -> Iterator[Frame]:
        """Yield this frame and its descendants in pre-order."""
        yield self
        for child in self._children:
            yield from child.walk()

    def __repr__(self) -> str:
        state = " detached" if self._detached else ""
        return f"<Frame id={self._id!r} url={self._url!r} name={self._name!r}{state}>"


class FrameTree:
    """
    Frames of one page, keyed by remote frame id.

    Invariants:
        - exactly one live frame has no parent (the main frame);
        - the main frame object survives every top-level navigation;
        - detached frames are removed from the id map and never mutated again.
    """

    def __init__(self, dispatcher: EventDispatcher):
        self._dispatcher = dispatcher
        self._frames: Dict[str, Frame] = {}
        self._by_token: Dict[int, Frame] = {}
        self._main_frame: Optional[Frame] = None

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def main_frame(self) -> Optional[Frame]:
        return self._main_frame

    def frames(self) -> List[Frame]:
        """All live frames, pre-order, children in attachment order."""
        if self._main_frame is None or self._main_frame.is_detached:
            return []
        return list(self._main_frame.walk())

    def frame(self, frame_id: str) -> Optional[Frame]:
        return self._frames.get(frame_id)

    def parent_of(self, frame_id: str) -> Optional[Frame]:
        frame = self._require(frame_id)
        return frame.parent_frame

    def resolve(self, token: int) -> Optional[Frame]:
        """Look up a live frame by identity token. None once it detached."""
        return self._by_token.get(token)

    def __len__(self) -> int:
        return len(self._frames)

    def __contains__(self, frame_id: object) -> bool:
        return frame_id in self._frames

    def _require(self, frame_id: str) -> Frame:
        frame = self._frames.get(frame_id)
        if frame is None:
            raise UnknownFrameError(
                f"Frame {frame_id} is not attached",
                frame_id=frame_id,
                method="FrameTree",
            )
        return frame

    def _register(self, frame: Frame) -> None:
        self._frames[frame.id] = frame
        self._by_token[frame.token] = frame

    def _unregister(self, frame: Frame) -> None:
        if self._frames.get(frame.id) is frame:
            del self._frames[frame.id]
        self._by_token.pop(frame.token, None)

    # =========================================================================
    # Mutations
    # =========================================================================

    def ensure_main_frame(self, frame_id: str, url: str = "", name: str = "") -> Frame:
        """Create the main frame on first sight of the page. Emits nothing."""
        if self._main_frame is not None:
            return self._main_frame
        frame = Frame(frame_id, None, url=url, name=name)
        self._main_frame = frame
        self._register(frame)
        logger.debug("Main frame created", extra={"frame_id": frame_id})
        return frame

    def attach(self, parent_id: str, frame_id: str, name: str = "") -> Frame:
        """Attach a new frame as the last child of parent_id."""
        parent = self._frames.get(parent_id)
        if parent is None:
            raise UnknownParentError(
                f"Cannot attach frame {frame_id}: parent {parent_id} is not a live frame",
                parent_id=parent_id,
                method="FrameTree.attach",
            )

        existing = self._frames.get(frame_id)
        if existing is not None:
            if existing.parent_frame is parent:
                return existing
            raise FrameTreeError(
                f"Frame {frame_id} is already attached to {existing.parent_frame!r}",
                method="FrameTree.attach",
            )

        frame = Frame(frame_id, parent, name=name)
        parent._children.append(frame)
        self._register(frame)
        logger.debug(
            "Frame attached",
            extra={"frame_id": frame_id, "parent_frame_id": parent_id},
        )
        self._dispatcher.emit(PageEvent.FRAME_ATTACHED, frame)
        return frame

    def navigate(self, frame_id: str, url: str, name: Optional[str] = None) -> Frame:
        """Commit a navigation: update url (and name) in place, keep identity."""
        frame = self._require(frame_id)
        frame._url = url
        if name is not None:
            frame._name = name
        logger.debug("Frame navigated", extra={"frame_id": frame_id, "url": url})
        self._dispatcher.emit(PageEvent.FRAME_NAVIGATED, frame)
        return frame

    def navigate_within_document(self, frame_id: str, url: str) -> Frame:
        """Same-document navigation (anchor or history API)."""
        return self.navigate(frame_id, url)

    def detach(self, frame_id: str) -> List[Frame]:
        """
        Detach a frame and its whole subtree.

        All frames are marked detached before any event is emitted, so
        listeners never observe a half-detached subtree. Events follow
        pre-order, parent first.

        Returns:
            The detached frames, in event order.
        """
        frame = self._require(frame_id)
        if frame is self._main_frame:
            raise FrameTreeError(
                "The main frame cannot be detached",
                method="FrameTree.detach",
                frame_id=frame_id,
            )

        subtree = list(frame.walk())
        for node in subtree:
            node._detached = True
            self._unregister(node)

        parent = frame.parent_frame
        if parent is not None and frame in parent._children:
            parent._children.remove(frame)

        logger.debug(
            "Frame detached",
            extra={"frame_id": frame_id, "subtree_size": len(subtree)},
        )
        for node in subtree:
            self._dispatcher.emit(PageEvent.FRAME_DETACHED, node)
        return subtree

    def detach_children(self, frame_id: str) -> List[Frame]:
        """Detach every child subtree of a frame that commits a new document."""
        frame = self._require(frame_id)
        detached: List[Frame] = []
        for child in list(frame._children):
            if not child.is_detached:
                detached.extend(self.detach(child.id))
        return detached

    def reset(self, new_main_id: Optional[str] = None) -> Frame:
        """
        Top-level navigation: drop every child frame, keep the main frame object.

        Args:
            new_main_id: Remote id of the committed main frame, when it changed
                (cross-process navigation).
        """
        main = self._main_frame
        if main is None:
            if new_main_id is None:
                raise FrameTreeError("Cannot reset a page without a main frame", method="FrameTree.reset")
            return self.ensure_main_frame(new_main_id)

        self.detach_children(main.id)

        if new_main_id is not None and new_main_id != main.id:
            self._unregister(main)
            logger.debug(
                "Main frame re-keyed",
                extra={"old_frame_id": main.id, "frame_id": new_main_id},
            )
            main._id = new_main_id
            self._register(main)
        return main

    def close(self) -> None:
        """Page closed: every frame becomes detached. Emits nothing."""
        if self._main_frame is not None:
            for node in self._main_frame.walk():
                node._detached = True
        self._frames.clear()
        self._by_token.clear()
