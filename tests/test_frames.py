"""
Tests for the frame tree: structure, identity and event ordering.

Run with: pytest tests/test_frames.py -v
"""
import pytest

from frame_sync.core.errors import FrameTreeError, UnknownFrameError, UnknownParentError
from frame_sync.core.events import PageEvent


def record(dispatcher, *events):
    """Collect (event, frame) pairs in delivery order."""
    seen = []
    for event in events:
        dispatcher.on(event, lambda frame, event=event: seen.append((event, frame)))
    return seen


def build_nested(tree):
    """main -> (a -> (a1, a2), b), the layout of a page with nested iframes."""
    tree.ensure_main_frame("main", url="http://localhost/nested-frames.html")
    for parent_id, frame_id, url in [
        ("main", "a", "http://localhost/two-frames.html"),
        ("a", "a1", "http://localhost/frame.html"),
        ("a", "a2", "http://localhost/frame.html"),
        ("main", "b", "http://localhost/frame.html"),
    ]:
        tree.attach(parent_id, frame_id, name=frame_id)
        tree.navigate(frame_id, url)


# =============================================================================
# Structure
# =============================================================================

class TestFrameTreeStructure:
    """Tests for attach and the read-only queries."""

    def test_main_frame_is_created_silently(self, tree, dispatcher):
        """The first main frame is not announced as an attach."""
        seen = record(dispatcher, PageEvent.FRAME_ATTACHED)
        main = tree.ensure_main_frame("main", url="about:blank")
        assert tree.main_frame is main
        assert main.is_main_frame
        assert main.parent_frame is None
        assert seen == []

    def test_ensure_main_frame_returns_existing(self, tree):
        """A second call keeps the first main frame."""
        first = tree.ensure_main_frame("main")
        assert tree.ensure_main_frame("other") is first
        assert len(tree) == 1

    def test_frames_are_pre_order(self, tree):
        """frames() walks parents before children, children in attach order."""
        build_nested(tree)
        assert [f.id for f in tree.frames()] == ["main", "a", "a1", "a2", "b"]

    def test_parent_and_children(self, tree):
        """Parent links and child lists agree."""
        build_nested(tree)
        a = tree.frame("a")
        assert tree.parent_of("a1") is a
        assert [c.id for c in a.child_frames] == ["a1", "a2"]
        assert a.parent_frame is tree.main_frame

    def test_attach_unknown_parent_fails(self, tree):
        """A parent that was never attached is rejected and the tree is untouched."""
        tree.ensure_main_frame("main")
        with pytest.raises(UnknownParentError) as exc:
            tree.attach("nope", "child")
        assert exc.value.parent_id == "nope"
        assert "child" not in tree

    def test_attach_is_idempotent_for_same_parent(self, tree, dispatcher):
        """Re-announcing a known frame under its own parent is a no-op."""
        tree.ensure_main_frame("main")
        first = tree.attach("main", "child")
        seen = record(dispatcher, PageEvent.FRAME_ATTACHED)
        assert tree.attach("main", "child") is first
        assert seen == []

    def test_attach_under_different_parent_fails(self, tree):
        """A frame id cannot be live under two parents."""
        build_nested(tree)
        with pytest.raises(FrameTreeError):
            tree.attach("b", "a1")

    def test_navigate_unknown_frame_fails(self, tree):
        tree.ensure_main_frame("main")
        with pytest.raises(UnknownFrameError):
            tree.navigate("ghost", "http://localhost/")

    def test_navigate_updates_url_and_name(self, tree):
        """Navigation keeps the object and updates its fields."""
        build_nested(tree)
        b = tree.frame("b")
        assert tree.navigate("b", "http://localhost/next.html", name="renamed") is b
        assert b.url == "http://localhost/next.html"
        assert b.name == "renamed"

    def test_navigate_within_document(self, tree, dispatcher):
        """Anchor navigation updates the url and emits framenavigated."""
        tree.ensure_main_frame("main", url="http://localhost/empty.html")
        seen = record(dispatcher, PageEvent.FRAME_NAVIGATED)
        tree.navigate_within_document("main", "http://localhost/empty.html#foo")
        assert tree.main_frame.url == "http://localhost/empty.html#foo"
        assert seen == [(PageEvent.FRAME_NAVIGATED, tree.main_frame)]


# =============================================================================
# Events
# =============================================================================

class TestFrameTreeEvents:
    """Tests for event counts and ordering."""

    def test_nested_frames_emit_attach_and_navigate(self, tree, dispatcher):
        """Four iframes give four attaches; with the main frame, five navigations."""
        seen = record(dispatcher, PageEvent.FRAME_ATTACHED, PageEvent.FRAME_NAVIGATED)
        tree.ensure_main_frame("main")
        tree.navigate("main", "http://localhost/nested-frames.html")
        for parent_id, frame_id in [("main", "a"), ("a", "a1"), ("a", "a2"), ("main", "b")]:
            tree.attach(parent_id, frame_id)
            tree.navigate(frame_id, f"http://localhost/{frame_id}.html")

        attached = [f for e, f in seen if e is PageEvent.FRAME_ATTACHED]
        navigated = [f for e, f in seen if e is PageEvent.FRAME_NAVIGATED]
        assert len(attached) == 4
        assert len(navigated) == 5

    def test_attach_precedes_navigate(self, tree, dispatcher):
        """A frame's attach event is delivered before its first navigation."""
        tree.ensure_main_frame("main")
        seen = record(dispatcher, PageEvent.FRAME_ATTACHED, PageEvent.FRAME_NAVIGATED)
        frame = tree.attach("main", "child")
        tree.navigate("child", "http://localhost/frame.html")
        assert seen == [
            (PageEvent.FRAME_ATTACHED, frame),
            (PageEvent.FRAME_NAVIGATED, frame),
        ]

    def test_detach_subtree_emits_parent_first(self, tree, dispatcher):
        """Detaching a frame with N descendants emits N+1 events, pre-order."""
        build_nested(tree)
        seen = record(dispatcher, PageEvent.FRAME_DETACHED)
        detached = tree.detach("a")
        assert [f.id for f in detached] == ["a", "a1", "a2"]
        assert [f.id for _, f in seen] == ["a", "a1", "a2"]
        assert [f.id for f in tree.frames()] == ["main", "b"]

    def test_subtree_fully_detached_before_first_event(self, tree, dispatcher):
        """Listeners never observe a half-detached subtree."""
        build_nested(tree)
        a1 = tree.frame("a1")
        observed = []
        dispatcher.on(PageEvent.FRAME_DETACHED, lambda frame: observed.append(a1.is_detached))
        tree.detach("a")
        assert observed == [True, True, True]

    def test_main_frame_cannot_be_detached(self, tree):
        tree.ensure_main_frame("main")
        with pytest.raises(FrameTreeError):
            tree.detach("main")


# =============================================================================
# Identity
# =============================================================================

class TestFrameIdentity:
    """Tests for frame identity across navigation and re-attachment."""

    def test_reattached_frame_is_a_new_object(self, tree):
        """Removing and re-adding an iframe with the same id yields a new Frame."""
        tree.ensure_main_frame("main")
        first = tree.attach("main", "child", name="x")
        tree.navigate("child", "http://localhost/frame.html")
        tree.detach("child")
        second = tree.attach("main", "child", name="x")
        tree.navigate("child", "http://localhost/frame.html")

        assert first is not second
        assert first != second
        assert first.token != second.token
        assert first.is_detached
        assert not second.is_detached
        assert tree.resolve(first.token) is None
        assert tree.resolve(second.token) is second

    def test_reset_keeps_main_frame_object(self, tree, dispatcher):
        """Top-level navigation detaches every child but keeps the main frame."""
        build_nested(tree)
        main = tree.main_frame
        seen = record(dispatcher, PageEvent.FRAME_DETACHED)
        assert tree.reset() is main
        assert len(seen) == 4
        assert tree.frames() == [main]
        assert not main.is_detached

    def test_reset_rekeys_main_frame(self, tree):
        """A cross-process navigation changes the main frame's id, not its identity."""
        main = tree.ensure_main_frame("old")
        assert tree.reset("new") is main
        assert main.id == "new"
        assert tree.frame("new") is main
        assert "old" not in tree
        assert tree.resolve(main.token) is main

    def test_detached_frames_are_not_mutated(self, tree):
        """Once detached, a frame keeps its last url and cannot be navigated."""
        build_nested(tree)
        b = tree.frame("b")
        tree.detach("b")
        with pytest.raises(UnknownFrameError):
            tree.navigate("b", "http://localhost/other.html")
        assert b.url == "http://localhost/frame.html"

    def test_close_detaches_everything_silently(self, tree, dispatcher):
        build_nested(tree)
        main = tree.main_frame
        seen = record(dispatcher, PageEvent.FRAME_DETACHED)
        tree.close()
        assert main.is_detached
        assert len(tree) == 0
        assert tree.frames() == []
        assert seen == []
