"""
Pytest configuration and shared fixtures.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from frame_sync.cdp.session import PageSession
from frame_sync.core.events import EventDispatcher
from frame_sync.core.frames import FrameTree

SESSION_ID = "S1"


class FakeCDPClient:
    """
    In-memory stand-in for CDPClient.

    Commands are answered from `handlers` (method -> dict or callable taking
    params); every call is recorded on the `send` AsyncMock. feed() delivers a
    protocol event to the registered listeners exactly like the receive loop.
    """

    def __init__(self, session_id: str = SESSION_ID):
        self.session_id = session_id
        self.handlers: Dict[str, Any] = {}
        self._event_listeners: List[Callable] = []
        self._disconnect_listeners: List[Callable] = []
        self.send = AsyncMock(side_effect=self._respond)
        self.enable_domains = AsyncMock()
        self.close = AsyncMock()

    async def _respond(self, method: str, params: Optional[dict] = None,
                       session_id: Optional[str] = None, timeout: Optional[float] = None):
        handler = self.handlers.get(method, {})
        if callable(handler):
            result = handler(params or {})
            if asyncio.iscoroutine(result):
                result = await result
            return result
        return handler

    def add_event_listener(self, listener: Callable) -> None:
        self._event_listeners.append(listener)

    def remove_event_listener(self, listener: Callable) -> None:
        if listener in self._event_listeners:
            self._event_listeners.remove(listener)

    def add_disconnect_listener(self, listener: Callable) -> None:
        self._disconnect_listeners.append(listener)

    def feed(self, method: str, params: Optional[dict] = None, session_id: Optional[str] = SESSION_ID) -> None:
        for listener in list(self._event_listeners):
            listener(method, params or {}, session_id)

    def disconnect(self, reason: str = "connection closed") -> None:
        for listener in list(self._disconnect_listeners):
            listener(reason)

    def commands(self, method: str) -> List[dict]:
        """Params of every recorded call to method."""
        return [c.args[1] if len(c.args) > 1 else c.kwargs.get("params")
                for c in self.send.call_args_list if c.args and c.args[0] == method]


def frame_payload(frame_id: str, url: str, parent_id: Optional[str] = None, name: str = "") -> dict:
    frame = {"id": frame_id, "url": url, "name": name, "loaderId": f"L-{frame_id}"}
    if parent_id is not None:
        frame["parentId"] = parent_id
    return {"frame": frame}


@pytest.fixture
def dispatcher():
    return EventDispatcher()


@pytest.fixture
def tree(dispatcher):
    return FrameTree(dispatcher)


@pytest.fixture
def fake_client():
    client = FakeCDPClient()
    client.handlers["Page.getFrameTree"] = {
        "frameTree": {"frame": {"id": "main", "url": "about:blank", "name": ""}},
    }
    return client


@pytest.fixture
def session(fake_client):
    """Page session over the fake client, with short timing bounds."""
    return PageSession(fake_client, default_timeout=2.0, poll_interval=0.01)


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires Chrome)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
