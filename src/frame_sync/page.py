"""
Page - High-level async interface over one attached Chrome page.

This module provides the user-facing API: frame tree queries, event
subscription, console capture and screenshots. It wraps the CDP client and
page session with the same start/stop lifecycle as an async context manager.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from frame_sync.cdp.client import CDPClient, get_page_ws_url
from frame_sync.cdp.session import PageSession
from frame_sync.core.console import ConsoleMessage
from frame_sync.core.errors import FrameSyncError
from frame_sync.core.events import EventName, Listener, PageEvent, wait_future
from frame_sync.core.frames import Frame
from frame_sync.element import ElementHandle

logger = logging.getLogger("frame_sync")


@dataclass
class PageConfig:
    """Configuration options for the Page."""

    host: str = "localhost"
    port: int = 9222
    default_timeout: float = 30.0
    navigation_timeout: float = 30.0
    poll_interval: float = 0.1
    command_timeout: float = 30.0
    console_buffer_size: int = 1000
    screenshot_format: str = "png"
    debug: bool = False


class Page:
    """
    Live view of one Chrome page.

    Usage:
        async with Page() as page:
            page.on("framenavigated", lambda frame: print(frame.url))
            await page.goto("https://example.com")
            message = await page.wait_for_console_message()
    """

    def __init__(self, config: Optional[PageConfig] = None):
        self.config = config or PageConfig()
        self._client: Optional[CDPClient] = None
        self._session: Optional[PageSession] = None

    async def __aenter__(self) -> Page:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def start(self) -> None:
        """Connect to a running Chrome and attach to its first page."""
        ws_url = await get_page_ws_url(host=self.config.host, port=self.config.port)
        client = CDPClient(ws_url, debug=self.config.debug, command_timeout=self.config.command_timeout)
        await client.connect()
        try:
            await client.attach_to_page()
            await self.attach(client)
        except Exception:
            await client.close()
            raise
        logger.info(f"Attached to page at {self.config.host}:{self.config.port}")

    async def attach(self, client: CDPClient) -> None:
        """Build the page session on an already connected client."""
        self._client = client
        self._session = PageSession(
            client,
            default_timeout=self.config.default_timeout,
            poll_interval=self.config.poll_interval,
            console_buffer_size=self.config.console_buffer_size,
        )
        await self._session.initialize()

    async def stop(self) -> None:
        """Detach from the page and close the connection."""
        if self._session is not None:
            self._session.close("page stopped")
            self._session = None
        if self._client is not None:
            await self._client.close()
            self._client = None
        logger.info("Page session stopped")

    def _ensure_session(self) -> PageSession:
        if self._session is None:
            raise FrameSyncError(
                "Page not attached. Call start() or use async context manager.",
                method="_ensure_session",
            )
        return self._session

    # =========================================================================
    # Frames
    # =========================================================================

    @property
    def main_frame(self) -> Frame:
        return self._ensure_session().frames.main_frame

    @property
    def frames(self) -> List[Frame]:
        return self._ensure_session().frames.frames()

    @property
    def url(self) -> str:
        main = self._ensure_session().frames.main_frame
        return main.url if main is not None else ""

    def frame(self, name: Optional[str] = None, url: Optional[str] = None) -> Optional[Frame]:
        """First frame matching name and/or url."""
        for frame in self.frames:
            if name is not None and frame.name != name:
                continue
            if url is not None and frame.url != url:
                continue
            return frame
        return None

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event: EventName, listener: Listener) -> Listener:
        return self._ensure_session().dispatcher.on(event, listener)

    def once(self, event: EventName, listener: Listener) -> Listener:
        return self._ensure_session().dispatcher.once(event, listener)

    def off(self, event: EventName, listener: Listener) -> bool:
        return self._ensure_session().dispatcher.off(event, listener)

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        if timeout is None:
            return self.config.default_timeout
        return timeout or None

    async def wait_for_event(self, event: EventName, predicate: Optional[Callable[[Any], bool]] = None,
                             timeout: Optional[float] = None) -> Any:
        """Wait for the next matching event. timeout=0 waits forever."""
        return await self._ensure_session().dispatcher.wait_for(event, predicate, self._timeout(timeout))

    async def wait_for_console_message(self, predicate: Optional[Callable[[ConsoleMessage], bool]] = None,
                                       timeout: Optional[float] = None) -> ConsoleMessage:
        return await self._ensure_session().console.wait_for_message(predicate, self._timeout(timeout))

    async def run_and_wait_for_console_message(
        self,
        action: Callable[[], Awaitable[Any]],
        predicate: Optional[Callable[[ConsoleMessage], bool]] = None,
        timeout: Optional[float] = None,
    ) -> ConsoleMessage:
        """Subscribe, run action, then wait, so a message emitted by action is never missed."""
        waiter = self._ensure_session().dispatcher.waiter(PageEvent.CONSOLE, predicate)
        try:
            await action()
        except BaseException:
            waiter.cancel()
            raise
        return await wait_future(waiter, self._timeout(timeout), "event \"console\"")

    @property
    def console_messages(self) -> List[ConsoleMessage]:
        return self._ensure_session().console.messages

    # =========================================================================
    # Actions
    # =========================================================================

    async def goto(self, url: str, *, timeout: Optional[float] = None) -> None:
        """
        Navigate the main frame and wait for the navigation to finish.

        Cross-document navigations wait for "load"; same-document ones
        (anchors, history API) wait for the main frame's "framenavigated".
        """
        session = self._ensure_session()
        bound = self.config.navigation_timeout if timeout is None else (timeout or None)
        main = session.frames.main_frame

        load = session.dispatcher.waiter(PageEvent.LOAD)
        navigated = session.dispatcher.waiter(
            PageEvent.FRAME_NAVIGATED,
            lambda frame: frame is main,
        )
        try:
            loader_id = await session.navigate(url)
            target = load if loader_id else navigated
            await wait_future(target, bound, f"navigation to \"{url}\"")
        finally:
            load.cancel()
            navigated.cancel()

    async def evaluate(self, expression: str, frame: Optional[Frame] = None) -> Any:
        return await self._ensure_session().evaluate(expression, frame)

    async def query_selector(self, selector: str, frame: Optional[Frame] = None) -> Optional[ElementHandle]:
        return await self._ensure_session().query_selector(selector, frame)

    async def screenshot(self, *, full_page: bool = False, quality: Optional[int] = None,
                         timeout: Optional[float] = None) -> bytes:
        """
        Capture the viewport (or the whole document) as encoded image bytes.

        timeout bounds the capture command; None uses config.command_timeout.
        """
        return await self._ensure_session().capture_screenshot(
            format=self.config.screenshot_format,
            quality=quality,
            full_page=full_page,
            timeout=timeout,
        )
