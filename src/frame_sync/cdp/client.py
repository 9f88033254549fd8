"""
CDP Client - Chrome DevTools Protocol WebSocket client.

Correlates command responses by id and fans protocol events out to
listeners in the order they arrive on the socket.
"""
import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Set

import httpx
import websockets
from websockets.asyncio.client import connect

from frame_sync.core.errors import (
    CDPConnectionError,
    CDPProtocolError,
    CDPTargetError,
    CDPTimeoutError,
    FrameSyncError,
)

logger = logging.getLogger("frame_sync")

DEFAULT_COMMAND_TIMEOUT = 30.0

EventListener = Callable[[str, Dict[str, Any], Optional[str]], None]
DisconnectListener = Callable[[str], None]


def setup_logging(level: int = logging.INFO, debug: bool = False):
    """Configure logging for frame sync."""
    if debug:
        level = logging.DEBUG

    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        logger.addHandler(handler)


async def get_page_ws_url(host="localhost", port=9222):
    """Get the WebSocket URL for the first page target."""
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"http://{host}:{port}/json")
            targets = response.json()
            for target in targets:
                if target.get("type") == "page":
                    ws_url = target["webSocketDebuggerUrl"]
                    logger.debug(f"Found page target, ws_url={ws_url}")
                    return ws_url
            raise CDPTargetError(
                f"No page target found at {host}:{port}",
                method="get_page_ws_url"
            )
    except httpx.RequestError as e:
        raise CDPConnectionError(
            f"Failed to connect to Chrome at {host}:{port}",
            method="get_page_ws_url"
        ) from e


class CDPClient:
    """Chrome DevTools Protocol WebSocket client."""

    def __init__(self, ws_url: str, debug: bool = False,
                 command_timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self.ws_url = ws_url
        self.message_id = 0
        self.pending_messages: Dict[int, asyncio.Future] = {}
        self.ws = None
        self.session_id: Optional[str] = None
        self.target_id: Optional[str] = None
        self.debug = debug
        self.command_timeout = command_timeout
        self._enabled_domains: Dict[Optional[str], Set[str]] = {}
        self._event_listeners: List[EventListener] = []
        self._disconnect_listeners: List[DisconnectListener] = []
        self._listen_task: Optional[asyncio.Task] = None
        self._retry_config = {
            "max_attempts": 3,
            "initial_delay": 0.1,
            "max_delay": 2.0,
            "backoff_multiplier": 2.0,
        }

    def _now(self) -> float:
        return asyncio.get_running_loop().time()

    @property
    def is_connected(self) -> bool:
        return self.ws is not None

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_event_listener(self, listener: EventListener) -> None:
        self._event_listeners.append(listener)

    def remove_event_listener(self, listener: EventListener) -> None:
        if listener in self._event_listeners:
            self._event_listeners.remove(listener)

    def add_disconnect_listener(self, listener: DisconnectListener) -> None:
        self._disconnect_listeners.append(listener)

    # =========================================================================
    # Connection
    # =========================================================================

    def _is_retryable_error(self, error: Exception) -> bool:
        """Check if an error is retryable (transient)."""
        return isinstance(error, (CDPTimeoutError, CDPConnectionError))

    async def _with_retry(
        self,
        operation: Callable[[], Any],
        operation_name: str = "operation",
    ) -> Any:
        """Execute a bootstrap query with exponential backoff retry."""
        max_attempts = self._retry_config["max_attempts"]
        delay = self._retry_config["initial_delay"]
        last_error = None

        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                last_error = e
                if not self._is_retryable_error(e):
                    raise
                if attempt < max_attempts:
                    logger.warning(
                        f"{operation_name} failed (attempt {attempt}/{max_attempts}): {e}. "
                        f"Retrying in {delay:.2f}s...",
                        extra={"error_type": type(e).__name__}
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * self._retry_config["backoff_multiplier"],
                                self._retry_config["max_delay"])
                else:
                    logger.error(
                        f"{operation_name} failed after {max_attempts} attempts: {e}",
                        extra={"error_type": type(e).__name__}
                    )

        raise last_error

    async def connect(self):
        """Connect to Chrome via WebSocket and start the listen loop."""
        logger.info(f"Connecting to Chrome via WebSocket: {self.ws_url}")

        try:
            self.ws = await connect(self.ws_url, max_size=None)
            logger.info("WebSocket connection established")
        except Exception as e:
            logger.error(f"Failed to establish WebSocket connection: {e}")
            raise CDPConnectionError(
                f"Failed to connect to Chrome WebSocket: {e}",
                method="connect"
            ) from e

        self._listen_task = asyncio.create_task(self.listen())

    async def attach_to_page(self) -> str:
        """Attach (flattened) to the first page target and return the session ID."""
        targets_result = await self._with_retry(
            lambda: self.send("Target.getTargets", {}),
            operation_name="Target.getTargets",
        )
        target_infos = targets_result.get("targetInfos", [])
        logger.debug(f"Found {len(target_infos)} targets")

        match = next((t for t in target_infos if t.get("type") == "page"), None)
        if not match:
            raise CDPTargetError(
                "No page target found after connecting",
                method="attach_to_page"
            )

        res = await self.send("Target.attachToTarget", {
            "targetId": match["targetId"],
            "flatten": True
        })
        self.session_id = res["sessionId"]
        self.target_id = match["targetId"]

        logger.info(
            f"Attached to page target, session_id={self.session_id}",
            extra={"session_id": self.session_id, "target_id": self.target_id}
        )
        return self.session_id

    async def enable_domains(self, domains, session_id: Optional[str] = None):
        """Enable CDP domains for a session. Already enabled domains are skipped."""
        session_id = session_id or self.session_id
        enabled = self._enabled_domains.setdefault(session_id, set())
        for domain in domains:
            if domain in enabled:
                continue
            await self.send(f"{domain}.enable", {}, session_id=session_id)
            enabled.add(domain)
            logger.debug(
                f"Enabled domain: {domain}",
                extra={"session_id": session_id, "domain": domain}
            )

    # =========================================================================
    # Commands
    # =========================================================================

    async def send(self, method, params=None, session_id: Optional[str] = None,
                   timeout: Optional[float] = None):
        """Send a CDP command and wait for its response."""
        if session_id is None:
            session_id = self.session_id
        if not self.ws:
            raise CDPConnectionError(
                "WebSocket connection not established",
                session_id=session_id,
                method=method,
            )

        self.message_id += 1
        msg_id = self.message_id
        future = asyncio.get_running_loop().create_future()
        self.pending_messages[msg_id] = future

        message = {"id": msg_id, "method": method, "params": params or {}}
        if session_id is not None:
            message["sessionId"] = session_id

        bound = self.command_timeout if timeout is None else timeout
        start_time = self._now()

        if self.debug:
            logger.debug(
                f"CDP command: {method}",
                extra={"method": method, "params": params, "session_id": session_id, "message_id": msg_id}
            )

        try:
            await self.ws.send(json.dumps(message))
            result = await asyncio.wait_for(future, timeout=bound)

            if self.debug:
                duration = self._now() - start_time
                logger.debug(
                    f"CDP response: {method} (duration={duration:.3f}s)",
                    extra={"method": method, "session_id": session_id, "message_id": msg_id,
                           "duration_ms": duration * 1000}
                )
            return result
        except asyncio.TimeoutError as e:
            duration = self._now() - start_time
            logger.error(
                f"CDP command timeout: {method} after {duration:.3f}s",
                extra={"method": method, "session_id": session_id, "message_id": msg_id}
            )
            raise CDPTimeoutError(
                f"CDP command {method} timed out after {duration:.3f}s",
                timeout=bound,
                session_id=session_id,
                method=method,
            ) from e
        except FrameSyncError:
            raise
        except websockets.exceptions.ConnectionClosed as e:
            raise CDPConnectionError(
                f"CDP command {method} failed: connection closed",
                session_id=session_id,
                method=method,
            ) from e
        finally:
            self.pending_messages.pop(msg_id, None)

    # =========================================================================
    # Receive loop
    # =========================================================================

    def _handle_response(self, data: dict):
        future = self.pending_messages.pop(data["id"], None)
        if future is None or future.done():
            return
        if "error" in data:
            error_data = data["error"]
            error_code = error_data.get("code")
            error_message = error_data.get("message", "Unknown CDP error")
            logger.debug(
                f"CDP protocol error: {error_message}",
                extra={"error_code": error_code, "message_id": data["id"]}
            )
            future.set_exception(CDPProtocolError(
                f"CDP Error: {error_message}",
                code=error_code,
                cdp_error=error_data,
                session_id=data.get("sessionId"),
            ))
        else:
            future.set_result(data.get("result", {}))

    def _handle_event(self, data: dict):
        method = data.get("method", "")
        params = data.get("params", {})
        session_id = data.get("sessionId")

        if self.debug:
            logger.debug(f"CDP event: {method}", extra={"method": method, "session_id": session_id})

        for listener in list(self._event_listeners):
            try:
                listener(method, params, session_id)
            except Exception as e:
                logger.error(
                    f"Error handling CDP event {method}: {e}",
                    extra={"method": method, "session_id": session_id, "error_type": type(e).__name__},
                    exc_info=True,
                )

    def _fail_pending(self, error: FrameSyncError):
        for future in self.pending_messages.values():
            if not future.done():
                future.set_exception(error)
        self.pending_messages.clear()

    def _notify_disconnect(self, reason: str):
        for listener in list(self._disconnect_listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception("Disconnect listener raised")

    async def listen(self):
        """Listen for CDP responses and events."""
        reason = "connection closed"
        try:
            while self.ws:
                raw = await self.ws.recv()
                data = json.loads(raw)
                if "id" in data:
                    self._handle_response(data)
                elif "method" in data:
                    self._handle_event(data)
        except websockets.exceptions.ConnectionClosed:
            logger.info("WebSocket connection closed")
            self._fail_pending(CDPConnectionError("WebSocket connection closed", method="listen"))
        except asyncio.CancelledError:
            reason = "client closed"
            self._fail_pending(CDPConnectionError("CDP client closed", method="listen"))
            raise
        except Exception as e:
            reason = f"listen loop failed: {e}"
            logger.error(f"Error in listen loop: {e}", exc_info=True)
            self._fail_pending(CDPConnectionError(
                f"Unexpected error in listen loop: {e}",
                method="listen"
            ))
        finally:
            self.ws = None
            self._notify_disconnect(reason)

    async def close(self) -> None:
        """Close the WebSocket connection gracefully."""
        ws = self.ws
        self.ws = None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}")
        if self._listen_task is not None and not self._listen_task.done():
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
        self._listen_task = None
