"""
Tests for the CDP client: command correlation, errors and event fan-out.

These use a mocked WebSocket; no Chrome is needed.

Run with: pytest tests/test_client.py -v
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import websockets

from frame_sync.cdp.client import CDPClient, get_page_ws_url
from frame_sync.core.errors import (
    CDPConnectionError,
    CDPProtocolError,
    CDPTargetError,
    CDPTimeoutError,
)


def connected_client(reply=None):
    """Client with a fake socket; reply(message) builds the response dict or None."""
    client = CDPClient("ws://localhost:9222/devtools/page/1", command_timeout=0.5)
    ws = MagicMock()

    async def send(raw):
        message = json.loads(raw)
        if reply is not None:
            response = reply(message)
            if response is not None:
                client._handle_response({"id": message["id"], **response})

    ws.send = AsyncMock(side_effect=send)
    ws.close = AsyncMock()
    client.ws = ws
    return client, ws


# =============================================================================
# Commands
# =============================================================================

class TestCDPCommands:
    """Tests for send() and response handling."""

    @pytest.mark.asyncio
    async def test_send_without_connection(self):
        client = CDPClient("ws://localhost:9222/devtools/page/1")
        with pytest.raises(CDPConnectionError):
            await client.send("Page.enable")

    @pytest.mark.asyncio
    async def test_send_returns_result(self):
        client, ws = connected_client(lambda m: {"result": {"echo": m["method"]}})
        client.session_id = "S1"
        result = await client.send("Runtime.evaluate", {"expression": "1"})
        assert result == {"echo": "Runtime.evaluate"}
        sent = json.loads(ws.send.await_args.args[0])
        assert sent["sessionId"] == "S1"
        assert sent["params"] == {"expression": "1"}
        assert client.pending_messages == {}

    @pytest.mark.asyncio
    async def test_message_ids_increase(self):
        client, ws = connected_client(lambda m: {"result": {}})
        await client.send("A.one")
        await client.send("A.two")
        ids = [json.loads(c.args[0])["id"] for c in ws.send.await_args_list]
        assert ids == [1, 2]

    @pytest.mark.asyncio
    async def test_protocol_error(self):
        client, _ = connected_client(lambda m: {"error": {"code": -32000, "message": "No node with given id"}})
        with pytest.raises(CDPProtocolError) as exc:
            await client.send("DOM.getBoxModel", {"objectId": "x"})
        assert exc.value.code == -32000
        assert "No node with given id" in str(exc.value)

    @pytest.mark.asyncio
    async def test_command_timeout(self):
        client, _ = connected_client()
        with pytest.raises(CDPTimeoutError) as exc:
            await client.send("Page.navigate", {"url": "about:blank"}, timeout=0.05)
        assert exc.value.timeout == 0.05
        assert client.pending_messages == {}

    @pytest.mark.asyncio
    async def test_enable_domains_once(self):
        client, ws = connected_client(lambda m: {"result": {}})
        await client.enable_domains(["Page", "Runtime"], "S1")
        await client.enable_domains(["Page", "Log"], "S1")
        methods = [json.loads(c.args[0])["method"] for c in ws.send.await_args_list]
        assert methods == ["Page.enable", "Runtime.enable", "Log.enable"]

    @pytest.mark.asyncio
    async def test_attach_to_page(self):
        def reply(message):
            if message["method"] == "Target.getTargets":
                return {"result": {"targetInfos": [
                    {"targetId": "sw", "type": "service_worker"},
                    {"targetId": "T1", "type": "page"},
                ]}}
            return {"result": {"sessionId": "S9"}}

        client, _ = connected_client(reply)
        assert await client.attach_to_page() == "S9"
        assert client.target_id == "T1"

    @pytest.mark.asyncio
    async def test_attach_without_page_target(self):
        client, _ = connected_client(lambda m: {"result": {"targetInfos": []}})
        with pytest.raises(CDPTargetError):
            await client.attach_to_page()


# =============================================================================
# Events and disconnect
# =============================================================================

class TestCDPEvents:
    """Tests for the receive loop."""

    @pytest.mark.asyncio
    async def test_events_fan_out_in_order(self):
        client, ws = connected_client()
        seen = []

        def broken(method, params, session_id):
            raise RuntimeError("listener bug")

        client.add_event_listener(broken)
        client.add_event_listener(lambda m, p, s: seen.append((m, p, s)))
        reasons = []
        client.add_disconnect_listener(reasons.append)

        ws.recv = AsyncMock(side_effect=[
            json.dumps({"method": "Page.frameAttached", "params": {"frameId": "a"}, "sessionId": "S1"}),
            json.dumps({"method": "Page.frameDetached", "params": {"frameId": "a"}, "sessionId": "S1"}),
            websockets.exceptions.ConnectionClosed(None, None),
        ])
        await client.listen()

        assert seen == [
            ("Page.frameAttached", {"frameId": "a"}, "S1"),
            ("Page.frameDetached", {"frameId": "a"}, "S1"),
        ]
        assert reasons == ["connection closed"]
        assert client.ws is None

    @pytest.mark.asyncio
    async def test_disconnect_fails_pending_commands(self):
        client, ws = connected_client()
        future = asyncio.get_running_loop().create_future()
        client.pending_messages[1] = future
        ws.recv = AsyncMock(side_effect=websockets.exceptions.ConnectionClosed(None, None))
        await client.listen()
        with pytest.raises(CDPConnectionError):
            future.result()

    @pytest.mark.asyncio
    async def test_remove_event_listener(self):
        client, _ = connected_client()
        seen = []
        listener = lambda m, p, s: seen.append(m)  # noqa: E731
        client.add_event_listener(listener)
        client.remove_event_listener(listener)
        client._handle_event({"method": "Page.loadEventFired", "params": {}})
        assert seen == []


# =============================================================================
# Discovery
# =============================================================================

class TestPageDiscovery:
    """Tests for finding the page WebSocket URL over HTTP."""

    @pytest.mark.asyncio
    async def test_first_page_target(self):
        targets = [
            {"type": "background_page", "webSocketDebuggerUrl": "ws://x/bg"},
            {"type": "page", "webSocketDebuggerUrl": "ws://x/page"},
        ]
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=targets))
        real_client = httpx.AsyncClient
        with patch("frame_sync.cdp.client.httpx.AsyncClient",
                   side_effect=lambda **kw: real_client(transport=transport, **kw)):
            assert await get_page_ws_url() == "ws://x/page"

    @pytest.mark.asyncio
    async def test_no_page_target(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=[]))
        real_client = httpx.AsyncClient
        with patch("frame_sync.cdp.client.httpx.AsyncClient",
                   side_effect=lambda **kw: real_client(transport=transport, **kw)):
            with pytest.raises(CDPTargetError):
                await get_page_ws_url()

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        transport = httpx.MockTransport(refuse)
        real_client = httpx.AsyncClient
        with patch("frame_sync.cdp.client.httpx.AsyncClient",
                   side_effect=lambda **kw: real_client(transport=transport, **kw)):
            with pytest.raises(CDPConnectionError):
                await get_page_ws_url()
