"""Tests for connection management and API dispatch."""

import asyncio
import json

import pytest
import pytest_asyncio
from aiohttp import web
from websockets.asyncio.client import connect
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed, InvalidStatus

from onebot_adapter.adapter import OneBotAdapter, authenticate, check_access_token
from onebot_adapter.config import AdapterConfigData
from onebot_adapter.events import GroupMessageEvent, LifecycleMetaEvent
from onebot_adapter.exceptions import (
    AuthenticationError,
    ConfigError,
    ConnectionLostError,
    InvalidResponseError,
    NoConnectionError,
    SendFailedError,
)
from onebot_adapter.message import Message


class TestCheckAccessToken:
    @pytest.mark.parametrize(
        "header, expected, reason",
        [
            (None, None, None),
            ("Bearer secret", "secret", None),
            (None, "secret", "no access token provided"),
            ("Bearer secret", None, "no access token expected"),
            ("Bearer wrong", "secret", "invalid access token"),
            ("secret", "secret", "invalid access token"),
        ],
    )
    def test_reasons(self, header, expected, reason):
        assert check_access_token(header, expected) == reason

    def test_authenticate_raises_with_reason(self):
        authenticate("Bearer secret", "secret")
        with pytest.raises(AuthenticationError) as exc_info:
            authenticate("Bearer wrong", "secret")
        assert str(exc_info.value) == "invalid access token"
        assert exc_info.value.code == "auth_error"


class TestFrameLoop:
    @pytest.mark.asyncio
    async def test_lifecycle_binds_account(self, adapter, fake_connection, frames, eventually, received_events):
        connection = fake_connection()
        task = asyncio.create_task(adapter.serve_connection(connection))
        connection.push(frames.lifecycle_connect("123"))

        await eventually(lambda: "123" in adapter.accounts)
        await eventually(lambda: len(received_events) == 1)
        event, source = received_events[0]
        assert isinstance(event, LifecycleMetaEvent)
        assert source is connection
        assert adapter.accounts["123"].connection is connection

        await connection.close()
        await task
        assert "123" not in adapter.accounts

    @pytest.mark.asyncio
    async def test_events_are_published_in_order(self, adapter, fake_connection, frames, eventually, received_events):
        connection = fake_connection()
        asyncio.create_task(adapter.serve_connection(connection))
        connection.push(frames.lifecycle_connect())
        for message_id in range(1, 6):
            connection.push(frames.group_message(f"m{message_id}", message_id=message_id))

        await eventually(lambda: len(received_events) == 6)
        messages = [event for event, _ in received_events if isinstance(event, GroupMessageEvent)]
        assert [event.message_id for event in messages] == [1, 2, 3, 4, 5]
        assert messages[0].plain_text() == "m1"

    @pytest.mark.asyncio
    async def test_bad_frames_do_not_stop_the_loop(self, adapter, fake_connection, frames, eventually, received_events):
        connection = fake_connection()
        task = asyncio.create_task(adapter.serve_connection(connection))
        connection.push("{not json")
        connection.push("[1, 2, 3]")
        connection.push({"time": 1, "self_id": 123, "post_type": "notice", "notice_type": "unknown_future_type"})
        connection.push({"time": 1, "self_id": 123, "post_type": "notice", "notice_type": "group_recall"})
        connection.push({"status": "ok", "retcode": 0, "data": None, "echo": "nobody-waits-for-this"})
        connection.push(frames.group_message("still alive"))

        await eventually(lambda: len(received_events) == 1)
        assert received_events[0][0].plain_text() == "still alive"
        assert not task.done()

    @pytest.mark.asyncio
    async def test_badly_shaped_segments_do_not_stop_the_loop(
        self, adapter, fake_connection, frames, eventually, received_events
    ):
        connection = fake_connection()
        task = asyncio.create_task(adapter.serve_connection(connection))
        private = {
            "time": 1700000000,
            "self_id": 123,
            "post_type": "message",
            "message_type": "private",
            "sub_type": "friend",
            "message_id": 7,
            "user_id": 999,
            "font": 0,
        }
        connection.push({**private, "message": [{"type": "text", "data": "hi"}]})
        connection.push({**private, "message": ["hi"]})
        connection.push(frames.group_message("after bad segments"))

        await eventually(lambda: len(received_events) == 1)
        assert received_events[0][0].plain_text() == "after bad segments"
        assert not task.done()

    @pytest.mark.asyncio
    async def test_call_api_round_trip(self, adapter, fake_connection, frames, eventually, received_events):
        connection = fake_connection()
        connection.responder = lambda request: frames.ok_response(request, {"echoed": request["action"]})
        asyncio.create_task(adapter.serve_connection(connection))
        connection.push(frames.lifecycle_connect("123"))
        connection.push(frames.group_message())
        await eventually(lambda: len(received_events) == 2)

        assert await adapter.call_api("123", "get_login_info") == {"echoed": "get_login_info"}
        assert await adapter.call_api(123, "get_status") == {"echoed": "get_status"}

        event = received_events[1][0]
        result = await adapter.call_api(event, "send_group_msg", {"group_id": event.group_id, "message": "pong"})
        assert result == {"echoed": "send_group_msg"}
        assert connection.sent[-1]["params"] == {"group_id": 555, "message": "pong"}

    @pytest.mark.asyncio
    async def test_unknown_account(self, adapter):
        with pytest.raises(NoConnectionError) as exc_info:
            await adapter.call_api("999", "get_login_info")
        assert exc_info.value.self_id == "999"

    @pytest.mark.asyncio
    async def test_close_rejects_pending_calls(self, adapter, fake_connection, frames, eventually):
        connection = fake_connection()
        serving = asyncio.create_task(adapter.serve_connection(connection))
        connection.push(frames.lifecycle_connect("123"))
        await eventually(lambda: "123" in adapter.accounts)

        call = asyncio.create_task(adapter.call_api("123", "get_status"))
        await eventually(lambda: len(connection.sent) == 1)
        await connection.close()
        await serving

        with pytest.raises(ConnectionLostError):
            await call
        assert "123" not in adapter.accounts

    @pytest.mark.asyncio
    async def test_reconnect_replaces_binding(self, adapter, fake_connection, frames, eventually):
        first = fake_connection(40001)
        second = fake_connection(40002)
        first_task = asyncio.create_task(adapter.serve_connection(first))
        asyncio.create_task(adapter.serve_connection(second))

        first.push(frames.lifecycle_connect("123"))
        await eventually(lambda: "123" in adapter.accounts)
        second.push(frames.lifecycle_connect("123"))
        await eventually(lambda: adapter.accounts["123"].connection is second)

        # 旧连接断开不影响新的绑定
        await first.close()
        await first_task
        assert adapter.accounts["123"].connection is second

    @pytest.mark.asyncio
    async def test_stop_rejects_pending_calls(self, adapter, fake_connection, frames, eventually):
        connection = fake_connection()
        asyncio.create_task(adapter.serve_connection(connection))
        connection.push(frames.lifecycle_connect("123"))
        await eventually(lambda: "123" in adapter.accounts)

        call = asyncio.create_task(adapter.call_api("123", "get_status"))
        await eventually(lambda: len(connection.sent) == 1)
        await adapter.stop()

        with pytest.raises(ConnectionLostError):
            await call
        assert connection.close_code == 1001
        assert dict(adapter.accounts) == {}


class TestEventSink:
    @pytest.mark.asyncio
    async def test_sink_can_call_api(self, fake_connection, frames, eventually):
        replies = []

        async def sink(event, connection):
            if isinstance(event, GroupMessageEvent):
                replies.append(await adapter.call_api(event, "send_group_msg", {"message": "pong"}))

        adapter = OneBotAdapter(AdapterConfigData(api_timeout=1000, log_event=False), event_sink=sink)
        try:
            connection = fake_connection()
            connection.responder = lambda request: frames.ok_response(request, {"message_id": 42})
            asyncio.create_task(adapter.serve_connection(connection))
            connection.push(frames.lifecycle_connect())
            connection.push(frames.group_message("ping"))
            await eventually(lambda: replies == [{"message_id": 42}])
        finally:
            await adapter.stop()

    @pytest.mark.asyncio
    async def test_sink_errors_are_contained(self, fake_connection, frames, eventually):
        seen = []

        def sink(event, connection):
            seen.append(event)
            if len(seen) == 1:
                raise RuntimeError("boom")

        adapter = OneBotAdapter(AdapterConfigData(log_event=True), event_sink=sink)
        try:
            connection = fake_connection()
            asyncio.create_task(adapter.serve_connection(connection))
            connection.push(frames.lifecycle_connect())
            connection.push(frames.group_message())
            await eventually(lambda: len(seen) == 2)
            await adapter.join_events()
        finally:
            await adapter.stop()


@pytest_asyncio.fixture
async def reverse_adapter():
    """监听随机端口的反向模式适配器，返回 (适配器, 连接地址)."""
    instance = OneBotAdapter(AdapterConfigData(port=0, access_token="secret", api_timeout=2000, log_event=False))
    await instance.start()
    port = instance.server.sockets[0].getsockname()[1]
    yield instance, f"ws://127.0.0.1:{port}{instance.config.path}"
    await instance.stop()


class TestReverseServer:
    @pytest.mark.asyncio
    async def test_accepts_valid_token(self, reverse_adapter, frames, eventually):
        adapter, url = reverse_adapter
        async with connect(url, additional_headers={"Authorization": "Bearer secret"}) as ws:
            await ws.send(json.dumps(frames.lifecycle_connect("123")))
            await eventually(lambda: "123" in adapter.accounts)

            call = asyncio.create_task(adapter.call_api("123", "get_login_info"))
            request = json.loads(await ws.recv())
            assert request["action"] == "get_login_info"
            await ws.send(json.dumps(frames.ok_response(request, {"user_id": 123, "nickname": "bot"})))
            assert await call == {"user_id": 123, "nickname": "bot"}

    @pytest.mark.asyncio
    async def test_rejects_wrong_token(self, reverse_adapter):
        adapter, url = reverse_adapter
        async with connect(url, additional_headers={"Authorization": "Bearer wrong"}) as ws:
            with pytest.raises(ConnectionClosed) as exc_info:
                await ws.recv()
        assert exc_info.value.rcvd.code == 1008
        assert exc_info.value.rcvd.reason == "invalid access token"
        assert dict(adapter.accounts) == {}

    @pytest.mark.asyncio
    async def test_rejects_missing_token(self, reverse_adapter):
        _, url = reverse_adapter
        async with connect(url) as ws:
            with pytest.raises(ConnectionClosed) as exc_info:
                await ws.recv()
        assert exc_info.value.rcvd.code == 1008
        assert exc_info.value.rcvd.reason == "no access token provided"

    @pytest.mark.asyncio
    async def test_rejects_token_when_none_expected(self):
        adapter = OneBotAdapter(AdapterConfigData(port=0, log_event=False))
        await adapter.start()
        try:
            port = adapter.server.sockets[0].getsockname()[1]
            url = f"ws://127.0.0.1:{port}/onebot/v11/ws"
            async with connect(url, additional_headers={"Authorization": "Bearer extra"}) as ws:
                with pytest.raises(ConnectionClosed) as exc_info:
                    await ws.recv()
            assert exc_info.value.rcvd.reason == "no access token expected"
        finally:
            await adapter.stop()

    @pytest.mark.asyncio
    async def test_wrong_path_is_not_found(self, reverse_adapter):
        _, url = reverse_adapter
        with pytest.raises(InvalidStatus) as exc_info:
            async with connect(url.replace("/onebot/v11/ws", "/elsewhere")):
                pass
        assert exc_info.value.response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_config_fails_start(self):
        adapter = OneBotAdapter(AdapterConfigData(mode="sideways"))
        with pytest.raises(ConfigError):
            await adapter.start()
        assert not adapter.is_running


class TestForwardClient:
    @pytest.mark.asyncio
    async def test_connects_and_calls_api(self, frames, eventually):
        auth_headers = []

        async def onebot_impl(ws):
            auth_headers.append(ws.request.headers.get("Authorization"))
            await ws.send(json.dumps(frames.lifecycle_connect("456")))
            request = json.loads(await ws.recv())
            await ws.send(json.dumps(frames.ok_response(request, {"user_id": 456})))
            await ws.wait_closed()

        async with serve(onebot_impl, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            config = AdapterConfigData(
                mode="forward",
                urls=[f"ws://127.0.0.1:{port}/"],
                access_token="token",
                reconnect_interval=0,
                api_timeout=2000,
                log_event=False,
            )
            adapter = OneBotAdapter(config)
            await adapter.start()
            try:
                await eventually(lambda: "456" in adapter.accounts)
                assert await adapter.call_api(456, "get_login_info") == {"user_id": 456}
                assert auth_headers == ["Bearer token"]
            finally:
                await adapter.stop()
            assert dict(adapter.accounts) == {}

    @pytest.mark.asyncio
    async def test_unreachable_url_without_reconnect(self):
        config = AdapterConfigData(mode="forward", urls=["ws://127.0.0.1:1/"], reconnect_interval=0)
        adapter = OneBotAdapter(config)
        await adapter.start()
        try:
            await asyncio.wait_for(asyncio.gather(*adapter._client_tasks), timeout=5)
            assert dict(adapter.accounts) == {}
        finally:
            await adapter.stop()


@pytest_asyncio.fixture
async def http_api():
    """本地的 OneBot HTTP API，记录收到的请求."""
    received = []

    async def handle(request: web.Request) -> web.Response:
        action = request.match_info["action"]
        received.append(
            {
                "action": action,
                "authorization": request.headers.get("Authorization"),
                "body": await request.json(),
            }
        )
        if action == "broken":
            return web.Response(status=500, text="oops")
        if action == "no_data":
            return web.json_response({"status": "ok", "retcode": 0})
        return web.json_response({"status": "ok", "retcode": 0, "data": {"message_id": 7}})

    app = web.Application()
    app.router.add_post("/{action}", handle)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = runner.addresses[0][1]
    yield f"http://127.0.0.1:{port}/", received
    await runner.cleanup()


class TestHttpPost:
    @pytest.mark.asyncio
    async def test_call_goes_over_http(self, adapter, fake_connection, frames, eventually, http_api):
        url, received = http_api
        adapter.config.use_http_post = True
        adapter.config.access_token = "token"

        connection = fake_connection()
        asyncio.create_task(adapter.serve_connection(connection, http_post_url=url))
        connection.push(frames.lifecycle_connect("123"))
        await eventually(lambda: "123" in adapter.accounts)

        result = await adapter.call_api("123", "send_group_msg", {"group_id": 555, "message": Message("hi")})
        assert result == {"message_id": 7}
        assert received == [
            {
                "action": "send_group_msg",
                "authorization": "Bearer token",
                "body": {"group_id": 555, "message": [{"type": "text", "data": {"text": "hi"}}]},
            }
        ]
        assert connection.sent == []

    @pytest.mark.asyncio
    async def test_http_errors(self, adapter, fake_connection, frames, eventually, http_api):
        url, _ = http_api
        adapter.config.use_http_post = True

        connection = fake_connection()
        asyncio.create_task(adapter.serve_connection(connection, http_post_url=url))
        connection.push(frames.lifecycle_connect("123"))
        await eventually(lambda: "123" in adapter.accounts)

        with pytest.raises(SendFailedError):
            await adapter.call_api("123", "broken")
        with pytest.raises(InvalidResponseError):
            await adapter.call_api("123", "no_data")
