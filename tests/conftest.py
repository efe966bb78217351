"""Pytest configuration and shared fixtures."""

import asyncio
import json
from typing import Any, Callable, Optional

import pytest
import pytest_asyncio

from onebot_adapter.adapter import OneBotAdapter
from onebot_adapter.config import AdapterConfigData


class FakeConnection:
    """内存里的 WebSocket 连接，接口和 websockets 的连接对象一致."""

    def __init__(self, remote_address=("127.0.0.1", 40000)):
        self.remote_address = remote_address
        self.sent: list[dict] = []
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        # 收到 API 请求时自动生成响应，返回 None 表示不回复
        self.responder: Optional[Callable[[dict], Optional[dict]]] = None
        self._incoming: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def push(self, frame: Any) -> None:
        self._incoming.put_nowait(frame if isinstance(frame, (str, bytes)) else json.dumps(frame))

    async def send(self, data: str) -> None:
        if self._closed:
            raise ConnectionError("connection is closed")
        request = json.loads(data)
        self.sent.append(request)
        if self.responder is not None:
            response = self.responder(request)
            if response is not None:
                self.push(response)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        self.close_code = code
        self.close_reason = reason
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


def ok_response(request: dict, data: Any) -> dict:
    return {"status": "ok", "retcode": 0, "data": data, "echo": request["echo"]}


def lifecycle_connect(self_id: str = "123") -> dict:
    return {
        "time": 1700000000,
        "self_id": int(self_id),
        "post_type": "meta_event",
        "meta_event_type": "lifecycle",
        "sub_type": "connect",
    }


def group_message(text: str = "hi", self_id: str = "123", message_id: int = 1) -> dict:
    return {
        "time": 1700000000,
        "self_id": self_id,
        "post_type": "message",
        "message_type": "group",
        "sub_type": "normal",
        "message_id": message_id,
        "group_id": 555,
        "user_id": 999,
        "message": [{"type": "text", "data": {"text": text}}],
        "raw_message": text,
        "font": 0,
        "sender": {"nickname": "Bob"},
    }


@pytest.fixture
def frames():
    """常用帧的构造函数."""

    class Frames:
        lifecycle_connect = staticmethod(lifecycle_connect)
        group_message = staticmethod(group_message)
        ok_response = staticmethod(ok_response)

    return Frames


@pytest.fixture
def fake_connection():
    """返回一个创建 FakeConnection 的工厂."""

    def factory(port: int = 40000) -> FakeConnection:
        return FakeConnection(remote_address=("127.0.0.1", port))

    return factory


@pytest.fixture
def eventually():
    """轮询等待条件成立，超时则测试失败."""

    async def wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                pytest.fail("condition not met in time")
            await asyncio.sleep(0.01)

    return wait


@pytest.fixture
def received_events():
    return []


@pytest_asyncio.fixture
async def adapter(received_events):
    """不监听端口的反向模式适配器，连接由测试直接交给 serve_connection."""

    async def sink(event, connection):
        received_events.append((event, connection))

    instance = OneBotAdapter(AdapterConfigData(api_timeout=1000, log_event=False), event_sink=sink)
    yield instance
    await instance.stop()
