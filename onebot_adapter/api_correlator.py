# onebot_adapter/api_correlator.py
# API 调用和响应的配对：每次调用带一个 echo，收到同 echo 的响应时唤醒对应的调用者

import asyncio
import json
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .exceptions import ApiTimeoutError, ConnectionLostError, InvalidResponseError, SendFailedError
from .logger import logger
from .message import Message, MessageSegment

RESPONSE_KEYS = ("status", "retcode", "data", "echo")

SendFunc = Callable[[str], Awaitable[Any]]


def new_echo() -> str:
    return str(uuid.uuid4())


def _json_default(value: Any) -> Any:
    # 参数里可以直接放 Message 或者消息段
    if isinstance(value, Message):
        return value.to_list()
    if isinstance(value, MessageSegment):
        return value.to_dict()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=_json_default)


@dataclass
class ApiRequest:
    action: str
    params: Dict[str, Any] = field(default_factory=dict)
    echo: str = field(default_factory=new_echo)

    def to_json(self) -> str:
        return dump_json({"action": self.action, "params": self.params, "echo": self.echo})


@dataclass
class PendingCall:
    action: str
    submitted_at: float
    future: "asyncio.Future[Any]"


def is_api_response(frame: Any) -> bool:
    """四个字段都在才算 API 响应。retcode 为 0、data 为 null 都是合法的."""
    return isinstance(frame, dict) and all(key in frame for key in RESPONSE_KEYS)


class ApiCorrelator:
    """一个连接一个，管理这个连接上所有还没返回的 API 调用."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.pending: Dict[str, PendingCall] = {}

    async def call(
        self,
        send: SendFunc,
        action: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: float = 30.0,
    ) -> Any:
        """发出一次调用并等待响应的 data，只尝试一次."""
        request = ApiRequest(action, params or {})
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self.pending[request.echo] = PendingCall(action, time.monotonic(), future)
        logger.debug(f"发送 API 请求: action='{action}', params={request.params}, echo='{request.echo}'")

        try:
            try:
                await send(request.to_json())
            except Exception as e:
                raise SendFailedError(action, str(e) or type(e).__name__) from e

            try:
                return await asyncio.wait_for(future, timeout=timeout)
            except asyncio.TimeoutError as e:
                logger.warning(f"等待 API 响应超时 (action: {action}, echo: {request.echo}, 超时: {timeout}s)")
                raise ApiTimeoutError(action, timeout) from e
        finally:
            self.pending.pop(request.echo, None)
            if future.done() and not future.cancelled():
                # 发送失败时 future 上可能已经有连接断开的异常，标记为已读取
                future.exception()

    def feed(self, frame: Dict[str, Any]) -> bool:
        """处理一帧数据，返回 True 表示这帧是 API 响应，已经处理完，不用再当事件解码."""
        echo = frame.get("echo")
        if echo is None:
            return False
        echo = str(echo)
        call = self.pending.get(echo)

        if not is_api_response(frame):
            if call is None:
                return False
            # echo 对上了但是字段不全
            self.pending.pop(echo, None)
            if not call.future.done():
                call.future.set_exception(InvalidResponseError(call.action, frame))
            return True

        if call is None:
            # 多半是已经超时的调用，响应来晚了
            logger.debug(f"收到 echo '{echo}' 的响应，但没有找到匹配的等待请求，可能已经超时。")
            return True

        self.pending.pop(echo, None)
        if frame["status"] != "ok":
            logger.warning(
                f"API '{call.action}' 调用失败。Status: {frame['status']}, "
                f"Retcode: {frame['retcode']}, Message: {frame.get('message') or frame.get('wording') or '未知错误'}"
            )
        if not call.future.done():
            call.future.set_result(frame["data"])
            elapsed = time.monotonic() - call.submitted_at
            logger.debug(f"API '{call.action}' 收到响应 (echo: {echo})，耗时 {elapsed * 1000:.1f}ms")
        return True

    def reject_all(self, reason: str = "connection closed") -> int:
        """拒绝所有还没返回的调用，返回拒绝了多少个."""
        calls = list(self.pending.values())
        self.pending.clear()
        for call in calls:
            if not call.future.done():
                call.future.set_exception(ConnectionLostError(call.action, reason))
        if calls:
            logger.info(f"{self.name or '连接'} 上有 {len(calls)} 个 API 调用被中止: {reason}")
        return len(calls)
