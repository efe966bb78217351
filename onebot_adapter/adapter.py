# onebot_adapter/adapter.py
# 连接管理：正向模式下作为客户端连接 OneBot 实现，反向模式下作为服务端等待连接

import asyncio
import hmac
import inspect
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from http import HTTPStatus
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import urlsplit

import aiohttp
from websockets.asyncio.client import connect
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.http11 import Request, Response

from .api_correlator import ApiCorrelator, dump_json
from .config import AdapterConfigData
from .definitions import CloseCode, ConnectionMode
from .event_factory import decode_event, describe_event
from .events import Event, LifecycleMetaEvent
from .exceptions import (
    ApiTimeoutError,
    AuthenticationError,
    DecodeError,
    InvalidResponseError,
    NoConnectionError,
    SendFailedError,
)
from .logger import logger

EventSink = Callable[[Event, Any], Union[Awaitable[None], None]]

MAX_FRAME_SIZE = 64 * 2**20  # 带 base64 图片的消息可能很大
LOG_FRAME_PREVIEW = 200


def check_access_token(header: Optional[str], expected: Optional[str]) -> Optional[str]:
    """检查连接带来的 Authorization 头，通过时返回 None，否则返回拒绝原因.

    双方必须一致：服务端没配 token 时，客户端带了 token 也会被拒绝。
    """
    if not header:
        return "no access token provided" if expected else None
    if not expected:
        return "no access token expected"
    if not hmac.compare_digest(header.encode(), f"Bearer {expected}".encode()):
        return "invalid access token"
    return None


def authenticate(header: Optional[str], expected: Optional[str]) -> None:
    """鉴权不通过时抛 AuthenticationError，消息就是关闭连接时带的原因."""
    reason = check_access_token(header, expected)
    if reason is not None:
        raise AuthenticationError(reason)


@dataclass
class Account:
    """一个已经连上的机器人账号."""

    self_id: str
    connection: Any
    correlator: ApiCorrelator
    http_post_url: Optional[str] = None


@dataclass
class _ConnectionState:
    name: str
    correlator: ApiCorrelator
    http_post_url: Optional[str] = None


def _peer_name(connection: Any) -> str:
    address = getattr(connection, "remote_address", None)
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address or "unknown")


class OneBotAdapter:
    """OneBot v11 适配器.

    用法::

        adapter = OneBotAdapter(config, event_sink=on_event)
        await adapter.start()
        await adapter.call_api(event, "send_msg", {...})
        await adapter.stop()
    """

    def __init__(self, config: AdapterConfigData, event_sink: Optional[EventSink] = None) -> None:
        self.config = config
        self.event_sink = event_sink

        self._accounts: Dict[str, Account] = {}
        self._connections: Dict[Any, _ConnectionState] = {}
        self._event_queue: "asyncio.Queue[tuple[Event, Any]]" = asyncio.Queue()
        self._processor_task: Optional[asyncio.Task] = None
        self._client_tasks: List[asyncio.Task] = []
        self._server: Optional[Server] = None
        self._is_running = False

    # --- 状态 ---

    @property
    def mode(self) -> str:
        return self.config.mode

    @property
    def accounts(self) -> Mapping[str, Account]:
        return MappingProxyType(self._accounts)

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def server(self) -> Optional[Server]:
        """反向模式下的 WebSocket 服务端，端口配成 0 时可以从这里拿到实际端口."""
        return self._server

    # --- 启动与停止 ---

    async def start(self) -> None:
        if self._is_running:
            logger.warning("适配器已经启动，不用重复启动。")
            return
        self.config.validate()
        ssl_context = self.config.ssl_context() if self.mode == ConnectionMode.reverse else None

        self._is_running = True
        self._ensure_processor()
        logger.info(f"OneBot v11 适配器正在以 {self.mode} 模式启动...")

        if self.mode == ConnectionMode.forward:
            for index, url in enumerate(self.config.urls):
                task = asyncio.create_task(self._run_client(index, url), name=f"OneBotClient-{url}")
                self._client_tasks.append(task)
            return

        try:
            self._server = await serve(
                self._handle_server_connection,
                self.config.host,
                self.config.port,
                ssl=ssl_context,
                process_request=self._check_request_path,
                max_size=MAX_FRAME_SIZE,
            )
        except OSError:
            self._is_running = False
            raise
        logger.info(f"正在监听 WebSocket 连接: {self.config.server_url()}")

    async def stop(self) -> None:
        """关闭所有连接，拒绝所有还没返回的 API 调用，清空账号表."""
        if not self._is_running and self._processor_task is None:
            return
        logger.info("正在关闭 OneBot v11 适配器...")
        self._is_running = False

        for task in self._client_tasks:
            task.cancel()
        for task in self._client_tasks:
            try:
                await task
            except asyncio.CancelledError:
                logger.debug(f"任务 {task.get_name()} 已取消。")
            except Exception:
                logger.exception(f"任务 {task.get_name()} 异常退出")
        self._client_tasks.clear()

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        # 还在的连接 (比如测试里直接接进来的) 也要关掉
        for connection, state in list(self._connections.items()):
            try:
                await connection.close(CloseCode.GOING_AWAY, "adapter shutting down")
            except (ConnectionClosed, OSError) as e:
                logger.debug(f"关闭连接 {state.name} 时出错: {e}")
            self._forget_connection(connection, state, "adapter shutting down")

        if self._processor_task is not None:
            self._processor_task.cancel()
            try:
                await self._processor_task
            except asyncio.CancelledError:
                logger.debug("事件处理器已停止。")
            self._processor_task = None

        self._accounts.clear()
        logger.info("OneBot v11 适配器已完全关闭。")

    # --- 正向连接 ---

    async def _run_client(self, index: int, url: str) -> None:
        """连接到一个 OneBot 实现，断开后按配置重连."""
        headers = {"Authorization": f"Bearer {self.config.access_token}"} if self.config.access_token else {}
        http_post_url = self.config.http_post_urls[index] if self.config.use_http_post else None
        interval = self.config.reconnect_interval

        while self._is_running:
            try:
                logger.info(f"正在尝试连接到 OneBot 实现: {url}")
                async with connect(url, additional_headers=headers, max_size=MAX_FRAME_SIZE) as connection:
                    await self.serve_connection(connection, http_post_url=http_post_url, name=url)
            except (OSError, WebSocketException, asyncio.TimeoutError) as e:
                logger.error(f"连接 {url} 失败: {e}")

            if not self._is_running or interval <= 0:
                break
            logger.info(f"与 {url} 的连接已断开，将在 {interval} 秒后尝试重连...")
            await asyncio.sleep(interval)
        logger.info(f"与 {url} 的连接任务已结束。")

    # --- 反向连接 ---

    def _check_request_path(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        if urlsplit(request.path).path != self.config.path:
            logger.warning(f"拒绝来自 {_peer_name(connection)} 的连接: 路径 {request.path} 不对")
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    async def _handle_server_connection(self, connection: ServerConnection) -> None:
        peer = _peer_name(connection)
        try:
            authenticate(connection.request.headers.get("Authorization"), self.config.access_token)
        except AuthenticationError as e:
            logger.warning(f"来自 {peer} 的连接被拒绝: {e}")
            await connection.close(CloseCode.POLICY_VIOLATION, str(e))
            return
        await self.serve_connection(connection, name=peer)

    # --- 每个连接的收帧循环 ---

    async def serve_connection(
        self, connection: Any, http_post_url: Optional[str] = None, name: Optional[str] = None
    ) -> None:
        """处理一个已经鉴权通过的连接，直到连接关闭."""
        self._ensure_processor()
        name = name or _peer_name(connection)
        state = _ConnectionState(name, ApiCorrelator(name), http_post_url)
        self._connections[connection] = state
        logger.info(f"WebSocket 连接已建立: {state.name}")

        try:
            async for raw in connection:
                self._handle_frame(connection, state, raw)
        except ConnectionClosed as e:
            logger.warning(f"与 {state.name} 的连接异常断开: {e}")
        finally:
            self._forget_connection(connection, state, "connection closed")
            code = getattr(connection, "close_code", None)
            reason = getattr(connection, "close_reason", None)
            logger.info(f"WebSocket 连接已关闭: {state.name} (code: {code}, reason: {reason or '-'})")

    def _handle_frame(self, connection: Any, state: _ConnectionState, raw: Union[str, bytes]) -> None:
        logger.debug(f"收到来自 {state.name} 的数据: {raw[:LOG_FRAME_PREVIEW]!r}")
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.error(f"无法解析来自 {state.name} 的 JSON 数据: {raw[:LOG_FRAME_PREVIEW]!r}")
            return
        if not isinstance(payload, dict):
            logger.error(f"来自 {state.name} 的数据不是 JSON 对象: {raw[:LOG_FRAME_PREVIEW]!r}")
            return

        if state.correlator.feed(payload):
            return

        try:
            event = decode_event(payload)
        except DecodeError as e:
            logger.error(f"解析来自 {state.name} 的事件失败: {e}")
            return
        except Exception:
            # 单帧出错只丢掉这一帧，连接继续收
            logger.exception(f"处理来自 {state.name} 的数据时发生意外错误: {raw[:LOG_FRAME_PREVIEW]!r}")
            return
        if event is None:
            logger.debug(f"来自 {state.name} 的数据不是事件，已忽略。")
            return

        if isinstance(event, LifecycleMetaEvent) and event.is_connect():
            self._bind_account(event.self_id, connection, state)
        self._event_queue.put_nowait((event, connection))

    def _bind_account(self, self_id: str, connection: Any, state: _ConnectionState) -> None:
        previous = self._accounts.get(self_id)
        if previous is not None and previous.connection is not connection:
            logger.warning(f"账号 {self_id} 从新的连接 {state.name} 重新连接，旧连接的绑定已被替换。")
        self._accounts[self_id] = Account(self_id, connection, state.correlator, state.http_post_url)
        state.correlator.name = f"账号 {self_id}"
        logger.info(f"账号 {self_id} 已连接。")

    def _forget_connection(self, connection: Any, state: _ConnectionState, reason: str) -> None:
        if self._connections.pop(connection, None) is None:
            return
        for self_id, account in list(self._accounts.items()):
            if account.connection is connection:
                del self._accounts[self_id]
                logger.info(f"账号 {self_id} 已断开连接。")
        state.correlator.reject_all(reason)

    # --- 事件发布 ---

    def _ensure_processor(self) -> None:
        if self._processor_task is None or self._processor_task.done():
            self._processor_task = asyncio.create_task(self._event_processor(), name="OneBotEventProcessor")

    async def _event_processor(self) -> None:
        """按到达顺序把事件交给 event_sink."""
        while True:
            event, connection = await self._event_queue.get()
            try:
                if self.config.log_event:
                    logger.info(f"[to {event.self_id}] {describe_event(event)}")
                if self.event_sink is not None:
                    result = self.event_sink(event, connection)
                    if inspect.isawaitable(result):
                        await result
            except Exception:
                logger.exception(f"处理事件 {event.event_name} 时出错")
            finally:
                self._event_queue.task_done()

    async def join_events(self) -> None:
        """等待已经收到的事件全部交给 event_sink."""
        await self._event_queue.join()

    # --- API 调用 ---

    @staticmethod
    def _resolve_self_id(target: Union[str, int, Event]) -> str:
        if isinstance(target, Event):
            return target.self_id
        return str(target)

    async def call_api(
        self, target: Union[str, int, Event], action: str, params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """调用 OneBot API，target 可以是账号 ID 或者该账号收到的事件，返回响应里的 data."""
        self_id = self._resolve_self_id(target)
        account = self._accounts.get(self_id)
        if account is None:
            raise NoConnectionError(self_id)

        if self.config.use_http_post and account.http_post_url:
            return await self._call_api_with_http_post(account, action, params or {})

        logger.debug(f"通过 WebSocket 调用 API '{action}' (账号 {self_id})")
        return await account.correlator.call(
            account.connection.send, action, params, timeout=self.config.api_timeout_seconds
        )

    async def _call_api_with_http_post(self, account: Account, action: str, params: Dict[str, Any]) -> Any:
        url = f"{account.http_post_url.rstrip('/')}/{action}"  # type: ignore[union-attr]
        headers = {"Content-Type": "application/json"}
        if self.config.access_token:
            headers["Authorization"] = f"Bearer {self.config.access_token}"
        timeout = self.config.api_timeout_seconds

        logger.debug(f"通过 HTTP POST 调用 API '{action}' (账号 {account.self_id}): {url}")
        try:
            async with (
                aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session,
                session.post(url, data=dump_json(params), headers=headers) as response,
            ):
                if response.status != 200:
                    raise SendFailedError(action, f"HTTP {response.status}")
                body = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise ApiTimeoutError(action, timeout) from e
        except (aiohttp.ClientError, ValueError) as e:
            raise SendFailedError(action, str(e) or type(e).__name__) from e

        if not isinstance(body, dict) or "data" not in body:
            raise InvalidResponseError(action, body)
        if body.get("status") != "ok":
            logger.warning(
                f"API '{action}' 调用失败。Status: {body.get('status')}, "
                f"Retcode: {body.get('retcode')}, Message: {body.get('message') or body.get('wording') or '未知错误'}"
            )
        return body["data"]
