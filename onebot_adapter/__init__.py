# onebot_adapter/__init__.py
"""OneBot v11 协议适配器：WebSocket 连接管理、事件解码、API 调用和消息段模型."""

from .adapter import Account, OneBotAdapter, authenticate, check_access_token
from .api_correlator import ApiCorrelator, ApiRequest, is_api_response, new_echo
from .config import AdapterConfigData, load_config
from .event_factory import EVENT_FACTORIES, decode_event, describe_event, get_event_factory
from .events import (
    Event,
    GroupMessageEvent,
    HeartbeatMetaEvent,
    LifecycleMetaEvent,
    MessageEvent,
    MetaEvent,
    NoticeEvent,
    PrivateMessageEvent,
    RequestEvent,
)
from .exceptions import (
    AdapterError,
    ApiCallError,
    ApiTimeoutError,
    AuthenticationError,
    ConfigError,
    ConnectionLostError,
    DecodeError,
    InvalidResponseError,
    MalformedEventError,
    MalformedFrameError,
    NoConnectionError,
    SendFailedError,
    UnrecognizedEventError,
)
from .logger import logger, setup_logger
from .message import Message, MessageSegment, Unsupported, escape, parse_segment, unescape

__version__ = "1.0.0"

__all__ = [
    "Account",
    "AdapterConfigData",
    "AdapterError",
    "ApiCallError",
    "ApiCorrelator",
    "ApiRequest",
    "ApiTimeoutError",
    "AuthenticationError",
    "ConfigError",
    "ConnectionLostError",
    "DecodeError",
    "EVENT_FACTORIES",
    "Event",
    "GroupMessageEvent",
    "HeartbeatMetaEvent",
    "InvalidResponseError",
    "LifecycleMetaEvent",
    "MalformedEventError",
    "MalformedFrameError",
    "Message",
    "MessageEvent",
    "MessageSegment",
    "MetaEvent",
    "NoConnectionError",
    "NoticeEvent",
    "OneBotAdapter",
    "PrivateMessageEvent",
    "RequestEvent",
    "SendFailedError",
    "UnrecognizedEventError",
    "Unsupported",
    "authenticate",
    "check_access_token",
    "decode_event",
    "describe_event",
    "escape",
    "get_event_factory",
    "is_api_response",
    "load_config",
    "logger",
    "new_echo",
    "parse_segment",
    "setup_logger",
    "unescape",
]
