# onebot_adapter/exceptions.py
"""适配器的错误类型.

四大类：配置错误（启动即失败）、鉴权错误（只影响单个连接）、
解码错误（只影响单帧）、API 调用错误（只返回给对应的调用者）。
"""

from typing import Any, Optional


class AdapterError(Exception):
    def __init__(
        self,
        message: str,
        code: str = "adapter_error",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.details = details


class ConfigError(AdapterError):
    def __init__(self, message: str):
        super().__init__(message, "config_error")


class AuthenticationError(AdapterError):
    def __init__(self, message: str):
        super().__init__(message, "auth_error")


# --- 解码错误 ---


class DecodeError(AdapterError):
    def __init__(
        self,
        message: str,
        code: str = "decode_error",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code, details)


class MalformedFrameError(DecodeError):
    """收到的数据不是一个合法的 JSON 对象."""

    def __init__(self, message: str, raw: Any = None):
        super().__init__(message, "malformed_frame", {"raw": raw})
        self.raw = raw


class MalformedEventError(DecodeError):
    """事件标签认得，但是字段缺失或者格式不对."""

    def __init__(self, message: str, payload: Optional[dict[str, Any]] = None):
        super().__init__(message, "malformed_event", {"payload": payload})
        self.payload = payload


class UnrecognizedEventError(DecodeError):
    """某一级分派标签不认识。level 是标签字段名，比如 notice_type."""

    def __init__(self, level: str, tag: Any, payload: dict[str, Any]):
        super().__init__(
            f'unrecognized {level} "{tag}"',
            "unrecognized_event",
            {"level": level, "tag": tag, "payload": payload},
        )
        self.level = level
        self.tag = tag
        self.payload = payload


# --- API 调用错误 ---


class ApiCallError(AdapterError):
    def __init__(
        self,
        message: str,
        code: str = "api_call_error",
        action: Optional[str] = None,
    ):
        super().__init__(message, code, {"action": action} if action else None)
        self.action = action


class NoConnectionError(ApiCallError):
    def __init__(self, self_id: str):
        super().__init__(f"no connection found for self_id {self_id}", "no_connection")
        self.self_id = self_id


class ApiTimeoutError(ApiCallError):
    def __init__(self, action: str, timeout_seconds: float):
        super().__init__(
            f'api call "{action}" timed out after {timeout_seconds}s',
            "timeout",
            action,
        )
        self.timeout_seconds = timeout_seconds


class InvalidResponseError(ApiCallError):
    def __init__(self, action: str, response: Any):
        super().__init__(
            f'api call "{action}" got an invalid response: {response!r}',
            "invalid_response",
            action,
        )
        self.response = response


class SendFailedError(ApiCallError):
    def __init__(self, action: str, reason: str):
        super().__init__(
            f'failed to send api call "{action}": {reason}', "send_failed", action
        )


class ConnectionLostError(ApiCallError):
    """连接在调用返回前断开，或者适配器被关闭."""

    def __init__(self, action: str, reason: str = "connection closed"):
        super().__init__(
            f'api call "{action}" aborted: {reason}', "connection_lost", action
        )
