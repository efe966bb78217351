# onebot_adapter/event_factory.py
import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Dict, Optional

from .definitions import MetaEventType, MessageType, NoticeType, NotifySubType, PostType, RequestType
from .events import (
    BotOfflineNoticeEvent,
    EmojiLike,
    Event,
    FriendAddNoticeEvent,
    FriendPokeNoticeEvent,
    FriendRecallNoticeEvent,
    FriendRequestEvent,
    GroupAdminNoticeEvent,
    GroupAnonymous,
    GroupBanNoticeEvent,
    GroupCardNoticeEvent,
    GroupDecreaseNoticeEvent,
    GroupEssenceNoticeEvent,
    GroupFile,
    GroupIncreaseNoticeEvent,
    GroupMessageEvent,
    GroupMsgEmojiLikeNoticeEvent,
    GroupNameNoticeEvent,
    GroupPokeNoticeEvent,
    GroupRecallNoticeEvent,
    GroupRequestEvent,
    GroupTitleNoticeEvent,
    GroupUploadNoticeEvent,
    HeartbeatMetaEvent,
    HeartbeatStatus,
    HonorNoticeEvent,
    InputStatusNoticeEvent,
    LifecycleMetaEvent,
    LuckyKingNoticeEvent,
    MessageEvent,
    MessageSender,
    NoticeEvent,
    PrivateMessageEvent,
    ProfileLikeNoticeEvent,
    RequestEvent,
)
from .exceptions import MalformedEventError, MalformedFrameError, UnrecognizedEventError
from .message import Message

_REQUIRED = object()

Payload = Dict[str, Any]
Builder = Callable[[Payload, Payload], Event]


# --- 字段读取 ---


def _field(payload: Payload, key: str, convert: Callable[[Any], Any] = int, default: Any = _REQUIRED) -> Any:
    """读取一个字段并转换类型，缺失或者类型不对时抛 MalformedEventError."""
    value = payload.get(key)
    if value is None:
        if default is _REQUIRED:
            raise MalformedEventError(f'missing field "{key}"', payload)
        return default
    try:
        return convert(value)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f'field "{key}" has invalid value {value!r}', payload) from e


def _dict_field(payload: Payload, key: str) -> Payload:
    value = payload.get(key)
    if not isinstance(value, dict):
        raise MalformedEventError(f'field "{key}" must be an object', payload)
    return value


def _common_fields(payload: Payload) -> Payload:
    return {"time": _field(payload, "time"), "self_id": _field(payload, "self_id", str)}


# --- 定义各种事件的构造工厂 ---


class BaseEventFactory(ABC):
    """所有事件工厂的基类，负责把某一种 post_type 的原始数据变成具体的事件."""

    # 第二级标签的字段名，比如 notice_type
    tag_field: str = ""

    @abstractmethod
    def builders(self) -> Dict[str, Builder]:
        """第二级标签到构造函数的映射表."""

    def create_event(self, payload: Payload) -> Event:
        tag = payload.get(self.tag_field)
        builder = self.builders().get(tag) if isinstance(tag, str) else None
        if builder is None:
            raise UnrecognizedEventError(self.tag_field, tag, payload)
        return builder(payload, _common_fields(payload))


class MessageEventFactory(BaseEventFactory):
    """专门负责构造“消息事件”的类。"""

    tag_field = "message_type"

    def builders(self) -> Dict[str, Builder]:
        return {
            MessageType.private: self._private,
            MessageType.group: self._group,
        }

    @staticmethod
    def _message_fields(payload: Payload) -> Payload:
        raw_message = payload.get("message")
        if not isinstance(raw_message, (list, str)):
            raise MalformedEventError('field "message" must be a segment list or a string', payload)
        if isinstance(raw_message, list) and not all(
            isinstance(seg, dict) and isinstance(seg.get("data") or {}, dict) for seg in raw_message
        ):
            raise MalformedEventError('field "message" must be a list of {type, data} objects', payload)
        sender = payload.get("sender")
        return {
            "sub_type": _field(payload, "sub_type", str, ""),
            "message_id": _field(payload, "message_id"),
            "user_id": _field(payload, "user_id"),
            "message": Message.parse(raw_message),
            "raw_message": _field(payload, "raw_message", str, ""),
            "font": _field(payload, "font", int, 0),
            "sender": MessageSender.from_dict(sender) if isinstance(sender, dict) else MessageSender(),
        }

    def _private(self, payload: Payload, common: Payload) -> Event:
        return PrivateMessageEvent(
            **common,
            **self._message_fields(payload),
            target_id=_field(payload, "target_id", int, None),
            temp_source=_field(payload, "temp_source", int, None),
        )

    def _group(self, payload: Payload, common: Payload) -> Event:
        anonymous = payload.get("anonymous")
        return GroupMessageEvent(
            **common,
            **self._message_fields(payload),
            group_id=_field(payload, "group_id"),
            anonymous=(
                GroupAnonymous(
                    id=_field(anonymous, "id"),
                    name=_field(anonymous, "name", str, ""),
                    flag=_field(anonymous, "flag", str, ""),
                )
                if isinstance(anonymous, dict)
                else None
            ),
        )


class NoticeEventFactory(BaseEventFactory):
    """专门负责构造“通知事件”的类，notify 类通知再按 sub_type 分一次。"""

    tag_field = "notice_type"

    def builders(self) -> Dict[str, Builder]:
        return {
            NoticeType.group_upload: self._group_upload,
            NoticeType.group_admin: self._group_admin,
            NoticeType.group_decrease: self._group_member_change(GroupDecreaseNoticeEvent),
            NoticeType.group_increase: self._group_member_change(GroupIncreaseNoticeEvent),
            NoticeType.group_ban: self._group_ban,
            NoticeType.friend_add: self._friend_add,
            NoticeType.group_recall: self._group_recall,
            NoticeType.friend_recall: self._friend_recall,
            NoticeType.group_msg_emoji_like: self._group_msg_emoji_like,
            NoticeType.essence: self._essence,
            NoticeType.group_card: self._group_card,
            NoticeType.notify: self._notify,
            NoticeType.bot_offline: self._bot_offline,
        }

    def notify_builders(self) -> Dict[str, Builder]:
        return {
            NotifySubType.poke: self._poke,
            NotifySubType.profile_like: self._profile_like,
            NotifySubType.input_status: self._input_status,
            NotifySubType.lucky_king: self._lucky_king,
            NotifySubType.honor: self._honor,
            NotifySubType.group_name: self._group_name,
            NotifySubType.title: self._title,
        }

    def _notify(self, payload: Payload, common: Payload) -> Event:
        sub_type = payload.get("sub_type")
        builder = self.notify_builders().get(sub_type) if isinstance(sub_type, str) else None
        if builder is None:
            raise UnrecognizedEventError("sub_type", sub_type, payload)
        return builder(payload, common)

    def _group_upload(self, payload: Payload, common: Payload) -> Event:
        file = _dict_field(payload, "file")
        return GroupUploadNoticeEvent(
            **common,
            group_id=_field(payload, "group_id"),
            user_id=_field(payload, "user_id"),
            file=GroupFile(
                id=_field(file, "id", str),
                name=_field(file, "name", str, ""),
                size=_field(file, "size", int, 0),
                busid=_field(file, "busid", int, None),
            ),
        )

    def _group_admin(self, payload: Payload, common: Payload) -> Event:
        return GroupAdminNoticeEvent(
            **common,
            sub_type=_field(payload, "sub_type", str),
            group_id=_field(payload, "group_id"),
            user_id=_field(payload, "user_id"),
        )

    @staticmethod
    def _group_member_change(event_cls: type) -> Builder:
        # 加群和退群的字段完全一样
        def build(payload: Payload, common: Payload) -> Event:
            return event_cls(
                **common,
                sub_type=_field(payload, "sub_type", str),
                group_id=_field(payload, "group_id"),
                operator_id=_field(payload, "operator_id", int, 0),
                user_id=_field(payload, "user_id"),
            )

        return build

    def _group_ban(self, payload: Payload, common: Payload) -> Event:
        return GroupBanNoticeEvent(
            **common,
            sub_type=_field(payload, "sub_type", str),
            group_id=_field(payload, "group_id"),
            operator_id=_field(payload, "operator_id"),
            user_id=_field(payload, "user_id"),
            duration=_field(payload, "duration", int, 0),
        )

    def _friend_add(self, payload: Payload, common: Payload) -> Event:
        return FriendAddNoticeEvent(**common, user_id=_field(payload, "user_id"))

    def _group_recall(self, payload: Payload, common: Payload) -> Event:
        return GroupRecallNoticeEvent(
            **common,
            group_id=_field(payload, "group_id"),
            user_id=_field(payload, "user_id"),
            operator_id=_field(payload, "operator_id"),
            message_id=_field(payload, "message_id"),
        )

    def _friend_recall(self, payload: Payload, common: Payload) -> Event:
        return FriendRecallNoticeEvent(
            **common,
            user_id=_field(payload, "user_id"),
            message_id=_field(payload, "message_id"),
        )

    def _group_msg_emoji_like(self, payload: Payload, common: Payload) -> Event:
        likes = payload.get("likes") or []
        if not isinstance(likes, list) or not all(isinstance(like, dict) for like in likes):
            raise MalformedEventError('field "likes" must be a list of objects', payload)
        return GroupMsgEmojiLikeNoticeEvent(
            **common,
            group_id=_field(payload, "group_id"),
            user_id=_field(payload, "user_id"),
            message_id=_field(payload, "message_id"),
            likes=[
                EmojiLike(emoji_id=_field(like, "emoji_id", str), count=_field(like, "count", int, 1))
                for like in likes
            ],
        )

    def _essence(self, payload: Payload, common: Payload) -> Event:
        return GroupEssenceNoticeEvent(
            **common,
            sub_type=_field(payload, "sub_type", str),
            group_id=_field(payload, "group_id"),
            message_id=_field(payload, "message_id"),
            sender_id=_field(payload, "sender_id"),
            operator_id=_field(payload, "operator_id"),
            user_id=_field(payload, "user_id", int, None),
        )

    def _group_card(self, payload: Payload, common: Payload) -> Event:
        return GroupCardNoticeEvent(
            **common,
            group_id=_field(payload, "group_id"),
            user_id=_field(payload, "user_id"),
            card_new=_field(payload, "card_new", str, ""),
            card_old=_field(payload, "card_old", str, ""),
        )

    def _bot_offline(self, payload: Payload, common: Payload) -> Event:
        return BotOfflineNoticeEvent(
            **common,
            user_id=_field(payload, "user_id"),
            tag=_field(payload, "tag", str, ""),
            message=_field(payload, "message", str, ""),
        )

    def _poke(self, payload: Payload, common: Payload) -> Event:
        # 私聊戳一戳带 sender_id，群聊戳一戳带 group_id
        poke_fields = {
            "user_id": _field(payload, "user_id"),
            "target_id": _field(payload, "target_id"),
            "raw_info": payload.get("raw_info"),
        }
        if payload.get("sender_id") is not None:
            return FriendPokeNoticeEvent(**common, **poke_fields, sender_id=_field(payload, "sender_id"))
        if payload.get("group_id") is not None:
            return GroupPokeNoticeEvent(**common, **poke_fields, group_id=_field(payload, "group_id"))
        raise MalformedEventError("poke notice has neither sender_id nor group_id", payload)

    def _profile_like(self, payload: Payload, common: Payload) -> Event:
        return ProfileLikeNoticeEvent(
            **common,
            operator_id=_field(payload, "operator_id"),
            operator_nick=_field(payload, "operator_nick", str, ""),
            times=_field(payload, "times", int, 1),
        )

    def _input_status(self, payload: Payload, common: Payload) -> Event:
        return InputStatusNoticeEvent(
            **common,
            user_id=_field(payload, "user_id"),
            status_text=_field(payload, "status_text", str, ""),
            event_type=_field(payload, "event_type", int, 0),
            group_id=_field(payload, "group_id", int, None),
        )

    def _lucky_king(self, payload: Payload, common: Payload) -> Event:
        return LuckyKingNoticeEvent(
            **common,
            group_id=_field(payload, "group_id"),
            user_id=_field(payload, "user_id"),
            target_id=_field(payload, "target_id"),
        )

    def _honor(self, payload: Payload, common: Payload) -> Event:
        return HonorNoticeEvent(
            **common,
            group_id=_field(payload, "group_id"),
            user_id=_field(payload, "user_id"),
            honor_type=_field(payload, "honor_type", str),
        )

    def _group_name(self, payload: Payload, common: Payload) -> Event:
        return GroupNameNoticeEvent(
            **common,
            group_id=_field(payload, "group_id"),
            user_id=_field(payload, "user_id"),
            name_new=_field(payload, "name_new", str, ""),
        )

    def _title(self, payload: Payload, common: Payload) -> Event:
        return GroupTitleNoticeEvent(
            **common,
            group_id=_field(payload, "group_id"),
            user_id=_field(payload, "user_id"),
            title=_field(payload, "title", str, ""),
        )


class RequestEventFactory(BaseEventFactory):
    """专门负责构造“请求事件”的类。"""

    tag_field = "request_type"

    def builders(self) -> Dict[str, Builder]:
        return {
            RequestType.friend: self._friend,
            RequestType.group: self._group,
        }

    @staticmethod
    def _request_fields(payload: Payload) -> Payload:
        return {
            "flag": _field(payload, "flag", str),
            "user_id": _field(payload, "user_id"),
            "comment": _field(payload, "comment", str, ""),
        }

    def _friend(self, payload: Payload, common: Payload) -> Event:
        return FriendRequestEvent(**common, **self._request_fields(payload))

    def _group(self, payload: Payload, common: Payload) -> Event:
        return GroupRequestEvent(
            **common,
            **self._request_fields(payload),
            sub_type=_field(payload, "sub_type", str),
            group_id=_field(payload, "group_id"),
        )


class MetaEventFactory(BaseEventFactory):
    """专门负责构造“元事件”的类。"""

    tag_field = "meta_event_type"

    def builders(self) -> Dict[str, Builder]:
        return {
            MetaEventType.lifecycle: self._lifecycle,
            MetaEventType.heartbeat: self._heartbeat,
        }

    def _lifecycle(self, payload: Payload, common: Payload) -> Event:
        return LifecycleMetaEvent(**common, sub_type=_field(payload, "sub_type", str))

    def _heartbeat(self, payload: Payload, common: Payload) -> Event:
        status = _dict_field(payload, "status")
        return HeartbeatMetaEvent(
            **common,
            status=HeartbeatStatus(
                online=status.get("online"),
                good=bool(status.get("good")),
                extra={k: v for k, v in status.items() if k not in ("online", "good")},
            ),
            interval=_field(payload, "interval", int, 0),
        )


EVENT_FACTORIES: Dict[str, BaseEventFactory] = {
    PostType.message: MessageEventFactory(),
    PostType.notice: NoticeEventFactory(),
    PostType.request: RequestEventFactory(),
    PostType.meta_event: MetaEventFactory(),
}


def get_event_factory(post_type: str) -> Optional[BaseEventFactory]:
    return EVENT_FACTORIES.get(post_type)


def decode_event(raw: str | bytes | Payload) -> Optional[Event]:
    """把一帧数据解码成事件.

    不是事件 (比如 API 响应) 时返回 None；不是 JSON 对象时抛 MalformedFrameError；
    标签不认识时抛 UnrecognizedEventError；字段不对时抛 MalformedEventError。
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            payload = json.loads(raw)
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedFrameError(f"received data is not valid JSON: {e}", raw) from e
    else:
        payload = raw
    if not isinstance(payload, dict):
        raise MalformedFrameError("received data is not a JSON object", raw)

    # 这三个字段缺一个就不是事件，按存在判断，time 为 0 也算存在
    if any(payload.get(key) is None for key in ("time", "self_id", "post_type")):
        return None

    post_type = payload["post_type"]
    factory = get_event_factory(post_type) if isinstance(post_type, str) else None
    if factory is None:
        raise UnrecognizedEventError("post_type", post_type, payload)
    return factory.create_event(payload)


def describe_event(event: Event) -> str:
    """获取事件的简化描述，用于日志显示"""
    if isinstance(event, GroupMessageEvent):
        summary = event.summary()
        if len(summary) > 50:
            summary = summary[:50] + "..."
        return f"[群 {event.group_id}] {event.sender.display_name or event.user_id}({event.user_id}): {summary}"
    if isinstance(event, MessageEvent):
        summary = event.summary()
        if len(summary) > 50:
            summary = summary[:50] + "..."
        return f"[私聊] {event.sender.display_name or event.user_id}({event.user_id}): {summary}"
    if isinstance(event, NoticeEvent):
        group_id = getattr(event, "group_id", None)
        where = f" 群 {group_id}" if group_id is not None else ""
        return f"[通知] {event.event_name}{where} 用户 {getattr(event, 'user_id', '-')}"
    if isinstance(event, RequestEvent):
        return f"[请求] {event.event_name} 来自 {event.user_id}: {event.comment}"
    return f"[元事件] {event.event_name}"
