# onebot_adapter/events.py
"""OneBot v11 事件记录.

每个事件族 (消息/通知/请求/元事件) 一个基类，具体事件直接继承族基类，不再往下分层。
几个事件共用的数据 (发送者、匿名信息、群文件等) 作为字段放进去，而不是靠继承。
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar

from .definitions import MetaEventType, MessageType, NoticeType, NotifySubType, PostType, RequestType
from .message import Message

# --- 共用的数据结构 ---


@dataclass(kw_only=True)
class MessageSender:
    """消息发送者信息，群消息里 card/role/title 才有意义."""

    user_id: int | None = None
    nickname: str | None = None
    card: str | None = None
    sex: str | None = None
    age: int | None = None
    area: str | None = None
    level: str | None = None
    role: str | None = None
    title: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessageSender":
        return cls(
            user_id=_optional_int(data.get("user_id")),
            nickname=data.get("nickname"),
            card=data.get("card"),
            sex=data.get("sex"),
            age=_optional_int(data.get("age")),
            area=data.get("area"),
            level=None if data.get("level") is None else str(data.get("level")),
            role=data.get("role"),
            title=data.get("title"),
        )

    @property
    def display_name(self) -> str:
        return self.card or self.nickname or str(self.user_id or "")


@dataclass(kw_only=True)
class GroupAnonymous:
    id: int
    name: str
    flag: str


@dataclass(kw_only=True)
class GroupFile:
    id: str
    name: str
    size: int
    busid: int | None = None


@dataclass(kw_only=True)
class EmojiLike:
    emoji_id: str
    count: int


@dataclass(kw_only=True)
class HeartbeatStatus:
    """心跳里带的状态，除了 online/good 以外的字段原样放在 extra 里."""

    online: bool | None
    good: bool
    extra: dict[str, Any] = field(default_factory=dict)


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# --- 事件基类 ---


@dataclass(kw_only=True)
class Event:
    post_type: ClassVar[str] = ""
    # 第二级标签：message_type / notice_type / request_type / meta_event_type 的值
    detail_type: ClassVar[str] = ""

    time: int
    self_id: str

    @property
    def event_name(self) -> str:
        """形如 notice.notify.poke 的事件名，主要用来打日志."""
        parts = [self.post_type, self.detail_type]
        sub_type = getattr(self, "sub_type", None)
        if sub_type:
            parts.append(str(sub_type))
        return ".".join(parts)


# --- 消息事件 ---


@dataclass(kw_only=True)
class MessageEvent(Event):
    post_type: ClassVar[str] = PostType.message

    sub_type: str = ""
    message_id: int
    user_id: int
    message: Message
    raw_message: str = ""
    font: int = 0
    sender: MessageSender = field(default_factory=MessageSender)

    def plain_text(self) -> str:
        return self.message.plain_text()

    def summary(self) -> str:
        return self.message.summary()


@dataclass(kw_only=True)
class PrivateMessageEvent(MessageEvent):
    detail_type: ClassVar[str] = MessageType.private

    target_id: int | None = None
    temp_source: int | None = None


@dataclass(kw_only=True)
class GroupMessageEvent(MessageEvent):
    detail_type: ClassVar[str] = MessageType.group

    group_id: int
    anonymous: GroupAnonymous | None = None

    def is_anonymous(self) -> bool:
        return self.anonymous is not None


# --- 通知事件 ---


@dataclass(kw_only=True)
class NoticeEvent(Event):
    post_type: ClassVar[str] = PostType.notice


@dataclass(kw_only=True)
class GroupUploadNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.group_upload

    group_id: int
    user_id: int
    file: GroupFile


@dataclass(kw_only=True)
class GroupAdminNoticeEvent(NoticeEvent):
    """sub_type: set / unset."""

    detail_type: ClassVar[str] = NoticeType.group_admin

    sub_type: str
    group_id: int
    user_id: int


@dataclass(kw_only=True)
class GroupDecreaseNoticeEvent(NoticeEvent):
    """sub_type: leave / kick / kick_me."""

    detail_type: ClassVar[str] = NoticeType.group_decrease

    sub_type: str
    group_id: int
    operator_id: int
    user_id: int


@dataclass(kw_only=True)
class GroupIncreaseNoticeEvent(NoticeEvent):
    """sub_type: approve / invite."""

    detail_type: ClassVar[str] = NoticeType.group_increase

    sub_type: str
    group_id: int
    operator_id: int
    user_id: int


@dataclass(kw_only=True)
class GroupBanNoticeEvent(NoticeEvent):
    """sub_type: ban / lift_ban，duration 单位是秒."""

    detail_type: ClassVar[str] = NoticeType.group_ban

    sub_type: str
    group_id: int
    operator_id: int
    user_id: int
    duration: int


@dataclass(kw_only=True)
class FriendAddNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.friend_add

    user_id: int


@dataclass(kw_only=True)
class GroupRecallNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.group_recall

    group_id: int
    user_id: int
    operator_id: int
    message_id: int


@dataclass(kw_only=True)
class FriendRecallNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.friend_recall

    user_id: int
    message_id: int


@dataclass(kw_only=True)
class GroupMsgEmojiLikeNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.group_msg_emoji_like

    group_id: int
    user_id: int
    message_id: int
    likes: list[EmojiLike] = field(default_factory=list)


@dataclass(kw_only=True)
class GroupEssenceNoticeEvent(NoticeEvent):
    """sub_type: add / delete."""

    detail_type: ClassVar[str] = NoticeType.essence

    sub_type: str
    group_id: int
    message_id: int
    sender_id: int
    operator_id: int
    user_id: int | None = None


@dataclass(kw_only=True)
class GroupCardNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.group_card

    group_id: int
    user_id: int
    card_new: str = ""
    card_old: str = ""


@dataclass(kw_only=True)
class BotOfflineNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.bot_offline

    user_id: int
    tag: str = ""
    message: str = ""


# notify 类通知，sub_type 是第三级标签


@dataclass(kw_only=True)
class FriendPokeNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.notify
    sub_type: ClassVar[str] = NotifySubType.poke

    user_id: int
    target_id: int
    sender_id: int
    raw_info: Any = None


@dataclass(kw_only=True)
class GroupPokeNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.notify
    sub_type: ClassVar[str] = NotifySubType.poke

    user_id: int
    target_id: int
    group_id: int
    raw_info: Any = None


@dataclass(kw_only=True)
class ProfileLikeNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.notify
    sub_type: ClassVar[str] = NotifySubType.profile_like

    operator_id: int
    operator_nick: str = ""
    times: int = 1


@dataclass(kw_only=True)
class InputStatusNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.notify
    sub_type: ClassVar[str] = NotifySubType.input_status

    user_id: int
    status_text: str = ""
    event_type: int = 0
    group_id: int | None = None


@dataclass(kw_only=True)
class LuckyKingNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.notify
    sub_type: ClassVar[str] = NotifySubType.lucky_king

    group_id: int
    user_id: int
    target_id: int


@dataclass(kw_only=True)
class HonorNoticeEvent(NoticeEvent):
    """honor_type: talkative / performer / emotion 等."""

    detail_type: ClassVar[str] = NoticeType.notify
    sub_type: ClassVar[str] = NotifySubType.honor

    group_id: int
    user_id: int
    honor_type: str


@dataclass(kw_only=True)
class GroupNameNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.notify
    sub_type: ClassVar[str] = NotifySubType.group_name

    group_id: int
    user_id: int
    name_new: str = ""


@dataclass(kw_only=True)
class GroupTitleNoticeEvent(NoticeEvent):
    detail_type: ClassVar[str] = NoticeType.notify
    sub_type: ClassVar[str] = NotifySubType.title

    group_id: int
    user_id: int
    title: str = ""


# --- 请求事件 ---


@dataclass(kw_only=True)
class RequestEvent(Event):
    """flag 是处理请求时要原样传回去的令牌."""

    post_type: ClassVar[str] = PostType.request

    flag: str
    user_id: int
    comment: str = ""


@dataclass(kw_only=True)
class FriendRequestEvent(RequestEvent):
    detail_type: ClassVar[str] = RequestType.friend


@dataclass(kw_only=True)
class GroupRequestEvent(RequestEvent):
    """sub_type: add (加群) / invite (邀请机器人入群)."""

    detail_type: ClassVar[str] = RequestType.group

    sub_type: str
    group_id: int


# --- 元事件 ---


@dataclass(kw_only=True)
class MetaEvent(Event):
    post_type: ClassVar[str] = PostType.meta_event


@dataclass(kw_only=True)
class LifecycleMetaEvent(MetaEvent):
    detail_type: ClassVar[str] = MetaEventType.lifecycle

    sub_type: str

    def is_connect(self) -> bool:
        return self.sub_type == MetaEventType.Lifecycle.connect


@dataclass(kw_only=True)
class HeartbeatMetaEvent(MetaEvent):
    """interval 单位是毫秒."""

    detail_type: ClassVar[str] = MetaEventType.heartbeat

    status: HeartbeatStatus
    interval: int
