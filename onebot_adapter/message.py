# onebot_adapter/message.py
"""OneBot v11 消息段模型.

一条消息是有序的消息段序列，每个消息段对应线上的 ``{"type": ..., "data": {...}}``。
这里负责三种表示之间的互相转换：

* 线上的数组格式 (``to_dict`` / ``MessageSegment.from_dict``)
* 旧式的 CQ 码文本 (``cq`` / ``Message.from_cq``)
* 给人看的摘要 (``summary``)

不认识的消息段类型会变成 ``Unsupported``，原样保存类型和数据，转发时原样发回去。
"""

import json
import re
from collections.abc import Iterable, Iterator
from dataclasses import MISSING, dataclass, field, fields
from typing import Any, ClassVar

from .definitions import SegType
from .exceptions import MalformedEventError
from .logger import logger

# --- CQ 码转义 ---

# 转义时 & 必须第一个处理，反转义时 &amp; 必须最后处理，不然会重复转义
_ESCAPE_ORDER = (("&", "&amp;"), ("[", "&#91;"), ("]", "&#93;"), (",", "&#44;"))

_CQ_CODE_RE = re.compile(r"\[CQ:([^,\[\]]+)((?:,[^,=\[\]]+=[^,\[\]]*)*),?\]")


def escape(text: str) -> str:
    """转义 CQ 码参数里的特殊字符."""
    for char, entity in _ESCAPE_ORDER:
        text = text.replace(char, entity)
    return text


def unescape(text: str) -> str:
    """反转义 CQ 码参数里的特殊字符."""
    for char, entity in reversed(_ESCAPE_ORDER):
        text = text.replace(entity, char)
    return text


def _cq_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return escape(value)
    # dict / list 之类的结构化数据用紧凑 JSON 表示，保证能解析回来
    return escape(json.dumps(value, ensure_ascii=False, separators=(",", ":")))


# --- 字段声明 ---


def wire_field(
    *, wire: str | None = None, kind: str = "str", optional: bool = True
) -> Any:
    """声明消息段字段.

    wire: 线上的字段名，和属性名一样时不用写。
    kind: str / int / float / bool / json / message，决定解码时怎么还原类型。
    """
    metadata = {"wire": wire, "kind": kind}
    if optional:
        return field(default=None, metadata=metadata)
    return field(metadata=metadata)


def _decode_value(value: Any, kind: str) -> Any:
    # CQ 码里解析出来的值全是字符串，这里按声明的类型还原
    try:
        if kind == "int":
            return value if isinstance(value, int) else int(value)
        if kind == "float":
            return value if isinstance(value, float) else float(value)
        if kind == "bool":
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes")
            return bool(value)
        if kind == "json":
            return json.loads(value) if isinstance(value, str) else value
        if kind == "message":
            return Message.parse(value)
    except (TypeError, ValueError):
        return value
    return value if isinstance(value, str) else str(value)


def _encode_value(value: Any, kind: str) -> Any:
    if kind == "message" and isinstance(value, Message):
        return value.to_list()
    return value


# --- 消息段 ---


@dataclass
class MessageSegment:
    """所有消息段的基类."""

    type: ClassVar[str] = ""

    @classmethod
    def _wire_fields(cls) -> Iterator[tuple[str, str, str, bool]]:
        for f in fields(cls):
            required = f.default is MISSING and f.default_factory is MISSING
            yield f.name, f.metadata.get("wire") or f.name, f.metadata.get(
                "kind", "str"
            ), required

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> "MessageSegment":
        """从线上的 data 字典构造，缺少必填字段时退化成 Unsupported."""
        kwargs: dict[str, Any] = {}
        for name, wire, kind, required in cls._wire_fields():
            value = data.get(wire)
            if value is None:
                if required:
                    logger.debug(f"消息段 {cls.type} 缺少必填字段 {wire}，按不支持的消息段保存")
                    return Unsupported(cls.type, dict(data))
                continue
            kwargs[name] = _decode_value(value, kind)
        return cls(**kwargs)

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> "MessageSegment":
        return parse_segment(raw)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for name, wire, kind, _ in self._wire_fields():
            value = getattr(self, name)
            if value is None:
                continue
            data[wire] = _encode_value(value, kind)
        return {"type": self.type, "data": data}

    def cq(self) -> str:
        data = self.to_dict()["data"]
        params = [f"CQ:{self.type}"]
        params.extend(f"{key}={_cq_value(value)}" for key, value in data.items())
        return f"[{','.join(params)}]"

    def summary(self) -> str:
        return f"[{self.type}]"

    def is_text(self) -> bool:
        return False

    def __str__(self) -> str:
        return self.cq()

    # 常用消息段的快捷构造

    @staticmethod
    def text(text: str) -> "Text":
        return Text(text)

    @staticmethod
    def at(target: str | int) -> "At":
        return At(str(target))

    @staticmethod
    def at_all() -> "At":
        return At("all")

    @staticmethod
    def reply(message_id: str | int) -> "Reply":
        return Reply(str(message_id))

    @staticmethod
    def face(face_id: int) -> "Face":
        return Face(int(face_id))

    @staticmethod
    def image(file: str, caption: str | None = None) -> "Image":
        return Image(file, caption=caption)

    @staticmethod
    def record(file: str) -> "Record":
        return Record(file)


@dataclass
class Unsupported(MessageSegment):
    """不认识的消息段，原样保存类型和数据."""

    original_type: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> str:  # type: ignore[override]
        return self.original_type

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.original_type, "data": dict(self.data)}

    def summary(self) -> str:
        return f"[不支持的消息段类型: {self.original_type}]"


@dataclass
class Text(MessageSegment):
    type: ClassVar[str] = SegType.text

    text: str = wire_field(optional=False)

    def cq(self) -> str:
        return escape(self.text)

    def summary(self) -> str:
        return self.text

    def is_text(self) -> bool:
        return True


@dataclass
class Face(MessageSegment):
    type: ClassVar[str] = SegType.face

    id: int = wire_field(kind="int", optional=False)
    raw: dict[str, Any] | None = wire_field(kind="json")
    # NapCat 这两个字段在线上就是驼峰
    result_id: str | None = wire_field(wire="resultId")
    chain_count: int | None = wire_field(wire="chainCount", kind="int")

    def summary(self) -> str:
        return f"[表情#{self.id}]"


@dataclass
class MFace(MessageSegment):
    """商城表情，一般只用于发送，接收时会变成图片."""

    type: ClassVar[str] = SegType.mface

    emoji_id: str = wire_field(optional=False)
    emoji_package_id: str = wire_field(optional=False)
    key: str | None = wire_field()
    caption: str | None = wire_field(wire="summary")

    def summary(self) -> str:
        return self.caption or f"[商城表情#{self.emoji_id}]"


@dataclass
class Image(MessageSegment):
    type: ClassVar[str] = SegType.image

    file: str = wire_field(optional=False)
    url: str | None = wire_field()
    caption: str | None = wire_field(wire="summary")
    sub_type: int | None = wire_field(kind="int")
    file_size: int | None = wire_field(kind="int")
    key: str | None = wire_field()
    emoji_id: str | None = wire_field()
    emoji_package_id: str | None = wire_field()

    def summary(self) -> str:
        return self.caption or f"[图片#{self.file}]"

    def is_mface(self) -> bool:
        return self.emoji_id is not None and self.emoji_package_id is not None


@dataclass
class Record(MessageSegment):
    """语音."""

    type: ClassVar[str] = SegType.record

    file: str = wire_field(optional=False)
    url: str | None = wire_field()
    magic: bool | None = wire_field(kind="bool")
    path: str | None = wire_field()
    file_size: int | None = wire_field(kind="int")

    def summary(self) -> str:
        return "[语音]"


@dataclass
class Video(MessageSegment):
    type: ClassVar[str] = SegType.video

    file: str = wire_field(optional=False)
    url: str | None = wire_field()
    thumb: str | None = wire_field()
    path: str | None = wire_field()
    file_size: int | None = wire_field(kind="int")

    def summary(self) -> str:
        return "[视频]"


@dataclass
class File(MessageSegment):
    type: ClassVar[str] = SegType.file

    file: str = wire_field(optional=False)
    name: str | None = wire_field()
    url: str | None = wire_field()
    path: str | None = wire_field()
    file_id: str | None = wire_field()
    file_size: int | None = wire_field(kind="int")

    def summary(self) -> str:
        return f"[文件#{self.name or self.file}]"


@dataclass
class At(MessageSegment):
    """@某人，target 为 "all" 时是 @全体成员."""

    type: ClassVar[str] = SegType.at

    target: str = wire_field(wire="qq", optional=False)
    name: str | None = wire_field()

    def summary(self) -> str:
        return f"@{self.target}"

    def is_all(self) -> bool:
        return self.target == "all"


@dataclass
class Rps(MessageSegment):
    """猜拳。结果 1 石头，2 剪刀，3 布."""

    type: ClassVar[str] = SegType.rps

    result: str | None = wire_field()

    def summary(self) -> str:
        return f"[猜拳#{self.result}]"


@dataclass
class Dice(MessageSegment):
    type: ClassVar[str] = SegType.dice

    result: str | None = wire_field()

    def summary(self) -> str:
        return f"[骰子#{self.result}]"


@dataclass
class Shake(MessageSegment):
    type: ClassVar[str] = SegType.shake

    def summary(self) -> str:
        return "[窗口抖动]"


@dataclass
class Poke(MessageSegment):
    type: ClassVar[str] = SegType.poke

    poke_type: str = wire_field(wire="type", optional=False)
    poke_id: str = wire_field(wire="id", optional=False)
    name: str | None = wire_field()

    def summary(self) -> str:
        return f"[戳一戳#{self.poke_type}]"


@dataclass
class Anonymous(MessageSegment):
    type: ClassVar[str] = SegType.anonymous

    ignore: bool | None = wire_field(kind="bool")

    def summary(self) -> str:
        return "[匿名]"


@dataclass
class Share(MessageSegment):
    type: ClassVar[str] = SegType.share

    url: str = wire_field(optional=False)
    title: str = wire_field(optional=False)
    content: str | None = wire_field()
    image: str | None = wire_field()

    def summary(self) -> str:
        return f"[分享#{self.title}]"


@dataclass
class Contact(MessageSegment):
    """推荐好友 (qq) 或者群 (group)."""

    type: ClassVar[str] = SegType.contact

    contact_type: str = wire_field(wire="type", optional=False)
    contact_id: str = wire_field(wire="id", optional=False)

    def summary(self) -> str:
        return f"[推荐#{self.contact_type}:{self.contact_id}]"


@dataclass
class Location(MessageSegment):
    type: ClassVar[str] = SegType.location

    lat: float = wire_field(kind="float", optional=False)
    lon: float = wire_field(kind="float", optional=False)
    title: str | None = wire_field()
    content: str | None = wire_field()

    def summary(self) -> str:
        return f"[位置#{self.title or f'{self.lat},{self.lon}'}]"


@dataclass
class Music(MessageSegment):
    """音乐分享。music_type 为 custom 时用 url/audio/title，否则用 music_id."""

    type: ClassVar[str] = SegType.music

    music_type: str = wire_field(wire="type", optional=False)
    music_id: str | None = wire_field(wire="id")
    url: str | None = wire_field()
    audio: str | None = wire_field()
    title: str | None = wire_field()
    content: str | None = wire_field()
    image: str | None = wire_field()

    def summary(self) -> str:
        return f"[音乐#{self.title or self.music_type}]"


@dataclass
class Reply(MessageSegment):
    type: ClassVar[str] = SegType.reply

    message_id: str = wire_field(wire="id", optional=False)

    def summary(self) -> str:
        return f"[回复#{self.message_id}]"


@dataclass
class Forward(MessageSegment):
    type: ClassVar[str] = SegType.forward

    forward_id: str = wire_field(wire="id", optional=False)
    content: list[Any] | None = wire_field(kind="json")

    def summary(self) -> str:
        return f"[合并转发#{self.forward_id}]"


@dataclass
class Node(MessageSegment):
    """合并转发节点：引用已有消息用 node_id，伪造消息用 user_id/nickname/content."""

    type: ClassVar[str] = SegType.node

    node_id: str | None = wire_field(wire="id")
    user_id: str | None = wire_field()
    nickname: str | None = wire_field()
    content: "Message | None" = wire_field(kind="message")

    def summary(self) -> str:
        if self.node_id is not None:
            return f"[转发节点#{self.node_id}]"
        return f"[转发节点#{self.nickname}: {self.content.summary() if self.content else ''}]"


@dataclass
class Xml(MessageSegment):
    type: ClassVar[str] = SegType.xml

    data: str = wire_field(optional=False)

    def summary(self) -> str:
        return "[XML卡片]"


@dataclass
class Json(MessageSegment):
    type: ClassVar[str] = SegType.json

    data: str = wire_field(optional=False)

    def summary(self) -> str:
        return "[JSON卡片]"


@dataclass
class Markdown(MessageSegment):
    type: ClassVar[str] = SegType.markdown

    content: str = wire_field(optional=False)

    def summary(self) -> str:
        return "[Markdown]"


SEGMENT_TYPES: dict[str, type[MessageSegment]] = {
    seg_cls.type: seg_cls
    for seg_cls in (
        Text,
        Face,
        MFace,
        Image,
        Record,
        Video,
        File,
        At,
        Rps,
        Dice,
        Shake,
        Poke,
        Anonymous,
        Share,
        Contact,
        Location,
        Music,
        Reply,
        Forward,
        Node,
        Xml,
        Json,
        Markdown,
    )
}


def parse_segment(raw: dict[str, Any]) -> MessageSegment:
    """把线上的 {type, data} 转换成具体的消息段，不认识的类型返回 Unsupported.

    消息段本身或者它的 data 不是对象时抛 MalformedEventError。
    """
    if not isinstance(raw, dict):
        raise MalformedEventError(f"message segment must be an object, got {raw!r}")
    seg_type = str(raw.get("type", ""))
    seg_data = raw.get("data") or {}
    if not isinstance(seg_data, dict):
        raise MalformedEventError(f'data of message segment "{seg_type}" must be an object, got {seg_data!r}')
    seg_cls = SEGMENT_TYPES.get(seg_type)
    if seg_cls is None:
        logger.debug(f"不认识的消息段类型: {seg_type}，数据: {seg_data}")
        return Unsupported(seg_type, dict(seg_data))
    return seg_cls.from_data(seg_data)


# --- 消息 ---


class Message:
    """有序的消息段序列."""

    def __init__(
        self,
        segments: "str | MessageSegment | Iterable[MessageSegment] | None" = None,
    ) -> None:
        self._segments: list[MessageSegment] = []
        if segments is None:
            return
        if isinstance(segments, str):
            self._segments.append(Text(segments))
        elif isinstance(segments, MessageSegment):
            self._segments.append(segments)
        else:
            self._segments.extend(segments)

    @classmethod
    def from_list(cls, raw: Iterable[dict[str, Any]]) -> "Message":
        return cls(parse_segment(seg) for seg in raw)

    @classmethod
    def from_cq(cls, text: str) -> "Message":
        """解析 CQ 码文本，是 cq() 的逆操作.

        CQ 码里文本没有边界：空的 Text 会消失，相邻的 Text 会合并成一个，
        所以只有文本段非空且互不相邻的消息才能原样解析回来。
        """
        message = cls()
        cursor = 0
        for match in _CQ_CODE_RE.finditer(text):
            if match.start() > cursor:
                message.append(Text(unescape(text[cursor : match.start()])))
            data: dict[str, str] = {}
            for param in match.group(2).split(",")[1:]:
                key, _, value = param.partition("=")
                data[key] = unescape(value)
            message.append(parse_segment({"type": match.group(1), "data": data}))
            cursor = match.end()
        if cursor < len(text):
            message.append(Text(unescape(text[cursor:])))
        return message

    @classmethod
    def parse(cls, value: Any) -> "Message":
        """线上的 message 字段可能是数组，也可能是 CQ 码字符串."""
        if isinstance(value, Message):
            return value
        if isinstance(value, str):
            try:
                loaded = json.loads(value)
            except ValueError:
                return cls.from_cq(value)
            if isinstance(loaded, list):
                return cls.from_list(loaded)
            return cls.from_cq(value)
        if isinstance(value, dict):
            return cls(parse_segment(value))
        return cls.from_list(value or [])

    def to_list(self) -> list[dict[str, Any]]:
        return [seg.to_dict() for seg in self._segments]

    def cq(self) -> str:
        return "".join(seg.cq() for seg in self._segments)

    def summary(self) -> str:
        return " ".join(seg.summary() for seg in self._segments)

    def plain_text(self) -> str:
        """只保留文本消息段."""
        return "".join(seg.text for seg in self._segments if isinstance(seg, Text))

    def append(self, segment: "MessageSegment | str") -> "Message":
        self._segments.append(Text(segment) if isinstance(segment, str) else segment)
        return self

    def extend(self, segments: "Iterable[MessageSegment | str]") -> "Message":
        for seg in segments:
            self.append(seg)
        return self

    @property
    def segments(self) -> tuple[MessageSegment, ...]:
        return tuple(self._segments)

    def __iter__(self) -> Iterator[MessageSegment]:
        return iter(self._segments)

    def __len__(self) -> int:
        return len(self._segments)

    def __getitem__(self, index: Any) -> Any:
        if isinstance(index, slice):
            return Message(self._segments[index])
        return self._segments[index]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Message):
            return self._segments == other._segments
        if isinstance(other, list):
            return self._segments == other
        return NotImplemented

    def __add__(self, other: "Message | MessageSegment | str") -> "Message":
        result = Message(self._segments)
        if isinstance(other, (MessageSegment, str)):
            return result.append(other)
        return result.extend(other)

    def __str__(self) -> str:
        return self.cq()

    def __repr__(self) -> str:
        return f"Message({self._segments!r})"
