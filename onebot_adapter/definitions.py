# onebot_adapter/definitions.py
# OneBot v11 协议里用到的各种标签常量


class PostType:
    """事件上报类型."""

    message = "message"
    notice = "notice"
    request = "request"
    meta_event = "meta_event"


class MetaEventType:
    """元事件类型."""

    lifecycle = "lifecycle"
    heartbeat = "heartbeat"

    class Lifecycle:
        """生命周期事件子类型."""

        enable = "enable"
        disable = "disable"
        connect = "connect"


class MessageType:
    """消息类型."""

    private = "private"
    group = "group"

    class Private:
        """私聊消息子类型."""

        friend = "friend"
        group = "group"  # 群临时会话
        other = "other"

    class Group:
        """群消息子类型."""

        normal = "normal"
        anonymous = "anonymous"
        notice = "notice"


class NoticeType:
    """通知类型."""

    group_upload = "group_upload"
    group_admin = "group_admin"
    group_decrease = "group_decrease"
    group_increase = "group_increase"
    group_ban = "group_ban"
    friend_add = "friend_add"
    group_recall = "group_recall"
    friend_recall = "friend_recall"
    group_msg_emoji_like = "group_msg_emoji_like"
    essence = "essence"
    group_card = "group_card"
    notify = "notify"
    bot_offline = "bot_offline"


class NotifySubType:
    """notify 通知的子类型."""

    poke = "poke"
    profile_like = "profile_like"
    input_status = "input_status"
    lucky_king = "lucky_king"
    honor = "honor"
    group_name = "group_name"
    title = "title"


class RequestType:
    """请求类型."""

    friend = "friend"
    group = "group"

    class Group:
        """加群请求子类型."""

        add = "add"
        invite = "invite"


class SegType:
    """消息段类型."""

    text = "text"
    face = "face"
    mface = "mface"  # 商城表情
    image = "image"
    record = "record"  # 语音
    video = "video"
    file = "file"
    at = "at"
    rps = "rps"  # 猜拳
    dice = "dice"  # 掷骰子
    shake = "shake"  # 窗口抖动
    poke = "poke"  # 戳一戳
    anonymous = "anonymous"  # 匿名发消息
    share = "share"  # 链接分享
    contact = "contact"  # 推荐好友/群
    location = "location"  # 位置
    music = "music"  # 音乐分享
    reply = "reply"  # 回复
    forward = "forward"  # 合并转发
    node = "node"  # 合并转发节点
    xml = "xml"  # XML 消息
    json = "json"  # JSON 消息
    markdown = "markdown"


class CloseCode:
    """WebSocket 关闭码."""

    NORMAL = 1000
    GOING_AWAY = 1001
    POLICY_VIOLATION = 1008


class ConnectionMode:
    """连接模式：正向时适配器是客户端，反向时适配器是服务端."""

    forward = "forward"
    reverse = "reverse"
