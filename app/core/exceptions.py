"""
app.core.exceptions
~~~~~~~~~~~~~~~~~~~

聊天服务的领域异常。

``message`` 是可以直接返回给客户端的文本（WebSocket ``error`` 帧 /
HTTP ``{"error": ...}``），不包含内部细节。
"""
from __future__ import annotations


class ChatError(Exception):
    """所有领域异常的基类。"""

    default_message: str = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ProtocolError(ChatError):
    """入站帧无法解析，或 ``type`` 不在协议内。"""

    default_message = "Invalid message format"


class RoomNotFoundError(ChatError):
    """目标房间不存在（或已被销毁）。"""

    default_message = "Room not found"

    def __init__(self, room_id: str | None = None, message: str | None = None) -> None:
        self.room_id = room_id
        super().__init__(message)


class RoomAlreadyExistsError(ChatError):
    """房间短码冲突。"""

    default_message = "Room already exists"

    def __init__(self, room_id: str) -> None:
        self.room_id = room_id
        super().__init__()


class RoomAccessDeniedError(ChatError):
    """房间设置了密码且校验未通过。"""

    default_message = "Invalid room password"


class MessageValidationError(ChatError):
    """消息内容不合法（空白 / 超长）。"""

    default_message = "Invalid message"
