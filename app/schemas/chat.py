"""
app.schemas.chat
~~~~~~~~~~~~~~~~

聊天领域模型：房间、消息、参与者。

字段在 Python 侧使用 snake_case，序列化到客户端时（``by_alias=True``）
统一转为 camelCase，与前端协议保持一致。
"""
from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_NICKNAME: str = "Anonymous"


def utcnow() -> datetime:
    """当前 UTC 时间（带时区）。"""
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """序列化为 camelCase、同时允许按字段名构造的基类。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Room(CamelModel):
    """一个临时聊天房间。

    Attributes:
        id: 房间短码，创建后不可变。
        created_at: 创建时间。
        last_activity_at: 最近一次活动（发消息 / 加入 / 离开）时间。
        participant_count: 由参与者集合派生，仅供展示。
        password_hash: 可选的房间密码摘要，永不下发给客户端。
    """

    id: str
    created_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)
    participant_count: int = 0
    password_hash: str | None = Field(default=None, exclude=True)

    @property
    def requires_password(self) -> bool:
        return self.password_hash is not None


class Message(CamelModel):
    """一条聊天消息，创建后不可变，按追加顺序排列。"""

    id: str
    room_id: str
    sender_id: str | None = None
    sender_nickname: str = DEFAULT_NICKNAME
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class Participant(CamelModel):
    """房间内的一个在线身份，对应一条「连接 ↔ 房间」绑定。

    ``connection_id`` 标识绑定的传输连接，只在服务端使用。
    """

    id: str
    nickname: str = DEFAULT_NICKNAME
    connection_id: str = Field(exclude=True)
    joined_at: datetime = Field(default_factory=utcnow)
