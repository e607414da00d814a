"""
app.schemas.rooms
~~~~~~~~~~~~~~~~~

房间 REST 接口的请求/响应模型。
"""
from __future__ import annotations

from datetime import datetime

from pydantic import Field

from app.schemas.chat import CamelModel


class CreateRoomRequest(CamelModel):
    """创建房间请求体（可省略）。"""

    password: str | None = Field(
        default=None,
        min_length=1,
        max_length=128,
        description="可选的房间密码，设置后加入房间需提供",
    )


class CreateRoomResponse(CamelModel):
    room_id: str = Field(..., description="房间短码")
    created: bool = True


class RoomSummary(CamelModel):
    id: str
    created_at: datetime
    participant_count: int
    requires_password: bool = False


class MessageSummary(CamelModel):
    id: str
    content: str
    sender_nickname: str
    sender_id: str | None = None
    timestamp: datetime


class RoomDetailResponse(CamelModel):
    room: RoomSummary
    messages: list[MessageSummary]


class DestroyRoomResponse(CamelModel):
    destroyed: bool = True


class ErrorResponse(CamelModel):
    error: str
