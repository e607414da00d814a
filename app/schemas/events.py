"""
app.schemas.events
~~~~~~~~~~~~~~~~~~

WebSocket 协议的入站 / 出站事件定义。

入站事件是以 ``type`` 为判别字段的封闭联合类型，在边界处一次性校验：
无法解析的 JSON、未知的 ``type``、字段类型错误统一转换为
:class:`~app.core.exceptions.ProtocolError`。

出站事件统一为 ``{"type": ..., "data"?: ..., "error"?: ...}``，
通过本模块的构造函数生成，保证负载结构一致。
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from app.core.exceptions import ProtocolError
from app.schemas.chat import CamelModel, Message, Participant

# ── 入站事件 ──────────────────────────────────────────────────────────


class JoinRoomEvent(CamelModel):
    type: Literal["join_room"]
    room_id: str | None = None
    nickname: str | None = None
    password: str | None = None


class LeaveRoomEvent(CamelModel):
    type: Literal["leave_room"]
    room_id: str | None = None


class SendMessageEvent(CamelModel):
    type: Literal["send_message"]
    message: str | None = None


class TypingStartEvent(CamelModel):
    type: Literal["typing_start"]


class TypingStopEvent(CamelModel):
    type: Literal["typing_stop"]


class MessageReadEvent(CamelModel):
    type: Literal["message_read"]
    message_id: str | None = None


InboundEvent = Annotated[
    Union[
        JoinRoomEvent,
        LeaveRoomEvent,
        SendMessageEvent,
        TypingStartEvent,
        TypingStopEvent,
        MessageReadEvent,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def parse_inbound(frame: str | bytes) -> InboundEvent:
    """把一帧原始文本解析为入站事件。

    Raises:
        ProtocolError: 帧不是合法 JSON 对象，或不符合任何已知事件。
    """
    try:
        return _inbound_adapter.validate_json(frame)
    except ValidationError as e:
        raise ProtocolError() from e


# ── 出站事件 ──────────────────────────────────────────────────────────

OutboundType = Literal[
    "room_joined",
    "participant_update",
    "new_message",
    "typing_update",
    "room_destroyed",
    "error",
    "message_read",
]


class OutboundEvent(BaseModel):
    """下发给客户端的一帧。``data`` 已是可直接 JSON 序列化的结构。"""

    type: OutboundType
    data: dict[str, Any] | None = None
    error: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class ClientMessage(Message):
    """``new_message`` 负载：消息本体 + 客户端用于回执展示的空集合。"""

    read_by: list[str] = Field(default_factory=list)
    delivered_to: list[str] = Field(default_factory=list)


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def room_joined(room_id: str, participant: Participant, messages: list[Message]) -> OutboundEvent:
    return OutboundEvent(
        type="room_joined",
        data={
            "roomId": room_id,
            "participant": _dump(participant),
            "messages": [_dump(m) for m in messages],
        },
    )


def participant_update(participants: list[Participant]) -> OutboundEvent:
    return OutboundEvent(
        type="participant_update",
        data={
            "participants": [_dump(p) for p in participants],
            "count": len(participants),
        },
    )


def new_message(message: Message) -> OutboundEvent:
    payload = ClientMessage(**message.model_dump())
    return OutboundEvent(type="new_message", data=_dump(payload))


def typing_update(participant: Participant, is_typing: bool) -> OutboundEvent:
    return OutboundEvent(
        type="typing_update",
        data={
            "userId": participant.id,
            "nickname": participant.nickname,
            "isTyping": is_typing,
        },
    )


def message_read(message_id: str, reader: Participant) -> OutboundEvent:
    return OutboundEvent(
        type="message_read",
        data={
            "messageId": message_id,
            "readerId": reader.id,
            "readerNickname": reader.nickname,
        },
    )


def room_destroyed(room_id: str, reason: Literal["destroyed", "expired"] = "destroyed") -> OutboundEvent:
    return OutboundEvent(type="room_destroyed", data={"roomId": room_id, "reason": reason})


def error(message: str) -> OutboundEvent:
    return OutboundEvent(type="error", error=message)
