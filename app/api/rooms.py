"""
app.api.rooms
~~~~~~~~~~~~~

房间 REST 接口 —— 创建 / 查询 / 销毁。

路由前缀 ``/api``，房间不存在时统一返回 404 ``{"error": "Room not found"}``
（由 ``app.main`` 中注册的异常处理器转换）。

端点:
  - ``POST   /rooms``            → 创建房间（可选密码，按 IP 限流）
  - ``GET    /rooms/{room_id}``  → 房间详情 + 消息历史
  - ``DELETE /rooms/{room_id}``  → 通知在线连接后销毁房间
"""
# 注意：本模块不使用 ``from __future__ import annotations``，
# slowapi 的装饰器会让 FastAPI 无法解析字符串形式的参数注解。

from fastapi import APIRouter, Body, Depends, Request

from app.api.deps import get_chat_system
from app.core.config import settings
from app.core.rate_limit import limiter
from app.schemas.rooms import (
    CreateRoomRequest,
    CreateRoomResponse,
    DestroyRoomResponse,
    ErrorResponse,
    MessageSummary,
    RoomDetailResponse,
    RoomSummary,
)
from app.services.chat_system import ChatSystem

router: APIRouter = APIRouter()

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "房间不存在"}}


@router.post(
    "/rooms",
    summary="创建房间",
    response_model=CreateRoomResponse,
)
@limiter.limit(settings.ROOM_CREATE_RATE_LIMIT)
async def create_room(
    request: Request,
    body: CreateRoomRequest | None = Body(default=None),
    system: ChatSystem = Depends(get_chat_system),
) -> CreateRoomResponse:
    """创建一个新的临时房间，返回房间短码。

    请求体可省略；提供 ``password`` 时，加入该房间需要携带相同密码。
    """
    room = await system.create_room(password=body.password if body else None)
    return CreateRoomResponse(room_id=room.id, created=True)


@router.get(
    "/rooms/{room_id}",
    summary="获取房间详情",
    response_model=RoomDetailResponse,
    responses=_NOT_FOUND,
)
async def get_room(room_id: str, system: ChatSystem = Depends(get_chat_system)) -> RoomDetailResponse:
    """返回房间元数据（在线人数等）和完整消息历史。

    Args:
        room_id: 房间短码。
    """
    room, messages = await system.get_room_detail(room_id)
    return RoomDetailResponse(
        room=RoomSummary(
            id=room.id,
            created_at=room.created_at,
            participant_count=room.participant_count,
            requires_password=room.requires_password,
        ),
        messages=[
            MessageSummary(
                id=m.id,
                content=m.content,
                sender_nickname=m.sender_nickname,
                sender_id=m.sender_id,
                timestamp=m.timestamp,
            )
            for m in messages
        ],
    )


@router.delete(
    "/rooms/{room_id}",
    summary="销毁房间",
    response_model=DestroyRoomResponse,
    responses=_NOT_FOUND,
)
async def destroy_room(room_id: str, system: ChatSystem = Depends(get_chat_system)) -> DestroyRoomResponse:
    """向房间内所有连接广播 ``room_destroyed`` 后删除房间及其消息。

    Args:
        room_id: 房间短码。
    """
    await system.destroy_room(room_id)
    return DestroyRoomResponse(destroyed=True)
