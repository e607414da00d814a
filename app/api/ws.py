"""
app.api.ws
~~~~~~~~~~

WebSocket 实时交互接口 —— 房间聊天。

每个客户端维持一条 ``/ws`` 连接，通过 JSON 文本帧收发事件，
由 ``ChatSessionHandler`` 负责全部协议状态。

入站 ``type``:
  - ``join_room``     ``{roomId, nickname?, password?}``
  - ``leave_room``
  - ``send_message``  ``{message}``
  - ``typing_start`` / ``typing_stop``
  - ``message_read``  ``{messageId}``

出站 ``type``:
  ``room_joined`` / ``participant_update`` / ``new_message`` /
  ``typing_update`` / ``message_read`` / ``room_destroyed`` / ``error``
"""
from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.logging import get_logger, request_id_ctx_var
from app.services.chat_system import ChatSystem
from app.services.connection import ClientConnection

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket 房间聊天端点。

    连接建立后处于未加入状态，需要先发送 ``join_room``。
    连接关闭（正常或异常）时自动离开所在房间。
    """
    system: ChatSystem = websocket.app.state.chat_system
    await websocket.accept()
    connection = ClientConnection(websocket)
    token = request_id_ctx_var.set(f"ws-{connection.id[:8]}")
    logger.info("新连接 | conn=%s", connection.id)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            frame = message.get("text")
            if frame is None:
                frame = message.get("bytes") or b""
            await system.sessions.handle_frame(connection, frame)
    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 处理异常: %s | conn=%s", e, connection.id, exc_info=True)
    finally:
        try:
            await system.sessions.disconnect(connection)
        finally:
            logger.info("连接关闭 | conn=%s", connection.id)
            request_id_ctx_var.reset(token)
