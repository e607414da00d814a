"""
app.services.connection
~~~~~~~~~~~~~~~~~~~~~~~

客户端连接句柄 —— 对一条 WebSocket 传输的轻量封装。

句柄按对象身份哈希，可直接作为注册表的键；``id`` 是稳定的字符串标识，
写入存储层的参与者记录，用于把参与者与连接对应起来。
"""
from __future__ import annotations

import uuid

from fastapi import WebSocket

from app.schemas.events import OutboundEvent


class ClientConnection:
    """一条在线的客户端连接。

    Attributes:
        id: 连接唯一标识（服务端分配）。
        websocket: 底层 WebSocket 连接。
    """

    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self.id = connection_id or uuid.uuid4().hex
        self.websocket = websocket

    async def send_event(self, event: OutboundEvent) -> None:
        """发送一帧出站事件。传输已关闭时由底层抛出异常，调用方负责容错。"""
        await self.websocket.send_text(event.to_json())

    def __repr__(self) -> str:
        return f"ClientConnection(id={self.id!r})"
