"""
app.services.broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~

房间广播器 —— 把一帧出站事件尽力投递给房间内的所有在线连接。

投递是「发出即忘」的：某个连接已关闭或半开时只记录日志并跳过，
不影响对其它连接的投递，也不向发送方报错。失效连接的清理由该连接
自己的断开流程负责，广播器不修改注册表。
"""
from __future__ import annotations

import asyncio

from app.core.logging import get_logger
from app.schemas.events import OutboundEvent
from app.services.connection import ClientConnection
from app.services.connection_registry import ConnectionRegistry

logger = get_logger(__name__)


class RoomBroadcaster:
    """基于连接注册表的房间广播器。

    Attributes:
        registry: 连接注册表，用于查询房间内的在线连接。
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    async def send_to_room(
        self,
        room_id: str,
        event: OutboundEvent,
        exclude: ClientConnection | None = None,
    ) -> int:
        """向房间内所有连接（可排除一个）广播事件。

        Returns:
            成功投递的连接数。
        """
        # 先取快照：投递过程中其它处理器可能修改注册表
        targets = [c for c in self.registry.list_connections(room_id) if c is not exclude]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(c.send_event(event) for c in targets),
            return_exceptions=True,
        )
        delivered = 0
        for connection, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "广播失败，跳过该连接 | room=%s | conn=%s | type=%s | err=%s",
                    room_id, connection.id, event.type, result,
                )
            else:
                delivered += 1
        logger.debug("广播完成 | room=%s | type=%s | %d/%d", room_id, event.type, delivered, len(targets))
        return delivered

    async def send_to(self, connection: ClientConnection, event: OutboundEvent) -> bool:
        """只发给一个连接（快照、错误提示等），失败时返回 False。"""
        try:
            await connection.send_event(event)
        except Exception as e:
            logger.warning("单播失败 | conn=%s | type=%s | err=%s", connection.id, event.type, e)
            return False
        return True
