"""
app.services.chat_system
~~~~~~~~~~~~~~~~~~~~~~~~

聊天系统 —— 组装存储、注册表、广播器、会话处理器和闲置回收器。

在 FastAPI lifespan 中创建并挂载到 ``app.state.chat_system``，
HTTP 与 WebSocket 接口都通过它访问同一份状态。
"""
from __future__ import annotations

import asyncio
import uuid

from app.core.config import Settings
from app.core.exceptions import RoomAlreadyExistsError, RoomNotFoundError
from app.core.logging import get_logger
from app.core.security import hash_password
from app.db.room_store import RoomStore
from app.schemas.chat import Message, Room
from app.services.broadcaster import RoomBroadcaster
from app.services.connection_registry import ConnectionRegistry
from app.services.idle_reaper import IdleReaper
from app.services.session_handler import ChatSessionHandler

logger = get_logger(__name__)

_CREATE_ATTEMPTS: int = 5


class ChatSystem:
    """聊天系统（每个应用实例一个）。

    - ``create_room(password)``   → 创建房间，返回新房间
    - ``get_room_detail(room_id)`` → 房间元数据 + 消息历史
    - ``destroy_room(room_id)``   → 通知在线连接后销毁房间
    - ``start()`` / ``stop()``    → 启停闲置回收

    Attributes:
        store: 房间存储。
        registry: 连接注册表。
        broadcaster: 房间广播器。
        sessions: 会话协议处理器。
        reaper: 闲置房间回收器。
    """

    def __init__(
        self,
        store: RoomStore,
        *,
        room_id_length: int = 8,
        idle_threshold_minutes: float = 10,
        sweep_interval_seconds: float = 300,
        nickname_max_length: int = 50,
        message_max_length: int = 2000,
    ) -> None:
        self.store = store
        self.room_id_length = room_id_length
        self.registry = ConnectionRegistry()
        self.broadcaster = RoomBroadcaster(self.registry)
        self.sessions = ChatSessionHandler(
            store,
            self.registry,
            self.broadcaster,
            nickname_max_length=nickname_max_length,
            message_max_length=message_max_length,
        )
        self.reaper = IdleReaper(
            self.sessions,
            store,
            interval_seconds=sweep_interval_seconds,
            threshold_minutes=idle_threshold_minutes,
        )

    @classmethod
    def from_settings(cls, store: RoomStore, config: Settings) -> ChatSystem:
        return cls(
            store,
            room_id_length=config.ROOM_ID_LENGTH,
            idle_threshold_minutes=config.ROOM_IDLE_THRESHOLD_MINUTES,
            sweep_interval_seconds=config.ROOM_SWEEP_INTERVAL_SECONDS,
            nickname_max_length=config.NICKNAME_MAX_LENGTH,
            message_max_length=config.MESSAGE_MAX_LENGTH,
        )

    def start(self) -> None:
        self.reaper.start()

    async def stop(self) -> None:
        await self.reaper.stop()

    def _new_room_id(self) -> str:
        return uuid.uuid4().hex[: self.room_id_length].upper()

    async def create_room(self, password: str | None = None) -> Room:
        """创建一个新房间，短码冲突时重新生成。"""
        # PBKDF2 是 CPU 密集操作，放到线程里，避免阻塞事件循环
        password_hash = await asyncio.to_thread(hash_password, password) if password else None
        for _ in range(_CREATE_ATTEMPTS):
            room_id = self._new_room_id()
            try:
                room = await self.store.create_room(room_id, password_hash=password_hash)
            except RoomAlreadyExistsError:
                logger.warning("房间短码冲突，重新生成 | room=%s", room_id)
                continue
            logger.info("房间已创建 | room=%s | 需要密码: %s", room.id, room.requires_password)
            return room
        raise RuntimeError(f"无法生成唯一房间短码（已尝试 {_CREATE_ATTEMPTS} 次）")

    async def get_room_detail(self, room_id: str) -> tuple[Room, list[Message]]:
        """返回房间及其消息历史。

        Raises:
            RoomNotFoundError: 房间不存在。
        """
        room = await self.store.get_room(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        participants = await self.store.list_participants(room_id)
        room.participant_count = len(participants)
        messages = await self.store.list_messages(room_id)
        return room, messages

    async def destroy_room(self, room_id: str) -> None:
        """用户主动销毁房间。

        Raises:
            RoomNotFoundError: 房间不存在。
        """
        if not await self.sessions.destroy_room(room_id, reason="destroyed"):
            raise RoomNotFoundError(room_id)
