"""
app.services.session_handler
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话协议处理器 —— 实时房间会话的状态机。

每条连接只有两种状态:
  - ``UNBOUND``  未加入任何房间
  - ``JOINED``   绑定到恰好一个房间、持有一个参与者身份

入站事件在这里被校验、转换为存储层的修改，并决定向谁广播什么。
房间销毁（HTTP 请求 / 闲置回收）也走这里的 ``destroy_room``，
保证两种触发方式的清理逻辑完全一致。

并发模型：每个房间一把 ``asyncio.Lock``，覆盖
「修改存储 → 更新注册表 → 广播」整个序列。即使存储层需要 await
外部 I/O，同一房间内的广播顺序也与处理器的调用顺序一致。
"""
from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Literal

from app.core.exceptions import (
    ChatError,
    MessageValidationError,
    ProtocolError,
    RoomAccessDeniedError,
    RoomNotFoundError,
)
from app.core.logging import get_logger
from app.core.security import verify_password
from app.db.room_store import RoomStore
from app.schemas import events
from app.schemas.chat import DEFAULT_NICKNAME, Participant, utcnow
from app.schemas.events import (
    InboundEvent,
    JoinRoomEvent,
    LeaveRoomEvent,
    MessageReadEvent,
    SendMessageEvent,
    TypingStartEvent,
    TypingStopEvent,
)
from app.services.broadcaster import RoomBroadcaster
from app.services.connection import ClientConnection
from app.services.connection_registry import ConnectionRegistry

logger = get_logger(__name__)

# 非领域异常（存储故障等）回给客户端的通用提示，不暴露内部细节
_INTERNAL_ERROR: str = "Failed to process request"


class ChatSessionHandler:
    """实时房间会话协调器。

    Attributes:
        store: 房间存储（权威状态）。
        registry: 连接注册表（存储参与者列表的索引）。
        broadcaster: 房间广播器。
        nickname_max_length: 昵称最大长度，超出部分截断。
        message_max_length: 单条消息最大长度，超出时拒绝。
    """

    def __init__(
        self,
        store: RoomStore,
        registry: ConnectionRegistry,
        broadcaster: RoomBroadcaster,
        nickname_max_length: int = 50,
        message_max_length: int = 2000,
    ) -> None:
        self.store = store
        self.registry = registry
        self.broadcaster = broadcaster
        self.nickname_max_length = nickname_max_length
        self.message_max_length = message_max_length
        self._locks: dict[str, asyncio.Lock] = {}
        self._dispatch: dict[type, Callable[[ClientConnection, InboundEvent], Awaitable[None]]] = {
            JoinRoomEvent: self.join_room,
            LeaveRoomEvent: self.leave_room,
            SendMessageEvent: self.send_message,
            TypingStartEvent: self.typing,
            TypingStopEvent: self.typing,
            MessageReadEvent: self.message_read,
        }

    # ── 入口 ──────────────────────────────────────────────────────────

    async def handle_frame(self, connection: ClientConnection, frame: str | bytes) -> None:
        """处理一帧原始入站数据。

        协议 / 校验类错误只回给当前连接，不改变任何状态。
        """
        try:
            event = events.parse_inbound(frame)
        except ProtocolError as e:
            logger.info("无法解析的入站帧 | conn=%s", connection.id)
            await self.broadcaster.send_to(connection, events.error(e.message))
            return
        await self.handle_event(connection, event)

    async def handle_event(self, connection: ClientConnection, event: InboundEvent) -> None:
        """分发一个已校验的入站事件。

        任何异常都只影响当前这一帧：回一条 ``error`` 给发送者，连接保持打开。
        """
        logger.debug("入站事件 | conn=%s | type=%s", connection.id, event.type)
        try:
            await self._dispatch[type(event)](connection, event)
        except ChatError as e:
            await self.broadcaster.send_to(connection, events.error(e.message))
        except Exception as e:
            logger.error(
                "处理入站事件失败: %s | conn=%s | type=%s",
                e, connection.id, event.type, exc_info=True,
            )
            await self.broadcaster.send_to(connection, events.error(_INTERNAL_ERROR))

    # ── 事件处理 ──────────────────────────────────────────────────────

    async def join_room(self, connection: ClientConnection, event: JoinRoomEvent) -> None:
        """加入房间：先发快照给加入者，再向全房间广播参与者变化。"""
        room_id = (event.room_id or "").strip()
        if not room_id:
            raise ChatError("Room ID required")

        # 锁外先校验一次：不为不存在的房间号创建锁，校验失败时也不影响当前绑定
        room = await self.store.get_room(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        # PBKDF2 是 CPU 密集操作，放到线程里，避免阻塞事件循环
        if not await asyncio.to_thread(verify_password, event.password, room.password_hash):
            logger.info("房间密码错误 | room=%s | conn=%s", room_id, connection.id)
            raise RoomAccessDeniedError()

        # 换房间时先离开原房间；重新加入同一房间时由下面的替换完成，只广播一次
        current_room = self.registry.lookup_room(connection)
        if current_room is not None and current_room != room_id:
            await self.disconnect(connection)

        lock = self._room_lock(room_id)
        try:
            async with lock:
                if await self.store.get_room(room_id) is None:
                    raise RoomNotFoundError(room_id)

                participant = Participant(
                    id=str(uuid.uuid4()),
                    nickname=self._normalize_nickname(event.nickname),
                    connection_id=connection.id,
                    joined_at=utcnow(),
                )
                await self.store.add_participant(room_id, participant)
                self.registry.bind(connection, room_id, participant)

                history = await self.store.list_messages(room_id)
                await self.broadcaster.send_to(
                    connection,
                    events.room_joined(room_id, participant, history),
                )
                count = await self._broadcast_participants(room_id)
        except RoomNotFoundError:
            # 预检之后房间被销毁：丢掉刚为它创建的锁
            self._discard_lock(room_id, lock)
            raise

        logger.info(
            "加入房间 | room=%s | nickname=%s | 在线: %d",
            room_id, participant.nickname, count,
        )

    async def leave_room(self, connection: ClientConnection, event: LeaveRoomEvent) -> None:
        """主动离开房间，与断开连接的处理相同。"""
        await self.disconnect(connection)

    async def send_message(self, connection: ClientConnection, event: SendMessageEvent) -> None:
        """追加消息并广播给房间内所有连接（包括发送者）。"""
        binding = self.registry.lookup(connection)
        if binding is None or event.message is None:
            raise MessageValidationError()

        content = event.message.strip()
        if not content:
            raise MessageValidationError("Message cannot be empty")
        if len(content) > self.message_max_length:
            raise MessageValidationError("Message is too long")

        room_id = binding.room_id
        async with self._room_lock(room_id):
            # 等锁期间连接可能已离开或房间已被销毁
            if self.registry.lookup(connection) is not binding:
                raise MessageValidationError()
            participant = binding.participant
            message = await self.store.append_message(
                room_id,
                sender_id=participant.id,
                sender_nickname=participant.nickname,
                content=content,
            )
            await self.broadcaster.send_to_room(room_id, events.new_message(message))

    async def typing(self, connection: ClientConnection, event: TypingStartEvent | TypingStopEvent) -> None:
        """转发输入状态给房间内其它连接，不回显给发送者。"""
        binding = self.registry.lookup(connection)
        if binding is None:
            return
        async with self._room_lock(binding.room_id):
            if self.registry.lookup(connection) is not binding:
                return
            await self.broadcaster.send_to_room(
                binding.room_id,
                events.typing_update(binding.participant, is_typing=event.type == "typing_start"),
                exclude=connection,
            )

    async def message_read(self, connection: ClientConnection, event: MessageReadEvent) -> None:
        """转发已读回执给房间内所有连接（包括发送者）。回执不落库。"""
        binding = self.registry.lookup(connection)
        if binding is None or not event.message_id:
            return
        async with self._room_lock(binding.room_id):
            if self.registry.lookup(connection) is not binding:
                return
            await self.broadcaster.send_to_room(
                binding.room_id,
                events.message_read(event.message_id, binding.participant),
            )

    async def disconnect(self, connection: ClientConnection) -> None:
        """连接断开 / 主动离开。幂等：未绑定的连接直接返回。"""
        room_id = self.registry.lookup_room(connection)
        if room_id is None:
            return

        async with self._room_lock(room_id):
            # 拿到锁后重新确认，可能已被并发的断开或房间销毁处理过
            if self.registry.lookup_room(connection) != room_id:
                return
            binding = self.registry.unbind(connection)
            await self.store.remove_participant(room_id, connection.id)
            count = await self._broadcast_participants(room_id)

        logger.info(
            "离开房间 | room=%s | nickname=%s | 在线: %d",
            room_id, binding.participant.nickname, count,
        )

    # ── 房间销毁（HTTP / 闲置回收共用） ───────────────────────────────

    async def destroy_room(
        self,
        room_id: str,
        reason: Literal["destroyed", "expired"] = "destroyed",
        expired_before: datetime | None = None,
    ) -> bool:
        """通知房间内所有连接后删除房间，并清除注册表中的绑定。

        Args:
            room_id: 房间短码。
            reason: 下发给客户端的销毁原因。
            expired_before: 仅当房间最近活动早于该时间时才销毁（闲置回收用，
                避免巡检列出房间后、真正删除前房间又有了新活动）。

        Returns:
            房间被销毁时返回 True；房间不存在或已恢复活跃时返回 False。
        """
        lock = self._room_lock(room_id)
        async with lock:
            room = await self.store.get_room(room_id)
            if room is None:
                missing = True
            elif expired_before is not None and room.last_activity_at >= expired_before:
                logger.debug("房间已恢复活跃，跳过回收 | room=%s", room_id)
                return False
            else:
                missing = False
                notified = await self.broadcaster.send_to_room(room_id, events.room_destroyed(room_id, reason))
                await self.store.delete_room(room_id)
                self.registry.unbind_room(room_id)

        # 房间已不存在：无论是刚被删除还是本来就没有，都不再保留它的锁
        self._discard_lock(room_id, lock)
        if missing:
            return False
        logger.info("房间已销毁 | room=%s | reason=%s | 通知连接: %d", room_id, reason, notified)
        return True

    # ── 内部工具 ──────────────────────────────────────────────────────

    def _room_lock(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = self._locks[room_id] = asyncio.Lock()
        return lock

    def _discard_lock(self, room_id: str, lock: asyncio.Lock) -> None:
        """丢弃已不存在的房间的锁。仍在等待旧锁的处理器拿到锁后会重新校验房间。"""
        if self._locks.get(room_id) is lock:
            del self._locks[room_id]

    def _normalize_nickname(self, nickname: str | None) -> str:
        nickname = (nickname or "").strip()
        return nickname[: self.nickname_max_length] or DEFAULT_NICKNAME

    async def _broadcast_participants(self, room_id: str) -> int:
        """向房间广播最新的参与者列表，返回当前人数。调用方需持有房间锁。"""
        participants = await self.store.list_participants(room_id)
        await self.broadcaster.send_to_room(room_id, events.participant_update(participants))
        return len(participants)
