"""
app.db.room_store
~~~~~~~~~~~~~~~~~

房间存储 —— 房间 / 消息 / 参与者状态的唯一权威来源。

``RoomStore`` 定义存储接口（全部为 async，方便接入外部数据库），
``InMemoryRoomStore`` 是默认的进程内实现。

进程内实现的每个方法体内部都没有 ``await``，在 asyncio 单线程调度下
天然是原子的：单个房间的消息列表和参与者集合不会被并发修改破坏。
"""
from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta

from app.core.exceptions import RoomAlreadyExistsError, RoomNotFoundError
from app.schemas.chat import DEFAULT_NICKNAME, Message, Participant, Room, utcnow


class RoomStore(ABC):
    """房间存储接口。

    所有修改房间内容的操作（发消息、加入、离开）都必须同时刷新
    ``last_activity_at``；``participant_count`` 在每次增删参与者后重算。
    """

    # ── 房间 ──────────────────────────────────────────────────────────

    @abstractmethod
    async def create_room(self, room_id: str, password_hash: str | None = None) -> Room:
        """创建房间。

        Raises:
            RoomAlreadyExistsError: 短码已被占用。
        """

    @abstractmethod
    async def get_room(self, room_id: str) -> Room | None:
        """获取房间，不存在时返回 None。"""

    @abstractmethod
    async def touch_activity(self, room_id: str) -> None:
        """刷新房间的最近活动时间（房间不存在时忽略）。"""

    @abstractmethod
    async def delete_room(self, room_id: str) -> None:
        """删除房间，级联删除其消息和参与者。"""

    @abstractmethod
    async def list_inactive_rooms(self, threshold_minutes: float) -> list[Room]:
        """返回 ``now - last_activity_at > threshold`` 的所有房间。"""

    @abstractmethod
    async def count_rooms(self) -> int:
        """当前房间总数。"""

    # ── 消息 ──────────────────────────────────────────────────────────

    @abstractmethod
    async def append_message(
        self,
        room_id: str,
        sender_id: str | None,
        sender_nickname: str,
        content: str,
    ) -> Message:
        """追加一条消息。

        Raises:
            RoomNotFoundError: 房间不存在。
        """

    @abstractmethod
    async def list_messages(self, room_id: str) -> list[Message]:
        """按追加顺序返回房间的全部消息。"""

    @abstractmethod
    async def delete_messages(self, room_id: str) -> None:
        """清空房间消息（房间本身保留）。"""

    # ── 参与者 ────────────────────────────────────────────────────────

    @abstractmethod
    async def add_participant(self, room_id: str, participant: Participant) -> None:
        """加入参与者；同一连接的旧记录会被替换。

        Raises:
            RoomNotFoundError: 房间不存在。
        """

    @abstractmethod
    async def remove_participant(self, room_id: str, connection_id: str) -> None:
        """移除某连接对应的参与者（房间或参与者不存在时忽略）。"""

    @abstractmethod
    async def list_participants(self, room_id: str) -> list[Participant]:
        """返回房间当前的参与者列表。"""


class InMemoryRoomStore(RoomStore):
    """进程内房间存储。

    Attributes:
        clock: 返回当前时间的函数，测试时可替换。
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self.clock = clock
        self._rooms: dict[str, Room] = {}
        self._messages: dict[str, list[Message]] = {}
        # room_id -> {connection_id: Participant}，dict 保持加入顺序
        self._participants: dict[str, dict[str, Participant]] = {}

    async def create_room(self, room_id: str, password_hash: str | None = None) -> Room:
        if room_id in self._rooms:
            raise RoomAlreadyExistsError(room_id)
        now = self.clock()
        room = Room(
            id=room_id,
            created_at=now,
            last_activity_at=now,
            password_hash=password_hash,
        )
        self._rooms[room_id] = room
        self._messages[room_id] = []
        self._participants[room_id] = {}
        return room.model_copy()

    async def get_room(self, room_id: str) -> Room | None:
        room = self._rooms.get(room_id)
        return room.model_copy() if room is not None else None

    async def touch_activity(self, room_id: str) -> None:
        self._touch(room_id)

    async def delete_room(self, room_id: str) -> None:
        self._rooms.pop(room_id, None)
        self._messages.pop(room_id, None)
        self._participants.pop(room_id, None)

    async def list_inactive_rooms(self, threshold_minutes: float) -> list[Room]:
        cutoff = self.clock() - timedelta(minutes=threshold_minutes)
        return [
            room.model_copy()
            for room in self._rooms.values()
            if room.last_activity_at < cutoff
        ]

    async def count_rooms(self) -> int:
        return len(self._rooms)

    async def append_message(
        self,
        room_id: str,
        sender_id: str | None,
        sender_nickname: str,
        content: str,
    ) -> Message:
        if room_id not in self._rooms:
            raise RoomNotFoundError(room_id)
        message = Message(
            id=str(uuid.uuid4()),
            room_id=room_id,
            sender_id=sender_id or None,
            sender_nickname=sender_nickname or DEFAULT_NICKNAME,
            content=content,
            timestamp=self.clock(),
        )
        self._messages[room_id].append(message)
        self._touch(room_id)
        return message

    async def list_messages(self, room_id: str) -> list[Message]:
        return list(self._messages.get(room_id, []))

    async def delete_messages(self, room_id: str) -> None:
        if room_id in self._messages:
            self._messages[room_id] = []

    async def add_participant(self, room_id: str, participant: Participant) -> None:
        if room_id not in self._rooms:
            raise RoomNotFoundError(room_id)
        participants = self._participants[room_id]
        # 先删后插：替换后的记录排到末尾，与「重新加入」的语义一致
        participants.pop(participant.connection_id, None)
        participants[participant.connection_id] = participant.model_copy()
        self._refresh_count(room_id)
        self._touch(room_id)

    async def remove_participant(self, room_id: str, connection_id: str) -> None:
        participants = self._participants.get(room_id)
        if participants is None:
            return
        participants.pop(connection_id, None)
        self._refresh_count(room_id)
        self._touch(room_id)

    async def list_participants(self, room_id: str) -> list[Participant]:
        return [p.model_copy() for p in self._participants.get(room_id, {}).values()]

    def _touch(self, room_id: str) -> None:
        room = self._rooms.get(room_id)
        if room is not None:
            room.last_activity_at = self.clock()

    def _refresh_count(self, room_id: str) -> None:
        room = self._rooms.get(room_id)
        if room is not None:
            room.participant_count = len(self._participants.get(room_id, {}))
