"""
app.db.mongo_room_store
~~~~~~~~~~~~~~~~~~~~~~~

基于 MongoDB 的房间存储 —— ``RoomStore`` 的外部数据库实现。

三个集合（扁平设计，每条消息 / 参与者一个文档）:
  - ``chat_rooms``        房间元数据
  - ``chat_messages``     消息，按 ``(room_id, timestamp)`` 建索引
  - ``chat_participants`` 参与者，``(room_id, connection_id)`` 唯一

集合在首次操作时自动建立索引。
"""
from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import RoomAlreadyExistsError, RoomNotFoundError
from app.core.logging import get_logger
from app.db.room_store import RoomStore
from app.schemas.chat import DEFAULT_NICKNAME, Message, Participant, Room, utcnow

logger = get_logger(__name__)

_ROOMS = "chat_rooms"
_MESSAGES = "chat_messages"
_PARTICIPANTS = "chat_participants"

_NO_ID: dict[str, int] = {"_id": 0}


class MongoRoomStore(RoomStore):
    """MongoDB 房间存储。

    Attributes:
        db: MongoDB 数据库实例。
        clock: 返回当前时间的函数，测试时可替换。
    """

    def __init__(self, db: AsyncIOMotorDatabase, clock: Callable[[], datetime] = utcnow) -> None:
        self.db = db
        self.clock = clock
        self._rooms = db[_ROOMS]
        self._messages = db[_MESSAGES]
        self._participants = db[_PARTICIPANTS]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._rooms.create_index("id", unique=True, name="uniq_room_id")
        await self._rooms.create_index("last_activity_at", name="idx_last_activity")
        await self._messages.create_index(
            [("room_id", 1), ("timestamp", 1)],
            name="idx_room_time",
        )
        await self._participants.create_index(
            [("room_id", 1), ("connection_id", 1)],
            unique=True,
            name="uniq_room_connection",
        )
        self._indexes_created = True
        logger.debug("聊天集合索引已就绪")

    # ── 房间 ──────────────────────────────────────────────────────────

    async def create_room(self, room_id: str, password_hash: str | None = None) -> Room:
        await self._ensure_indexes()
        now = self.clock()
        room = Room(id=room_id, created_at=now, last_activity_at=now, password_hash=password_hash)
        try:
            await self._rooms.insert_one(_room_to_doc(room))
        except DuplicateKeyError as e:
            raise RoomAlreadyExistsError(room_id) from e
        return room

    async def get_room(self, room_id: str) -> Room | None:
        await self._ensure_indexes()
        doc = await self._rooms.find_one({"id": room_id}, _NO_ID)
        return _doc_to_room(doc) if doc else None

    async def touch_activity(self, room_id: str) -> None:
        await self._rooms.update_one(
            {"id": room_id},
            {"$set": {"last_activity_at": self.clock()}},
        )

    async def delete_room(self, room_id: str) -> None:
        await self._rooms.delete_one({"id": room_id})
        await self._messages.delete_many({"room_id": room_id})
        await self._participants.delete_many({"room_id": room_id})

    async def list_inactive_rooms(self, threshold_minutes: float) -> list[Room]:
        await self._ensure_indexes()
        cutoff = self.clock() - timedelta(minutes=threshold_minutes)
        cursor = self._rooms.find({"last_activity_at": {"$lt": cutoff}}, _NO_ID)
        return [_doc_to_room(doc) async for doc in cursor]

    async def count_rooms(self) -> int:
        return await self._rooms.count_documents({})

    # ── 消息 ──────────────────────────────────────────────────────────

    async def append_message(
        self,
        room_id: str,
        sender_id: str | None,
        sender_nickname: str,
        content: str,
    ) -> Message:
        await self._ensure_indexes()
        if await self._rooms.count_documents({"id": room_id}, limit=1) == 0:
            raise RoomNotFoundError(room_id)
        message = Message(
            id=str(uuid.uuid4()),
            room_id=room_id,
            sender_id=sender_id or None,
            sender_nickname=sender_nickname or DEFAULT_NICKNAME,
            content=content,
            timestamp=self.clock(),
        )
        await self._messages.insert_one(message.model_dump())
        await self.touch_activity(room_id)
        return message

    async def list_messages(self, room_id: str) -> list[Message]:
        await self._ensure_indexes()
        # _id 是单调递增的 ObjectId，作为同一毫秒内的追加顺序兜底
        cursor = self._messages.find({"room_id": room_id}).sort([("timestamp", 1), ("_id", 1)])
        return [Message(**_strip_id(doc)) async for doc in cursor]

    async def delete_messages(self, room_id: str) -> None:
        await self._messages.delete_many({"room_id": room_id})

    # ── 参与者 ────────────────────────────────────────────────────────

    async def add_participant(self, room_id: str, participant: Participant) -> None:
        await self._ensure_indexes()
        if await self._rooms.count_documents({"id": room_id}, limit=1) == 0:
            raise RoomNotFoundError(room_id)
        doc = {
            "id": participant.id,
            "room_id": room_id,
            "nickname": participant.nickname,
            "connection_id": participant.connection_id,
            "joined_at": participant.joined_at,
        }
        await self._participants.replace_one(
            {"room_id": room_id, "connection_id": participant.connection_id},
            doc,
            upsert=True,
        )
        await self._refresh_count(room_id)

    async def remove_participant(self, room_id: str, connection_id: str) -> None:
        await self._participants.delete_one({"room_id": room_id, "connection_id": connection_id})
        await self._refresh_count(room_id)

    async def list_participants(self, room_id: str) -> list[Participant]:
        cursor = self._participants.find({"room_id": room_id}, _NO_ID).sort("joined_at", 1)
        return [
            Participant(
                id=doc["id"],
                nickname=doc["nickname"],
                connection_id=doc["connection_id"],
                joined_at=doc["joined_at"],
            )
            async for doc in cursor
        ]

    async def _refresh_count(self, room_id: str) -> None:
        """重算参与者人数并刷新最近活动时间。"""
        count = await self._participants.count_documents({"room_id": room_id})
        await self._rooms.update_one(
            {"id": room_id},
            {"$set": {"participant_count": count, "last_activity_at": self.clock()}},
        )


def _room_to_doc(room: Room) -> dict[str, Any]:
    return {
        "id": room.id,
        "created_at": room.created_at,
        "last_activity_at": room.last_activity_at,
        "participant_count": room.participant_count,
        "password_hash": room.password_hash,
    }


def _doc_to_room(doc: dict[str, Any]) -> Room:
    return Room(
        id=doc["id"],
        created_at=doc["created_at"],
        last_activity_at=doc["last_activity_at"],
        participant_count=doc.get("participant_count", 0),
        password_hash=doc.get("password_hash"),
    )


def _strip_id(doc: dict[str, Any]) -> dict[str, Any]:
    doc.pop("_id", None)
    return doc
