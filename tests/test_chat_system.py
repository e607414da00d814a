"""
tests.test_chat_system
~~~~~~~~~~~~~~~~~~~~~~

ChatSystem 测试：房间创建（短码 / 冲突重试 / 密码）、详情、销毁。
"""
from __future__ import annotations

from unittest.mock import patch

import pytest

from app.core.config import Settings
from app.core.exceptions import RoomNotFoundError
from app.core.security import verify_password
from app.db.room_store import InMemoryRoomStore
from app.schemas.chat import Participant
from app.services.chat_system import ChatSystem
from conftest import make_connection


class TestCreateRoom:
    """测试房间创建。"""

    @pytest.mark.asyncio
    async def test_room_id_format(self, system: ChatSystem) -> None:
        room = await system.create_room()

        assert len(room.id) == 8
        assert room.id == room.id.upper()
        assert room.id.isalnum()
        assert room.participant_count == 0

    @pytest.mark.asyncio
    async def test_room_ids_unique(self, system: ChatSystem) -> None:
        ids = {(await system.create_room()).id for _ in range(50)}

        assert len(ids) == 50

    @pytest.mark.asyncio
    async def test_collision_retries(self, system: ChatSystem, store) -> None:
        """短码冲突时重新生成。"""
        await store.create_room("TAKEN000")

        with patch.object(system, "_new_room_id", side_effect=["TAKEN000", "FRESH000"]):
            room = await system.create_room()

        assert room.id == "FRESH000"

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_collisions(self, system: ChatSystem, store) -> None:
        await store.create_room("TAKEN000")

        with patch.object(system, "_new_room_id", return_value="TAKEN000"):
            with pytest.raises(RuntimeError):
                await system.create_room()

    @pytest.mark.asyncio
    async def test_password_is_hashed(self, system: ChatSystem, store) -> None:
        room = await system.create_room(password="s3cret")

        stored = await store.get_room(room.id)
        assert stored.requires_password is True
        assert stored.password_hash != "s3cret"
        assert verify_password("s3cret", stored.password_hash)
        assert not verify_password("other", stored.password_hash)

    def test_from_settings(self) -> None:
        config = Settings(ROOM_ID_LENGTH=6, MESSAGE_MAX_LENGTH=10, ROOM_IDLE_THRESHOLD_MINUTES=3)

        system = ChatSystem.from_settings(InMemoryRoomStore(), config)

        assert system.room_id_length == 6
        assert system.sessions.message_max_length == 10
        assert system.reaper.threshold_minutes == 3


class TestRoomDetailAndDestroy:
    """测试房间详情与主动销毁。"""

    @pytest.mark.asyncio
    async def test_detail(self, system: ChatSystem, store) -> None:
        room = await system.create_room()
        await store.append_message(room.id, "p1", "Alice", "hi")

        detail, messages = await system.get_room_detail(room.id)

        assert detail.id == room.id
        assert detail.participant_count == 0
        assert [m.content for m in messages] == ["hi"]

    @pytest.mark.asyncio
    async def test_detail_missing(self, system: ChatSystem) -> None:
        with pytest.raises(RoomNotFoundError):
            await system.get_room_detail("NOPE1234")

    @pytest.mark.asyncio
    async def test_destroy_then_lookup_fails(self, system: ChatSystem, store) -> None:
        room = await system.create_room()
        alice = make_connection("alice")
        participant = Participant(id="p-alice", nickname="Alice", connection_id=alice.id)
        await store.add_participant(room.id, participant)
        system.registry.bind(alice, room.id, participant)

        await system.destroy_room(room.id)

        with pytest.raises(RoomNotFoundError):
            await system.get_room_detail(room.id)
        assert system.registry.list_connections(room.id) == []

    @pytest.mark.asyncio
    async def test_destroy_missing(self, system: ChatSystem) -> None:
        with pytest.raises(RoomNotFoundError):
            await system.destroy_room("NOPE1234")
