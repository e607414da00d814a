"""
tests.test_room_store
~~~~~~~~~~~~~~~~~~~~~

InMemoryRoomStore 单元测试：房间 CRUD、消息追加、参与者增删、闲置查询。
"""
from __future__ import annotations

import pytest

from app.core.exceptions import RoomAlreadyExistsError, RoomNotFoundError
from app.db.room_store import InMemoryRoomStore
from app.schemas.chat import Participant


def participant(connection_id: str, nickname: str = "Alice") -> Participant:
    return Participant(id=f"p-{connection_id}", nickname=nickname, connection_id=connection_id)


# ── 房间 ──────────────────────────────────────────────────────────────

class TestRooms:
    """测试房间的创建、查询和删除。"""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store: InMemoryRoomStore, clock) -> None:
        """创建后可查询到房间，时间戳取自时钟。"""
        room = await store.create_room("AB12CD34")

        fetched = await store.get_room("AB12CD34")

        assert fetched is not None
        assert fetched.id == room.id == "AB12CD34"
        assert fetched.created_at == clock.now
        assert fetched.last_activity_at == clock.now
        assert fetched.participant_count == 0
        assert fetched.requires_password is False

    @pytest.mark.asyncio
    async def test_create_duplicate_rejected(self, store: InMemoryRoomStore) -> None:
        """短码重复时应抛出 RoomAlreadyExistsError。"""
        await store.create_room("DUP00001")

        with pytest.raises(RoomAlreadyExistsError):
            await store.create_room("DUP00001")

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store: InMemoryRoomStore) -> None:
        assert await store.get_room("NOPE") is None

    @pytest.mark.asyncio
    async def test_returned_room_is_a_copy(self, store: InMemoryRoomStore) -> None:
        """调用方修改返回值不应影响存储内的房间。"""
        room = await store.create_room("COPY0001")
        room.participant_count = 99

        fetched = await store.get_room("COPY0001")

        assert fetched.participant_count == 0

    @pytest.mark.asyncio
    async def test_delete_cascades(self, store: InMemoryRoomStore) -> None:
        """删除房间应级联删除消息和参与者。"""
        await store.create_room("R1")
        await store.append_message("R1", "p1", "Alice", "hi")
        await store.add_participant("R1", participant("c1"))

        await store.delete_room("R1")

        assert await store.get_room("R1") is None
        assert await store.list_messages("R1") == []
        assert await store.list_participants("R1") == []
        assert await store.count_rooms() == 0

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, store: InMemoryRoomStore) -> None:
        await store.delete_room("NOPE")

    @pytest.mark.asyncio
    async def test_list_inactive_rooms(self, store: InMemoryRoomStore, clock) -> None:
        """只有闲置超过阈值的房间会被列出。"""
        await store.create_room("OLD")
        clock.advance(8)
        await store.create_room("NEW")
        clock.advance(3)

        inactive = await store.list_inactive_rooms(10)

        assert [r.id for r in inactive] == ["OLD"]

    @pytest.mark.asyncio
    async def test_touch_activity_keeps_room_alive(self, store: InMemoryRoomStore, clock) -> None:
        await store.create_room("R1")
        clock.advance(9)
        await store.touch_activity("R1")
        clock.advance(9)

        assert await store.list_inactive_rooms(10) == []


# ── 消息 ──────────────────────────────────────────────────────────────

class TestMessages:
    """测试消息追加与顺序。"""

    @pytest.mark.asyncio
    async def test_append_preserves_order(self, store: InMemoryRoomStore) -> None:
        await store.create_room("R1")
        for text in ("one", "two", "three"):
            await store.append_message("R1", "p1", "Alice", text)

        messages = await store.list_messages("R1")

        assert [m.content for m in messages] == ["one", "two", "three"]
        assert len({m.id for m in messages}) == 3
        assert all(m.room_id == "R1" for m in messages)

    @pytest.mark.asyncio
    async def test_append_updates_activity(self, store: InMemoryRoomStore, clock) -> None:
        await store.create_room("R1")
        clock.advance(5)

        message = await store.append_message("R1", "p1", "Alice", "hi")
        room = await store.get_room("R1")

        assert message.timestamp == clock.now
        assert room.last_activity_at == clock.now

    @pytest.mark.asyncio
    async def test_append_to_missing_room_fails(self, store: InMemoryRoomStore) -> None:
        with pytest.raises(RoomNotFoundError):
            await store.append_message("NOPE", "p1", "Alice", "hi")

    @pytest.mark.asyncio
    async def test_anonymous_sender(self, store: InMemoryRoomStore) -> None:
        """空 sender_id 视为匿名，昵称回落为 Anonymous。"""
        await store.create_room("R1")

        message = await store.append_message("R1", "", "", "system notice")

        assert message.sender_id is None
        assert message.sender_nickname == "Anonymous"

    @pytest.mark.asyncio
    async def test_delete_messages_keeps_room(self, store: InMemoryRoomStore) -> None:
        await store.create_room("R1")
        await store.append_message("R1", "p1", "Alice", "hi")

        await store.delete_messages("R1")

        assert await store.list_messages("R1") == []
        assert await store.get_room("R1") is not None


# ── 参与者 ────────────────────────────────────────────────────────────

class TestParticipants:
    """测试参与者增删及人数派生。"""

    @pytest.mark.asyncio
    async def test_count_tracks_participants(self, store: InMemoryRoomStore) -> None:
        """每次增删后 participant_count 都等于参与者列表长度。"""
        await store.create_room("R1")

        for cid in ("c1", "c2", "c3"):
            await store.add_participant("R1", participant(cid))
            room = await store.get_room("R1")
            assert room.participant_count == len(await store.list_participants("R1"))

        for cid in ("c2", "c1", "c3"):
            await store.remove_participant("R1", cid)
            room = await store.get_room("R1")
            assert room.participant_count == len(await store.list_participants("R1"))

        assert room.participant_count == 0

    @pytest.mark.asyncio
    async def test_add_is_idempotent_per_connection(self, store: InMemoryRoomStore) -> None:
        """同一连接重复加入时替换旧记录，而不是新增一条。"""
        await store.create_room("R1")
        await store.add_participant("R1", participant("c1", "Alice"))
        await store.add_participant("R1", participant("c1", "Alicia"))

        participants = await store.list_participants("R1")

        assert len(participants) == 1
        assert participants[0].nickname == "Alicia"

    @pytest.mark.asyncio
    async def test_add_to_missing_room_fails(self, store: InMemoryRoomStore) -> None:
        with pytest.raises(RoomNotFoundError):
            await store.add_participant("NOPE", participant("c1"))

    @pytest.mark.asyncio
    async def test_remove_unknown_is_noop(self, store: InMemoryRoomStore) -> None:
        await store.create_room("R1")
        await store.remove_participant("R1", "ghost")
        await store.remove_participant("NOPE", "ghost")

        assert await store.list_participants("R1") == []

    @pytest.mark.asyncio
    async def test_join_and_leave_update_activity(self, store: InMemoryRoomStore, clock) -> None:
        await store.create_room("R1")
        clock.advance(4)
        await store.add_participant("R1", participant("c1"))
        assert (await store.get_room("R1")).last_activity_at == clock.now

        clock.advance(4)
        await store.remove_participant("R1", "c1")
        assert (await store.get_room("R1")).last_activity_at == clock.now
