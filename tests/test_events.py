"""
tests.test_events
~~~~~~~~~~~~~~~~~

入站事件解析与出站事件序列化测试。
"""
from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from app.core.exceptions import ProtocolError
from app.schemas import events
from app.schemas.chat import Message, Participant


class TestParseInbound:
    """测试 ``parse_inbound`` 的判别联合解析。"""

    def test_join_room_camel_case(self) -> None:
        event = events.parse_inbound('{"type": "join_room", "roomId": "AB12CD34", "nickname": "Alice"}')

        assert isinstance(event, events.JoinRoomEvent)
        assert event.room_id == "AB12CD34"
        assert event.nickname == "Alice"
        assert event.password is None

    def test_send_message(self) -> None:
        event = events.parse_inbound(b'{"type": "send_message", "message": "hi"}')

        assert isinstance(event, events.SendMessageEvent)
        assert event.message == "hi"

    @pytest.mark.parametrize(
        ("frame", "expected"),
        [
            ('{"type": "leave_room"}', events.LeaveRoomEvent),
            ('{"type": "typing_start"}', events.TypingStartEvent),
            ('{"type": "typing_stop"}', events.TypingStopEvent),
            ('{"type": "message_read", "messageId": "m-1"}', events.MessageReadEvent),
        ],
    )
    def test_other_event_types(self, frame: str, expected: type) -> None:
        assert isinstance(events.parse_inbound(frame), expected)

    def test_unknown_fields_ignored(self) -> None:
        event = events.parse_inbound('{"type": "typing_start", "roomId": "X", "extra": 1}')

        assert isinstance(event, events.TypingStartEvent)

    @pytest.mark.parametrize(
        "frame",
        [
            "",
            "{not json",
            '"join_room"',
            '{"roomId": "X"}',
            '{"type": "dance"}',
            '{"type": "send_message", "message": 42}',
        ],
    )
    def test_malformed_frames(self, frame: str) -> None:
        with pytest.raises(ProtocolError) as exc_info:
            events.parse_inbound(frame)

        assert exc_info.value.message == "Invalid message format"


class TestOutbound:
    """测试出站事件的 JSON 结构。"""

    def _participant(self) -> Participant:
        return Participant(id="p-1", nickname="Alice", connection_id="conn-secret")

    def test_error_frame_has_no_data(self) -> None:
        payload = json.loads(events.error("Room not found").to_json())

        assert payload == {"type": "error", "error": "Room not found"}

    def test_new_message_payload(self) -> None:
        message = Message(
            id="m-1",
            room_id="R1",
            sender_id="p-1",
            sender_nickname="Alice",
            content="hi",
            timestamp=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        )

        payload = json.loads(events.new_message(message).to_json())

        assert payload["type"] == "new_message"
        assert "error" not in payload
        assert payload["data"] == {
            "id": "m-1",
            "roomId": "R1",
            "senderId": "p-1",
            "senderNickname": "Alice",
            "content": "hi",
            "timestamp": "2024-01-01T12:00:00Z",
            "readBy": [],
            "deliveredTo": [],
        }

    def test_participant_hides_connection_id(self) -> None:
        payload = json.loads(events.participant_update([self._participant()]).to_json())

        assert payload["data"]["count"] == 1
        participant = payload["data"]["participants"][0]
        assert participant["nickname"] == "Alice"
        assert participant["id"] == "p-1"
        assert "joinedAt" in participant
        assert "connectionId" not in participant
        assert "conn-secret" not in json.dumps(payload)

    def test_typing_update_payload(self) -> None:
        payload = json.loads(events.typing_update(self._participant(), is_typing=True).to_json())

        assert payload["data"] == {"userId": "p-1", "nickname": "Alice", "isTyping": True}

    def test_room_destroyed_payload(self) -> None:
        payload = json.loads(events.room_destroyed("R1", "expired").to_json())

        assert payload == {"type": "room_destroyed", "data": {"roomId": "R1", "reason": "expired"}}
