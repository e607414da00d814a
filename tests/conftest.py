"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 可控时钟、记录帧的假 WebSocket、组装好的聊天系统，
使单元测试无需真实网络连接和数据库即可快速运行。
"""
from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from app.db.room_store import InMemoryRoomStore  # noqa: E402
from app.services.chat_system import ChatSystem  # noqa: E402
from app.services.connection import ClientConnection  # noqa: E402


class FakeClock:
    """可手动推进的时钟，替代 ``utcnow``。"""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += timedelta(minutes=minutes)


class FakeWebSocket:
    """只实现 ``send_text`` 的假 WebSocket，记录所有下发的帧。

    ``fail = True`` 时模拟已关闭 / 半开的连接。
    """

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = False

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("Cannot call send once a close message has been sent.")
        self.sent.append(json.loads(data))


def make_connection(name: str) -> ClientConnection:
    """创建一条以 ``name`` 为 id 的假连接。"""
    return ClientConnection(FakeWebSocket(), connection_id=name)  # type: ignore[arg-type]


def frames(connection: ClientConnection, event_type: str | None = None) -> list[dict[str, Any]]:
    """返回连接收到的帧，可按 ``type`` 过滤。"""
    sent = connection.websocket.sent  # type: ignore[attr-defined]
    if event_type is None:
        return list(sent)
    return [f for f in sent if f["type"] == event_type]


def clear(*connections: ClientConnection) -> None:
    for connection in connections:
        connection.websocket.sent.clear()  # type: ignore[attr-defined]


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> InMemoryRoomStore:
    return InMemoryRoomStore(clock=clock)


@pytest.fixture()
def system(store: InMemoryRoomStore) -> ChatSystem:
    return ChatSystem(store, idle_threshold_minutes=10, sweep_interval_seconds=300)
