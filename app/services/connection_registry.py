"""
app.services.connection_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接注册表 —— 「连接 → (房间, 参与者)」与「房间 → 连接集合」的双向索引。

注册表只是存储层参与者列表的缓存索引：每个绑定都必须对应存储中的一条
参与者记录。两者只能由 ``ChatSessionHandler`` 在同一个房间锁内一起修改，
不要在其它地方单独调用 ``bind`` / ``unbind``。
"""
from __future__ import annotations

from dataclasses import dataclass

from app.schemas.chat import Participant
from app.services.connection import ClientConnection


@dataclass(frozen=True)
class Binding:
    """一条连接的房间绑定。"""

    room_id: str
    participant: Participant


class ConnectionRegistry:
    """在线连接的双向索引，两个方向的查询都是 O(1)。

    不变量：连接要么同时拥有房间绑定和参与者绑定，要么两者都没有。
    """

    def __init__(self) -> None:
        self._bindings: dict[ClientConnection, Binding] = {}
        # room_id -> 有序集合（dict 的键），保持加入顺序
        self._rooms: dict[str, dict[ClientConnection, None]] = {}

    def bind(self, connection: ClientConnection, room_id: str, participant: Participant) -> Binding | None:
        """绑定连接到房间，返回被替换掉的旧绑定（如有）。"""
        previous = self.unbind(connection)
        self._bindings[connection] = Binding(room_id=room_id, participant=participant)
        self._rooms.setdefault(room_id, {})[connection] = None
        return previous

    def unbind(self, connection: ClientConnection) -> Binding | None:
        """解除绑定，返回原来的绑定；未绑定时返回 None。"""
        binding = self._bindings.pop(connection, None)
        if binding is None:
            return None
        members = self._rooms.get(binding.room_id)
        if members is not None:
            members.pop(connection, None)
            if not members:
                del self._rooms[binding.room_id]
        return binding

    def unbind_room(self, room_id: str) -> list[ClientConnection]:
        """解除某个房间的全部绑定，返回被解绑的连接。"""
        members = list(self._rooms.pop(room_id, {}))
        for connection in members:
            self._bindings.pop(connection, None)
        return members

    def lookup(self, connection: ClientConnection) -> Binding | None:
        return self._bindings.get(connection)

    def lookup_room(self, connection: ClientConnection) -> str | None:
        binding = self._bindings.get(connection)
        return binding.room_id if binding else None

    def lookup_participant(self, connection: ClientConnection) -> Participant | None:
        binding = self._bindings.get(connection)
        return binding.participant if binding else None

    def list_connections(self, room_id: str) -> list[ClientConnection]:
        """返回房间当前连接的快照，调用方遍历期间可以安全修改注册表。"""
        return list(self._rooms.get(room_id, {}))

    @property
    def connection_count(self) -> int:
        """已绑定到房间的连接数。"""
        return len(self._bindings)

    @property
    def room_count(self) -> int:
        """至少有一条连接的房间数。"""
        return len(self._rooms)
