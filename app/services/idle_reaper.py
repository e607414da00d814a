"""
app.services.idle_reaper
~~~~~~~~~~~~~~~~~~~~~~~~

闲置房间回收 —— 后台定时巡检，销毁长时间没有活动的房间。

回收直接复用 ``ChatSessionHandler.destroy_room``：先通知房间内所有连接，
再删除房间、清理注册表，与用户主动销毁走完全相同的路径。
"""
from __future__ import annotations

import asyncio
import contextlib
from datetime import timedelta

from app.core.logging import get_logger
from app.db.room_store import RoomStore
from app.services.session_handler import ChatSessionHandler

logger = get_logger(__name__)


class IdleReaper:
    """闲置房间回收器。

    Attributes:
        sessions: 会话处理器（提供统一的销毁路径）。
        store: 房间存储，用于列出闲置房间。
        interval_seconds: 巡检间隔。
        threshold_minutes: 闲置阈值。
    """

    def __init__(
        self,
        sessions: ChatSessionHandler,
        store: RoomStore,
        interval_seconds: float = 300,
        threshold_minutes: float = 10,
    ) -> None:
        self.sessions = sessions
        self.store = store
        self.interval_seconds = interval_seconds
        self.threshold_minutes = threshold_minutes
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """在当前事件循环中启动巡检任务（重复调用无副作用）。"""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="idle-room-reaper")
        logger.info(
            "闲置房间回收已启动 | 间隔 %ss | 阈值 %s 分钟",
            self.interval_seconds, self.threshold_minutes,
        )

    async def stop(self) -> None:
        """取消巡检任务并等待其退出。"""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("闲置房间回收已停止")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.sweep()

    async def sweep(self) -> int:
        """执行一次巡检，返回本次销毁的房间数。

        单个房间销毁失败只记录日志，不影响后续房间。
        """
        try:
            rooms = await self.store.list_inactive_rooms(self.threshold_minutes)
        except Exception as e:
            logger.error("列出闲置房间失败: %s", e, exc_info=True)
            return 0
        if not rooms:
            return 0

        logger.info("发现 %d 个闲置房间，开始回收", len(rooms))
        removed = 0
        for room in rooms:
            # 以列出时的阈值为准：期间有新活动的房间会被跳过
            cutoff = room.last_activity_at + timedelta(microseconds=1)
            try:
                if await self.sessions.destroy_room(room.id, reason="expired", expired_before=cutoff):
                    removed += 1
                    logger.info("已回收闲置房间 | room=%s | 最近活动: %s", room.id, room.last_activity_at)
            except Exception as e:
                logger.error("回收房间失败 | room=%s | err=%s", room.id, e, exc_info=True)
        return removed
