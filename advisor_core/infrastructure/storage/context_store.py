"""进程内会话上下文窗口。

按 ConversationKey 保存最近若干条 Turn，供模型作为短期记忆；
不落盘、无 TTL，进程退出即丢失。持久化消息由 JsonConversationStore 负责。

- 窗口超过上限时从最旧的一条开始淘汰（FIFO）。
- 每个 key 一把 asyncio.Lock，不同 key 之间互不阻塞；
  需要与进行中的轮次排序的清空走 clear_locked。
"""

import asyncio
from collections import deque
from typing import Deque, Dict, Iterable, Optional, Tuple

from advisor_core.config.settings import settings
from advisor_core.domain.advisor import ConversationKey, Turn


class ConversationContextStore:
    def __init__(self, max_turns: Optional[int] = None):
        limit = max_turns if max_turns is not None else getattr(settings, "max_context_turns", 6)
        if limit < 1:
            raise ValueError("max_turns must be >= 1")
        self._max_turns = int(limit)
        self._windows: Dict[ConversationKey, Deque[Turn]] = {}
        self._locks: Dict[ConversationKey, asyncio.Lock] = {}

    @property
    def max_turns(self) -> int:
        return self._max_turns

    def get(self, key: ConversationKey) -> Tuple[Turn, ...]:
        """返回窗口快照（按时间顺序），不存在时返回空元组。"""

        window = self._windows.get(key)
        if window is None:
            return ()
        return tuple(window)

    def append(self, key: ConversationKey, turns: Iterable[Turn]) -> None:
        """按顺序追加，超出上限的旧 Turn 自动淘汰。"""

        if key is None:
            raise ValueError("ConversationKey is required")
        batch = list(turns)
        if not batch:
            return
        window = self._windows.get(key)
        if window is None:
            window = deque(maxlen=self._max_turns)
            self._windows[key] = window
        window.extend(batch)

    def clear(self, key: ConversationKey) -> None:
        """删除 key 的窗口；重复调用不报错。key 的锁保留，同一 key 始终只有一把锁。"""

        self._windows.pop(key, None)

    async def clear_locked(self, key: ConversationKey) -> None:
        """在 key 的锁内清空，排在进行中的对话轮次之后执行。"""

        async with self.lock(key):
            self.clear(key)

    def lock(self, key: ConversationKey) -> asyncio.Lock:
        """返回 key 专属的锁，同一会话的整轮对话在锁内串行执行。"""

        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks.setdefault(key, asyncio.Lock())
        return lock

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, key: object) -> bool:
        return key in self._windows
