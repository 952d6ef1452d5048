"""逐词展示（reveal）调度器。

把一段已经完整拿到的回答，按 tick 一词一词写进目标消息的 content，
模拟“正在输入”的效果。调度器本身不持有消息副本，只通过
ConversationStore.update_message 按 (conversation_id, message_id) 写入。

同一个调度器同一时刻最多只有一个 reveal 在跑：start() 会先取消旧任务。
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from chat_core.config.settings import settings
from chat_core.infrastructure.logging.logger import logger
from chat_core.session.store import ConversationStore


@dataclass
class RevealTask:
    """一次 reveal 的状态句柄。

    - words: 按单个空格切分的 token 序列（保留空 token，重新拼接后与原文一致）。
    - cursor: 已写入的 token 数。
    - text: 当前累积的文本。
    """

    conversation_id: str
    message_id: str
    full_text: str
    words: List[str]
    cursor: int = 0
    text: str = ""
    on_done: Optional[Callable[[], None]] = None
    task: Optional["asyncio.Task[None]"] = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.cursor >= len(self.words)

    def advance(self) -> str:
        word = self.words[self.cursor]
        self.text = word if self.cursor == 0 else f"{self.text} {word}"
        self.cursor += 1
        return self.text


class RevealScheduler:
    def __init__(
        self,
        store: ConversationStore,
        interval: Optional[float] = None,
        on_tick: Optional[Callable[[], None]] = None,
    ):
        self._store = store
        self._interval = settings.reveal_interval if interval is None else interval
        self._on_tick = on_tick
        self._current: Optional[RevealTask] = None

    @property
    def active(self) -> bool:
        return self._current is not None

    @property
    def current(self) -> Optional[RevealTask]:
        return self._current

    def start(
        self,
        conversation_id: str,
        message_id: str,
        full_text: str,
        on_done: Optional[Callable[[], None]] = None,
    ) -> RevealTask:
        """开始一次 reveal，必须在运行中的事件循环里调用。"""
        self.cancel()
        handle = RevealTask(
            conversation_id=conversation_id,
            message_id=message_id,
            full_text=full_text,
            words=full_text.split(" "),
            on_done=on_done,
        )
        if not full_text.strip():
            # 空文本：直接结束，不产生任何 tick
            self._store.update_message(conversation_id, message_id, content="", loading=False)
            if on_done is not None:
                on_done()
            return handle

        self._store.update_message(conversation_id, message_id, content="", loading=True)
        self._current = handle
        handle.task = asyncio.get_running_loop().create_task(self._run(handle))
        self._log(logging.INFO, "Reveal started", handle, words=len(handle.words))
        return handle

    def settle(
        self,
        conversation_id: str,
        message_id: str,
        full_text: str,
        on_done: Optional[Callable[[], None]] = None,
    ) -> None:
        """不经过 tick，直接把完整文本写入目标消息；当前正在进行的 reveal 不受影响。"""
        self._store.update_message(conversation_id, message_id, content=full_text, loading=False)
        if on_done is not None:
            on_done()

    def cancel(self) -> None:
        """停止当前 reveal，但不结束目标消息。无任务时调用也是安全的。"""
        handle, self._current = self._current, None
        if handle is None:
            return
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
        self._log(logging.INFO, "Reveal cancelled", handle, cursor=handle.cursor)

    def finish(self) -> None:
        """停止 tick 并立即写入完整文本，目标消息随之结束。"""
        handle = self._current
        if handle is None:
            return
        self.cancel()
        self._store.update_message(handle.conversation_id, handle.message_id, content=handle.full_text, loading=False)
        if handle.on_done is not None:
            handle.on_done()

    async def wait(self) -> None:
        """等待当前 reveal 结束（被取消也视为结束）。"""
        handle = self._current
        if handle is None or handle.task is None:
            return
        try:
            await asyncio.shield(handle.task)
        except asyncio.CancelledError:
            if not handle.task.cancelled():
                raise

    async def _run(self, handle: RevealTask) -> None:
        while True:
            await asyncio.sleep(self._interval)
            text = handle.advance()
            finished = handle.done
            self._store.update_message(handle.conversation_id, handle.message_id, content=text, loading=not finished)
            if self._on_tick is not None:
                self._on_tick()
            if finished:
                break
        if self._current is handle:
            self._current = None
        self._log(logging.INFO, "Reveal finished", handle, words=len(handle.words))
        if handle.on_done is not None:
            handle.on_done()

    def _log(self, level: int, msg: str, handle: RevealTask, **kwargs) -> None:
        payload = {"conversation_id": handle.conversation_id, "message_id": handle.message_id}
        payload.update(kwargs)
        logger.log(level, msg, extra={"extra": payload})
