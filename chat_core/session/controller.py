"""会话控制器（组合根）。

把用户意图（提交 prompt、切换/新建/删除会话）转换为 ConversationStore 的修改，
负责启动 ResponsePipeline，并向视图层暴露当前会话的消息列表。
"""

import asyncio
import logging
from functools import partial
from typing import Optional, Protocol, Set, Tuple

from chat_core.domain.conversation import Conversation, Message, new_message_id
from chat_core.domain.exceptions import BusinessError
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import ProviderClient
from chat_core.session.pipeline import ResponsePipeline
from chat_core.session.reveal import RevealScheduler
from chat_core.session.store import ConversationStore


class SessionView(Protocol):
    """视图层协议：只读消费当前会话，唯一的输入事件是 submit。"""

    def render(self, conversation: Conversation) -> None:
        ...

    def scroll_to_bottom(self) -> None:
        ...


class SessionController:
    def __init__(
        self,
        store: ConversationStore,
        provider_client: ProviderClient,
        view: Optional[SessionView] = None,
        reveal_interval: Optional[float] = None,
    ):
        self._store = store
        self._view = view
        self._reveal = RevealScheduler(store, interval=reveal_interval, on_tick=self._scroll_to_bottom)
        self._pipeline = ResponsePipeline(store, provider_client, self._reveal)
        self._busy = False
        # 当前持有 busy 标志的占位消息 id
        self._pending_message_id: Optional[str] = None
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._unsubscribe = store.subscribe(self._on_store_changed) if view is not None else None

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def active_conversation(self) -> Conversation:
        return self._store.get_active()

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._store.get_active().messages)

    def submit(self, prompt_text: str) -> Optional["asyncio.Task[None]"]:
        """提交一条 prompt。

        空白输入或正在处理上一条时直接返回 None；否则追加用户消息与助手占位消息，
        在事件循环上调度 ResponsePipeline 并返回对应的 Task。
        """
        query = (prompt_text or "").strip()
        if not query or self._busy:
            return None

        conv = self._store.get_active()
        user_msg = Message(id=new_message_id(), role="user", content=query)
        placeholder = Message(id=new_message_id(), role="assistant", content="", loading=True)
        self._store.append(conv.id, user_msg)
        self._store.append(conv.id, placeholder)
        self._busy = True
        self._pending_message_id = placeholder.id
        logger.info(
            "Prompt submitted",
            extra={"extra": {"conversation_id": conv.id, "message_id": placeholder.id}},
        )

        task = asyncio.get_running_loop().create_task(
            self._pipeline.run(
                conv.id,
                list(conv.messages),
                placeholder.id,
                on_settled=partial(self._settle, placeholder.id),
                foreground=partial(self._is_pending, placeholder.id),
            )
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def switch_conversation(self, conversation_id: str) -> None:
        """切换当前会话。

        正在进行的 reveal 会被立即结束（数据中的目标消息仍然完整落定），
        但不会取消网络请求：请求完成后照常写入它自己的会话。
        """
        if self._store.get(conversation_id) is None:
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        if conversation_id == self._store.active_id:
            return
        self._reset_transient()
        self._store.set_active(conversation_id)

    def new_conversation(self, title: Optional[str] = None) -> Conversation:
        self._reset_transient()
        return self._store.create_conversation(title)

    def delete_conversation(self, conversation_id: str) -> None:
        if conversation_id == self._store.active_id:
            self._reset_transient()
        self._store.delete_conversation(conversation_id)

    def rename_conversation(self, conversation_id: str, title: str) -> None:
        self._store.rename_conversation(conversation_id, title)

    def toggle_theme(self) -> str:
        return self._store.toggle_theme()

    async def wait_idle(self) -> None:
        """等待所有已调度的请求以及随后的 reveal 完成。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
        await self._reveal.wait()

    def close(self) -> None:
        """拆除控制器：清理 reveal 计时器与未完成的请求，写回存储。"""
        self._reveal.cancel()
        for task in list(self._tasks):
            task.cancel()
        self._busy = False
        self._pending_message_id = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._store.flush()
        logger.info("Session controller closed")

    def _reset_transient(self) -> None:
        self._reveal.finish()
        self._busy = False
        self._pending_message_id = None

    def _is_pending(self, message_id: str) -> bool:
        return self._pending_message_id == message_id

    def _settle(self, message_id: str) -> None:
        # 只有当前持有 busy 的那次提交才能清除它
        if self._pending_message_id != message_id:
            logger.log(
                logging.DEBUG,
                "Stale settle ignored",
                extra={"extra": {"message_id": message_id}},
            )
            return
        self._busy = False
        self._pending_message_id = None

    def _scroll_to_bottom(self) -> None:
        if self._view is not None:
            self._view.scroll_to_bottom()

    def _on_store_changed(self, store: ConversationStore) -> None:
        if self._view is not None:
            self._view.render(store.get_active())
