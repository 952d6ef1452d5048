"""一次请求/响应周期。

成功：清洗回答文本后交给 RevealScheduler，on_settled 在 reveal 结束时才触发，
保证 UI 的 loading 状态覆盖整个展示过程。
失败：直接把错误写进目标助手消息（error=True, loading=False），立即触发 on_settled。
不做任何重试。
"""

import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from chat_core.domain.conversation import Message
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import ChatMessage, ChatRequest
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import ProviderClient
from chat_core.session.reveal import RevealScheduler
from chat_core.session.store import ConversationStore


_BOLD_PATTERN = re.compile(r"\*\*([^*]+)\*\*")

# 会话角色 -> 端点角色
_ENDPOINT_ROLES = {"assistant": "model", "user": "user"}


def clean_response_text(text: str) -> str:
    """去掉 markdown 粗体标记（**text** -> text）并去除首尾空白。"""
    return _BOLD_PATTERN.sub(r"\1", text).strip()


def build_history(messages: Sequence[Message], exclude_id: Optional[str] = None) -> List[ChatMessage]:
    """把会话消息按原顺序转换为端点的 user/model 回合，跳过待填充的占位消息。"""
    return [
        ChatMessage(role=_ENDPOINT_ROLES[m.role], content=m.content)
        for m in messages
        if m.id != exclude_id
    ]


class ResponsePipeline:
    def __init__(
        self,
        store: ConversationStore,
        provider_client: ProviderClient,
        reveal: RevealScheduler,
    ):
        self._store = store
        self._provider_client = provider_client
        self._reveal = reveal

    async def run(
        self,
        conversation_id: str,
        history: Sequence[Message],
        message_id: str,
        on_settled: Optional[Callable[[], None]] = None,
        foreground: Optional[Callable[[], bool]] = None,
    ) -> None:
        """对一条新提交的 prompt 执行完整的请求/响应周期。

        Args:
            conversation_id: 目标会话 id（按 id 寻址，不依赖当前激活的会话）
            history: 会话完整历史（已包含新的用户消息）
            message_id: 待填充的助手占位消息 id
            on_settled: 目标消息结束（reveal 完成或失败写入）时的回调
            foreground: 回答到达时判断本次提交是否仍在前台；返回 False 时
                不做逐词展示，直接写入完整文本，避免打断前台会话正在进行的 reveal
        """
        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": conversation_id,
            "message_id": message_id,
        }
        req = ChatRequest(messages=build_history(history, exclude_id=message_id))
        self._log(
            logging.INFO,
            "Calling provider",
            log_ctx,
            provider=self._provider_client.name,
            message_count=len(req.messages),
        )

        try:
            result = await self._provider_client.generate(req)
        except BusinessError as e:
            self._log(
                logging.WARNING,
                "Provider call failed",
                log_ctx,
                code=e.code,
                http_status=e.http_status,
                error=e.message,
                elapsed_seconds=round(time.time() - start_time, 2),
            )
            self._store.update_message(conversation_id, message_id, content=e.message, error=True, loading=False)
            if on_settled is not None:
                on_settled()
            return

        text = clean_response_text(result.text)
        self._log(
            logging.INFO,
            "Provider call succeeded",
            log_ctx,
            chars=len(text),
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        if foreground is not None and not foreground():
            self._log(logging.INFO, "Settling background reply", log_ctx)
            self._reveal.settle(conversation_id, message_id, text, on_done=on_settled)
            return
        self._reveal.start(conversation_id, message_id, text, on_done=on_settled)

    def _log(self, level: int, msg: str, ctx: Dict[str, Any], **kwargs) -> None:
        payload = dict(ctx)
        payload.update(kwargs)
        logger.log(level, msg, extra={"extra": payload})
