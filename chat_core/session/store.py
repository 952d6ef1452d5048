"""内存中的会话存储。

ConversationStore 是所有会话与消息的唯一事实来源：
RevealScheduler / ResponsePipeline / SessionController 的所有修改都经由
append / update_message 等方法完成。每次修改都会同步：

1. 通知订阅者（视图层重新渲染）；
2. 写回持久化协作方（StatePersistence）。
"""

from dataclasses import replace
from typing import Callable, List, Optional, Tuple

from chat_core.domain.conversation import (
    Conversation,
    Message,
    PersistedState,
    DEFAULT_CONVERSATION_TITLE,
    default_conversation,
    derive_title,
    new_conversation_id,
)
from chat_core.domain.exceptions import BusinessError, ValidationError
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import StatePersistence, THEMES


Listener = Callable[["ConversationStore"], None]

_PATCHABLE_FIELDS = {"content", "loading", "error"}


class ConversationStore:
    def __init__(
        self,
        conversations: Optional[List[Conversation]] = None,
        active_id: Optional[str] = None,
        theme: str = "light",
        persistence: Optional[StatePersistence] = None,
        default_title: str = DEFAULT_CONVERSATION_TITLE,
    ):
        self._default_title = default_title
        self._conversations: List[Conversation] = list(conversations or []) or [default_conversation(default_title)]
        self._active_id = active_id or self._conversations[0].id
        self._theme = theme if theme in THEMES else "light"
        self._persistence = persistence
        self._listeners: List[Listener] = []

    @classmethod
    def load(cls, persistence: StatePersistence, default_title: Optional[str] = None) -> "ConversationStore":
        """从持久化协作方恢复状态（缺失或损坏时由 persistence 负责回退默认值）。"""
        state = persistence.load()
        return cls(
            conversations=state.conversations,
            active_id=state.active_conversation,
            theme=state.theme,
            persistence=persistence,
            default_title=default_title or DEFAULT_CONVERSATION_TITLE,
        )

    # ---- 读取 ----

    @property
    def conversations(self) -> Tuple[Conversation, ...]:
        return tuple(self._conversations)

    @property
    def active_id(self) -> str:
        return self.get_active().id

    @property
    def theme(self) -> str:
        return self._theme

    def get(self, conversation_id: str) -> Optional[Conversation]:
        for conv in self._conversations:
            if conv.id == conversation_id:
                return conv
        return None

    def get_active(self) -> Conversation:
        """返回当前会话；active id 找不到时回退到第一个会话。"""
        return self.get(self._active_id) or self._conversations[0]

    def snapshot(self) -> PersistedState:
        return PersistedState(
            conversations=list(self._conversations),
            active_conversation=self.active_id,
            theme=self._theme,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """注册变更监听器，返回取消订阅的函数。"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- 消息级修改 ----

    def append(self, conversation_id: str, message: Message) -> None:
        """追加消息；会话已被删除时静默忽略（允许的竞态）。"""
        conv = self.get(conversation_id)
        if conv is None:
            logger.debug(
                "Append to missing conversation ignored",
                extra={"extra": {"conversation_id": conversation_id, "message_id": message.id}},
            )
            return
        if (
            message.role == "user"
            and conv.title == self._default_title
            and not any(m.role == "user" for m in conv.messages)
        ):
            conv.title = derive_title(message.content)
        conv.messages.append(message)
        self._commit()

    def update_message(self, conversation_id: str, message_id: str, **patch) -> None:
        """对单条消息做部分字段更新。

        会话或消息已不存在、或者消息已结束（loading=False）时都是无害的 no-op。
        """
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown message fields: {sorted(unknown)}")
        conv = self.get(conversation_id)
        if conv is None:
            return
        for idx, msg in enumerate(conv.messages):
            if msg.id != message_id:
                continue
            if msg.settled:
                logger.debug(
                    "Update to settled message ignored",
                    extra={"extra": {"conversation_id": conversation_id, "message_id": message_id}},
                )
                return
            conv.messages[idx] = replace(msg, **patch)
            self._commit()
            return

    # ---- 会话集合修改 ----

    def create_conversation(self, title: Optional[str] = None) -> Conversation:
        conv = Conversation(id=new_conversation_id(), title=title or self._default_title)
        self._conversations.insert(0, conv)
        self._active_id = conv.id
        self._commit()
        return conv

    def delete_conversation(self, conversation_id: str) -> None:
        conv = self.get(conversation_id)
        if conv is None:
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        was_active = conv.id == self.active_id
        self._conversations.remove(conv)
        if not self._conversations:
            self._conversations.append(Conversation(id=new_conversation_id(), title=self._default_title))
        if was_active:
            self._active_id = self._conversations[0].id
        self._commit()

    def rename_conversation(self, conversation_id: str, title: str) -> None:
        conv = self.get(conversation_id)
        if conv is None:
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        title = (title or "").strip()
        if not title:
            raise ValidationError(code="EMPTY_TITLE", message="Conversation title must not be empty")
        conv.title = title
        self._commit()

    def set_active(self, conversation_id: str) -> None:
        if self.get(conversation_id) is None:
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        self._active_id = conversation_id
        self._commit()

    def set_theme(self, theme: str) -> None:
        if theme not in THEMES:
            raise ValidationError(code="INVALID_THEME", message=f"Unknown theme: {theme!r}")
        self._theme = theme
        self._commit()

    def toggle_theme(self) -> str:
        self.set_theme("light" if self._theme == "dark" else "dark")
        return self._theme

    def flush(self) -> None:
        """把当前快照写回持久化层（关闭时调用）。"""
        if self._persistence is not None:
            self._persistence.save(self.snapshot())

    def _commit(self) -> None:
        # 内存状态是事实来源：写盘失败只记录日志，reveal / 失败写入照常推进
        try:
            self.flush()
        except BusinessError as e:
            logger.error(
                "Failed to persist conversations",
                extra={"extra": {"code": e.code, "error": e.message}},
            )
        for listener in list(self._listeners):
            listener(self)
