"""会话与消息的内存模型。

ConversationStore 独占所有 Conversation / Message 记录，
RevealScheduler 与 ResponsePipeline 只通过 (conversation_id, message_id)
寻址，不持有独立副本。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Protocol
from uuid import uuid4


Role = Literal["user", "assistant"]

DEFAULT_CONVERSATION_ID = "default"
DEFAULT_CONVERSATION_TITLE = "New Chat"

# 旧版持久化数据里助手角色叫 "bot"
_LEGACY_ROLES = {"bot": "assistant", "model": "assistant"}


def new_message_id() -> str:
    return f"m-{uuid4().hex}"


def new_conversation_id() -> str:
    return f"c-{uuid4().hex}"


@dataclass
class Message:
    """会话中的一轮消息。

    - loading: 从创建开始为 True，直到 reveal 结束或失败写入后变为 False；
      变为 False 之后消息不可再修改。
    - error: ResponsePipeline 失败时为 True，content 为可读的错误信息。
    """

    id: str
    role: Role
    content: str = ""
    loading: bool = False
    error: bool = False

    @property
    def settled(self) -> bool:
        return not self.loading

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "loading": self.loading,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        role = str(data.get("role") or "user")
        role = _LEGACY_ROLES.get(role, role)
        if role not in ("user", "assistant"):
            raise ValueError(f"Unknown message role: {role!r}")
        return cls(
            id=str(data["id"]),
            role=role,  # type: ignore[arg-type]
            content=data.get("content") or "",
            # 进程退出时还在 reveal 的消息，重新加载后直接视为已结束
            loading=False,
            error=bool(data.get("error", False)),
        )


@dataclass
class Conversation:
    id: str
    title: str
    messages: List[Message] = field(default_factory=list)

    def find_message(self, message_id: str) -> Optional[Message]:
        for msg in self.messages:
            if msg.id == message_id:
                return msg
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        return cls(
            id=str(data["id"]),
            title=data.get("title") or DEFAULT_CONVERSATION_TITLE,
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
        )


def default_conversation(title: str = DEFAULT_CONVERSATION_TITLE) -> Conversation:
    return Conversation(id=DEFAULT_CONVERSATION_ID, title=title, messages=[])


def derive_title(prompt: str, max_words: int = 8, max_chars: int = 30) -> str:
    """根据会话的第一条用户输入生成标题。"""

    words = prompt.split()
    if not words:
        return DEFAULT_CONVERSATION_TITLE
    title = " ".join(words[:max_words])
    if len(title) <= max_chars and len(words) <= max_words:
        return title
    return title[:max_chars].rstrip() + "..."


@dataclass
class PersistedState:
    """持久化层读写的完整快照。"""

    conversations: List[Conversation]
    active_conversation: str
    theme: str


class KeyValueStore(Protocol):
    """持久化键值存储协议（localStorage 语义：字符串键、字符串值）。"""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...
