import json
import os
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import (
    Conversation,
    KeyValueStore,
    PersistedState,
    default_conversation,
)
from chat_core.domain.exceptions import BusinessError
from chat_core.infrastructure.logging.logger import logger


KEY_CONVERSATIONS = "conversations"
KEY_ACTIVE = "activeConversation"
KEY_THEME = "theme"

THEMES = ("light", "dark")


class JsonKeyValueStore(KeyValueStore):
    """一个键一个文件的持久化键值存储，写入通过临时文件 + os.replace 保证原子性。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._kv_root = self._root / "kv"
        self._kv_root.mkdir(parents=True, exist_ok=True)

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = self._kv_root / f"{key}.{uuid4().hex}.tmp"
        try:
            tmp_path.write_text(value, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise BusinessError(code="STORE_INVALID_KEY", message=key)
        return self._kv_root / f"{key}.json"


class StatePersistence:
    """会话集合、当前会话 id 与主题的序列化层。

    - load(): 启动时读回；缺失或损坏时回退到单个默认会话和系统主题。
    - save(): 每次 ConversationStore 变更后写回全部三个键。
    """

    def __init__(
        self,
        kv: KeyValueStore,
        default_theme: Optional[str] = None,
        default_title: Optional[str] = None,
    ):
        self._kv = kv
        self._default_theme = default_theme or settings.default_theme
        self._default_title = default_title or settings.default_conversation_title

    def load(self) -> PersistedState:
        conversations = self._load_conversations()
        active = self._safe_get(KEY_ACTIVE) or conversations[0].id
        theme = self._safe_get(KEY_THEME)
        if theme not in THEMES:
            theme = self._default_theme
        return PersistedState(conversations=conversations, active_conversation=active, theme=theme)

    def save(self, state: PersistedState) -> None:
        payload = json.dumps([c.to_dict() for c in state.conversations], ensure_ascii=False)
        self._kv.set(KEY_CONVERSATIONS, payload)
        self._kv.set(KEY_ACTIVE, state.active_conversation)
        self._kv.set(KEY_THEME, state.theme)

    def _load_conversations(self) -> List[Conversation]:
        raw = self._safe_get(KEY_CONVERSATIONS)
        if raw:
            try:
                data = json.loads(raw)
                items = [Conversation.from_dict(c) for c in data]
                if items:
                    return items
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.warning(
                    "Persisted conversations are corrupt, falling back to default",
                    extra={"extra": {"error": str(e)}},
                )
        return [default_conversation(self._default_title)]

    def _safe_get(self, key: str) -> Optional[str]:
        try:
            return self._kv.get(key)
        except BusinessError as e:
            logger.warning("Failed to read persisted key", extra={"extra": {"key": key, "error": e.message}})
            return None
