"""对外 API 服务模块。

提供简化的函数接口供宿主应用（GUI / Web 前端）调用，返回普通 dict。
除 shutdown 外，submit_prompt 需要在运行中的事件循环里调用。
"""

import asyncio
from typing import Any, Dict, List, Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation, Message
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import JsonKeyValueStore, StatePersistence
from chat_core.providers import create_provider
from chat_core.session.controller import SessionController, SessionView
from chat_core.session.store import ConversationStore


_controller: Optional[SessionController] = None


def get_default_controller(view: Optional[SessionView] = None) -> SessionController:
    """获取默认的 SessionController 实例（单例）。"""
    global _controller
    if _controller is None:
        persistence = StatePersistence(JsonKeyValueStore(root=settings.storage_root))
        store = ConversationStore.load(persistence, default_title=settings.default_conversation_title)
        _controller = SessionController(
            store=store,
            provider_client=create_provider(),
            view=view,
            reveal_interval=settings.reveal_interval,
        )
    return _controller


def submit_prompt(prompt_text: str) -> Optional[asyncio.Task]:
    """提交一条 prompt；被忽略（空白输入或正忙）时返回 None。"""
    try:
        return get_default_controller().submit(prompt_text)
    except Exception as e:
        logger.error(f"Submit failed: {e}", extra={"extra": {"error": str(e)}})
        raise


def get_active_messages() -> List[Dict[str, Any]]:
    """获取当前会话的所有消息。"""
    return [_message_dict(m) for m in get_default_controller().messages]


def list_conversations() -> List[Dict[str, Any]]:
    """列出所有会话。

    Returns:
        会话列表，每项包含 id, title, message_count, active
    """
    controller = get_default_controller()
    active_id = controller.store.active_id
    return [_conversation_dict(c, active=c.id == active_id) for c in controller.store.conversations]


def new_conversation(title: Optional[str] = None) -> Dict[str, Any]:
    conv = get_default_controller().new_conversation(title)
    return _conversation_dict(conv, active=True)


def switch_conversation(conversation_id: str) -> None:
    get_default_controller().switch_conversation(conversation_id)


def delete_conversation(conversation_id: str) -> None:
    get_default_controller().delete_conversation(conversation_id)


def rename_conversation(conversation_id: str, title: str) -> None:
    get_default_controller().rename_conversation(conversation_id, title)


def toggle_theme() -> str:
    return get_default_controller().toggle_theme()


def shutdown() -> None:
    """关闭默认控制器并写回存储。"""
    global _controller
    if _controller is not None:
        _controller.close()
        _controller = None


def _conversation_dict(conv: Conversation, active: bool) -> Dict[str, Any]:
    return {
        "id": conv.id,
        "title": conv.title,
        "message_count": len(conv.messages),
        "active": active,
    }


def _message_dict(msg: Message) -> Dict[str, Any]:
    return msg.to_dict()
