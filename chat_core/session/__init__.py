"""会话状态机：存储、逐词展示调度、请求管线与控制器。"""

from chat_core.session.store import ConversationStore
from chat_core.session.reveal import RevealScheduler, RevealTask
from chat_core.session.pipeline import ResponsePipeline
from chat_core.session.controller import SessionController, SessionView

__all__ = [
    "ConversationStore",
    "RevealScheduler",
    "RevealTask",
    "ResponsePipeline",
    "SessionController",
    "SessionView",
]
