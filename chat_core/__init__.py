"""Chat Core 顶层包。

该包提供多会话聊天客户端的核心实现，
包括配置加载、领域模型、Provider 适配、会话状态机、
逐词展示（reveal）动画调度与持久化存储等能力。
"""

from chat_core.session import ConversationStore, SessionController

__all__ = ["ConversationStore", "SessionController"]
