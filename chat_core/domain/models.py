"""发往文本生成端点的统一请求/响应模型。

本模块定义了会话层与 Provider 之间共享的标准数据结构：

- ChatMessage: 一轮对话（user/model），已经是端点所需的角色命名。
- ChatRequest: 发给 Provider 的完整历史。
- ChatResult: 从 Provider 解析后的唯一回答文本。

Provider 适配器（如 GeminiClient）只依赖这些模型，
并负责在端点 JSON 与这些模型之间做转换。
"""

from dataclasses import dataclass
from typing import List, Literal, Optional


# 端点侧的角色名：助手回合在端点中叫 "model"
EndpointRole = Literal["user", "model"]


@dataclass
class ChatMessage:
    """一轮对话。

    - role: 端点角色，user 或 model。
    - content: 纯文本内容。
    """

    role: EndpointRole
    content: str


@dataclass
class ChatRequest:
    """一次完整的生成请求，messages 按时间顺序（最早的在前）。"""

    messages: List[ChatMessage]


@dataclass
class ChatResult:
    """一次生成调用的结果。

    - provider: Provider 名（如 "gemini"）。
    - text: candidates[0].content.parts[0].text 的原始文本（未清洗）。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    provider: str
    text: str
    raw: Optional[dict] = None
