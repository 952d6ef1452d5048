"""文本生成端点集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 提供端点的具体实现 (gemini_client)。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ValidationError
from chat_core.providers.base import ProviderClient
from chat_core.providers.gemini_client import GeminiClient


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，目前只有 gemini 一种。"""

    provider_name = (name or "gemini").lower()
    if provider_name != "gemini":
        raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {name!r}")
    return GeminiClient(settings)
