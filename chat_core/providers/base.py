"""Provider 抽象接口。

ResponsePipeline 不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个端点实现一个 ProviderClient（如 GeminiClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。
- 所有失败都必须以 domain.exceptions.BusinessError 的子类抛出。
"""

from typing import Protocol
from chat_core.domain.models import ChatRequest, ChatResult


class ProviderClient(Protocol):
    """文本生成端点客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - generate(req): 执行一次非流式生成调用，返回统一的 ChatResult。
    """

    name: str

    async def generate(self, req: ChatRequest) -> ChatResult:
        ...
