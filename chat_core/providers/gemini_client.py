"""Gemini generateContent 端点适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 generateContent 的请求格式：
   {"contents": [{"role": "user" | "model", "parts": [{"text": ...}]}]}
3. 调用 HTTP 接口并把网络错误、非 2xx、响应格式错误统一包装为 BusinessError。
4. 从 candidates[0].content.parts[0].text 取出唯一的回答文本。
"""

import httpx
from typing import Any, Dict, Optional

from chat_core.config.settings import DEFAULT_API_URL
from chat_core.domain.models import ChatRequest, ChatResult, ChatMessage
from chat_core.domain.exceptions import (
    NetworkError,
    ApiError,
    RateLimitError,
    ResponseFormatError,
    ValidationError,
)


class GeminiClient:
    """Gemini 端点客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - generate: 对外统一调用入口，返回 ChatResult。
    """

    name = "gemini"

    def __init__(self, settings):
        # Settings 里包含 api_url、api_key、超时等配置
        self._settings = settings

    async def generate(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式生成调用。

        步骤：
        1. 校验访问密钥。
        2. 构造 HTTP 请求 payload。
        3. 发送请求并捕获网络错误/限流/服务端错误。
        4. 解析响应，缺字段时抛出 ResponseFormatError。
        """

        api_key = getattr(self._settings, "gemini_api_key", None)
        if not api_key:
            # 配置缺失走 ValidationError，同样会被写进失败的消息里
            raise ValidationError(code="MISSING_API_KEY", message="GEMINI_API_KEY not set")
        payload = self._build_payload(req)
        url = getattr(self._settings, "gemini_api_url", None) or DEFAULT_API_URL
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    url,
                    params={"key": api_key},
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or "Network error")

        data = self._decode(resp)
        if resp.status_code == 429:
            raise RateLimitError(
                code="RATE_LIMIT",
                message=self._error_message(data) or "Rate limit exceeded",
                http_status=429,
            )
        if not 200 <= resp.status_code < 300:
            raise ApiError(
                code="API_ERROR",
                message=self._error_message(data) or "API request failed",
                http_status=resp.status_code,
            )
        if data is None:
            raise ResponseFormatError(code="BAD_RESPONSE", message="Response body is not valid JSON")
        return self._parse_response(data)

    def _build_payload(self, req: ChatRequest) -> dict:
        """将 ChatRequest 转成 generateContent 所需的请求 JSON。"""

        return {"contents": [self._message_to_payload(m) for m in req.messages]}

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        return {"role": message.role, "parts": [{"text": message.content}]}

    @staticmethod
    def _decode(resp) -> Optional[Any]:
        try:
            return resp.json()
        except ValueError:
            return None

    @staticmethod
    def _error_message(data: Any) -> Optional[str]:
        """取出错误响应体中的 error.message 字段。"""

        if not isinstance(data, dict):
            return None
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        return None

    def _parse_response(self, data: Any) -> ChatResult:
        """把原始响应 JSON 解析为统一的 ChatResult。"""

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise ResponseFormatError(
                code="BAD_RESPONSE",
                message="Unexpected response format: missing candidates[0].content.parts[0].text",
            )
        if not isinstance(text, str):
            raise ResponseFormatError(code="BAD_RESPONSE", message="Response text is not a string")
        return ChatResult(provider=self.name, text=text, raw=data)
