"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError。
ResponsePipeline 只捕获 BusinessError，并把 message 写入失败的那条助手消息，
因此 Provider 层必须把底层异常（httpx、JSON 解析等）包装成这里的类型。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_WRITE_ERROR"）。
        message: 用户可读错误信息，会原样展示在消息气泡中。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、conversation_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """文本生成端点返回非 2xx（429 除外）时抛出。"""


class RateLimitError(BusinessError):
    """端点限流错误（HTTP 429）。本项目不做自动重试。"""


class ResponseFormatError(BusinessError):
    """响应体无法解析为 JSON，或缺少 candidates/content/parts/text 字段。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""
