"""领域层模型与协议。

包含：
- models: 发往文本生成端点的 ChatMessage / ChatRequest / ChatResult 模型。
- conversation: 会话与消息的内存模型及持久化协议。
- exceptions: 业务异常类型定义。
"""
