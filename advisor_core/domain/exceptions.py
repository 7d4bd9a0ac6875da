"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层做统一捕获与用户提示。

Provider 抛出的 NetworkError / ApiError / RateLimitError / MalformedOutputError
会在 AdvisorSession 与 ShortcutSynthesizer 内部被吸收并降级为兜底回复，
不会穿透到 HTTP 层。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败。"""


class UpstreamTimeoutError(NetworkError):
    """上游模型调用超时。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流或配额耗尽。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class MalformedOutputError(BusinessError):
    """上游返回了无法解析或为空的内容。"""
