"""
检索流水线的错误类型

每个错误携带 HTTP 状态码，由 backend 层统一渲染。
"""
from typing import Any, Dict, Optional


class PriorArtError(Exception):
    """所有业务错误的基类"""

    status_code: int = 500

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class InvalidInput(PriorArtError):
    """提交参数缺失或无效"""

    status_code = 400


class ServiceUnavailable(PriorArtError):
    """外部适配器未配置 (提交时检查)"""

    status_code = 503


class UpstreamFailure(PriorArtError):
    """外部服务调用失败 (LLM / 专利检索)"""

    status_code = 502


class NotFound(PriorArtError):
    status_code = 404


class Forbidden(PriorArtError):
    status_code = 403


class NotReady(PriorArtError):
    """任务尚未完成"""

    status_code = 409
