"""
API 数据模型定义
"""
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel


class ProcessInventionRequest(BaseModel):
    inventionText: str = ""
    keyFeatures: Optional[str] = None


class ProcessInventionResponse(BaseModel):
    jobId: str
    recordId: str
    status: str
    message: str


class RetryComparisonRequest(BaseModel):
    patentId: str = ""
    keyFeatures: str = ""


class RetryComparisonResponse(BaseModel):
    matrix: str
    excerpts: str


@dataclass
class CurrentUser:
    user_id: str
