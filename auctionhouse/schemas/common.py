from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """모든 에러 응답의 공통 형식"""
    timestamp: datetime
    status: int
    error: str = Field(..., description="HTTP reason phrase")
    message: str
    error_code: str
    path: str
    details: Optional[Dict[str, str]] = Field(None, description="필드 단위 검증 메시지")
    context: Optional[Dict[str, Any]] = None
    correlation_id: str


class LifecycleRunRequest(BaseModel):
    now: Optional[datetime] = Field(None, description="기준 시각 (없으면 현재)")


class LifecycleRunResponse(BaseModel):
    activated: int
    completed: int
    ended_no_sale: int
    ran_at: datetime
