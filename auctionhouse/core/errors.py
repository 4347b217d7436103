"""
도메인 에러 정의

에러는 하나의 예외 타입(DomainError)과 닫힌 코드 집합(ErrorCode)으로 표현한다.
각 코드는 정확히 하나의 ErrorKind 에 속하고, HTTP 상태 매핑은
api/errors.py 의 변환 경계에서 kind 기준으로 한 번만 이루어진다.
"""
from __future__ import annotations
import enum
from typing import Any, Dict, Optional


class ErrorKind(str, enum.Enum):
    """에러 분류"""
    not_found = "NOT_FOUND"
    business_rule = "BUSINESS_RULE"
    unauthorized = "UNAUTHORIZED"
    forbidden = "FORBIDDEN"
    validation = "VALIDATION"
    transient_conflict = "TRANSIENT_CONFLICT"
    internal = "INTERNAL"


class ErrorCode(str, enum.Enum):
    """클라이언트에 노출되는 에러 코드"""
    # NotFound
    AUCTION_NOT_FOUND = "AUCTION_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"

    # 경매 상태/규칙
    AUCTION_NOT_ACTIVE = "AUCTION_NOT_ACTIVE"
    AUCTION_ENDED = "AUCTION_ENDED"
    INVALID_AUCTION_STATUS = "INVALID_AUCTION_STATUS"
    AUCTION_MODIFICATION_NOT_ALLOWED = "AUCTION_MODIFICATION_NOT_ALLOWED"
    DUPLICATE_AUCTION = "DUPLICATE_AUCTION"

    # 입찰 규칙
    BIDDING_ENDED = "BIDDING_ENDED"
    BID_TOO_LOW = "BID_TOO_LOW"
    INVALID_BID_INCREMENT = "INVALID_BID_INCREMENT"
    SELF_BIDDING_NOT_ALLOWED = "SELF_BIDDING_NOT_ALLOWED"
    DUPLICATE_BID = "DUPLICATE_BID"

    # 사용자
    USER_ALREADY_EXISTS = "USER_ALREADY_EXISTS"

    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    CONCURRENT_UPDATE_CONFLICT = "CONCURRENT_UPDATE_CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def kind(self) -> ErrorKind:
        return _KIND_BY_CODE[self]


_KIND_BY_CODE: Dict[ErrorCode, ErrorKind] = {
    ErrorCode.AUCTION_NOT_FOUND: ErrorKind.not_found,
    ErrorCode.USER_NOT_FOUND: ErrorKind.not_found,
    ErrorCode.AUCTION_NOT_ACTIVE: ErrorKind.business_rule,
    ErrorCode.AUCTION_ENDED: ErrorKind.business_rule,
    ErrorCode.INVALID_AUCTION_STATUS: ErrorKind.business_rule,
    ErrorCode.AUCTION_MODIFICATION_NOT_ALLOWED: ErrorKind.business_rule,
    ErrorCode.DUPLICATE_AUCTION: ErrorKind.business_rule,
    ErrorCode.BIDDING_ENDED: ErrorKind.business_rule,
    ErrorCode.BID_TOO_LOW: ErrorKind.business_rule,
    ErrorCode.INVALID_BID_INCREMENT: ErrorKind.business_rule,
    ErrorCode.SELF_BIDDING_NOT_ALLOWED: ErrorKind.business_rule,
    ErrorCode.DUPLICATE_BID: ErrorKind.business_rule,
    ErrorCode.USER_ALREADY_EXISTS: ErrorKind.business_rule,
    ErrorCode.UNAUTHORIZED: ErrorKind.unauthorized,
    ErrorCode.FORBIDDEN: ErrorKind.forbidden,
    ErrorCode.VALIDATION_FAILED: ErrorKind.validation,
    ErrorCode.CONCURRENT_UPDATE_CONFLICT: ErrorKind.transient_conflict,
    ErrorCode.INTERNAL_ERROR: ErrorKind.internal,
}


class DomainError(Exception):
    """
    서비스 계층에서 던지는 유일한 예외 타입.

    Args:
        code: ErrorCode
        message: 사용자에게 보여줄 메시지
        context: 에러 상황의 구조화된 값 (auction_id, current_price 등)
        details: 필드 단위 검증 메시지 {field: message}
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context or {}
        self.details = details

    @property
    def kind(self) -> ErrorKind:
        return self.code.kind

    def __repr__(self) -> str:
        return f"DomainError({self.code.value}, {self.message!r})"
