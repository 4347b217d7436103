from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, EmailStr, Field, field_validator

from auctionhouse.schemas.bid import BidOut


# ============================================
# Request Models
# ============================================

class UserCreate(BaseModel):
    """회원 가입 Request"""
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=50)
    # bcrypt는 72바이트까지만 사용
    password: str = Field(..., min_length=6, max_length=72)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)

    @field_validator("password")
    @classmethod
    def _password_fits_bcrypt(cls, v: str) -> str:
        # 글자 수가 아니라 UTF-8 바이트 기준
        if len(v.encode("utf-8")) > 72:
            raise ValueError("password must be at most 72 bytes in UTF-8")
        return v


# ============================================
# Response Models
# ============================================

class UserOut(BaseModel):
    id: str
    email: str
    username: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    email_verified: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class UserStats(BaseModel):
    total_users: int
    verified_users: int
    timestamp: datetime


class UserActivity(BaseModel):
    """판매/입찰 현황"""
    user_id: str
    auction_count: int = Field(..., description="등록한 경매 수")
    has_active_auctions: bool
    leading_auction_ids: List[str] = Field(default_factory=list, description="최고 입찰자인 경매")
    recent_bids: List[BidOut] = Field(default_factory=list)
