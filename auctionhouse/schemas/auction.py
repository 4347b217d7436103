"""
Pydantic Models (Request/Response) - 경매
"""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, model_validator

from auctionhouse.db.models import AuctionStatus
from auctionhouse.db.types import as_utc

MIN_PRICE = Decimal("0.01")


def _price(description: str, required: bool = False):
    default = ... if required else None
    return Field(default, ge=MIN_PRICE, max_digits=12, decimal_places=2, description=description)


# ============================================
# Request Models
# ============================================

class AuctionCreate(BaseModel):
    """경매 등록 Request"""
    seller_id: str = Field(..., min_length=1, description="판매자 ID")
    title: str = Field(..., min_length=1, max_length=200, description="제목")
    description: Optional[str] = Field(None, max_length=2000)
    category: str = Field(..., min_length=1, max_length=100, description="카테고리 (ex. electronics)")
    condition: Optional[str] = Field(None, max_length=50, description="상태 (ex. new, used)")
    location: Optional[str] = Field(None, max_length=200)

    starting_price: Decimal = _price("시작가", required=True)
    reserve_price: Optional[Decimal] = _price("리저브(최저 낙찰가)")
    buy_now_price: Optional[Decimal] = _price("즉시구매가")

    start_time: datetime = Field(..., description="시작 시각 (미래)")
    end_time: datetime = Field(..., description="마감 시각 (> start_time)")

    featured: bool = False
    publish: bool = Field(False, description="True면 바로 SCHEDULED 로 등록")

    @model_validator(mode="after")
    def _check_window(self):
        if as_utc(self.end_time) <= as_utc(self.start_time):
            raise ValueError("Auction end time must be after the start time")
        return self


class AuctionUpdate(BaseModel):
    """경매 수정 Request (보낸 필드만 반영)"""
    actor_id: str = Field(..., min_length=1, description="요청자 ID (판매자)")
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    condition: Optional[str] = Field(None, max_length=50)
    location: Optional[str] = Field(None, max_length=200)
    starting_price: Optional[Decimal] = _price("시작가")
    reserve_price: Optional[Decimal] = _price("리저브(최저 낙찰가)")
    buy_now_price: Optional[Decimal] = _price("즉시구매가")
    end_time: Optional[datetime] = None
    featured: Optional[bool] = None

    def changes(self) -> dict:
        """보낸 필드만. null 은 reserve/buy-now/설명류에서만 '지우기'로 인정"""
        data = self.model_dump(exclude_unset=True, exclude={"actor_id"})
        return {k: v for k, v in data.items() if v is not None or k in NULLABLE_ON_UPDATE}


NULLABLE_ON_UPDATE = frozenset({"description", "condition", "location", "reserve_price", "buy_now_price"})


class ActorRequest(BaseModel):
    """판매자 액션 (publish / cancel) Request"""
    actor_id: str = Field(..., min_length=1)


class AuctionSort(str, enum.Enum):
    popular = "popular"
    ending_soon = "ending_soon"
    ending_soonest = "ending_soonest"
    recent = "recent"
    highest_price = "highest_price"
    featured = "featured"
    no_bids = "no_bids"


class AuctionQuery(BaseModel):
    """목록 조회 필터"""
    status: Optional[AuctionStatus] = None
    category: Optional[str] = None
    seller_id: Optional[str] = None
    q: Optional[str] = Field(None, min_length=1, description="제목/설명 검색어")
    min_price: Optional[Decimal] = Field(None, ge=0)
    max_price: Optional[Decimal] = Field(None, ge=0)
    ends_after: Optional[datetime] = None
    ends_before: Optional[datetime] = None
    sort: Optional[AuctionSort] = None
    limit: int = Field(50, ge=1, le=200)


# ============================================
# Response Models
# ============================================

class AuctionOut(BaseModel):
    id: str
    seller_id: str
    title: str
    description: Optional[str] = None
    category: str
    condition: Optional[str] = None
    location: Optional[str] = None

    starting_price: Decimal
    reserve_price: Optional[Decimal] = None
    buy_now_price: Optional[Decimal] = None
    current_price: Decimal

    start_time: datetime
    end_time: datetime
    status: AuctionStatus

    highest_bidder_id: Optional[str] = None
    bid_count: int
    view_count: int
    watch_count: int
    reserve_met: bool
    featured: bool
    version: int

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AuctionStats(BaseModel):
    by_status: Dict[str, int]
    active: int
    total_active_value: Decimal
    average_active_price: Optional[Decimal] = None
    popular_categories: List[str]
    category: Optional[str] = None
    category_count: Optional[int] = None
