from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field

from auctionhouse.db.models import AuctionStatus


class BidCreate(BaseModel):
    """입찰 Request"""
    bidder_id: str = Field(..., min_length=1, description="입찰자 ID")
    amount: Decimal = Field(..., ge=Decimal("0.01"), max_digits=12, decimal_places=2, description="입찰 금액")


class BidOut(BaseModel):
    """입찰 이력 1건"""
    id: str
    auction_id: str
    bidder_id: str
    amount: Decimal
    buy_now: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class BidResultOut(BaseModel):
    """입찰 결과"""
    auction_id: str
    bid_id: str
    bidder_id: str
    amount: Decimal
    current_price: Decimal = Field(..., description="반영 후 현재가")
    bid_count: int = Field(..., description="반영 후 입찰 수")
    highest_bidder_id: str
    reserve_met: bool
    reserve_met_changed: bool = Field(..., description="이번 입찰로 리저브 충족 여부가 바뀌었는지")
    status: AuctionStatus
    bought_now: bool = Field(..., description="즉시구매가 도달로 낙찰됐는지")
    placed_at: datetime

    model_config = {"from_attributes": True}
