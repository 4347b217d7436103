# auctionhouse/routers/auctions.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from auctionhouse.api.deps import get_bidding_policy, get_retry_policy
from auctionhouse.core.config import get_settings
from auctionhouse.db.models import AuctionStatus
from auctionhouse.db.session import get_session
from auctionhouse.schemas.auction import (
    ActorRequest, AuctionCreate, AuctionOut, AuctionQuery, AuctionSort, AuctionStats, AuctionUpdate,
)
from auctionhouse.schemas.bid import BidCreate, BidOut, BidResultOut
from auctionhouse.services import auctions as auction_service
from auctionhouse.services.bidding import BiddingPolicy, place_bid
from auctionhouse.services.lifecycle import RetryPolicy

router = APIRouter(prefix="/auctions", tags=["auctions"])


@router.post("", response_model=AuctionOut, status_code=201)
async def create_auction(payload: AuctionCreate, db: AsyncSession = Depends(get_session)):
    """
    경매 등록
    - publish=false: DRAFT
    - publish=true : SCHEDULED (start_time 도래 시 배치가 ACTIVE로 전환)
    """
    return await auction_service.create_auction(db, payload)


@router.get("", response_model=List[AuctionOut])
async def list_auctions(
    status: Optional[AuctionStatus] = Query(None),
    category: Optional[str] = Query(None),
    seller_id: Optional[str] = Query(None),
    q: Optional[str] = Query(None, min_length=1, description="제목/설명 검색어"),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    ends_after: Optional[datetime] = Query(None),
    ends_before: Optional[datetime] = Query(None),
    sort: Optional[AuctionSort] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
):
    """필터 미지정 시 진행 중 경매 (마감 임박 순)"""
    query = AuctionQuery(
        status=status, category=category, seller_id=seller_id, q=q,
        min_price=min_price, max_price=max_price,
        ends_after=ends_after, ends_before=ends_before,
        sort=sort, limit=limit,
    )
    return await auction_service.list_auctions(
        db, query, ending_soon_minutes=get_settings().ENDING_SOON_MINUTES,
    )


@router.get("/stats", response_model=AuctionStats)
async def auction_stats(
    popular_limit: int = Query(5, ge=1, le=50),
    category: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_session),
):
    return await auction_service.auction_stats(db, popular_limit=popular_limit, category=category)


@router.get("/{auction_id}", response_model=AuctionOut)
async def get_auction(auction_id: str, db: AsyncSession = Depends(get_session)):
    """상세 조회 (조회수 +1)"""
    return await auction_service.get_auction(db, auction_id, count_view=True)


@router.patch("/{auction_id}", response_model=AuctionOut)
async def update_auction(
    auction_id: str,
    payload: AuctionUpdate,
    db: AsyncSession = Depends(get_session),
    retry: RetryPolicy = Depends(get_retry_policy),
):
    return await auction_service.update_auction(db, auction_id, payload.actor_id, payload, retry=retry)


@router.delete("/{auction_id}", status_code=204)
async def delete_auction(
    auction_id: str,
    actor_id: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_session),
):
    await auction_service.delete_draft(db, auction_id, actor_id)
    return Response(status_code=204)


@router.post("/{auction_id}/publish", response_model=AuctionOut)
async def publish_auction(
    auction_id: str,
    payload: ActorRequest,
    db: AsyncSession = Depends(get_session),
    retry: RetryPolicy = Depends(get_retry_policy),
):
    return await auction_service.publish_auction(db, auction_id, payload.actor_id, retry=retry)


@router.post("/{auction_id}/cancel", response_model=AuctionOut)
async def cancel_auction(
    auction_id: str,
    payload: ActorRequest,
    db: AsyncSession = Depends(get_session),
    retry: RetryPolicy = Depends(get_retry_policy),
):
    return await auction_service.cancel_auction(db, auction_id, payload.actor_id, retry=retry)


@router.post("/{auction_id}/watch", response_model=AuctionOut)
async def watch(auction_id: str, db: AsyncSession = Depends(get_session)):
    return await auction_service.watch_auction(db, auction_id, watching=True)


@router.delete("/{auction_id}/watch", response_model=AuctionOut)
async def unwatch(auction_id: str, db: AsyncSession = Depends(get_session)):
    return await auction_service.watch_auction(db, auction_id, watching=False)


# ---------------------------------------------------------------------
# Bids
# ---------------------------------------------------------------------
@router.post("/{auction_id}/bids", response_model=BidResultOut, status_code=201)
async def create_bid(
    auction_id: str,
    payload: BidCreate,
    db: AsyncSession = Depends(get_session),
    policy: BiddingPolicy = Depends(get_bidding_policy),
):
    """
    입찰
    - 409: AUCTION_NOT_ACTIVE / BIDDING_ENDED / SELF_BIDDING_NOT_ALLOWED /
           DUPLICATE_BID / BID_TOO_LOW / INVALID_BID_INCREMENT / CONCURRENT_UPDATE_CONFLICT
    - 404: AUCTION_NOT_FOUND / USER_NOT_FOUND
    """
    return await place_bid(db, auction_id, payload.bidder_id, payload.amount, policy=policy)


@router.get("/{auction_id}/bids", response_model=List[BidOut])
async def list_bids(
    auction_id: str,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
):
    return await auction_service.list_bids(db, auction_id, limit=limit)
