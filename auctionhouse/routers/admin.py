# auctionhouse/routers/admin.py
from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auctionhouse.api.deps import get_retry_policy
from auctionhouse.db.session import get_session
from auctionhouse.db.types import as_utc, utcnow
from auctionhouse.schemas.auction import AuctionOut
from auctionhouse.schemas.common import LifecycleRunRequest, LifecycleRunResponse
from auctionhouse.services import auctions as auction_service
from auctionhouse.services.lifecycle import RetryPolicy, run_lifecycle_batch

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/auctions/{auction_id}/suspend", response_model=AuctionOut)
async def suspend(auction_id: str, db: AsyncSession = Depends(get_session),
                  retry: RetryPolicy = Depends(get_retry_policy)):
    return await auction_service.suspend_auction(db, auction_id, retry=retry)


@router.post("/auctions/{auction_id}/reinstate", response_model=AuctionOut)
async def reinstate(auction_id: str, db: AsyncSession = Depends(get_session),
                    retry: RetryPolicy = Depends(get_retry_policy)):
    return await auction_service.reinstate_auction(db, auction_id, retry=retry)


@router.post("/auctions/{auction_id}/cancel", response_model=AuctionOut)
async def cancel(auction_id: str, db: AsyncSession = Depends(get_session),
                 retry: RetryPolicy = Depends(get_retry_policy)):
    return await auction_service.cancel_auction(db, auction_id, actor_id=None, retry=retry)


@router.post("/lifecycle/run", response_model=LifecycleRunResponse)
async def run_lifecycle(
    payload: Optional[LifecycleRunRequest] = Body(None),
    db: AsyncSession = Depends(get_session),
    retry: RetryPolicy = Depends(get_retry_policy),
):
    """스케줄러를 기다리지 않고 시작/종료 배치를 즉시 실행"""
    now = as_utc(payload.now) if payload and payload.now else utcnow()
    result = await run_lifecycle_batch(db, now, retry)
    return LifecycleRunResponse(
        activated=result.activated,
        completed=result.completed,
        ended_no_sale=result.ended_no_sale,
        ran_at=now,
    )
