# auctionhouse/services/bidding.py
"""
입찰 수락 규칙

검증 순서 (먼저 실패한 것이 에러):
    1) 경매 존재                       AUCTION_NOT_FOUND
       입찰자 존재                     USER_NOT_FOUND
    2) ACTIVE 이고 start_time <= now   AUCTION_NOT_ACTIVE
       now < end_time                  BIDDING_ENDED
    3) 판매자 본인 입찰 금지            SELF_BIDDING_NOT_ALLOWED
    4) 같은 입찰자가 같은 금액 재제출   DUPLICATE_BID
    5) amount > current_price          BID_TOO_LOW
    6) 최소 입찰 단위                   INVALID_BID_INCREMENT

수락 시 current_price / highest_bidder / bid_count / reserve_met / (즉시구매면 status)
를 하나의 조건부 UPDATE 로 반영하고, 같은 트랜잭션에서 bids 이력 1건을 남긴다.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_CEILING
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from auctionhouse.core.config import Settings
from auctionhouse.core.errors import DomainError, ErrorCode
from auctionhouse.core.logging import get_logger
from auctionhouse.db import crud
from auctionhouse.db.models import Auction, AuctionStatus
from auctionhouse.db.types import as_utc, utcnow
from auctionhouse.services.lifecycle import RetryPolicy

logger: logging.Logger = get_logger(__name__)

CENT = Decimal("0.01")


# ------------------------------------------------------------------------------
# 정책
# ------------------------------------------------------------------------------

@dataclass(frozen=True)
class IncrementPolicy:
    """
    최소 입찰 단위.

    - fixed: 현재가 + amount 이상
    - percent: 현재가 + (현재가 * percent / 100, 센트 올림, 최소 0.01) 이상
    """
    mode: str = "fixed"
    amount: Decimal = Decimal("1.00")
    percent: Decimal = Decimal("5")

    def minimum_increment(self, current_price: Decimal) -> Decimal:
        if self.mode == "percent":
            step = (Decimal(current_price) * self.percent / Decimal(100)).quantize(CENT, rounding=ROUND_CEILING)
            return max(step, CENT)
        return max(Decimal(self.amount).quantize(CENT), CENT)

    def minimum_next_bid(self, current_price: Decimal) -> Decimal:
        return Decimal(current_price) + self.minimum_increment(current_price)


@dataclass(frozen=True)
class BiddingPolicy:
    increment: IncrementPolicy = field(default_factory=IncrementPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BiddingPolicy":
        return cls(
            increment=IncrementPolicy(
                mode=settings.BID_INCREMENT_MODE,
                amount=settings.BID_INCREMENT_AMOUNT,
                percent=settings.BID_INCREMENT_PERCENT,
            ),
            retry=RetryPolicy.from_settings(settings),
        )


# ------------------------------------------------------------------------------
# 결과 타입
# ------------------------------------------------------------------------------

@dataclass(frozen=True)
class BidDecision:
    """검증을 통과한 입찰이 경매에 남길 값"""
    current_price: Decimal
    highest_bidder_id: str
    bid_count: int
    reserve_met: bool
    reserve_met_changed: bool
    status: AuctionStatus
    bought_now: bool

    def as_values(self) -> Dict[str, Any]:
        return {
            "current_price": self.current_price,
            "highest_bidder_id": self.highest_bidder_id,
            "bid_count": self.bid_count,
            "reserve_met": self.reserve_met,
            "status": self.status,
        }


@dataclass(frozen=True)
class BidResult:
    auction_id: str
    bid_id: str
    bidder_id: str
    amount: Decimal
    current_price: Decimal
    bid_count: int
    highest_bidder_id: str
    reserve_met: bool
    reserve_met_changed: bool
    status: AuctionStatus
    bought_now: bool
    placed_at: datetime


# ------------------------------------------------------------------------------
# 순수 검증
# ------------------------------------------------------------------------------

def _reject(code: ErrorCode, message: str, auction: Auction, **extra) -> DomainError:
    context = {"auction_id": auction.id, "current_price": str(auction.current_price)}
    context.update({k: str(v) for k, v in extra.items()})
    return DomainError(code, message, context=context)


def evaluate_bid(
    auction: Auction,
    bidder_id: str,
    amount: Decimal,
    now: datetime,
    increment: IncrementPolicy = IncrementPolicy(),
) -> BidDecision:
    """
    경매 스냅샷에 대해 입찰을 검증하고 반영할 값을 계산한다. DB 접근 없음.

    Raises:
        DomainError: 규칙 위반 (모듈 docstring 순서)
    """
    now = as_utc(now)
    amount = Decimal(amount)
    current = Decimal(auction.current_price)

    if auction.status is not AuctionStatus.ACTIVE or now < as_utc(auction.start_time):
        raise _reject(ErrorCode.AUCTION_NOT_ACTIVE, "Auction is not accepting bids", auction,
                      status=auction.status.value)
    if now >= as_utc(auction.end_time):
        raise _reject(ErrorCode.BIDDING_ENDED, "Bidding has ended for this auction", auction,
                      end_time=as_utc(auction.end_time).isoformat())

    if bidder_id == auction.seller_id:
        raise _reject(ErrorCode.SELF_BIDDING_NOT_ALLOWED, "Sellers cannot bid on their own auction", auction)

    if auction.bid_count > 0 and auction.highest_bidder_id == bidder_id and amount == current:
        raise _reject(ErrorCode.DUPLICATE_BID, "This bid has already been placed", auction, amount=amount)

    if amount <= current:
        raise _reject(ErrorCode.BID_TOO_LOW, f"Bid must be higher than the current price {current}", auction,
                      amount=amount)

    step = increment.minimum_increment(current)
    if amount - current < step:
        raise _reject(ErrorCode.INVALID_BID_INCREMENT, f"Bid must be at least {current + step}", auction,
                      amount=amount, minimum_bid=current + step)

    reserve_met = bool(auction.reserve_met)
    reserve_changed = False
    if auction.reserve_price is not None and not reserve_met and amount >= Decimal(auction.reserve_price):
        reserve_met = reserve_changed = True

    status = AuctionStatus.ACTIVE
    bought_now = auction.buy_now_price is not None and amount >= Decimal(auction.buy_now_price)
    if bought_now:
        status = AuctionStatus.COMPLETED
        if not reserve_met:
            reserve_met = reserve_changed = True

    return BidDecision(
        current_price=amount,
        highest_bidder_id=bidder_id,
        bid_count=auction.bid_count + 1,
        reserve_met=reserve_met,
        reserve_met_changed=reserve_changed,
        status=status,
        bought_now=bought_now,
    )


# ------------------------------------------------------------------------------
# 입찰 (DB 반영 + 재시도)
# ------------------------------------------------------------------------------

async def place_bid(
    session: AsyncSession,
    auction_id: str,
    bidder_id: str,
    amount: Decimal,
    *,
    policy: BiddingPolicy = BiddingPolicy(),
    now: Optional[datetime] = None,
) -> BidResult:
    """
    입찰 1건을 검증하고 원자적으로 반영한다.

    - 매 시도마다 최신 경매를 읽고 evaluate_bid 로 전체 규칙을 다시 검사
      (경쟁 입찰에 밀린 경우 BID_TOO_LOW 로 귀결)
    - 조건부 UPDATE 가 0 rows면 rollback 후 재시도, 소진 시 CONCURRENT_UPDATE_CONFLICT

    Args:
        session: AsyncSession
        auction_id: 경매 ID
        bidder_id: 입찰자 ID
        amount: 입찰 금액
        policy: 최소 입찰 단위 + 재시도 정책
        now: 기준 시각 (테스트 주입용, 기본 현재 UTC)

    Returns:
        BidResult
    """
    amount = Decimal(amount)

    retry = policy.retry
    for attempt in range(retry.max_retries + 1):
        placed_at = as_utc(now) if now is not None else utcnow()
        auction = await crud.get_auction(session, auction_id)
        if auction is None:
            raise DomainError(ErrorCode.AUCTION_NOT_FOUND, f"Auction not found with ID: {auction_id}",
                              context={"auction_id": auction_id})
        # 입찰자 확인은 경매 확인 다음, 경매 규칙보다 앞 (첫 시도에서 한 번)
        if attempt == 0 and await crud.get_user(session, bidder_id) is None:
            raise DomainError(ErrorCode.USER_NOT_FOUND, f"User not found with ID: {bidder_id}",
                              context={"user_id": bidder_id})

        decision = evaluate_bid(auction, bidder_id, amount, placed_at, policy.increment)

        applied = await crud.update_auction_if_unchanged(
            session, auction_id,
            expected_version=auction.version,
            expected_status=AuctionStatus.ACTIVE,
            values=decision.as_values(),
        )
        if applied:
            bid = await crud.add_bid(session, auction_id, bidder_id, amount,
                                     buy_now=decision.bought_now, created_at=placed_at)
            await session.commit()
            logger.info("bid accepted: auction=%s bidder=%s amount=%s count=%d%s",
                        auction_id, bidder_id, amount, decision.bid_count,
                        " (buy now)" if decision.bought_now else "")
            return BidResult(
                auction_id=auction_id,
                bid_id=bid.id,
                bidder_id=bidder_id,
                amount=amount,
                current_price=decision.current_price,
                bid_count=decision.bid_count,
                highest_bidder_id=decision.highest_bidder_id,
                reserve_met=decision.reserve_met,
                reserve_met_changed=decision.reserve_met_changed,
                status=decision.status,
                bought_now=decision.bought_now,
                placed_at=placed_at,
            )

        await session.rollback()
        logger.warning("bid conflict: auction=%s bidder=%s amount=%s (attempt %d/%d)",
                       auction_id, bidder_id, amount, attempt + 1, retry.max_retries + 1)
        if attempt < retry.max_retries:
            await retry.backoff(attempt + 1)

    raise DomainError(
        ErrorCode.CONCURRENT_UPDATE_CONFLICT,
        "Auction was modified concurrently, please retry",
        context={"auction_id": auction_id, "attempts": str(retry.max_retries + 1)},
    )
