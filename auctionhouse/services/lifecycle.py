# auctionhouse/services/lifecycle.py
"""
경매 상태 머신 + 주기 배치(시작/종료)

전이 표:

    DRAFT      --publish-->   SCHEDULED       (start_time > now)
    SCHEDULED  --activate-->  ACTIVE          (now >= start_time)
    ACTIVE     --expire-->    COMPLETED       (now >= end_time, 입찰 있음, 리저브 없음/충족)
    ACTIVE     --expire-->    ENDED_NO_SALE   (now >= end_time, 입찰 없음 또는 리저브 미충족)
    ACTIVE|SCHEDULED --cancel-->  CANCELLED
    ACTIVE|SCHEDULED --suspend--> SUSPENDED
    SUSPENDED  --reinstate--> (정지 직전 상태)

상태 결정은 순수 함수(next_status, resolve_expiry)가 하고,
DB 반영은 crud.update_auction_if_unchanged 의 조건부 UPDATE 로만 한다.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from auctionhouse.core.config import Settings
from auctionhouse.core.errors import DomainError, ErrorCode
from auctionhouse.core.logging import get_logger
from auctionhouse.db import crud
from auctionhouse.db.models import Auction, AuctionStatus
from auctionhouse.db.types import as_utc, utcnow

logger: logging.Logger = get_logger(__name__)


class LifecycleEvent(str, enum.Enum):
    PUBLISH = "publish"
    ACTIVATE = "activate"
    EXPIRE = "expire"
    CANCEL = "cancel"
    SUSPEND = "suspend"
    REINSTATE = "reinstate"


# (현재 상태, 이벤트) -> 허용되는 다음 상태들
TRANSITIONS = {
    (AuctionStatus.DRAFT, LifecycleEvent.PUBLISH): {AuctionStatus.SCHEDULED},
    (AuctionStatus.SCHEDULED, LifecycleEvent.ACTIVATE): {AuctionStatus.ACTIVE},
    (AuctionStatus.ACTIVE, LifecycleEvent.EXPIRE): {AuctionStatus.COMPLETED, AuctionStatus.ENDED_NO_SALE},
    (AuctionStatus.ACTIVE, LifecycleEvent.CANCEL): {AuctionStatus.CANCELLED},
    (AuctionStatus.SCHEDULED, LifecycleEvent.CANCEL): {AuctionStatus.CANCELLED},
    (AuctionStatus.ACTIVE, LifecycleEvent.SUSPEND): {AuctionStatus.SUSPENDED},
    (AuctionStatus.SCHEDULED, LifecycleEvent.SUSPEND): {AuctionStatus.SUSPENDED},
    (AuctionStatus.SUSPENDED, LifecycleEvent.REINSTATE): {AuctionStatus.ACTIVE, AuctionStatus.SCHEDULED},
}


@dataclass(frozen=True)
class RetryPolicy:
    """조건부 UPDATE 충돌 시 재시도 정책"""
    max_retries: int = 3
    backoff_seconds: float = 0.02

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=max(settings.CONFLICT_MAX_RETRIES, 0),
            backoff_seconds=max(settings.CONFLICT_BACKOFF_MS, 0) / 1000.0,
        )

    async def backoff(self, attempt: int) -> None:
        if self.backoff_seconds:
            await asyncio.sleep(self.backoff_seconds * attempt)


@dataclass
class LifecycleBatchResult:
    activated: int = 0
    completed: int = 0
    ended_no_sale: int = 0

    @property
    def total(self) -> int:
        return self.activated + self.completed + self.ended_no_sale


# ------------------------------------------------------------------------------
# 순수 상태 머신
# ------------------------------------------------------------------------------

def _invalid(auction: Auction, event: LifecycleEvent, reason: str) -> DomainError:
    return DomainError(
        ErrorCode.INVALID_AUCTION_STATUS,
        f"Cannot {event.value} auction in status {auction.status.value}: {reason}",
        context={"auction_id": auction.id, "status": auction.status.value, "event": event.value},
    )


def resolve_expiry(auction: Auction) -> AuctionStatus:
    """마감된 ACTIVE 경매의 결과 상태"""
    if auction.bid_count > 0 and (auction.reserve_price is None or auction.reserve_met):
        return AuctionStatus.COMPLETED
    return AuctionStatus.ENDED_NO_SALE


def next_status(auction: Auction, event: LifecycleEvent, now: datetime) -> AuctionStatus:
    """
    (현재 상태, 이벤트, 시각) 으로 다음 상태를 결정한다.

    Raises:
        DomainError(INVALID_AUCTION_STATUS): 표에 없는 전이거나 가드 실패
    """
    allowed = TRANSITIONS.get((auction.status, event))
    if not allowed:
        raise _invalid(auction, event, "transition not allowed")

    now = as_utc(now)
    if event is LifecycleEvent.PUBLISH:
        if as_utc(auction.start_time) <= now:
            raise _invalid(auction, event, "start time must be in the future")
        return AuctionStatus.SCHEDULED

    if event is LifecycleEvent.ACTIVATE:
        if now < as_utc(auction.start_time):
            raise _invalid(auction, event, "start time not reached")
        return AuctionStatus.ACTIVE

    if event is LifecycleEvent.EXPIRE:
        if now < as_utc(auction.end_time):
            raise _invalid(auction, event, "end time not reached")
        return resolve_expiry(auction)

    if event is LifecycleEvent.REINSTATE:
        previous = auction.suspended_from
        if previous not in allowed:
            raise _invalid(auction, event, "no state to restore")
        return previous

    # CANCEL / SUSPEND: 가드는 "아직 종료 상태가 아님" = 표에 있는 from 상태
    (target,) = allowed
    return target


# ------------------------------------------------------------------------------
# 단건 전이 (서비스/관리자 액션에서 사용)
# ------------------------------------------------------------------------------

async def apply_transition(
    session: AsyncSession,
    auction_id: str,
    event: LifecycleEvent,
    *,
    now: Optional[datetime] = None,
    retry: RetryPolicy = RetryPolicy(),
) -> Auction:
    """
    경매 한 건에 이벤트를 적용하고 커밋한다.

    - 읽기 → next_status 결정 → 조건부 UPDATE
    - 0 rows면 rollback 후 최신 상태로 다시 결정 (retry.max_retries 회까지)

    Raises:
        DomainError(AUCTION_NOT_FOUND / INVALID_AUCTION_STATUS / CONCURRENT_UPDATE_CONFLICT)
    """
    for attempt in range(retry.max_retries + 1):
        current = now or utcnow()
        auction = await crud.get_auction(session, auction_id)
        if auction is None:
            raise DomainError(ErrorCode.AUCTION_NOT_FOUND, f"Auction not found with ID: {auction_id}",
                              context={"auction_id": auction_id})

        target = next_status(auction, event, current)
        values = {"status": target}
        if target is AuctionStatus.SUSPENDED:
            values["suspended_from"] = auction.status
        elif event is LifecycleEvent.REINSTATE:
            values["suspended_from"] = None

        applied = await crud.update_auction_if_unchanged(
            session, auction.id,
            expected_version=auction.version,
            expected_status=auction.status,
            values=values,
        )
        if applied:
            await session.commit()
            logger.info("auction %s: %s -> %s (%s)", auction_id, auction.status.value, target.value, event.value)
            return await crud.get_auction(session, auction_id)

        await session.rollback()
        logger.warning("auction %s: %s conflict (attempt %d/%d)", auction_id, event.value,
                       attempt + 1, retry.max_retries + 1)
        if attempt < retry.max_retries:
            await retry.backoff(attempt + 1)

    raise DomainError(
        ErrorCode.CONCURRENT_UPDATE_CONFLICT,
        "Auction was modified concurrently, please retry",
        context={"auction_id": auction_id, "event": event.value},
    )


# ------------------------------------------------------------------------------
# 배치 (시작/종료)
# ------------------------------------------------------------------------------

async def _transition_candidate(
    session: AsyncSession,
    auction: Auction,
    event: LifecycleEvent,
    now: datetime,
    retry: RetryPolicy,
) -> Optional[AuctionStatus]:
    """
    배치 대상 한 건을 전이. 이미 다른 실행/입찰이 먼저 바꿨으면 최신 상태로 재판단.

    Returns:
        적용된 상태, 더 이상 대상이 아니면 None
    """
    for attempt in range(retry.max_retries + 1):
        try:
            target = next_status(auction, event, now)
        except DomainError:
            return None  # 이미 전이됐거나 가드 불충족 → 대상 아님

        applied = await crud.update_auction_if_unchanged(
            session, auction.id,
            expected_version=auction.version,
            expected_status=auction.status,
            values={"status": target},
        )
        if applied:
            return target

        if attempt < retry.max_retries:
            await retry.backoff(attempt + 1)
        fresh = await crud.get_auction(session, auction.id)
        if fresh is None:
            return None
        auction = fresh

    logger.warning("auction %s: %s skipped after %d conflicts", auction.id, event.value, retry.max_retries + 1)
    return None


async def activate_scheduled(session: AsyncSession, now: datetime, retry: RetryPolicy = RetryPolicy()) -> int:
    """SCHEDULED 이면서 start_time <= now 인 경매를 ACTIVE로"""
    activated = 0
    for auction in await crud.find_auctions_to_start(session, now):
        if await _transition_candidate(session, auction, LifecycleEvent.ACTIVATE, now, retry):
            activated += 1
    await session.commit()
    return activated


async def expire_active(session: AsyncSession, now: datetime, retry: RetryPolicy = RetryPolicy()) -> Tuple[int, int]:
    """
    ACTIVE 이면서 end_time <= now 인 경매를 COMPLETED / ENDED_NO_SALE 로.

    Returns:
        (completed, ended_no_sale)
    """
    completed = ended = 0
    for auction in await crud.find_auctions_to_end(session, now):
        target = await _transition_candidate(session, auction, LifecycleEvent.EXPIRE, now, retry)
        if target is AuctionStatus.COMPLETED:
            completed += 1
        elif target is AuctionStatus.ENDED_NO_SALE:
            ended += 1
    await session.commit()
    return completed, ended


async def run_lifecycle_batch(
    session: AsyncSession,
    now: Optional[datetime] = None,
    retry: RetryPolicy = RetryPolicy(),
) -> LifecycleBatchResult:
    """
    주기 배치 진입점: 시작 → 종료 순으로 한 번씩.

    같은 now로 두 번 연달아 호출하면 두 번째는 0건 (조건부 UPDATE).
    """
    now = as_utc(now or utcnow())
    result = LifecycleBatchResult()
    result.activated = await activate_scheduled(session, now, retry)
    result.completed, result.ended_no_sale = await expire_active(session, now, retry)
    if result.total:
        logger.info("lifecycle batch @%s: activated=%d completed=%d ended_no_sale=%d",
                    now.isoformat(), result.activated, result.completed, result.ended_no_sale)
    else:
        logger.debug("lifecycle batch @%s: nothing to do", now.isoformat())
    return result
