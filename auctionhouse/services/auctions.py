# auctionhouse/services/auctions.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from auctionhouse.core.errors import DomainError, ErrorCode
from auctionhouse.core.logging import get_logger
from auctionhouse.db import crud
from auctionhouse.db.models import Auction, AuctionStatus
from auctionhouse.db.types import as_utc, utcnow
from auctionhouse.schemas.auction import AuctionCreate, AuctionUpdate, AuctionQuery, AuctionSort, AuctionStats
from auctionhouse.services.lifecycle import LifecycleEvent, RetryPolicy, apply_transition

logger: logging.Logger = get_logger(__name__)

# 입찰이 들어온 뒤에는 바꿀 수 없는 필드
LOCKED_AFTER_BIDS = ("title", "starting_price", "reserve_price", "buy_now_price")
EDITABLE_STATUSES = (AuctionStatus.DRAFT, AuctionStatus.SCHEDULED, AuctionStatus.ACTIVE)


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
async def _require_auction(session: AsyncSession, auction_id: str) -> Auction:
    auction = await crud.get_auction(session, auction_id)
    if auction is None:
        raise DomainError(ErrorCode.AUCTION_NOT_FOUND, f"Auction not found with ID: {auction_id}",
                          context={"auction_id": auction_id})
    return auction


def _require_seller(auction: Auction, actor_id: str) -> None:
    if auction.seller_id != actor_id:
        raise DomainError(ErrorCode.FORBIDDEN, "Only the seller can modify this auction",
                          context={"auction_id": auction.id})


def _check_price_ladder(starting: Decimal, reserve: Optional[Decimal], buy_now: Optional[Decimal]) -> None:
    """reserve >= starting, buy_now > starting, buy_now >= reserve"""
    details: Dict[str, str] = {}
    if reserve is not None and reserve < starting:
        details["reserve_price"] = "Reserve price cannot be lower than the starting price"
    if buy_now is not None and buy_now <= starting:
        details["buy_now_price"] = "Buy Now price must be higher than the starting price"
    elif buy_now is not None and reserve is not None and buy_now < reserve:
        details["buy_now_price"] = "Buy Now price cannot be lower than the reserve price"
    if details:
        raise DomainError(ErrorCode.VALIDATION_FAILED, "Auction price validation failed", details=details)


# ---------------------------------------------------------------------
# 생성 / 수정 / 삭제
# ---------------------------------------------------------------------
async def create_auction(session: AsyncSession, payload: AuctionCreate, *, now: Optional[datetime] = None) -> Auction:
    """
    경매 등록

    - 판매자 존재 확인
    - 시작 시각은 미래여야 함
    - 같은 판매자의 진행 중 경매와 제목 중복 금지
    - publish=True 면 SCHEDULED, 아니면 DRAFT

    Returns:
        저장된 Auction
    """
    now = as_utc(now or utcnow())
    if await crud.get_user(session, payload.seller_id) is None:
        raise DomainError(ErrorCode.USER_NOT_FOUND, f"User not found with ID: {payload.seller_id}",
                          context={"user_id": payload.seller_id})

    if as_utc(payload.start_time) <= now:
        raise DomainError(ErrorCode.VALIDATION_FAILED, "Auction validation failed",
                          details={"start_time": "Auction start time must be in the future"})
    _check_price_ladder(payload.starting_price, payload.reserve_price, payload.buy_now_price)

    if await crud.exists_by_title_and_seller(session, payload.title, payload.seller_id):
        raise DomainError(ErrorCode.DUPLICATE_AUCTION, "You already have an open auction with this title",
                          context={"title": payload.title})

    auction = Auction(
        seller_id=payload.seller_id,
        title=payload.title,
        description=payload.description,
        category=payload.category,
        condition=payload.condition,
        location=payload.location,
        starting_price=payload.starting_price,
        reserve_price=payload.reserve_price,
        buy_now_price=payload.buy_now_price,
        current_price=payload.starting_price,
        start_time=as_utc(payload.start_time),
        end_time=as_utc(payload.end_time),
        status=AuctionStatus.SCHEDULED if payload.publish else AuctionStatus.DRAFT,
        featured=payload.featured,
    )
    session.add(auction)
    await session.commit()
    logger.info("auction created: %s seller=%s status=%s", auction.id, auction.seller_id, auction.status.value)
    return auction


async def update_auction(
    session: AsyncSession,
    auction_id: str,
    actor_id: str,
    payload: AuctionUpdate,
    *,
    now: Optional[datetime] = None,
    retry: RetryPolicy = RetryPolicy(),
) -> Auction:
    """
    경매 수정

    - 판매자만 수정 가능 (FORBIDDEN)
    - 종료된 경매는 수정 불가 (AUCTION_ENDED), 정지 중이면 INVALID_AUCTION_STATUS
    - 입찰이 있으면 제목/가격 변경 불가, 마감 시각 단축 불가 (AUCTION_MODIFICATION_NOT_ALLOWED)
    - 읽은 version 기준 조건부 UPDATE, 충돌 시 재검증 후 재시도
    """
    changes = payload.changes()
    for attempt in range(retry.max_retries + 1):
        current = as_utc(now or utcnow())
        auction = await _require_auction(session, auction_id)
        _require_seller(auction, actor_id)

        if auction.status.is_terminal:
            raise DomainError(ErrorCode.AUCTION_ENDED, "Auction has already ended",
                              context={"auction_id": auction_id, "status": auction.status.value})
        if auction.status not in EDITABLE_STATUSES:
            raise DomainError(ErrorCode.INVALID_AUCTION_STATUS,
                              f"Auction cannot be modified in status {auction.status.value}",
                              context={"auction_id": auction_id, "status": auction.status.value})

        if auction.bid_count > 0:
            locked = [f for f in LOCKED_AFTER_BIDS if f in changes]
            if "end_time" in changes and as_utc(changes["end_time"]) < as_utc(auction.end_time):
                locked.append("end_time")
            if locked:
                raise DomainError(ErrorCode.AUCTION_MODIFICATION_NOT_ALLOWED,
                                  "Auction cannot be modified after bids have been placed",
                                  context={"auction_id": auction_id, "fields": ",".join(locked)})

        values: Dict[str, Any] = dict(changes)
        if "end_time" in values:
            end_time = as_utc(values["end_time"])
            if end_time <= as_utc(auction.start_time) or end_time <= current:
                raise DomainError(ErrorCode.VALIDATION_FAILED, "Auction validation failed",
                                  details={"end_time": "End time must be after the start time and in the future"})
            values["end_time"] = end_time

        starting = values.get("starting_price", auction.starting_price)
        _check_price_ladder(
            Decimal(starting),
            values.get("reserve_price", auction.reserve_price),
            values.get("buy_now_price", auction.buy_now_price),
        )
        if "starting_price" in values:
            values["current_price"] = values["starting_price"]  # 입찰 0건일 때만 도달

        if "title" in values and await crud.exists_by_title_and_seller(
                session, values["title"], auction.seller_id, exclude_id=auction_id):
            raise DomainError(ErrorCode.DUPLICATE_AUCTION, "You already have an open auction with this title",
                              context={"title": values["title"]})

        if not values:
            return auction

        applied = await crud.update_auction_if_unchanged(
            session, auction_id,
            expected_version=auction.version,
            expected_status=auction.status,
            values=values,
        )
        if applied:
            await session.commit()
            logger.info("auction updated: %s fields=%s", auction_id, sorted(values))
            return await crud.get_auction(session, auction_id)

        await session.rollback()
        logger.warning("auction %s: update conflict (attempt %d/%d)", auction_id, attempt + 1, retry.max_retries + 1)
        if attempt < retry.max_retries:
            await retry.backoff(attempt + 1)

    raise DomainError(ErrorCode.CONCURRENT_UPDATE_CONFLICT, "Auction was modified concurrently, please retry",
                      context={"auction_id": auction_id})


async def delete_draft(session: AsyncSession, auction_id: str, actor_id: str) -> None:
    """DRAFT 상태 경매만 삭제 가능"""
    auction = await _require_auction(session, auction_id)
    _require_seller(auction, actor_id)
    if auction.status is not AuctionStatus.DRAFT:
        raise DomainError(ErrorCode.INVALID_AUCTION_STATUS, "Only draft auctions can be deleted",
                          context={"auction_id": auction_id, "status": auction.status.value})
    await session.delete(auction)
    await session.commit()
    logger.info("draft auction deleted: %s", auction_id)


# ---------------------------------------------------------------------
# 상태 전이 (판매자 / 관리자)
# ---------------------------------------------------------------------
async def publish_auction(session: AsyncSession, auction_id: str, actor_id: str, *,
                          now: Optional[datetime] = None, retry: RetryPolicy = RetryPolicy()) -> Auction:
    _require_seller(await _require_auction(session, auction_id), actor_id)
    return await apply_transition(session, auction_id, LifecycleEvent.PUBLISH, now=now, retry=retry)


async def cancel_auction(session: AsyncSession, auction_id: str, actor_id: Optional[str] = None, *,
                         now: Optional[datetime] = None, retry: RetryPolicy = RetryPolicy()) -> Auction:
    """actor_id 가 None 이면 관리자 취소"""
    if actor_id is not None:
        _require_seller(await _require_auction(session, auction_id), actor_id)
    return await apply_transition(session, auction_id, LifecycleEvent.CANCEL, now=now, retry=retry)


async def suspend_auction(session: AsyncSession, auction_id: str, *,
                          now: Optional[datetime] = None, retry: RetryPolicy = RetryPolicy()) -> Auction:
    return await apply_transition(session, auction_id, LifecycleEvent.SUSPEND, now=now, retry=retry)


async def reinstate_auction(session: AsyncSession, auction_id: str, *,
                            now: Optional[datetime] = None, retry: RetryPolicy = RetryPolicy()) -> Auction:
    return await apply_transition(session, auction_id, LifecycleEvent.REINSTATE, now=now, retry=retry)


# ---------------------------------------------------------------------
# 조회
# ---------------------------------------------------------------------
async def get_auction(session: AsyncSession, auction_id: str, *, count_view: bool = False) -> Auction:
    if count_view:
        if not await crud.increment_view_count(session, auction_id):
            raise DomainError(ErrorCode.AUCTION_NOT_FOUND, f"Auction not found with ID: {auction_id}",
                              context={"auction_id": auction_id})
        await session.commit()
    return await _require_auction(session, auction_id)


async def watch_auction(session: AsyncSession, auction_id: str, watching: bool = True) -> Auction:
    await _require_auction(session, auction_id)
    await crud.update_watch_count(session, auction_id, 1 if watching else -1)
    await session.commit()
    return await crud.get_auction(session, auction_id)


async def list_auctions(session: AsyncSession, query: AuctionQuery, *,
                        ending_soon_minutes: int = 60, now: Optional[datetime] = None) -> List[Auction]:
    """
    필터/정렬 조합으로 경매 목록 조회

    - 가장 좁은 조건(q → 가격대 → 마감 구간 → 판매자 → 카테고리 → 정렬 → 상태)으로 1차 조회
    - 나머지 조건은 결과에 그대로 적용
    """
    now = as_utc(now or utcnow())
    rows: Sequence[Auction]
    if query.q:
        rows = await crud.search_auctions(session, query.q, query.status)
    elif query.min_price is not None or query.max_price is not None:
        rows = await crud.find_by_price_range(
            session,
            query.min_price if query.min_price is not None else Decimal("0"),
            query.max_price if query.max_price is not None else Decimal("9999999999.99"),
            query.status,
        )
    elif query.ends_after is not None or query.ends_before is not None:
        rows = await crud.find_by_end_time_between(
            session,
            as_utc(query.ends_after) if query.ends_after is not None else now,
            as_utc(query.ends_before) if query.ends_before is not None else now + timedelta(days=3650),
        )
    elif query.seller_id:
        rows = await crud.find_by_seller(session, query.seller_id)
    elif query.category:
        rows = await crud.find_by_category(session, query.category, query.status)
    elif query.sort is AuctionSort.popular:
        rows = await crud.find_by_popularity(session, query.status, limit=query.limit)
    elif query.sort is AuctionSort.ending_soon:
        rows = await crud.find_ending_soon(session, now, now + timedelta(minutes=ending_soon_minutes))
    elif query.sort is AuctionSort.ending_soonest:
        rows = await crud.find_ending_soonest(session, limit=query.limit)
    elif query.sort is AuctionSort.recent:
        rows = await crud.find_recent(session, limit=query.limit)
    elif query.sort is AuctionSort.highest_price:
        rows = await crud.find_highest_priced(session, limit=query.limit)
    elif query.sort is AuctionSort.featured:
        rows = await crud.find_featured_active(session)
    elif query.sort is AuctionSort.no_bids:
        rows = await crud.find_no_bid_auctions(session)
    elif query.status is not None:
        rows = await crud.find_by_status(session, query.status)
    else:
        rows = await crud.find_active(session, now)

    result = [
        a for a in rows
        if (query.status is None or a.status is query.status)
        and (query.category is None or a.category == query.category)
        and (query.seller_id is None or a.seller_id == query.seller_id)
        and (query.min_price is None or a.current_price >= query.min_price)
        and (query.max_price is None or a.current_price <= query.max_price)
    ]
    return result[: query.limit]


async def list_bids(session: AsyncSession, auction_id: str, limit: int = 100):
    await _require_auction(session, auction_id)
    return await crud.list_bids_for_auction(session, auction_id, limit=limit)


async def auction_stats(session: AsyncSession, popular_limit: int = 5,
                        category: Optional[str] = None) -> AuctionStats:
    by_status = {s.value: await crud.count_by_status(session, s) for s in AuctionStatus}
    return AuctionStats(
        by_status=by_status,
        active=await crud.count_active(session),
        total_active_value=await crud.total_active_value(session),
        average_active_price=await crud.average_active_price(session),
        popular_categories=await crud.most_popular_categories(session, popular_limit),
        category=category,
        category_count=await crud.count_by_category(session, category) if category else None,
    )
