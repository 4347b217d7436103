# auctionhouse/db/crud.py
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_, and_, exists

from auctionhouse.db.models import Auction, AuctionStatus, Bid, User, TERMINAL_STATUSES
from auctionhouse.db.types import utcnow


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    return await db.get(User, user_id)


async def find_user_by_identifier(db: AsyncSession, identifier: str) -> Optional[User]:
    """이메일 또는 사용자명으로 조회"""
    q = select(User).where(or_(User.email == identifier, User.username == identifier))
    return (await db.execute(q)).scalars().first()


async def user_exists_by_email(db: AsyncSession, email: str) -> bool:
    return bool((await db.execute(select(exists().where(User.email == email)))).scalar())


async def user_exists_by_username(db: AsyncSession, username: str) -> bool:
    return bool((await db.execute(select(exists().where(User.username == username)))).scalar())


async def list_users(db: AsyncSession, *, verified_only: bool = False, limit: int = 100, offset: int = 0) -> Sequence[User]:
    q = select(User)
    if verified_only:
        q = q.where(User.email_verified.is_(True))
    q = q.order_by(User.created_at.asc()).limit(limit).offset(offset)
    return (await db.execute(q)).scalars().all()


async def count_users(db: AsyncSession, *, verified_only: bool = False) -> int:
    q = select(func.count(User.id))
    if verified_only:
        q = q.where(User.email_verified.is_(True))
    return int((await db.execute(q)).scalar_one())


# ---------------------------------------------------------------------
# Auctions: 단건 조회 / 조건부 갱신
# ---------------------------------------------------------------------
async def get_auction(db: AsyncSession, auction_id: str) -> Optional[Auction]:
    """
    경매 단건을 DB에서 다시 읽는다.

    - populate_existing: 세션 identity map에 남아 있는 이전 값을 덮어씀
      (조건부 UPDATE 이후 재시도 시 최신 상태가 필요)
    """
    q = select(Auction).where(Auction.id == auction_id).execution_options(populate_existing=True)
    return (await db.execute(q)).scalar_one_or_none()


async def update_auction_if_unchanged(
    db: AsyncSession,
    auction_id: str,
    *,
    expected_version: int,
    expected_status: AuctionStatus,
    values: Dict[str, Any],
) -> bool:
    """
    낙관적 동시성 갱신.

    WHERE id = :id AND version = :v AND status = :s 조건으로 UPDATE 하고
    version 을 1 올린다. 읽은 뒤 다른 트랜잭션이 먼저 썼다면 0 rows.

    Args:
        db: AsyncSession
        auction_id: 대상 경매
        expected_version: 결정 로직이 읽은 version
        expected_status: 결정 로직이 읽은 status
        values: SET 절 컬럼 값

    Returns:
        True면 정확히 1건 반영
    """
    stmt = (
        update(Auction)
        .where(and_(
            Auction.id == auction_id,
            Auction.version == expected_version,
            Auction.status == expected_status,
        ))
        .values(**values, version=Auction.version + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return res.rowcount == 1


async def add_bid(db: AsyncSession, auction_id: str, bidder_id: str, amount: Decimal, *,
                  buy_now: bool = False, created_at: Optional[datetime] = None) -> Bid:
    bid = Bid(auction_id=auction_id, bidder_id=bidder_id, amount=amount, buy_now=buy_now,
              created_at=created_at or utcnow())
    db.add(bid)
    await db.flush()  # bid.id 확보
    return bid


async def increment_view_count(db: AsyncSession, auction_id: str) -> int:
    stmt = (
        update(Auction)
        .where(Auction.id == auction_id)
        .values(view_count=Auction.view_count + 1)
        .execution_options(synchronize_session=False)
    )
    return (await db.execute(stmt)).rowcount


async def update_watch_count(db: AsyncSession, auction_id: str, increment: int) -> int:
    """watch_count += increment (음수로 내려가지 않게 0에서 멈춤)"""
    stmt = (
        update(Auction)
        .where(and_(Auction.id == auction_id, Auction.watch_count + increment >= 0))
        .values(watch_count=Auction.watch_count + increment)
        .execution_options(synchronize_session=False)
    )
    return (await db.execute(stmt)).rowcount


# ---------------------------------------------------------------------
# Auctions: 배치 대상
# ---------------------------------------------------------------------
async def find_auctions_to_start(db: AsyncSession, now: datetime) -> Sequence[Auction]:
    q = (
        select(Auction)
        .where(and_(Auction.status == AuctionStatus.SCHEDULED, Auction.start_time <= now))
        .order_by(Auction.start_time.asc())
        .execution_options(populate_existing=True)
    )
    return (await db.execute(q)).scalars().all()


async def find_auctions_to_end(db: AsyncSession, now: datetime) -> Sequence[Auction]:
    q = (
        select(Auction)
        .where(and_(Auction.status == AuctionStatus.ACTIVE, Auction.end_time <= now))
        .order_by(Auction.end_time.asc())
        .execution_options(populate_existing=True)
    )
    return (await db.execute(q)).scalars().all()


# ---------------------------------------------------------------------
# Auctions: 조회 (read-only)
# ---------------------------------------------------------------------
async def find_by_status(db: AsyncSession, status: AuctionStatus) -> Sequence[Auction]:
    q = select(Auction).where(Auction.status == status).order_by(Auction.created_at.desc())
    return (await db.execute(q)).scalars().all()


async def find_active(db: AsyncSession, now: datetime) -> Sequence[Auction]:
    """진행 중 (start_time <= now < end_time) 경매, 마감 임박 순"""
    q = (
        select(Auction)
        .where(and_(
            Auction.status == AuctionStatus.ACTIVE,
            Auction.start_time <= now,
            Auction.end_time > now,
        ))
        .order_by(Auction.end_time.asc())
    )
    return (await db.execute(q)).scalars().all()


async def find_ending_soon(db: AsyncSession, now: datetime, cutoff: datetime) -> Sequence[Auction]:
    q = (
        select(Auction)
        .where(and_(Auction.status == AuctionStatus.ACTIVE, Auction.end_time > now, Auction.end_time <= cutoff))
        .order_by(Auction.end_time.asc())
    )
    return (await db.execute(q)).scalars().all()


async def find_by_seller(db: AsyncSession, seller_id: str) -> Sequence[Auction]:
    q = select(Auction).where(Auction.seller_id == seller_id).order_by(Auction.created_at.desc())
    return (await db.execute(q)).scalars().all()


async def find_by_category(db: AsyncSession, category: str, status: Optional[AuctionStatus] = None) -> Sequence[Auction]:
    q = select(Auction).where(Auction.category == category)
    if status is not None:
        q = q.where(Auction.status == status)
    return (await db.execute(q.order_by(Auction.created_at.desc()))).scalars().all()


async def find_featured_active(db: AsyncSession) -> Sequence[Auction]:
    q = (
        select(Auction)
        .where(and_(Auction.featured.is_(True), Auction.status == AuctionStatus.ACTIVE))
        .order_by(Auction.end_time.asc())
    )
    return (await db.execute(q)).scalars().all()


async def find_by_highest_bidder(db: AsyncSession, bidder_id: str) -> Sequence[Auction]:
    """해당 사용자가 최고 입찰자인 진행 중/낙찰 경매"""
    q = (
        select(Auction)
        .where(and_(
            Auction.highest_bidder_id == bidder_id,
            Auction.status.in_([AuctionStatus.ACTIVE, AuctionStatus.COMPLETED]),
        ))
        .order_by(Auction.end_time.asc())
    )
    return (await db.execute(q)).scalars().all()


async def search_auctions(db: AsyncSession, term: str, status: Optional[AuctionStatus] = None) -> Sequence[Auction]:
    """
    제목/설명 부분 일치 검색 (대소문자 무시)

    Args:
        db: AsyncSession
        term: 검색어
        status: (선택) 상태 필터

    Returns:
        최신 등록 순 경매 목록
    """
    # %, _ 는 문자 그대로 찾는다
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"
    q = select(Auction).where(or_(
        func.lower(Auction.title).like(pattern, escape="\\"),
        func.lower(func.coalesce(Auction.description, "")).like(pattern, escape="\\"),
    ))
    if status is not None:
        q = q.where(Auction.status == status)
    return (await db.execute(q.order_by(Auction.created_at.desc()))).scalars().all()


async def find_by_price_range(db: AsyncSession, min_price: Decimal, max_price: Decimal,
                              status: Optional[AuctionStatus] = None) -> Sequence[Auction]:
    q = select(Auction).where(Auction.current_price.between(min_price, max_price))
    if status is not None:
        q = q.where(Auction.status == status)
    return (await db.execute(q.order_by(Auction.current_price.asc()))).scalars().all()


async def find_by_end_time_between(db: AsyncSession, start: datetime, end: datetime) -> Sequence[Auction]:
    q = select(Auction).where(Auction.end_time.between(start, end)).order_by(Auction.end_time.asc())
    return (await db.execute(q)).scalars().all()


async def find_by_popularity(db: AsyncSession, status: Optional[AuctionStatus] = None, limit: int = 50) -> Sequence[Auction]:
    """인기도 = bid_count*3 + view_count + watch_count*2"""
    score = Auction.bid_count * 3 + Auction.view_count + Auction.watch_count * 2
    q = select(Auction)
    if status is not None:
        q = q.where(Auction.status == status)
    q = q.order_by(score.desc(), Auction.created_at.desc()).limit(limit)
    return (await db.execute(q)).scalars().all()


async def find_recent(db: AsyncSession, limit: int = 20) -> Sequence[Auction]:
    q = (
        select(Auction)
        .where(Auction.status.in_([AuctionStatus.ACTIVE, AuctionStatus.SCHEDULED]))
        .order_by(Auction.created_at.desc())
        .limit(limit)
    )
    return (await db.execute(q)).scalars().all()


async def find_ending_soonest(db: AsyncSession, limit: int = 20) -> Sequence[Auction]:
    q = select(Auction).where(Auction.status == AuctionStatus.ACTIVE).order_by(Auction.end_time.asc()).limit(limit)
    return (await db.execute(q)).scalars().all()


async def find_highest_priced(db: AsyncSession, limit: int = 20) -> Sequence[Auction]:
    q = select(Auction).where(Auction.status == AuctionStatus.ACTIVE).order_by(Auction.current_price.desc()).limit(limit)
    return (await db.execute(q)).scalars().all()


async def find_no_bid_auctions(db: AsyncSession) -> Sequence[Auction]:
    q = (
        select(Auction)
        .where(and_(Auction.status == AuctionStatus.ACTIVE, Auction.bid_count == 0))
        .order_by(Auction.end_time.asc())
    )
    return (await db.execute(q)).scalars().all()


async def has_active_auctions(db: AsyncSession, seller_id: str) -> bool:
    q = select(exists().where(and_(Auction.seller_id == seller_id, Auction.status == AuctionStatus.ACTIVE)))
    return bool((await db.execute(q)).scalar())


async def exists_by_title_and_seller(db: AsyncSession, title: str, seller_id: str,
                                     exclude_id: Optional[str] = None) -> bool:
    """종료되지 않은 경매 중 같은 판매자의 같은 제목이 있는지"""
    cond = [
        Auction.title == title,
        Auction.seller_id == seller_id,
        Auction.status.not_in(list(TERMINAL_STATUSES)),
    ]
    if exclude_id is not None:
        cond.append(Auction.id != exclude_id)
    return bool((await db.execute(select(exists().where(and_(*cond))))).scalar())


# ---------------------------------------------------------------------
# Auctions: 집계
# ---------------------------------------------------------------------
async def count_by_status(db: AsyncSession, status: AuctionStatus) -> int:
    q = select(func.count(Auction.id)).where(Auction.status == status)
    return int((await db.execute(q)).scalar_one())


async def count_active(db: AsyncSession) -> int:
    return await count_by_status(db, AuctionStatus.ACTIVE)


async def count_by_seller(db: AsyncSession, seller_id: str) -> int:
    q = select(func.count(Auction.id)).where(Auction.seller_id == seller_id)
    return int((await db.execute(q)).scalar_one())


async def count_by_category(db: AsyncSession, category: str) -> int:
    q = select(func.count(Auction.id)).where(Auction.category == category)
    return int((await db.execute(q)).scalar_one())


async def total_active_value(db: AsyncSession) -> Decimal:
    q = select(func.coalesce(func.sum(Auction.current_price), 0)).where(Auction.status == AuctionStatus.ACTIVE)
    return Decimal(str((await db.execute(q)).scalar_one())).quantize(Decimal("0.01"))


async def average_active_price(db: AsyncSession) -> Optional[Decimal]:
    q = select(func.avg(Auction.current_price)).where(Auction.status == AuctionStatus.ACTIVE)
    val = (await db.execute(q)).scalar_one()
    return Decimal(str(val)).quantize(Decimal("0.01")) if val is not None else None


async def most_popular_categories(db: AsyncSession, limit: int = 5) -> List[str]:
    q = (
        select(Auction.category)
        .group_by(Auction.category)
        .order_by(func.count(Auction.id).desc(), Auction.category.asc())
        .limit(limit)
    )
    return list((await db.execute(q)).scalars().all())


# ---------------------------------------------------------------------
# Bids
# ---------------------------------------------------------------------
async def list_bids_for_auction(db: AsyncSession, auction_id: str, limit: int = 100) -> Sequence[Bid]:
    q = (
        select(Bid)
        .where(Bid.auction_id == auction_id)
        .order_by(Bid.created_at.desc(), Bid.amount.desc())
        .limit(limit)
    )
    return (await db.execute(q)).scalars().all()


async def list_bids_by_bidder(db: AsyncSession, bidder_id: str, limit: int = 100) -> Sequence[Bid]:
    q = select(Bid).where(Bid.bidder_id == bidder_id).order_by(Bid.created_at.desc()).limit(limit)
    return (await db.execute(q)).scalars().all()
