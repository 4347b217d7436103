from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from auctionhouse.core.errors import DomainError, ErrorCode
from auctionhouse.db.models import Auction, AuctionStatus
from auctionhouse.schemas.auction import AuctionCreate, AuctionQuery, AuctionSort, AuctionUpdate
from auctionhouse.services import auctions as svc
from auctionhouse.services.lifecycle import RetryPolicy

NO_WAIT = RetryPolicy(backoff_seconds=0)


@pytest.fixture
def create_payload(seller, now):
    def _payload(**kw):
        data = dict(
            seller_id=seller.id, title="Vintage camera", category="electronics",
            starting_price=Decimal("100.00"),
            start_time=now + timedelta(hours=1), end_time=now + timedelta(days=1),
        )
        data.update(kw)
        return AuctionCreate(**data)
    return _payload


async def code_of(coro):
    with pytest.raises(DomainError) as ei:
        await coro
    return ei.value.code


# ---------------------------------------------------------------------
# 생성
# ---------------------------------------------------------------------
async def test_create_draft_by_default(session, create_payload):
    auction = await svc.create_auction(session, create_payload())
    assert auction.status is AuctionStatus.DRAFT
    assert auction.current_price == Decimal("100.00")
    assert auction.bid_count == 0
    assert auction.version == 0


async def test_create_and_publish(session, create_payload):
    auction = await svc.create_auction(session, create_payload(publish=True))
    assert auction.status is AuctionStatus.SCHEDULED


async def test_create_requires_future_start(session, create_payload, now):
    with pytest.raises(DomainError) as ei:
        await svc.create_auction(session, create_payload(start_time=now - timedelta(minutes=1)))
    assert ei.value.code is ErrorCode.VALIDATION_FAILED
    assert "start_time" in ei.value.details


@pytest.mark.parametrize("prices, field", [
    ({"reserve_price": Decimal("90.00")}, "reserve_price"),
    ({"buy_now_price": Decimal("100.00")}, "buy_now_price"),
    ({"reserve_price": Decimal("200.00"), "buy_now_price": Decimal("150.00")}, "buy_now_price"),
])
async def test_create_rejects_inconsistent_prices(session, create_payload, prices, field):
    with pytest.raises(DomainError) as ei:
        await svc.create_auction(session, create_payload(**prices))
    assert ei.value.code is ErrorCode.VALIDATION_FAILED
    assert field in ei.value.details


def test_create_payload_rejects_inverted_window(seller, now):
    with pytest.raises(ValidationError):
        AuctionCreate(seller_id=seller.id, title="x", category="c", starting_price=Decimal("1.00"),
                      start_time=now + timedelta(days=2), end_time=now + timedelta(days=1))


async def test_create_duplicate_title_for_same_seller(session, create_payload):
    await svc.create_auction(session, create_payload())
    assert await code_of(svc.create_auction(session, create_payload())) is ErrorCode.DUPLICATE_AUCTION


async def test_create_unknown_seller(session, create_payload):
    assert await code_of(svc.create_auction(session, create_payload(seller_id="ghost"))) is ErrorCode.USER_NOT_FOUND


# ---------------------------------------------------------------------
# 수정
# ---------------------------------------------------------------------
def update(actor, **kw):
    return AuctionUpdate(actor_id=actor, **kw)


async def test_only_seller_may_update(session, seller, bidder, make_auction):
    auction = await make_auction(seller)
    code = await code_of(svc.update_auction(session, auction.id, bidder.id, update(bidder.id, title="mine"),
                                            retry=NO_WAIT))
    assert code is ErrorCode.FORBIDDEN


async def test_update_without_bids_resets_current_price(session, seller, make_auction):
    auction = await make_auction(seller)
    updated = await svc.update_auction(session, auction.id, seller.id,
                                       update(seller.id, starting_price=Decimal("70.00"), title="Renamed"),
                                       retry=NO_WAIT)
    assert updated.title == "Renamed"
    assert updated.starting_price == Decimal("70.00")
    assert updated.current_price == Decimal("70.00")
    assert updated.version == 1


async def test_update_can_clear_reserve(session, seller, make_auction):
    auction = await make_auction(seller, reserve_price=Decimal("80.00"))
    updated = await svc.update_auction(session, auction.id, seller.id, update(seller.id, reserve_price=None),
                                       retry=NO_WAIT)
    assert updated.reserve_price is None


@pytest.mark.parametrize("change", [
    {"title": "New title"},
    {"starting_price": Decimal("10.00")},
    {"reserve_price": Decimal("500.00")},
    {"buy_now_price": Decimal("900.00")},
])
async def test_locked_fields_after_bids(session, seller, bidder, make_auction, change):
    auction = await make_auction(seller, bid_count=1, current_price=Decimal("60.00"), highest_bidder_id=bidder.id)
    code = await code_of(svc.update_auction(session, auction.id, seller.id, update(seller.id, **change),
                                            retry=NO_WAIT))
    assert code is ErrorCode.AUCTION_MODIFICATION_NOT_ALLOWED


async def test_end_time_can_only_be_extended_after_bids(session, seller, bidder, make_auction):
    auction = await make_auction(seller, bid_count=1, current_price=Decimal("60.00"), highest_bidder_id=bidder.id)
    end_before = auction.end_time

    shorter = update(seller.id, end_time=end_before - timedelta(minutes=10))
    code = await code_of(svc.update_auction(session, auction.id, seller.id, shorter, retry=NO_WAIT))
    assert code is ErrorCode.AUCTION_MODIFICATION_NOT_ALLOWED

    longer = update(seller.id, end_time=end_before + timedelta(hours=1), description="now with box")
    updated = await svc.update_auction(session, auction.id, seller.id, longer, retry=NO_WAIT)
    assert updated.end_time == end_before + timedelta(hours=1)
    assert updated.description == "now with box"


@pytest.mark.parametrize("status", [AuctionStatus.COMPLETED, AuctionStatus.ENDED_NO_SALE, AuctionStatus.CANCELLED])
async def test_ended_auction_cannot_be_modified(session, seller, make_auction, status):
    auction = await make_auction(seller, status=status)
    code = await code_of(svc.update_auction(session, auction.id, seller.id, update(seller.id, description="x"),
                                            retry=NO_WAIT))
    assert code is ErrorCode.AUCTION_ENDED


async def test_suspended_auction_cannot_be_modified(session, seller, make_auction):
    auction = await make_auction(seller, status=AuctionStatus.SUSPENDED, suspended_from=AuctionStatus.ACTIVE)
    code = await code_of(svc.update_auction(session, auction.id, seller.id, update(seller.id, description="x"),
                                            retry=NO_WAIT))
    assert code is ErrorCode.INVALID_AUCTION_STATUS


# ---------------------------------------------------------------------
# 삭제 / 전이
# ---------------------------------------------------------------------
async def test_delete_draft(session, seller, make_auction, fresh, now):
    draft = await make_auction(seller, status=AuctionStatus.DRAFT, start_time=now + timedelta(hours=1),
                               end_time=now + timedelta(hours=2))
    await svc.delete_draft(session, draft.id, seller.id)
    assert await fresh(Auction, draft.id) is None


async def test_delete_requires_draft(session, seller, make_auction):
    auction = await make_auction(seller)
    assert await code_of(svc.delete_draft(session, auction.id, seller.id)) is ErrorCode.INVALID_AUCTION_STATUS


async def test_publish_then_cancel(session, seller, make_auction, now):
    draft = await make_auction(seller, status=AuctionStatus.DRAFT, start_time=now + timedelta(hours=1),
                               end_time=now + timedelta(hours=2))

    published = await svc.publish_auction(session, draft.id, seller.id, retry=NO_WAIT)
    assert published.status is AuctionStatus.SCHEDULED

    cancelled = await svc.cancel_auction(session, draft.id, seller.id, retry=NO_WAIT)
    assert cancelled.status is AuctionStatus.CANCELLED


async def test_cancel_draft_is_rejected(session, seller, make_auction, now):
    draft = await make_auction(seller, status=AuctionStatus.DRAFT, start_time=now + timedelta(hours=1),
                               end_time=now + timedelta(hours=2))
    code = await code_of(svc.cancel_auction(session, draft.id, seller.id, retry=NO_WAIT))
    assert code is ErrorCode.INVALID_AUCTION_STATUS


async def test_only_seller_may_cancel(session, seller, bidder, make_auction):
    auction = await make_auction(seller)
    assert await code_of(svc.cancel_auction(session, auction.id, bidder.id, retry=NO_WAIT)) is ErrorCode.FORBIDDEN
    # 관리자 취소 (actor 없음)
    assert (await svc.cancel_auction(session, auction.id, None, retry=NO_WAIT)).status is AuctionStatus.CANCELLED


# ---------------------------------------------------------------------
# 조회
# ---------------------------------------------------------------------
async def test_view_and_watch_counters(session, seller, make_auction):
    auction = await make_auction(seller)

    viewed = await svc.get_auction(session, auction.id, count_view=True)
    assert viewed.view_count == 1

    assert (await svc.watch_auction(session, auction.id, watching=True)).watch_count == 1
    assert (await svc.watch_auction(session, auction.id, watching=False)).watch_count == 0
    # 0 아래로 내려가지 않음
    assert (await svc.watch_auction(session, auction.id, watching=False)).watch_count == 0


async def test_get_missing_auction(session):
    assert await code_of(svc.get_auction(session, "missing", count_view=True)) is ErrorCode.AUCTION_NOT_FOUND


async def test_default_listing_is_open_auctions_ending_first(session, seller, make_auction, now):
    late = await make_auction(seller, end_time=now + timedelta(hours=5))
    soon = await make_auction(seller, end_time=now + timedelta(minutes=30))
    await make_auction(seller, status=AuctionStatus.CANCELLED)

    result = await svc.list_auctions(session, AuctionQuery(), now=now)

    assert [a.id for a in result] == [soon.id, late.id]


async def test_listing_filters(session, seller, make_auction):
    cam = await make_auction(seller, title="Leica camera", category="photo", current_price=Decimal("300.00"))
    await make_auction(seller, title="Desk lamp", category="home", current_price=Decimal("60.00"))

    assert [a.id for a in await svc.list_auctions(session, AuctionQuery(q="CAMERA"))] == [cam.id]
    assert [a.id for a in await svc.list_auctions(session, AuctionQuery(category="photo"))] == [cam.id]
    by_price = await svc.list_auctions(session, AuctionQuery(min_price=Decimal("100")))
    assert [a.id for a in by_price] == [cam.id]
    top = await svc.list_auctions(session, AuctionQuery(sort=AuctionSort.highest_price, limit=1))
    assert [a.id for a in top] == [cam.id]


async def test_search_treats_wildcards_literally(session, seller, make_auction):
    cotton = await make_auction(seller, title="100% cotton shirt")
    await make_auction(seller, title="Wool scarf")
    size_xl = await make_auction(seller, title="Tee size_xl")
    await make_auction(seller, title="Tee sizexxl")

    assert [a.id for a in await svc.list_auctions(session, AuctionQuery(q="%"))] == [cotton.id]
    assert [a.id for a in await svc.list_auctions(session, AuctionQuery(q="size_x"))] == [size_xl.id]


async def test_ending_soon_excludes_auctions_ending_now(session, seller, make_auction, now):
    await make_auction(seller, title="Ends now", end_time=now)
    soon = await make_auction(seller, title="Ends soon", end_time=now + timedelta(minutes=30))
    at_cutoff = await make_auction(seller, title="Ends at cutoff", end_time=now + timedelta(minutes=60))

    result = await svc.list_auctions(session, AuctionQuery(sort=AuctionSort.ending_soon), now=now)

    assert [a.id for a in result] == [soon.id, at_cutoff.id]


async def test_auction_stats(session, seller, make_auction):
    await make_auction(seller, category="photo", current_price=Decimal("100.00"))
    await make_auction(seller, category="photo", current_price=Decimal("50.00"))
    await make_auction(seller, category="home", status=AuctionStatus.CANCELLED)

    stats = await svc.auction_stats(session, category="photo")

    assert stats.active == 2
    assert stats.by_status["CANCELLED"] == 1
    assert stats.total_active_value == Decimal("150.00")
    assert stats.average_active_price == Decimal("75.00")
    assert stats.popular_categories[0] == "photo"
    assert stats.category_count == 2
