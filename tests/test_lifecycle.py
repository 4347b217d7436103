import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from auctionhouse.core.errors import DomainError, ErrorCode
from auctionhouse.db.models import Auction, AuctionStatus
from auctionhouse.services.lifecycle import (
    LifecycleEvent, RetryPolicy, TRANSITIONS,
    apply_transition, next_status, resolve_expiry, run_lifecycle_batch,
)

T0 = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
NO_WAIT = RetryPolicy(backoff_seconds=0)


def snapshot(status, **kw):
    data = dict(
        id="a-1", seller_id="s-1", status=status,
        start_time=T0, end_time=T0 + timedelta(hours=2),
        starting_price=Decimal("50.00"), current_price=Decimal("50.00"),
        reserve_price=None, reserve_met=False, bid_count=0, suspended_from=None, version=0,
    )
    data.update(kw)
    return Auction(**data)


# ---------------------------------------------------------------------
# next_status: 전이 표 한 줄씩
# ---------------------------------------------------------------------
def test_publish_draft_with_future_start():
    a = snapshot(AuctionStatus.DRAFT)
    assert next_status(a, LifecycleEvent.PUBLISH, T0 - timedelta(minutes=1)) is AuctionStatus.SCHEDULED


def test_publish_rejected_when_start_already_passed():
    a = snapshot(AuctionStatus.DRAFT)
    with pytest.raises(DomainError) as ei:
        next_status(a, LifecycleEvent.PUBLISH, T0)
    assert ei.value.code is ErrorCode.INVALID_AUCTION_STATUS


def test_activate_scheduled_at_start_time():
    a = snapshot(AuctionStatus.SCHEDULED)
    assert next_status(a, LifecycleEvent.ACTIVATE, T0) is AuctionStatus.ACTIVE


def test_activate_before_start_time_rejected():
    a = snapshot(AuctionStatus.SCHEDULED)
    with pytest.raises(DomainError):
        next_status(a, LifecycleEvent.ACTIVATE, T0 - timedelta(seconds=1))


def test_expire_with_bids_and_no_reserve_completes():
    a = snapshot(AuctionStatus.ACTIVE, bid_count=2, current_price=Decimal("70.00"))
    assert next_status(a, LifecycleEvent.EXPIRE, a.end_time) is AuctionStatus.COMPLETED


def test_expire_with_reserve_met_completes():
    a = snapshot(AuctionStatus.ACTIVE, bid_count=1, reserve_price=Decimal("60.00"), reserve_met=True)
    assert next_status(a, LifecycleEvent.EXPIRE, a.end_time) is AuctionStatus.COMPLETED


def test_expire_with_reserve_not_met_ends_without_sale():
    a = snapshot(AuctionStatus.ACTIVE, bid_count=3, reserve_price=Decimal("100.00"), reserve_met=False)
    assert next_status(a, LifecycleEvent.EXPIRE, a.end_time) is AuctionStatus.ENDED_NO_SALE


def test_expire_without_bids_ends_without_sale():
    a = snapshot(AuctionStatus.ACTIVE)
    assert resolve_expiry(a) is AuctionStatus.ENDED_NO_SALE
    assert next_status(a, LifecycleEvent.EXPIRE, a.end_time + timedelta(days=1)) is AuctionStatus.ENDED_NO_SALE


def test_expire_before_end_time_rejected():
    a = snapshot(AuctionStatus.ACTIVE)
    with pytest.raises(DomainError):
        next_status(a, LifecycleEvent.EXPIRE, a.end_time - timedelta(seconds=1))


@pytest.mark.parametrize("status", [AuctionStatus.ACTIVE, AuctionStatus.SCHEDULED])
def test_cancel_and_suspend_from_open_states(status):
    a = snapshot(status)
    assert next_status(a, LifecycleEvent.CANCEL, T0) is AuctionStatus.CANCELLED
    assert next_status(a, LifecycleEvent.SUSPEND, T0) is AuctionStatus.SUSPENDED


@pytest.mark.parametrize("previous", [AuctionStatus.ACTIVE, AuctionStatus.SCHEDULED])
def test_reinstate_restores_previous_state(previous):
    a = snapshot(AuctionStatus.SUSPENDED, suspended_from=previous)
    assert next_status(a, LifecycleEvent.REINSTATE, T0) is previous


def test_reinstate_without_recorded_state_rejected():
    a = snapshot(AuctionStatus.SUSPENDED)
    with pytest.raises(DomainError):
        next_status(a, LifecycleEvent.REINSTATE, T0)


@pytest.mark.parametrize("status", [AuctionStatus.COMPLETED, AuctionStatus.ENDED_NO_SALE, AuctionStatus.CANCELLED])
@pytest.mark.parametrize("event", list(LifecycleEvent))
def test_terminal_states_accept_no_events(status, event):
    with pytest.raises(DomainError) as ei:
        next_status(snapshot(status), event, T0)
    assert ei.value.code is ErrorCode.INVALID_AUCTION_STATUS


def test_draft_cannot_be_cancelled():
    with pytest.raises(DomainError):
        next_status(snapshot(AuctionStatus.DRAFT), LifecycleEvent.CANCEL, T0)


def test_no_transition_leaves_a_terminal_state():
    assert all(not status.is_terminal for status, _ in TRANSITIONS)


# ---------------------------------------------------------------------
# 단건 전이 (DB)
# ---------------------------------------------------------------------
async def test_suspend_then_reinstate_round_trip(session, seller, make_auction):
    auction = await make_auction(seller)

    suspended = await apply_transition(session, auction.id, LifecycleEvent.SUSPEND, retry=NO_WAIT)
    assert suspended.status is AuctionStatus.SUSPENDED
    assert suspended.suspended_from is AuctionStatus.ACTIVE

    restored = await apply_transition(session, auction.id, LifecycleEvent.REINSTATE, retry=NO_WAIT)
    assert restored.status is AuctionStatus.ACTIVE
    assert restored.suspended_from is None
    assert restored.version == 2


async def test_apply_transition_unknown_auction(session):
    with pytest.raises(DomainError) as ei:
        await apply_transition(session, "missing", LifecycleEvent.CANCEL, retry=NO_WAIT)
    assert ei.value.code is ErrorCode.AUCTION_NOT_FOUND


# ---------------------------------------------------------------------
# 배치
# ---------------------------------------------------------------------
async def test_batch_activates_due_scheduled_auctions(session, seller, make_auction, fresh, now):
    due = await make_auction(seller, status=AuctionStatus.SCHEDULED,
                             start_time=now - timedelta(minutes=1), end_time=now + timedelta(hours=1))
    later = await make_auction(seller, status=AuctionStatus.SCHEDULED,
                               start_time=now + timedelta(hours=1), end_time=now + timedelta(hours=2))

    result = await run_lifecycle_batch(session, now, NO_WAIT)

    assert result.activated == 1
    assert (await fresh(Auction, due.id)).status is AuctionStatus.ACTIVE
    assert (await fresh(Auction, later.id)).status is AuctionStatus.SCHEDULED


async def test_batch_expiry_with_reserve_not_met(session, seller, bidder, make_auction, fresh, now):
    # 입찰 3건, 최고가 < 리저브
    auction = await make_auction(
        seller, end_time=now - timedelta(seconds=1),
        reserve_price=Decimal("100.00"), current_price=Decimal("80.00"),
        bid_count=3, highest_bidder_id=bidder.id,
    )

    result = await run_lifecycle_batch(session, now, NO_WAIT)

    assert (result.completed, result.ended_no_sale) == (0, 1)
    stored = await fresh(Auction, auction.id)
    assert stored.status is AuctionStatus.ENDED_NO_SALE
    assert stored.current_price == Decimal("80.00")


async def test_batch_expiry_completes_sold_auction(session, seller, bidder, make_auction, fresh, now):
    auction = await make_auction(seller, end_time=now - timedelta(minutes=5),
                                 current_price=Decimal("75.00"), bid_count=3, highest_bidder_id=bidder.id)
    empty = await make_auction(seller, end_time=now - timedelta(minutes=5))

    result = await run_lifecycle_batch(session, now, NO_WAIT)

    assert (result.completed, result.ended_no_sale) == (1, 1)
    assert (await fresh(Auction, auction.id)).status is AuctionStatus.COMPLETED
    assert (await fresh(Auction, empty.id)).status is AuctionStatus.ENDED_NO_SALE


async def test_batch_second_run_is_noop(session, seller, make_auction, now):
    await make_auction(seller, status=AuctionStatus.SCHEDULED,
                       start_time=now - timedelta(minutes=1), end_time=now + timedelta(hours=1))
    await make_auction(seller, end_time=now - timedelta(minutes=1))

    first = await run_lifecycle_batch(session, now, NO_WAIT)
    second = await run_lifecycle_batch(session, now, NO_WAIT)

    assert first.total == 2
    assert second.total == 0


async def test_batch_activates_and_expires_in_one_run(session, seller, make_auction, fresh, now):
    # 배치가 늦게 돌아 시작/마감이 모두 지난 경우
    auction = await make_auction(seller, status=AuctionStatus.SCHEDULED,
                                 start_time=now - timedelta(hours=2), end_time=now - timedelta(hours=1))

    result = await run_lifecycle_batch(session, now, NO_WAIT)

    assert (result.activated, result.ended_no_sale) == (1, 1)
    assert (await fresh(Auction, auction.id)).status is AuctionStatus.ENDED_NO_SALE


async def test_overlapping_batches_transition_each_auction_once(session_factory, seller, make_auction, now):
    for _ in range(3):
        await make_auction(seller, end_time=now - timedelta(minutes=1))

    async def run():
        async with session_factory() as s:
            return await run_lifecycle_batch(s, now, NO_WAIT)

    results = await asyncio.gather(run(), run())

    assert sum(r.ended_no_sale for r in results) == 3
