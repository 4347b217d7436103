from decimal import Decimal

import pytest
from pydantic import ValidationError

from auctionhouse.core.errors import DomainError, ErrorCode
from auctionhouse.core.security import verify_password
from auctionhouse.schemas.user import UserCreate
from auctionhouse.services import users as svc
from auctionhouse.services.bidding import BiddingPolicy, place_bid
from auctionhouse.services.lifecycle import RetryPolicy


def signup(**kw):
    data = dict(email="ada@example.com", username="ada", password="s3cret!",
                first_name="Ada", last_name="Lovelace")
    data.update(kw)
    return UserCreate(**data)


async def test_register_stores_only_a_hash(session):
    user = await svc.register_user(session, signup())

    assert user.id
    assert user.password_hash != "s3cret!"
    assert verify_password("s3cret!", user.password_hash)
    assert not user.email_verified


@pytest.mark.parametrize("dup, field", [
    ({"username": "other"}, "email"),
    ({"email": "other@example.com"}, "username"),
])
async def test_register_rejects_taken_identity(session, dup, field):
    await svc.register_user(session, signup())
    with pytest.raises(DomainError) as ei:
        await svc.register_user(session, signup(**dup))
    assert ei.value.code is ErrorCode.USER_ALREADY_EXISTS
    assert ei.value.context["field"] == field


def test_signup_payload_validation():
    with pytest.raises(ValidationError):
        signup(email="not-an-email")
    with pytest.raises(ValidationError):
        signup(username="ab")
    with pytest.raises(ValidationError):
        signup(password="12345")


def test_password_limit_counts_utf8_bytes():
    # 30글자지만 90바이트
    with pytest.raises(ValidationError):
        signup(password="비" * 30)
    assert signup(password="비" * 24).password == "비" * 24


async def test_find_by_email_or_username(session):
    user = await svc.register_user(session, signup())
    assert (await svc.find_user(session, "ada")).id == user.id
    assert (await svc.find_user(session, "ada@example.com")).id == user.id
    with pytest.raises(DomainError) as ei:
        await svc.find_user(session, "nobody")
    assert ei.value.code is ErrorCode.USER_NOT_FOUND


async def test_user_stats(session, make_user):
    await make_user()
    await make_user(email_verified=True)

    stats = await svc.user_stats(session)

    assert stats.total_users == 2
    assert stats.verified_users == 1


async def test_user_activity(session, seller, bidder, make_auction):
    auction = await make_auction(seller)
    await place_bid(session, auction.id, bidder.id, Decimal("55.00"),
                    policy=BiddingPolicy(retry=RetryPolicy(backoff_seconds=0)))

    selling = await svc.user_activity(session, seller.id)
    assert selling.auction_count == 1
    assert selling.has_active_auctions

    buying = await svc.user_activity(session, bidder.id)
    assert buying.auction_count == 0
    assert buying.leading_auction_ids == [auction.id]
    assert [b.amount for b in buying.recent_bids] == [Decimal("55.00")]
