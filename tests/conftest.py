import itertools
from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from auctionhouse.api.deps import get_bidding_policy, get_retry_policy
from auctionhouse.db.models import Auction, AuctionStatus, User
from auctionhouse.db.session import get_session, init_models
from auctionhouse.db.types import utcnow
from auctionhouse.main import app
from auctionhouse.services.bidding import BiddingPolicy
from auctionhouse.services.lifecycle import RetryPolicy

# 테스트에서는 재시도 대기 없이
NO_WAIT = RetryPolicy(max_retries=3, backoff_seconds=0)


@pytest.fixture
def now():
    return utcnow().replace(microsecond=0)


@pytest.fixture
async def engine(tmp_path):
    # 파일 DB: 세션마다 별도 커넥션 (동시 입찰 테스트)
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
async def fresh(session_factory):
    """검증용 별도 세션 (identity map 공유 안 함)"""
    async def _load(model, pk):
        async with session_factory() as s:
            return await s.get(model, pk)
    return _load


@pytest.fixture
def make_user(session):
    counter = itertools.count(1)

    async def _make(**overrides) -> User:
        n = next(counter)
        data = dict(
            email=f"user{n}@example.com",
            username=f"user{n}",
            password_hash="not-a-real-hash",
            first_name="Test",
            last_name=f"User{n}",
        )
        data.update(overrides)
        user = User(**data)
        session.add(user)
        await session.commit()
        return user

    return _make


@pytest.fixture
def make_auction(session, now):
    counter = itertools.count(1)

    async def _make(seller: User, **overrides) -> Auction:
        n = next(counter)
        starting = Decimal(str(overrides.pop("starting_price", "50.00")))
        data = dict(
            seller_id=seller.id,
            title=f"Auction {n}",
            description="test item",
            category="electronics",
            starting_price=starting,
            current_price=starting,
            start_time=now - timedelta(hours=1),
            end_time=now + timedelta(hours=1),
            status=AuctionStatus.ACTIVE,
        )
        data.update(overrides)
        auction = Auction(**data)
        session.add(auction)
        await session.commit()
        return auction

    return _make


@pytest.fixture
async def seller(make_user):
    return await make_user(username="seller", email="seller@example.com")


@pytest.fixture
async def bidder(make_user):
    return await make_user(username="bidder", email="bidder@example.com")


@pytest.fixture
async def client(session_factory):
    async def _session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_bidding_policy] = lambda: BiddingPolicy(retry=NO_WAIT)
    app.dependency_overrides[get_retry_policy] = lambda: NO_WAIT
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
