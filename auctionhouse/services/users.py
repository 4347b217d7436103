# auctionhouse/services/users.py
from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auctionhouse.core.errors import DomainError, ErrorCode
from auctionhouse.core.logging import get_logger
from auctionhouse.core.security import hash_password
from auctionhouse.db import crud
from auctionhouse.db.models import User
from auctionhouse.db.types import utcnow
from auctionhouse.schemas.bid import BidOut
from auctionhouse.schemas.user import UserCreate, UserStats, UserActivity

logger: logging.Logger = get_logger(__name__)


async def register_user(session: AsyncSession, payload: UserCreate) -> User:
    """
    회원 가입

    - 이메일/사용자명 중복이면 USER_ALREADY_EXISTS (context.field 로 어느 쪽인지 전달)
    - 비밀번호는 bcrypt 해시로만 저장
    """
    if await crud.user_exists_by_email(session, payload.email):
        raise DomainError(ErrorCode.USER_ALREADY_EXISTS, "Email already exists", context={"field": "email"})
    if await crud.user_exists_by_username(session, payload.username):
        raise DomainError(ErrorCode.USER_ALREADY_EXISTS, "Username already exists", context={"field": "username"})

    user = User(
        email=payload.email,
        username=payload.username,
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
    )
    session.add(user)
    try:
        await session.commit()
    except IntegrityError:
        # 동시 가입으로 unique 제약에 걸린 경우
        await session.rollback()
        raise DomainError(ErrorCode.USER_ALREADY_EXISTS, "User already exists")
    logger.info("user registered: %s (%s)", user.id, user.username)
    return user


async def get_user(session: AsyncSession, user_id: str) -> User:
    user = await crud.get_user(session, user_id)
    if user is None:
        raise DomainError(ErrorCode.USER_NOT_FOUND, f"User not found with ID: {user_id}",
                          context={"user_id": user_id})
    return user


async def find_user(session: AsyncSession, identifier: str) -> User:
    user = await crud.find_user_by_identifier(session, identifier)
    if user is None:
        raise DomainError(ErrorCode.USER_NOT_FOUND, f"User not found: {identifier}",
                          context={"identifier": identifier})
    return user


async def list_users(session: AsyncSession, *, verified_only: bool = False,
                     limit: int = 100, offset: int = 0) -> Sequence[User]:
    return await crud.list_users(session, verified_only=verified_only, limit=limit, offset=offset)


async def user_stats(session: AsyncSession) -> UserStats:
    return UserStats(
        total_users=await crud.count_users(session),
        verified_users=await crud.count_users(session, verified_only=True),
        timestamp=utcnow(),
    )


async def user_activity(session: AsyncSession, user_id: str) -> UserActivity:
    """판매/입찰 현황 요약"""
    await get_user(session, user_id)
    return UserActivity(
        user_id=user_id,
        auction_count=await crud.count_by_seller(session, user_id),
        has_active_auctions=await crud.has_active_auctions(session, user_id),
        leading_auction_ids=[a.id for a in await crud.find_by_highest_bidder(session, user_id)],
        recent_bids=[BidOut.model_validate(b) for b in await crud.list_bids_by_bidder(session, user_id, limit=20)],
    )
