# auctionhouse/routers/users.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auctionhouse.db.session import get_session
from auctionhouse.schemas.user import UserCreate, UserOut, UserStats, UserActivity
from auctionhouse.services import users as user_service

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=UserOut, status_code=201)
async def register(payload: UserCreate, db: AsyncSession = Depends(get_session)):
    """회원 가입 (이메일/사용자명 중복 시 409 USER_ALREADY_EXISTS)"""
    return await user_service.register_user(db, payload)


@router.get("", response_model=List[UserOut])
async def list_users(
    verified_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
):
    return await user_service.list_users(db, verified_only=verified_only, limit=limit, offset=offset)


@router.get("/search", response_model=UserOut)
async def search_user(
    identifier: str = Query(..., min_length=1, description="이메일 또는 사용자명"),
    db: AsyncSession = Depends(get_session),
):
    return await user_service.find_user(db, identifier)


@router.get("/stats", response_model=UserStats)
async def stats(db: AsyncSession = Depends(get_session)):
    return await user_service.user_stats(db)


@router.get("/{user_id}", response_model=UserOut)
async def get_user(user_id: str, db: AsyncSession = Depends(get_session)):
    return await user_service.get_user(db, user_id)


@router.get("/{user_id}/activity", response_model=UserActivity)
async def activity(user_id: str, db: AsyncSession = Depends(get_session)):
    return await user_service.user_activity(db, user_id)
