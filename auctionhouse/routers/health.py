# auctionhouse/routers/health.py
from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from auctionhouse.core.config import get_settings
from auctionhouse.db.session import get_session, ping
from auctionhouse.db.types import utcnow

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health(db: AsyncSession = Depends(get_session)):
    settings = get_settings()
    try:
        db_ok = await ping(db)
    except SQLAlchemyError:
        db_ok = False
    return {
        "status": "UP" if db_ok else "DEGRADED",
        "application": settings.APP_NAME,
        "database": "UP" if db_ok else "DOWN",
        "timestamp": utcnow(),
    }


@router.get("/version")
async def version():
    settings = get_settings()
    return {
        "application": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }
