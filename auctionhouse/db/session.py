from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
from auctionhouse.core.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    future=True,
    echo=settings.DB_ECHO,    # 디버그 시 True
    pool_pre_ping=True,
)

SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Base (ORM 모델이 상속)
class Base(DeclarativeBase):
    pass

# FastAPI 의존성 (라우터에서 Depends로 주입)
async def get_session():
    async with SessionLocal() as s:
        yield s

async def init_models(bind=None):
    """테이블 생성 (없으면). 마이그레이션 도구 도입 전까지 기동 시 호출."""
    from auctionhouse.db import models  # noqa: F401  (메타데이터 등록)

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

# 헬스체크
async def ping(session: AsyncSession) -> bool:
    await session.execute(text("SELECT 1"))
    return True
