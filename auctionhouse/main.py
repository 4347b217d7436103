from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from auctionhouse.api.errors import install_error_handlers
from auctionhouse.core.config import get_settings
from auctionhouse.core.logging import get_logger, setup_logging
from auctionhouse.core.scheduler import start_scheduler, shutdown_scheduler
from auctionhouse.db.session import init_models
from auctionhouse.routers.admin import router as admin_router
from auctionhouse.routers.auctions import router as auctions_router
from auctionhouse.routers.health import router as health_router
from auctionhouse.routers.users import router as users_router

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await init_models()
    start_scheduler()
    logger.info("%s %s started (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
    try:
        yield
    finally:
        shutdown_scheduler()

app = FastAPI(
    title="Auctionhouse API",
    description="온라인 경매 플랫폼 API (경매 수명주기 / 입찰 / 배치)",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,  # 프론트엔드 주소
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Retry-After"],
)

# 오류 → HTTP 변환 + X-Request-ID
install_error_handlers(app)

# 라우터 등록
app.include_router(health_router, prefix="/api/v1")
app.include_router(users_router, prefix="/api/v1")
app.include_router(auctions_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")
