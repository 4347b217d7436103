from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from auctionhouse.core.config import get_settings
from auctionhouse.core.logging import get_logger
from auctionhouse.db.session import SessionLocal
from auctionhouse.services.lifecycle import RetryPolicy, run_lifecycle_batch

logger: logging.Logger = get_logger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


async def job_auction_lifecycle():
    """SCHEDULED → ACTIVE, 마감된 ACTIVE → COMPLETED / ENDED_NO_SALE"""
    retry = RetryPolicy.from_settings(get_settings())
    # 예외는 APScheduler가 로깅하고 다음 주기에 다시 실행
    async with SessionLocal() as session:
        await run_lifecycle_batch(session, retry=retry)


def start_scheduler():
    global _scheduler
    if _scheduler and _scheduler.running:
        return
    settings = get_settings()
    _scheduler = AsyncIOScheduler(timezone=settings.SCHED_TIMEZONE)

    if settings.SCHED_ENABLE:
        # 겹쳐 실행되지 않도록 max_instances=1, 밀린 실행은 한 번으로 합침
        _scheduler.add_job(
            job_auction_lifecycle,
            IntervalTrigger(seconds=settings.SCHED_LIFECYCLE_INTERVAL_SEC),
            id="auction_lifecycle",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("[sched] lifecycle job every %ss", settings.SCHED_LIFECYCLE_INTERVAL_SEC)

    _scheduler.start()


def shutdown_scheduler():
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _scheduler = None
