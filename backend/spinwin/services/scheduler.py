"""
定时任务模块
负责补生成缺失的券二维码
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from spinwin.core.database import async_session
from spinwin.core.config import get_settings
from spinwin.core.exceptions import StoreUnavailableError
from spinwin.services.qr_service import backfill_missing_qr_images
import logging

logger = logging.getLogger(__name__)
settings = get_settings()

scheduler = AsyncIOScheduler()


async def backfill_qr_job():
    """
    补生成二维码

    发券时二维码在后台生成，失败会留下 qr_image_url 为空的券；
    这里定期扫描 qr_requested=True 且没有地址的券重新生成
    """
    try:
        await backfill_missing_qr_images(async_session)
    except StoreUnavailableError:
        logger.exception("补生成二维码时数据库不可用")


def start_scheduler():
    """启动定时任务调度器"""
    scheduler.add_job(
        backfill_qr_job,
        trigger=IntervalTrigger(minutes=settings.qr_backfill_interval_minutes),
        id="backfill_qr_images",
        name="补生成券二维码",
        replace_existing=True
    )

    scheduler.start()
    logger.info("定时任务调度器已启动")


def stop_scheduler():
    """停止定时任务调度器"""
    scheduler.shutdown()
    logger.info("定时任务调度器已停止")
