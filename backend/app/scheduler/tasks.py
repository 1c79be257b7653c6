from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from typing import Callable
from app.config import Settings
from app.services.bitrix_client import BitrixClient, get_bitrix_client
from app.services.event_dispatcher import EventDispatcher
from app.services.local_storage import LocalStorage
import logging
import asyncio

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def refresh_managers_task(
    settings: Settings,
    storage: LocalStorage,
    client_factory: Callable[[Settings], BitrixClient] = get_bitrix_client
) -> int:
    """
    Задача периодического обновления данных менеджеров из Bitrix24

    Задача выполняется в потоке планировщика со своим event loop,
    поэтому клиент Bitrix24 создается на каждый запуск и не делится с вебхуками.
    """
    logger.info("Запуск обновления менеджеров")
    try:
        dispatcher = EventDispatcher(settings, client_factory(settings), storage)
        refreshed = asyncio.run(dispatcher.refresh_managers())
        logger.info(f"Обновление менеджеров завершено: {refreshed}")
        return refreshed
    except Exception as e:
        logger.error(f"Критическая ошибка при обновлении менеджеров: {e}", exc_info=True)
        return 0


def start_scheduler(settings: Settings, storage: LocalStorage):
    """Запустить планировщик задач"""
    if not settings.scheduler_enabled:
        logger.info("Планировщик отключен в настройках")
        return
    if not settings.bitrix24_webhook:
        logger.warning("Планировщик не запущен: не задан BITRIX24_WEBHOOK")
        return

    scheduler.add_job(
        refresh_managers_task,
        trigger=IntervalTrigger(minutes=settings.managers_refresh_interval_minutes),
        args=[settings, storage],
        id='refresh_managers',
        name='Обновление данных менеджеров',
        replace_existing=True
    )

    if not scheduler.running:
        scheduler.start()
    logger.info(
        f"Планировщик запущен. Обновление менеджеров каждые "
        f"{settings.managers_refresh_interval_minutes} мин"
    )


def stop_scheduler():
    """Остановить планировщик задач"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Планировщик остановлен")
