from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
from app.config import Settings, get_settings
from app.logging_config import setup_logging
from app.api.routes import api_router
from app.scheduler.tasks import start_scheduler, stop_scheduler
from app.services.bitrix_client import BitrixClient, get_bitrix_client
from app.services.event_dispatcher import EventDispatcher
from app.services.field_mapper import FieldMapper
from app.services.local_storage import LocalStorage
from app.services.webhook_validator import WebhookValidator
import logging

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    bitrix_client: Optional[BitrixClient] = None
) -> FastAPI:
    """
    Создать FastAPI приложение

    Args:
        settings: Конфигурация (по умолчанию из окружения и .env)
        bitrix_client: Клиент Bitrix24 (по умолчанию создается по BITRIX24_WEBHOOK)
    """
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        version="1.0.0"
    )
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if bitrix_client is None and settings.bitrix24_webhook:
        bitrix_client = get_bitrix_client(settings)

    storage = LocalStorage(settings.data_dir)
    app.state.settings = settings
    app.state.storage = storage
    app.state.validator = WebhookValidator(settings)
    app.state.dispatcher = None
    if bitrix_client is not None:
        app.state.dispatcher = EventDispatcher(
            settings, bitrix_client, storage, FieldMapper(settings.field_mapping)
        )

    app.include_router(api_router)

    @app.on_event("startup")
    async def startup_event():
        """Событие запуска приложения"""
        logger.info(f"Запуск приложения {settings.app_name}")
        logger.info(f"Режим отладки: {settings.debug}")
        logger.info(f"Каталог данных: {settings.data_dir}")
        logger.info(f"Разрешенные CORS origins: {settings.cors_origins}")
        if app.state.dispatcher is None:
            logger.warning("BITRIX24_WEBHOOK не задан, события Bitrix24 обрабатываться не будут")

        start_scheduler(settings, storage)

    @app.on_event("shutdown")
    async def shutdown_event():
        """Событие остановки приложения"""
        logger.info("Остановка приложения")
        stop_scheduler()

    @app.get("/")
    def root():
        """Корневой endpoint"""
        return {
            "message": "LK Sync B24 API",
            "version": "1.0.0",
            "docs": "/docs"
        }

    return app


app = create_app()
