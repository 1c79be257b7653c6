from fastapi import APIRouter, Depends
from app.config import Settings, get_settings
from app.dependencies import get_dispatcher
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/utils", tags=["utils"])


@router.get("/health")
async def health(
    settings: Settings = Depends(get_settings),
    dispatcher=Depends(get_dispatcher)
):
    """Проверка состояния сервиса (без данных хранилища, они доступны в /api/data/summary)"""
    return {
        "status": "ok",
        "app": settings.app_name,
        "bitrix24_configured": dispatcher is not None,
    }
