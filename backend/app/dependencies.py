from fastapi import Request
from app.services.event_dispatcher import EventDispatcher
from app.services.local_storage import LocalStorage
from app.services.webhook_validator import WebhookValidator


def get_storage(request: Request) -> LocalStorage:
    """Dependency для получения локального хранилища"""
    return request.app.state.storage


def get_validator(request: Request) -> WebhookValidator:
    return request.app.state.validator


def get_dispatcher(request: Request) -> EventDispatcher:
    """Диспетчер событий (None, если не настроен BITRIX24_WEBHOOK)"""
    return request.app.state.dispatcher
