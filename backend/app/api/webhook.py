from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from typing import Any, Optional
from app.config import Settings, get_settings
from app.dependencies import get_dispatcher, get_validator
from app.services.event_dispatcher import EventDispatcher
from app.services.event_router import is_event_enabled
from app.services.webhook_validator import WebhookValidator
import json
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["webhook"])

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


class PrettyJSONResponse(JSONResponse):
    """JSON-ответ с отступами, UTF-8 без экранирования"""

    def render(self, content: Any) -> bytes:
        return json.dumps(content, ensure_ascii=False, indent=4).encode("utf-8")


def webhook_response(status_code: int, content: dict) -> PrettyJSONResponse:
    return PrettyJSONResponse(
        status_code=status_code,
        content=content,
        headers={"X-Powered-By": "Bitrix24-Webhook-Handler"},
    )


@router.api_route("/bitrix24", methods=ALL_METHODS)
async def handle_bitrix24_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    validator: WebhookValidator = Depends(get_validator),
    dispatcher: Optional[EventDispatcher] = Depends(get_dispatcher)
):
    """
    Обработчик исходящих вебхуков Bitrix24

    Принимает события OnCrm*Add/Update/Delete для контактов, компаний,
    сделок и смарт-процессов, получает полные данные сущности через REST API
    и синхронизирует локальное хранилище ЛК.
    """
    if request.method != "POST":
        return webhook_response(405, {"error": "Method not allowed. Use POST."})

    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > settings.max_body_size:
        logger.warning(f"Тело вебхука слишком большое: {content_length} байт")
        return webhook_response(413, {"error": "Payload too large"})

    raw_body = await request.body()
    if len(raw_body) > settings.max_body_size:
        logger.warning(f"Тело вебхука слишком большое: {len(raw_body)} байт")
        return webhook_response(413, {"error": "Payload too large"})

    if not raw_body:
        logger.warning("Получен вебхук с пустым телом")
        return webhook_response(400, {"error": "Empty request body"})

    webhook_data = validator.validate(request.headers, raw_body)
    if webhook_data is None:
        return webhook_response(400, {"error": "Invalid webhook data"})

    event_name = webhook_data.get("event")
    if not event_name or not isinstance(event_name, str):
        logger.warning("В вебхуке отсутствует поле event")
        return webhook_response(400, {"error": "Event type not specified"})

    logger.info(
        f"Получено событие {event_name}",
        extra={"context": {"event": event_name, "data": webhook_data.get("data")}},
    )

    if not is_event_enabled(event_name, settings.enabled_events):
        logger.warning(f"Событие {event_name} не включено в ENABLED_EVENTS, пропускаем")
        return webhook_response(200, {"status": "success", "event": event_name})

    if dispatcher is None:
        logger.error("Обработка событий невозможна: не задан BITRIX24_WEBHOOK")
        return webhook_response(500, {"error": "Internal server error"})

    try:
        processed = await dispatcher.process_with_retry(event_name, webhook_data)
    except Exception as e:
        logger.exception(
            f"Ошибка при обработке события {event_name}: {e}",
            extra={"context": {"event": event_name}},
        )
        return webhook_response(500, {"error": "Internal server error"})

    if not processed:
        return webhook_response(500, {"error": "Processing failed", "event": event_name})

    logger.info(f"Событие {event_name} обработано")
    return webhook_response(200, {"status": "success", "event": event_name})
