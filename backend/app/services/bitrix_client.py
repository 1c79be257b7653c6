from fast_bitrix24 import BitrixAsync
from typing import List, Dict, Any, Optional
from app.config import Settings
from app.models import EntityType
import logging
import asyncio

logger = logging.getLogger(__name__)

GET_METHODS = {
    EntityType.CONTACT: 'crm.contact.get',
    EntityType.COMPANY: 'crm.company.get',
    EntityType.DEAL: 'crm.deal.get',
    EntityType.SMART_PROCESS: 'crm.item.get',
    EntityType.USER: 'user.get',
}

LIST_METHODS = {
    EntityType.CONTACT: 'crm.contact.list',
    EntityType.COMPANY: 'crm.company.list',
    EntityType.DEAL: 'crm.deal.list',
    EntityType.SMART_PROCESS: 'crm.item.list',
    EntityType.USER: 'user.get',
}

NOT_FOUND_MARKERS = ("not found", "не найден")


class BitrixAPIError(Exception):
    """Ошибка обращения к Bitrix24 REST API (сеть, таймаут, ответ с ошибкой)"""

    def __init__(self, method: str, message: str):
        self.method = method
        self.message = message
        super().__init__(f"{method}: {message}")


class EntityNotFoundError(BitrixAPIError):
    """Сущность не найдена в Bitrix24 (например, уже удалена)"""


def _is_not_found(message: str) -> bool:
    message = message.lower()
    return any(marker in message for marker in NOT_FOUND_MARKERS)


class BitrixClient:
    """Клиент для чтения данных из Bitrix24 REST API через библиотеку fast_bitrix24"""

    def __init__(self, settings: Settings):
        """
        Инициализация клиента Bitrix24

        Args:
            settings: Конфигурация приложения (URL входящего вебхука, таймаут, ID смарт-процесса)
        """
        if not settings.bitrix24_webhook:
            raise ValueError("Необходимо указать BITRIX24_WEBHOOK в переменных окружения")

        self.client = BitrixAsync(settings.bitrix24_webhook, verbose=False)
        self.timeout = settings.bitrix24_timeout
        self.smart_process_id = settings.smart_process_id
        logger.info("Bitrix24 клиент инициализирован")

    async def _call(self, method: str, params: Dict[str, Any]) -> Any:
        """Один вызов метода REST API с таймаутом и преобразованием ошибок"""
        try:
            return await asyncio.wait_for(self.client.call(method, params), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Таймаут запроса {method} ({self.timeout} с)")
            raise BitrixAPIError(method, f"timeout after {self.timeout}s") from e
        except Exception as e:
            message = str(e)
            if _is_not_found(message):
                raise EntityNotFoundError(method, message) from e
            logger.error(f"Ошибка при вызове {method}: {e}")
            raise BitrixAPIError(method, message) from e

    async def _get_all(self, method: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Списочный метод с автоматической пагинацией"""
        try:
            result = await asyncio.wait_for(
                self.client.get_all(method, params=params), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Таймаут запроса {method} ({self.timeout} с)")
            raise BitrixAPIError(method, f"timeout after {self.timeout}s") from e
        except Exception as e:
            logger.error(f"Ошибка при вызове {method}: {e}")
            raise BitrixAPIError(method, str(e)) from e

        # crm.item.list отдает элементы в ключе items
        if isinstance(result, dict):
            result = result.get('items', [])
        return list(result or [])

    async def get_entity(self, entity_type: EntityType, entity_id: str) -> Dict[str, Any]:
        """
        Получить одну сущность из Bitrix24 по ID

        Args:
            entity_type: Тип сущности
            entity_id: ID сущности

        Returns:
            Словарь с полными данными сущности

        Raises:
            EntityNotFoundError: Сущность не найдена
            BitrixAPIError: Ошибка сети, таймаут или ошибка в ответе API
        """
        method = GET_METHODS[entity_type]
        params: Dict[str, Any] = {'ID': entity_id}
        if entity_type == EntityType.SMART_PROCESS:
            params = {'entityTypeId': self.smart_process_id, 'id': entity_id}

        result = await self._call(method, params)

        # crm.item.get возвращает {"item": {...}}, user.get - список
        if isinstance(result, dict) and isinstance(result.get('item'), dict):
            result = result['item']
        if isinstance(result, list):
            result = result[0] if result else None

        if not result:
            raise EntityNotFoundError(method, f"{entity_type.value} {entity_id} not found")
        if not isinstance(result, dict):
            raise BitrixAPIError(method, f"unexpected response type {type(result).__name__}")

        logger.debug(f"Получена сущность {entity_type.value} с ID {entity_id}")
        return result

    async def get_entity_list(
        self,
        entity_type: EntityType,
        filter_dict: Optional[Dict[str, Any]] = None,
        select: Optional[List[str]] = None
    ) -> List[Dict[str, Any]]:
        """
        Получить список сущностей из Bitrix24

        Args:
            entity_type: Тип сущности
            filter_dict: Словарь фильтров для выборки
            select: Список полей для выборки (по умолчанию все поля)

        Returns:
            Список сущностей
        """
        params: Dict[str, Any] = {}
        if select:
            params['select'] = select
        if filter_dict:
            params['filter'] = filter_dict
        if entity_type == EntityType.SMART_PROCESS:
            params['entityTypeId'] = self.smart_process_id

        entities = await self._get_all(LIST_METHODS[entity_type], params)
        logger.info(f"Получено {len(entities)} сущностей типа {entity_type.value}")
        return entities

    async def get_company_contacts(self, company_id: str) -> List[Dict[str, Any]]:
        """Контакты, привязанные к компании через множественную связь"""
        result = await self._call('crm.company.contact.items.get', {'id': company_id})
        return list(result or [])

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        return await self.get_entity(EntityType.USER, user_id)

    async def list_projects_by_contact(self, contact_id: str, client_field: str) -> List[Dict[str, Any]]:
        """Элементы смарт-процесса, где контакт указан клиентом"""
        return await self.get_entity_list(EntityType.SMART_PROCESS, {client_field: contact_id})


def get_bitrix_client(settings: Settings) -> BitrixClient:
    """Создать клиент Bitrix24 по конфигурации приложения"""
    return BitrixClient(settings)
