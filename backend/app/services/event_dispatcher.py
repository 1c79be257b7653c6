from typing import Any, Dict, Optional
from app.config import Settings
from app.models import EntityType, EventAction
from app.services.bitrix_client import BitrixClient, BitrixAPIError, EntityNotFoundError
from app.services.event_router import entity_type_for, action_for
from app.services.field_mapper import FieldMapper, extract_contact_id
from app.services.local_storage import LocalStorage
import asyncio
import logging
import time

logger = logging.getLogger(__name__)


def extract_entity_id(webhook_data: Dict[str, Any]) -> Optional[str]:
    """ID сущности из тела вебхука: data.FIELDS.ID или data.ID"""
    data = webhook_data.get("data")
    if not isinstance(data, dict):
        return None
    fields = data.get("FIELDS")
    entity_id = fields.get("ID") if isinstance(fields, dict) else None
    if entity_id in (None, ""):
        entity_id = data.get("ID")
    if entity_id in (None, ""):
        return None
    return str(entity_id)


class EventDispatcher:
    """
    Обработка событий Bitrix24: получение сущности, маппинг и запись в хранилище

    Повторные попытки выполняются внутри запроса вебхука с ограничением
    по общему времени (retry_deadline_seconds).
    """

    def __init__(
        self,
        settings: Settings,
        bitrix_client: BitrixClient,
        storage: LocalStorage,
        mapper: Optional[FieldMapper] = None
    ):
        self.settings = settings
        self.bitrix = bitrix_client
        self.storage = storage
        self.mapper = mapper or FieldMapper(settings.field_mapping)

    async def process_with_retry(self, event_name: str, webhook_data: Dict[str, Any]) -> bool:
        """
        Обработать событие с повторными попытками

        Args:
            event_name: Имя события (например, ONCRMCONTACTUPDATE)
            webhook_data: Разобранное тело вебхука

        Returns:
            True, если событие обработано (или проигнорировано), иначе False
        """
        entity_type = entity_type_for(event_name)
        if entity_type is None:
            logger.warning(f"Неизвестный тип события {event_name}, пропускаем")
            return True

        action = action_for(event_name)
        if action == EventAction.UNKNOWN:
            logger.warning(f"Неизвестное действие в событии {event_name}, пропускаем")
            return True

        entity_id = extract_entity_id(webhook_data)
        if not entity_id:
            logger.error(
                "Не удалось определить ID сущности",
                extra={"context": {"event": event_name, "entity_type": entity_type.value}},
            )
            return False

        max_attempts = self.settings.max_retries + 1
        delays = self.settings.retry_delays
        started = time.monotonic()

        for attempt in range(max_attempts):
            logger.debug(f"Обработка {event_name} для {entity_id}, попытка {attempt + 1}/{max_attempts}")

            if await self.process_event(entity_type, action, entity_id):
                return True

            if attempt + 1 >= max_attempts:
                break

            delay = delays[min(attempt, len(delays) - 1)]
            elapsed = time.monotonic() - started
            if elapsed + delay > self.settings.retry_deadline_seconds:
                logger.warning(
                    "Превышен лимит времени на повторные попытки",
                    extra={"context": {
                        "event": event_name,
                        "entity_id": entity_id,
                        "attempt": attempt + 1,
                        "next_delay": delay,
                        "elapsed": round(elapsed, 3),
                    }},
                )
                break

            logger.warning(
                f"Ошибка обработки {event_name}, повтор через {delay} с",
                extra={"context": {"entity_id": entity_id, "attempt": attempt + 1}},
            )
            await asyncio.sleep(delay)

        logger.error(
            "Событие не обработано",
            extra={"context": {"event": event_name, "entity_id": entity_id}},
        )
        return False

    async def process_event(self, entity_type: EntityType, action: EventAction, entity_id: str) -> bool:
        """Одна попытка обработки события"""
        try:
            entity_data = await self.bitrix.get_entity(entity_type, entity_id)
        except EntityNotFoundError as e:
            if action != EventAction.DELETE:
                logger.error(f"{entity_type.value} {entity_id} не найден в Bitrix24: {e.message}")
                return False
            entity_data = {"ID": entity_id}
        except BitrixAPIError as e:
            logger.error(
                f"Не удалось получить {entity_type.value} {entity_id} из Bitrix24",
                extra={"context": {"method": e.method, "error": e.message}},
            )
            return False

        if action == EventAction.CREATE:
            return await self.handle_create(entity_type, entity_id, entity_data)
        if action == EventAction.UPDATE:
            return await self.handle_update(entity_type, entity_id, entity_data)
        return self.handle_delete(entity_type, entity_id)

    async def handle_create(self, entity_type: EntityType, entity_id: str, entity_data: Dict[str, Any]) -> bool:
        if entity_type == EntityType.CONTACT:
            if self.storage.get_contact(entity_id):
                logger.info(f"ЛК для контакта {entity_id} уже существует, пропускаем создание")
                return True
            if not self.mapper.is_opted_in(entity_data):
                logger.info(
                    "Пропуск создания ЛК: недопустимое значение поля ЛК клиента",
                    extra={"context": {"contact_id": entity_id, "value": self.mapper.opt_in_value(entity_data)}},
                )
                return True
            return await self._create_lk(entity_id, entity_data)

        if entity_type == EntityType.DEAL:
            return self._upsert_deal(entity_data)

        if entity_type == EntityType.SMART_PROCESS and self.settings.projects_webhook_sync:
            return self._sync_project(entity_id, entity_data)

        logger.info(f"Создан {entity_type.value} {entity_id}, синхронизация не требуется")
        return True

    async def handle_update(self, entity_type: EntityType, entity_id: str, entity_data: Dict[str, Any]) -> bool:
        if entity_type == EntityType.CONTACT:
            return await self._handle_contact_update(entity_id, entity_data)

        if entity_type == EntityType.COMPANY:
            return await self._sync_company(entity_id, entity_data)

        if entity_type == EntityType.DEAL:
            return self._upsert_deal(entity_data)

        if entity_type == EntityType.SMART_PROCESS and self.settings.projects_webhook_sync:
            return self._sync_project(entity_id, entity_data)

        logger.info(f"Обновление {entity_type.value} {entity_id} не синхронизируется")
        return True

    def handle_delete(self, entity_type: EntityType, entity_id: str) -> bool:
        # Удаление контактов и компаний только логируется, локальные данные остаются
        if entity_type == EntityType.SMART_PROCESS and self.settings.projects_webhook_sync:
            if not self.storage.delete_project(entity_id):
                logger.info(f"Проект {entity_id} отсутствовал в локальном хранилище")
            return True

        logger.info(
            "Удаление сущности в Bitrix24",
            extra={"context": {"entity_type": entity_type.value, "entity_id": entity_id}},
        )
        return True

    async def _handle_contact_update(self, contact_id: str, contact_data: Dict[str, Any]) -> bool:
        if self.mapper.should_delete_contact(contact_data):
            logger.info(
                "Удаление данных контакта по значению поля ЛК",
                extra={"context": {"contact_id": contact_id, "value": self.mapper.opt_in_value(contact_data)}},
            )
            self.storage.delete_contact_data(contact_id)
            return True

        opted_in = self.mapper.is_opted_in(contact_data)
        existing = self.storage.get_contact(contact_id)

        if existing:
            if not opted_in:
                logger.info(f"Пропуск обновления контакта {contact_id}: недопустимое значение поля ЛК клиента")
                return True
            contact = self.mapper.map_contact(contact_data)
            if not self.storage.sync_contact_by_bitrix_id(contact_id, contact):
                return False
            await self.sync_manager(contact_id, contact.manager_id)
            return True

        if not opted_in:
            logger.info(f"Пропуск создания ЛК для контакта {contact_id}: недопустимое значение поля ЛК клиента")
            return True
        return await self._create_lk(contact_id, contact_data)

    async def _create_lk(self, contact_id: str, contact_data: Dict[str, Any]) -> bool:
        contact = self.mapper.map_contact(contact_data)
        if not self.storage.create_lk(contact):
            return False

        if self.settings.sync_related_on_create:
            await self.sync_related_entities(contact_id)
        await self.sync_manager(contact_id, contact.manager_id)
        return True

    def _upsert_deal(self, deal_data: Dict[str, Any]) -> bool:
        return self.storage.add_deal(self.mapper.map_deal(deal_data))

    def _sync_project(self, project_id: str, project_data: Dict[str, Any]) -> bool:
        project = self.mapper.map_project(project_data, self.storage.get_contact)
        if not project.client_id or not self.storage.get_contact(project.client_id):
            logger.info(
                "Пропуск проекта: клиент не найден в локальном хранилище",
                extra={"context": {"project_id": project_id, "client_id": project.client_id}},
            )
            return True
        return self.storage.sync_project_by_bitrix_id(project_id, project)

    async def _sync_company(self, company_id: str, company_data: Dict[str, Any]) -> bool:
        """Перезаписать компанию, если она связана с контактом, у которого есть ЛК"""
        company = self.mapper.map_company(company_data)
        try:
            contact_id = await self._resolve_company_contact(company_id, company.contact_id)
        except BitrixAPIError as e:
            logger.error(
                f"Не удалось получить контакты компании {company_id}",
                extra={"context": {"method": e.method, "error": e.message}},
            )
            return False

        if not contact_id:
            logger.info(
                "Пропуск компании: нет связанного контакта в локальном хранилище",
                extra={"context": {"company_id": company_id}},
            )
            return True

        company = company.model_copy(update={"contact_id": contact_id})
        return self.storage.sync_company_by_bitrix_id(company_id, company)

    async def _resolve_company_contact(self, company_id: str, contact_id: Optional[str]) -> Optional[str]:
        """
        Контакт компании, для которого есть ЛК

        Порядок: поле CONTACT_ID компании, связи crm.company.contact.items.get,
        затем contact_id уже сохраненной компании.
        """
        if contact_id and self.storage.get_contact(contact_id):
            return contact_id

        for item in await self.bitrix.get_company_contacts(company_id):
            linked = item.get("CONTACT_ID", item.get("ID"))
            if linked is not None and self.storage.get_contact(str(linked)):
                return str(linked)

        stored = self.storage.get_company(company_id) or {}
        stored_contact = stored.get("contact_id")
        if stored_contact and self.storage.get_contact(stored_contact):
            return str(stored_contact)
        return None

    async def sync_manager(self, contact_id: str, manager_id: Optional[str]) -> bool:
        """Загрузить ответственного менеджера контакта в managers.json"""
        if not manager_id:
            return False

        try:
            user_data = await self.bitrix.get_user(manager_id)
        except BitrixAPIError as e:
            logger.warning(
                "Не удалось получить данные менеджера",
                extra={"context": {"contact_id": contact_id, "manager_id": manager_id, "error": e.message}},
            )
            return False

        manager = self.mapper.map_manager(user_data)
        return self.storage.sync_manager_by_bitrix_id(manager_id, manager)

    async def sync_related_entities(self, contact_id: str) -> None:
        """
        Загрузить компании (и проекты, если включена их синхронизация), связанные с контактом

        Ошибки Bitrix24 здесь не прерывают обработку события: ЛК уже создан.
        """
        try:
            companies = await self.bitrix.get_entity_list(EntityType.COMPANY, {"CONTACT_ID": contact_id})
        except BitrixAPIError as e:
            logger.warning(f"Не удалось получить компании контакта {contact_id}: {e.message}")
            companies = []

        for item in companies:
            company_id = item.get("ID")
            if not company_id:
                continue
            try:
                company_data = await self.bitrix.get_entity(EntityType.COMPANY, str(company_id))
                related = await self._is_company_related(str(company_id), company_data, contact_id)
            except BitrixAPIError as e:
                logger.warning(f"Не удалось получить компанию {company_id}: {e.message}")
                continue

            if not related:
                logger.warning(f"Компания {company_id} не связана с контактом {contact_id}, пропускаем")
                continue

            company = self.mapper.map_company(company_data).model_copy(update={"contact_id": contact_id})
            self.storage.sync_company_by_bitrix_id(str(company_id), company)

        if not self.settings.projects_webhook_sync:
            return

        client_field = self.settings.field_mapping.smart_process.client_id
        try:
            projects = await self.bitrix.list_projects_by_contact(contact_id, client_field)
        except BitrixAPIError as e:
            logger.warning(f"Не удалось получить проекты контакта {contact_id}: {e.message}")
            return

        for item in projects:
            project_id = item.get("id", item.get("ID"))
            if not project_id:
                logger.warning(f"Проект без ID в списке проектов контакта {contact_id}")
                continue
            self._sync_project(str(project_id), item)

    async def _is_company_related(self, company_id: str, company_data: Dict[str, Any], contact_id: str) -> bool:
        code = self.settings.field_mapping.company.contact_id
        company_contact_id = extract_contact_id(company_data.get(code))
        if company_contact_id:
            return company_contact_id == str(contact_id)

        for item in await self.bitrix.get_company_contacts(company_id):
            linked = item.get("CONTACT_ID", item.get("ID"))
            if linked is not None and str(linked) == str(contact_id):
                return True
        return False

    async def refresh_managers(self) -> int:
        """Обновить данные всех сохраненных менеджеров из Bitrix24"""
        refreshed = 0
        for manager_id in list(self.storage.get_all_managers().keys()):
            try:
                user_data = await self.bitrix.get_user(manager_id)
            except BitrixAPIError as e:
                logger.warning(f"Не удалось обновить менеджера {manager_id}: {e.message}")
                continue
            if self.storage.sync_manager_by_bitrix_id(manager_id, self.mapper.map_manager(user_data)):
                refreshed += 1

        logger.info(f"Обновлено менеджеров: {refreshed}")
        return refreshed
