from typing import Any, Callable, Dict, List, Optional
from app.config import FieldMapping
from app.models import ContactField, CompanyField, DealField, ProjectField, UserField
from app.schemas.crm import CrmDocument, parse_multi_field, first_value
from app.schemas.records import (
    ContactRecord,
    CompanyRecord,
    DealRecord,
    EquipmentFile,
    ProjectRecord,
    ManagerRecord,
)
import re
import logging

logger = logging.getLogger(__name__)

# Bitrix24 дописывает к адресу "|;|<ID>" для полей типа "Адрес"
ADDRESS_SEPARATOR = "|;|"
TRUTHY_STRINGS = {"Y", "YES", "TRUE", "1"}

ContactLookup = Callable[[str], Optional[Dict[str, Any]]]


def extract_contact_id(raw_value: Any) -> Optional[str]:
    """Получить ID контакта из значения, которое может быть строкой, числом или списком"""
    if isinstance(raw_value, (list, tuple)):
        return str(raw_value[0]) if raw_value else None
    if raw_value is None or raw_value == "" or raw_value == 0 or raw_value == "0":
        return None
    return str(raw_value)


def normalize_list_field(raw_value: Any) -> List[str]:
    """
    Привести списочное поле к списку строк

    Элементы-объекты дают ID/id/VALUE/value, простые значения берутся как есть.
    """
    if raw_value is None or raw_value == "" or raw_value == []:
        return []
    if not isinstance(raw_value, (list, tuple)):
        return [str(raw_value)]

    result = []
    for item in raw_value:
        if isinstance(item, dict):
            item_id = None
            for key in ("ID", "id", "VALUE", "value"):
                if item.get(key) is not None:
                    item_id = item[key]
                    break
            if item_id is not None:
                result.append(str(item_id))
        elif item is not None and item != "":
            result.append(str(item))
    return result


def normalize_equipment_list(raw_value: Any) -> List[EquipmentFile]:
    """Привести поле "Перечень оборудования" к списку ссылок на файлы"""
    if raw_value is None or raw_value == "" or raw_value == []:
        return []
    if not isinstance(raw_value, (list, tuple)):
        return [EquipmentFile(id=raw_value)]

    files = []
    for item in raw_value:
        if isinstance(item, dict):
            file_id = item.get("id", item.get("ID"))
            if not file_id:
                continue
            files.append(EquipmentFile(
                id=file_id,
                name=_optional_str(item.get("name", item.get("NAME"))),
                url=_optional_str(item.get("downloadUrl", item.get("DOWNLOAD_URL", item.get("urlMachine")))),
                size=item.get("size", item.get("SIZE")),
            ))
        elif item:
            files.append(EquipmentFile(id=item))
    return files


def normalize_bool(raw_value: Any) -> bool:
    """Чекбокс Bitrix24: true, 1, "1", "Y" и т.п."""
    if raw_value is None or raw_value == "":
        return False
    if isinstance(raw_value, bool):
        return raw_value
    if isinstance(raw_value, (int, float)):
        return int(raw_value) == 1
    if isinstance(raw_value, str):
        return raw_value.strip().upper() in TRUTHY_STRINGS
    return False


def normalize_location(raw_value: Any) -> str:
    if not raw_value:
        return ""
    location = str(raw_value)
    if ADDRESS_SEPARATOR in location:
        location = location.split(ADDRESS_SEPARATOR, 1)[0]
    return location.strip()


def normalize_messenger_link(messenger: str, value: Any) -> str:
    """Преобразовать username/номер в ссылку на мессенджер"""
    if isinstance(value, (list, tuple)):
        value = value[0] if value else ""
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)

    value = value.strip()
    if not value or "://" in value:
        return value

    if messenger == "telegram":
        return f"https://t.me/{value.lstrip('@')}"
    if messenger == "whatsapp":
        digits = re.sub(r"\D+", "", value)
        return f"https://wa.me/{digits}" if digits else value
    if messenger == "viber":
        digits = re.sub(r"\D+", "", value)
        return f"viber://chat?number={digits}" if digits else value
    return value


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


class FieldMapper:
    """
    Маппинг сырых данных Bitrix24 в локальную схему ЛК

    Все коды полей берутся из таблицы маппинга конфигурации:
    пользовательские поля (UF_CRM_*, ufCrm*) у каждого портала свои.
    """

    def __init__(self, field_mapping: FieldMapping):
        self.mapping = field_mapping

    def map_contact(self, raw: Dict[str, Any]) -> ContactRecord:
        doc = CrmDocument(raw)
        m = self.mapping.contact

        return ContactRecord(
            bitrix_id=doc.entity_id or "",
            name=doc.get_str(m.code(ContactField.NAME)),
            last_name=doc.get_str(m.code(ContactField.LAST_NAME)),
            second_name=doc.get_str(m.code(ContactField.SECOND_NAME)),
            email=first_value(parse_multi_field(doc.get(m.code(ContactField.EMAIL)))),
            phone=first_value(parse_multi_field(doc.get(m.code(ContactField.PHONE)))),
            type_id=doc.get_str(m.code(ContactField.TYPE_ID)),
            company=extract_contact_id(doc.get(m.code(ContactField.COMPANY_ID))),
            manager_id=_optional_str(doc.get(m.code(ContactField.MANAGER_ID))),
            agent_contract_status=doc.get(m.code(ContactField.AGENT_CONTRACT_STATUS)),
            lk_client_field=doc.get(m.code(ContactField.LK_CLIENT_FIELD)),
            created_at=_optional_str(doc.get(m.code(ContactField.DATE_CREATE))),
        )

    def map_company(self, raw: Dict[str, Any]) -> CompanyRecord:
        doc = CrmDocument(raw)
        m = self.mapping.company

        return CompanyRecord(
            id=doc.entity_id or "",
            title=doc.get_str(m.code(CompanyField.TITLE)),
            email=first_value(parse_multi_field(doc.get(m.code(CompanyField.EMAIL)))),
            phone=first_value(parse_multi_field(doc.get(m.code(CompanyField.PHONE)))),
            inn=doc.get(m.code(CompanyField.INN)),
            website=first_value(parse_multi_field(doc.get(m.code(CompanyField.WEBSITE)))),
            industry=doc.get_str(m.code(CompanyField.INDUSTRY)),
            employees=doc.get_str(m.code(CompanyField.EMPLOYEES)),
            revenue=doc.get_str(m.code(CompanyField.REVENUE)),
            address=doc.get_str(m.code(CompanyField.ADDRESS)),
            contact_id=extract_contact_id(doc.get(m.code(CompanyField.CONTACT_ID))),
            partner_contract_status=doc.get(m.code(CompanyField.PARTNER_CONTRACT_STATUS)),
            created_at=_optional_str(doc.get(m.code(CompanyField.DATE_CREATE))),
        )

    def map_deal(self, raw: Dict[str, Any]) -> DealRecord:
        doc = CrmDocument(raw)
        m = self.mapping.deal

        opportunity = doc.get(m.code(DealField.OPPORTUNITY))
        try:
            opportunity = float(opportunity) if opportunity is not None else None
        except (TypeError, ValueError):
            logger.warning(f"Некорректная сумма сделки {doc.entity_id}: {opportunity}")
            opportunity = None

        return DealRecord(
            id=doc.entity_id or "",
            title=doc.get_str(m.code(DealField.TITLE)),
            stage=doc.get_str(m.code(DealField.STAGE)),
            opportunity=opportunity,
            currency=doc.get_str(m.code(DealField.CURRENCY)),
            contact_id=extract_contact_id(doc.get(m.code(DealField.CONTACT_ID))),
            company_id=extract_contact_id(doc.get(m.code(DealField.COMPANY_ID))),
            manager_id=_optional_str(doc.get(m.code(DealField.MANAGER_ID))),
            created_at=_optional_str(doc.get(m.code(DealField.DATE_CREATE))),
        )

    def map_project(self, raw: Dict[str, Any], contact_lookup: ContactLookup) -> ProjectRecord:
        """
        Маппинг элемента смарт-процесса в проект

        company_id не читается из полей проекта: он берется из поля company
        контакта-клиента в локальном хранилище. Если контакта нет, company_id = None.

        Args:
            raw: Данные элемента смарт-процесса из Bitrix24
            contact_lookup: Функция получения локального контакта по ID

        Returns:
            Запись проекта
        """
        doc = CrmDocument(raw)
        m = self.mapping.smart_process

        client_id = extract_contact_id(doc.get(m.code(ProjectField.CLIENT_ID)))

        company_id = None
        if client_id:
            contact = contact_lookup(client_id)
            if contact:
                company_id = _optional_str(contact.get("company"))
                logger.debug(
                    f"Компания проекта {doc.entity_id} получена через контакт {client_id}: {company_id}"
                )

        # "Тип запроса" - одиночный список, но может прийти массивом
        request_type_values = normalize_list_field(doc.get(m.code(ProjectField.REQUEST_TYPE)))
        request_type = request_type_values[0] if request_type_values else ""

        manager_id = doc.get(m.code(ProjectField.MANAGER_ID))
        if manager_id is None:
            manager_id = doc.get("ASSIGNED_BY_ID")

        return ProjectRecord(
            bitrix_id=doc.entity_id or "",
            organization_name=doc.get_str(m.code(ProjectField.ORGANIZATION_NAME)),
            object_name=doc.get_str(m.code(ProjectField.OBJECT_NAME)),
            system_types=normalize_list_field(doc.get(m.code(ProjectField.SYSTEM_TYPES))),
            location=normalize_location(doc.get(m.code(ProjectField.LOCATION))),
            implementation_date=_optional_str(doc.get(m.code(ProjectField.IMPLEMENTATION_DATE))),
            request_type=request_type,
            equipment_list=normalize_equipment_list(doc.get(m.code(ProjectField.EQUIPMENT_LIST))),
            equipment_list_text=doc.get_str(m.code(ProjectField.EQUIPMENT_LIST_TEXT)),
            competitors=doc.get_str(m.code(ProjectField.COMPETITORS)),
            marketing_discount=normalize_bool(doc.get(m.code(ProjectField.MARKETING_DISCOUNT))),
            technical_description=doc.get_str(m.code(ProjectField.TECHNICAL_DESCRIPTION)),
            status=doc.get_str(m.code(ProjectField.STATUS), default="NEW"),
            client_id=client_id,
            company_id=company_id,
            manager_id=_optional_str(manager_id),
            created_at=_optional_str(doc.get(m.code(ProjectField.CREATED_AT))),
        )

    def map_manager(self, raw: Dict[str, Any]) -> ManagerRecord:
        doc = CrmDocument(raw)
        m = self.mapping.user

        phone = doc.get(m.code(UserField.PHONE))
        if phone is None:
            phone = doc.get("PHONE")

        messengers = {}
        for messenger, field_code in m.messengers.items():
            value = doc.get(field_code)
            if value is None:
                continue
            messengers[messenger] = normalize_messenger_link(messenger, value)

        return ManagerRecord(
            bitrix_id=doc.entity_id or "",
            name=doc.get_str(m.code(UserField.NAME)),
            last_name=doc.get_str(m.code(UserField.LAST_NAME)),
            email=first_value(parse_multi_field(doc.get(m.code(UserField.EMAIL)))),
            phone=first_value(parse_multi_field(phone)),
            position=doc.get_str(m.code(UserField.POSITION)),
            photo=doc.get_str(m.code(UserField.PHOTO)),
            messengers=messengers,
        )

    def opt_in_value(self, raw: Dict[str, Any]) -> Optional[str]:
        """Значение поля "ЛК клиента" в виде строки (или None, если поле пустое)"""
        value = CrmDocument(raw).get(self.mapping.contact.code(ContactField.LK_CLIENT_FIELD))
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        return str(value) if value is not None else None

    def is_opted_in(self, raw: Dict[str, Any]) -> bool:
        """Проверка, что значение поля "ЛК клиента" входит в список допустимых"""
        value = self.opt_in_value(raw)
        if value is None:
            return False
        return value in self.mapping.contact.lk_client_values

    def should_delete_contact(self, raw: Dict[str, Any]) -> bool:
        """Проверка, что значение поля "ЛК клиента" требует удаления данных контакта"""
        value = self.opt_in_value(raw)
        if value is None:
            return False
        return value in self.mapping.contact.lk_delete_values
