from pydantic_settings import BaseSettings
from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict, Union
from functools import lru_cache
from app.models import ContactField, CompanyField, DealField, ProjectField, UserField
import secrets


class _FieldTable(BaseModel):
    """Базовая таблица маппинга: логическое поле -> код поля Bitrix24"""

    class Config:
        frozen = True

    def code(self, field) -> str:
        """Получить код поля Bitrix24 для логического поля"""
        return getattr(self, field.value)


class ContactFieldMapping(_FieldTable):
    """Маппинг полей контакта"""
    lk_client_field: str = "UF_CRM_1769613777708"  # Поле "ЛК клиента"
    lk_client_values: List[str] = ["46", "48", "50"]  # Допустимые значения поля "ЛК клиента"
    lk_delete_values: List[str] = []  # Значения, при которых данные контакта удаляются
    email: str = "EMAIL"
    phone: str = "PHONE"
    name: str = "NAME"
    last_name: str = "LAST_NAME"
    second_name: str = "SECOND_NAME"
    type_id: str = "TYPE_ID"
    company_id: str = "COMPANY_ID"
    manager_id: str = "ASSIGNED_BY_ID"
    agent_contract_status: str = "UF_CRM_1769613802644"  # Статус "Агентский договор"
    date_create: str = "DATE_CREATE"

    @field_validator('lk_client_values', 'lk_delete_values', mode='before')
    @classmethod
    def stringify_values(cls, v):
        # Bitrix24 отдает значения списков то строками, то числами
        if isinstance(v, (list, tuple)):
            return [str(item) for item in v]
        return v


class CompanyFieldMapping(_FieldTable):
    """Маппинг полей компании"""
    title: str = "TITLE"
    email: str = "EMAIL"
    phone: str = "PHONE"
    contact_id: str = "CONTACT_ID"
    inn: str = "UF_CRM_1769613858723"  # ИНН компании
    website: str = "WEB"
    partner_contract_status: str = "UF_CRM_1769613840100"  # Статус "Партнерский договор"
    industry: str = "INDUSTRY"
    employees: str = "EMPLOYEES"
    revenue: str = "REVENUE"
    address: str = "ADDRESS"
    date_create: str = "DATE_CREATE"


class DealFieldMapping(_FieldTable):
    """Маппинг полей сделки"""
    title: str = "TITLE"
    stage: str = "STAGE_ID"
    opportunity: str = "OPPORTUNITY"
    currency: str = "CURRENCY_ID"
    contact_id: str = "CONTACT_ID"
    company_id: str = "COMPANY_ID"
    manager_id: str = "ASSIGNED_BY_ID"
    date_create: str = "DATE_CREATE"


class ProjectFieldMapping(_FieldTable):
    """Маппинг полей проекта (смарт-процесса)"""
    client_id: str = "contactId"
    organization_name: str = "ufCrm8_1769614104033"
    object_name: str = "ufCrm8_1769614111137"
    request_type: str = "ufCrm8_1769614124086"
    system_types: str = "ufCrm8_1769614139144"
    equipment_list_text: str = "ufCrm8_1770042451408"
    equipment_list: str = "ufCrm8_1769615861149"
    location: str = "ufCrm8_1769614157765"
    technical_description: str = "ufCrm8_1769614165506"
    competitors: str = "ufCrm8_1769614171629"
    implementation_date: str = "ufCrm8_1769614178907"
    marketing_discount: str = "ufCrm8_1769614188405"
    manager_id: str = "assignedById"
    status: str = "stageId"
    created_at: str = "createdTime"


class UserFieldMapping(_FieldTable):
    """Маппинг полей пользователя (менеджера)"""
    name: str = "NAME"
    last_name: str = "LAST_NAME"
    email: str = "EMAIL"
    phone: str = "PERSONAL_MOBILE"
    position: str = "WORK_POSITION"
    photo: str = "PERSONAL_PHOTO"
    messengers: Dict[str, str] = {
        "telegram": "UF_USR_1769615465457",
        "whatsapp": "UF_USR_1769615471930",
    }


class FieldMapping(BaseModel):
    """Таблицы маппинга полей Bitrix24 -> ЛК по типам сущностей"""
    contact: ContactFieldMapping = ContactFieldMapping()
    company: CompanyFieldMapping = CompanyFieldMapping()
    deal: DealFieldMapping = DealFieldMapping()
    smart_process: ProjectFieldMapping = ProjectFieldMapping()
    user: UserFieldMapping = UserFieldMapping()

    class Config:
        frozen = True


DEFAULT_ENABLED_EVENTS = [
    "ONCRMCONTACTADD",
    "ONCRMCONTACTUPDATE",
    "ONCRMCONTACTDELETE",
    "ONCRMCOMPANYADD",
    "ONCRMCOMPANYUPDATE",
    "ONCRMCOMPANYDELETE",
    "ONCRMDEALADD",
    "ONCRMDEALUPDATE",
    "ONCRMDEALDELETE",
    "ONCRM_DYNAMIC_ITEM_ADD",
    "ONCRM_DYNAMIC_ITEM_UPDATE",
    "ONCRM_DYNAMIC_ITEM_DELETE",
    "ONCRMDYNAMICITEMADD",
    "ONCRMDYNAMICITEMUPDATE",
    "ONCRMDYNAMICITEMDELETE",
]


class Settings(BaseSettings):
    """Конфигурация приложения из переменных окружения"""

    # Bitrix24
    bitrix24_webhook: Optional[str] = None  # Входящий вебхук, например https://portal.bitrix24.ru/rest/1/xxxx/
    bitrix24_application_token: Optional[str] = None  # Токен приложения для проверки исходящих вебхуков
    bitrix24_timeout: float = 30  # Таймаут запроса к REST API (секунды)
    smart_process_id: int = 1040  # entityTypeId смарт-процесса "Проекты"
    webhook_user_agents: List[str] = [
        "bitrix24",
        "bitrix24 webhook",
        "bitrix24 webhook engine",
        "bitrix24hook",
    ]

    # Приложение
    app_name: str = "LK Sync B24"
    debug: bool = False

    # Логирование
    log_enabled: bool = True
    log_level: str = "INFO"
    log_file: str = "./logs/bitrix24_webhooks.log"
    log_max_size: int = 10 * 1024 * 1024  # 10MB
    log_backup_count: int = 5

    # Локальное хранилище
    data_dir: str = "./data"

    # Маппинг полей
    field_mapping: FieldMapping = FieldMapping()

    # Обработка событий
    enabled_events: List[str] = DEFAULT_ENABLED_EVENTS
    retry_delays: List[float] = [5, 30, 300, 3600]  # Задержки между повторными попытками (секунды)
    max_retries: int = 3
    retry_deadline_seconds: float = 25  # Общий лимит времени на повторные попытки в рамках запроса
    projects_webhook_sync: bool = False  # Синхронизировать проекты по событиям смарт-процесса
    sync_related_on_create: bool = True  # При создании ЛК подтягивать связанные компании
    max_body_size: int = 10 * 1024 * 1024  # 10MB

    # Планировщик
    scheduler_enabled: bool = True
    managers_refresh_interval_minutes: int = 60

    # CORS
    cors_origins: Union[str, List[str]] = "http://localhost:3000,http://localhost:5173"

    # Авторизация
    admin_username: str = "admin"
    admin_password: str = "admin"
    secret_key: str = secrets.token_urlsafe(32)  # Генерируется случайно, если не указан в .env
    access_token_expire_minutes: int = 1440  # 24 часа

    @field_validator('cors_origins')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator('retry_delays')
    @classmethod
    def check_retry_delays(cls, v):
        if not v:
            raise ValueError("retry_delays не может быть пустым")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_nested_delimiter = "__"
        case_sensitive = False
        frozen = True


@lru_cache
def get_settings() -> Settings:
    """Получить конфигурацию приложения (создается один раз при старте процесса)"""
    return Settings()
