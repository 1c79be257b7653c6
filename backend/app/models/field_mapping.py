import enum


class ContactField(str, enum.Enum):
    """Логические поля контакта (ключи таблицы маппинга)"""
    LK_CLIENT_FIELD = "lk_client_field"
    EMAIL = "email"
    PHONE = "phone"
    NAME = "name"
    LAST_NAME = "last_name"
    SECOND_NAME = "second_name"
    TYPE_ID = "type_id"
    COMPANY_ID = "company_id"
    MANAGER_ID = "manager_id"
    AGENT_CONTRACT_STATUS = "agent_contract_status"
    DATE_CREATE = "date_create"


class CompanyField(str, enum.Enum):
    """Логические поля компании"""
    TITLE = "title"
    EMAIL = "email"
    PHONE = "phone"
    CONTACT_ID = "contact_id"
    INN = "inn"
    WEBSITE = "website"
    PARTNER_CONTRACT_STATUS = "partner_contract_status"
    INDUSTRY = "industry"
    EMPLOYEES = "employees"
    REVENUE = "revenue"
    ADDRESS = "address"
    DATE_CREATE = "date_create"


class DealField(str, enum.Enum):
    """Логические поля сделки"""
    TITLE = "title"
    STAGE = "stage"
    OPPORTUNITY = "opportunity"
    CURRENCY = "currency"
    CONTACT_ID = "contact_id"
    COMPANY_ID = "company_id"
    MANAGER_ID = "manager_id"
    DATE_CREATE = "date_create"


class ProjectField(str, enum.Enum):
    """Логические поля проекта (элемента смарт-процесса)"""
    CLIENT_ID = "client_id"
    ORGANIZATION_NAME = "organization_name"
    OBJECT_NAME = "object_name"
    REQUEST_TYPE = "request_type"
    SYSTEM_TYPES = "system_types"
    EQUIPMENT_LIST_TEXT = "equipment_list_text"
    EQUIPMENT_LIST = "equipment_list"
    LOCATION = "location"
    TECHNICAL_DESCRIPTION = "technical_description"
    COMPETITORS = "competitors"
    IMPLEMENTATION_DATE = "implementation_date"
    MARKETING_DISCOUNT = "marketing_discount"
    MANAGER_ID = "manager_id"
    STATUS = "status"
    CREATED_AT = "created_at"


class UserField(str, enum.Enum):
    """Логические поля пользователя (менеджера)"""
    NAME = "name"
    LAST_NAME = "last_name"
    EMAIL = "email"
    PHONE = "phone"
    POSITION = "position"
    PHOTO = "photo"
