import enum


class EntityType(str, enum.Enum):
    """Тип сущности Bitrix24, к которой относится событие"""
    CONTACT = "contact"
    COMPANY = "company"
    DEAL = "deal"
    SMART_PROCESS = "smart_process"
    USER = "user"


class EventAction(str, enum.Enum):
    """Действие, закодированное в суффиксе названия события"""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    UNKNOWN = "unknown"


class Collection(str, enum.Enum):
    """Коллекции локального хранилища (один JSON файл на коллекцию)"""
    CONTACTS = "contacts"
    COMPANIES = "companies"
    DEALS = "deals"
    PROJECTS = "projects"
    MANAGERS = "managers"
