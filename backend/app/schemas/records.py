from pydantic import BaseModel
from typing import Optional, List, Dict, Any

SOURCE_WEBHOOK = "bitrix24_webhook"


class ContactRecord(BaseModel):
    """Контакт (он же запись личного кабинета)"""
    id: Optional[str] = None  # LK-{timestamp}-{bitrix_id}, присваивается при создании
    bitrix_id: str
    name: str = ""
    last_name: str = ""
    second_name: str = ""
    email: str = ""
    phone: str = ""
    type_id: str = ""
    company: Optional[str] = None  # ID компании в Bitrix24
    manager_id: Optional[str] = None
    agent_contract_status: Optional[Any] = None
    lk_client_field: Optional[Any] = None
    status: str = "active"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    source: str = SOURCE_WEBHOOK


class CompanyRecord(BaseModel):
    """Компания"""
    id: str
    title: str = ""
    email: str = ""
    phone: str = ""
    inn: Optional[Any] = None
    website: str = ""
    industry: str = ""
    employees: str = ""
    revenue: str = ""
    address: str = ""
    contact_id: Optional[str] = None
    partner_contract_status: Optional[Any] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    source: str = SOURCE_WEBHOOK


class DealRecord(BaseModel):
    """Сделка"""
    id: str
    title: str = ""
    stage: str = ""
    opportunity: Optional[float] = None
    currency: str = ""
    contact_id: Optional[str] = None
    company_id: Optional[str] = None
    manager_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    source: str = SOURCE_WEBHOOK


class EquipmentFile(BaseModel):
    """Ссылка на файл из поля "Перечень оборудования" """
    id: Any
    name: Optional[str] = None
    url: Optional[str] = None
    size: Optional[Any] = None


class ProjectRecord(BaseModel):
    """Проект (элемент смарт-процесса)"""
    bitrix_id: str
    organization_name: str = ""
    object_name: str = ""
    system_types: List[str] = []
    location: str = ""
    implementation_date: Optional[str] = None
    request_type: str = ""
    equipment_list: List[EquipmentFile] = []
    equipment_list_text: str = ""
    competitors: str = ""
    marketing_discount: bool = False
    technical_description: str = ""
    status: str = "NEW"
    client_id: Optional[str] = None
    company_id: Optional[str] = None  # Вычисляется через контакт клиента
    manager_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    source: str = SOURCE_WEBHOOK


class ManagerRecord(BaseModel):
    """Менеджер (пользователь Bitrix24), справочные данные"""
    bitrix_id: str
    name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    position: str = ""
    photo: str = ""
    messengers: Dict[str, str] = {}
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    source: str = SOURCE_WEBHOOK
