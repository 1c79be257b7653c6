from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional, List, Dict, Any
from app.auth.dependencies import get_current_user
from app.dependencies import get_storage
from app.services.local_storage import LocalStorage
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/data", tags=["data"])


def _filter_by(items: Dict[str, Any], field: str, value: Optional[str]) -> List[Dict[str, Any]]:
    records = list(items.values())
    if value is None:
        return records
    return [r for r in records if r.get(field) is not None and str(r.get(field)) == value]


@router.get("/contacts")
async def get_contacts(
    limit: Optional[int] = Query(None, ge=1),
    storage: LocalStorage = Depends(get_storage),
    current_user: dict = Depends(get_current_user)
):
    """Список ЛК, последние обновленные первыми"""
    return storage.get_contacts_sorted_by_update(limit)


@router.get("/contacts/latest")
async def get_latest_contact(
    storage: LocalStorage = Depends(get_storage),
    current_user: dict = Depends(get_current_user)
):
    contact = storage.get_last_updated_contact()
    if contact is None:
        raise HTTPException(status_code=404, detail="Контакты не найдены")
    return contact


@router.get("/contacts/{contact_id}")
async def get_contact(
    contact_id: str,
    storage: LocalStorage = Depends(get_storage),
    current_user: dict = Depends(get_current_user)
):
    """Получить ЛК по ID контакта в Bitrix24"""
    contact = storage.get_contact(contact_id)
    if contact is None:
        raise HTTPException(status_code=404, detail="Контакт не найден")
    return contact


@router.get("/companies")
async def get_companies(
    contact_id: Optional[str] = None,
    storage: LocalStorage = Depends(get_storage),
    current_user: dict = Depends(get_current_user)
):
    return _filter_by(storage.get_all_companies(), "contact_id", contact_id)


@router.get("/deals")
async def get_deals(
    contact_id: Optional[str] = None,
    storage: LocalStorage = Depends(get_storage),
    current_user: dict = Depends(get_current_user)
):
    return _filter_by(storage.get_all_deals(), "contact_id", contact_id)


@router.get("/projects")
async def get_projects(
    client_id: Optional[str] = None,
    storage: LocalStorage = Depends(get_storage),
    current_user: dict = Depends(get_current_user)
):
    """Проекты, опционально по ID клиента"""
    return _filter_by(storage.get_all_projects(), "client_id", client_id)


@router.get("/managers")
async def get_managers(
    storage: LocalStorage = Depends(get_storage),
    current_user: dict = Depends(get_current_user)
):
    return list(storage.get_all_managers().values())


@router.get("/summary")
async def get_summary(
    storage: LocalStorage = Depends(get_storage),
    current_user: dict = Depends(get_current_user)
):
    """Количество записей в каждой коллекции и последний обновленный ЛК"""
    latest = storage.get_last_updated_contact()
    return {
        "contacts": len(storage.get_all_contacts()),
        "companies": len(storage.get_all_companies()),
        "deals": len(storage.get_all_deals()),
        "projects": len(storage.get_all_projects()),
        "managers": len(storage.get_all_managers()),
        "last_updated_contact": latest.get("bitrix_id") if latest else None,
        "last_updated_at": (latest.get("updated_at") or latest.get("created_at")) if latest else None,
    }
