from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel
from app.models import Collection
from app.schemas.records import (
    ContactRecord,
    CompanyRecord,
    DealRecord,
    ProjectRecord,
    ManagerRecord,
)
import json
import logging
import os
import time

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def now_str() -> str:
    return datetime.now().strftime(TIMESTAMP_FORMAT)


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _merge(existing: Dict[str, Any], incoming: BaseModel, keep: tuple = ()) -> Dict[str, Any]:
    """Перенести непустые значения из новой записи поверх существующей"""
    merged = dict(existing)
    for key, value in incoming.model_dump(mode="json").items():
        if key in keep and key in existing:
            continue
        if _is_blank(value) and key in existing:
            continue
        merged[key] = value
    return merged


class LocalStorage:
    """
    Локальное хранилище данных ЛК в JSON-файлах

    Каждая коллекция - один файл {data_dir}/{collection}.json с объектом,
    где ключ - ID сущности в Bitrix24. Файл читается и перезаписывается
    целиком, без блокировок: при одновременной записи побеждает последний.
    """

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        os.makedirs(self.data_dir, exist_ok=True)

    def _path(self, name: Collection) -> str:
        return os.path.join(self.data_dir, f"{name.value}.json")

    def read_collection(self, name: Collection) -> Dict[str, Any]:
        """
        Прочитать коллекцию целиком

        Отсутствующий файл и некорректный JSON дают пустой словарь.
        """
        path = self._path(name)
        if not os.path.exists(path):
            return {}

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(
                f"Не удалось прочитать {path}, коллекция считается пустой",
                extra={"context": {"collection": name.value, "error": str(e)}},
            )
            return {}

        if not isinstance(data, dict):
            logger.error(f"Файл {path} не содержит JSON-объект, коллекция считается пустой")
            return {}
        return data

    def write_collection(self, name: Collection, data: Dict[str, Any]) -> bool:
        path = self._path(name)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=4)
        except OSError as e:
            logger.error(
                f"Ошибка записи {path}: {e}",
                extra={"context": {"collection": name.value}},
            )
            return False

        logger.debug(f"Коллекция {name.value} записана: {len(data)} записей")
        return True

    # Контакты (ЛК)

    def get_contact(self, contact_id: str) -> Optional[Dict[str, Any]]:
        return self.read_collection(Collection.CONTACTS).get(str(contact_id))

    def get_contact_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        if not email:
            return None
        email = email.strip().lower()
        for contact in self.read_collection(Collection.CONTACTS).values():
            if str(contact.get("email", "")).strip().lower() == email:
                return contact
        return None

    def get_all_contacts(self) -> Dict[str, Any]:
        return self.read_collection(Collection.CONTACTS)

    def get_contacts_sorted_by_update(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Контакты по убыванию updated_at (если его нет - created_at)"""
        contacts = list(self.read_collection(Collection.CONTACTS).values())
        contacts.sort(
            key=lambda c: c.get("updated_at") or c.get("created_at") or "",
            reverse=True,
        )
        if limit is not None:
            contacts = contacts[:limit]
        return contacts

    def get_last_updated_contact(self) -> Optional[Dict[str, Any]]:
        contacts = self.get_contacts_sorted_by_update(limit=1)
        return contacts[0] if contacts else None

    def create_lk(self, contact: ContactRecord) -> bool:
        """
        Создать личный кабинет для контакта

        Args:
            contact: Запись контакта после маппинга

        Returns:
            True, если запись сохранена
        """
        contacts = self.read_collection(Collection.CONTACTS)

        now = now_str()
        lk_id = f"LK-{int(time.time())}-{contact.bitrix_id}"
        record = contact.model_copy(update={
            "id": lk_id,
            "created_at": contact.created_at or now,
            "updated_at": now,
        })
        contacts[contact.bitrix_id] = record.model_dump(mode="json")

        if not self.write_collection(Collection.CONTACTS, contacts):
            return False
        logger.info(
            "Создан ЛК для контакта",
            extra={"context": {"lk_id": lk_id, "contact_id": contact.bitrix_id}},
        )
        return True

    def sync_contact_by_bitrix_id(self, contact_id: str, contact: ContactRecord) -> bool:
        """
        Обновить существующий ЛК данными из Bitrix24

        Пустые значения не затирают сохраненные, id и created_at не меняются.
        Если ЛК для контакта нет, возвращает False.
        """
        contact_id = str(contact_id)
        contacts = self.read_collection(Collection.CONTACTS)
        existing = contacts.get(contact_id)
        if existing is None:
            logger.warning(f"Контакт {contact_id} не найден для синхронизации")
            return False

        merged = _merge(existing, contact, keep=("id", "created_at", "status"))
        merged["updated_at"] = now_str()
        contacts[contact_id] = merged

        if not self.write_collection(Collection.CONTACTS, contacts):
            return False
        logger.info(f"Контакт {contact_id} синхронизирован")
        return True

    def delete_contact_data(self, contact_id: str) -> Dict[str, Any]:
        """
        Удалить контакт и все связанные с ним компании и проекты

        Returns:
            Сводка удаления: contact_deleted, companies_deleted, projects_deleted
        """
        contact_id = str(contact_id)

        contacts = self.read_collection(Collection.CONTACTS)
        contact_deleted = False
        if contact_id in contacts:
            del contacts[contact_id]
            contact_deleted = self.write_collection(Collection.CONTACTS, contacts)
        else:
            logger.warning(f"Контакт {contact_id} не найден в локальном хранилище")

        companies = self.read_collection(Collection.COMPANIES)
        deleted_companies = []
        for company_id, company in list(companies.items()):
            linked = company.get("contact_id")
            if isinstance(linked, list):
                related = contact_id in [str(item) for item in linked]
            else:
                related = linked is not None and str(linked) == contact_id
            if related:
                del companies[company_id]
                deleted_companies.append(company_id)
        if deleted_companies:
            self.write_collection(Collection.COMPANIES, companies)

        projects = self.read_collection(Collection.PROJECTS)
        deleted_projects = [
            project_id for project_id, project in projects.items()
            if project.get("client_id") is not None and str(project.get("client_id")) == contact_id
        ]
        for project_id in deleted_projects:
            del projects[project_id]
        if deleted_projects:
            self.write_collection(Collection.PROJECTS, projects)

        summary = {
            "contact_id": contact_id,
            "contact_deleted": contact_deleted,
            "companies_deleted": len(deleted_companies),
            "projects_deleted": len(deleted_projects),
        }
        logger.info("Удаление данных контакта завершено", extra={"context": summary})
        return summary

    # Компании

    def get_company(self, company_id: str) -> Optional[Dict[str, Any]]:
        return self.read_collection(Collection.COMPANIES).get(str(company_id))

    def get_all_companies(self) -> Dict[str, Any]:
        return self.read_collection(Collection.COMPANIES)

    def sync_company_by_bitrix_id(self, company_id: str, company: CompanyRecord) -> bool:
        """Полностью перезаписать компанию (создать, если ее нет)"""
        company_id = str(company_id)
        companies = self.read_collection(Collection.COMPANIES)
        existing = companies.get(company_id)
        if existing is None:
            logger.info(f"Компания {company_id} не найдена, будет создана")

        record = company.model_copy(update={
            "id": company_id,
            "created_at": (existing or {}).get("created_at") or company.created_at or now_str(),
            "updated_at": now_str(),
        })
        companies[company_id] = record.model_dump(mode="json")

        if not self.write_collection(Collection.COMPANIES, companies):
            return False
        logger.info(f"Компания {company_id} синхронизирована")
        return True

    def delete_company(self, company_id: str) -> bool:
        company_id = str(company_id)
        companies = self.read_collection(Collection.COMPANIES)
        if company_id not in companies:
            logger.warning(f"Компания {company_id} не найдена в локальном хранилище")
            return False

        del companies[company_id]
        if not self.write_collection(Collection.COMPANIES, companies):
            return False
        logger.info(f"Компания {company_id} удалена из локального хранилища")
        return True

    # Сделки

    def get_deal(self, deal_id: str) -> Optional[Dict[str, Any]]:
        return self.read_collection(Collection.DEALS).get(str(deal_id))

    def get_all_deals(self) -> Dict[str, Any]:
        return self.read_collection(Collection.DEALS)

    def add_deal(self, deal: DealRecord) -> bool:
        """Создать или перезаписать сделку, сохранив дату создания"""
        deals = self.read_collection(Collection.DEALS)
        existing = deals.get(deal.id) or {}

        record = deal.model_copy(update={
            "created_at": existing.get("created_at") or deal.created_at or now_str(),
            "updated_at": now_str(),
        })
        deals[deal.id] = record.model_dump(mode="json")

        if not self.write_collection(Collection.DEALS, deals):
            return False
        logger.info(f"Сделка {deal.id} сохранена")
        return True

    # Проекты

    def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        return self.read_collection(Collection.PROJECTS).get(str(project_id))

    def get_all_projects(self) -> Dict[str, Any]:
        return self.read_collection(Collection.PROJECTS)

    def add_project(self, project: ProjectRecord) -> bool:
        projects = self.read_collection(Collection.PROJECTS)

        now = now_str()
        record = project.model_copy(update={
            "created_at": project.created_at or now,
            "updated_at": now,
        })
        projects[project.bitrix_id] = record.model_dump(mode="json")

        if not self.write_collection(Collection.PROJECTS, projects):
            return False
        logger.info(
            "Проект сохранен",
            extra={"context": {"project_id": project.bitrix_id, "client_id": project.client_id}},
        )
        return True

    def sync_project_by_bitrix_id(self, project_id: str, project: ProjectRecord) -> bool:
        """Обновить проект, не затирая сохраненные значения пустыми (создать, если его нет)"""
        project_id = str(project_id)
        projects = self.read_collection(Collection.PROJECTS)
        existing = projects.get(project_id)
        if existing is None:
            logger.info(f"Проект {project_id} не найден, будет создан")
            return self.add_project(project)

        merged = _merge(existing, project, keep=("created_at",))
        merged["updated_at"] = now_str()
        projects[project_id] = merged

        if not self.write_collection(Collection.PROJECTS, projects):
            return False
        logger.info(f"Проект {project_id} синхронизирован")
        return True

    def delete_project(self, project_id: str) -> bool:
        project_id = str(project_id)
        projects = self.read_collection(Collection.PROJECTS)
        if project_id not in projects:
            logger.warning(f"Проект {project_id} не найден в локальном хранилище")
            return False

        del projects[project_id]
        if not self.write_collection(Collection.PROJECTS, projects):
            return False
        logger.info(f"Проект {project_id} удален из локального хранилища")
        return True

    # Менеджеры

    def get_manager(self, manager_id: str) -> Optional[Dict[str, Any]]:
        return self.read_collection(Collection.MANAGERS).get(str(manager_id))

    def get_all_managers(self) -> Dict[str, Any]:
        return self.read_collection(Collection.MANAGERS)

    def add_manager(self, manager: ManagerRecord) -> bool:
        managers = self.read_collection(Collection.MANAGERS)

        now = now_str()
        record = manager.model_copy(update={
            "created_at": manager.created_at or now,
            "updated_at": now,
        })
        managers[manager.bitrix_id] = record.model_dump(mode="json")

        if not self.write_collection(Collection.MANAGERS, managers):
            return False
        logger.info(f"Менеджер {manager.bitrix_id} сохранен")
        return True

    def sync_manager_by_bitrix_id(self, manager_id: str, manager: ManagerRecord) -> bool:
        manager_id = str(manager_id)
        managers = self.read_collection(Collection.MANAGERS)
        existing = managers.get(manager_id)
        if existing is None:
            return self.add_manager(manager)

        merged = _merge(existing, manager, keep=("created_at",))
        merged["updated_at"] = now_str()
        managers[manager_id] = merged

        if not self.write_collection(Collection.MANAGERS, managers):
            return False
        logger.info(f"Менеджер {manager_id} синхронизирован")
        return True
