import os
import tempfile

# app.main создает приложение при импорте, поэтому окружение задается до импорта app
os.environ.setdefault("LOG_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="lk-sync-test-"))

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from app.auth.security import create_access_token
from app.config import Settings
from app.main import create_app
from app.models import EntityType
from app.services.bitrix_client import EntityNotFoundError
from app.services.event_dispatcher import EventDispatcher
from app.services.field_mapper import FieldMapper
from app.services.local_storage import LocalStorage

WEBHOOK_HEADERS = {
    "User-Agent": "Bitrix24 Webhook Engine",
    "Content-Type": "application/json",
}


class FakeBitrix:
    """Подмена BitrixClient: сущности хранятся в словаре, вызовы считаются через AsyncMock"""

    def __init__(self):
        self.entities = {}
        self.lists = {}
        self.company_contacts = {}
        self.get_entity = AsyncMock(side_effect=self._get_entity)
        self.get_entity_list = AsyncMock(side_effect=self._get_entity_list)
        self.get_company_contacts = AsyncMock(side_effect=lambda company_id: self.company_contacts.get(str(company_id), []))
        self.get_user = AsyncMock(side_effect=self._get_user)
        self.list_projects_by_contact = AsyncMock(
            side_effect=lambda contact_id, field: self.lists.get((EntityType.SMART_PROCESS, str(contact_id)), [])
        )

    def add(self, entity_type: EntityType, data: dict):
        entity_id = str(data.get("ID", data.get("id")))
        self.entities[(entity_type, entity_id)] = data

    async def _get_entity(self, entity_type, entity_id):
        key = (entity_type, str(entity_id))
        if key not in self.entities:
            raise EntityNotFoundError("crm.get", f"{entity_type.value} {entity_id} not found")
        return self.entities[key]

    async def _get_user(self, user_id):
        return await self._get_entity(EntityType.USER, user_id)

    async def _get_entity_list(self, entity_type, filter_dict=None, select=None):
        contact_id = str((filter_dict or {}).get("CONTACT_ID", ""))
        return self.lists.get((entity_type, contact_id), [])

    @property
    def crm_calls(self) -> int:
        return (
            self.get_entity.await_count
            + self.get_entity_list.await_count
            + self.get_company_contacts.await_count
            + self.get_user.await_count
        )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        bitrix24_webhook="https://example.bitrix24.ru/rest/1/secret/",
        bitrix24_application_token=None,
        data_dir=str(tmp_path / "data"),
        log_enabled=False,
        retry_delays=[0],
        max_retries=2,
        retry_deadline_seconds=5,
        scheduler_enabled=False,
        secret_key="test-secret-key",
        admin_username="admin",
        admin_password="secret",
    )


@pytest.fixture
def storage(settings):
    return LocalStorage(settings.data_dir)


@pytest.fixture
def mapper(settings):
    return FieldMapper(settings.field_mapping)


@pytest.fixture
def bitrix():
    return FakeBitrix()


@pytest.fixture
def dispatcher(settings, bitrix, storage, mapper):
    return EventDispatcher(settings, bitrix, storage, mapper)


@pytest.fixture
def app(settings, bitrix):
    return create_app(settings, bitrix_client=bitrix)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def auth_headers(settings):
    token = create_access_token({"sub": "admin"}, settings.secret_key, timedelta(minutes=5))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_contact():
    def _make(contact_id="100", lk_value="46", **fields):
        data = {
            "ID": contact_id,
            "NAME": "Иван",
            "LAST_NAME": "Петров",
            "SECOND_NAME": "",
            "EMAIL": [{"VALUE": "ivan@example.com", "VALUE_TYPE": "WORK"}, {"VALUE": "second@example.com"}],
            "PHONE": [{"VALUE": "+79001234567"}],
            "TYPE_ID": "CLIENT",
            "COMPANY_ID": "200",
            "ASSIGNED_BY_ID": "7",
            "UF_CRM_1769613777708": lk_value,
            "UF_CRM_1769613802644": "1",
            "DATE_CREATE": "2024-01-10T12:00:00+03:00",
        }
        data.update(fields)
        return data
    return _make


@pytest.fixture
def webhook_headers():
    return dict(WEBHOOK_HEADERS)
