import asyncio

import pytest

from app.models import EntityType, EventAction
from app.schemas.records import CompanyRecord, ContactRecord, ProjectRecord
from app.services.bitrix_client import BitrixAPIError
from app.services.event_dispatcher import EventDispatcher, extract_entity_id


def event(entity_id="100"):
    return {"event": "ONCRMCONTACTUPDATE", "data": {"FIELDS": {"ID": entity_id}}}


def test_extract_entity_id():
    assert extract_entity_id({"data": {"FIELDS": {"ID": 42}}}) == "42"
    assert extract_entity_id({"data": {"ID": "43"}}) == "43"
    assert extract_entity_id({"data": {"FIELDS": {}}}) is None
    assert extract_entity_id({}) is None


@pytest.mark.parametrize("event_name", ["ONCRMLEADADD", "ONCRMCONTACTRESTORE"])
async def test_unknown_events_succeed_without_crm_calls(dispatcher, bitrix, event_name):
    assert await dispatcher.process_with_retry(event_name, event()) is True
    assert bitrix.crm_calls == 0


async def test_missing_entity_id_fails_without_retry(dispatcher, bitrix):
    assert await dispatcher.process_with_retry("ONCRMCONTACTUPDATE", {"data": {}}) is False
    assert bitrix.crm_calls == 0


async def test_contact_update_creates_lk_when_opted_in(dispatcher, bitrix, storage, make_contact):
    bitrix.add(EntityType.CONTACT, make_contact())

    assert await dispatcher.process_with_retry("ONCRMCONTACTUPDATE", event())

    contact = storage.get_contact("100")
    assert contact["email"] == "ivan@example.com"
    assert contact["id"].startswith("LK-")


async def test_contact_update_is_idempotent(dispatcher, bitrix, storage, make_contact):
    bitrix.add(EntityType.CONTACT, make_contact())

    await dispatcher.process_with_retry("ONCRMCONTACTUPDATE", event())
    first = storage.get_contact("100")
    await dispatcher.process_with_retry("ONCRMCONTACTUPDATE", event())
    second = storage.get_contact("100")

    first.pop("updated_at")
    second.pop("updated_at")
    assert first == second


async def test_contact_not_opted_in_is_skipped(dispatcher, bitrix, storage, make_contact):
    bitrix.add(EntityType.CONTACT, make_contact(lk_value="99"))

    assert await dispatcher.process_with_retry("ONCRMCONTACTADD", event())
    assert await dispatcher.process_with_retry("ONCRMCONTACTUPDATE", event())
    assert storage.get_contact("100") is None


async def test_existing_contact_not_overwritten_when_opted_out(dispatcher, bitrix, storage, make_contact):
    storage.create_lk(ContactRecord(bitrix_id="100", name="Старое имя"))
    bitrix.add(EntityType.CONTACT, make_contact(lk_value="99", NAME="Новое имя"))

    assert await dispatcher.process_with_retry("ONCRMCONTACTUPDATE", event())
    assert storage.get_contact("100")["name"] == "Старое имя"


async def test_contact_create_skips_existing_lk(dispatcher, bitrix, storage, make_contact):
    storage.create_lk(ContactRecord(bitrix_id="100", name="Было"))
    bitrix.add(EntityType.CONTACT, make_contact(NAME="Стало"))

    assert await dispatcher.process_with_retry("ONCRMCONTACTADD", event())
    assert storage.get_contact("100")["name"] == "Было"


async def test_lk_creation_syncs_manager_and_related_companies(dispatcher, bitrix, storage, make_contact):
    bitrix.add(EntityType.CONTACT, make_contact())
    bitrix.add(EntityType.USER, {"ID": "7", "NAME": "Анна", "UF_USR_1769615465457": "anna"})
    bitrix.add(EntityType.COMPANY, {"ID": "200", "TITLE": "Ромашка", "CONTACT_ID": "100"})
    bitrix.add(EntityType.COMPANY, {"ID": "201", "TITLE": "Чужая", "CONTACT_ID": "555"})
    bitrix.lists[(EntityType.COMPANY, "100")] = [{"ID": "200"}, {"ID": "201"}]

    assert await dispatcher.process_with_retry("ONCRMCONTACTADD", event())

    assert storage.get_manager("7")["messengers"] == {"telegram": "https://t.me/anna"}
    assert storage.get_company("200")["contact_id"] == "100"
    assert storage.get_company("201") is None


async def test_related_company_linked_through_company_contacts(dispatcher, bitrix, storage, make_contact):
    bitrix.add(EntityType.CONTACT, make_contact())
    bitrix.add(EntityType.COMPANY, {"ID": "200", "TITLE": "Ромашка"})
    bitrix.lists[(EntityType.COMPANY, "100")] = [{"ID": "200"}]
    bitrix.company_contacts["200"] = [{"CONTACT_ID": 100}]

    assert await dispatcher.process_with_retry("ONCRMCONTACTADD", event())
    assert storage.get_company("200")["contact_id"] == "100"


async def test_manager_failure_does_not_fail_event(dispatcher, bitrix, storage, make_contact):
    bitrix.add(EntityType.CONTACT, make_contact())

    assert await dispatcher.process_with_retry("ONCRMCONTACTUPDATE", event())
    assert storage.get_contact("100") is not None
    assert storage.get_all_managers() == {}


async def test_delete_value_removes_contact_data(settings, bitrix, storage, make_contact):
    mapping = settings.field_mapping.model_copy(update={
        "contact": settings.field_mapping.contact.model_copy(update={"lk_delete_values": ["52"]}),
    })
    dispatcher = EventDispatcher(settings.model_copy(update={"field_mapping": mapping}), bitrix, storage)
    storage.create_lk(ContactRecord(bitrix_id="100"))
    storage.add_project(ProjectRecord(bitrix_id="77", client_id="100"))
    bitrix.add(EntityType.CONTACT, make_contact(lk_value="52"))

    assert await dispatcher.process_with_retry("ONCRMCONTACTUPDATE", event())
    assert storage.get_contact("100") is None
    assert storage.get_project("77") is None


async def test_company_update_overwrites(dispatcher, bitrix, storage):
    storage.create_lk(ContactRecord(bitrix_id="100"))
    bitrix.add(EntityType.COMPANY, {"ID": "200", "TITLE": "Ромашка", "CONTACT_ID": "100", "UF_CRM_1769613858723": "7701"})

    assert await dispatcher.process_with_retry("ONCRMCOMPANYUPDATE", {"data": {"FIELDS": {"ID": "200"}}})
    assert storage.get_company("200")["inn"] == "7701"
    assert storage.get_company("200")["contact_id"] == "100"


async def test_company_update_keeps_link_from_company_contacts(dispatcher, bitrix, storage, make_contact):
    bitrix.add(EntityType.CONTACT, make_contact())
    bitrix.add(EntityType.COMPANY, {"ID": "200", "TITLE": "Ромашка"})
    bitrix.lists[(EntityType.COMPANY, "100")] = [{"ID": "200"}]
    bitrix.company_contacts["200"] = [{"CONTACT_ID": 100}]

    assert await dispatcher.process_with_retry("ONCRMCONTACTADD", {"data": {"FIELDS": {"ID": "100"}}})
    assert storage.get_company("200")["contact_id"] == "100"

    bitrix.entities[(EntityType.COMPANY, "200")] = {"ID": "200", "TITLE": "Ромашка плюс"}
    assert await dispatcher.process_with_retry("ONCRMCOMPANYUPDATE", {"data": {"FIELDS": {"ID": "200"}}})

    company = storage.get_company("200")
    assert company["title"] == "Ромашка плюс"
    assert company["contact_id"] == "100"
    assert storage.delete_contact_data("100")["companies_deleted"] == 1


async def test_company_update_keeps_stored_link_when_crm_has_none(dispatcher, bitrix, storage):
    storage.create_lk(ContactRecord(bitrix_id="100"))
    storage.sync_company_by_bitrix_id("200", CompanyRecord(id="200", title="Ромашка", contact_id="100"))
    bitrix.add(EntityType.COMPANY, {"ID": "200", "TITLE": "Ромашка плюс"})

    assert await dispatcher.process_with_retry("ONCRMCOMPANYUPDATE", {"data": {"FIELDS": {"ID": "200"}}})
    assert storage.get_company("200")["contact_id"] == "100"


async def test_company_update_without_local_contact_is_skipped(dispatcher, bitrix, storage):
    bitrix.add(EntityType.COMPANY, {"ID": "999", "TITLE": "Чужая", "CONTACT_ID": "555"})

    assert await dispatcher.process_with_retry("ONCRMCOMPANYUPDATE", {"data": {"FIELDS": {"ID": "999"}}})
    assert storage.get_company("999") is None


async def test_deal_create_and_update_upsert(dispatcher, bitrix, storage):
    bitrix.add(EntityType.DEAL, {"ID": "300", "TITLE": "Поставка", "OPPORTUNITY": "10"})

    assert await dispatcher.process_with_retry("ONCRMDEALADD", {"data": {"FIELDS": {"ID": "300"}}})
    bitrix.add(EntityType.DEAL, {"ID": "300", "TITLE": "Поставка 2", "OPPORTUNITY": "20"})
    assert await dispatcher.process_with_retry("ONCRMDEALUPDATE", {"data": {"FIELDS": {"ID": "300"}}})

    assert storage.get_deal("300")["title"] == "Поставка 2"
    assert storage.get_deal("300")["opportunity"] == 20.0


@pytest.mark.parametrize("event_name", ["ONCRMCONTACTDELETE", "ONCRMCOMPANYDELETE", "ONCRMDEALDELETE"])
async def test_delete_events_are_log_only(dispatcher, storage, event_name):
    storage.create_lk(ContactRecord(bitrix_id="100"))

    assert await dispatcher.process_with_retry(event_name, event())
    assert storage.get_contact("100") is not None


async def test_smart_process_events_are_noop_by_default(dispatcher, bitrix, storage):
    bitrix.add(EntityType.SMART_PROCESS, {"id": 77, "contactId": 100})
    storage.create_lk(ContactRecord(bitrix_id="100"))

    assert await dispatcher.process_with_retry("ONCRM_DYNAMIC_ITEM_UPDATE", {"data": {"FIELDS": {"ID": "77"}}})
    assert storage.get_project("77") is None


async def test_smart_process_sync_when_enabled(settings, bitrix, storage):
    dispatcher = EventDispatcher(settings.model_copy(update={"projects_webhook_sync": True}), bitrix, storage)
    storage.create_lk(ContactRecord(bitrix_id="100", company="200"))
    bitrix.add(EntityType.SMART_PROCESS, {"id": 77, "contactId": 100, "ufCrm8_1769614111137": "Склад"})
    bitrix.add(EntityType.SMART_PROCESS, {"id": 78, "contactId": 555})
    body = {"data": {"FIELDS": {"ID": "77"}}}

    assert await dispatcher.process_with_retry("ONCRM_DYNAMIC_ITEM_ADD", body)
    assert await dispatcher.process_with_retry("ONCRM_DYNAMIC_ITEM_ADD", {"data": {"FIELDS": {"ID": "78"}}})

    project = storage.get_project("77")
    assert project["object_name"] == "Склад"
    assert project["company_id"] == "200"
    assert storage.get_project("78") is None

    assert await dispatcher.process_with_retry("ONCRM_DYNAMIC_ITEM_DELETE", body)
    assert storage.get_project("77") is None


async def test_upstream_errors_are_retried_then_fail(dispatcher, bitrix, settings):
    bitrix.get_entity.side_effect = BitrixAPIError("crm.contact.get", "timeout")

    assert await dispatcher.process_with_retry("ONCRMCONTACTUPDATE", event()) is False
    assert bitrix.get_entity.await_count == settings.max_retries + 1


async def test_retry_recovers_after_transient_error(dispatcher, bitrix, storage, make_contact):
    bitrix.get_entity.side_effect = [BitrixAPIError("crm.contact.get", "503"), make_contact()]

    assert await dispatcher.process_with_retry("ONCRMCONTACTUPDATE", event())
    assert bitrix.get_entity.await_count == 2
    assert storage.get_contact("100") is not None


async def test_retry_stops_at_deadline(settings, bitrix, storage, monkeypatch):
    dispatcher = EventDispatcher(
        settings.model_copy(update={"retry_delays": [60], "retry_deadline_seconds": 25}), bitrix, storage
    )
    bitrix.get_entity.side_effect = BitrixAPIError("crm.contact.get", "timeout")
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)

    assert await dispatcher.process_with_retry("ONCRMCONTACTUPDATE", event()) is False
    assert bitrix.get_entity.await_count == 1
    assert sleeps == []


async def test_unexpected_exception_aborts_retry(dispatcher, bitrix):
    bitrix.get_entity.side_effect = RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await dispatcher.process_with_retry("ONCRMCONTACTUPDATE", event())
    assert bitrix.get_entity.await_count == 1


async def test_refresh_managers(dispatcher, bitrix, storage):
    bitrix.add(EntityType.USER, {"ID": "7", "NAME": "Анна", "WORK_POSITION": "РОП"})
    await dispatcher.sync_manager("1", "7")
    bitrix.add(EntityType.USER, {"ID": "7", "NAME": "Анна", "WORK_POSITION": "Директор"})

    assert await dispatcher.refresh_managers() == 1
    assert storage.get_manager("7")["position"] == "Директор"


async def test_process_event_for_delete_tolerates_missing_entity(dispatcher, bitrix):
    assert await dispatcher.process_event(EntityType.CONTACT, EventAction.DELETE, "999")
