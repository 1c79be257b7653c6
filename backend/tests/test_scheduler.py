from app.models import EntityType
from app.scheduler.tasks import refresh_managers_task, start_scheduler, scheduler
from app.schemas.records import ManagerRecord


def test_refresh_managers_task_builds_client_per_run(settings, storage, bitrix):
    storage.add_manager(ManagerRecord(bitrix_id="7", name="Анна"))
    bitrix.add(EntityType.USER, {"ID": "7", "NAME": "Анна", "LAST_NAME": "Смирнова"})
    created = []

    def factory(task_settings):
        created.append(task_settings)
        return bitrix

    assert refresh_managers_task(settings, storage, client_factory=factory) == 1
    assert refresh_managers_task(settings, storage, client_factory=factory) == 1

    assert created == [settings, settings]
    assert storage.get_manager("7")["last_name"] == "Смирнова"


def test_refresh_managers_task_logs_failures(settings, storage):
    def factory(task_settings):
        raise RuntimeError("no client")

    assert refresh_managers_task(settings, storage, client_factory=factory) == 0


def test_scheduler_not_started_without_webhook(settings, storage):
    start_scheduler(settings.model_copy(update={"scheduler_enabled": True, "bitrix24_webhook": None}), storage)

    assert not scheduler.running
    assert scheduler.get_job("refresh_managers") is None
