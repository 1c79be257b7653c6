"""Административные команды: удаление проектов, ручная синхронизация контактов"""
from typing import List, Optional
from app.config import get_settings
from app.logging_config import setup_logging
from app.models import EntityType, EventAction
from app.services.bitrix_client import get_bitrix_client
from app.services.event_dispatcher import EventDispatcher
from app.services.local_storage import LocalStorage
import argparse
import asyncio
import json
import logging
import sys

logger = logging.getLogger(__name__)


def _dispatcher(storage: LocalStorage) -> EventDispatcher:
    settings = get_settings()
    return EventDispatcher(settings, get_bitrix_client(settings), storage)


def cmd_delete_project(args, storage: LocalStorage) -> int:
    if storage.delete_project(args.project_id):
        print(f"Проект {args.project_id} удален")
        return 0
    print(f"Проект {args.project_id} не найден", file=sys.stderr)
    return 1


def cmd_sync_contact(args, storage: LocalStorage) -> int:
    dispatcher = _dispatcher(storage)
    ok = asyncio.run(dispatcher.process_event(EntityType.CONTACT, EventAction.UPDATE, args.contact_id))
    print(f"Контакт {args.contact_id}: {'синхронизирован' if ok else 'ошибка синхронизации'}")
    return 0 if ok else 1


def cmd_latest_contact(args, storage: LocalStorage) -> int:
    contact = storage.get_last_updated_contact()
    if contact is None:
        print("Контакты не найдены", file=sys.stderr)
        return 1
    print(json.dumps(contact, ensure_ascii=False, indent=4))
    return 0


def cmd_refresh_managers(args, storage: LocalStorage) -> int:
    refreshed = asyncio.run(_dispatcher(storage).refresh_managers())
    print(f"Обновлено менеджеров: {refreshed}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lk-sync", description="Управление данными ЛК Bitrix24")
    subparsers = parser.add_subparsers(dest="command", required=True)

    delete_project = subparsers.add_parser("delete-project", help="Удалить проект из локального хранилища")
    delete_project.add_argument("project_id")
    delete_project.set_defaults(func=cmd_delete_project)

    sync_contact = subparsers.add_parser("sync-contact", help="Синхронизировать контакт из Bitrix24")
    sync_contact.add_argument("contact_id")
    sync_contact.set_defaults(func=cmd_sync_contact)

    latest = subparsers.add_parser("latest-contact", help="Показать последний обновленный ЛК")
    latest.set_defaults(func=cmd_latest_contact)

    refresh = subparsers.add_parser("refresh-managers", help="Обновить данные менеджеров из Bitrix24")
    refresh.set_defaults(func=cmd_refresh_managers)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings)
    return args.func(args, LocalStorage(settings.data_dir))


if __name__ == "__main__":
    sys.exit(main())
