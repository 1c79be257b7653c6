from typing import Iterable, Optional
from app.models import EntityType, EventAction

# Порядок важен: проверяется первое совпадение префикса
EVENT_PREFIXES = [
    ("ONCRMCONTACT", EntityType.CONTACT),
    ("ONCRMCOMPANY", EntityType.COMPANY),
    ("ONCRMDEAL", EntityType.DEAL),
    ("ONCRM_DYNAMIC_ITEM", EntityType.SMART_PROCESS),
    ("ONCRMDYNAMICITEM", EntityType.SMART_PROCESS),
]

ACTION_SUFFIXES = [
    ("ADD", EventAction.CREATE),
    ("UPDATE", EventAction.UPDATE),
    ("DELETE", EventAction.DELETE),
]


def entity_type_for(event_name: str) -> Optional[EntityType]:
    """Тип сущности по имени события (OnCrmContactUpdate -> contact)"""
    name = (event_name or "").upper()
    for prefix, entity_type in EVENT_PREFIXES:
        if name.startswith(prefix):
            return entity_type
    return None


def action_for(event_name: str) -> EventAction:
    """Действие по суффиксу имени события"""
    name = (event_name or "").upper()
    for suffix, action in ACTION_SUFFIXES:
        if name.endswith(suffix):
            return action
    return EventAction.UNKNOWN


def is_event_enabled(event_name: str, enabled_events: Iterable[str]) -> bool:
    name = (event_name or "").upper()
    return name in {event.upper() for event in enabled_events}
