from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union


class CrmDocument:
    """
    Сырые данные сущности Bitrix24

    Обертка над словарем с явным доступом к полям: get() возвращает None,
    если поле отсутствует или пустое (None, "", пустой список).
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data = dict(data or {})

    def get(self, key: Optional[str]) -> Optional[Any]:
        if not key:
            return None
        value = self._data.get(key)
        if value is None or value == "" or value == [] or value == {}:
            return None
        return value

    def get_str(self, key: Optional[str], default: str = "") -> str:
        value = self.get(key)
        if value is None:
            return default
        return str(value)

    @property
    def entity_id(self) -> Optional[str]:
        """ID сущности: классические сущности отдают ID, смарт-процессы - id"""
        value = self.get("ID")
        if value is None:
            value = self.get("id")
        return str(value) if value is not None else None


@dataclass(frozen=True)
class Scalar:
    """Множественное поле, пришедшее одиночным значением"""
    value: str


@dataclass(frozen=True)
class ValueList:
    """Множественное поле в формате Bitrix24: [{"VALUE": ...}, ...]"""
    values: List[str]


MultiFieldValue = Union[Scalar, ValueList]


def parse_multi_field(raw: Any) -> Optional[MultiFieldValue]:
    """Разобрать EMAIL/PHONE в Scalar или ValueList"""
    if raw is None or raw == "" or raw == []:
        return None
    if isinstance(raw, (list, tuple)):
        values = []
        for item in raw:
            if isinstance(item, dict):
                value = item.get("VALUE", item.get("value"))
            else:
                value = item
            if value is not None and value != "":
                values.append(str(value))
        return ValueList(values)
    if isinstance(raw, dict):
        value = raw.get("VALUE", raw.get("value"))
        return Scalar(str(value)) if value not in (None, "") else None
    return Scalar(str(raw))


def first_value(field: Optional[MultiFieldValue]) -> str:
    """
    Нормализовать множественное поле к одной строке

    Берется только первое значение, остальные адреса/телефоны отбрасываются.
    """
    if field is None:
        return ""
    if isinstance(field, Scalar):
        return field.value
    return field.values[0] if field.values else ""
