from .events import EntityType, EventAction, Collection
from .field_mapping import ContactField, CompanyField, DealField, ProjectField, UserField

__all__ = [
    "EntityType",
    "EventAction",
    "Collection",
    "ContactField",
    "CompanyField",
    "DealField",
    "ProjectField",
    "UserField",
]
