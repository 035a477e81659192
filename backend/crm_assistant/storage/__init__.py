from .base import EntityStore, CONTACTS, CALENDAR_EVENTS, ALERTS, PRIMARY_KEYS
from .cache import CacheInvalidator, SearchCache
from .memory import InMemoryEntityStore

__all__ = [
    "EntityStore",
    "InMemoryEntityStore",
    "CacheInvalidator",
    "SearchCache",
    "CONTACTS",
    "CALENDAR_EVENTS",
    "ALERTS",
    "PRIMARY_KEYS",
]
