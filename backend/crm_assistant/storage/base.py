"""
Entity storage boundary.

The assistant never owns CRM records; it reads, validates and writes them
through this interface. Every call is scoped by the authenticated user id.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .query import Predicate

CONTACTS = "contacts"
CALENDAR_EVENTS = "calendar_events"
ALERTS = "alerts"

PRIMARY_KEYS = {
    CONTACTS: "contact_id",
    CALENDAR_EVENTS: "event_id",
    ALERTS: "alert_id",
}


class EntityStore(ABC):
    """User-scoped CRUD over the contacts, calendar_events and alerts tables plus the profile."""

    @abstractmethod
    async def insert(self, table: str, user_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record and return it with its generated identifier."""

    @abstractmethod
    async def update(self, table: str, user_id: str, record_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply changes to a record. Returns None when the user owns no such record."""

    @abstractmethod
    async def delete(self, table: str, user_id: str, record_id: str) -> bool:
        """Delete a record. Returns False when the user owns no such record."""

    @abstractmethod
    async def get(self, table: str, user_id: str, record_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def select(
        self,
        table: str,
        user_id: str,
        where: Optional[Predicate] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_profile(self, user_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update_profile(self, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        ...
