import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .base import EntityStore, PRIMARY_KEYS
from .query import Predicate
from ..errors import StorageError
from ..utils.logger import logger


class InMemoryEntityStore(EntityStore):
    """Process-local store used for development and tests.

    Records are kept per table as ``{record_id: record}`` and always carry the
    owning ``user_id``. Callers receive copies, never the stored dicts.
    """

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {table: {} for table in PRIMARY_KEYS}
        self.profiles: Dict[str, Dict[str, Any]] = {}

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        if table not in self.tables:
            raise StorageError(f"Unknown table: {table}", operation=f"{table} access")
        return self.tables[table]

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    async def insert(self, table: str, user_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._table(table)
        key = PRIMARY_KEYS[table]
        record_id = str(uuid.uuid4())
        now = self._now()

        row = dict(record)
        row.update({key: record_id, "user_id": user_id, "created_at": now, "updated_at": now})
        rows[record_id] = row

        logger.debug(f"Inserted {table} row {record_id} for user {user_id}")
        return copy.deepcopy(row)

    async def update(self, table: str, user_id: str, record_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        row = self._table(table).get(record_id)
        if row is None or row.get("user_id") != user_id:
            return None

        key = PRIMARY_KEYS[table]
        row.update({k: v for k, v in changes.items() if k not in (key, "user_id")})
        row["updated_at"] = self._now()
        return copy.deepcopy(row)

    async def delete(self, table: str, user_id: str, record_id: str) -> bool:
        rows = self._table(table)
        row = rows.get(record_id)
        if row is None or row.get("user_id") != user_id:
            return False
        del rows[record_id]
        return True

    async def get(self, table: str, user_id: str, record_id: str) -> Optional[Dict[str, Any]]:
        row = self._table(table).get(record_id)
        if row is None or row.get("user_id") != user_id:
            return None
        return copy.deepcopy(row)

    async def select(
        self,
        table: str,
        user_id: str,
        where: Optional[Predicate] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        rows = [
            row for row in self._table(table).values()
            if row.get("user_id") == user_id and (where is None or where.matches(row))
        ]

        if order_by:
            # Rows missing the sort column go last, like NULLS LAST
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=descending)
            rows = present + missing

        if limit is not None:
            rows = rows[:limit]

        return [copy.deepcopy(r) for r in rows]

    async def get_profile(self, user_id: str) -> Dict[str, Any]:
        profile = self.profiles.setdefault(user_id, {"user_id": user_id, "settings": {}})
        return copy.deepcopy(profile)

    async def update_profile(self, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        profile = self.profiles.setdefault(user_id, {"user_id": user_id, "settings": {}})
        new_settings = changes.get("settings")
        if isinstance(new_settings, dict):
            profile["settings"].update(new_settings)
        profile.update({k: v for k, v in changes.items() if k not in ("settings", "user_id")})
        profile["updated_at"] = self._now()
        return copy.deepcopy(profile)
