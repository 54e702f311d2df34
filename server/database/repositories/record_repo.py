"""Owner-scoped CRUD over payees and categories."""
from asyncio import to_thread
from typing import Any, Optional
from supabase import Client
import logging

from models.action import EntityKind

logger = logging.getLogger(__name__)

_TABLES = {
    EntityKind.PAYEE: "payees",
    EntityKind.CATEGORY: "categories",
}

DEFAULT_READ_LIMIT = 20


class RecordStoreError(Exception):
    """The store rejected or failed an operation."""


class RecordNotFoundError(RecordStoreError):
    pass


class RecordRepository:
    """Generic record operations, every statement scoped to one owner.

    The owner id is fixed at construction, so a repository instance can
    never touch another user's rows.
    """

    def __init__(self, supabase: Client, owner_id: str):
        if not owner_id:
            raise ValueError("owner_id is required")
        self.supabase = supabase
        self.owner_id = str(owner_id)

    def _table(self, kind: EntityKind) -> str:
        return _TABLES[EntityKind(kind)]

    async def create(self, kind: EntityKind, data: dict[str, Any]) -> dict:
        """Insert a record and return it."""
        table = self._table(kind)
        row = {**data, "user_id": self.owner_id}
        row.pop("id", None)
        try:
            response = await to_thread(
                lambda: self.supabase.table(table).insert(row).execute()
            )
        except Exception as e:
            logger.error(f"Error creating {kind.value}: {e}")
            raise RecordStoreError(f"Failed to create {kind.value}.") from e

        if not response.data:
            raise RecordStoreError(f"Failed to create {kind.value}.")
        return response.data[0]

    async def get(self, kind: EntityKind, record_id: str) -> Optional[dict]:
        """Fetch one record by id. Returns None if missing."""
        table = self._table(kind)
        try:
            response = await to_thread(
                lambda: self.supabase.table(table)
                .select("*")
                .eq("id", record_id)
                .eq("user_id", self.owner_id)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching {kind.value} {record_id}: {e}")
            raise RecordStoreError(f"Failed to fetch {kind.value}.") from e
        return response.data[0] if response.data else None

    async def read(self, kind: EntityKind, filter: Optional[dict[str, Any]] = None) -> list[dict]:
        """List records, optionally by ``id`` or a ``query`` substring of the name."""
        filter = filter or {}
        table = self._table(kind)
        record_id = filter.get("id")
        query_text = filter.get("query") or ""
        limit = int(filter.get("limit") or DEFAULT_READ_LIMIT)

        def _query():
            q = self.supabase.table(table).select("*").eq("user_id", self.owner_id)
            if record_id:
                q = q.eq("id", record_id)
            elif query_text:
                q = q.ilike("name", f"%{query_text}%")
            return q.order("name").limit(limit).execute()

        try:
            response = await to_thread(_query)
        except Exception as e:
            logger.error(f"Error reading {kind.value}: {e}")
            raise RecordStoreError(f"Failed to read {kind.value} records.") from e
        return response.data if response.data else []

    async def update(self, kind: EntityKind, record_id: str, patch: dict[str, Any]) -> dict:
        """Apply a partial update and return the updated record."""
        table = self._table(kind)
        patch = {k: v for k, v in patch.items() if k not in ("id", "user_id")}
        if not patch:
            raise RecordStoreError(f"Nothing to update on {kind.value} {record_id}.")
        try:
            response = await to_thread(
                lambda: self.supabase.table(table)
                .update(patch)
                .eq("id", record_id)
                .eq("user_id", self.owner_id)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error updating {kind.value} {record_id}: {e}")
            raise RecordStoreError(f"Failed to update {kind.value}.") from e

        if not response.data:
            raise RecordNotFoundError(f"{kind.value} {record_id} not found")
        return response.data[0]

    async def delete(self, kind: EntityKind, record_id: str) -> dict:
        """Delete a record. ``success`` is False when no such record exists."""
        table = self._table(kind)
        try:
            response = await to_thread(
                lambda: self.supabase.table(table)
                .delete()
                .eq("id", record_id)
                .eq("user_id", self.owner_id)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error deleting {kind.value} {record_id}: {e}")
            raise RecordStoreError(f"Failed to delete {kind.value}.") from e
        return {"success": bool(response.data)}

    async def list_names(self, kind: EntityKind, limit: int) -> list[dict]:
        """``[{id, name}]`` of the owner's records, used to bias classification."""
        table = self._table(kind)
        response = await to_thread(
            lambda: self.supabase.table(table)
            .select("id, name")
            .eq("user_id", self.owner_id)
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
        )
        return response.data if response.data else []

    async def category_tree(self) -> list[dict]:
        """All of the owner's categories, children nested under ``children``."""
        try:
            response = await to_thread(
                lambda: self.supabase.table(_TABLES[EntityKind.CATEGORY])
                .select("*")
                .eq("user_id", self.owner_id)
                .order("name")
                .execute()
            )
        except Exception as e:
            logger.error(f"Error reading category tree: {e}")
            raise RecordStoreError("Failed to read category tree.") from e
        return nest_categories(response.data or [])


def nest_categories(rows: list[dict]) -> list[dict]:
    """Build a forest from flat category rows.

    A row whose parent is not among ``rows`` is treated as a root. Input
    rows are not mutated.
    """
    nodes = {row["id"]: {**row, "children": []} for row in rows if row.get("id")}
    roots = []
    for node in nodes.values():
        parent = nodes.get(node.get("parent_id"))
        if parent is not None and parent is not node:
            parent["children"].append(node)
        else:
            roots.append(node)
    return roots
