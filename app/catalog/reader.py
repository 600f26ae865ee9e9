"""Read-only access to catalog items and their garment fitting metadata."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

from pydantic import BaseModel
from supabase import Client

from app.jobs.models import FittingMetadata, normalize_fitting_metadata

TABLE = "catalog_items"


class CatalogItem(BaseModel):
    id: str
    name: Optional[str] = None
    image_url: Optional[str] = None
    fitting_metadata: Optional[FittingMetadata] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CatalogItem":
        return cls(
            id=str(row["id"]),
            name=row.get("name"),
            image_url=row.get("image_url"),
            fitting_metadata=normalize_fitting_metadata(
                row.get("fitting_metadata") or row.get("pose_metadata")
            ),
        )


class CatalogReader(ABC):
    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[CatalogItem]:
        """Return the catalog item, or None if it does not exist."""
        ...


class InMemoryCatalog(CatalogReader):
    def __init__(self, rows: Iterable[Dict[str, Any]] = ()):
        self._items: Dict[str, CatalogItem] = {}
        for row in rows:
            self.add(row)

    def add(self, row: Dict[str, Any]) -> CatalogItem:
        item = CatalogItem.from_row(row)
        self._items[item.id] = item
        return item

    async def get_item(self, item_id: str) -> Optional[CatalogItem]:
        return self._items.get(str(item_id))


class SupabaseCatalog(CatalogReader):
    def __init__(self, client: Client):
        self._client = client

    async def get_item(self, item_id: str) -> Optional[CatalogItem]:
        query = (
            self._client.table(TABLE)
            .select("id, name, image_url, fitting_metadata")
            .eq("id", str(item_id))
            .limit(1)
        )
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(None, query.execute)
        if not response.data:
            return None
        return CatalogItem.from_row(response.data[0])
