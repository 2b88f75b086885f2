"""
Store/item catalog loader.

A catalog is a local JSON file with `stores` and `items` arrays, used to seed a document
store for demos and local development. It is validated into typed Pydantic models before
anything is written, so a bad file never half-populates the store.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from finditfast.core.env import resolve_project_path
from finditfast.core.time import utc_now
from finditfast.domain.models import Item, Store
from finditfast.storage.documents import ITEMS, STORES, DocumentStore

logger = logging.getLogger(__name__)


class Catalog(BaseModel):
    stores: list[Store] = Field(default_factory=list)
    items: list[Item] = Field(default_factory=list)


def load_catalog(path: str | Path) -> Catalog:
    """Load and validate a catalog JSON file."""
    resolved = resolve_project_path(path)
    payload = json.loads(resolved.read_text(encoding="utf-8"))
    return Catalog.model_validate(payload)


async def import_catalog(store: DocumentStore, catalog: Catalog) -> dict[str, int]:
    """Write catalog stores/items, keeping their ids. Existing ids are skipped."""
    counts = {"stores": 0, "items": 0, "skipped": 0}
    now = utc_now()

    for s in catalog.stores:
        if await store.get_by_id(STORES, s.id) is not None:
            counts["skipped"] += 1
            continue
        doc = s.model_copy(update={"created_at": s.created_at or now, "updated_at": s.updated_at or now})
        await store.create(STORES, doc.model_dump(mode="json", exclude={"id"}), doc_id=s.id)
        counts["stores"] += 1

    for item in catalog.items:
        if await store.get_by_id(ITEMS, item.id) is not None:
            counts["skipped"] += 1
            continue
        await store.create(ITEMS, item.model_dump(mode="json", exclude={"id"}), doc_id=item.id)
        counts["items"] += 1

    logger.info(
        "Imported catalog: %d stores, %d items (%d skipped)", counts["stores"], counts["items"], counts["skipped"]
    )
    return counts
