"""
Item verification lifecycle.

An item is either trusted (`verified=True`, with `verified_at`) or not. Two further
classifications are derived on every read and never stored:
- needs review: verified, but `report_count` reached the review threshold
- expired: verified, but `verified_at` is older than the allowed age

`needs_review` and `is_expired` are pure functions of an item snapshot so callers can
re-evaluate them whenever time passes; do not cache their results.

Store failures propagate unchanged: these operations are owner/admin-triggered and the
caller needs the underlying cause.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from pydantic import TypeAdapter

from finditfast.config.settings import VerificationSettings
from finditfast.core.time import Clock, ensure_utc, utc_now
from finditfast.domain.models import (
    Item,
    NewItem,
    VerificationState,
    VerificationStats,
    VerificationStatus,
)
from finditfast.storage.documents import ITEMS, DocumentStore

logger = logging.getLogger(__name__)

_ITEMS_ADAPTER = TypeAdapter(list[Item])


def needs_review(item: Item, threshold: int = 3) -> bool:
    return item.verified and item.report_count >= threshold


def is_expired(item: Item, max_days: int = 30, *, now: datetime | None = None) -> bool:
    """True when a verified item's trust timestamp is older than `max_days`.

    Items that were never verified are simply unverified, never expired.
    """
    if not item.verified or item.verified_at is None:
        return False
    now = ensure_utc(now) if now is not None else utc_now()
    return now - item.verified_at > timedelta(days=max_days)


def classify(item: Item, *, threshold: int = 3, max_days: int = 30, now: datetime | None = None) -> VerificationState:
    if not item.verified:
        return VerificationState.UNVERIFIED
    if needs_review(item, threshold):
        return VerificationState.VERIFIED_NEEDS_REVIEW
    if is_expired(item, max_days, now=now):
        return VerificationState.VERIFIED_EXPIRED
    return VerificationState.VERIFIED


def summarize_verification(items: Iterable[Item], *, threshold: int = 3) -> VerificationStats:
    stats = VerificationStats()
    for item in items:
        stats.total += 1
        if item.verified:
            stats.verified += 1
            if needs_review(item, threshold):
                stats.needs_review += 1
        else:
            stats.unverified += 1
    return stats


@dataclass
class BatchVerifyResult:
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, BaseException] = field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


class VerificationEngine:
    """The only component allowed to change `verified` / `verified_at`."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        review_threshold: int = 3,
        max_age_days: int = 30,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._review_threshold = int(review_threshold)
        self._max_age_days = int(max_age_days)
        self._clock = clock

    @classmethod
    def from_settings(
        cls, store: DocumentStore, settings: VerificationSettings, *, clock: Clock = utc_now
    ) -> "VerificationEngine":
        return cls(
            store,
            review_threshold=settings.review_threshold,
            max_age_days=settings.max_age_days,
            clock=clock,
        )

    def _now(self) -> str:
        return self._clock().isoformat()

    async def verify(self, item_id: str) -> None:
        now = self._now()
        await self._store.update(ITEMS, item_id, {"verified": True, "verified_at": now, "updated_at": now})
        logger.info("Verified item %s", item_id)

    async def unverify(self, item_id: str) -> None:
        # verified_at is kept as the record of when the item was last trusted.
        await self._store.update(ITEMS, item_id, {"verified": False, "updated_at": self._now()})
        logger.info("Unverified item %s", item_id)

    async def refresh(self, item_id: str) -> None:
        """Reset the expiry clock without touching `verified`."""
        now = self._now()
        await self._store.update(ITEMS, item_id, {"verified_at": now, "updated_at": now})

    async def create_verified_item(self, data: NewItem) -> str:
        """Create an owner-submitted item that is trusted from the start."""
        now = self._now()
        payload = {
            **data.model_dump(mode="json"),
            "verified": True,
            "verified_at": now,
            "report_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        item_id = await self._store.create(ITEMS, payload)
        logger.info("Created verified item %s in store %s", item_id, data.store_id)
        return item_id

    async def batch_verify(self, item_ids: Iterable[str]) -> BatchVerifyResult:
        """Verify each id concurrently; one failure never cancels the others."""
        ids = list(item_ids)
        outcomes = await asyncio.gather(*(self.verify(i) for i in ids), return_exceptions=True)
        result = BatchVerifyResult()
        for item_id, outcome in zip(ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Batch verify failed for item %s: %s", item_id, str(outcome))
                result.failed[item_id] = outcome
            else:
                result.succeeded.append(item_id)
        return result

    async def get_item(self, item_id: str) -> Item | None:
        doc = await self._store.get_by_id(ITEMS, item_id)
        return Item.model_validate(doc) if doc is not None else None

    async def get_verification_status(self, item_id: str) -> VerificationStatus | None:
        item = await self.get_item(item_id)
        if item is None:
            return None
        return VerificationStatus(verified=item.verified, verified_at=item.verified_at, updated_at=item.updated_at)

    async def _store_items(self, store_id: str) -> list[Item]:
        return _ITEMS_ADAPTER.validate_python(await self._store.get_by_store(ITEMS, store_id))

    def needs_review(self, item: Item, threshold: int | None = None) -> bool:
        return needs_review(item, self._review_threshold if threshold is None else threshold)

    def is_expired(self, item: Item, max_days: int | None = None) -> bool:
        return is_expired(item, self._max_age_days if max_days is None else max_days, now=self._clock())

    def classify(self, item: Item) -> VerificationState:
        return classify(item, threshold=self._review_threshold, max_days=self._max_age_days, now=self._clock())

    async def list_needing_review(self, store_id: str, threshold: int | None = None) -> list[Item]:
        return [i for i in await self._store_items(store_id) if self.needs_review(i, threshold)]

    async def list_expired(self, store_id: str, max_days: int | None = None) -> list[Item]:
        return [i for i in await self._store_items(store_id) if self.is_expired(i, max_days)]

    async def stats(self, store_id: str) -> VerificationStats:
        return summarize_verification(await self._store_items(store_id), threshold=self._review_threshold)
