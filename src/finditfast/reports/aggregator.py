"""
Crowd report aggregation and auto-flagging.

Shoppers report that an item is missing/moved (negative) or found/confirmed (positive).
This module:
- records each report as an immutable document,
- bumps the item's `report_count` for negative reports only,
- folds an item's reports into `ReportStats`,
- flags items for administrative review when negative signal dominates.

Flagging is best-effort: a failed flag write is logged and never turns a successful report
submission into a failure.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Iterable

from pydantic import TypeAdapter

from finditfast.config.settings import ReportSettings
from finditfast.core.time import Clock, utc_now
from finditfast.domain.errors import DocumentNotFoundError, ReportLookupError, ReportSubmissionError
from finditfast.domain.models import CreateReportData, Report, ReportStats, ReportType
from finditfast.storage.documents import FLAGGED_ITEMS, ITEMS, REPORTS, DocumentStore

logger = logging.getLogger(__name__)

_REPORTS_ADAPTER = TypeAdapter(list[Report])

DEFAULT_FLAG_REASON = "Multiple negative reports"


def summarize_reports(reports: Iterable[Report]) -> ReportStats:
    """Count reports per category."""
    counts = {t: 0 for t in ReportType}
    total = 0
    for report in reports:
        counts[report.type] += 1
        total += 1
    return ReportStats(
        total=total,
        missing=counts[ReportType.MISSING],
        moved=counts[ReportType.MOVED],
        found=counts[ReportType.FOUND],
        confirmed=counts[ReportType.CONFIRM],
    )


def should_flag_stats(stats: ReportStats, *, min_negative: int = 3) -> bool:
    """Flag only with enough negative volume AND a negative majority."""
    return stats.negative >= min_negative and stats.negative > stats.positive


def _newest_first(reports: list[Report]) -> list[Report]:
    return sorted(reports, key=lambda r: r.timestamp, reverse=True)


class ReportAggregator:
    """Records crowd reports and decides when an item needs review."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        flag_min_negative: int = 3,
        default_flag_reason: str = DEFAULT_FLAG_REASON,
        recent_days: int = 7,
        recent_limit: int = 50,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._flag_min_negative = int(flag_min_negative)
        self._default_flag_reason = default_flag_reason
        self._recent_days = int(recent_days)
        self._recent_limit = int(recent_limit)
        self._clock = clock

    @classmethod
    def from_settings(cls, store: DocumentStore, settings: ReportSettings, *, clock: Clock = utc_now) -> "ReportAggregator":
        return cls(
            store,
            flag_min_negative=settings.flag_min_negative,
            default_flag_reason=settings.default_flag_reason,
            recent_days=settings.recent_days,
            recent_limit=settings.recent_limit,
            clock=clock,
        )

    async def submit_report(self, data: CreateReportData) -> str:
        """Persist a report; negative reports also increment the item's report count.

        Raises:
            ReportSubmissionError: On any storage failure (details are only logged).
        """
        now = self._clock().isoformat()
        payload = {
            "item_id": data.item_id,
            "store_id": data.store_id,
            "type": data.type.value,
            "timestamp": now,
            "comment": data.comment,
            "user_id": data.user_id,
            "location": data.location.model_dump(mode="json") if data.location else None,
        }
        try:
            report_id = await self._store.create(REPORTS, payload)
            if data.type.is_negative:
                await self._bump_report_count(data.item_id, now)
        except Exception as exc:
            logger.exception("Error submitting %s report for item %s", data.type.value, data.item_id)
            raise ReportSubmissionError() from exc

        logger.info("Recorded %s report %s for item %s", data.type.value, report_id, data.item_id)
        return report_id

    async def _bump_report_count(self, item_id: str, now: str) -> None:
        try:
            await self._store.increment_field(ITEMS, item_id, "report_count", extra_fields={"updated_at": now})
        except DocumentNotFoundError:
            # Unknown item: the report stands, only the counter is skipped.
            logger.warning("Report for unknown item %s; report_count not updated", item_id)

    async def _load(self, field: str, value: str) -> list[Report]:
        try:
            docs = await self._store.list_where(REPORTS, field, value)
        except Exception as exc:
            logger.exception("Error loading reports where %s=%s", field, value)
            raise ReportLookupError() from exc
        return _REPORTS_ADAPTER.validate_python(docs)

    async def get_item_reports(self, item_id: str) -> list[Report]:
        """All reports for an item, newest first."""
        return _newest_first(await self._load("item_id", item_id))

    async def get_store_reports(self, store_id: str) -> list[Report]:
        """All reports for a store, newest first."""
        return _newest_first(await self._load("store_id", store_id))

    async def get_recent_reports(self, days: int | None = None, limit: int | None = None) -> list[Report]:
        """Reports from the last `days` days across all items, newest first, capped at `limit`.

        Both default to the configured `reports.recent_days` / `reports.recent_limit`.
        """
        days = self._recent_days if days is None else days
        limit = self._recent_limit if limit is None else limit
        cutoff = self._clock() - timedelta(days=days)
        try:
            docs = await self._store.list_all(REPORTS)
        except Exception as exc:
            logger.exception("Error loading recent reports")
            raise ReportLookupError("Failed to load recent reports.") from exc
        recent = [r for r in _REPORTS_ADAPTER.validate_python(docs) if r.timestamp >= cutoff]
        return _newest_first(recent)[:limit]

    async def get_stats(self, item_id: str) -> ReportStats:
        return summarize_reports(await self._load("item_id", item_id))

    async def should_flag(self, item_id: str) -> bool:
        try:
            stats = await self.get_stats(item_id)
        except ReportLookupError:
            logger.warning("Could not evaluate flagging for item %s; not flagging.", item_id)
            return False
        return should_flag_stats(stats, min_negative=self._flag_min_negative)

    async def flag_for_review(self, item_id: str, reason: str | None = None) -> str | None:
        """Record a pending-review flag. Returns the flag id, or None if the write failed."""
        reason = reason or self._default_flag_reason
        record = {
            "item_id": item_id,
            "reason": reason,
            "timestamp": self._clock().isoformat(),
            "status": "pending_review",
        }
        try:
            flag_id = await self._store.create(FLAGGED_ITEMS, record)
        except Exception:
            logger.exception("Error flagging item %s for review", item_id)
            return None
        logger.warning("Item %s flagged for admin review: %s", item_id, reason)
        return flag_id

    async def process_report_and_flag(self, data: CreateReportData) -> str:
        """Submit a report, then flag the item if negative reports now dominate.

        Flagging is evaluated only after the report write succeeded, and only for
        negative report types.
        """
        report_id = await self.submit_report(data)
        if data.type.is_negative and await self.should_flag(data.item_id):
            await self.flag_for_review(data.item_id, f"Multiple {data.type.value} reports received")
        return report_id
