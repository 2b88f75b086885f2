"""
API routes.

Endpoints:
- GET  `/api/stores/nearby`: stores ranked by distance from the caller's position.
- GET  `/api/items/search`: items by name prefix, ranked by trust then distance.
- POST `/api/reports`: submit a crowd report (auto-flags the item when warranted).
- GET  `/api/reports/recent`: reports from the last few days across all items.
- GET  `/api/items/{item_id}/reports` and `/api/items/{item_id}/reports/stats`.
- POST `/api/items/verified`, `/api/items/verify-batch`, `/api/items/{item_id}/{verify,unverify,refresh}`.
- GET  `/api/items/{item_id}/verification`.
- GET  `/api/stores/{store_id}/verification/{stats,needs-review,expired}`.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from finditfast.config.settings import get_settings
from finditfast.domain.errors import DocumentNotFoundError, ReportLookupError, ReportSubmissionError
from finditfast.domain.models import (
    CreateReportData,
    Item,
    Location,
    NewItem,
    Report,
    ReportStats,
    Store,
    VerificationStats,
    VerificationStatus,
)
from finditfast.ranking.proximity import rank_by_distance, search_items
from finditfast.reports.aggregator import ReportAggregator
from finditfast.storage.documents import ITEMS, STORES, DocumentStore, build_store
from finditfast.verification.engine import VerificationEngine

router = APIRouter()

_STORES_ADAPTER = TypeAdapter(list[Store])
_ITEMS_ADAPTER = TypeAdapter(list[Item])


@lru_cache
def _store() -> DocumentStore:
    return build_store(get_settings())


@lru_cache
def _services() -> tuple[ReportAggregator, VerificationEngine]:
    settings = get_settings()
    store = _store()
    return (
        ReportAggregator.from_settings(store, settings.reports),
        VerificationEngine.from_settings(store, settings.verification),
    )


def _not_found(exc: DocumentNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": str(exc)})


class NearbyStore(BaseModel):
    store: Store
    distance_km: float | None = None
    formatted_distance: str | None = None


class NearbyStoresResponse(BaseModel):
    ranked: bool
    results: list[NearbyStore]


class ItemHit(BaseModel):
    item: Item
    store: Store
    distance_km: float | None = None
    formatted_distance: str | None = None


class IdResponse(BaseModel):
    id: str


class BatchVerifyRequest(BaseModel):
    item_ids: list[str] = Field(..., min_length=1)


class BatchVerifyResponse(BaseModel):
    succeeded: list[str]
    failed: dict[str, str]


def _user_location(lat: float | None, lon: float | None) -> Location | None:
    if lat is None or lon is None:
        return None
    try:
        return Location(latitude=lat, longitude=lon)
    except ValidationError as e:
        raise HTTPException(
            status_code=400, detail={"code": "VALIDATION_ERROR", "message": "Invalid coordinates"}
        ) from e


@router.get("/api/stores/nearby", response_model=NearbyStoresResponse)
async def get_nearby_stores(
    lat: float | None = Query(default=None),
    lon: float | None = Query(default=None),
    max_km: float | None = Query(default=None, gt=0),
    limit: int | None = Query(default=None, ge=1, le=200),
) -> NearbyStoresResponse:
    """Rank stores by distance; without a position, return them unranked."""
    settings = get_settings()
    user_location = _user_location(lat, lon)

    stores = _STORES_ADAPTER.validate_python(await _store().list_all(STORES))
    ranked = rank_by_distance(
        user_location,
        stores,
        max_distance_km=max_km if max_km is not None else settings.ranking.max_distance_km,
        limit=limit or settings.ranking.nearby_limit,
    )
    return NearbyStoresResponse(
        ranked=user_location is not None,
        results=[
            NearbyStore(store=r.entity, distance_km=r.distance_km, formatted_distance=r.formatted_distance)
            for r in ranked
        ],
    )


@router.get("/api/items/search", response_model=list[ItemHit])
async def get_item_search(
    q: str = Query(..., min_length=1),
    lat: float | None = Query(default=None),
    lon: float | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=200),
) -> list[ItemHit]:
    user_location = _user_location(lat, lon)
    store = _store()
    stores = {s.id: s for s in _STORES_ADAPTER.validate_python(await store.list_all(STORES))}
    items = _ITEMS_ADAPTER.validate_python(await store.list_all(ITEMS))
    return [
        ItemHit(
            item=r.entity,
            store=stores[r.entity.store_id],
            distance_km=r.distance_km,
            formatted_distance=r.formatted_distance,
        )
        for r in search_items(q, user_location, items, stores, limit=limit)
    ]


@router.get("/api/reports/recent", response_model=list[Report])
async def get_recent_reports(
    days: int | None = Query(default=None, ge=1),
    limit: int | None = Query(default=None, ge=1, le=500),
) -> list[Report]:
    aggregator, _ = _services()
    try:
        return await aggregator.get_recent_reports(days, limit)
    except ReportLookupError as e:
        raise HTTPException(status_code=503, detail={"code": "REPORT_LOOKUP_FAILED", "message": str(e)}) from e


@router.post("/api/reports", response_model=IdResponse, status_code=201)
async def post_report(data: CreateReportData) -> IdResponse:
    aggregator, _ = _services()
    try:
        report_id = await aggregator.process_report_and_flag(data)
    except ReportSubmissionError as e:
        raise HTTPException(
            status_code=503, detail={"code": "REPORT_SUBMISSION_FAILED", "message": str(e)}
        ) from e
    return IdResponse(id=report_id)


@router.get("/api/items/{item_id}/reports", response_model=list[Report])
async def get_item_reports(item_id: str) -> list[Report]:
    aggregator, _ = _services()
    try:
        return await aggregator.get_item_reports(item_id)
    except ReportLookupError as e:
        raise HTTPException(status_code=503, detail={"code": "REPORT_LOOKUP_FAILED", "message": str(e)}) from e


@router.get("/api/items/{item_id}/reports/stats", response_model=ReportStats)
async def get_item_report_stats(item_id: str) -> ReportStats:
    aggregator, _ = _services()
    try:
        return await aggregator.get_stats(item_id)
    except ReportLookupError as e:
        raise HTTPException(status_code=503, detail={"code": "REPORT_LOOKUP_FAILED", "message": str(e)}) from e


@router.post("/api/items/verified", response_model=IdResponse, status_code=201)
async def post_verified_item(data: NewItem) -> IdResponse:
    _, engine = _services()
    return IdResponse(id=await engine.create_verified_item(data))


@router.post("/api/items/verify-batch", response_model=BatchVerifyResponse)
async def post_verify_batch(body: BatchVerifyRequest) -> BatchVerifyResponse:
    _, engine = _services()
    result = await engine.batch_verify(body.item_ids)
    return BatchVerifyResponse(
        succeeded=result.succeeded,
        failed={item_id: str(exc) for item_id, exc in result.failed.items()},
    )


@router.post("/api/items/{item_id}/verify", status_code=204)
async def post_verify(item_id: str) -> None:
    _, engine = _services()
    try:
        await engine.verify(item_id)
    except DocumentNotFoundError as e:
        raise _not_found(e) from e


@router.post("/api/items/{item_id}/unverify", status_code=204)
async def post_unverify(item_id: str) -> None:
    _, engine = _services()
    try:
        await engine.unverify(item_id)
    except DocumentNotFoundError as e:
        raise _not_found(e) from e


@router.post("/api/items/{item_id}/refresh", status_code=204)
async def post_refresh(item_id: str) -> None:
    _, engine = _services()
    try:
        await engine.refresh(item_id)
    except DocumentNotFoundError as e:
        raise _not_found(e) from e


@router.get("/api/items/{item_id}/verification")
async def get_verification(item_id: str) -> dict[str, Any]:
    _, engine = _services()
    item = await engine.get_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": f"items/{item_id} not found"})
    status = VerificationStatus(verified=item.verified, verified_at=item.verified_at, updated_at=item.updated_at)
    return {**status.model_dump(mode="json"), "state": engine.classify(item).value}


@router.get("/api/stores/{store_id}/verification/stats", response_model=VerificationStats)
async def get_verification_stats(store_id: str) -> VerificationStats:
    _, engine = _services()
    return await engine.stats(store_id)


@router.get("/api/stores/{store_id}/verification/needs-review", response_model=list[Item])
async def get_needing_review(store_id: str, threshold: int | None = Query(default=None, ge=1)) -> list[Item]:
    _, engine = _services()
    return await engine.list_needing_review(store_id, threshold)


@router.get("/api/stores/{store_id}/verification/expired", response_model=list[Item])
async def get_expired(store_id: str, max_days: int | None = Query(default=None, ge=1)) -> list[Item]:
    _, engine = _services()
    return await engine.list_expired(store_id, max_days)
