"""
Proximity ranking.

Annotates located entities (stores, or items through their store) with their distance to
the user and sorts them nearest-first. Everything here is a pure function of its inputs:
the input sequence is never mutated and each call returns a fresh list, so callers can
simply re-rank whenever the user position changes.

When the user position is unknown, ranking degrades to "no ranking": every entity is
returned unannotated, in its original order.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cmp_to_key
from typing import Callable, Generic, Iterable, Mapping, TypeVar

from finditfast.core.geo import HasLatLon, distance_km, format_distance
from finditfast.domain.models import Item, Location, Store

T = TypeVar("T")


@dataclass(frozen=True)
class RankedEntity(Generic[T]):
    """An entity plus its distance annotation (None when unknown)."""

    entity: T
    distance_km: float | None = None
    formatted_distance: str | None = None

    @property
    def annotated(self) -> bool:
        return self.distance_km is not None


def _default_location(entity: object) -> HasLatLon | None:
    return getattr(entity, "location", None)


def rank_by_distance(
    user_location: HasLatLon | None,
    entities: Iterable[T],
    *,
    get_location: Callable[[T], HasLatLon | None] = _default_location,
    max_distance_km: float | None = None,
    limit: int | None = None,
) -> list[RankedEntity[T]]:
    """Return entities sorted by ascending distance from `user_location`.

    Equal distances keep their input order. Entities without a location follow the
    located ones, unannotated and in input order. `max_distance_km` drops located entities
    beyond the radius; `limit` truncates the final list.
    """
    items = list(entities)
    if user_location is None:
        return [RankedEntity(entity=e) for e in items[:limit]]

    located: list[RankedEntity[T]] = []
    unlocated: list[RankedEntity[T]] = []
    for entity in items:
        where = get_location(entity)
        if where is None:
            unlocated.append(RankedEntity(entity=entity))
            continue
        d = distance_km(user_location, where)
        if max_distance_km is not None and d > max_distance_km:
            continue
        located.append(RankedEntity(entity=entity, distance_km=d, formatted_distance=format_distance(d)))

    # `sorted` is stable, which gives the input-order tie-break.
    ranked = sorted(located, key=lambda r: r.distance_km) + unlocated
    return ranked[:limit] if limit is not None else ranked


def _compare_trust(a: RankedEntity[Item], b: RankedEntity[Item]) -> int:
    x, y = a.entity, b.entity
    if x.verified != y.verified:
        return -1 if x.verified else 1
    if x.report_count != y.report_count:
        return x.report_count - y.report_count
    # Distance only decides when both sides have one.
    if a.distance_km is not None and b.distance_km is not None and a.distance_km != b.distance_km:
        return -1 if a.distance_km < b.distance_km else 1
    if x.verified and y.verified:
        x_at = x.verified_at.timestamp() if x.verified_at else 0.0
        y_at = y.verified_at.timestamp() if y.verified_at else 0.0
        if x_at != y_at:
            return -1 if x_at > y_at else 1
    x_name, y_name = x.name.casefold(), y.name.casefold()
    return (x_name > y_name) - (x_name < y_name)


def rank_items_by_trust(
    user_location: Location | None,
    items: Iterable[Item],
    stores_by_id: Mapping[str, Store],
) -> list[RankedEntity[Item]]:
    """Order search hits the way shoppers see them.

    Verified items first, then fewer negative reports, then nearer store (only when both
    distances are known), then most recently verified, then by name.
    """

    def store_location(item: Item) -> Location | None:
        store = stores_by_id.get(item.store_id)
        return store.location if store else None

    annotated = rank_by_distance(user_location, items, get_location=store_location)
    return sorted(annotated, key=cmp_to_key(_compare_trust))


def search_items(
    query: str,
    user_location: Location | None,
    items: Iterable[Item],
    stores_by_id: Mapping[str, Store],
    *,
    limit: int | None = None,
) -> list[RankedEntity[Item]]:
    """Items whose name starts with `query` (case-insensitive), ranked by trust.

    A blank query matches nothing. Items whose store is unknown are dropped.
    """
    needle = query.strip().casefold()
    if not needle:
        return []
    hits = [i for i in items if i.store_id in stores_by_id and i.name.casefold().startswith(needle)]
    ranked = rank_items_by_trust(user_location, hits, stores_by_id)
    return ranked[:limit] if limit is not None else ranked
