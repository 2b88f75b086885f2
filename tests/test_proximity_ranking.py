from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from finditfast.domain.models import Item, ItemPosition, Location, Store
from finditfast.ranking.proximity import rank_by_distance, rank_items_by_trust, search_items

USER = Location(latitude=0.0, longitude=0.0)
# One degree of latitude is ~111.19 km on the 6371 km sphere.
KM_PER_DEG = 111.19492664455873


@dataclass(frozen=True)
class Place:
    name: str
    location: Location | None


def _north(km: float) -> Location:
    return Location(latitude=km / KM_PER_DEG, longitude=0.0)


def test_rank_without_user_location_keeps_order_and_skips_annotation():
    entities = [Place("a", _north(5)), Place("b", _north(1)), Place("c", None)]

    ranked = rank_by_distance(None, entities)

    assert [r.entity for r in ranked] == entities
    assert not any(r.annotated for r in ranked)
    assert all(r.formatted_distance is None for r in ranked)


def test_rank_sorts_ascending_with_stable_ties():
    a = Place("A", _north(5))
    b = Place("B", _north(1.5))
    c = Place("C", _north(1.5))

    ranked = rank_by_distance(USER, [a, b, c])

    assert [r.entity.name for r in ranked] == ["B", "C", "A"]
    assert ranked[0].distance_km == pytest.approx(1.5, rel=1e-6)
    assert ranked[0].formatted_distance == "1.5km away"
    assert ranked[2].formatted_distance == "5.0km away"


def test_rank_does_not_mutate_input_and_is_repeatable():
    entities = [Place("far", _north(8)), Place("near", _north(0.3))]
    snapshot = list(entities)

    first = rank_by_distance(USER, entities)
    second = rank_by_distance(USER, entities)

    assert entities == snapshot
    assert first == second
    assert first is not second


def test_rank_puts_unlocated_entities_last_in_input_order():
    entities = [Place("x", None), Place("far", _north(3)), Place("y", None), Place("near", _north(2))]

    ranked = rank_by_distance(USER, entities)

    assert [r.entity.name for r in ranked] == ["near", "far", "x", "y"]
    assert ranked[2].distance_km is None
    assert ranked[1].annotated and not ranked[2].annotated


def test_rank_applies_radius_and_limit():
    entities = [Place(str(km), _north(km)) for km in (12, 1, 4, 7)]

    ranked = rank_by_distance(USER, entities, max_distance_km=8, limit=2)

    assert [r.entity.name for r in ranked] == ["1", "4"]


def test_rank_accepts_custom_location_getter():
    rows = [{"id": "s1", "pos": _north(2)}, {"id": "s2", "pos": _north(1)}]

    ranked = rank_by_distance(USER, rows, get_location=lambda row: row["pos"])

    assert [r.entity["id"] for r in ranked] == ["s2", "s1"]


def _item(item_id: str, store_id: str, *, verified: bool, reports: int = 0, verified_days_ago: int | None = None,
          name: str | None = None) -> Item:
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    verified_at = now - timedelta(days=verified_days_ago) if verified_days_ago is not None else None
    return Item(
        id=item_id,
        name=name or item_id,
        store_id=store_id,
        position=ItemPosition(x=0, y=0),
        verified=verified,
        verified_at=verified_at,
        report_count=reports,
        created_at=now,
        updated_at=now,
    )


def test_rank_items_by_trust_orders_verified_then_reports_then_distance():
    stores = {
        "near": Store(id="near", name="Near", location=_north(1.5)),
        "far": Store(id="far", name="Far", location=_north(9)),
    }
    items = [
        _item("unverified-near", "near", verified=False),
        _item("verified-far", "far", verified=True, verified_days_ago=1),
        _item("verified-near-reported", "near", verified=True, reports=2, verified_days_ago=1),
        _item("verified-near", "near", verified=True, verified_days_ago=1),
    ]

    ranked = rank_items_by_trust(USER, items, stores)

    assert [r.entity.id for r in ranked] == [
        "verified-near",
        "verified-far",
        "verified-near-reported",
        "unverified-near",
    ]
    assert ranked[0].formatted_distance == "1.5km away"


def test_rank_items_by_trust_prefers_recent_verification_without_location():
    items = [
        _item("old", "s", verified=True, verified_days_ago=20),
        _item("fresh", "s", verified=True, verified_days_ago=2),
    ]

    ranked = rank_items_by_trust(None, items, {})

    assert [r.entity.id for r in ranked] == ["fresh", "old"]


def test_rank_without_user_location_still_honours_limit():
    entities = [Place("a", _north(3)), Place("b", None), Place("c", _north(1))]

    ranked = rank_by_distance(None, entities, limit=2)

    assert [r.entity.name for r in ranked] == ["a", "b"]
    assert not any(r.annotated for r in ranked)


def test_rank_items_by_trust_skips_distance_when_only_one_side_has_it():
    stores = {"near": Store(id="near", name="Near", location=_north(1.5)), "popup": Store(id="popup", name="Pop-up")}
    items = [
        _item("located-older", "near", verified=True, verified_days_ago=10),
        _item("unlocated-fresher", "popup", verified=True, verified_days_ago=1),
    ]

    ranked = rank_items_by_trust(USER, items, stores)

    assert [r.entity.id for r in ranked] == ["unlocated-fresher", "located-older"]


def test_rank_items_by_trust_falls_back_to_name():
    items = [
        _item("i1", "s", verified=False, name="walnuts"),
        _item("i2", "s", verified=False, name="Almonds"),
        _item("i3", "s", verified=False, name="cashews"),
    ]

    ranked = rank_items_by_trust(None, items, {})

    assert [r.entity.name for r in ranked] == ["Almonds", "cashews", "walnuts"]


def test_search_items_matches_name_prefix_and_drops_unknown_stores():
    stores = {"near": Store(id="near", name="Near", location=_north(1.5))}
    items = [
        _item("oat-milk", "near", verified=False, name="Oat milk"),
        _item("oats", "near", verified=True, verified_days_ago=3, name="Oats"),
        _item("orphan", "gone", verified=True, verified_days_ago=3, name="Oat bran"),
        _item("goat-cheese", "near", verified=True, verified_days_ago=3, name="Goat cheese"),
    ]

    ranked = search_items("  OAT ", USER, items, stores)

    assert [r.entity.id for r in ranked] == ["oats", "oat-milk"]
    assert ranked[0].formatted_distance == "1.5km away"
    assert search_items("   ", USER, items, stores) == []
    assert len(search_items("oat", None, items, stores, limit=1)) == 1
