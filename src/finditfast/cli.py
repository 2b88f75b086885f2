"""
FindItFast CLI entrypoint.

This CLI is intended for local demos, store-owner maintenance and debugging without a UI.
It works against the configured document store (see `storage` in defaults.yaml) and
delegates all logic to the ranking, report and verification modules.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any

from pydantic import TypeAdapter

from finditfast.catalog.loader import import_catalog, load_catalog
from finditfast.config.settings import Settings, get_settings
from finditfast.core.logging import configure_logging
from finditfast.domain.errors import DocumentNotFoundError, FinditfastError
from finditfast.domain.models import CreateReportData, Item, Location, Report, ReportType, Store
from finditfast.location.provider import build_location_provider
from finditfast.ranking.proximity import rank_by_distance, search_items
from finditfast.reports.aggregator import ReportAggregator
from finditfast.storage.documents import ITEMS, STORES, DocumentStore, build_store
from finditfast.verification.engine import VerificationEngine

_STORES_ADAPTER = TypeAdapter(list[Store])
_ITEMS_ADAPTER = TypeAdapter(list[Item])


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _aggregator(settings: Settings, store: DocumentStore) -> ReportAggregator:
    return ReportAggregator.from_settings(store, settings.reports)


def _engine(settings: Settings, store: DocumentStore) -> VerificationEngine:
    return VerificationEngine.from_settings(store, settings.verification)


def _print_items(items: list[Item], as_json: bool) -> None:
    if as_json:
        _print_json([i.model_dump(mode="json") for i in items])
        return
    for i in items:
        verified_at = i.verified_at.isoformat() if i.verified_at else "-"
        print(f"{i.id}  {i.name}  reports={i.report_count}  verified_at={verified_at}")


async def _locate(settings: Settings, args: argparse.Namespace) -> int:
    provider = build_location_provider(settings.location)
    permission = await provider.check_permission()
    result = await provider.request_location()
    if args.json:
        _print_json(
            {
                "permission_before": permission.value,
                "permission": provider.permission.value,
                "location": result.location.model_dump() if result.location else None,
                "error": {"code": result.error.code.value, "message": result.error.message} if result.error else None,
            }
        )
    elif result.location is not None:
        print(f"{result.location.latitude:.6f},{result.location.longitude:.6f}")
    else:
        print(f"{result.error.code.value}: {result.error.message}")
    return 0 if result.success else 1


async def _nearby(settings: Settings, args: argparse.Namespace) -> int:
    store = build_store(settings)
    if args.lat is not None and args.lon is not None:
        user_location = Location(latitude=args.lat, longitude=args.lon)
    else:
        result = await build_location_provider(settings.location).request_location()
        user_location = result.location
        if result.error:
            print(f"Location unavailable ({result.error.code.value}); showing stores unranked.")

    stores = _STORES_ADAPTER.validate_python(await store.list_all(STORES))
    ranked = rank_by_distance(
        user_location,
        stores,
        max_distance_km=args.max_km if args.max_km is not None else settings.ranking.max_distance_km,
        limit=args.limit or settings.ranking.nearby_limit,
    )
    if args.json:
        _print_json(
            [
                {"store": r.entity.model_dump(mode="json"), "distance_km": r.distance_km,
                 "formatted_distance": r.formatted_distance}
                for r in ranked
            ]
        )
        return 0
    for i, r in enumerate(ranked, start=1):
        suffix = f"  {r.formatted_distance}" if r.formatted_distance else ""
        print(f"{i:>2}. {r.entity.name} ({r.entity.address or r.entity.id}){suffix}")
    return 0


async def _search(settings: Settings, args: argparse.Namespace) -> int:
    store = build_store(settings)
    user_location = None
    if args.lat is not None and args.lon is not None:
        user_location = Location(latitude=args.lat, longitude=args.lon)
    stores = {s.id: s for s in _STORES_ADAPTER.validate_python(await store.list_all(STORES))}
    items = _ITEMS_ADAPTER.validate_python(await store.list_all(ITEMS))
    ranked = search_items(args.query, user_location, items, stores, limit=args.limit)
    if args.json:
        _print_json(
            [
                {"item": r.entity.model_dump(mode="json"), "store": stores[r.entity.store_id].name,
                 "distance_km": r.distance_km, "formatted_distance": r.formatted_distance}
                for r in ranked
            ]
        )
        return 0
    for r in ranked:
        mark = "verified" if r.entity.verified else "unverified"
        suffix = f"  {r.formatted_distance}" if r.formatted_distance else ""
        print(f"{r.entity.name} @ {stores[r.entity.store_id].name}  [{mark}, reports={r.entity.report_count}]{suffix}")
    return 0


async def _report(settings: Settings, args: argparse.Namespace) -> int:
    location = None
    if args.lat is not None and args.lon is not None:
        location = Location(latitude=args.lat, longitude=args.lon)
    data = CreateReportData(
        item_id=args.item_id,
        store_id=args.store_id,
        type=ReportType(args.type),
        comment=args.comment,
        user_id=args.user_id,
        location=location,
    )
    report_id = await _aggregator(settings, build_store(settings)).process_report_and_flag(data)
    print(report_id)
    return 0


async def _report_stats(settings: Settings, args: argparse.Namespace) -> int:
    stats = await _aggregator(settings, build_store(settings)).get_stats(args.item_id)
    _print_json(stats.model_dump())
    return 0


async def _recent_reports(settings: Settings, args: argparse.Namespace) -> int:
    reports: list[Report] = await _aggregator(settings, build_store(settings)).get_recent_reports(args.days, args.limit)
    if args.json:
        _print_json([r.model_dump(mode="json") for r in reports])
        return 0
    for r in reports:
        print(f"{r.timestamp.isoformat()}  {r.type.value:<8} item={r.item_id} store={r.store_id}")
    return 0


async def _verify(settings: Settings, args: argparse.Namespace) -> int:
    engine = _engine(settings, build_store(settings))
    action = {"verify": engine.verify, "unverify": engine.unverify, "refresh": engine.refresh}[args.command]
    await action(args.item_id)
    return 0


async def _verify_batch(settings: Settings, args: argparse.Namespace) -> int:
    result = await _engine(settings, build_store(settings)).batch_verify(args.item_ids)
    _print_json({"succeeded": result.succeeded, "failed": {k: str(v) for k, v in result.failed.items()}})
    return 0 if result.all_succeeded else 1


async def _verification_stats(settings: Settings, args: argparse.Namespace) -> int:
    stats = await _engine(settings, build_store(settings)).stats(args.store_id)
    _print_json(stats.model_dump())
    return 0


async def _needs_review(settings: Settings, args: argparse.Namespace) -> int:
    items = await _engine(settings, build_store(settings)).list_needing_review(args.store_id, args.threshold)
    _print_items(items, args.json)
    return 0


async def _expired(settings: Settings, args: argparse.Namespace) -> int:
    items = await _engine(settings, build_store(settings)).list_expired(args.store_id, args.max_days)
    _print_items(items, args.json)
    return 0


async def _import_catalog(settings: Settings, args: argparse.Namespace) -> int:
    counts = await import_catalog(build_store(settings), load_catalog(args.path))
    _print_json(counts)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the FindItFast CLI."""
    parser = argparse.ArgumentParser(prog="finditfast")
    parser.add_argument("--log-level", dest="log_level", default=None, help="Override app.log_level (e.g. DEBUG)")
    sub = parser.add_subparsers(dest="command", required=True)

    loc = sub.add_parser("locate", help="Request the current position from the configured platform.")
    loc.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    loc.set_defaults(func=_locate)

    near = sub.add_parser("nearby", help="List stores nearest first.")
    near.add_argument("--lat", type=float, default=None)
    near.add_argument("--lon", type=float, default=None)
    near.add_argument("--max-km", dest="max_km", type=float, default=None)
    near.add_argument("--limit", type=int, default=None)
    near.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    near.set_defaults(func=_nearby)

    se = sub.add_parser("search", help="Find items by name prefix, most trustworthy first.")
    se.add_argument("query")
    se.add_argument("--lat", type=float, default=None)
    se.add_argument("--lon", type=float, default=None)
    se.add_argument("--limit", type=int, default=20)
    se.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    se.set_defaults(func=_search)

    rep = sub.add_parser("report", help="Submit a crowd report about an item.")
    rep.add_argument("item_id")
    rep.add_argument("--store-id", dest="store_id", required=True)
    rep.add_argument("--type", required=True, choices=[t.value for t in ReportType])
    rep.add_argument("--comment", default=None)
    rep.add_argument("--user-id", dest="user_id", default=None)
    rep.add_argument("--lat", type=float, default=None)
    rep.add_argument("--lon", type=float, default=None)
    rep.set_defaults(func=_report)

    rs = sub.add_parser("report-stats", help="Report counts for an item.")
    rs.add_argument("item_id")
    rs.set_defaults(func=_report_stats)

    rr = sub.add_parser("recent-reports", help="Crowd reports from the last few days, newest first.")
    rr.add_argument("--days", type=int, default=None)
    rr.add_argument("--limit", type=int, default=None)
    rr.add_argument("--json", action="store_true")
    rr.set_defaults(func=_recent_reports)

    for name, help_text in [
        ("verify", "Mark an item as verified."),
        ("unverify", "Mark an item as unverified."),
        ("refresh", "Reset an item's verification expiry clock."),
    ]:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("item_id")
        p.set_defaults(func=_verify)

    vb = sub.add_parser("verify-batch", help="Verify several items; failures are reported per item.")
    vb.add_argument("item_ids", nargs="+")
    vb.set_defaults(func=_verify_batch)

    vs = sub.add_parser("verification-stats", help="Verification counts for a store.")
    vs.add_argument("store_id")
    vs.set_defaults(func=_verification_stats)

    nr = sub.add_parser("needs-review", help="Verified items whose report count reached the threshold.")
    nr.add_argument("store_id")
    nr.add_argument("--threshold", type=int, default=None)
    nr.add_argument("--json", action="store_true")
    nr.set_defaults(func=_needs_review)

    ex = sub.add_parser("expired", help="Verified items whose verification is older than the max age.")
    ex.add_argument("store_id")
    ex.add_argument("--max-days", dest="max_days", type=int, default=None)
    ex.add_argument("--json", action="store_true")
    ex.set_defaults(func=_expired)

    imp = sub.add_parser("import-catalog", help="Seed the document store from a catalog JSON file.")
    imp.add_argument("path")
    imp.set_defaults(func=_import_catalog)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m finditfast.cli`."""
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    settings = get_settings()
    configure_logging(settings, level=args.log_level)
    try:
        return int(asyncio.run(func(settings, args)))
    except DocumentNotFoundError as e:
        print(f"Not found: {e}")
        return 2
    except FinditfastError as e:
        print(str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
