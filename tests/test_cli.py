import json
from pathlib import Path

import pytest

from finditfast.cli import main
from finditfast.config.settings import get_settings

SAMPLE = Path(__file__).resolve().parents[1] / "data" / "catalog.sample.json"


@pytest.fixture
def store_path(monkeypatch, tmp_path):
    path = tmp_path / "store.json"
    monkeypatch.setenv("FINDITFAST_STORE_BACKEND", "json")
    monkeypatch.setenv("FINDITFAST_STORE_PATH", str(path))
    monkeypatch.delenv("FINDITFAST_CONFIG_PATH", raising=False)
    get_settings.cache_clear()
    yield path
    get_settings.cache_clear()


def _json_out(capsys):
    return json.loads(capsys.readouterr().out)


def test_import_then_nearby(store_path, capsys):
    assert main(["import-catalog", str(SAMPLE)]) == 0
    assert _json_out(capsys) == {"stores": 3, "items": 3, "skipped": 0}

    assert main(["nearby", "--lat", "52.52", "--lon", "13.405", "--json"]) == 0
    rows = _json_out(capsys)
    assert [r["store"]["id"] for r in rows] == ["store-mitte", "store-kreuzberg", "store-popup"]
    assert rows[0]["formatted_distance"].endswith("km away")
    assert rows[2]["distance_km"] is None


def test_nearby_without_position_falls_back_to_unranked(store_path, capsys):
    main(["import-catalog", str(SAMPLE)])
    capsys.readouterr()

    assert main(["nearby"]) == 0
    out = capsys.readouterr().out
    assert "Location unavailable (POSITION_UNAVAILABLE)" in out
    assert "Corner Market Mitte" in out


def test_locate_reports_error_code_when_no_position_configured(store_path, capsys):
    assert main(["locate", "--json"]) == 1
    payload = _json_out(capsys)
    assert payload["location"] is None
    assert payload["error"]["code"] == "POSITION_UNAVAILABLE"
    assert payload["permission"] == "granted"


def test_report_and_verification_commands(store_path, capsys):
    main(["import-catalog", str(SAMPLE)])
    capsys.readouterr()

    for _ in range(2):
        assert main(["report", "item-tahini", "--store-id", "store-mitte", "--type", "moved"]) == 0
    capsys.readouterr()

    assert main(["report-stats", "item-tahini"]) == 0
    assert _json_out(capsys)["moved"] == 2

    assert main(["verify", "item-tahini"]) == 0
    assert main(["needs-review", "store-mitte", "--json"]) == 0
    assert [i["id"] for i in _json_out(capsys)] == ["item-tahini"]

    assert main(["verification-stats", "store-mitte"]) == 0
    assert _json_out(capsys) == {"total": 2, "verified": 2, "unverified": 0, "needs_review": 1}


def test_verify_unknown_item_exits_with_not_found(store_path, capsys):
    assert main(["verify", "ghost"]) == 2
    assert "items/ghost not found" in capsys.readouterr().out


def test_verify_batch_partial_failure_exit_code(store_path, capsys):
    main(["import-catalog", str(SAMPLE)])
    capsys.readouterr()

    assert main(["verify-batch", "item-tahini", "ghost"]) == 1
    payload = _json_out(capsys)
    assert payload["succeeded"] == ["item-tahini"]
    assert list(payload["failed"]) == ["ghost"]


def test_search_lists_trusted_items_first(store_path, capsys):
    main(["import-catalog", str(SAMPLE)])
    capsys.readouterr()

    assert main(["search", "s", "--lat", "52.52", "--lon", "13.405", "--json"]) == 0
    hits = _json_out(capsys)
    assert [h["item"]["id"] for h in hits] == ["item-sumac"]
    assert hits[0]["store"] == "Oranien Grocer"


def test_recent_reports_and_log_level_flag(store_path, capsys):
    main(["import-catalog", str(SAMPLE)])
    main(["report", "item-oat-milk", "--store-id", "store-mitte", "--type", "confirm"])
    capsys.readouterr()

    assert main(["--log-level", "DEBUG", "recent-reports", "--json"]) == 0
    reports = _json_out(capsys)
    assert [r["item_id"] for r in reports] == ["item-oat-milk"]
    assert reports[0]["type"] == "confirm"
