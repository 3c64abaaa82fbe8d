from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

import main
from config import Configuration
from models import BulkAddResult, Cafe, Coordinate, Route
from services.custom_store import CustomStoreError


@pytest.fixture
def ctx(tmp_path):
    cfg = Configuration(
        search_debounce_ms=0,
        geocode_pause_ms=0,
        visit_fallback_path=str(tmp_path / "visits.json"),
        favorites_path=str(tmp_path / "fav.json"),
    )
    context = main.build_context(cfg)
    context.overpass = MagicMock()
    context.overpass.fetch_open_cafes.return_value = [
        Cafe(id="1", name="Kopi Kenangan", lat=-7.2575, lon=112.7521),
        Cafe(id="2", name="Starbucks", lat=-7.35, lon=112.85),
    ]
    context.catalog.overpass = context.overpass
    context.store = MagicMock()
    context.store.enabled = True
    context.store.list_cafes.return_value = []
    context.store.list_overrides.return_value = {}
    context.catalog.store = context.store
    context.geocoder = MagicMock()
    context.router = MagicMock()
    main.app.dependency_overrides[main.get_context] = lambda: context
    yield context
    main.app.dependency_overrides.clear()


@pytest.fixture
def client(ctx):
    return TestClient(main.app)


def test_session_header_is_issued_and_kept(client) -> None:
    resp = client.get("/cafes")
    sid = resp.headers["X-Session-Id"]
    assert sid
    resp = client.get("/cafes", headers={"X-Session-Id": sid})
    assert resp.headers["X-Session-Id"] == sid


def test_list_cafes_with_query_and_distance(client) -> None:
    body = client.get("/cafes").json()
    assert body["count"] == 2
    assert body["cafes"][0]["isCustom"] is False

    body = client.get("/cafes", params={"lat": -7.2575, "lon": 112.7521, "distance_km": 1}).json()
    assert [c["id"] for c in body["cafes"]] == ["1"]

    body = client.get("/cafes", params={"q": "star"}).json()
    assert [c["id"] for c in body["cafes"]] == ["2"]


def test_cafe_detail_and_404(client) -> None:
    assert client.get("/cafes/1").json()["name"] == "Kopi Kenangan"
    assert client.get("/cafes/nope").status_code == 404


def test_search(client) -> None:
    body = client.get("/search", params={"q": "kopi"}).json()
    assert body["superseded"] is False
    assert [c["id"] for c in body["cafes"]] == ["1"]


def test_geocode_miss_is_404(client, ctx) -> None:
    ctx.geocoder.geocode.return_value = None
    assert client.get("/geocode", params={"q": "nowhere"}).status_code == 404
    ctx.geocoder.geocode.return_value = Coordinate(lat=-7.26, lon=112.74)
    assert client.get("/geocode", params={"q": "Tunjungan"}).json() == {"lat": -7.26, "lon": 112.74}


def test_route_then_failure_clears(client, ctx) -> None:
    headers = {"X-Session-Id": "route-sess"}
    ctx.router.get_route.return_value = Route(points=[(-7.2575, 112.7521)], distance_km=1.26, duration_min=4.2)
    body = client.post(
        "/route", json={"dest_lat": -7.26, "dest_lon": 112.74, "origin_lat": -7.25, "origin_lon": 112.75}, headers=headers
    ).json()
    assert body["route"]["distanceKm"] == 1.26
    assert body["info"] == "1.3 km, 4 min"

    ctx.router.get_route.return_value = None
    body = client.post("/route", json={"dest_lat": -7.26, "dest_lon": 112.74}, headers=headers).json()
    assert body == {"route": None, "info": "no route", "superseded": False}


def test_store_errors_map_to_status(client, ctx) -> None:
    ctx.store.add.side_effect = CustomStoreError("Unauthorized")
    resp = client.post("/custom-cafes", json={"name": "Kopi", "lat": -7.2, "lon": 112.7})
    assert resp.status_code == 502

    disabled = main.build_context(Configuration()).store
    ctx.store.add.side_effect = disabled.add
    resp = client.post("/custom-cafes", json={"name": "Kopi", "lat": -7.2, "lon": 112.7})
    assert resp.status_code == 503


def test_update_requires_fields(client, ctx) -> None:
    assert client.patch("/custom-cafes/custom_1", json={}).status_code == 400
    assert client.patch("/custom-cafes/custom_1", json={"phone": ""}).status_code == 200
    changes = ctx.store.update.call_args.args[1]
    assert changes.model_fields_set == {"phone"}


def test_blank_report_rejected(client, ctx) -> None:
    resp = client.post("/reports", json={"cafe_id": "1", "cafe_name": "Kopi", "description": "   "})
    assert resp.status_code == 400
    ctx.store.submit_issue_report.assert_not_called()
    resp = client.post("/reports", json={"cafe_id": "1", "cafe_name": "Kopi", "issue_type": "closed", "description": "tutup"})
    assert resp.json() == {"submitted": True}


def test_override_keeps_sparse_fields(client, ctx) -> None:
    resp = client.post("/overrides", json={"originalId": "1", "originalName": "Kopi Kenangan", "phone": "0812"})
    assert resp.status_code == 200
    override = ctx.store.save_override.call_args.args[0]
    assert override.model_fields_set == {"original_id", "original_name", "phone"}


def test_visits_counted_once_per_session(client) -> None:
    headers = {"X-Session-Id": "visitor"}
    client.post("/visits", headers=headers)
    body = client.post("/visits", headers=headers).json()
    assert body == {"today": 1, "total": 1}
    body = client.post("/visits", headers={"X-Session-Id": "other"}).json()
    assert body["total"] == 2


def test_favorites(client) -> None:
    assert client.post("/favorites/1").json()["favorite"] is True
    assert [f["id"] for f in client.get("/favorites").json()["favorites"]] == ["1"]
    client.delete("/favorites/1")
    assert client.get("/favorites").json()["favorites"] == []
    assert client.post("/favorites/missing").status_code == 404


def test_map_config(client) -> None:
    body = client.get("/map-config").json()
    assert body["center"] == {"lat": pytest.approx(-7.25), "lon": pytest.approx(112.75)}
    assert body["distancePresetsKm"] == [0.5, 1.0, 2.0, 5.0, 10.0]


def test_refresh_and_cleanup(client, ctx) -> None:
    assert client.post("/cafes/refresh").json()["count"] == 2
    assert client.post("/visits/cleanup", params={"days_to_keep": 0}).status_code == 400
    assert client.post("/visits/cleanup").json() == {"removed": 0}


def test_bulk_migration_prefills_missing_addresses(client, ctx) -> None:
    ctx.geocoder.reverse_geocode.side_effect = ["Jl. Pemuda, Surabaya", None]
    ctx.store.bulk_add.return_value = BulkAddResult(added=2, skipped=0, total=2)

    body = client.post("/custom-cafes/bulk", json={}).json()

    assert body == {"added": 2, "skipped": 0, "total": 2}
    sent = ctx.store.bulk_add.call_args.args[0]
    assert [c.address for c in sent] == ["Jl. Pemuda, Surabaya", ""]
    assert ctx.geocoder.reverse_geocode.call_count == 2


def test_bulk_with_given_cafes_skips_geocoding(client, ctx) -> None:
    ctx.store.bulk_add.return_value = BulkAddResult(added=1, skipped=0, total=1)
    client.post("/custom-cafes/bulk", json={"cafes": [{"id": "9", "name": "X", "lat": -7.2, "lon": 112.7}]})
    ctx.geocoder.reverse_geocode.assert_not_called()
    ctx.overpass.fetch_open_cafes.assert_not_called()


def test_cafes_carry_distance_text(client) -> None:
    body = client.get("/cafes", params={"lat": -7.2575, "lon": 112.7521}).json()
    near = next(c for c in body["cafes"] if c["id"] == "1")
    assert near["distanceText"] == "0 m"
    far = next(c for c in body["cafes"] if c["id"] == "2")
    assert far["distanceText"].endswith(" km")
    assert "distanceText" not in client.get("/cafes").json()["cafes"][0]


def test_toggle_favorite(client) -> None:
    assert client.post("/favorites/1/toggle").json()["favorite"] is True
    assert client.post("/favorites/1/toggle").json()["favorite"] is False
    assert client.post("/favorites/missing/toggle").status_code == 404


def test_reset_session_forgets_visit(client) -> None:
    headers = {"X-Session-Id": "again"}
    client.post("/visits", headers=headers)
    assert client.delete("/session", headers=headers).json() == {"reset": True}
    assert client.post("/visits", headers=headers).json()["total"] == 2
