from __future__ import annotations

import asyncio
import time
from unittest.mock import MagicMock

import pytest

from models import Coordinate, Route
from services.session import NO_ROUTE, SessionManager


def _mgr(ttl_sec: int = 1000) -> SessionManager:
    return SessionManager(lambda q: [], debounce_ms=0, ttl_sec=ttl_sec)


def test_get_creates_once() -> None:
    mgr = _mgr()
    first = mgr.get("sess-1")
    first.search_text = "kopi"
    assert mgr.get("sess-1") is first
    assert mgr.get("sess-2") is not first


def test_empty_id_rejected() -> None:
    with pytest.raises(ValueError):
        _mgr().get("")


def test_reset_clears_state() -> None:
    mgr = _mgr()
    mgr.get("sess-2").search_text = "hello"
    mgr.reset("sess-2")
    assert mgr.get("sess-2").search_text == ""


def test_cleanup_by_ttl() -> None:
    mgr = _mgr(ttl_sec=1)
    mgr.get("sess-ttl").visit.visited = True
    assert "sess-ttl" in mgr._sessions  # type: ignore[attr-defined]

    # force timestamp to be stale
    mgr._last_access["sess-ttl"] = time.time() - 10  # type: ignore[attr-defined]
    mgr.get("other")
    assert "sess-ttl" not in mgr._sessions  # type: ignore[attr-defined]
    assert mgr.get("sess-ttl").visit.visited is False


def test_failed_route_replaces_previous_one() -> None:
    session = _mgr().get("s")
    router = MagicMock()
    router.get_route.return_value = Route(points=[(0.0, 0.0), (1.0, 1.0)], distance_km=2.34, duration_min=7.6)
    origin = Coordinate(lat=-7.26, lon=112.75)
    dest = Coordinate(lat=-7.25, lon=112.74)

    session.request_route(router, dest, origin)
    assert session.route_info == "2.3 km, 8 min"

    router.get_route.return_value = None
    assert session.request_route(router, dest, origin) is None
    assert session.route is None
    assert session.route_info == NO_ROUTE


def test_route_uses_user_location_and_needs_one() -> None:
    session = _mgr().get("s")
    router = MagicMock()
    assert session.request_route(router, Coordinate(lat=0, lon=0)) is None
    router.get_route.assert_not_called()

    session.user_location = Coordinate(lat=-7.26, lon=112.75)
    session.request_route(router, Coordinate(lat=0, lon=0))
    router.get_route.assert_called_once_with(session.user_location, Coordinate(lat=0, lon=0))


def test_cancel_route() -> None:
    session = _mgr().get("s")
    session.route = Route(points=[], distance_km=1.0, duration_min=2.0)
    session.cancel_route()
    assert session.route_info == NO_ROUTE


def test_late_route_for_replaced_destination_is_dropped() -> None:
    session = _mgr().get("s")
    origin = Coordinate(lat=-7.30, lon=112.75)
    dest_a = Coordinate(lat=-7.26, lon=112.74)
    dest_b = Coordinate(lat=-7.25, lon=112.73)

    def get_route(start, end):
        if end == dest_a:
            time.sleep(0.3)
            return Route(points=[], distance_km=1.0, duration_min=3.0)
        return Route(points=[], distance_km=2.0, duration_min=5.0)

    router = MagicMock()
    router.get_route.side_effect = get_route

    async def scenario():
        first = asyncio.create_task(asyncio.to_thread(session.request_route, router, dest_a, origin))
        await asyncio.sleep(0.1)
        second = await asyncio.to_thread(session.request_route, router, dest_b, origin)
        return await first, second

    first, second = asyncio.run(scenario())

    assert first is None
    assert second is not None and second.distance_km == 2.0
    assert session.route is second
    assert session.route_info == "2.0 km, 5 min"


def test_cancel_discards_route_in_flight() -> None:
    session = _mgr().get("s")
    router = MagicMock()

    def get_route(start, end):
        session.cancel_route()
        return Route(points=[], distance_km=1.0, duration_min=2.0)

    router.get_route.side_effect = get_route
    assert session.request_route(router, Coordinate(lat=0, lon=0), Coordinate(lat=1, lon=1)) is None
    assert session.route_info == NO_ROUTE
