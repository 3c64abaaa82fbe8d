from __future__ import annotations

import asyncio
import time

from models import Cafe
from services.search import LatestSearch


def _slow_search(delays: dict):
    def search(query: str):
        time.sleep(delays.get(query, 0))
        return [Cafe(id=query, name=query, lat=0, lon=0)]

    return search


def test_late_response_of_older_query_is_discarded() -> None:
    # "A" is slow to answer, "AB" is typed 100ms later and answers first
    search = LatestSearch(_slow_search({"A": 0.3, "AB": 0.0}), debounce_ms=0)

    async def scenario():
        first = asyncio.create_task(search.submit("A"))
        await asyncio.sleep(0.1)
        second = asyncio.create_task(search.submit("AB"))
        return await first, await second

    first, second = asyncio.run(scenario())

    assert first is None
    assert [c.id for c in second] == ["AB"]
    assert search.latest_query == "AB"
    assert [c.id for c in search.latest_results] == ["AB"]


def test_debounce_skips_superseded_query() -> None:
    calls = []

    def search_fn(query: str):
        calls.append(query)
        return []

    search = LatestSearch(search_fn, debounce_ms=200)

    async def scenario():
        first = asyncio.create_task(search.submit("k"))
        await asyncio.sleep(0.05)
        second = asyncio.create_task(search.submit("kopi"))
        return await first, await second

    first, second = asyncio.run(scenario())

    assert first is None
    assert second == []
    assert calls == ["kopi"]
    assert search.seq == 2


def test_single_query_applies() -> None:
    search = LatestSearch(_slow_search({}), debounce_ms=0)
    results = asyncio.run(search.submit("x"))
    assert [c.id for c in results] == ["x"]
