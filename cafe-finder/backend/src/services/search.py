from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

from loguru import logger

from models import Cafe


class LatestSearch:
    """Debounced search where only the most recently issued query may publish results.

    Each ``submit`` takes a sequence number. A query that is overtaken during the
    debounce window never runs; one whose response arrives after a newer query was
    issued is dropped instead of overwriting fresher results.
    """

    def __init__(self, search_fn: Callable[[str], List[Cafe]], debounce_ms: int = 400) -> None:
        self.search_fn = search_fn
        self.debounce_ms = debounce_ms
        self._seq = 0
        self.latest_query: Optional[str] = None
        self.latest_results: List[Cafe] = []

    @property
    def seq(self) -> int:
        return self._seq

    async def submit(self, query: str) -> Optional[List[Cafe]]:
        """Returns the applied results, or ``None`` when the query was superseded."""
        self._seq += 1
        seq = self._seq
        if self.debounce_ms > 0:
            await asyncio.sleep(self.debounce_ms / 1000.0)
            if seq != self._seq:
                logger.debug("search {!r} superseded while debouncing", query)
                return None

        results = await asyncio.to_thread(self.search_fn, query)

        if seq != self._seq:
            logger.debug("discarding stale results for {!r} (seq {} < {})", query, seq, self._seq)
            return None
        self.latest_query = query
        self.latest_results = results
        return results
