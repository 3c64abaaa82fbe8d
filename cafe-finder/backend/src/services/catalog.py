from __future__ import annotations

import threading
import time
from typing import Dict, List, Optional

from loguru import logger

from models import BoundingBox, Cafe, CafeOverride
from services.aggregation import build_visible_cafe_list, filter_by_query
from services.custom_store import CustomCafeStore
from services.overpass import OverpassClient


class CafeCatalog:
    """In-memory view of every visible cafe, rebuilt on each refresh.

    The spreadsheet store has no push channel; callers refresh explicitly
    after submitting changes.
    """

    def __init__(self, overpass: OverpassClient, store: CustomCafeStore, bbox: Optional[BoundingBox] = None) -> None:
        self.overpass = overpass
        self.store = store
        self.bbox = bbox
        self._lock = threading.Lock()
        self._cafes: Optional[List[Cafe]] = None
        self._overrides: Dict[str, CafeOverride] = {}
        self.refreshed_at: Optional[float] = None

    def refresh(self) -> List[Cafe]:
        open_cafes = self.overpass.fetch_open_cafes(self.bbox)
        custom_cafes = self.store.list_cafes()
        overrides = self.store.list_overrides()
        visible = build_visible_cafe_list(open_cafes, custom_cafes, overrides)
        with self._lock:
            self._cafes = visible
            self._overrides = overrides
            self.refreshed_at = time.time()
        logger.info(
            "catalog refreshed open={} custom={} overrides={} visible={}",
            len(open_cafes),
            len(custom_cafes),
            len(overrides),
            len(visible),
        )
        return list(visible)

    def cafes(self) -> List[Cafe]:
        with self._lock:
            current = self._cafes
        if current is None:
            return self.refresh()
        return list(current)

    def search(self, query: str) -> List[Cafe]:
        return filter_by_query(self.cafes(), query)

    def find(self, cafe_id: str) -> Optional[Cafe]:
        for cafe in self.cafes():
            if cafe.id == cafe_id:
                return cafe
        return None

    def overrides(self) -> Dict[str, CafeOverride]:
        with self._lock:
            return dict(self._overrides)
