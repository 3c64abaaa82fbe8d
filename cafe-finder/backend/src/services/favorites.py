from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import Any, Dict, List

from loguru import logger

from models import Cafe


class FavoritesStore:
    """Bookmarked cafes kept in a JSON file, one entry per cafe id."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> List[Dict[str, Any]]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as exc:
            logger.error("favorites unreadable: {}", exc)
            return []
        return data if isinstance(data, list) else []

    def _save(self, entries: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(entries, ensure_ascii=False), encoding="utf-8")

    def list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self._load()

    def is_favorite(self, cafe_id: str) -> bool:
        return any(entry.get("id") == cafe_id for entry in self.list())

    def add(self, cafe: Cafe) -> None:
        with self._lock:
            entries = self._load()
            if any(entry.get("id") == cafe.id for entry in entries):
                return
            entry = cafe.to_wire()
            entry["addedAt"] = int(time.time() * 1000)
            entries.append(entry)
            self._save(entries)

    def remove(self, cafe_id: str) -> None:
        with self._lock:
            entries = self._load()
            kept = [entry for entry in entries if entry.get("id") != cafe_id]
            if len(kept) != len(entries):
                self._save(kept)

    def toggle(self, cafe: Cafe) -> bool:
        """Returns True when the cafe is now a favorite."""
        if self.is_favorite(cafe.id):
            self.remove(cafe.id)
            return False
        self.add(cafe)
        return True
