"""Visit counters: a per-day count and an all-time total.

The primary store is a Firebase Realtime Database reached over its REST API.
Increments use the server-side ``increment`` value so concurrent writers never
lose updates. When the database is unreachable the counters go to a local
JSON file instead.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

import requests
from loguru import logger

from config import Configuration
from models import VisitStats
from utils import today_key


StatsCallback = Callable[[VisitStats], None]
Unsubscribe = Callable[[], None]

ROOT_PATH = "visitStats"


class VisitStoreError(RuntimeError):
    pass


@dataclass
class VisitSession:
    """Lifetime of one browser session; a visit is counted at most once per session."""

    visited: bool = False


class VisitStore(Protocol):
    def increment(self, day: str) -> None: ...

    def snapshot(self, day: str) -> VisitStats: ...

    def listen(self, day: str, callback: StatsCallback) -> Unsubscribe: ...

    def delete_days_before(self, cutoff: str) -> int: ...


def stats_from_tree(tree: Any, day: str) -> VisitStats:
    if not isinstance(tree, dict):
        return VisitStats()
    daily = tree.get("dailyVisits") or {}
    today = daily.get(day) if isinstance(daily, dict) else None
    return VisitStats(today=int(today or 0), total=int(tree.get("totalVisits") or 0))


def _split(path: Any) -> List[str]:
    return [p for p in str(path or "").split("/") if p]


def _put(tree: Dict[str, Any], parts: List[str], data: Any) -> Dict[str, Any]:
    if not parts:
        return dict(data) if isinstance(data, dict) else {}
    root = dict(tree)
    node = root
    for part in parts[:-1]:
        child = node.get(part)
        child = dict(child) if isinstance(child, dict) else {}
        node[part] = child
        node = child
    if data is None:
        node.pop(parts[-1], None)
    else:
        node[parts[-1]] = data
    return root


def apply_stream_event(tree: Dict[str, Any], event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Mirror one ``put``/``patch`` event of the REST stream into a copy of ``tree``."""
    parts = _split(payload.get("path"))
    data = payload.get("data")
    if event == "patch" and isinstance(data, dict):
        # patch keys may themselves be multi-segment paths
        for key, value in data.items():
            tree = _put(tree, parts + _split(key), value)
        return tree
    return _put(tree, parts, data)


class FirebaseVisitStore:
    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        if not cfg.firebase_database_url:
            raise ValueError("FIREBASE_DATABASE_URL is required")
        self.base = cfg.firebase_database_url.rstrip("/")
        self.auth = cfg.firebase_auth
        self.timeout = cfg.store_timeout
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base}/{path}.json"

    def _params(self, **extra: Any) -> Dict[str, Any]:
        params = dict(extra)
        if self.auth:
            params["auth"] = self.auth
        return params

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, **kwargs: Any) -> Any:
        try:
            resp = self.session.request(
                method, self._url(path), params=self._params(**(params or {})), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise VisitStoreError(f"{method} {path}: {exc}")
        if not resp.ok:
            raise VisitStoreError(f"{method} {path}: upstream {resp.status_code}: {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError:
            raise VisitStoreError(f"{method} {path}: invalid json response")

    def increment(self, day: str) -> None:
        # one multi-path update, both counters incremented server-side
        body = {
            "totalVisits": {".sv": {"increment": 1}},
            f"dailyVisits/{day}": {".sv": {"increment": 1}},
        }
        self._request("PATCH", ROOT_PATH, data=json.dumps(body))

    def snapshot(self, day: str) -> VisitStats:
        total = self._request("GET", f"{ROOT_PATH}/totalVisits")
        today = self._request("GET", f"{ROOT_PATH}/dailyVisits/{day}")
        return VisitStats(today=int(today or 0), total=int(total or 0))

    def delete_days_before(self, cutoff: str) -> int:
        days = self._request("GET", f"{ROOT_PATH}/dailyVisits", params={"shallow": "true"}) or {}
        stale = sorted(d for d in days if d < cutoff)
        if stale:
            self._request("PATCH", f"{ROOT_PATH}/dailyVisits", data=json.dumps({d: None for d in stale}))
        return len(stale)

    def listen(self, day: str, callback: StatsCallback) -> Unsubscribe:
        stream = _EventStream(self, day, callback)
        stream.start()
        return stream.stop


class _EventStream:
    """Reads the REST event stream for ``visitStats`` on a daemon thread."""

    def __init__(self, store: FirebaseVisitStore, day: str, callback: StatsCallback, retry_delay: float = 5.0) -> None:
        self.store = store
        self.day = day
        self.callback = callback
        self.retry_delay = retry_delay
        self._stop = threading.Event()
        self._resp: Optional[requests.Response] = None
        self._thread = threading.Thread(target=self._run, name="visit-stats-stream", daemon=True)
        self._tree: Dict[str, Any] = {}
        self._last: Optional[VisitStats] = None

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._resp is not None:
            self._resp.close()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._consume()
            except requests.RequestException as exc:
                logger.warning("visit stats stream interrupted: {}", exc)
            except (TypeError, ValueError):
                logger.exception("visit stats stream failed, reconnecting")
            self._stop.wait(self.retry_delay)

    def _consume(self) -> None:
        resp = self.store.session.get(
            self.store._url(ROOT_PATH),
            params=self.store._params(),
            headers={"Accept": "text/event-stream"},
            stream=True,
            timeout=(self.store.timeout, 90),
        )
        self._resp = resp
        if not resp.ok:
            logger.warning("visit stats stream rejected: {}", resp.status_code)
            return
        self.feed(resp.iter_lines(decode_unicode=True))

    def feed(self, lines) -> None:
        event = None
        for line in lines:
            if self._stop.is_set():
                return
            if not line:
                event = None
                continue
            if line.startswith("event:"):
                event = line[len("event:"):].strip()
            elif line.startswith("data:") and event in ("put", "patch"):
                try:
                    payload = json.loads(line[len("data:"):].strip())
                except ValueError:
                    logger.warning("visit stats stream sent invalid json")
                    continue
                if not isinstance(payload, dict):
                    continue
                try:
                    self._tree = apply_stream_event(self._tree, event, payload)
                    self._emit()
                except (TypeError, ValueError):
                    logger.exception("visit stats stream event {} could not be applied", event)
            elif event in ("cancel", "auth_revoked"):
                logger.error("visit stats stream closed by server: {}", event)
                self._stop.set()
                return

    def _emit(self) -> None:
        stats = stats_from_tree(self._tree, self.day)
        if stats == self._last:
            return
        self._last = stats
        try:
            self.callback(stats)
        except Exception:
            # a failing subscriber must not end the stream
            logger.exception("visit stats subscriber failed")


class LocalVisitStore:
    """JSON file fallback, shaped like the realtime tree."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._listeners: List[tuple[str, StatsCallback]] = []

    def _load(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {"totalVisits": 0, "dailyVisits": {}}
        except (OSError, ValueError) as exc:
            logger.error("local visit stats unreadable, starting over: {}", exc)
            return {"totalVisits": 0, "dailyVisits": {}}
        if not isinstance(data, dict):
            return {"totalVisits": 0, "dailyVisits": {}}
        total = data.get("totalVisits")
        if not isinstance(total, int) or isinstance(total, bool):
            data["totalVisits"] = 0
        daily = data.get("dailyVisits")
        if not isinstance(daily, dict):
            daily = {}
        # drop day entries that are not counts
        data["dailyVisits"] = {
            k: v for k, v in daily.items() if isinstance(v, int) and not isinstance(v, bool)
        }
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def increment(self, day: str) -> None:
        with self._lock:
            data = self._load()
            data["totalVisits"] = int(data["totalVisits"]) + 1
            data["dailyVisits"][day] = int(data["dailyVisits"].get(day, 0)) + 1
            self._save(data)
            listeners = list(self._listeners)
        for listen_day, callback in listeners:
            callback(stats_from_tree(data, listen_day))

    def snapshot(self, day: str) -> VisitStats:
        with self._lock:
            return stats_from_tree(self._load(), day)

    def delete_days_before(self, cutoff: str) -> int:
        with self._lock:
            data = self._load()
            stale = [d for d in data["dailyVisits"] if d < cutoff]
            for d in stale:
                del data["dailyVisits"][d]
            if stale:
                self._save(data)
        return len(stale)

    def listen(self, day: str, callback: StatsCallback, initial: bool = True) -> Unsubscribe:
        entry = (day, callback)
        with self._lock:
            self._listeners.append(entry)
        if initial:
            callback(self.snapshot(day))

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)

        return unsubscribe


class VisitCounterService:
    def __init__(
        self,
        primary: Optional[VisitStore],
        fallback: LocalVisitStore,
        session: VisitSession,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.session = session
        self.clock = clock

    def _day(self) -> str:
        return today_key(self.clock())

    def record_visit(self) -> None:
        if self.session.visited:
            return
        day = self._day()
        if self.primary is not None:
            try:
                self.primary.increment(day)
                self.session.visited = True
                logger.info("visit recorded for {}", day)
                return
            except VisitStoreError as exc:
                logger.error("recording visit failed, using local stats: {}", exc)
        try:
            self.fallback.increment(day)
        except OSError as exc:
            logger.error("recording visit locally failed: {}", exc)
            return
        self.session.visited = True

    def get_stats(self) -> VisitStats:
        day = self._day()
        if self.primary is not None:
            try:
                return self.primary.snapshot(day)
            except VisitStoreError as exc:
                logger.error("reading visit stats failed, using local stats: {}", exc)
        return self.fallback.snapshot(day)

    def subscribe(self, callback: StatsCallback) -> Unsubscribe:
        """Calls ``callback`` with fresh stats on every change to either counter."""
        day = self._day()
        if self.primary is None:
            return self.fallback.listen(day, callback)
        # local increments made while the database is down still reach the subscriber
        stop_local = self.fallback.listen(day, callback, initial=False)
        stop_primary = self.primary.listen(day, callback)

        def unsubscribe() -> None:
            stop_primary()
            stop_local()

        return unsubscribe

    def cleanup_old_daily_visits(self, days_to_keep: int = 30) -> int:
        cutoff = today_key(self.clock() - timedelta(days=days_to_keep))
        store: VisitStore = self.primary if self.primary is not None else self.fallback
        try:
            removed = store.delete_days_before(cutoff)
        except VisitStoreError as exc:
            logger.error("cleaning up daily visits failed: {}", exc)
            return 0
        if removed:
            logger.info("cleaned up {} old daily visit records", removed)
        return removed
