from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from loguru import logger

from models import Cafe, Coordinate, Route
from services.routing import OsrmClient
from services.search import LatestSearch
from services.visits import VisitSession


NO_ROUTE = "no route"


@dataclass
class BrowserSession:
    """Transient state of one visitor's map view."""

    search: LatestSearch
    visit: VisitSession = field(default_factory=VisitSession)
    search_text: str = ""
    results: List[Cafe] = field(default_factory=list)
    selected_cafe_id: Optional[str] = None
    distance_km: Optional[float] = None
    user_location: Optional[Coordinate] = None
    route: Optional[Route] = None
    _route_seq: int = field(default=0, repr=False, compare=False)
    _route_lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def route_info(self) -> str:
        if self.route is None:
            return NO_ROUTE
        return f"{self.route.distance_km:.1f} km, {round(self.route.duration_min)} min"

    def _next_route_seq(self) -> int:
        with self._route_lock:
            self._route_seq += 1
            return self._route_seq

    def request_route(self, router: OsrmClient, destination: Coordinate, origin: Optional[Coordinate] = None) -> Optional[Route]:
        """Replaces the current route; a failed lookup leaves no route behind.

        Only the latest request may publish: a response for a destination that
        was replaced while in flight is dropped and ``None`` is returned.
        """
        seq = self._next_route_seq()
        origin = origin or self.user_location
        if origin is None:
            route = None
        else:
            route = router.get_route(origin, destination)
        with self._route_lock:
            if seq != self._route_seq:
                logger.debug("discarding stale route to {} (seq {} < {})", destination, seq, self._route_seq)
                return None
            self.route = route
        if route is None:
            logger.info("no route from {} to {}", origin, destination)
        return route

    def cancel_route(self) -> None:
        # also invalidates any request still in flight
        self._next_route_seq()
        self.route = None


class SessionManager:
    """Simple in-memory session manager."""

    def __init__(
        self,
        search_fn: Callable[[str], List[Cafe]],
        debounce_ms: int = 400,
        ttl_sec: int = 3600,
    ) -> None:
        self._sessions: Dict[str, BrowserSession] = {}
        self._last_access: Dict[str, float] = {}
        self.search_fn = search_fn
        self.debounce_ms = debounce_ms
        self.ttl_sec = ttl_sec

    def get(self, session_id: str) -> BrowserSession:
        """Returns the session, creating it on first use."""
        if not session_id:
            raise ValueError("session id is required")
        self._cleanup()
        session = self._sessions.get(session_id)
        if session is None:
            session = BrowserSession(search=LatestSearch(self.search_fn, debounce_ms=self.debounce_ms))
            self._sessions[session_id] = session
        self._last_access[session_id] = time.time()
        return session

    def reset(self, session_id: str) -> None:
        """Drop a session's state."""
        if not session_id:
            return
        self._sessions.pop(session_id, None)
        self._last_access.pop(session_id, None)

    def _cleanup(self) -> None:
        """Remove expired sessions."""
        now = time.time()
        expired = [
            sid for sid, last in self._last_access.items()
            if now - last > self.ttl_sec
        ]
        for sid in expired:
            del self._sessions[sid]
            del self._last_access[sid]
