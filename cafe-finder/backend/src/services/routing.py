from __future__ import annotations

from typing import Optional

import requests
from loguru import logger

from config import Configuration
from models import Coordinate, Route


class OsrmClient:
    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.osrm_base_url.rstrip("/")
        self.session = session or requests.Session()

    def get_route(self, origin: Coordinate, destination: Coordinate) -> Optional[Route]:
        """Driving route between two points, or ``None`` when no route is available."""
        # OSRM waypoints are lon,lat
        waypoints = f"{origin.lon},{origin.lat};{destination.lon},{destination.lat}"
        url = f"{self.base}/route/v1/driving/{waypoints}"
        try:
            resp = self.session.get(
                url,
                params={"overview": "full", "geometries": "geojson"},
                headers={"Accept": "application/json", "User-Agent": self.cfg.user_agent},
                timeout=self.cfg.routing_timeout,
            )
        except requests.RequestException as exc:
            logger.warning("osrm request error: {}", exc)
            return None
        if not resp.ok:
            logger.warning("osrm upstream {}: {}", resp.status_code, resp.text[:200])
            return None
        try:
            payload = resp.json()
        except ValueError:
            logger.warning("osrm returned invalid json")
            return None
        return parse_route(payload)


def parse_route(payload: object) -> Optional[Route]:
    if not isinstance(payload, dict):
        return None
    if payload.get("code") not in (None, "Ok"):
        logger.info("osrm: no route ({})", payload.get("code"))
        return None
    routes = payload.get("routes") or []
    if not routes:
        return None
    first = routes[0]
    try:
        coords = first["geometry"]["coordinates"]
        # GeoJSON is lon/lat, the map wants lat/lon
        points = [(float(lat), float(lon)) for lon, lat in coords]
        distance_km = float(first["distance"]) / 1000.0
        duration_min = float(first["duration"]) / 60.0
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("osrm route payload malformed: {}", exc)
        return None
    return Route(points=points, distance_km=distance_km, duration_min=duration_min)
