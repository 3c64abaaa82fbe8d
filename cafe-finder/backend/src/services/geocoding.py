from __future__ import annotations

import time
from typing import List, Optional

import requests
from loguru import logger

from config import Configuration
from models import BoundingBox, Cafe, Coordinate
from services.bbox_builder import nominatim_viewbox


class NominatimClient:
    """Address search against Nominatim, restricted to the metropolitan box.

    Every method fails soft: network, HTTP and parse errors come back as ``None``.
    """

    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.nominatim_base_url.rstrip("/")
        self.session = session or requests.Session()

    def _get(self, path: str, params: dict) -> Optional[object]:
        headers = {"Accept": "application/json", "User-Agent": self.cfg.user_agent, "Accept-Language": "id,en"}
        try:
            resp = self.session.get(
                f"{self.base}{path}", params=params, headers=headers, timeout=self.cfg.geocode_timeout
            )
        except requests.RequestException as exc:
            logger.warning("nominatim request error: {}", exc)
            return None
        if not resp.ok:
            logger.warning("nominatim upstream {} for {}", resp.status_code, path)
            return None
        try:
            return resp.json()
        except ValueError:
            logger.warning("nominatim returned invalid json for {}", path)
            return None

    def geocode(self, text: str, bbox: Optional[BoundingBox] = None) -> Optional[Coordinate]:
        text = (text or "").strip()
        if not text:
            return None
        bbox = bbox or self.cfg.bbox()
        query = f"{text}, {self.cfg.geocode_city_suffix}" if self.cfg.geocode_city_suffix else text
        payload = self._get(
            "/search",
            {
                "q": query,
                "format": "json",
                "limit": 1,
                "viewbox": nominatim_viewbox(bbox),
                "bounded": 1,
            },
        )
        if not isinstance(payload, list) or not payload:
            return None
        first = payload[0]
        try:
            return Coordinate(lat=float(first["lat"]), lon=float(first["lon"]))
        except (KeyError, TypeError, ValueError):
            logger.warning("nominatim result without usable coordinates: {}", first)
            return None

    def reverse_geocode(self, lat: float, lon: float) -> Optional[str]:
        payload = self._get(
            "/reverse",
            {"lat": lat, "lon": lon, "format": "json", "addressdetails": 1, "zoom": 18},
        )
        if not isinstance(payload, dict):
            return None
        address = payload.get("display_name")
        return str(address) if address else None


def prefill_addresses(geocoder: NominatimClient, cafes: List[Cafe], pause_ms: int = 200) -> List[Cafe]:
    """Fill missing addresses by reverse geocoding, one lookup at a time.

    Lookups are spaced by ``pause_ms`` to stay within Nominatim's rate limit.
    Cafes whose lookup fails keep an empty address.
    """
    filled: List[Cafe] = []
    looked_up = 0
    for cafe in cafes:
        if cafe.address:
            filled.append(cafe)
            continue
        if looked_up and pause_ms > 0:
            time.sleep(pause_ms / 1000.0)
        looked_up += 1
        address = geocoder.reverse_geocode(cafe.lat, cafe.lon)
        filled.append(cafe.model_copy(update={"address": address or ""}))
    logger.info("prefilled addresses: {} lookups for {} cafes", looked_up, len(cafes))
    return filled
