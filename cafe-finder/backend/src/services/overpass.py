from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests
from loguru import logger
from pydantic import ValidationError

from config import Configuration
from models import BoundingBox, Cafe
from services.bbox_builder import overpass_bbox
from services.fallback_cafes import fallback_cafes


class OverpassError(RuntimeError):
    pass


CAFE_QUERY_TEMPLATE = """
[out:json][timeout:20];
(
  node["amenity"="cafe"]({bbox});
  node["cuisine"~"coffee",i]({bbox});
  node["shop"="coffee"]({bbox});
  way["amenity"="cafe"]({bbox});
);
out center body;
"""

_TRUE_VALUES = {"yes", "true", "1", "only", "wlan", "wifi", "wired", "terminal", "service"}
_FALSE_VALUES = {"no", "false", "0"}
_SMOKING_ALIASES = {"isolated": "separated", "dedicated": "yes"}


def build_cafe_query(bbox: BoundingBox) -> str:
    return CAFE_QUERY_TEMPLATE.format(bbox=overpass_bbox(bbox)).strip()


@dataclass
class OverpassEndpoint:
    """One interchangeable Overpass interpreter."""

    url: str

    def fetch(self, session: requests.Session, query: str, timeout: float, user_agent: str) -> dict:
        try:
            resp = session.post(
                self.url,
                data={"data": query},
                headers={"Accept": "application/json", "User-Agent": user_agent},
                timeout=timeout,
            )
        except requests.RequestException as exc:
            raise OverpassError(f"{self.url}: request error: {exc}")
        if not resp.ok:
            raise OverpassError(f"{self.url}: upstream {resp.status_code}: {resp.text[:200]}")
        try:
            payload = resp.json()
        except ValueError:
            raise OverpassError(f"{self.url}: invalid json response")
        if not isinstance(payload, dict):
            raise OverpassError(f"{self.url}: unexpected payload type {type(payload).__name__}")
        return payload


def format_address(tags: Dict[str, Any]) -> Optional[str]:
    parts = [
        tags.get("addr:street"),
        tags.get("addr:housenumber"),
        tags.get("addr:suburb") or tags.get("addr:subdistrict"),
        tags.get("addr:city"),
    ]
    parts = [str(p).strip() for p in parts if p and str(p).strip()]
    return ", ".join(parts) if parts else None


def _osm_flag(value: Any) -> Optional[bool]:
    if value is None:
        return None
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return None


def _wifi_free(fee: Any) -> Optional[bool]:
    if fee is None:
        return None
    return str(fee).strip().lower() == "no"


def _coords(element: Dict[str, Any]) -> Optional[tuple[float, float]]:
    lat = element.get("lat")
    lon = element.get("lon")
    if lat is None or lon is None:
        center = element.get("center") or {}
        lat, lon = center.get("lat"), center.get("lon")
    if lat is None or lon is None:
        return None
    try:
        return float(lat), float(lon)
    except (TypeError, ValueError):
        return None


def parse_elements(elements: Sequence[Any], bbox: Optional[BoundingBox] = None) -> List[Cafe]:
    """Normalize raw Overpass elements; drops anything without a name or a usable position."""
    results: list[Cafe] = []
    for element in elements:
        if not isinstance(element, dict):
            continue
        tags = element.get("tags") or {}
        name = (tags.get("name") or "").strip()
        coords = _coords(element)
        if not name or coords is None or element.get("id") is None:
            continue
        lat, lon = coords
        if bbox is not None and not bbox.contains(lat, lon):
            continue

        smoking = tags.get("smoking")
        smoking = _SMOKING_ALIASES.get(smoking, smoking)
        try:
            cafe = Cafe(
                id=str(element["id"]),
                name=name,
                lat=lat,
                lon=lon,
                address=format_address(tags),
                phone=tags.get("phone") or tags.get("contact:phone"),
                website=tags.get("website") or tags.get("contact:website"),
                instagram=tags.get("contact:instagram"),
                opening_hours=tags.get("opening_hours"),
                cuisine=tags.get("cuisine"),
                brand=tags.get("brand"),
                has_wifi=_osm_flag(tags.get("internet_access")),
                wifi_free=_wifi_free(tags.get("internet_access:fee")),
                has_outdoor_seating=_osm_flag(tags.get("outdoor_seating")),
                has_takeaway=_osm_flag(tags.get("takeaway")),
                has_air_conditioning=_osm_flag(tags.get("air_conditioning")),
                smoking_policy=smoking,
            )
        except ValidationError as exc:
            logger.debug("skipping overpass element {}: {}", element.get("id"), exc)
            continue
        results.append(cafe)
    return results


def filter_cafes(cafes: List[Cafe], query: str) -> List[Cafe]:
    """Case-insensitive substring match on name, address and cuisine."""
    needle = (query or "").strip().lower()
    if not needle:
        return list(cafes)
    return [
        c
        for c in cafes
        if needle in c.name.lower()
        or needle in (c.address or "").lower()
        or needle in (c.cuisine or "").lower()
    ]


class OverpassClient:
    def __init__(
        self,
        cfg: Configuration,
        session: Optional[requests.Session] = None,
        endpoints: Optional[List[OverpassEndpoint]] = None,
    ) -> None:
        self.cfg = cfg
        self.session = session or requests.Session()
        self.endpoints = endpoints or [OverpassEndpoint(url) for url in cfg.overpass_endpoints]

    def _query(self, query: str) -> dict:
        errors: list[str] = []
        for endpoint in self.endpoints:
            logger.debug("overpass: trying {}", endpoint.url)
            try:
                payload = endpoint.fetch(self.session, query, self.cfg.overpass_timeout, self.cfg.user_agent)
            except OverpassError as exc:
                logger.warning("overpass endpoint failed: {}", exc)
                errors.append(str(exc))
                continue
            logger.info("overpass: success from {}", endpoint.url)
            return payload
        raise OverpassError("all overpass endpoints failed: " + "; ".join(errors))

    def fetch_open_cafes(self, bbox: Optional[BoundingBox] = None, query: str = "") -> List[Cafe]:
        bbox = bbox or self.cfg.bbox()
        try:
            payload = self._query(build_cafe_query(bbox))
        except OverpassError as exc:
            logger.error("overpass unavailable, serving built-in cafes: {}", exc)
            return filter_cafes(fallback_cafes(), query)
        cafes = parse_elements(payload.get("elements") or [], bbox=bbox)
        return filter_cafes(cafes, query)
