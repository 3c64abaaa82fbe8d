from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field

from models import BoundingBox
from utils import mask_secret


DEFAULT_OVERPASS_ENDPOINTS = [
    "https://overpass.kumi.systems/api/interpreter",
    "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
    "https://overpass-api.de/api/interpreter",
]


class Configuration(BaseModel):
    # Overpass (OpenStreetMap)
    overpass_endpoints: list[str] = Field(default_factory=lambda: list(DEFAULT_OVERPASS_ENDPOINTS))
    overpass_timeout: int = Field(default=15)

    # Nominatim
    nominatim_base_url: str = Field(default="https://nominatim.openstreetmap.org")
    geocode_timeout: int = Field(default=10)
    geocode_city_suffix: str = Field(default="Surabaya, Indonesia")
    geocode_pause_ms: int = Field(default=200)

    # OSRM
    osrm_base_url: str = Field(default="https://router.project-osrm.org")
    routing_timeout: int = Field(default=15)

    # Spreadsheet-backed store
    sheets_api_url: Optional[str] = Field(default=None)
    sheets_secret_key: Optional[str] = Field(default=None)
    store_timeout: int = Field(default=15)

    # Realtime database for visit counters
    firebase_database_url: Optional[str] = Field(default=None)
    firebase_auth: Optional[str] = Field(default=None)
    visit_fallback_path: str = Field(default=".cafe-finder/visit_stats.json")

    favorites_path: str = Field(default=".cafe-finder/favorites.json")

    # Metropolitan bounding box (Surabaya)
    bbox_south: float = Field(default=-7.4)
    bbox_west: float = Field(default=112.6)
    bbox_north: float = Field(default=-7.1)
    bbox_east: float = Field(default=112.9)

    search_debounce_ms: int = Field(default=400)
    session_ttl_sec: int = Field(default=3600)
    user_agent: str = Field(default="CafeFinder/1.0 (+https://github.com/cafe-finder)")

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Configuration":
        raw: dict[str, Any] = {}

        env_map = {
            "overpass_endpoints": os.getenv("OVERPASS_ENDPOINTS"),
            "overpass_timeout": os.getenv("OVERPASS_TIMEOUT"),
            "nominatim_base_url": os.getenv("NOMINATIM_BASE_URL"),
            "geocode_timeout": os.getenv("GEOCODE_TIMEOUT"),
            "geocode_city_suffix": os.getenv("GEOCODE_CITY_SUFFIX"),
            "geocode_pause_ms": os.getenv("GEOCODE_PAUSE_MS"),
            "osrm_base_url": os.getenv("OSRM_BASE_URL"),
            "routing_timeout": os.getenv("ROUTING_TIMEOUT"),
            "sheets_api_url": os.getenv("SHEETS_API_URL"),
            "sheets_secret_key": os.getenv("SHEETS_SECRET_KEY"),
            "store_timeout": os.getenv("STORE_TIMEOUT"),
            "firebase_database_url": os.getenv("FIREBASE_DATABASE_URL"),
            "firebase_auth": os.getenv("FIREBASE_AUTH"),
            "visit_fallback_path": os.getenv("VISIT_FALLBACK_PATH"),
            "favorites_path": os.getenv("FAVORITES_PATH"),
            "bbox_south": os.getenv("BBOX_SOUTH"),
            "bbox_west": os.getenv("BBOX_WEST"),
            "bbox_north": os.getenv("BBOX_NORTH"),
            "bbox_east": os.getenv("BBOX_EAST"),
            "search_debounce_ms": os.getenv("SEARCH_DEBOUNCE_MS"),
            "session_ttl_sec": os.getenv("SESSION_TTL_SEC"),
            "user_agent": os.getenv("USER_AGENT"),
        }

        list_fields = {"overpass_endpoints"}

        for k, v in env_map.items():
            if v is None or v == "":
                continue
            if k in list_fields:
                raw[k] = [part.strip() for part in str(v).split(",") if part.strip()]
            else:
                raw[k] = v

        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**raw)

    @property
    def custom_store_enabled(self) -> bool:
        return bool(self.sheets_api_url and self.sheets_secret_key)

    def bbox(self) -> BoundingBox:
        return BoundingBox(
            south=self.bbox_south,
            west=self.bbox_west,
            north=self.bbox_north,
            east=self.bbox_east,
        )

    def log_summary(self) -> str:
        return (
            "overpass_endpoints=%d timeout=%s custom_store=%s sheets_key=%s realtime_db=%s bbox=%s"
            % (
                len(self.overpass_endpoints),
                self.overpass_timeout,
                self.custom_store_enabled,
                mask_secret(self.sheets_secret_key),
                bool(self.firebase_database_url),
                self.bbox().as_tuple(),
            )
        )
