"""Merging of the open geodata feed with submitted cafes and admin overrides."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from models import OVERRIDE_FIELDS, Cafe, CafeOverride, Coordinate
from services.overpass import filter_cafes
from utils import haversine_km


DISTANCE_PRESETS_KM = (0.5, 1.0, 2.0, 5.0, 10.0)


def override_patch(override: CafeOverride) -> Dict[str, object]:
    """Fields the override sets explicitly, keyed by attribute name.

    A blank value clears optional fields; required ones (the name) cannot be cleared.
    """
    patch: Dict[str, object] = {}
    for name in override.model_fields_set:
        if name not in OVERRIDE_FIELDS:
            continue
        value = getattr(override, name)
        if Cafe.model_fields[name].is_required() and not value:
            continue
        patch[name] = value
    return patch


def apply_override(cafe: Cafe, override: CafeOverride) -> Cafe:
    """Sparse patch: explicitly set fields replace the cafe's, everything else is kept."""
    patch = override_patch(override)
    if not patch:
        return cafe
    return cafe.model_copy(update=patch)


def build_visible_cafe_list(
    open_cafes: Iterable[Cafe],
    custom_cafes: Iterable[Cafe],
    overrides: Mapping[str, CafeOverride],
) -> List[Cafe]:
    """Union of both sources in input order, override-patched, hidden cafes removed.

    The two sources have disjoint id spaces, so no deduplication happens here.
    """
    visible: list[Cafe] = []
    for cafe in list(open_cafes) + list(custom_cafes):
        override = overrides.get(cafe.id)
        if override is None:
            visible.append(cafe)
            continue
        if override.is_hidden:
            continue
        visible.append(apply_override(cafe, override))
    return visible


def filter_by_query(cafes: List[Cafe], query: str) -> List[Cafe]:
    return filter_cafes(cafes, query)


def filter_by_distance(
    cafes: List[Cafe], origin: Optional[Coordinate], max_km: Optional[float]
) -> List[Cafe]:
    if not max_km or origin is None:
        return list(cafes)
    return [c for c in cafes if haversine_km(origin.lat, origin.lon, c.lat, c.lon) <= max_km]
