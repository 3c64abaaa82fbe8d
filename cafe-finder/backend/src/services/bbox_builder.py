from __future__ import annotations

from models import BoundingBox


def overpass_bbox(bbox: BoundingBox) -> str:
    """Overpass QL order: south,west,north,east."""
    return f"{bbox.south},{bbox.west},{bbox.north},{bbox.east}"


def nominatim_viewbox(bbox: BoundingBox) -> str:
    """Nominatim viewbox order: west,north,east,south (x1,y1,x2,y2)."""
    return f"{bbox.west},{bbox.north},{bbox.east},{bbox.south}"


def bbox_center(bbox: BoundingBox) -> tuple[float, float]:
    """Returns (lat, lon) of the box center."""
    return ((bbox.south + bbox.north) / 2.0, (bbox.west + bbox.east) / 2.0)
