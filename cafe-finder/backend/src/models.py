"""Data models for the cafe finder backend."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


SmokingPolicy = Literal["yes", "no", "outside", "separated"]
PriceRange = Literal["low", "medium", "high"]
IssueType = Literal["wrong_info", "closed", "wrong_location", "add_info", "other"]

SMOKING_POLICIES = ("yes", "no", "outside", "separated")
PRICE_RANGES = ("low", "medium", "high")


@dataclass(frozen=True)
class BoundingBox:
    south: float
    west: float
    north: float
    east: float

    def contains(self, lat: float, lon: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lon <= self.east

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.south, self.west, self.north, self.east)


SURABAYA_BBOX = BoundingBox(south=-7.4, west=112.6, north=-7.1, east=112.9)


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float


@dataclass
class Route:
    points: List[Tuple[float, float]]  # (lat, lon) pairs
    distance_km: float
    duration_min: float


@dataclass
class VisitStats:
    today: int = 0
    total: int = 0


class WireModel(BaseModel):
    """Base for records exchanged with the spreadsheet API (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    def to_wire(self, *, exclude_unset: bool = False) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=not exclude_unset, exclude_unset=exclude_unset)


def _normalize_choice(value: Any, allowed: tuple[str, ...]) -> Any:
    if value is None:
        return None
    text = str(value).strip().lower()
    return text if text in allowed else None


class CafeDetails(WireModel):
    """Display fields shared by cafes, submissions and overrides."""

    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    instagram: Optional[str] = None
    opening_hours: Optional[str] = None
    menu_url: Optional[str] = None
    has_wifi: Optional[bool] = None
    wifi_free: Optional[bool] = None
    has_outdoor_seating: Optional[bool] = None
    smoking_policy: Optional[SmokingPolicy] = None
    has_takeaway: Optional[bool] = None
    has_air_conditioning: Optional[bool] = None
    price_range: Optional[PriceRange] = None
    description: Optional[str] = None

    @field_validator("smoking_policy", mode="before")
    @classmethod
    def _smoking(cls, value: Any) -> Any:
        return _normalize_choice(value, SMOKING_POLICIES)

    @field_validator("price_range", mode="before")
    @classmethod
    def _price(cls, value: Any) -> Any:
        return _normalize_choice(value, PRICE_RANGES)


class CafeFormData(CafeDetails):
    name: str = Field(..., min_length=1)
    lat: float
    lon: float
    logo: Optional[str] = None
    photos: Optional[List[str]] = None


class CafeFormUpdate(CafeDetails):
    """Partial edit of a submitted cafe; only explicitly given fields are sent."""

    name: Optional[str] = Field(default=None, min_length=1)
    lat: Optional[float] = None
    lon: Optional[float] = None
    logo: Optional[str] = None
    photos: Optional[List[str]] = None


class Cafe(CafeDetails):
    id: str
    name: str
    lat: float
    lon: float
    cuisine: Optional[str] = None
    brand: Optional[str] = None
    logo: Optional[str] = None
    photos: List[str] = Field(default_factory=list)
    is_custom: bool = False
    submitted_at: Optional[str] = None


class CafeOverride(CafeDetails):
    """Sparse patch for an existing cafe.

    Only fields passed explicitly (``model_fields_set``) take part in the patch;
    ``None`` and ``""`` given explicitly clear the field.
    """

    original_id: str
    original_name: str
    name: Optional[str] = None
    is_hidden: Optional[bool] = None
    updated_at: Optional[str] = None


# Fields an override may replace on a cafe. Identity, position and provenance are never patched.
OVERRIDE_FIELDS = frozenset(set(CafeDetails.model_fields) | {"name"})


class IssueReport(WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", coerce_numbers_to_str=True, frozen=True
    )

    cafe_id: str
    cafe_name: str
    issue_type: IssueType = "wrong_info"
    description: str
    suggested_fix: Optional[str] = None
    reported_at: Optional[str] = None

    @field_validator("description")
    @classmethod
    def _description_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("description is required")
        return value

    @field_validator("suggested_fix")
    @classmethod
    def _strip_fix(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class BulkAddResult(WireModel):
    added: int = 0
    skipped: int = 0
    total: int = 0
