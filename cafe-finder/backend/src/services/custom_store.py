from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import requests
from loguru import logger
from pydantic import ValidationError

from config import Configuration
from models import BulkAddResult, Cafe, CafeFormData, CafeFormUpdate, CafeOverride, IssueReport
from utils import utc_now_iso


class CustomStoreError(RuntimeError):
    pass


class CustomStoreDisabled(CustomStoreError):
    pass


_BOOL_FIELDS = ("hasWifi", "wifiFree", "hasOutdoorSeating", "hasTakeaway", "hasAirConditioning")


def _truthy(value: Any) -> bool:
    return value is True or (isinstance(value, str) and value.strip().lower() == "true")


def parse_photos(value: Any) -> List[str]:
    """Photos come back as a list, a JSON array string or comma separated URLs."""
    if not value:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    text = str(value).strip()
    if text.startswith("["):
        try:
            loaded = json.loads(text)
        except ValueError:
            loaded = None
        if isinstance(loaded, list):
            return [str(v).strip() for v in loaded if str(v).strip()]
    return [part.strip() for part in text.split(",") if part.strip()]


def _drop_nulls(row: Dict[str, Any]) -> Dict[str, Any]:
    # a null or missing cell means "not set"; an empty string is a value
    return {k: v for k, v in row.items() if v is not None}


def _drop_blank_cells(row: Dict[str, Any]) -> Dict[str, Any]:
    # every override row carries every column; an empty cell was never set
    return {k: v for k, v in row.items() if v is not None and not (isinstance(v, str) and not v.strip())}


def parse_cafe_row(row: Any) -> Optional[Cafe]:
    if not isinstance(row, dict):
        return None
    data = _drop_nulls(row)
    if not data.get("id") or not data.get("name"):
        return None
    for key in _BOOL_FIELDS:
        data[key] = _truthy(data.get(key))
    data["photos"] = parse_photos(data.get("photos"))
    data["id"] = str(data["id"])
    data["isCustom"] = True
    try:
        return Cafe.model_validate(data)
    except ValidationError as exc:
        logger.warning("dropping malformed custom cafe row {}: {}", data.get("id"), exc.errors()[:1])
        return None


def parse_override_row(row: Any) -> Optional[CafeOverride]:
    if not isinstance(row, dict):
        return None
    data = _drop_blank_cells(row)
    if not data.get("originalId"):
        return None
    data["originalId"] = str(data["originalId"])
    data.setdefault("originalName", "")
    for key in _BOOL_FIELDS + ("isHidden",):
        if key in data:
            data[key] = _truthy(data[key])
    try:
        return CafeOverride.model_validate(data)
    except ValidationError as exc:
        logger.warning("dropping malformed override row {}: {}", data.get("originalId"), exc.errors()[:1])
        return None


def parse_report_row(row: Any) -> Optional[IssueReport]:
    if not isinstance(row, dict):
        return None
    try:
        return IssueReport.model_validate(_drop_nulls(row))
    except ValidationError:
        return None


def bulk_row(cafe: Cafe) -> Dict[str, Any]:
    return {
        "id": cafe.id,
        "name": cafe.name,
        "lat": cafe.lat,
        "lon": cafe.lon,
        "address": cafe.address or "",
        "phone": cafe.phone or "",
        "website": cafe.website or "",
        "openingHours": cafe.opening_hours or "",
        "hasWifi": bool(cafe.has_wifi),
        "wifiFree": bool(cafe.wifi_free),
        "hasOutdoorSeating": bool(cafe.has_outdoor_seating),
        "smokingPolicy": cafe.smoking_policy or "",
        "hasTakeaway": bool(cafe.has_takeaway),
        "hasAirConditioning": bool(cafe.has_air_conditioning),
        "brand": cafe.brand or "",
        "cuisine": cafe.cuisine or "",
        "isHidden": False,
    }


class CustomCafeStore:
    """Client for the spreadsheet-backed store of submitted cafes, reports and overrides.

    Writes raise ``CustomStoreError`` so callers can tell the submitter;
    reads return empty collections on any failure.
    """

    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.url = cfg.sheets_api_url
        self.key = cfg.sheets_secret_key
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.key)

    def _post(self, action: str, **payload: Any) -> dict:
        if not self.enabled:
            raise CustomStoreDisabled("custom cafe store is not configured")
        body = {"key": self.key, "action": action, **payload}
        try:
            resp = self.session.post(
                self.url,
                data=json.dumps(body),
                # text/plain keeps Apps Script deployments out of CORS preflight
                headers={"Content-Type": "text/plain"},
                timeout=self.cfg.store_timeout,
            )
        except requests.RequestException as exc:
            raise CustomStoreError(f"{action} failed: {exc}")
        try:
            result = resp.json()
        except ValueError:
            raise CustomStoreError(f"{action} failed: invalid json response (HTTP {resp.status_code})")
        if not isinstance(result, dict) or not result.get("success"):
            error = result.get("error") if isinstance(result, dict) else None
            raise CustomStoreError(error or f"{action} failed")
        return result

    def _get(self, kind: Optional[str] = None) -> List[Any]:
        if not self.enabled:
            logger.debug("custom cafe store disabled, nothing to read")
            return []
        params = {"key": self.key}
        if kind:
            params["type"] = kind
        try:
            resp = self.session.get(self.url, params=params, timeout=self.cfg.store_timeout)
            result = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("custom store read ({}) failed: {}", kind or "cafes", exc)
            return []
        if not isinstance(result, dict) or not result.get("success"):
            error = result.get("error") if isinstance(result, dict) else None
            logger.error("custom store read ({}) rejected: {}", kind or "cafes", error)
            return []
        data = result.get("data") or []
        return data if isinstance(data, list) else []

    # -- cafes -----------------------------------------------------------

    def add(self, form: CafeFormData) -> str:
        result = self._post("add", cafe=form.to_wire())
        cafe_id = result.get("id")
        if not cafe_id:
            raise CustomStoreError("add succeeded without an id")
        logger.info("custom cafe added: {}", cafe_id)
        return str(cafe_id)

    def list_cafes(self) -> List[Cafe]:
        cafes = [c for c in (parse_cafe_row(row) for row in self._get()) if c is not None]
        logger.debug("custom store returned {} cafes", len(cafes))
        return cafes

    def update(self, cafe_id: str, changes: CafeFormUpdate) -> None:
        wire = changes.to_wire(exclude_unset=True)
        if not wire:
            raise ValueError("no fields to update")
        self._post("update", id=cafe_id, cafe=wire)
        logger.info("custom cafe updated: {}", cafe_id)

    def delete(self, cafe_id: str) -> None:
        self._post("delete", id=cafe_id)
        logger.info("custom cafe deleted: {}", cafe_id)

    def bulk_add(self, cafes: List[Cafe]) -> BulkAddResult:
        result = self._post("bulkAdd", cafes=[bulk_row(c) for c in cafes])
        outcome = BulkAddResult.model_validate(result)
        logger.info("bulk add complete: {} added, {} skipped", outcome.added, outcome.skipped)
        return outcome

    # -- issue reports ---------------------------------------------------

    def submit_issue_report(self, report: IssueReport) -> None:
        stamped = report.model_copy(update={"reported_at": utc_now_iso()})
        self._post("report", report=stamped.to_wire())
        logger.info("issue report submitted for {}", report.cafe_name)

    def list_issue_reports(self) -> List[IssueReport]:
        return [r for r in (parse_report_row(row) for row in self._get("reports")) if r is not None]

    # -- overrides -------------------------------------------------------

    def save_override(self, override: CafeOverride) -> None:
        wire = override.to_wire(exclude_unset=True)
        wire.update({"originalId": override.original_id, "originalName": override.original_name})
        wire["updatedAt"] = utc_now_iso()
        self._post("override", override=wire)
        logger.info("cafe override saved for {}", override.original_id)

    def list_overrides(self) -> Dict[str, CafeOverride]:
        overrides: Dict[str, CafeOverride] = {}
        for row in self._get("overrides"):
            parsed = parse_override_row(row)
            if parsed is not None:
                overrides[parsed.original_id] = parsed
        return overrides

    def delete_override(self, original_id: str) -> None:
        self._post("deleteOverride", id=original_id)
        logger.info("cafe override deleted: {}", original_id)

