from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import asdict, dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, TypeVar

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Header, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field

from config import Configuration
from models import Cafe, CafeFormData, CafeFormUpdate, CafeOverride, Coordinate, IssueReport, Route
from services.aggregation import DISTANCE_PRESETS_KM, filter_by_distance, filter_by_query
from services.bbox_builder import bbox_center
from services.catalog import CafeCatalog
from services.custom_store import CustomCafeStore, CustomStoreDisabled, CustomStoreError
from services.favorites import FavoritesStore
from services.geocoding import NominatimClient, prefill_addresses
from services.overpass import OverpassClient
from services.routing import OsrmClient
from services.session import BrowserSession, SessionManager
from services.visits import FirebaseVisitStore, LocalVisitStore, VisitCounterService, VisitStore
from utils import format_distance, haversine_km


load_dotenv()

T = TypeVar("T")

SESSION_HEADER = "X-Session-Id"

app = FastAPI(title="Cafe Finder")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[SESSION_HEADER],
)


@dataclass
class AppContext:
    cfg: Configuration
    overpass: OverpassClient
    geocoder: NominatimClient
    router: OsrmClient
    store: CustomCafeStore
    catalog: CafeCatalog
    sessions: SessionManager
    visit_primary: Optional[VisitStore]
    visit_fallback: LocalVisitStore
    favorites: FavoritesStore

    def visits_for(self, session: BrowserSession) -> VisitCounterService:
        return VisitCounterService(self.visit_primary, self.visit_fallback, session.visit)


def build_context(cfg: Configuration) -> AppContext:
    overpass = OverpassClient(cfg)
    store = CustomCafeStore(cfg)
    catalog = CafeCatalog(overpass, store, cfg.bbox())
    return AppContext(
        cfg=cfg,
        overpass=overpass,
        geocoder=NominatimClient(cfg),
        router=OsrmClient(cfg),
        store=store,
        catalog=catalog,
        sessions=SessionManager(catalog.search, debounce_ms=cfg.search_debounce_ms, ttl_sec=cfg.session_ttl_sec),
        visit_primary=FirebaseVisitStore(cfg) if cfg.firebase_database_url else None,
        visit_fallback=LocalVisitStore(cfg.visit_fallback_path),
        favorites=FavoritesStore(cfg.favorites_path),
    )


@lru_cache(maxsize=1)
def get_context() -> AppContext:
    cfg = Configuration.from_env()
    logger.info("cfg: {}", cfg.log_summary())
    return build_context(cfg)


def get_session_id(response: Response, x_session_id: Optional[str] = Header(None)) -> str:
    session_id = (x_session_id or "").strip() or uuid.uuid4().hex
    response.headers[SESSION_HEADER] = session_id
    return session_id


def get_browser_session(
    session_id: str = Depends(get_session_id), ctx: AppContext = Depends(get_context)
) -> BrowserSession:
    return ctx.sessions.get(session_id)


def _cafe_payload(cafes: List[Cafe]) -> List[Dict[str, Any]]:
    return [c.to_wire() for c in cafes]


def _route_payload(route: Optional[Route]) -> Optional[Dict[str, Any]]:
    if route is None:
        return None
    return {
        "points": [list(p) for p in route.points],
        "distanceKm": round(route.distance_km, 2),
        "durationMin": round(route.duration_min, 1),
    }


async def _store_write(fn: Callable[..., T], *args: Any) -> T:
    """Runs a store write off the loop and maps its failures to HTTP errors."""
    try:
        return await asyncio.to_thread(fn, *args)
    except CustomStoreDisabled as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except CustomStoreError as exc:
        logger.error("custom store write failed: {}", exc)
        raise HTTPException(status_code=502, detail=str(exc))


class RouteRequest(BaseModel):
    dest_lat: float
    dest_lon: float
    origin_lat: Optional[float] = None
    origin_lon: Optional[float] = None


class ReportRequest(BaseModel):
    cafe_id: str
    cafe_name: str
    issue_type: str = "wrong_info"
    description: str = ""
    suggested_fix: Optional[str] = None


class BulkAddRequest(BaseModel):
    cafes: Optional[List[Cafe]] = Field(None, description="Cafes to import; omitted means the current open feed")


@app.get("/healthz")
def healthz(ctx: AppContext = Depends(get_context)) -> dict:
    logger.info("cfg: {}", ctx.cfg.log_summary())
    return {"status": "ok"}


@app.get("/map-config")
def map_config(ctx: AppContext = Depends(get_context)) -> dict:
    bbox = ctx.cfg.bbox()
    lat, lon = bbox_center(bbox)
    return {
        "bbox": {"south": bbox.south, "west": bbox.west, "north": bbox.north, "east": bbox.east},
        "center": {"lat": lat, "lon": lon},
        "distancePresetsKm": list(DISTANCE_PRESETS_KM),
        "customCafesEnabled": ctx.store.enabled,
    }


# -- cafes ---------------------------------------------------------------


@app.get("/cafes")
async def list_cafes(
    q: str = "",
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    distance_km: Optional[float] = None,
    ctx: AppContext = Depends(get_context),
    session: BrowserSession = Depends(get_browser_session),
) -> dict:
    if lat is not None and lon is not None:
        session.user_location = Coordinate(lat=lat, lon=lon)
    session.distance_km = distance_km
    cafes = await asyncio.to_thread(ctx.catalog.cafes)
    cafes = filter_by_query(cafes, q)
    cafes = filter_by_distance(cafes, session.user_location, session.distance_km)
    payload = _cafe_payload(cafes)
    origin = session.user_location
    if origin is not None:
        for cafe, item in zip(cafes, payload):
            km = haversine_km(origin.lat, origin.lon, cafe.lat, cafe.lon)
            item["distanceKm"] = round(km, 3)
            item["distanceText"] = format_distance(km)
    return {"cafes": payload, "count": len(cafes), "refreshedAt": ctx.catalog.refreshed_at}


@app.post("/cafes/refresh")
async def refresh_cafes(ctx: AppContext = Depends(get_context)) -> dict:
    cafes = await asyncio.to_thread(ctx.catalog.refresh)
    return {"count": len(cafes), "refreshedAt": ctx.catalog.refreshed_at}


@app.get("/cafes/{cafe_id}")
async def get_cafe(
    cafe_id: str, ctx: AppContext = Depends(get_context), session: BrowserSession = Depends(get_browser_session)
) -> dict:
    cafe = await asyncio.to_thread(ctx.catalog.find, cafe_id)
    if cafe is None:
        raise HTTPException(status_code=404, detail="cafe not found")
    session.selected_cafe_id = cafe.id
    payload = cafe.to_wire()
    payload["isFavorite"] = ctx.favorites.is_favorite(cafe.id)
    return payload


@app.get("/search")
async def search(q: str = "", session: BrowserSession = Depends(get_browser_session)) -> dict:
    results = await session.search.submit(q)
    if results is None:
        return {"query": q, "superseded": True}
    session.search_text = q
    session.results = results
    return {"query": q, "superseded": False, "cafes": _cafe_payload(results), "count": len(results)}


# -- geocoding / routing ---------------------------------------------------


@app.get("/geocode")
async def geocode(q: str, ctx: AppContext = Depends(get_context)) -> dict:
    coord = await asyncio.to_thread(ctx.geocoder.geocode, q)
    if coord is None:
        raise HTTPException(status_code=404, detail="no match")
    return {"lat": coord.lat, "lon": coord.lon}


@app.get("/reverse-geocode")
async def reverse_geocode(lat: float, lon: float, ctx: AppContext = Depends(get_context)) -> dict:
    address = await asyncio.to_thread(ctx.geocoder.reverse_geocode, lat, lon)
    if address is None:
        raise HTTPException(status_code=404, detail="no address")
    return {"address": address}


@app.post("/route")
async def request_route(
    req: RouteRequest, ctx: AppContext = Depends(get_context), session: BrowserSession = Depends(get_browser_session)
) -> dict:
    origin = None
    if req.origin_lat is not None and req.origin_lon is not None:
        origin = Coordinate(lat=req.origin_lat, lon=req.origin_lon)
        session.user_location = origin
    destination = Coordinate(lat=req.dest_lat, lon=req.dest_lon)
    route = await asyncio.to_thread(session.request_route, ctx.router, destination, origin)
    superseded = route is not session.route
    return {"route": _route_payload(route), "info": session.route_info, "superseded": superseded}


@app.delete("/route")
def cancel_route(session: BrowserSession = Depends(get_browser_session)) -> dict:
    session.cancel_route()
    return {"route": None, "info": session.route_info}


# -- submitted cafes -------------------------------------------------------


@app.get("/custom-cafes")
async def list_custom_cafes(ctx: AppContext = Depends(get_context)) -> dict:
    cafes = await asyncio.to_thread(ctx.store.list_cafes)
    return {"cafes": _cafe_payload(cafes)}


@app.post("/custom-cafes")
async def add_custom_cafe(form: CafeFormData, ctx: AppContext = Depends(get_context)) -> dict:
    cafe_id = await _store_write(ctx.store.add, form)
    return {"id": cafe_id}


@app.patch("/custom-cafes/{cafe_id}")
async def update_custom_cafe(
    cafe_id: str, body: Dict[str, Any] = Body(...), ctx: AppContext = Depends(get_context)
) -> dict:
    try:
        changes = CafeFormUpdate.model_validate(body)
        if not changes.model_fields_set:
            raise ValueError("no fields to update")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    await _store_write(ctx.store.update, cafe_id, changes)
    return {"id": cafe_id}


@app.delete("/custom-cafes/{cafe_id}")
async def delete_custom_cafe(cafe_id: str, ctx: AppContext = Depends(get_context)) -> dict:
    await _store_write(ctx.store.delete, cafe_id)
    return {"id": cafe_id, "deleted": True}


@app.post("/custom-cafes/bulk")
async def bulk_add_cafes(req: BulkAddRequest, ctx: AppContext = Depends(get_context)) -> dict:
    cafes = req.cafes
    if cafes is None:
        cafes = await asyncio.to_thread(ctx.overpass.fetch_open_cafes)
        cafes = await asyncio.to_thread(prefill_addresses, ctx.geocoder, cafes, ctx.cfg.geocode_pause_ms)
    result = await _store_write(ctx.store.bulk_add, cafes)
    return result.model_dump()


# -- issue reports ---------------------------------------------------------


@app.post("/reports")
async def submit_report(req: ReportRequest, ctx: AppContext = Depends(get_context)) -> dict:
    try:
        report = IssueReport(
            cafe_id=req.cafe_id,
            cafe_name=req.cafe_name,
            issue_type=req.issue_type,
            description=req.description,
            suggested_fix=req.suggested_fix,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    await _store_write(ctx.store.submit_issue_report, report)
    return {"submitted": True}


@app.get("/reports")
async def list_reports(ctx: AppContext = Depends(get_context)) -> dict:
    reports = await asyncio.to_thread(ctx.store.list_issue_reports)
    return {"reports": [r.to_wire() for r in reports]}


# -- overrides -------------------------------------------------------------


@app.get("/overrides")
async def list_overrides(ctx: AppContext = Depends(get_context)) -> dict:
    overrides = await asyncio.to_thread(ctx.store.list_overrides)
    return {"overrides": {k: v.to_wire(exclude_unset=True) for k, v in overrides.items()}}


@app.post("/overrides")
async def save_override(body: Dict[str, Any] = Body(...), ctx: AppContext = Depends(get_context)) -> dict:
    try:
        override = CafeOverride.model_validate(body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    await _store_write(ctx.store.save_override, override)
    return {"originalId": override.original_id}


@app.delete("/overrides/{original_id}")
async def delete_override(original_id: str, ctx: AppContext = Depends(get_context)) -> dict:
    await _store_write(ctx.store.delete_override, original_id)
    return {"originalId": original_id, "deleted": True}


# -- visits ----------------------------------------------------------------


@app.post("/visits")
async def record_visit(ctx: AppContext = Depends(get_context), session: BrowserSession = Depends(get_browser_session)) -> dict:
    service = ctx.visits_for(session)
    await asyncio.to_thread(service.record_visit)
    stats = await asyncio.to_thread(service.get_stats)
    return asdict(stats)


@app.get("/visits")
async def visit_stats(ctx: AppContext = Depends(get_context), session: BrowserSession = Depends(get_browser_session)) -> dict:
    stats = await asyncio.to_thread(ctx.visits_for(session).get_stats)
    return asdict(stats)


@app.get("/visits/stream")
async def visit_stream(ctx: AppContext = Depends(get_context), session: BrowserSession = Depends(get_browser_session)):
    """SSE stream of visit counters; one event per change."""
    service = ctx.visits_for(session)

    async def event_generator():
        queue: asyncio.Queue = asyncio.Queue()
        loop = asyncio.get_running_loop()
        unsubscribe = service.subscribe(lambda stats: loop.call_soon_threadsafe(queue.put_nowait, stats))
        try:
            while True:
                stats = await queue.get()
                yield f"data: {json.dumps(asdict(stats))}\n\n"
        finally:
            unsubscribe()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@app.post("/visits/cleanup")
async def cleanup_visits(
    days_to_keep: int = 30, ctx: AppContext = Depends(get_context), session: BrowserSession = Depends(get_browser_session)
) -> dict:
    if days_to_keep < 1:
        raise HTTPException(status_code=400, detail="days_to_keep must be positive")
    removed = await asyncio.to_thread(ctx.visits_for(session).cleanup_old_daily_visits, days_to_keep)
    return {"removed": removed}


# -- favorites -------------------------------------------------------------


@app.get("/favorites")
def list_favorites(ctx: AppContext = Depends(get_context)) -> dict:
    return {"favorites": ctx.favorites.list()}


@app.post("/favorites/{cafe_id}")
async def add_favorite(cafe_id: str, ctx: AppContext = Depends(get_context)) -> dict:
    cafe = await asyncio.to_thread(ctx.catalog.find, cafe_id)
    if cafe is None:
        raise HTTPException(status_code=404, detail="cafe not found")
    ctx.favorites.add(cafe)
    return {"id": cafe_id, "favorite": True}


@app.delete("/favorites/{cafe_id}")
def remove_favorite(cafe_id: str, ctx: AppContext = Depends(get_context)) -> dict:
    ctx.favorites.remove(cafe_id)
    return {"id": cafe_id, "favorite": False}


@app.post("/favorites/{cafe_id}/toggle")
async def toggle_favorite(cafe_id: str, ctx: AppContext = Depends(get_context)) -> dict:
    cafe = await asyncio.to_thread(ctx.catalog.find, cafe_id)
    if cafe is None:
        raise HTTPException(status_code=404, detail="cafe not found")
    return {"id": cafe_id, "favorite": ctx.favorites.toggle(cafe)}


# -- session ---------------------------------------------------------------


@app.delete("/session")
def reset_session(session_id: str = Depends(get_session_id), ctx: AppContext = Depends(get_context)) -> dict:
    ctx.sessions.reset(session_id)
    return {"reset": True}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8010, reload=True)
