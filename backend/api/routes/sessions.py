"""
Map screen session API routes.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Response
from pydantic import BaseModel

from api import database
from domain.models import MapSettings
from services.geocoding import get_default_search_client
from services.map_controller import InvalidSelectionError, MapSearchController
from services.map_scene import build_map_scene
from services.map_view_renderer import render_map_scene_png
from services.routing import get_default_route_client
from settings import settings

router = APIRouter()
logger = logging.getLogger(__name__)


class SearchRequest(BaseModel):
    query: str


class SelectRequest(BaseModel):
    index: Optional[int] = None
    current_location: bool = False


class SessionResponse(BaseModel):
    session_id: str
    state: Dict[str, Any]


class SearchResponse(BaseModel):
    session_id: str
    results: List[Dict[str, Any]]
    state: Dict[str, Any]


class DirectionsResponse(BaseModel):
    session_id: str
    route_found: bool
    state: Dict[str, Any]


def build_controller() -> MapSearchController:
    """Create a controller wired to the default HTTP backends."""
    return MapSearchController(
        search_backend=get_default_search_client(),
        route_backend=get_default_route_client(),
        map_settings=MapSettings.from_settings(settings),
    )


def _require_session(session_id: str) -> MapSearchController:
    controller = database.get_session(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return controller


def _session_response(session_id: str, controller: MapSearchController) -> SessionResponse:
    return SessionResponse(session_id=session_id, state=controller.snapshot())


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session():
    """Mount a new map screen."""
    controller = build_controller()
    session_id = database.add_session(controller)
    logger.debug("Created map session %s", session_id)
    return _session_response(session_id, controller)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session_state(session_id: str):
    return _session_response(session_id, _require_session(session_id))


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str):
    """Tear down a map screen and drop its state."""
    if not database.remove_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return Response(status_code=204)


@router.post("/{session_id}/search", response_model=SearchResponse)
async def search(session_id: str, request: SearchRequest):
    controller = _require_session(session_id)
    results = await controller.search_places(request.query)
    return SearchResponse(
        session_id=session_id,
        results=[r.to_dict() for r in results],
        state=controller.snapshot(),
    )


@router.post("/{session_id}/select", response_model=SessionResponse)
async def select(session_id: str, request: SelectRequest):
    controller = _require_session(session_id)
    try:
        if request.current_location:
            controller.select_current_location()
        elif request.index is not None:
            controller.select(request.index)
        else:
            raise HTTPException(status_code=400, detail="Provide index or current_location")
    except InvalidSelectionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _session_response(session_id, controller)


@router.post("/{session_id}/dismiss", response_model=SessionResponse)
async def dismiss(session_id: str):
    controller = _require_session(session_id)
    controller.dismiss_details()
    return _session_response(session_id, controller)


@router.post("/{session_id}/directions", response_model=DirectionsResponse)
async def directions(session_id: str):
    """Request a route to the current selection. No selection means no request."""
    controller = _require_session(session_id)
    route = await controller.request_directions()
    return DirectionsResponse(
        session_id=session_id,
        route_found=route is not None,
        state=controller.snapshot(),
    )


@router.delete("/{session_id}/route", response_model=SessionResponse)
async def clear_route(session_id: str):
    controller = _require_session(session_id)
    controller.clear_route()
    return _session_response(session_id, controller)


@router.post("/{session_id}/recenter", response_model=SessionResponse)
async def recenter(session_id: str):
    controller = _require_session(session_id)
    controller.recenter()
    return _session_response(session_id, controller)


@router.get("/{session_id}/scene")
async def scene(session_id: str):
    controller = _require_session(session_id)
    return build_map_scene(controller.state, controller.settings).to_dict()


@router.get("/{session_id}/render.png")
def render_png(
    session_id: str,
    width: int = Query(430, ge=64, le=2048),
    height: int = Query(932, ge=64, le=4096),
):
    """Rasterise the current screen. Sync so Pillow work runs in the threadpool."""
    controller = _require_session(session_id)
    map_scene = build_map_scene(controller.state, controller.settings)
    png = render_map_scene_png(map_scene, width=width, height=height)
    return Response(content=png, media_type="image/png")
