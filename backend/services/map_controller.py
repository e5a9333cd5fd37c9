"""
Map Search/Route Controller.

Owns the ViewState of one mounted map screen and the two asynchronous
handlers that drive it:

    user input -> search_places() -> results replaced
    select(...) -> detail sheet visible
    request_directions() -> fetch_route() -> route shown, sheet hidden,
                                             camera reframed to the route

The backends are plain blocking callables (HTTP clients); they are executed
in a worker thread so the event loop stays responsive. All ViewState
mutation happens on the event loop.

Responses are applied in the order they arrive. A slow search that finishes
after a newer one will overwrite the newer results unless
MapSettings.discard_stale_responses is enabled.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol

from domain.models import (
    CameraPosition,
    Coordinate,
    MapRegion,
    MapSettings,
    PlaceResult,
    RouteResult,
    ViewState,
)

logger = logging.getLogger(__name__)


class InvalidSelectionError(ValueError):
    """Raised when selecting something that is not a current result."""


class PlaceSearchBackend(Protocol):
    def search(self, query: str, bias_region: MapRegion) -> List[PlaceResult]:
        ...


class RouteBackend(Protocol):
    def route(self, origin: Coordinate, destination: PlaceResult) -> Optional[RouteResult]:
        ...


class MapSearchController:
    def __init__(
        self,
        search_backend: PlaceSearchBackend,
        route_backend: RouteBackend,
        map_settings: Optional[MapSettings] = None,
    ):
        self.search_backend = search_backend
        self.route_backend = route_backend
        self.settings = map_settings or MapSettings()
        self.state = ViewState(camera=self.default_camera())
        self._search_seq = 0
        self._route_seq = 0

    # ------------------------------------------------------------------
    # Camera
    # ------------------------------------------------------------------
    def default_camera(self, animated: bool = False) -> CameraPosition:
        return CameraPosition(region=self.settings.bias_region, animated=animated)

    def recenter(self) -> None:
        """Snap the camera back to the region around the current location."""
        self.state.camera = self.default_camera(animated=True)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    def set_search_text(self, text: str) -> None:
        self.state.search_text = text

    async def search_places(self, query: Optional[str] = None) -> List[PlaceResult]:
        """
        Submit the search box (or `query`, which also becomes the search text).

        The result list is replaced wholesale by whatever the backend returns.
        A backend failure results in an empty list; nothing is raised.
        """
        if query is not None:
            self.state.search_text = query
        text = self.state.search_text
        # A new search returns the sheet to Idle and supersedes any route.
        self.state.selection = None
        self.clear_route()

        self._search_seq += 1
        seq = self._search_seq
        try:
            results = await asyncio.to_thread(
                self.search_backend.search, text, self.settings.bias_region
            )
        except Exception as exc:
            logger.warning("[SEARCH] backend failed for q=%r: %s", text, exc)
            results = []

        if self.settings.discard_stale_responses and seq != self._search_seq:
            logger.debug("[SEARCH] dropping stale response #%d (latest #%d)", seq, self._search_seq)
            return list(self.state.results)

        self.state.results = list(results or [])
        return self.state.results

    # ------------------------------------------------------------------
    # Selection / detail sheet
    # ------------------------------------------------------------------
    def select(self, index: int) -> PlaceResult:
        if not 0 <= index < len(self.state.results):
            raise InvalidSelectionError(
                f"No result at index {index} ({len(self.state.results)} results)."
            )
        self.state.selection = self.state.results[index]
        return self.state.selection

    def select_result(self, place: PlaceResult) -> PlaceResult:
        if place.is_current_location and place == self.settings.current_location_item():
            self.state.selection = place
        elif place in self.state.results:
            self.state.selection = place
        else:
            raise InvalidSelectionError(f"{place.name!r} is not in the current results.")
        return place

    def select_current_location(self) -> PlaceResult:
        return self.select_result(self.settings.current_location_item())

    def clear_selection(self) -> None:
        self.state.selection = None

    def dismiss_details(self) -> None:
        """Close button on the detail sheet."""
        self.clear_selection()

    # ------------------------------------------------------------------
    # Directions / route
    # ------------------------------------------------------------------
    async def set_get_directions(self, value: bool) -> Optional[RouteResult]:
        """
        Set the "get directions" flag. Turning it on with a selection present
        triggers a route request; without a selection nothing is invoked.
        """
        self.state.get_directions = value
        if not value:
            return None
        return await self.fetch_route()

    async def request_directions(self) -> Optional[RouteResult]:
        return await self.set_get_directions(True)

    async def fetch_route(self) -> Optional[RouteResult]:
        destination = self.state.selection
        if not self.state.get_directions or destination is None:
            self.state.get_directions = False
            return None

        self._route_seq += 1
        seq = self._route_seq
        try:
            route = await asyncio.to_thread(
                self.route_backend.route, self.settings.origin, destination
            )
        except Exception as exc:
            logger.warning("[ROUTE] backend failed for %r: %s", destination.name, exc)
            route = None
        finally:
            self.state.get_directions = False

        if route is None:
            return None
        if self.settings.discard_stale_responses and seq != self._route_seq:
            logger.debug("[ROUTE] dropping stale response #%d (latest #%d)", seq, self._route_seq)
            return None

        self._apply_route(route)
        return route

    def _apply_route(self, route: RouteResult) -> None:
        # No await in here: callers observe all of these together.
        self.state.route = route
        self.state.route_displaying = True
        self.state.selection = None
        self.state.camera = CameraPosition(rect=route.bounding_rect, animated=True)
        logger.info(
            "[ROUTE] showing route to %s (%d points)", route.destination.name, len(route.polyline)
        )

    def clear_route(self) -> None:
        self.state.route = None
        self.state.route_displaying = False

    def snapshot(self) -> dict:
        return self.state.to_dict()
