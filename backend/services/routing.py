"""
OSRM route client.

Talks to an OSRM server over HTTP and returns a normalized RouteResult:
the full polyline (GeoJSON geometry converted back to lat/lon) and its
bounding rectangle. Any failure yields None.
"""
from __future__ import annotations

import logging
from typing import List, Optional

import requests

from domain.models import Coordinate, MapRect, PlaceResult, RouteResult
from settings import settings

logger = logging.getLogger(__name__)
_session = requests.Session()


def format_coordinates(coords: List[Coordinate]) -> str:
    """Convert coordinates to OSRM format 'lon,lat;lon,lat;...'"""
    return ";".join(f"{c.lon:.6f},{c.lat:.6f}" for c in coords)


def parse_geojson_line(geometry: dict) -> List[Coordinate]:
    """GeoJSON LineString coordinates are [lon, lat]; flip them."""
    coords = geometry.get("coordinates") if isinstance(geometry, dict) else None
    return [Coordinate(lat=float(lat), lon=float(lon)) for lon, lat in coords or []]


class OSRMRouteClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        profile: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.OSRM_BASE_URL).rstrip("/")
        self.profile = profile or settings.OSRM_PROFILE  # driving, walking, cycling
        self.timeout = timeout or settings.OSRM_TIMEOUT

    def _request(self, origin: Coordinate, destination: Coordinate) -> Optional[dict]:
        url = f"{self.base_url}/route/v1/{self.profile}/{format_coordinates([origin, destination])}"
        try:
            resp = _session.get(
                url,
                params={
                    "overview": "full",
                    "geometries": "geojson",
                    "alternatives": "false",
                    "steps": "false",
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("[ROUTE] OSRM request failed for %s: %s", url, exc)
            return None

    def route(self, origin: Coordinate, destination: PlaceResult) -> Optional[RouteResult]:
        """
        Compute a single route from `origin` to `destination`.

        Returns None when OSRM is unreachable, answers with a non-Ok code, or
        returns a geometry with fewer than two points.
        """
        data = self._request(origin, destination.coordinate)
        if not isinstance(data, dict):
            return None

        if data.get("code") != "Ok":
            logger.warning("[ROUTE] OSRM error: %s", data.get("message") or data.get("code"))
            return None

        routes = data.get("routes") or []
        if not isinstance(routes, list):
            logger.warning("[ROUTE] unexpected OSRM routes payload: %r", type(routes).__name__)
            return None
        if not routes:
            logger.warning("[ROUTE] OSRM returned no routes to %s", destination.name)
            return None

        route = routes[0]  # alternatives are disabled; first route is the one
        if not isinstance(route, dict):
            logger.warning("[ROUTE] unexpected OSRM route entry: %r", type(route).__name__)
            return None
        try:
            polyline = parse_geojson_line(route.get("geometry") or {})
            distance_m = float(route["distance"]) if route.get("distance") is not None else None
            duration_s = float(route["duration"]) if route.get("duration") is not None else None
        except (TypeError, ValueError) as exc:
            logger.warning("[ROUTE] malformed OSRM route: %s", exc)
            return None
        if len(polyline) < 2:
            logger.warning("[ROUTE] OSRM geometry too short (%d points)", len(polyline))
            return None

        result = RouteResult(
            polyline=polyline,
            bounding_rect=MapRect.from_points(polyline),
            destination=destination,
            distance_m=distance_m,
            duration_s=duration_s,
        )
        logger.debug(
            "[ROUTE] %s -> %s: %d points, %.0f m",
            origin,
            destination.name,
            len(polyline),
            result.distance_m or 0.0,
        )
        return result


_default_route_client: Optional[OSRMRouteClient] = None


def get_default_route_client() -> OSRMRouteClient:
    global _default_route_client
    if _default_route_client is None:
        _default_route_client = OSRMRouteClient()
    return _default_route_client
