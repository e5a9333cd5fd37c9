"""
Core domain models for the map search/route screen.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field
from enum import Enum
import math
from typing import Any, Dict, Iterable, List, Optional

# Metres per degree of latitude (spherical approximation).
METERS_PER_DEGREE_LAT = 111_320.0

DEFAULT_ORIGIN_LAT = 25.781441
DEFAULT_ORIGIN_LON = -80.188332
DEFAULT_BIAS_SPAN_METERS = 10_000.0
DEFAULT_DETAIL_SHEET_HEIGHT = 340

CURRENT_LOCATION_NAME = "My Location"


class SelectionState(str, Enum):
    """Detail sheet state machine; derived from the selection, never stored."""
    IDLE = "idle"
    SELECTED = "selected"


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float

    def to_list(self) -> List[float]:
        return [self.lat, self.lon]


@dataclass(frozen=True)
class MapRect:
    """Axis-aligned lat/lon rectangle."""
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    @classmethod
    def from_points(cls, points: Iterable[Coordinate]) -> "MapRect":
        """Smallest rectangle containing every point. Raises ValueError when empty."""
        pts = list(points)
        if not pts:
            raise ValueError("Cannot compute a bounding rect of zero points.")
        lats = [p.lat for p in pts]
        lons = [p.lon for p in pts]
        return cls(min_lat=min(lats), min_lon=min(lons), max_lat=max(lats), max_lon=max(lons))

    @property
    def center(self) -> Coordinate:
        return Coordinate(
            lat=(self.min_lat + self.max_lat) / 2.0,
            lon=(self.min_lon + self.max_lon) / 2.0,
        )

    def contains(self, coord: Coordinate) -> bool:
        return (
            self.min_lat <= coord.lat <= self.max_lat
            and self.min_lon <= coord.lon <= self.max_lon
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "min_lat": self.min_lat,
            "min_lon": self.min_lon,
            "max_lat": self.max_lat,
            "max_lon": self.max_lon,
        }


@dataclass(frozen=True)
class MapRegion:
    """A center point plus north-south / east-west spans in metres."""
    center: Coordinate
    lat_meters: float
    lon_meters: float

    def bounding_rect(self) -> MapRect:
        half_lat = (self.lat_meters / 2.0) / METERS_PER_DEGREE_LAT
        cos_lat = max(math.cos(math.radians(self.center.lat)), 1e-6)
        half_lon = (self.lon_meters / 2.0) / (METERS_PER_DEGREE_LAT * cos_lat)
        return MapRect(
            min_lat=self.center.lat - half_lat,
            min_lon=self.center.lon - half_lon,
            max_lat=self.center.lat + half_lat,
            max_lon=self.center.lon + half_lon,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "center": self.center.to_list(),
            "lat_meters": self.lat_meters,
            "lon_meters": self.lon_meters,
        }


@dataclass(frozen=True)
class CameraPosition:
    """
    Where the map is looking: either a region (center + span) or an explicit rect.

    `animated` records whether the move to this position should be an animated
    transition rather than a jump.
    """
    region: Optional[MapRegion] = None
    rect: Optional[MapRect] = None
    animated: bool = False

    def __post_init__(self) -> None:
        if (self.region is None) == (self.rect is None):
            raise ValueError("CameraPosition needs exactly one of region or rect.")

    def viewport(self) -> MapRect:
        if self.rect is not None:
            return self.rect
        return self.region.bounding_rect()  # type: ignore[union-attr]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "region": self.region.to_dict() if self.region else None,
            "rect": self.rect.to_dict() if self.rect else None,
            "animated": self.animated,
        }


@dataclass(frozen=True)
class PlaceResult:
    """A single search hit (or the current-location pseudo-item)."""
    name: str
    coordinate: Coordinate
    title: Optional[str] = None  # one-line address shown under the name
    provider: str = "osm"
    place_id: str = ""
    raw: Optional[dict] = field(default=None, compare=False, hash=False)
    is_current_location: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "coordinate": self.coordinate.to_list(),
            "provider": self.provider,
            "place_id": self.place_id,
            "is_current_location": self.is_current_location,
        }


@dataclass(frozen=True)
class RouteResult:
    polyline: List[Coordinate]
    bounding_rect: MapRect
    destination: PlaceResult
    distance_m: Optional[float] = None
    duration_s: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "polyline": [c.to_list() for c in self.polyline],
            "bounding_rect": self.bounding_rect.to_dict(),
            "destination": self.destination.to_dict(),
            "distance_m": self.distance_m,
            "duration_s": self.duration_s,
        }


@dataclass(frozen=True)
class MapSettings:
    """Per-screen configuration. Injected so tests can vary the origin."""
    origin: Coordinate = Coordinate(DEFAULT_ORIGIN_LAT, DEFAULT_ORIGIN_LON)
    bias_span_meters: float = DEFAULT_BIAS_SPAN_METERS
    detail_sheet_height: int = DEFAULT_DETAIL_SHEET_HEIGHT
    discard_stale_responses: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> "MapSettings":
        return cls(
            origin=Coordinate(settings.MAP_ORIGIN_LAT, settings.MAP_ORIGIN_LON),
            bias_span_meters=settings.MAP_BIAS_SPAN_METERS,
            detail_sheet_height=settings.MAP_DETAIL_SHEET_HEIGHT,
            discard_stale_responses=settings.MAP_DISCARD_STALE_RESPONSES,
        )

    @property
    def bias_region(self) -> MapRegion:
        return MapRegion(
            center=self.origin,
            lat_meters=self.bias_span_meters,
            lon_meters=self.bias_span_meters,
        )

    def current_location_item(self) -> PlaceResult:
        return PlaceResult(
            name=CURRENT_LOCATION_NAME,
            coordinate=self.origin,
            provider="static",
            place_id="current_location",
            is_current_location=True,
        )


@dataclass
class ViewState:
    """
    Everything one mounted map screen shows.

    Sheet visibility is not stored: `show_details` is computed from the
    selection so the two can never disagree.
    """
    camera: CameraPosition
    search_text: str = ""
    results: List[PlaceResult] = field(default_factory=list)
    selection: Optional[PlaceResult] = None
    get_directions: bool = False
    route_displaying: bool = False
    route: Optional[RouteResult] = None

    @property
    def show_details(self) -> bool:
        return self.selection is not None

    @property
    def selection_state(self) -> SelectionState:
        return SelectionState.SELECTED if self.show_details else SelectionState.IDLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "camera": self.camera.to_dict(),
            "search_text": self.search_text,
            "results": [r.to_dict() for r in self.results],
            "selection": self.selection.to_dict() if self.selection else None,
            "selection_state": self.selection_state.value,
            "show_details": self.show_details,
            "get_directions": self.get_directions,
            "route_displaying": self.route_displaying,
            "route": self.route.to_dict() if self.route else None,
        }
