"""
Presentation layer: turn a ViewState into the list of things on screen.

build_map_scene() is a pure function. It never issues requests or mutates
state; the PNG renderer and the HTTP API both consume its output.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from domain.models import Coordinate, MapRect, MapSettings, PlaceResult, ViewState

SEARCH_PLACEHOLDER = "Search for a location..."


@dataclass(frozen=True)
class LocationIndicator:
    """The fixed "My Location" dot: three concentric circles."""
    coordinate: Coordinate
    label: str = "My Location"
    ring_diameters: tuple = (32, 20, 12)


@dataclass(frozen=True)
class MarkerLayer:
    label: str
    coordinate: Coordinate
    selected: bool = False


@dataclass(frozen=True)
class RouteLayer:
    polyline: List[Coordinate]
    destination_label: str


@dataclass(frozen=True)
class SearchBox:
    text: str
    placeholder: str = SEARCH_PLACEHOLDER


@dataclass(frozen=True)
class DetailSheet:
    name: str
    title: str
    height: int
    can_get_directions: bool = True


@dataclass(frozen=True)
class MapControls:
    compass: bool = True
    pitch_toggle: bool = True
    user_location_button: bool = True


@dataclass(frozen=True)
class MapScene:
    viewport: MapRect
    camera_animated: bool
    location: LocationIndicator
    search_box: SearchBox
    markers: List[MarkerLayer] = field(default_factory=list)
    route: Optional[RouteLayer] = None
    detail_sheet: Optional[DetailSheet] = None
    controls: MapControls = field(default_factory=MapControls)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "viewport": self.viewport.to_dict(),
            "camera_animated": self.camera_animated,
            "location": {
                "label": self.location.label,
                "coordinate": self.location.coordinate.to_list(),
            },
            "markers": [
                {"label": m.label, "coordinate": m.coordinate.to_list(), "selected": m.selected}
                for m in self.markers
            ],
            "route": (
                {
                    "polyline": [c.to_list() for c in self.route.polyline],
                    "destination_label": self.route.destination_label,
                }
                if self.route
                else None
            ),
            "search_box": {"text": self.search_box.text, "placeholder": self.search_box.placeholder},
            "detail_sheet": (
                {
                    "name": self.detail_sheet.name,
                    "title": self.detail_sheet.title,
                    "height": self.detail_sheet.height,
                    "can_get_directions": self.detail_sheet.can_get_directions,
                }
                if self.detail_sheet
                else None
            ),
            "controls": {
                "compass": self.controls.compass,
                "pitch_toggle": self.controls.pitch_toggle,
                "user_location_button": self.controls.user_location_button,
            },
        }


def _detail_sheet(selection: PlaceResult, map_settings: MapSettings) -> DetailSheet:
    return DetailSheet(
        name=selection.name or "",
        title=selection.title or "",
        height=map_settings.detail_sheet_height,
    )


def build_map_scene(state: ViewState, map_settings: Optional[MapSettings] = None) -> MapScene:
    """Project the view state onto drawable layers."""
    map_settings = map_settings or MapSettings()
    markers = [
        MarkerLayer(
            label=place.name or "",
            coordinate=place.coordinate,
            selected=state.selection is not None and place == state.selection,
        )
        for place in state.results
    ]

    route_layer = None
    if state.route_displaying and state.route is not None:
        route_layer = RouteLayer(
            polyline=list(state.route.polyline),
            destination_label=state.route.destination.name,
        )

    sheet = _detail_sheet(state.selection, map_settings) if state.show_details else None

    return MapScene(
        viewport=state.camera.viewport(),
        camera_animated=state.camera.animated,
        location=LocationIndicator(coordinate=map_settings.origin),
        search_box=SearchBox(text=state.search_text),
        markers=markers,
        route=route_layer,
        detail_sheet=sheet,
    )
