from domain.models import (
    CameraPosition,
    Coordinate,
    MapRect,
    MapSettings,
    PlaceResult,
    RouteResult,
    ViewState,
)
from services.map_scene import SEARCH_PLACEHOLDER, build_map_scene

SETTINGS = MapSettings()
CAFE_A = PlaceResult(name="Cafe A", coordinate=Coordinate(25.78, -80.19), title="1 Brickell Ave, Miami")
CAFE_B = PlaceResult(name="Cafe B", coordinate=Coordinate(25.79, -80.20))


def _state(**kwargs) -> ViewState:
    return ViewState(camera=CameraPosition(region=SETTINGS.bias_region), **kwargs)


def test_idle_scene_has_location_and_search_box_only():
    scene = build_map_scene(_state(), SETTINGS)

    assert scene.markers == []
    assert scene.route is None
    assert scene.detail_sheet is None
    assert scene.location.coordinate == SETTINGS.origin
    assert scene.search_box.text == ""
    assert scene.search_box.placeholder == SEARCH_PLACEHOLDER
    assert scene.viewport == SETTINGS.bias_region.bounding_rect()


def test_one_marker_per_result_and_selected_flag():
    scene = build_map_scene(_state(results=[CAFE_A, CAFE_B], selection=CAFE_B), SETTINGS)

    assert [m.label for m in scene.markers] == ["Cafe A", "Cafe B"]
    assert [m.selected for m in scene.markers] == [False, True]


def test_detail_sheet_follows_selection():
    scene = build_map_scene(_state(results=[CAFE_A], selection=CAFE_A), SETTINGS)

    assert scene.detail_sheet is not None
    assert scene.detail_sheet.name == "Cafe A"
    assert scene.detail_sheet.title == "1 Brickell Ave, Miami"
    assert scene.detail_sheet.height == 340


def test_route_layer_only_when_displaying():
    rect = MapRect(min_lat=25.77, min_lon=-80.20, max_lat=25.79, max_lon=-80.18)
    route = RouteResult(
        polyline=[SETTINGS.origin, Coordinate(25.77, -80.20), CAFE_A.coordinate],
        bounding_rect=rect,
        destination=CAFE_A,
    )
    hidden = build_map_scene(_state(route=route, route_displaying=False), SETTINGS)
    assert hidden.route is None

    state = ViewState(camera=CameraPosition(rect=rect, animated=True), route=route, route_displaying=True)
    shown = build_map_scene(state, SETTINGS)
    assert shown.route is not None
    assert len(shown.route.polyline) == 3
    assert shown.route.destination_label == "Cafe A"
    assert shown.viewport == rect
    assert shown.camera_animated is True


def test_scene_to_dict_is_json_ready():
    data = build_map_scene(_state(search_text="coffee", results=[CAFE_A]), SETTINGS).to_dict()
    assert data["search_box"]["text"] == "coffee"
    assert data["markers"][0]["coordinate"] == [25.78, -80.19]
    assert data["detail_sheet"] is None
    assert data["controls"] == {"compass": True, "pitch_toggle": True, "user_location_button": True}
