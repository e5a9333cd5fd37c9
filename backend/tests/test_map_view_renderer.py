import io
from unittest.mock import MagicMock

import pytest
from PIL import Image

from domain.models import CameraPosition, Coordinate, MapRect, MapSettings, PlaceResult, RouteResult, ViewState
from services import map_view_renderer as mvr
from services.map_scene import build_map_scene

SETTINGS = MapSettings()
CAFE_A = PlaceResult(name="Cafe A", coordinate=Coordinate(25.78, -80.19), title="1 Brickell Ave, Miami")


@pytest.fixture(autouse=True)
def tiles_off(monkeypatch):
    monkeypatch.setattr(mvr, "MAP_TILES_ENABLED", False)


def test_fit_viewport_expands_to_canvas_aspect():
    rect = MapRect(min_lat=0.0, min_lon=0.0, max_lat=1.0, max_lon=1.0)
    fitted = mvr.fit_viewport_to_canvas(rect, width=200, height=100)
    assert fitted.max_lat - fitted.min_lat == pytest.approx(1.0)
    assert fitted.max_lon - fitted.min_lon > 1.0
    assert fitted.center.lat == pytest.approx(0.5)
    assert fitted.center.lon == pytest.approx(0.5)


def test_project_to_canvas_corners():
    rect = MapRect(min_lat=10.0, min_lon=20.0, max_lat=11.0, max_lon=21.0)
    pts = mvr.project_to_canvas([Coordinate(11.0, 20.0), Coordinate(10.0, 21.0)], rect, 100, 50)
    assert pts[0] == pytest.approx((0.0, 0.0))
    assert pts[1] == pytest.approx((100.0, 50.0))


def test_render_png_with_route_and_sheet():
    rect = MapRect(min_lat=25.77, min_lon=-80.20, max_lat=25.79, max_lon=-80.18)
    route = RouteResult(
        polyline=[SETTINGS.origin, Coordinate(25.77, -80.20), CAFE_A.coordinate],
        bounding_rect=rect,
        destination=CAFE_A,
    )
    state = ViewState(
        camera=CameraPosition(rect=rect, animated=True),
        search_text="coffee",
        results=[CAFE_A],
        selection=CAFE_A,
        route=route,
        route_displaying=True,
    )

    png = mvr.render_map_scene_png(build_map_scene(state, SETTINGS), width=200, height=400)

    img = Image.open(io.BytesIO(png))
    assert img.format == "PNG"
    assert img.size == (200, 400)
    # Bottom of the canvas is covered by the white detail sheet.
    r, g, b = img.convert("RGB").getpixel((100, 395))
    assert min(r, g, b) > 240


def test_fetch_tile_cached_uses_cache(monkeypatch, tmp_path):
    mvr._fetch_tile_cached.cache_clear()
    monkeypatch.setattr(mvr, "MAP_TILES_ENABLED", True)
    monkeypatch.setattr(mvr, "MAP_TILE_URL_TEMPLATE", "http://example/{z}/{x}/{y}.png")
    monkeypatch.setattr(mvr, "MAP_TILE_MIN_INTERVAL_SEC", 0.0)
    monkeypatch.setattr(mvr, "MAP_TILE_CACHE_PATH", tmp_path / "tiles.sqlite")
    monkeypatch.setattr(mvr, "_CACHE_DB", None)

    buf = io.BytesIO()
    Image.new("RGB", (8, 8), color="blue").save(buf, format="PNG")
    resp = MagicMock()
    resp.content = buf.getvalue()
    resp.raise_for_status.return_value = None
    call_counter = {"count": 0}

    def fake_get(url, headers=None, timeout=None):
        call_counter["count"] += 1
        return resp

    monkeypatch.setattr(mvr._TILE_SESSION, "get", fake_get)

    assert mvr._fetch_tile_cached(1, 2, 3) is not None
    mvr._fetch_tile_cached.cache_clear()
    # Second lookup is served from SQLite, not HTTP.
    assert mvr._fetch_tile_cached(1, 2, 3) is not None
    assert call_counter["count"] == 1
    mvr._fetch_tile_cached.cache_clear()
