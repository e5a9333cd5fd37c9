"""
Map screen renderer using Pillow.

Rasterises a MapScene into a static PNG: background (XYZ tiles when enabled,
otherwise a dark grid), route polyline, result markers, the "My Location"
indicator, the search box and the detail sheet.
"""
import math
import os
import sqlite3
import threading
import time
from functools import lru_cache
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
import logging

import requests
from PIL import Image, ImageDraw, ImageFont

from domain.models import Coordinate, MapRect
from services.map_scene import MapScene

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[1]
UPSCALE_FACTOR = 2

# Tile configuration
MAP_TILES_ENABLED = os.getenv("MAP_TILES_ENABLED", "0") in ("1", "true", "TRUE")
MAP_TILE_URL_TEMPLATE = os.getenv("MAP_TILE_URL_TEMPLATE", "")
MAP_TILE_USER_AGENT = os.getenv(
    "MAP_TILE_USER_AGENT",
    os.getenv("NOMINATIM_USER_AGENT", "map-search-route/0.1 (tile-fetch)"),
)
MAP_TILE_REFERER = os.getenv("MAP_TILE_REFERER")
MAP_TILE_TIMEOUT = float(os.getenv("MAP_TILE_TIMEOUT", "3"))
MAP_TILE_MIN_INTERVAL_SEC = float(os.getenv("MAP_TILE_MIN_INTERVAL_SEC", "1.0"))
MAP_TILE_HEADERS = {"User-Agent": MAP_TILE_USER_AGENT}
if MAP_TILE_REFERER:
    MAP_TILE_HEADERS["Referer"] = MAP_TILE_REFERER
_TILE_SESSION = requests.Session()
_TILE_LOCK = threading.Lock()
_LAST_TILE_TS = 0.0
MAP_TILE_CACHE_PATH = Path(
    os.getenv("MAP_TILE_CACHE_PATH", str(BASE_DIR / "data" / "tile_cache.sqlite"))
)
MAP_TILE_CACHE_TTL_SECONDS = int(os.getenv("MAP_TILE_CACHE_TTL_SECONDS", str(30 * 24 * 3600)))
_CACHE_DB_LOCK = threading.Lock()
_CACHE_DB: Optional[sqlite3.Connection] = None

# Styling
BACKGROUND_COLOR = "#e8ecef"
GRID_COLOR = (160, 170, 180, 90)
GRID_SPACING_PX = 80
TILE_LIGHTEN_OVERLAY = (255, 255, 255, 40)
ROUTE_COLOR = (10, 132, 255, 255)
ROUTE_HALO_COLOR = (255, 255, 255, 220)
ROUTE_WIDTH_PX = 6
MARKER_COLOR = (230, 57, 70, 255)
MARKER_SELECTED_COLOR = (255, 149, 0, 255)
MARKER_OUTLINE = (255, 255, 255, 255)
MARKER_RADIUS_PX = 9
LOCATION_RING_COLORS = ((10, 132, 255, 64), (255, 255, 255, 255), (10, 132, 255, 255))
SEARCH_BOX_HEIGHT_PX = 44
SEARCH_BOX_MARGIN_PX = 16
SEARCH_TEXT_COLOR = "#111111"
SEARCH_PLACEHOLDER_COLOR = "#8e8e93"
SHEET_BG = (255, 255, 255, 245)
SHEET_CORNER_RADIUS_PX = 12
SHEET_TITLE_COLOR = "#111111"
SHEET_SUBTITLE_COLOR = "#6c6c70"


def _get_tile_db() -> sqlite3.Connection:
    """Lazily open the tile cache DB and ensure schema exists."""
    global _CACHE_DB
    with _CACHE_DB_LOCK:
        if _CACHE_DB is None:
            MAP_TILE_CACHE_PATH.parent.mkdir(parents=True, exist_ok=True)
            _CACHE_DB = sqlite3.connect(str(MAP_TILE_CACHE_PATH), check_same_thread=False)
            _CACHE_DB.execute(
                """
                CREATE TABLE IF NOT EXISTS tiles (
                    z INTEGER,
                    x INTEGER,
                    y INTEGER,
                    fetched_at INTEGER,
                    data BLOB,
                    PRIMARY KEY (z, x, y)
                )
                """
            )
            _CACHE_DB.commit()
        return _CACHE_DB


def _get_tile_from_cache(z: int, x: int, y: int) -> Optional[bytes]:
    """Fetch tile bytes from SQLite cache if present and not expired."""
    try:
        db = _get_tile_db()
        row = db.execute(
            "SELECT fetched_at, data FROM tiles WHERE z=? AND x=? AND y=?",
            (z, x, y),
        ).fetchone()
    except sqlite3.Error as exc:
        logger.warning("[MAP] tile cache read failed for %s/%s/%s: %s", z, x, y, exc)
        return None
    if not row:
        return None
    fetched_at, data = row
    if MAP_TILE_CACHE_TTL_SECONDS > 0 and time.time() - (fetched_at or 0) > MAP_TILE_CACHE_TTL_SECONDS:
        return None
    return data


def _store_tile_in_cache(z: int, x: int, y: int, data: bytes) -> None:
    try:
        db = _get_tile_db()
        db.execute(
            "INSERT OR REPLACE INTO tiles (z, x, y, fetched_at, data) VALUES (?, ?, ?, ?, ?)",
            (z, x, y, int(time.time()), data),
        )
        db.commit()
    except sqlite3.Error as exc:
        logger.warning("[MAP] tile cache write failed for %s/%s/%s: %s", z, x, y, exc)


def _fetch_tile_http(z: int, x: int, y: int) -> Optional[bytes]:
    """Fetch a single tile via HTTP with rate limiting."""
    global _LAST_TILE_TS

    if not MAP_TILES_ENABLED or not MAP_TILE_URL_TEMPLATE:
        return None

    url = MAP_TILE_URL_TEMPLATE.format(z=z, x=x, y=y)
    with _TILE_LOCK:
        elapsed = time.time() - _LAST_TILE_TS
        if elapsed < MAP_TILE_MIN_INTERVAL_SEC:
            time.sleep(MAP_TILE_MIN_INTERVAL_SEC - elapsed)
        _LAST_TILE_TS = time.time()
        try:
            resp = _TILE_SESSION.get(url, headers=MAP_TILE_HEADERS, timeout=MAP_TILE_TIMEOUT)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("[MAP] tile fetch failed for %s: %s", url, exc)
            return None
    return resp.content


@lru_cache(maxsize=256)
def _fetch_tile_cached(z: int, x: int, y: int) -> Optional[Image.Image]:
    """Cached tile fetch; SQLite first, then the throttled HTTP helper."""
    data = _get_tile_from_cache(z, x, y)
    from_cache = data is not None
    if data is None:
        data = _fetch_tile_http(z, x, y)
    if data is None:
        return None
    try:
        img = Image.open(BytesIO(data)).convert("RGB")
    except Exception as exc:
        logger.warning("[MAP] tile decode failed for %s/%s/%s: %s", z, x, y, exc)
        return None
    if not from_cache:
        _store_tile_in_cache(z, x, y, data)
    return img


def _latlon_to_tile_xy(lat: float, lon: float, zoom: int) -> Tuple[float, float]:
    """Convert lat/lon to fractional Web Mercator tile coords."""
    lat_rad = math.radians(lat)
    n = 2.0 ** zoom
    x = (lon + 180.0) / 360.0 * n
    y = (1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n
    return x, y


def _zoom_for_span(span_deg: float) -> int:
    if span_deg > 10:
        return 7
    if span_deg > 2:
        return 9
    if span_deg > 0.5:
        return 11
    if span_deg > 0.1:
        return 13
    return 15


def _draw_tile_background(img: Image.Image, viewport: MapRect) -> bool:
    """
    Attempt to draw a tile background for the viewport.
    Returns True if any tile was drawn, False to fall back to the grid.
    """
    if not MAP_TILES_ENABLED or not MAP_TILE_URL_TEMPLATE:
        return False

    span = max(viewport.max_lat - viewport.min_lat, viewport.max_lon - viewport.min_lon, 1e-6)
    zoom = _zoom_for_span(span)
    x1f, y1f = _latlon_to_tile_xy(viewport.max_lat, viewport.min_lon, zoom)
    x2f, y2f = _latlon_to_tile_xy(viewport.min_lat, viewport.max_lon, zoom)
    x_min, x_max = int(math.floor(min(x1f, x2f))), int(math.floor(max(x1f, x2f)))
    y_min, y_max = int(math.floor(min(y1f, y2f))), int(math.floor(max(y1f, y2f)))

    # Pixels per tile unit so the fractional viewport fills the canvas.
    scale_x = img.width / max(abs(x2f - x1f), 1e-9)
    scale_y = img.height / max(abs(y2f - y1f), 1e-9)

    any_tile = False
    for ty in range(y_min, y_max + 1):
        for tx in range(x_min, x_max + 1):
            tile = _fetch_tile_cached(zoom, tx, ty)
            if tile is None:
                continue
            any_tile = True
            w = max(1, int(math.ceil(scale_x)))
            h = max(1, int(math.ceil(scale_y)))
            px = int((tx - min(x1f, x2f)) * scale_x)
            py = int((ty - min(y1f, y2f)) * scale_y)
            img.paste(tile.resize((w, h), Image.BICUBIC), (px, py))
    return any_tile


def _draw_grid_background(img: Image.Image, scale: int) -> None:
    draw = ImageDraw.Draw(img, "RGBA")
    step = GRID_SPACING_PX * scale
    for x in range(0, img.width + 1, step):
        draw.line([(x, 0), (x, img.height)], fill=GRID_COLOR, width=max(1, scale // 2))
    for y in range(0, img.height + 1, step):
        draw.line([(0, y), (img.width, y)], fill=GRID_COLOR, width=max(1, scale // 2))


def fit_viewport_to_canvas(viewport: MapRect, width: int, height: int) -> MapRect:
    """
    Expand the viewport (never shrink) so its visible aspect matches the canvas.
    """
    center = viewport.center
    lat_span = max(viewport.max_lat - viewport.min_lat, 1e-6)
    lon_span = max(viewport.max_lon - viewport.min_lon, 1e-6)
    cos_lat = max(math.cos(math.radians(center.lat)), 1e-6)
    target_aspect = width / max(height, 1)
    visible_aspect = (lon_span * cos_lat) / lat_span

    if visible_aspect < target_aspect:
        lon_span = target_aspect * lat_span / cos_lat
    else:
        lat_span = lon_span * cos_lat / target_aspect

    return MapRect(
        min_lat=center.lat - lat_span / 2,
        min_lon=center.lon - lon_span / 2,
        max_lat=center.lat + lat_span / 2,
        max_lon=center.lon + lon_span / 2,
    )


def project_to_canvas(
    points: Sequence[Coordinate], viewport: MapRect, width: int, height: int
) -> List[Tuple[float, float]]:
    """Linear lat/lon -> pixel projection inside the viewport (y grows downward)."""
    lat_span = max(viewport.max_lat - viewport.min_lat, 1e-9)
    lon_span = max(viewport.max_lon - viewport.min_lon, 1e-9)
    return [
        (
            (p.lon - viewport.min_lon) / lon_span * width,
            (viewport.max_lat - p.lat) / lat_span * height,
        )
        for p in points
    ]


def _load_font(size: int) -> ImageFont.ImageFont:
    try:
        return ImageFont.truetype("DejaVuSans.ttf", size)
    except Exception:
        return ImageFont.load_default()


def _measure_text(font: ImageFont.ImageFont, text: str) -> Tuple[int, int]:
    """Safely measure text size across Pillow versions using getbbox."""
    bbox = font.getbbox(text)
    return bbox[2] - bbox[0], bbox[3] - bbox[1]


def _truncate_to_width(font: ImageFont.ImageFont, text: str, max_w: int) -> str:
    if _measure_text(font, text)[0] <= max_w:
        return text
    while text and _measure_text(font, text + "…")[0] > max_w:
        text = text[:-1]
    return text + "…"


def _draw_marker(draw: ImageDraw.ImageDraw, center: Tuple[float, float], radius: int, fill, outline, width: int) -> None:
    x, y = center
    draw.ellipse((x - radius, y - radius, x + radius, y + radius), fill=fill, outline=outline, width=width)


def _draw_location_indicator(
    draw: ImageDraw.ImageDraw, center: Tuple[float, float], diameters: Sequence[int], scale: int
) -> None:
    for diameter, color in zip(diameters, LOCATION_RING_COLORS):
        r = diameter * scale / 2
        _draw_marker(draw, center, int(r), fill=color, outline=None, width=0)


def _draw_search_box(draw: ImageDraw.ImageDraw, scene: MapScene, canvas_w: int, scale: int) -> None:
    margin = SEARCH_BOX_MARGIN_PX * scale
    box = (margin, margin, canvas_w - margin, margin + SEARCH_BOX_HEIGHT_PX * scale)
    draw.rectangle((box[0] + 2 * scale, box[1] + 3 * scale, box[2] + 2 * scale, box[3] + 3 * scale), fill=(0, 0, 0, 40))
    draw.rectangle(box, fill=(255, 255, 255, 255))
    font = _load_font(14 * scale)
    text = scene.search_box.text or scene.search_box.placeholder
    color = SEARCH_TEXT_COLOR if scene.search_box.text else SEARCH_PLACEHOLDER_COLOR
    pad = 12 * scale
    text = _truncate_to_width(font, text, box[2] - box[0] - 2 * pad)
    _, text_h = _measure_text(font, text or "Ag")
    draw.text((box[0] + pad, box[1] + (box[3] - box[1] - text_h) / 2), text, fill=color, font=font)


def _draw_detail_sheet(draw: ImageDraw.ImageDraw, scene: MapScene, canvas_w: int, canvas_h: int, scale: int) -> None:
    sheet = scene.detail_sheet
    if sheet is None:
        return
    sheet_h = min(sheet.height * scale, canvas_h)
    top = canvas_h - sheet_h
    draw.rounded_rectangle(
        (0, top, canvas_w, canvas_h + SHEET_CORNER_RADIUS_PX * scale),
        radius=SHEET_CORNER_RADIUS_PX * scale,
        fill=SHEET_BG,
    )
    pad = 20 * scale
    title_font = _load_font(22 * scale)
    sub_font = _load_font(12 * scale)
    close_r = 12 * scale
    text_w = canvas_w - 3 * pad - 2 * close_r
    name = _truncate_to_width(title_font, sheet.name, text_w)
    draw.text((pad, top + pad), name, fill=SHEET_TITLE_COLOR, font=title_font)
    _, name_h = _measure_text(title_font, name or "Ag")
    if sheet.title:
        subtitle = _truncate_to_width(sub_font, sheet.title, text_w)
        draw.text((pad, top + pad + name_h + 10 * scale), subtitle, fill=SHEET_SUBTITLE_COLOR, font=sub_font)
    # Close ("xmark") button.
    cx, cy = canvas_w - pad - close_r, top + pad + close_r
    _draw_marker(draw, (cx, cy), close_r, fill=(199, 199, 204, 255), outline=None, width=0)
    arm = close_r // 2
    draw.line([(cx - arm, cy - arm), (cx + arm, cy + arm)], fill="#ffffff", width=2 * scale)
    draw.line([(cx - arm, cy + arm), (cx + arm, cy - arm)], fill="#ffffff", width=2 * scale)


def render_map_scene(scene: MapScene, width: int = 430, height: int = 932) -> Image.Image:
    """Draw the scene at `width` x `height` (drawn upscaled, then downsampled)."""
    scale = UPSCALE_FACTOR
    draw_w, draw_h = width * scale, height * scale
    viewport = fit_viewport_to_canvas(scene.viewport, width, height)

    img = Image.new("RGBA", (draw_w, draw_h), color=BACKGROUND_COLOR)
    tiles_ok = False
    try:
        tiles_ok = _draw_tile_background(img, viewport)
    except Exception as exc:
        logger.warning("[MAP] tile background failed, falling back to grid: %s", exc)
    if tiles_ok:
        img = Image.alpha_composite(img, Image.new("RGBA", img.size, TILE_LIGHTEN_OVERLAY))
    else:
        _draw_grid_background(img, scale)

    draw = ImageDraw.Draw(img, "RGBA")

    if scene.route is not None and len(scene.route.polyline) >= 2:
        coords = project_to_canvas(scene.route.polyline, viewport, draw_w, draw_h)
        draw.line(coords, fill=ROUTE_HALO_COLOR, width=(ROUTE_WIDTH_PX + 4) * scale, joint="curve")
        draw.line(coords, fill=ROUTE_COLOR, width=ROUTE_WIDTH_PX * scale, joint="curve")

    marker_points = project_to_canvas([m.coordinate for m in scene.markers], viewport, draw_w, draw_h)
    for marker, xy in zip(scene.markers, marker_points):
        fill = MARKER_SELECTED_COLOR if marker.selected else MARKER_COLOR
        radius = MARKER_RADIUS_PX * scale * (1.4 if marker.selected else 1.0)
        _draw_marker(draw, xy, int(radius), fill=fill, outline=MARKER_OUTLINE, width=2 * scale)

    (loc_xy,) = project_to_canvas([scene.location.coordinate], viewport, draw_w, draw_h)
    _draw_location_indicator(draw, loc_xy, scene.location.ring_diameters, scale)

    _draw_search_box(draw, scene, draw_w, scale)
    _draw_detail_sheet(draw, scene, draw_w, draw_h, scale)

    return img.resize((width, height), resample=Image.LANCZOS).convert("RGB")


def render_map_scene_png(scene: MapScene, width: int = 430, height: int = 932) -> bytes:
    buf = BytesIO()
    render_map_scene(scene, width=width, height=height).save(buf, format="PNG")
    return buf.getvalue()
