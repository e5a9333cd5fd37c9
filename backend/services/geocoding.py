"""Forward place search using OpenStreetMap Nominatim.

The API surface is intentionally small: one call that turns a free-text query
plus a bias region into a list of PlaceResult, failing soft to an empty list.
"""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from typing import Any, List, Optional

import requests

from domain.models import Coordinate, MapRegion, PlaceResult
from services.search_cache_sqlite import SearchCache, get_default_search_cache
from settings import settings

NOMINATIM_BASE_URL = os.getenv("NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org")
logger = logging.getLogger(__name__)
_session = requests.Session()
_last_request_ts: float = 0.0
_lock = threading.Lock()
_MIN_INTERVAL_SEC = float(os.getenv("NOMINATIM_MIN_INTERVAL", "1.1"))
_logged_ua = False
NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT")
NOMINATIM_REFERER = os.getenv("NOMINATIM_REFERER")

FALLBACK_UA = "map-search-route/0.1 (contact: example@example.com)"
if NOMINATIM_USER_AGENT is None:
    logger.warning(
        "NOMINATIM_USER_AGENT not set in environment; using fallback UA. "
        "This may violate Nominatim usage policy."
    )


def _redact_email(ua: str) -> str:
    if "@" not in ua:
        return ua
    return re.sub(r"\S+@\S+", "<redacted>", ua)


_ua_value = NOMINATIM_USER_AGENT or FALLBACK_UA
NOMINATIM_HEADERS = {
    "User-Agent": _ua_value,
}
if NOMINATIM_REFERER:
    NOMINATIM_HEADERS["Referer"] = NOMINATIM_REFERER


def _throttled_get(
    url: str,
    *,
    params: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
) -> requests.Response:
    """Perform a GET request with a simple global rate limit."""
    global _last_request_ts
    with _lock:
        now = time.time()
        delta = now - _last_request_ts
        if delta < _MIN_INTERVAL_SEC:
            time.sleep(_MIN_INTERVAL_SEC - delta)
        _last_request_ts = time.time()
    return _session.get(url, params=params, headers=headers, timeout=timeout)


def viewbox_param(region: MapRegion) -> str:
    """Nominatim viewbox string: left,top,right,bottom (lon,lat,lon,lat)."""
    rect = region.bounding_rect()
    return f"{rect.min_lon:.6f},{rect.max_lat:.6f},{rect.max_lon:.6f},{rect.min_lat:.6f}"


def format_place_name(item: dict) -> str:
    """
    Pick a short marker label for a Nominatim row.

    Prefers the venue 'name'; otherwise the first component of display_name;
    otherwise the coordinates.
    """
    name = str(item.get("name") or "").strip()
    if name:
        return name
    display_name = str(item.get("display_name") or "").strip()
    if display_name:
        return display_name.split(",")[0].strip()
    return f"({float(item.get('lat', 0.0)):.4f}, {float(item.get('lon', 0.0)):.4f})"


def _row_to_place(item: dict, provider: str) -> PlaceResult:
    return PlaceResult(
        name=format_place_name(item),
        coordinate=Coordinate(lat=float(item["lat"]), lon=float(item["lon"])),
        title=str(item["display_name"]) if item.get("display_name") else None,
        provider=provider,
        place_id=str(item.get("place_id", "")),
        raw=item,
    )


class NominatimSearchClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        cache: Optional[SearchCache] = None,
        use_cache: Optional[bool] = None,
        max_results: Optional[int] = None,
        timeout: float = 5.0,
    ):
        self.provider = "osm"
        base = base_url or NOMINATIM_BASE_URL
        if base.endswith("/search"):
            base = base.rsplit("/", 1)[0]
        self.base_url = base.rstrip("/")
        if use_cache is None:
            use_cache = settings.SEARCH_CACHE_ENABLED
        self.cache = (cache or get_default_search_cache()) if use_cache else None
        self.max_results = max_results or settings.SEARCH_RESULT_LIMIT
        self.timeout = timeout

    def _lookup(self, query: str, bias_region: MapRegion) -> Optional[Any]:
        global _logged_ua
        if not _logged_ua:
            logger.debug("Nominatim User-Agent: %s", _redact_email(_ua_value))
            _logged_ua = True

        params = {
            "q": query,
            "format": "jsonv2",
            "viewbox": viewbox_param(bias_region),
            "bounded": "0",
            "addressdetails": "1",
            "limit": str(self.max_results),
        }
        try:
            resp = _throttled_get(
                f"{self.base_url}/search",
                params=params,
                headers=NOMINATIM_HEADERS,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except Exception as exc:
            logger.warning("[SEARCH] Nominatim search error for q=%r: %s", query, exc)
            return None

        try:
            return resp.json()
        except Exception as exc:
            logger.warning("[SEARCH] Nominatim search JSON error for q=%r: %s", query, exc)
            return None

    def search(self, query: str, bias_region: MapRegion) -> List[PlaceResult]:
        """
        Search places for `query`, weighted toward `bias_region`.

        Never raises: an empty query, a transport error, an unexpected payload
        or no matches all yield an empty list. Provider order is preserved.
        """
        query = (query or "").strip()
        if not query:
            return []

        if self.cache is not None:
            cached = self.cache.get_results(self.provider, query, bias_region)
            if cached is not None:
                logger.debug("[SEARCH] cache hit q=%r (%d results)", query, len(cached))
                return cached

        data = self._lookup(query, bias_region)
        if not isinstance(data, list):
            if data is not None:
                logger.warning("[SEARCH] unexpected Nominatim payload for q=%r", query)
            return []

        results: List[PlaceResult] = []
        for item in data[: self.max_results]:
            if not isinstance(item, dict):
                logger.debug("[SEARCH] skipping non-object row for q=%r: %r", query, item)
                continue
            try:
                results.append(_row_to_place(item, self.provider))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.debug("[SEARCH] skipping malformed row for q=%r: %s", query, exc)
                continue

        if self.cache is not None and results:
            self.cache.put_results(self.provider, query, bias_region, results)

        logger.debug("[SEARCH] q=%r got %d results", query, len(results))
        return results


_default_search_client: Optional[NominatimSearchClient] = None


def get_default_search_client() -> NominatimSearchClient:
    global _default_search_client
    if _default_search_client is None:
        _default_search_client = NominatimSearchClient()
    return _default_search_client
