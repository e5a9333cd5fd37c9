"""
SQLite-backed cache for place search results.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from typing import List, Optional

from domain.models import Coordinate, MapRegion, PlaceResult

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
DATA_DIR = os.path.join(BASE_DIR, "data")
SEARCH_CACHE_DB_FILENAME = "search_cache.sqlite"
SEARCH_CACHE_PATH = os.getenv("SEARCH_CACHE_PATH") or os.path.join(DATA_DIR, SEARCH_CACHE_DB_FILENAME)
SEARCH_CACHE_TTL_SECONDS = int(os.getenv("SEARCH_CACHE_TTL_SECONDS", str(7 * 24 * 3600)))

logger = logging.getLogger(__name__)


def _quantize_coord(value: float, step: float = 0.0005) -> float:
    """Quantize coordinates to reduce cache key diversity (~50m grid)."""
    return round(round(value / step) * step, 6)


def _normalize_query(query: str) -> str:
    return " ".join(query.lower().split())


class SearchCache:
    def __init__(self, db_path: Optional[str] = None, default_ttl_seconds: int = SEARCH_CACHE_TTL_SECONDS):
        self.db_path = db_path or SEARCH_CACHE_PATH
        self.default_ttl_seconds = default_ttl_seconds
        os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._init_schema()

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS search_cache (
                provider TEXT NOT NULL,
                query TEXT NOT NULL,
                key_lat REAL NOT NULL,
                key_lon REAL NOT NULL,
                span_lat_m REAL NOT NULL,
                span_lon_m REAL NOT NULL,
                response_json TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                ttl_seconds INTEGER NOT NULL,
                PRIMARY KEY (provider, query, key_lat, key_lon, span_lat_m, span_lon_m)
            )
            """
        )
        self._conn.commit()

    def _key(self, provider: str, query: str, region: MapRegion) -> tuple:
        return (
            provider,
            _normalize_query(query),
            _quantize_coord(region.center.lat),
            _quantize_coord(region.center.lon),
            float(region.lat_meters),
            float(region.lon_meters),
        )

    def get_results(self, provider: str, query: str, region: MapRegion) -> Optional[List[PlaceResult]]:
        """
        Return cached PlaceResult list if a non-expired entry exists for the key.
        """
        try:
            cur = self._conn.execute(
                """
                SELECT response_json, created_at, ttl_seconds FROM search_cache
                WHERE provider=? AND query=? AND key_lat=? AND key_lon=? AND span_lat_m=? AND span_lon_m=?
                """,
                self._key(provider, query, region),
            )
            row = cur.fetchone()
        except sqlite3.Error as exc:
            logger.warning("[SEARCH] cache read failed for q=%r: %s", query, exc)
            return None
        if not row:
            return None
        response_json, created_at, ttl_seconds = row
        if ttl_seconds > 0 and (time.time() - created_at) > ttl_seconds:
            return None
        try:
            payload = json.loads(response_json)
        except ValueError:
            return None
        results: List[PlaceResult] = []
        for item in payload or []:
            try:
                lat, lon = item["coordinate"]
                results.append(
                    PlaceResult(
                        name=item.get("name", ""),
                        coordinate=Coordinate(lat=float(lat), lon=float(lon)),
                        title=item.get("title"),
                        provider=item.get("provider", provider),
                        place_id=item.get("place_id", ""),
                    )
                )
            except (KeyError, TypeError, ValueError):
                continue
        return results or None

    def put_results(
        self,
        provider: str,
        query: str,
        region: MapRegion,
        places: List[PlaceResult],
        ttl_seconds: Optional[int] = None,
    ) -> None:
        """Store PlaceResult list in cache for key."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        payload = [p.to_dict() for p in places]
        try:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO search_cache
                (provider, query, key_lat, key_lon, span_lat_m, span_lon_m, response_json, created_at, ttl_seconds)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (*self._key(provider, query, region), json.dumps(payload), int(time.time()), ttl),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            logger.warning("[SEARCH] cache write failed for q=%r: %s", query, exc)


_default_search_cache: Optional[SearchCache] = None


def get_default_search_cache() -> SearchCache:
    global _default_search_cache
    if _default_search_cache is None:
        _default_search_cache = SearchCache()
    return _default_search_cache
