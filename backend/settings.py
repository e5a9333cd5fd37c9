import os

# Basic settings helper to read environment configuration.


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    return float(val)


class Settings:
    def __init__(self) -> None:
        # Static "current location"; no device location reading happens.
        self.MAP_ORIGIN_LAT: float = _as_float(os.getenv("MAP_ORIGIN_LAT"), 25.781441)
        self.MAP_ORIGIN_LON: float = _as_float(os.getenv("MAP_ORIGIN_LON"), -80.188332)
        self.MAP_BIAS_SPAN_METERS: float = _as_float(os.getenv("MAP_BIAS_SPAN_METERS"), 10000.0)
        self.MAP_DETAIL_SHEET_HEIGHT: int = int(os.getenv("MAP_DETAIL_SHEET_HEIGHT", "340"))
        self.MAP_DISCARD_STALE_RESPONSES: bool = _as_bool(
            os.getenv("MAP_DISCARD_STALE_RESPONSES"), False
        )
        self.MAP_MAX_SESSIONS: int = int(os.getenv("MAP_MAX_SESSIONS", "1000"))

        self.SEARCH_RESULT_LIMIT: int = int(os.getenv("SEARCH_RESULT_LIMIT", "10"))
        self.SEARCH_CACHE_ENABLED: bool = _as_bool(os.getenv("SEARCH_CACHE_ENABLED"), False)

        self.OSRM_BASE_URL: str = os.getenv("OSRM_BASE_URL", "https://router.project-osrm.org")
        self.OSRM_PROFILE: str = os.getenv("OSRM_PROFILE", "driving")
        self.OSRM_TIMEOUT: float = _as_float(os.getenv("OSRM_TIMEOUT"), 5.0)


settings = Settings()
