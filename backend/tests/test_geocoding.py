from unittest.mock import MagicMock, patch

import pytest
import requests

from domain.models import Coordinate, MapRegion
from services import geocoding as geo
from services.geocoding import NominatimSearchClient, format_place_name, viewbox_param

MIAMI = MapRegion(center=Coordinate(25.781441, -80.188332), lat_meters=10000, lon_meters=10000)


@pytest.fixture(autouse=True)
def no_throttle(monkeypatch):
    monkeypatch.setattr(geo, "_MIN_INTERVAL_SEC", 0.0)


def _response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


def test_viewbox_param_orders_left_top_right_bottom():
    left, top, right, bottom = (float(v) for v in viewbox_param(MIAMI).split(","))
    assert left < -80.188332 < right
    assert bottom < 25.781441 < top
    # 10 km north-south is roughly 0.09 degrees.
    assert top - bottom == pytest.approx(0.0898, abs=1e-3)


def test_format_place_name_prefers_name_then_display_name():
    assert format_place_name({"name": "Cafe A", "display_name": "Cafe A, Miami"}) == "Cafe A"
    assert format_place_name({"name": "", "display_name": "123 Main St, Miami, FL"}) == "123 Main St"
    assert format_place_name({"lat": "1.5", "lon": "2.25"}) == "(1.5000, 2.2500)"


@patch("services.geocoding._session.get")
def test_search_parses_rows_in_provider_order(mock_get):
    mock_get.return_value = _response(
        [
            {"place_id": 1, "name": "Cafe A", "display_name": "Cafe A, Brickell, Miami", "lat": "25.78", "lon": "-80.19"},
            {"place_id": 2, "name": "Cafe B", "display_name": "Cafe B, Miami", "lat": "25.79", "lon": "-80.20"},
        ]
    )
    client = NominatimSearchClient(base_url="http://nominatim.test", use_cache=False)

    results = client.search("coffee", MIAMI)

    assert [r.name for r in results] == ["Cafe A", "Cafe B"]
    assert results[0].coordinate == Coordinate(25.78, -80.19)
    assert results[0].title == "Cafe A, Brickell, Miami"
    assert results[0].place_id == "1"
    url = mock_get.call_args.args[0]
    params = mock_get.call_args.kwargs["params"]
    assert url == "http://nominatim.test/search"
    assert params["q"] == "coffee"
    assert params["bounded"] == "0"
    assert params["viewbox"] == viewbox_param(MIAMI)


@patch("services.geocoding._session.get")
def test_search_empty_query_returns_empty_without_request(mock_get):
    client = NominatimSearchClient(use_cache=False)
    assert client.search("", MIAMI) == []
    assert client.search("   ", MIAMI) == []
    mock_get.assert_not_called()


@patch("services.geocoding._session.get")
def test_search_network_error_returns_empty(mock_get):
    mock_get.side_effect = requests.ConnectionError("offline")
    client = NominatimSearchClient(use_cache=False)
    assert client.search("coffee", MIAMI) == []


@patch("services.geocoding._session.get")
def test_search_bad_json_or_payload_returns_empty(mock_get):
    bad_json = MagicMock()
    bad_json.raise_for_status.return_value = None
    bad_json.json.side_effect = ValueError("not json")
    mock_get.return_value = bad_json
    client = NominatimSearchClient(use_cache=False)
    assert client.search("coffee", MIAMI) == []

    mock_get.return_value = _response({"error": "Unable to geocode"})
    assert client.search("coffee", MIAMI) == []


@patch("services.geocoding._session.get")
def test_search_skips_malformed_rows(mock_get):
    mock_get.return_value = _response(
        [
            {"name": "No coords"},
            "oops",
            None,
            {"name": 5, "lat": "25.79", "lon": "-80.20"},
            {"name": "Cafe A", "lat": "25.78", "lon": "-80.19"},
        ]
    )
    client = NominatimSearchClient(use_cache=False)
    results = client.search("coffee", MIAMI)
    assert [r.name for r in results] == ["5", "Cafe A"]


@patch("services.geocoding._session.get")
def test_search_respects_max_results(mock_get):
    rows = [{"name": f"P{i}", "lat": "25.0", "lon": "-80.0"} for i in range(5)]
    mock_get.return_value = _response(rows)
    client = NominatimSearchClient(use_cache=False, max_results=3)
    assert len(client.search("park", MIAMI)) == 3
    assert mock_get.call_args.kwargs["params"]["limit"] == "3"
