from unittest.mock import MagicMock, patch

import pytest
import requests

from domain.models import Coordinate, MapRect, PlaceResult
from services.routing import OSRMRouteClient, format_coordinates, parse_geojson_line

ORIGIN = Coordinate(25.781441, -80.188332)
CAFE = PlaceResult(name="Cafe A", coordinate=Coordinate(25.78, -80.19))


def _response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


def test_format_coordinates_is_lon_lat():
    assert format_coordinates([Coordinate(1.0, 2.0), Coordinate(3.0, 4.0)]) == (
        "2.000000,1.000000;4.000000,3.000000"
    )


def test_parse_geojson_line_flips_to_lat_lon():
    geometry = {"type": "LineString", "coordinates": [[-80.1, 25.7], [-80.2, 25.8]]}
    assert parse_geojson_line(geometry) == [Coordinate(25.7, -80.1), Coordinate(25.8, -80.2)]


@patch("services.routing._session.get")
def test_route_returns_polyline_and_bounding_rect(mock_get):
    mock_get.return_value = _response(
        {
            "code": "Ok",
            "routes": [
                {
                    "distance": 1234.5,
                    "duration": 300.0,
                    "geometry": {
                        "type": "LineString",
                        "coordinates": [[-80.188332, 25.781441], [-80.195, 25.770], [-80.19, 25.78]],
                    },
                }
            ],
        }
    )
    client = OSRMRouteClient(base_url="http://osrm.test", profile="driving", timeout=2)

    route = client.route(ORIGIN, CAFE)

    assert route is not None
    assert len(route.polyline) == 3
    assert route.bounding_rect == MapRect(min_lat=25.770, min_lon=-80.195, max_lat=25.781441, max_lon=-80.188332)
    assert route.destination == CAFE
    assert route.distance_m == 1234.5
    url = mock_get.call_args.args[0]
    assert url.startswith("http://osrm.test/route/v1/driving/-80.188332,25.781441;")
    assert mock_get.call_args.kwargs["params"]["geometries"] == "geojson"


@patch("services.routing._session.get")
def test_route_non_ok_code_returns_none(mock_get):
    mock_get.return_value = _response({"code": "NoRoute", "message": "Impossible route"})
    assert OSRMRouteClient(base_url="http://osrm.test").route(ORIGIN, CAFE) is None


@patch("services.routing._session.get")
def test_route_short_geometry_returns_none(mock_get):
    mock_get.return_value = _response(
        {"code": "Ok", "routes": [{"geometry": {"coordinates": [[-80.19, 25.78]]}}]}
    )
    assert OSRMRouteClient(base_url="http://osrm.test").route(ORIGIN, CAFE) is None


@patch("services.routing._session.get")
def test_route_transport_error_returns_none(mock_get):
    mock_get.side_effect = requests.Timeout("slow")
    assert OSRMRouteClient(base_url="http://osrm.test").route(ORIGIN, CAFE) is None


@patch("services.routing._session.get")
def test_route_http_error_returns_none(mock_get):
    resp = MagicMock()
    resp.raise_for_status.side_effect = requests.HTTPError("502")
    mock_get.return_value = resp
    assert OSRMRouteClient(base_url="http://osrm.test").route(ORIGIN, CAFE) is None


@pytest.mark.parametrize(
    "payload",
    [
        {"code": "Ok", "routes": ["bad"]},
        {"code": "Ok", "routes": {"0": {}}},
        {
            "code": "Ok",
            "routes": [
                {"geometry": {"coordinates": [[-80.19, 25.78], [-80.18, 25.77]]}, "distance": "far"}
            ],
        },
    ],
)
@patch("services.routing._session.get")
def test_route_unexpected_shapes_return_none(mock_get, payload):
    mock_get.return_value = _response(payload)
    assert OSRMRouteClient(base_url="http://osrm.test").route(ORIGIN, CAFE) is None
