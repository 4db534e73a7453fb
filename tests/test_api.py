import pytest
from fastapi.testclient import TestClient

from api.main import app
from parcel_lookup import GEOCODE_URL
from resolver.cache import ResultCache
from resolver.census import CENSUS_COORDINATES_URL
from resolver.config import load_jurisdictions
from resolver.service import ParcelResolver

KENT_FEATURE = {"features": [{"attributes": {"PIN": "LC-00-056.00-01-12.00-000", "COUNTY": "KENT"}}]}
DOVER = {"result": {"addressMatches": [{"coordinates": {"x": -75.524, "y": 39.158}}]}}
COUNTY = {
    "result": {
        "geographies": {
            "Counties": [{"GEOID": "10001", "STATE": "10", "COUNTY": "001", "NAME": "Kent County, Delaware"}]
        }
    }
}


def _handler(url, params):
    if url == GEOCODE_URL:
        return DOVER
    if url == CENSUS_COORDINATES_URL:
        return COUNTY
    return KENT_FEATURE


@pytest.fixture()
def client(make_session, no_sleep):
    original = app.state.resolver
    session = make_session(_handler)
    app.state.resolver = ParcelResolver(load_jurisdictions(), ResultCache(), session=session, sleep_fn=no_sleep)
    try:
        with TestClient(app) as test_client:
            test_client.session_calls = session.calls
            yield test_client
    finally:
        app.state.resolver = original


def test_empty_body_is_missing_input(client):
    response = client.post("/resolve-parcel", json={})
    assert response.status_code == 400
    assert response.json() == {
        "status": "error",
        "code": "MISSING_INPUT",
        "message": "Either address or coordinates (lat/lon) are required",
    }


def test_latitude_without_longitude_is_missing_input(client):
    response = client.post("/resolve-parcel", json={"lat": 39.0})
    assert response.status_code == 400
    assert response.json()["code"] == "MISSING_INPUT"


@pytest.mark.parametrize(
    "content",
    [
        b"{not json",
        b'["123 Main St"]',
        b'{"lat": "39.1", "lon": -75.5}',
        b'{"address": 12}',
        b'{"lat": 91, "lon": -75.5}',
    ],
)
def test_malformed_body_is_bad_request(client, content):
    response = client.post("/resolve-parcel", content=content, headers={"content-type": "application/json"})
    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "error"
    assert body["code"] == "BAD_REQUEST"
    assert client.session_calls == []


def test_wrong_method_is_rejected(client):
    response = client.get("/resolve-parcel")
    assert response.status_code == 405
    assert response.json()["code"] == "METHOD_NOT_ALLOWED"
    assert "POST" in response.headers["allow"]


@pytest.mark.parametrize("method", ["PUT", "DELETE", "OPTIONS"])
def test_other_methods_get_json_405(client, method):
    response = client.request(method, "/resolve-parcel")
    assert response.status_code == 405
    assert response.json() == {"status": "error", "code": "METHOD_NOT_ALLOWED", "message": "Use POST"}


def test_head_is_rejected_too(client):
    response = client.head("/resolve-parcel")
    assert response.status_code == 405
    assert "POST" in response.headers["allow"]


def test_preflight_allows_any_origin(client):
    response = client.options(
        "/resolve-parcel",
        headers={
            "Origin": "https://app.example.test",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type, apikey",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "POST" in response.headers["access-control-allow-methods"]


def test_coordinates_resolve_to_parcel(client):
    response = client.post("/resolve-parcel", json={"lat": 38.9, "lon": -75.524})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["parcel_id"] == "LC-00-056.00-01-12.00-000"
    assert body["source"] == "Kent_County_Parcels"
    assert body["jurisdiction_name"] == "KENT"
    assert "map_number" not in body
    assert None not in body.values()
    assert all(url != GEOCODE_URL for url, _ in client.session_calls)


def test_address_is_geocoded_first(client):
    response = client.post("/resolve-parcel", json={"address": "123 Main St, Dover, DE 19901"})
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert client.session_calls[0][0] == GEOCODE_URL


def test_lookup_failure_is_a_200_error_envelope(client, make_session, no_sleep):
    client.app.state.resolver = ParcelResolver(
        load_jurisdictions(),
        ResultCache(),
        session=make_session(lambda url, params: {"features": []}),
        sleep_fn=no_sleep,
    )
    response = client.post("/resolve-parcel", json={"lat": 39.5, "lon": -75.6})
    assert response.status_code == 200
    assert response.json() == {
        "status": "error",
        "code": "NO_PARCEL",
        "message": "No parcel found at coordinates 39.5, -75.6",
    }


def test_health_reports_cache_and_jurisdictions(client):
    client.post("/resolve-parcel", json={"lat": 39.158, "lon": -75.524})
    client.post("/resolve-parcel", json={"lat": 39.158, "lon": -75.524})
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["jurisdictions"] == ["DE", "MD"]
    assert body["cache"]["hits"] == 1
    assert body["cache"]["size"] == 1


def test_root_banner(client):
    assert client.get("/").json()["service"] == "parcel-resolution"


def test_forward_geocode(client):
    response = client.get("/geocode", params={"address": "123 Main St, Dover, DE"})
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "address": "123 Main St, Dover, DE", "lat": 39.158, "lon": -75.524}


def test_forward_geocode_without_match(client, make_session, no_sleep):
    client.app.state.resolver = ParcelResolver(
        load_jurisdictions(),
        ResultCache(),
        session=make_session(lambda url, params: {"result": {"addressMatches": []}}),
        sleep_fn=no_sleep,
    )
    body = client.get("/geocode", params={"address": "nowhere"}).json()
    assert body["status"] == "error"
    assert body["code"] == "GEOCODE_ERROR"


def test_county_fips(client):
    response = client.get("/county-fips", params={"lat": 39.158, "lon": -75.524})
    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "county_name": "Kent County",
        "state_name": "Delaware",
        "state_abbr": "DE",
        "state_fips": "10",
        "county_fips": "001",
        "county_geoid": "10001",
        "source": "CensusGeocoder",
    }


def test_county_fips_requires_coordinates(client):
    assert client.get("/county-fips", params={"lat": 39.1}).status_code == 422


def test_county_fips_malformed_upstream_body_is_json_envelope(client, make_session, no_sleep):
    client.app.state.resolver = ParcelResolver(
        load_jurisdictions(),
        ResultCache(),
        session=make_session(lambda url, params: {"result": "busy"}),
        sleep_fn=no_sleep,
    )
    response = client.get("/county-fips", params={"lat": 39.158, "lon": -75.524})
    assert response.status_code == 200
    assert response.json()["code"] == "INVALID_RESPONSE"
