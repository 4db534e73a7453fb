import pytest
import requests

from parcel_lookup import GEOCODE_URL, Coordinate, GeocodeError, address_variants, geocode_address


def _match(lat, lon, matched="MATCHED"):
    return {"result": {"addressMatches": [{"matchedAddress": matched, "coordinates": {"x": lon, "y": lat}}]}}


NO_MATCH = {"result": {"addressMatches": []}}


def test_address_variants_expand_suffixes_in_order():
    variants = address_variants("12 Oak Rd, Dover, DE")
    assert variants == ["12 Oak Rd, Dover, DE", "12 Oak Road, Dover, DE"]

    variants = address_variants("1 main st and elm ave")
    assert variants[0] == "1 main st and elm ave"
    assert "1 main Street and elm ave" in variants
    assert "1 main st and elm Avenue" in variants


def test_address_variants_normalize_way_casing():
    assert address_variants("5 Harbor way")[1] == "5 Harbor Way"


def test_geocode_returns_first_match(make_session, no_sleep):
    session = make_session(lambda url, params: _match(39.158, -75.524))
    coord = geocode_address("123 Main St, Dover, DE 19901", session=session, sleep_fn=no_sleep)
    assert coord == Coordinate(lat=39.158, lon=-75.524)
    assert len(session.calls) == 1
    url, params = session.calls[0]
    assert url == GEOCODE_URL
    assert params["benchmark"] == "Public_AR_Current"
    assert params["format"] == "json"


def test_geocode_falls_through_to_expanded_variant(make_session, no_sleep):
    def handler(url, params):
        if "Road" in params["address"]:
            return _match(38.9, -75.4)
        return NO_MATCH

    session = make_session(handler)
    coord = geocode_address("9 Oak Rd, Milford, DE", session=session, sleep_fn=no_sleep)
    assert coord == Coordinate(lat=38.9, lon=-75.4)
    assert [params["address"] for _, params in session.calls] == ["9 Oak Rd, Milford, DE", "9 Oak Road, Milford, DE"]


def test_geocode_error_after_all_variants_and_retries(make_session, sleeps, no_sleep):
    session = make_session(lambda url, params: requests.ConnectionError("boom"))
    with pytest.raises(GeocodeError) as info:
        geocode_address("9 Oak Rd, Milford, DE", session=session, sleep_fn=no_sleep)
    assert info.value.code == "GEOCODE_ERROR"
    assert isinstance(info.value.__cause__, requests.ConnectionError)
    # two variants, three attempts each
    assert len(session.calls) == 6
    assert sleeps == pytest.approx([0.3, 0.9, 0.3, 0.9])


def test_geocode_error_without_any_match(make_session, no_sleep):
    session = make_session(lambda url, params: NO_MATCH)
    with pytest.raises(GeocodeError):
        geocode_address("nowhere at all", session=session, sleep_fn=no_sleep)
    assert len(session.calls) == 1


@pytest.mark.parametrize(
    "body",
    [
        {"result": {"addressMatches": [None]}},
        {"result": "unavailable"},
        {"result": {"addressMatches": {"x": 1}}},
        {"result": {"addressMatches": [{"coordinates": {"x": "abc", "y": 38.9}}]}},
    ],
)
def test_malformed_body_moves_on_to_next_variant(make_session, no_sleep, body):
    def handler(url, params):
        if "Road" in params["address"]:
            return _match(38.9, -75.4)
        return body

    session = make_session(handler)
    coord = geocode_address("1 Foo Rd", session=session, sleep_fn=no_sleep)
    assert coord == Coordinate(lat=38.9, lon=-75.4)
    assert [params["address"] for _, params in session.calls] == ["1 Foo Rd", "1 Foo Road"]


def test_malformed_body_on_every_variant_is_geocode_error(make_session, no_sleep):
    session = make_session(lambda url, params: {"result": {"addressMatches": [None]}})
    with pytest.raises(GeocodeError) as info:
        geocode_address("1 Foo Rd", session=session, sleep_fn=no_sleep)
    assert isinstance(info.value.__cause__, GeocodeError)
    assert len(session.calls) == 2
