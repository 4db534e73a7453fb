"""County name and FIPS codes for a coordinate, via the Census geographies API."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from parcel_lookup import ParcelLookupError, QUERY_TIMEOUT, build_session, fetch_json

LOG = logging.getLogger(__name__)

CENSUS_COORDINATES_URL = "https://geocoding.geo.census.gov/geocoder/geographies/coordinates"

STATE_ABBR = {
    "01": "AL", "02": "AK", "04": "AZ", "05": "AR", "06": "CA", "08": "CO", "09": "CT",
    "10": "DE", "11": "DC", "12": "FL", "13": "GA", "15": "HI", "16": "ID", "17": "IL",
    "18": "IN", "19": "IA", "20": "KS", "21": "KY", "22": "LA", "23": "ME", "24": "MD",
    "25": "MA", "26": "MI", "27": "MN", "28": "MS", "29": "MO", "30": "MT", "31": "NE",
    "32": "NV", "33": "NH", "34": "NJ", "35": "NM", "36": "NY", "37": "NC", "38": "ND",
    "39": "OH", "40": "OK", "41": "OR", "42": "PA", "44": "RI", "45": "SC", "46": "SD",
    "47": "TN", "48": "TX", "49": "UT", "50": "VT", "51": "VA", "53": "WA", "54": "WV",
    "55": "WI", "56": "WY",
}


def _invalid(detail: str) -> Dict[str, Any]:
    return {"status": "error", "code": "INVALID_RESPONSE", "message": f"Malformed Census response: {detail}"}


def parse_county(data: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        return _invalid("body is not an object")
    result = data.get("result") or {}
    if not isinstance(result, dict):
        return _invalid("'result' is not an object")
    geographies = result.get("geographies") or {}
    if not isinstance(geographies, dict):
        return _invalid("'geographies' is not an object")
    counties = geographies.get("Counties") or []
    if not isinstance(counties, list):
        return _invalid("'Counties' is not a list")
    if not counties:
        return {"status": "error", "code": "NO_COUNTY", "message": "No county found for these coordinates"}
    county = counties[0]
    if not isinstance(county, dict):
        return _invalid("county entry is not an object")

    geoid = str(county.get("GEOID") or "")
    state_fips = str(county.get("STATE") or geoid[:2])
    county_fips = str(county.get("COUNTY") or geoid[2:5])

    full_name = str(county.get("NAME") or "")
    county_name, state_name = full_name, ""
    if "," in full_name:
        county_name, state_name = (part.strip() for part in full_name.split(",", 1))
    if not county_name and county.get("BASENAME"):
        county_name = str(county["BASENAME"])

    return {
        "status": "ok",
        "county_name": county_name,
        "state_name": state_name,
        "state_abbr": STATE_ABBR.get(state_fips, ""),
        "state_fips": state_fips,
        "county_fips": county_fips,
        "county_geoid": state_fips + county_fips,
        "source": "CensusGeocoder",
    }


def lookup_county(
    lat: float,
    lon: float,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = QUERY_TIMEOUT,
) -> Dict[str, Any]:
    session = session or build_session()
    params = {
        "x": lon,
        "y": lat,
        "benchmark": "Public_AR_Current",
        "vintage": "Current_Current",
        "format": "json",
    }
    try:
        data = fetch_json(session, CENSUS_COORDINATES_URL, params, timeout=timeout)
    except ParcelLookupError as exc:
        LOG.warning("Census county lookup failed for %s,%s: %s", lat, lon, exc)
        return {"status": "error", "code": exc.code, "message": str(exc)}
    except requests.RequestException as exc:
        LOG.warning("Census county lookup failed for %s,%s: %s", lat, lon, exc)
        return {"status": "error", "code": "HTTP_ERROR", "message": str(exc) or "Failed to lookup county information"}
    return parse_county(data)
