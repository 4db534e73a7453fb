#!/usr/bin/env python3
"""Resolve a Delaware/Maryland address (or coordinate) to a tax parcel ID.

Workflow:
    1. Geocode an input address with the US Census one-line geocoder, trying
       a few spelled-out variants of common street suffixes.
    2. Route the coordinate to a state parcel service (and, in Delaware, to a
       county service).
    3. Query the ArcGIS feature service with progressively wider point
       buffers, then bounding-box envelopes, in both WGS84 (wkid 4326) and
       Web Mercator (wkid 102100).
    4. Map the returned attributes onto a canonical parcel record.

Steps 2 and 4 live in the ``resolver`` package; this module owns the network
side (geocoding, ArcGIS queries, retry/backoff) and the command line entry
point.

You need network access and the following Python packages installed:
    pip install requests shapely

Every HTTP call carries an explicit timeout and is retried twice with a
x3 backoff (0.3s, 0.9s by default). Set PARCEL_RETRY_BASE_DELAY to tune it.
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import os
import re
import sys
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

import requests
from requests.adapters import HTTPAdapter
from shapely.geometry import box

GEOCODE_URL = "https://geocoding.geo.census.gov/geocoder/locations/onelineaddress"
GEOCODE_BENCHMARK = "Public_AR_Current"
GEOCODE_TIMEOUT = float(os.getenv("GEOCODER_TIMEOUT", "15"))
QUERY_TIMEOUT = float(os.getenv("PARCEL_HTTP_TIMEOUT", "10"))
RETRY_BASE_DELAY = float(os.getenv("PARCEL_RETRY_BASE_DELAY", "0.3"))
RETRY_COUNT = 2
RETRY_FACTOR = 3

ORIGIN_SHIFT = 20037508.34
METERS_PER_DEGREE = 111320.0
WGS84 = 4326
WEB_MERCATOR = 102100
SPATIAL_REFERENCES = (WGS84, WEB_MERCATOR)

POINT_STRATEGIES: Tuple[Tuple[int, str], ...] = (
    (25, "esriSpatialRelIntersects"),
    (50, "esriSpatialRelIntersects"),
    (100, "esriSpatialRelIntersects"),
    (200, "esriSpatialRelIntersects"),
    (500, "esriSpatialRelIntersects"),
    (1000, "esriSpatialRelIntersects"),
    (50, "esriSpatialRelContains"),
    (100, "esriSpatialRelWithin"),
    (200, "esriSpatialRelOverlaps"),
)
ENVELOPE_DISTANCES: Tuple[int, ...] = (25, 50, 100, 200, 500, 1000, 2000)
POINT_RECORD_COUNT = 10
PROBE_RECORD_COUNT = 5

ADDRESS_VARIANTS: Tuple[Tuple[str, str], ...] = (
    (r"\bway\b", "Way"),
    (r"\brd\b", "Road"),
    (r"\bdr\b", "Drive"),
    (r"\bst\b", "Street"),
    (r"\bave\b", "Avenue"),
)

BASE_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "parcel-lookup/1.0",
}

T = TypeVar("T")


class ParcelLookupError(RuntimeError):
    """Base error for the parcel resolution pipeline.

    ``code`` is the machine readable error code surfaced to API clients.
    """

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, object]] = None, *, code: Optional[str] = None):
        super().__init__(message)
        self.context = context or {}
        if code:
            self.code = code


class GeocodeError(ParcelLookupError):
    """No coordinate could be obtained from any address variant."""

    code = "GEOCODE_ERROR"


class UpstreamHTTPError(ParcelLookupError):
    def __init__(self, url: str, status: int):
        super().__init__(f"HTTP_{status} from {url}", {"url": url, "status": status}, code=f"HTTP_{status}")
        self.status = status


class ArcGISServiceError(ParcelLookupError):
    """ArcGIS answered 200 but with an ``{"error": ...}`` body."""

    code = "ARCGIS_ERROR"


class LookupCancelled(ParcelLookupError):
    code = "CANCELLED"


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float


def build_session() -> requests.Session:
    session = requests.Session()
    session.headers.update(BASE_HEADERS)
    session.mount("https://", HTTPAdapter(pool_connections=8, pool_maxsize=32))
    session.mount("http://", HTTPAdapter(pool_connections=8, pool_maxsize=32))
    return session


def with_retry(
    operation: Callable[[], T],
    *,
    retries: int = RETRY_COUNT,
    base_delay: float = RETRY_BASE_DELAY,
    factor: float = RETRY_FACTOR,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` once plus up to ``retries`` more times.

    The delay before retry ``n`` (0-based) is ``base_delay * factor**n``. The
    last error is re-raised once the attempts are exhausted.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as exc:  # noqa: BLE001
            if attempt >= retries:
                raise
            delay = base_delay * (factor ** attempt)
            logging.debug("Attempt %d failed (%s); retrying in %.2fs", attempt + 1, exc, delay)
            sleep_fn(delay)
            attempt += 1


def fetch_json(
    session: requests.Session,
    url: str,
    params: Dict[str, Union[str, int, float]],
    timeout: float = QUERY_TIMEOUT,
) -> Dict[str, object]:
    response = session.get(url, params=params, timeout=timeout)
    if not 200 <= response.status_code < 300:
        raise UpstreamHTTPError(url, response.status_code)
    payload = response.json()
    if isinstance(payload, dict) and "error" in payload:
        error = payload["error"] or {}
        message = error.get("message", "Unknown ArcGIS error")
        details = error.get("details") or []
        if details:
            message = f"{message} Details: {'; '.join(str(d) for d in details)}"
        raise ArcGISServiceError(f"ArcGIS request failed for {url}: {message}", {"url": url, "error": error})
    return payload


def address_variants(address: str) -> List[str]:
    """Original address first, then copies with one street suffix spelled out."""
    variants = [address]
    for pattern, replacement in ADDRESS_VARIANTS:
        candidate = re.sub(pattern, replacement, address, flags=re.IGNORECASE)
        if candidate not in variants:
            variants.append(candidate)
    return variants


def first_address_match(data: object) -> Optional[Coordinate]:
    """Coordinate of the first Census address match, or None when there is none.

    A body that does not have the documented shape raises ``GeocodeError``.
    """
    result = data.get("result") if isinstance(data, dict) else None
    if result is None:
        result = {}
    if not isinstance(result, dict):
        raise GeocodeError("Malformed geocoder response: 'result' is not an object")
    matches = result.get("addressMatches") or []
    if not isinstance(matches, list):
        raise GeocodeError("Malformed geocoder response: 'addressMatches' is not a list")
    if not matches:
        return None

    match = matches[0]
    coords = match.get("coordinates") if isinstance(match, dict) else None
    if not isinstance(coords, dict) or coords.get("x") is None or coords.get("y") is None:
        raise GeocodeError("Malformed geocoder response: first match has no coordinates")
    try:
        coord = Coordinate(lat=float(coords["y"]), lon=float(coords["x"]))
    except (TypeError, ValueError) as exc:
        raise GeocodeError(f"Malformed geocoder response: {exc}") from exc
    logging.info("Matched '%s' at %s, %s", match.get("matchedAddress"), coord.lat, coord.lon)
    return coord


def geocode_address(
    address: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = GEOCODE_TIMEOUT,
    retries: int = RETRY_COUNT,
    base_delay: float = RETRY_BASE_DELAY,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> Coordinate:
    session = session or build_session()
    last_error: Optional[Exception] = None
    for variant in address_variants(address):
        params = {"address": variant, "benchmark": GEOCODE_BENCHMARK, "format": "json"}
        logging.info("Geocoding address variant: %s", variant)
        try:
            data = with_retry(
                lambda: fetch_json(session, GEOCODE_URL, params, timeout=timeout),
                retries=retries,
                base_delay=base_delay,
                sleep_fn=sleep_fn,
            )
            coord = first_address_match(data)
        except Exception as exc:  # noqa: BLE001
            logging.info("Geocoding failed for %r: %s", variant, exc)
            last_error = exc
            continue
        if coord is not None:
            return coord
        logging.info("No geocoding match for %r", variant)

    message = f"Unable to geocode address: {address}"
    if last_error is not None:
        message = f"{message} ({last_error})"
    raise GeocodeError(message, {"address": address}) from last_error


def wgs84_to_web_mercator(lon: float, lat: float) -> tuple[float, float]:
    """Project WGS84 coordinates to Web Mercator (EPSG:3857 / WKID 102100)."""
    mx = lon * ORIGIN_SHIFT / 180.0
    my = math.log(math.tan((90 + lat) * math.pi / 360.0)) / (math.pi / 180.0)
    return mx, my * ORIGIN_SHIFT / 180.0


def build_envelope(wkid: int, lon: float, lat: float, meters: float) -> Dict[str, float]:
    """Axis-aligned box of half-width ``meters`` around the point in ``wkid`` units."""
    if wkid == WEB_MERCATOR:
        x, y = wgs84_to_web_mercator(lon, lat)
        bounds = box(x - meters, y - meters, x + meters, y + meters).bounds
    else:
        d_lat = meters / METERS_PER_DEGREE
        d_lon = meters / (METERS_PER_DEGREE * math.cos(math.radians(lat)))
        bounds = box(lon - d_lon, lat - d_lat, lon + d_lon, lat + d_lat).bounds
    xmin, ymin, xmax, ymax = bounds
    return {"xmin": xmin, "ymin": ymin, "xmax": xmax, "ymax": ymax}


def point_geometry(wkid: int, coord: Coordinate) -> Dict[str, float]:
    if wkid == WEB_MERCATOR:
        x, y = wgs84_to_web_mercator(coord.lon, coord.lat)
    else:
        x, y = coord.lon, coord.lat
    return {"x": x, "y": y}


def normalize_out_fields(out_fields: Union[str, Sequence[str], None]) -> str:
    if isinstance(out_fields, str):
        return out_fields or "*"
    if out_fields:
        return ",".join(out_fields)
    return "*"


def first_attributes(payload: Dict[str, object]) -> Optional[Dict[str, object]]:
    features = payload.get("features") or []
    if not features:
        return None
    attrs = features[0].get("attributes")
    return attrs or None


class QueryStrategy:
    """One step of the spatial search. ``attempt`` returns attributes or None."""

    label = "strategy"

    def params(self, coord: Coordinate, out_fields: str) -> Dict[str, Union[str, int, float]]:
        raise NotImplementedError

    def attempt(self, engine: "SpatialQueryEngine", coord: Coordinate) -> Optional[Dict[str, object]]:
        payload = engine.request(self.params(coord, engine.out_fields))
        return first_attributes(payload)


class PointStrategy(QueryStrategy):
    def __init__(self, wkid: int, distance: int, spatial_rel: str):
        self.wkid = wkid
        self.distance = distance
        self.spatial_rel = spatial_rel
        self.label = f"point SRS {wkid}, {distance}m, {spatial_rel}"

    def params(self, coord, out_fields):
        geometry = dict(point_geometry(self.wkid, coord), spatialReference={"wkid": self.wkid})
        return {
            "f": "json",
            "geometry": json.dumps(geometry),
            "geometryType": "esriGeometryPoint",
            "inSR": self.wkid,
            "spatialRel": self.spatial_rel,
            "outFields": out_fields,
            "returnGeometry": "false",
            "where": "1=1",
            "resultRecordCount": POINT_RECORD_COUNT,
            "distance": self.distance,
            "units": "esriSRUnit_Meter",
        }


class EnvelopeStrategy(QueryStrategy):
    def __init__(self, wkid: int, meters: int):
        self.wkid = wkid
        self.meters = meters
        self.label = f"envelope SRS {wkid}, {meters}m"

    def params(self, coord, out_fields):
        envelope = build_envelope(self.wkid, coord.lon, coord.lat, self.meters)
        envelope["spatialReference"] = {"wkid": self.wkid}
        return {
            "f": "json",
            "geometry": json.dumps(envelope),
            "geometryType": "esriGeometryEnvelope",
            "inSR": self.wkid,
            "spatialRel": "esriSpatialRelIntersects",
            "outFields": out_fields,
            "returnGeometry": "false",
            "where": "1=1",
            "resultRecordCount": POINT_RECORD_COUNT,
        }


class SanityProbe(QueryStrategy):
    """Unfiltered query that only tells a dead endpoint from an empty spot."""

    label = "sanity probe"

    def params(self, coord, out_fields):
        order_by = out_fields.split(",")[0] if out_fields and out_fields != "*" else "OBJECTID"
        return {
            "f": "json",
            "where": "1=1",
            "outFields": out_fields,
            "returnGeometry": "false",
            "resultRecordCount": PROBE_RECORD_COUNT,
            "orderByFields": order_by,
        }

    def attempt(self, engine, coord):
        try:
            payload = engine.request(self.params(coord, engine.out_fields))
        except Exception as exc:  # noqa: BLE001
            engine.last_probe = "unreachable"
            logging.warning("Sanity probe failed for %s: %s", engine.endpoint, exc)
            return None
        rows = len(payload.get("features") or [])
        if rows:
            engine.last_probe = "reachable"
            logging.info("Endpoint %s is working (%d rows) but has no parcel at %s, %s",
                         engine.endpoint, rows, coord.lat, coord.lon)
        else:
            engine.last_probe = "empty"
            logging.warning("Endpoint %s returned no parcels at all", engine.endpoint)
        return None


def default_strategies() -> List[QueryStrategy]:
    strategies: List[QueryStrategy] = []
    for wkid in SPATIAL_REFERENCES:
        strategies.extend(PointStrategy(wkid, distance, rel) for distance, rel in POINT_STRATEGIES)
    for wkid in SPATIAL_REFERENCES:
        strategies.extend(EnvelopeStrategy(wkid, meters) for meters in ENVELOPE_DISTANCES)
    strategies.append(SanityProbe())
    return strategies


class SpatialQueryEngine:
    """Sequential, first-match-wins search against one ArcGIS query endpoint."""

    def __init__(
        self,
        endpoint: str,
        out_fields: Union[str, Sequence[str], None],
        *,
        session: Optional[requests.Session] = None,
        strategies: Optional[Iterable[QueryStrategy]] = None,
        timeout: float = QUERY_TIMEOUT,
        retries: int = RETRY_COUNT,
        base_delay: float = RETRY_BASE_DELAY,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        self.endpoint = endpoint
        self.out_fields = normalize_out_fields(out_fields)
        self.session = session or build_session()
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.timeout = timeout
        self.retries = retries
        self.base_delay = base_delay
        self.sleep_fn = sleep_fn
        self.last_probe: Optional[str] = None

    def request(self, params: Dict[str, Union[str, int, float]]) -> Dict[str, object]:
        logging.debug("ArcGIS request %s params=%s", self.endpoint, params)
        return with_retry(
            lambda: fetch_json(self.session, self.endpoint, params, timeout=self.timeout),
            retries=self.retries,
            base_delay=self.base_delay,
            sleep_fn=self.sleep_fn,
        )

    def query_point(
        self,
        coord: Coordinate,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> Optional[Dict[str, object]]:
        logging.info("Starting ArcGIS query at %s, %s for %s", coord.lat, coord.lon, self.endpoint)
        self.last_probe = None
        for strategy in self.strategies:
            if should_cancel and should_cancel():
                raise LookupCancelled("Lookup cancelled by caller", {"endpoint": self.endpoint})
            try:
                attrs = strategy.attempt(self, coord)
            except Exception as exc:  # noqa: BLE001
                logging.debug("Strategy failed (%s): %s", strategy.label, exc)
                continue
            if attrs:
                logging.info("Parcel found via %s", strategy.label)
                return attrs
        logging.info("No parcel found at %s, %s on %s", coord.lat, coord.lon, self.endpoint)
        return None


def query_point(
    endpoint_config,
    coord: Coordinate,
    *,
    session: Optional[requests.Session] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> Optional[Dict[str, object]]:
    """Query ``endpoint_config`` (an ``EndpointConfig``) for the parcel under ``coord``."""
    engine = SpatialQueryEngine(
        endpoint_config.endpoint,
        endpoint_config.out_fields,
        session=session,
        sleep_fn=sleep_fn,
    )
    return engine.query_point(coord, should_cancel=should_cancel)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Resolve a DE/MD address or coordinate to a tax parcel ID.")
    parser.add_argument("address", nargs="?", default="", help="Street address to geocode (free-form string).")
    parser.add_argument("--lat", type=float, default=None, help="Latitude (WGS84). Skips geocoding with --lon.")
    parser.add_argument("--lon", type=float, default=None, help="Longitude (WGS84). Skips geocoding with --lat.")
    parser.add_argument(
        "--endpoints",
        type=str,
        default=os.getenv("PARCEL_ENDPOINTS_FILE"),
        help="JSON file overriding the parcel service configuration (default: PARCEL_ENDPOINTS_FILE env var).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose HTTP logging.",
    )
    return parser.parse_args(argv)


def setup_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(message)s")


def main(argv: Optional[Sequence[str]] = None) -> int:
    from resolver.cache import ResultCache
    from resolver.config import load_jurisdictions
    from resolver.service import ParcelQuery, ParcelResolver

    args = parse_args(argv)
    setup_logging(args.debug)

    if not args.address and (args.lat is None or args.lon is None):
        logging.error("Provide an address or both --lat and --lon.")
        return 2

    resolver = ParcelResolver(load_jurisdictions(args.endpoints), ResultCache())
    result = resolver.resolve(ParcelQuery(address=args.address or None, lat=args.lat, lon=args.lon))
    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("status") == "ok" else 1


if __name__ == "__main__":
    sys.exit(main())
