"""Decide which state and (in Delaware) which county service owns a location.

Both the state boxes and the county heuristics are rough, hand-tuned
approximations; points near a border can land on the wrong side, in which case
the cross-state fallback in ``resolver.service`` usually recovers.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from shapely.geometry import Point, box

from resolver.config import DEFAULT_STATE

LOG = logging.getLogger(__name__)

# (state, box(min_lon, min_lat, max_lon, max_lat)); first match wins.
STATE_BOUNDS: Tuple[Tuple[str, object], ...] = (
    ("DE", box(-75.79, 38.45, -74.98, 39.84)),
    ("MD", box(-76.5, 37.9, -75.0, 39.9)),
)

STATE_TOKENS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("MD", (", md", " md ", " maryland")),
    ("DE", (", de", " de ", " delaware")),
)

COUNTY_CITIES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("kent", ("dover", "milford", "harrington", "frederica", "magnolia", "clayton", "smyrna", "cheswold")),
    ("sussex", ("georgetown", "lewes", "rehoboth", "bethany", "fenwick", "millsboro", "seaford", "laurel", "delmar")),
    ("newcastle", ("wilmington", "newark", "new castle", "bear", "middletown", "glasgow")),
)

KENT_ZIPS = frozenset({
    "19901", "19902", "19903", "19904", "19905", "19906", "19934", "19936", "19939", "19941",
    "19943", "19947", "19952", "19953", "19954", "19955", "19956", "19962", "19963", "19964",
    "19966", "19967", "19968", "19970", "19977",
})
SUSSEX_ZIPS = frozenset({
    "19930", "19931", "19933", "19940", "19944", "19945", "19946", "19948", "19950", "19951",
    "19958", "19960", "19969", "19971", "19973", "19975", "19979", "19980",
})
NEWCASTLE_ZIPS = frozenset({
    "19701", "19702", "19703", "19706", "19707", "19708", "19709", "19710", "19711", "19712",
    "19713", "19714", "19715", "19716", "19717", "19718", "19720", "19721", "19725", "19726",
    "19728", "19730", "19731", "19732", "19733", "19734", "19735", "19736", "19801", "19802",
    "19803", "19804", "19805", "19806", "19807", "19808", "19809", "19810", "19850", "19880",
    "19884", "19885", "19886", "19890", "19891", "19892", "19893", "19894", "19895", "19896",
    "19897", "19898", "19899",
})
COUNTY_ZIPS = (("kent", KENT_ZIPS), ("sussex", SUSSEX_ZIPS), ("newcastle", NEWCASTLE_ZIPS))

# (county, min_lat inclusive, max_lat, max inclusive?) ordered north to south.
COUNTY_LAT_BANDS = (
    ("newcastle", 39.0, 39.84, True),
    ("kent", 38.7, 39.0, False),
    ("sussex", 38.45, 38.7, False),
)

ZIP_PATTERN = re.compile(r"\b(19[0-9]{3})\b")


@dataclass(frozen=True)
class JurisdictionRoute:
    state: str
    county: Optional[str] = None


def _has_coords(lat: Optional[float], lon: Optional[float]) -> bool:
    return lat is not None and lon is not None


def decide_route(address: str, lat: Optional[float] = None, lon: Optional[float] = None) -> str:
    """Coordinates first, then address tokens, then the default state."""
    if _has_coords(lat, lon):
        point = Point(lon, lat)
        for state, bounds in STATE_BOUNDS:
            if bounds.covers(point):
                LOG.info("Coordinates %s, %s are in %s bounds", lat, lon, state)
                return state

    normalized = (address or "").lower()
    for state, tokens in STATE_TOKENS:
        if any(token in normalized for token in tokens):
            return state
    return DEFAULT_STATE


def detect_de_county(address: str, lat: Optional[float] = None, lon: Optional[float] = None) -> Optional[str]:
    """City name, then ZIP code, then latitude band. None means use the state service."""
    normalized = (address or "").lower()
    for county, cities in COUNTY_CITIES:
        for city in cities:
            if city in normalized:
                LOG.info("Detected %s county from city: %s", county, city)
                return county

    match = ZIP_PATTERN.search(address or "")
    if match:
        zip_code = match.group(1)
        for county, zips in COUNTY_ZIPS:
            if zip_code in zips:
                LOG.info("Detected %s county from ZIP: %s", county, zip_code)
                return county

    if _has_coords(lat, lon):
        for county, low, high, high_inclusive in COUNTY_LAT_BANDS:
            if low <= lat < high or (high_inclusive and lat == high):
                return county
    return None


def route_location(address: str, lat: Optional[float] = None, lon: Optional[float] = None) -> JurisdictionRoute:
    state = decide_route(address, lat, lon)
    county = detect_de_county(address, lat, lon) if state == "DE" else None
    return JurisdictionRoute(state=state, county=county)
