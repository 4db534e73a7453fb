"""Address/coordinate to parcel resolution.

``ParcelResolver.resolve`` walks the lookup:

    cache -> geocode (when no coordinates) -> state route -> county route
          -> county service -> state service -> one cross-state fallback

and always returns a JSON-ready envelope with ``status`` set to ``ok`` or
``error``. Every terminal outcome, errors included, is written to the cache;
cancelled lookups are not.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests

from parcel_lookup import (
    Coordinate,
    LookupCancelled,
    ParcelLookupError,
    SpatialQueryEngine,
    build_session,
    geocode_address,
)
from resolver.cache import ResultCache, normalize_cache_key
from resolver.config import EndpointConfig, JurisdictionConfig
from resolver.normalize import normalize_attributes
from resolver.routing import route_location

LOG = logging.getLogger(__name__)

FALLBACK_STATES = {"DE": "MD", "MD": "DE"}


@dataclass(frozen=True)
class ParcelQuery:
    address: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None

    @property
    def has_address(self) -> bool:
        return bool(self.address and self.address.strip())

    def describe(self) -> str:
        coords = f"{self.lat}/{self.lon}" if self.has_coordinates else "none"
        return f"address: {self.address or 'none'}, coords: {coords}"


def error_result(code: str, message: str) -> Dict[str, Any]:
    return {"status": "error", "code": code, "message": message}


class ParcelResolver:
    def __init__(
        self,
        jurisdictions: Mapping[str, JurisdictionConfig],
        cache: ResultCache,
        *,
        session: Optional[requests.Session] = None,
        geocoder: Callable[..., Coordinate] = geocode_address,
        engine_factory: Callable[..., SpatialQueryEngine] = SpatialQueryEngine,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        self.jurisdictions = jurisdictions
        self.cache = cache
        self.session = session or build_session()
        self.geocoder = geocoder
        self.engine_factory = engine_factory
        self.sleep_fn = sleep_fn

    def resolve(self, query: ParcelQuery, should_cancel: Optional[Callable[[], bool]] = None) -> Dict[str, Any]:
        if not query.has_address and not query.has_coordinates:
            return error_result("MISSING_INPUT", "Either address or coordinates (lat/lon) are required")

        key = normalize_cache_key(query.address, query.lat, query.lon)
        cached = self.cache.get(key)
        if cached is not None:
            LOG.info("Cache hit for %s", query.describe())
            return cached

        LOG.info("Starting parcel lookup for %s", query.describe())
        try:
            result = self._resolve(query, should_cancel)
        except LookupCancelled as exc:
            LOG.info("Lookup cancelled for %s", query.describe())
            return error_result("INTERNAL_ERROR", str(exc))
        except ParcelLookupError as exc:
            LOG.warning("Parcel lookup failed for %s: %s", query.describe(), exc)
            result = error_result(exc.code, str(exc) or "Failed to lookup parcel")
        except Exception as exc:  # noqa: BLE001
            LOG.exception("Unexpected error during parcel lookup for %s: %s", query.describe(), exc)
            result = error_result("INTERNAL_ERROR", "Internal server error")

        self.cache.set(key, result)
        return result

    def _resolve(self, query: ParcelQuery, should_cancel: Optional[Callable[[], bool]]) -> Dict[str, Any]:
        address = (query.address or "").strip()
        if query.has_coordinates:
            coord = Coordinate(lat=float(query.lat), lon=float(query.lon))
        else:
            coord = self.geocoder(address, session=self.session, sleep_fn=self.sleep_fn)
        LOG.info("Using coordinates: %s, %s", coord.lat, coord.lon)

        route = route_location(address, coord.lat, coord.lon)
        LOG.info("Routing to %s (county: %s)", route.state, route.county or "unknown")
        jurisdiction = self.jurisdictions[route.state]

        for config in self._primary_endpoints(jurisdiction, route.county):
            result = self._lookup(config, coord, should_cancel)
            if result:
                return result

        fallback = self._fallback_jurisdiction(route.state)
        if fallback is not None:
            LOG.info("%s search failed; trying %s statewide as cross-border fallback", route.state, fallback.state)
            try:
                result = self._lookup(fallback.statewide, coord, should_cancel)
            except LookupCancelled:
                raise
            except Exception as exc:  # noqa: BLE001
                LOG.info("%s cross-fallback failed: %s", fallback.state, exc)
                result = None
            if result:
                return result

        LOG.info("No parcel found at %s, %s", coord.lat, coord.lon)
        return error_result("NO_PARCEL", f"No parcel found at coordinates {coord.lat}, {coord.lon}")

    def _primary_endpoints(self, jurisdiction: JurisdictionConfig, county: Optional[str]) -> List[EndpointConfig]:
        endpoints = []
        county_config = jurisdiction.endpoint_for(county)
        if county_config is not None:
            endpoints.append(county_config)
        endpoints.append(jurisdiction.statewide)
        return endpoints

    def _fallback_jurisdiction(self, state: str) -> Optional[JurisdictionConfig]:
        fallback_state = FALLBACK_STATES.get(state)
        if fallback_state in self.jurisdictions:
            return self.jurisdictions[fallback_state]
        for other_state, jurisdiction in self.jurisdictions.items():
            if other_state != state:
                return jurisdiction
        return None

    def _lookup(
        self,
        config: EndpointConfig,
        coord: Coordinate,
        should_cancel: Optional[Callable[[], bool]],
    ) -> Optional[Dict[str, Any]]:
        LOG.info("Querying %s", config.label)
        engine = self.engine_factory(
            config.endpoint,
            config.out_fields,
            session=self.session,
            sleep_fn=self.sleep_fn,
        )
        attrs = engine.query_point(coord, should_cancel=should_cancel)
        if not attrs:
            return None
        record = normalize_attributes(attrs, config.field_map, config.label, config.viewer)
        if record is None:
            LOG.info("%s returned a feature without a parcel id; ignoring it", config.label)
        return record
