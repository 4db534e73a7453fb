"""Parcel service configuration for the supported jurisdictions.

The defaults mirror the public ArcGIS services for Delaware (state-wide plus
the three county services) and Maryland (state-wide). A JSON file with the
same shape can replace them; see ``load_jurisdictions``.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

LOG = logging.getLogger(__name__)

CANONICAL_FIELDS = ("parcel_id", "map_number", "grid_number", "parcel_number", "jurisdiction_name")
DEFAULT_STATE = "DE"

DEFAULT_JURISDICTIONS: Dict[str, Dict[str, Any]] = {
    "DE": {
        "statewide": {
            "endpoint": "https://enterprise.firstmap.delaware.gov/arcgis/rest/services/PlanningCadastre/DE_StateParcels/FeatureServer/0/query",
            "out_fields": ["PIN", "COUNTY"],
            "field_map": {
                "parcel_id": ["PIN"],
                "jurisdiction_name": ["COUNTY"],
            },
            "label": "DE_StateParcels",
            "viewer": "https://enterprise.firstmap.delaware.gov/arcgis/rest/services/PlanningCadastre/DE_StateParcels/FeatureServer/0",
        },
        "counties": {
            "kent": {
                "endpoint": "https://maps.kentcountyde.gov/arcgis/rest/services/Parcels/MapServer/0/query",
                "out_fields": ["PIN", "ACCTID", "MAP", "GRID", "PARCEL", "SITUS", "COUNTY", "OWNER"],
                "field_map": {
                    "parcel_id": ["PIN", "ACCTID"],
                    "map_number": ["MAP"],
                    "grid_number": ["GRID"],
                    "parcel_number": ["PARCEL"],
                    "jurisdiction_name": ["COUNTY"],
                },
                "label": "Kent_County_Parcels",
                "viewer": "https://maps.kentcountyde.gov/arcgis/rest/services/Parcels/MapServer/0",
            },
            "sussex": {
                "endpoint": "https://map.sussexcountyde.gov/trdserver/rest/services/Geographic_Information_Office/Parcels_PIN/MapServer/0/query",
                "out_fields": ["PIN", "PARCELID", "MAP", "GRID", "PARCEL"],
                "field_map": {
                    "parcel_id": ["PIN", "PARCELID"],
                    "map_number": ["MAP"],
                    "grid_number": ["GRID"],
                    "parcel_number": ["PARCEL"],
                },
                "label": "Sussex_Parcels_PIN",
                "viewer": "https://map.sussexcountyde.gov/trdserver/rest/services/Geographic_Information_Office/Parcels_PIN/MapServer/0",
            },
            "newcastle": {
                "endpoint": "https://newcastlegis.nccde.org/arcgis/rest/services/Property/MapServer/0/query",
                "out_fields": ["PIN", "PARCEL_ID", "ACCTID", "COUNTY"],
                "field_map": {
                    "parcel_id": ["PIN", "PARCEL_ID", "ACCTID"],
                    "jurisdiction_name": ["COUNTY"],
                },
                "label": "NewCastle_Property",
                "viewer": "https://newcastlegis.nccde.org/arcgis/rest/services/Property/MapServer/0",
            },
        },
    },
    "MD": {
        "statewide": {
            "endpoint": "https://geodata.md.gov/imap/rest/services/PlanningCadastre/MD_ParcelBoundaries/MapServer/0/query",
            "out_fields": ["ACCTID", "PARCELID", "MAP", "GRID", "PARCEL", "JURSCODE", "CITY", "ZIPCODE", "COUNTY"],
            "field_map": {
                "parcel_id": ["ACCTID", "PARCELID"],
                "map_number": ["MAP"],
                "grid_number": ["GRID"],
                "parcel_number": ["PARCEL"],
                "jurisdiction_name": ["JURSCODE", "CITY", "COUNTY"],
            },
            "label": "MD_ParcelBoundaries",
            "viewer": "https://geodata.md.gov/imap/rest/services/PlanningCadastre/MD_ParcelBoundaries/MapServer/0",
        },
        "counties": {},
    },
}


@dataclass(frozen=True)
class EndpointConfig:
    """One ArcGIS parcel layer and how its attributes map to a parcel record."""

    key: str
    endpoint: str
    out_fields: Tuple[str, ...]
    field_map: Mapping[str, Tuple[str, ...]]
    label: str
    viewer: str


@dataclass(frozen=True)
class JurisdictionConfig:
    state: str
    statewide: EndpointConfig
    counties: Mapping[str, EndpointConfig] = field(default_factory=lambda: MappingProxyType({}))

    def endpoint_for(self, county: Optional[str]) -> Optional[EndpointConfig]:
        if county is None:
            return None
        return self.counties.get(county)


def _endpoint_from_dict(key: str, raw: Mapping[str, Any]) -> EndpointConfig:
    try:
        endpoint = str(raw["endpoint"])
        label = str(raw["label"])
    except KeyError as exc:
        raise ValueError(f"Endpoint config {key!r} is missing {exc.args[0]!r}") from exc
    field_map = raw.get("field_map") or {}
    unknown = set(field_map) - set(CANONICAL_FIELDS)
    if unknown:
        raise ValueError(f"Endpoint config {key!r} maps unknown fields: {sorted(unknown)}")
    if not field_map.get("parcel_id"):
        raise ValueError(f"Endpoint config {key!r} has no parcel_id aliases")
    return EndpointConfig(
        key=key,
        endpoint=endpoint,
        out_fields=tuple(raw.get("out_fields") or ()),
        field_map=MappingProxyType({name: tuple(aliases) for name, aliases in field_map.items()}),
        label=label,
        viewer=str(raw.get("viewer") or endpoint.rsplit("/query", 1)[0]),
    )


def build_jurisdictions(raw: Mapping[str, Any]) -> Mapping[str, JurisdictionConfig]:
    """Turn a plain mapping (defaults or parsed JSON) into immutable configs."""
    jurisdictions: Dict[str, JurisdictionConfig] = {}
    for state, entry in raw.items():
        state_key = state.upper()
        if "statewide" not in entry:
            raise ValueError(f"Jurisdiction {state_key} has no statewide endpoint")
        counties = {
            name.lower(): _endpoint_from_dict(f"{state_key}.{name.lower()}", county)
            for name, county in (entry.get("counties") or {}).items()
        }
        jurisdictions[state_key] = JurisdictionConfig(
            state=state_key,
            statewide=_endpoint_from_dict(f"{state_key}.statewide", entry["statewide"]),
            counties=MappingProxyType(counties),
        )
    return MappingProxyType(jurisdictions)


def load_jurisdictions(path: Optional[str] = None) -> Mapping[str, JurisdictionConfig]:
    """Load parcel service configuration once at startup.

    ``path`` (or ``$PARCEL_ENDPOINTS_FILE``) points to a JSON document shaped
    like ``DEFAULT_JURISDICTIONS``. Without one, the built-in defaults are used.
    """
    path = path or os.getenv("PARCEL_ENDPOINTS_FILE")
    if not path:
        return build_jurisdictions(DEFAULT_JURISDICTIONS)
    LOG.info("Loading parcel endpoint configuration from %s", path)
    raw = json.loads(Path(path).read_text())
    return build_jurisdictions(raw)
