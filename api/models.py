from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ParcelRequest(BaseModel):
    model_config = ConfigDict(strict=True)

    address: Optional[str] = Field(default=None, description="Free-form street address")
    lat: Optional[float] = Field(default=None, ge=-90, le=90, description="Latitude (WGS84 degrees)")
    lon: Optional[float] = Field(default=None, ge=-180, le=180, description="Longitude (WGS84 degrees)")


class ParcelResponse(BaseModel):
    status: str = "ok"
    parcel_id: str
    map_number: Optional[str] = None
    grid_number: Optional[str] = None
    parcel_number: Optional[str] = None
    jurisdiction_name: Optional[str] = None
    viewer_url: str
    source: str
    raw: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    status: str = "error"
    code: str
    message: str


class GeocodeResponse(BaseModel):
    status: str = "ok"
    address: str
    lat: float
    lon: float


class CountyResponse(BaseModel):
    status: str = "ok"
    county_name: str
    state_name: str
    state_abbr: str
    state_fips: str
    county_fips: str
    county_geoid: str
    source: str
