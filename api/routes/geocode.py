from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from api import models
from api.services.resolver import get_resolver
from parcel_lookup import ParcelLookupError, geocode_address
from resolver.census import lookup_county
from resolver.service import ParcelResolver

LOG = logging.getLogger(__name__)
router = APIRouter()


@router.get("/geocode")
async def forward_geocode(
    address: str = Query(..., min_length=1),
    resolver: ParcelResolver = Depends(get_resolver),
) -> JSONResponse:
    """Geocode an address with the same variant/retry policy the parcel lookup uses."""
    try:
        coord = await run_in_threadpool(geocode_address, address, session=resolver.session, sleep_fn=resolver.sleep_fn)
    except ParcelLookupError as exc:
        LOG.warning("Forward geocode failed for %r: %s", address, exc)
        body = models.ErrorResponse(code=exc.code, message=str(exc)).model_dump()
        return JSONResponse(status_code=200, content=body)
    body = models.GeocodeResponse(address=address, lat=coord.lat, lon=coord.lon).model_dump()
    return JSONResponse(status_code=200, content=body)


@router.get("/county-fips")
async def county_fips(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    resolver: ParcelResolver = Depends(get_resolver),
) -> JSONResponse:
    """County name and FIPS codes for a coordinate."""
    result = await run_in_threadpool(lookup_county, lat, lon, session=resolver.session)
    if result.get("status") == "ok":
        body = models.CountyResponse.model_validate(result).model_dump()
    else:
        body = models.ErrorResponse.model_validate(result).model_dump()
    return JSONResponse(status_code=200, content=body)
