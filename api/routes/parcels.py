from __future__ import annotations

import asyncio
import json
import logging
import threading

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api import models
from api.services.resolver import get_resolver
from resolver.service import ParcelQuery, ParcelResolver

LOG = logging.getLogger(__name__)
router = APIRouter()

DISCONNECT_POLL_SECONDS = 0.5
WRONG_METHODS = ["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _error(status_code: int, code: str, message: str, headers: dict | None = None) -> JSONResponse:
    body = models.ErrorResponse(code=code, message=message).model_dump()
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _envelope(result: dict) -> dict:
    if result.get("status") == "ok":
        return models.ParcelResponse.model_validate(result).model_dump(exclude_none=True)
    return models.ErrorResponse.model_validate(result).model_dump()


async def _watch_disconnect(request: Request, cancelled: threading.Event) -> None:
    while not cancelled.is_set():
        if await request.is_disconnected():
            LOG.info("Client disconnected; cancelling parcel lookup.")
            cancelled.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/resolve-parcel")
async def resolve_parcel(request: Request, resolver: ParcelResolver = Depends(get_resolver)) -> JSONResponse:
    """Resolve ``{address?, lat?, lon?}`` to a tax parcel.

    Lookups that run but find nothing still answer 200 with an error envelope;
    only malformed or empty requests get a 400.
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error(400, "BAD_REQUEST", "Invalid request body. Provide {address: string} or {address?: string, lat: number, lon: number}")
    if not isinstance(body, dict):
        return _error(400, "BAD_REQUEST", "Request body must be a JSON object.")
    try:
        payload = models.ParcelRequest.model_validate(body)
    except ValidationError as exc:
        LOG.info("Rejected parcel request: %s", exc.errors())
        return _error(400, "BAD_REQUEST", "Invalid request body. Provide {address: string} or {address?: string, lat: number, lon: number}")

    query = ParcelQuery(address=(payload.address or "").strip() or None, lat=payload.lat, lon=payload.lon)
    if not query.has_address and not query.has_coordinates:
        return _error(400, "MISSING_INPUT", "Either address or coordinates (lat/lon) are required")

    LOG.info("Processing parcel request for %s", query.describe())
    cancelled = threading.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancelled))
    try:
        result = await run_in_threadpool(resolver.resolve, query, cancelled.is_set)
    finally:
        cancelled_by_client = cancelled.is_set()
        cancelled.set()
        watcher.cancel()

    if cancelled_by_client:
        LOG.info("Parcel lookup for %s abandoned by client.", query.describe())
    LOG.info("Returning result for %s: %s", query.describe(), result.get("status"))
    return JSONResponse(status_code=200, content=_envelope(result))


@router.api_route("/resolve-parcel", methods=WRONG_METHODS, include_in_schema=False)
async def resolve_parcel_wrong_method() -> JSONResponse:
    return _error(405, "METHOD_NOT_ALLOWED", "Use POST", headers={"Allow": "POST"})
