import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import geocode, parcels
from api.services.resolver import build_resolver

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(title="Parcel Resolution API", version="0.1.0")

cors_origins = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "*").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials="*" not in cors_origins,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

app.state.resolver = build_resolver()


@app.get("/")
async def root() -> dict[str, object]:
    return {
        "service": "parcel-resolution",
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health")
async def health() -> dict[str, object]:
    return {
        "status": "ok",
        "jurisdictions": sorted(app.state.resolver.jurisdictions),
        "cache": app.state.resolver.cache.stats(),
    }


app.include_router(parcels.router, tags=["parcels"])
app.include_router(geocode.router, tags=["geocode"])
