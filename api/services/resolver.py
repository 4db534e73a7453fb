from __future__ import annotations

import logging
import os

from fastapi import Request

from resolver.cache import ResultCache
from resolver.config import load_jurisdictions
from resolver.service import ParcelResolver

LOG = logging.getLogger(__name__)

CACHE_MAX_ENTRIES = int(os.getenv("PARCEL_CACHE_MAX_ENTRIES", "256"))


def build_resolver() -> ParcelResolver:
    jurisdictions = load_jurisdictions()
    LOG.info("Loaded parcel services for %s", ", ".join(sorted(jurisdictions)))
    return ParcelResolver(jurisdictions, ResultCache(max_entries=CACHE_MAX_ENTRIES))


def get_resolver(request: Request) -> ParcelResolver:
    return request.app.state.resolver
