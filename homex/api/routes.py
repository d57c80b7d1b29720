"""HTTP routes for listings, renewal, health and the service index."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from homex import __version__
from homex.api.errors import request_id_of
from homex.api.middleware import MAX_BODY_BYTES
from homex.core.exceptions import ValidationError
from homex.core.validation import validate_listing_input, validate_search_query
from homex.lifecycle.service import ListingService
from homex.orchestrator.runner import Runtime

__all__ = ["router", "SERVICE_NAME"]

logger = logging.getLogger(__name__)

SERVICE_NAME = "healthy-home-exchange-api"

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_runtime(request: Request) -> Runtime | None:
    return getattr(request.app.state, "runtime", None)


def get_service(request: Request) -> ListingService:
    runtime = get_runtime(request)
    if runtime is None:
        raise RuntimeError("Runtime not initialised; app lifespan has not run")
    return runtime.service


async def read_json(request: Request) -> Any:
    """Decode the request body, enforcing the body size limit."""
    raw = await request.body()
    if len(raw) > MAX_BODY_BYTES:
        raise HTTPException(status_code=413, detail="Request entity too large")
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError([{"field": "body", "message": "must be valid JSON"}]) from exc


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@router.get("/")
async def index() -> dict[str, Any]:
    return {
        "ok": True,
        "service": SERVICE_NAME,
        "version": __version__,
        "endpoints": {
            "health": "/health",
            "listings": "/listings",
            "listingById": "/listings/:id",
            "search": "/listings/search",
            "renew": "/renew/:id",
        },
    }


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    """Report database and email status; 503 when the database is not usable."""
    runtime = get_runtime(request)
    settings = request.app.state.settings
    body: dict[str, Any] = {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "uptime": round(runtime.uptime, 3) if runtime else 0.0,
        "environment": settings.environment,
        "services": {
            "database": "disconnected",
            "email": "ready" if runtime and runtime.notifier.is_ready() else "not configured",
        },
    }
    if runtime is None:
        body["status"] = "degraded"
    elif await runtime.store.ping():
        body["services"]["database"] = "connected"
    else:
        body["services"]["database"] = "error"
        body["status"] = "degraded"

    return JSONResponse(body, status_code=200 if body["status"] == "ok" else 503)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


@router.post("/listings", status_code=201)
async def create_listing(
    request: Request,
    service: ListingService = Depends(get_service),
) -> JSONResponse:
    data = validate_listing_input(await read_json(request))
    listing = await service.create(data)
    return JSONResponse(listing.to_public(), status_code=201)


@router.get("/listings")
async def list_listings(
    page: str | None = None,
    limit: str | None = None,
    service: ListingService = Depends(get_service),
) -> dict[str, Any]:
    result = await service.list(page, limit)
    return {
        "listings": [listing.to_public() for listing in result.listings],
        "pagination": result.pagination(),
    }


@router.post("/listings/search")
async def search_listings(
    request: Request,
    service: ListingService = Depends(get_service),
) -> dict[str, Any]:
    query = validate_search_query(await read_json(request))
    results = await service.search(query)
    return {
        "listings": [listing.to_public() for listing in results],
        "query": query,
        "count": len(results),
    }


@router.get("/listings/{listing_id}")
async def get_listing(
    listing_id: str,
    service: ListingService = Depends(get_service),
) -> dict[str, Any]:
    listing = await service.get_by_id(listing_id)
    return listing.to_public()


@router.post("/renew/{listing_id}")
async def renew_listing(
    listing_id: str,
    request: Request,
    service: ListingService = Depends(get_service),
) -> dict[str, Any]:
    listing = await service.renew(listing_id)
    return {
        "ok": True,
        "message": "Listing renewed",
        "expirationDate": listing.to_public()["expirationDate"],
        "requestId": request_id_of(request),
    }
