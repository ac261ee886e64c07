"""Profile registration and saved-location routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from nearhand.auth import AuthProfile
from nearhand.config import settings
from nearhand.content import parse_body, render_response
from nearhand.database import get_db_session
from nearhand.db_models import Profile
from nearhand.geocoding import GeoResolver, get_geo_resolver
from nearhand.models import (
    ErrorResponse,
    Location,
    LocationSaveRequest,
    ProfileResponse,
    RegisterRequest,
    RegisterResponse,
    ReportedPositionRequest,
)
from nearhand.proximity import format_distance
from nearhand.rate_limit import limiter
from nearhand.services.locations import LocationStore, ReportedPosition
from nearhand.services.profiles import register

router = APIRouter()


def _location_dict(location: Location | None) -> dict | None:
    return location.model_dump(mode="json") if location else None


async def _reported_store(
    request: Request, profile: Profile, session, resolver: GeoResolver
) -> LocationStore | None:
    body = await parse_body(request)
    try:
        reported = ReportedPositionRequest(**body)
    except ValidationError:
        return None
    provider = ReportedPosition(reported.lat, reported.lng, reported.error)
    return LocationStore(session, profile.id, provider=provider, resolver=resolver)


@router.post(
    "/v1/register",
    response_model=RegisterResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_register)
async def register_profile(request: Request, session=Depends(get_db_session)):
    """Register a profile. Returns an API key."""
    body = await parse_body(request)
    try:
        req = RegisterRequest(**body)
    except ValidationError:
        return render_response(request, {"error": "Invalid request body"}, status_code=400)

    result = await register(session, req.name)
    return render_response(request, RegisterResponse(**result), status_code=201)


@router.get("/v1/me", response_model=ProfileResponse)
@limiter.limit(settings.rate_limit_read)
async def me(request: Request, profile: Profile = AuthProfile, session=Depends(get_db_session)):
    saved = await LocationStore(session, profile.id).get_saved()
    return render_response(
        request, ProfileResponse(id=profile.id, name=profile.name, location=saved)
    )


@router.get("/v1/me/location")
@limiter.limit(settings.rate_limit_read)
async def get_saved_location(
    request: Request, profile: Profile = AuthProfile, session=Depends(get_db_session)
):
    saved = await LocationStore(session, profile.id).get_saved()
    if saved is None:
        return render_response(request, {"error": "No saved location"}, status_code=404)
    return render_response(request, _location_dict(saved))


@router.put("/v1/me/location", responses={400: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_transition)
async def save_location(
    request: Request,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    resolver: GeoResolver = Depends(get_geo_resolver),
):
    """Save a location explicitly chosen by the user."""
    body = await parse_body(request)
    try:
        req = LocationSaveRequest(**body)
    except ValidationError:
        return render_response(request, {"error": "Invalid coordinates"}, status_code=400)

    store = LocationStore(session, profile.id, resolver=resolver)
    saved = await store.save(profile.id, Location(**req.model_dump()))
    return render_response(request, _location_dict(saved))


@router.post("/v1/me/location/reconcile", responses={400: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_read)
async def reconcile_location(
    request: Request,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    resolver: GeoResolver = Depends(get_geo_resolver),
):
    """Compare the device's reported position with the saved location."""
    store = await _reported_store(request, profile, session, resolver)
    if store is None:
        return render_response(request, {"error": "Invalid position report"}, status_code=400)

    result = await store.reconcile()
    return render_response(
        request,
        {
            "current": _location_dict(result.current),
            "saved": _location_dict(result.saved),
            "distance_km": round(result.distance_km, 3) if result.distance_km is not None else None,
            "distance": format_distance(result.distance_km) if result.distance_km is not None else None,
            "needs_update": result.needs_update,
            "failure": store.last_failure.value if store.last_failure else None,
        },
    )


@router.post("/v1/me/location/refresh", responses={400: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_transition)
async def refresh_location(
    request: Request,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    resolver: GeoResolver = Depends(get_geo_resolver),
):
    """Replace the saved location with the device's reported position."""
    store = await _reported_store(request, profile, session, resolver)
    if store is None:
        return render_response(request, {"error": "Invalid position report"}, status_code=400)

    saved = await store.update_with_current()
    if saved is None:
        failure = store.last_failure.value if store.last_failure else None
        return render_response(
            request,
            {"error": "Current position unavailable", "code": failure},
            status_code=422,
        )
    return render_response(request, _location_dict(saved))
