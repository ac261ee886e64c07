"""Task lifecycle and application routes."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError

from nearhand.auth import AuthProfile
from nearhand.config import settings
from nearhand.content import parse_body, render_error, render_response
from nearhand.database import get_db_session
from nearhand.db_models import (
    ApplicationStatus,
    Profile,
    TaskCategory,
    TaskPriority,
    TaskStatus,
)
from nearhand.geocoding import GeoResolver, get_geo_resolver
from nearhand.models import ApplyRequest, ErrorResponse, RelocateRequest, TaskCreateRequest
from nearhand.proximity import Coordinates
from nearhand.rate_limit import limiter
from nearhand.services.applications import ApplicationLedger
from nearhand.services.locations import LocationStore
from nearhand.services.matching import (
    application_actions,
    available_actions,
    TaskSort,
    find_nearby_open_tasks,
)
from nearhand.services.tasks import (
    accept_application,
    application_to_dict,
    cancel_task,
    complete_task,
    create_task,
    ensure_task_address,
    get_task,
    list_my_tasks,
    propose,
    task_stats,
    reject_application,
    relocate_task,
    start_task,
    task_to_dict,
    withdraw_application,
)
from nearhand.utils import status_str

router = APIRouter()

_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _task_outcome(request: Request, outcome):
    if not outcome.ok:
        return render_error(request, outcome.error)
    return render_response(request, task_to_dict(outcome.value))


def _application_outcome(request: Request, outcome, status_code: int = 200):
    if not outcome.ok:
        return render_error(request, outcome.error)
    return render_response(request, application_to_dict(outcome.value), status_code=status_code)


@router.post("/v1/tasks", status_code=201, responses=_ERRORS)
@limiter.limit(settings.rate_limit_create)
async def post_task(
    request: Request,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    resolver: GeoResolver = Depends(get_geo_resolver),
):
    """Post a task at a location. The address is resolved if not given."""
    body = await parse_body(request)
    try:
        validated = TaskCreateRequest(**body)
    except ValidationError:
        return render_response(request, {"error": "Invalid request body"}, status_code=400)

    task = await create_task(
        session,
        profile.id,
        resolver=resolver,
        **validated.model_dump(),
    )
    return render_response(
        request,
        task_to_dict(task),
        status_code=201,
        headers={"X-Task-Id": task.id},
    )


@router.get("/v1/tasks/nearby", responses=_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def nearby_tasks(
    request: Request,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    lat: float | None = Query(None, ge=-90, le=90),
    lng: float | None = Query(None, ge=-180, le=180),
    radius_km: float | None = Query(None, ge=0),
    category: TaskCategory | None = None,
    urgent: bool = False,
    featured: bool = False,
    priority: TaskPriority | None = None,
    q: str | None = Query(None, max_length=200, description="Search title and description"),
    budget_min: Decimal | None = Query(None, ge=0),
    budget_max: Decimal | None = Query(None, ge=0),
    tag: list[str] | None = Query(None, description="Repeat to match any of several tags"),
    sort: TaskSort = TaskSort.distance,
    limit: int = Query(20, ge=1, le=100),
):
    """Open tasks near a point, nearest first by default. Defaults to your saved location."""
    if lat is not None and lng is not None:
        origin = Coordinates(lat, lng)
    else:
        saved = await LocationStore(session, profile.id).get_saved()
        if saved is None:
            return render_response(
                request,
                {"error": "Pass lat and lng or save a location first"},
                status_code=400,
            )
        origin = Coordinates(saved.lat, saved.lng)

    hits = await find_nearby_open_tasks(
        session,
        origin,
        radius_km=radius_km,
        category=category,
        urgent_only=urgent,
        exclude_author=profile.id,
        limit=limit,
        search=q,
        priority=priority,
        budget_min=budget_min,
        budget_max=budget_max,
        tags=tag,
        featured_only=featured,
        sort=sort,
    )
    return render_response(
        request,
        {
            "tasks": [task_to_dict(task, distance_km=distance) for task, distance in hits],
            "total": len(hits),
        },
    )


@router.get("/v1/tasks/mine", responses=_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def my_tasks(
    request: Request,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    role: str = Query("author", pattern="^(author|helper)$"),
    status: TaskStatus | None = None,
):
    """Tasks you posted, or with ``role=helper`` the ones you hold."""
    tasks = await list_my_tasks(session, profile.id, role=role, status=status)
    return render_response(
        request, {"tasks": [task_to_dict(t) for t in tasks], "total": len(tasks)}
    )


@router.get("/v1/tasks/mine/stats", responses=_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def my_task_stats(
    request: Request,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    role: str = Query("author", pattern="^(author|helper)$"),
):
    """Counts per status, category and priority for your tasks."""
    return render_response(request, await task_stats(session, profile.id, role=role))


@router.get("/v1/applications/mine", responses=_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def my_applications(
    request: Request, profile: Profile = AuthProfile, session=Depends(get_db_session)
):
    applications = await ApplicationLedger(session).list_by_helper(profile.id)
    return render_response(
        request,
        {
            "applications": [application_to_dict(a) for a in applications],
            "total": len(applications),
        },
    )


@router.get("/v1/tasks/{task_id}", responses=_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def read_task(
    request: Request,
    task_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    resolver: GeoResolver = Depends(get_geo_resolver),
):
    task = await get_task(session, task_id)
    if task is None:
        return render_response(request, {"error": "Task not found"}, status_code=404)
    task = await ensure_task_address(session, task, resolver)
    return render_response(request, task_to_dict(task))


@router.get("/v1/tasks/{task_id}/actions", responses=_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def task_actions(
    request: Request, task_id: str, profile: Profile = AuthProfile, session=Depends(get_db_session)
):
    """What you may do on this task right now.

    The author also gets the actions available on each application.
    """
    task = await get_task(session, task_id)
    if task is None:
        return render_response(request, {"error": "Task not found"}, status_code=404)

    ledger = ApplicationLedger(session)
    applications = await ledger.list_for(task_id)
    own = next((a for a in applications if a.helper_id == profile.id), None)

    data = {
        "task_id": task.id,
        "status": status_str(task.status),
        "actions": available_actions(task, profile.id, own),
    }
    if own is not None:
        data["application_id"] = own.id
    if profile.id == task.author_id:
        data["applications"] = {
            a.id: application_actions(task, profile.id, a) for a in applications
        }
    return render_response(request, data)


@router.post("/v1/tasks/{task_id}/apply", status_code=201, responses=_ERRORS)
@limiter.limit(settings.rate_limit_apply)
async def apply_to_task(
    request: Request, task_id: str, profile: Profile = AuthProfile, session=Depends(get_db_session)
):
    """Offer to help with a task. One application per task."""
    body = await parse_body(request)
    if "message" not in body and "description" in body:
        # Markdown bodies arrive as "description"
        body["message"] = body.pop("description")
    try:
        validated = ApplyRequest(**body)
    except ValidationError:
        return render_response(request, {"error": "Invalid request body"}, status_code=400)

    outcome = await propose(
        session,
        task_id,
        profile.id,
        validated.message,
        proposed_budget=validated.proposed_budget,
        proposed_duration=validated.proposed_duration,
    )
    return _application_outcome(request, outcome, status_code=201)


@router.get("/v1/tasks/{task_id}/applications", responses=_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def task_applications(
    request: Request,
    task_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    status: ApplicationStatus | None = None,
    has_message: bool = False,
    has_proposal: bool = False,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
):
    """Applications on a task, oldest first. Helpers only see their own."""
    task = await get_task(session, task_id)
    if task is None:
        return render_response(request, {"error": "Task not found"}, status_code=404)

    applications = await ApplicationLedger(session).list_for(
        task_id,
        status=status,
        has_message=has_message,
        has_proposal=has_proposal,
        date_from=date_from,
        date_to=date_to,
    )
    if profile.id != task.author_id:
        applications = [a for a in applications if a.helper_id == profile.id]
    return render_response(
        request,
        {
            "applications": [application_to_dict(a) for a in applications],
            "total": len(applications),
        },
    )


@router.post("/v1/tasks/{task_id}/applications/{application_id}/accept", responses=_ERRORS)
@limiter.limit(settings.rate_limit_transition)
async def accept(
    request: Request,
    task_id: str,
    application_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    """Pick a helper. Accepting the same application again changes nothing."""
    outcome = await accept_application(session, task_id, application_id, profile.id)
    return _task_outcome(request, outcome)


@router.post("/v1/tasks/{task_id}/applications/{application_id}/reject", responses=_ERRORS)
@limiter.limit(settings.rate_limit_transition)
async def reject(
    request: Request,
    task_id: str,
    application_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    outcome = await reject_application(session, task_id, application_id, profile.id)
    return _application_outcome(request, outcome)


@router.post("/v1/applications/{application_id}/withdraw", responses=_ERRORS)
@limiter.limit(settings.rate_limit_transition)
async def withdraw(
    request: Request,
    application_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
):
    outcome = await withdraw_application(session, application_id, profile.id)
    return _application_outcome(request, outcome)


@router.post("/v1/tasks/{task_id}/start", responses=_ERRORS)
@limiter.limit(settings.rate_limit_transition)
async def start(
    request: Request, task_id: str, profile: Profile = AuthProfile, session=Depends(get_db_session)
):
    outcome = await start_task(session, task_id, profile.id)
    return _task_outcome(request, outcome)


@router.post("/v1/tasks/{task_id}/complete", responses=_ERRORS)
@limiter.limit(settings.rate_limit_transition)
async def complete(
    request: Request, task_id: str, profile: Profile = AuthProfile, session=Depends(get_db_session)
):
    outcome = await complete_task(session, task_id, profile.id)
    return _task_outcome(request, outcome)


@router.post("/v1/tasks/{task_id}/cancel", responses=_ERRORS)
@limiter.limit(settings.rate_limit_transition)
async def cancel(
    request: Request, task_id: str, profile: Profile = AuthProfile, session=Depends(get_db_session)
):
    """Cancel a task you posted or hold. Not possible once it is finished."""
    outcome = await cancel_task(session, task_id, profile.id)
    return _task_outcome(request, outcome)


@router.patch("/v1/tasks/{task_id}/location", responses=_ERRORS)
@limiter.limit(settings.rate_limit_transition)
async def relocate(
    request: Request,
    task_id: str,
    profile: Profile = AuthProfile,
    session=Depends(get_db_session),
    resolver: GeoResolver = Depends(get_geo_resolver),
):
    """Move an open task. Its address is resolved again."""
    body = await parse_body(request)
    try:
        validated = RelocateRequest(**body)
    except ValidationError:
        return render_response(request, {"error": "Invalid coordinates"}, status_code=400)

    outcome = await relocate_task(
        session, task_id, profile.id, validated.latitude, validated.longitude, resolver=resolver
    )
    return _task_outcome(request, outcome)
