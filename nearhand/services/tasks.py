"""Task lifecycle service: creation, status transitions, expiry.

Every status change is one conditional UPDATE keyed on the current status,
so concurrent callers cannot both win a transition. A caller that loses
re-reads the row and gets the typed error matching the state it lost to.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from nearhand.config import settings
from nearhand.db_models import (
    Application,
    Task,
    TaskCategory,
    TaskPriority,
    TaskStatus,
)
from nearhand.errors import (
    ApplicationNotFoundError,
    DataIntegrityError,
    InvalidTaskStateError,
    MarketError,
    Outcome,
    TaskNotFoundError,
    UnauthorizedActionError,
)
from nearhand.geocoding import GeoResolver, is_resolved
from nearhand.ids import task_id as make_task_id
from nearhand.lifecycle import (
    CANCELLABLE_STATUSES,
    check_accept,
    check_cancel,
    check_complete,
    check_propose,
    check_reject,
    check_start,
    check_withdraw,
    is_idempotent_accept,
    is_overdue,
)
from nearhand.services.applications import ApplicationLedger
from nearhand.utils import iso, safe_json_loads, status_str

logger = logging.getLogger("nearhand.tasks")


def _status_list(statuses) -> str:
    return ", ".join(f"'{TaskStatus(s).value}'" for s in sorted(statuses, key=lambda s: s.value))


# ---------------------------------------------------------------------------
# Creation & reads
# ---------------------------------------------------------------------------


async def create_task(
    session: AsyncSession,
    author_id: str,
    title: str,
    description: str,
    budget: Decimal,
    latitude: float,
    longitude: float,
    category: TaskCategory = TaskCategory.other,
    priority: TaskPriority = TaskPriority.medium,
    tags: list[str] | None = None,
    currency: str | None = None,
    address: str | None = None,
    city: str | None = None,
    postal_code: str | None = None,
    country: str | None = None,
    deadline: datetime | None = None,
    estimated_duration: str | None = None,
    is_urgent: bool = False,
    is_featured: bool = False,
    resolver: GeoResolver | None = None,
) -> Task:
    """Create an open task. Address resolution is best-effort and never blocks creation."""
    if not is_resolved(address):
        address = None
    if address is None and resolver is not None:
        details = await resolver.resolve_details(latitude, longitude)
        if is_resolved(details.address):
            address = details.address
            city = city or details.city
            postal_code = postal_code or details.postal_code

    task = Task(
        id=make_task_id(),
        author_id=author_id,
        title=title,
        description=description,
        category=category,
        priority=priority,
        tags=json.dumps(sorted(set(tags))) if tags else None,
        budget=budget,
        currency=currency or settings.default_currency,
        latitude=latitude,
        longitude=longitude,
        address=address,
        city=city,
        postal_code=postal_code,
        country=country or settings.default_country,
        deadline=deadline,
        estimated_duration=estimated_duration,
        is_urgent=is_urgent or priority == TaskPriority.urgent,
        is_featured=is_featured,
    )
    session.add(task)
    await session.commit()
    logger.info("Task %s created by %s at (%.5f, %.5f)", task.id, author_id, latitude, longitude)
    return task


async def get_task(session: AsyncSession, tid: str) -> Task | None:
    task = await session.get(Task, tid)
    if task is not None:
        await session.refresh(task)
    return task


async def list_my_tasks(
    session: AsyncSession,
    profile_id: str,
    role: str = "author",
    status: TaskStatus | None = None,
) -> list[Task]:
    column = Task.author_id if role == "author" else Task.helper_id
    query = select(Task).where(column == profile_id)
    if status is not None:
        query = query.where(Task.status == status)
    result = await session.execute(query.order_by(Task.created_at.desc()))
    return list(result.scalars().all())


async def task_stats(session: AsyncSession, profile_id: str, role: str = "author") -> dict:
    """Counts per status, category and priority, plus budget totals, for one user's tasks."""
    tasks = await list_my_tasks(session, profile_id, role=role)
    by_status = Counter(status_str(t.status) for t in tasks)
    total_budget = sum((t.budget for t in tasks), Decimal("0"))
    stats: dict = {"total": len(tasks)}
    stats.update({s.value: by_status.get(s.value, 0) for s in TaskStatus})
    stats["by_category"] = dict(Counter(status_str(t.category) for t in tasks))
    stats["by_priority"] = dict(Counter(status_str(t.priority) for t in tasks))
    stats["total_budget"] = str(total_budget)
    stats["average_budget"] = (
        str((total_budget / len(tasks)).quantize(Decimal("0.01"))) if tasks else "0"
    )
    return stats


async def ensure_task_address(session: AsyncSession, task: Task, resolver: GeoResolver) -> Task:
    """Fill in the cached address if an earlier resolution failed."""
    if is_resolved(task.address):
        return task
    details = await resolver.resolve_details(task.latitude, task.longitude)
    if not is_resolved(details.address):
        return task
    # Only cache against the coordinates the address was resolved for
    result = await session.execute(
        text(
            "UPDATE tasks SET address = :address, city = COALESCE(city, :city), "
            "postal_code = COALESCE(postal_code, :postal) "
            "WHERE id = :id AND latitude = :lat AND longitude = :lng"
        ),
        {
            "address": details.address,
            "city": details.city,
            "postal": details.postal_code,
            "id": task.id,
            "lat": task.latitude,
            "lng": task.longitude,
        },
    )
    await session.commit()
    if result.rowcount:
        await session.refresh(task)
    return task


async def relocate_task(
    session: AsyncSession,
    tid: str,
    actor_id: str,
    latitude: float,
    longitude: float,
    resolver: GeoResolver | None = None,
) -> Outcome[Task]:
    """Move an open task. The cached address is dropped and re-resolved."""
    task = await get_task(session, tid)
    if task is None:
        return Outcome.failure(TaskNotFoundError())
    if task.author_id != actor_id:
        return Outcome.failure(UnauthorizedActionError("Only the task author can move this task"))
    if task.latitude == latitude and task.longitude == longitude:
        return Outcome.success(task)

    address = city = postal_code = None
    if resolver is not None:
        details = await resolver.resolve_details(latitude, longitude)
        if is_resolved(details.address):
            address, city, postal_code = details

    result = await session.execute(
        text(
            "UPDATE tasks SET latitude = :lat, longitude = :lng, address = :address, "
            "city = :city, postal_code = :postal, updated_at = :now "
            "WHERE id = :id AND status = 'open'"
        ),
        {
            "lat": latitude,
            "lng": longitude,
            "address": address,
            "city": city,
            "postal": postal_code,
            "now": datetime.now(UTC),
            "id": tid,
        },
    )
    if result.rowcount == 0:
        await session.rollback()
        await session.refresh(task)
        return Outcome.failure(
            InvalidTaskStateError(f"Task is {status_str(task.status)}, only open tasks can move")
        )
    await session.commit()
    await session.refresh(task)
    logger.info("Task %s relocated to (%.5f, %.5f)", tid, latitude, longitude)
    return Outcome.success(task)


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


async def propose(
    session: AsyncSession,
    tid: str,
    helper_id: str,
    message: str | None = None,
    proposed_budget: Decimal | None = None,
    proposed_duration: str | None = None,
) -> Outcome[Application]:
    """A helper applies to a task, optionally proposing their own budget or duration."""
    task = await get_task(session, tid)
    if task is None:
        return Outcome.failure(TaskNotFoundError())
    error = check_propose(task, helper_id)
    if error:
        return Outcome.failure(error)

    submitted = await ApplicationLedger(session).submit(
        tid, helper_id, message, proposed_budget, proposed_duration
    )
    if not submitted.ok:
        return submitted
    await session.commit()
    logger.info("Helper %s applied to task %s (%s)", helper_id, tid, submitted.value.id)
    return submitted


async def _load_pair(
    session: AsyncSession, tid: str, application_id: str
) -> tuple[Task | None, Application | None, MarketError | None]:
    task = await get_task(session, tid)
    if task is None:
        return None, None, TaskNotFoundError()
    application = await ApplicationLedger(session).get(application_id)
    if application is None:
        return task, None, ApplicationNotFoundError()
    return task, application, None


async def _judge_lost_accept(
    session: AsyncSession, task: Task, application: Application, actor_id: str
) -> Outcome[Task]:
    """Another writer moved the task first: answer against the state that won."""
    await session.refresh(task)
    await session.refresh(application)
    if is_idempotent_accept(task, application):
        return Outcome.success(task)
    error = check_accept(task, application, actor_id)
    return Outcome.failure(error or InvalidTaskStateError())


async def accept_application(
    session: AsyncSession, tid: str, application_id: str, actor_id: str
) -> Outcome[Task]:
    """Author accepts one application, assigning its helper to the task.

    Re-accepting the accepted application is a no-op. The open -> assigned
    UPDATE is the single point of arbitration between competing accepts.
    """
    task, application, error = await _load_pair(session, tid, application_id)
    if error:
        return Outcome.failure(error)
    error = check_accept(task, application, actor_id)
    if error:
        return Outcome.failure(error)
    if is_idempotent_accept(task, application):
        return Outcome.success(task)

    ledger = ApplicationLedger(session)
    if await ledger.has_accepted_application(tid):
        await session.refresh(task)
        if status_str(task.status) == TaskStatus.open.value:
            # An open task must never carry an accepted application
            logger.error(
                "Integrity violation: open task %s already has an accepted application", tid
            )
            raise DataIntegrityError(f"Open task {tid} already has an accepted application")
        return await _judge_lost_accept(session, task, application, actor_id)

    now = datetime.now(UTC)
    claim = await session.execute(
        text(
            "UPDATE tasks SET status = 'assigned', helper_id = :helper, "
            "assigned_at = :now, updated_at = :now "
            "WHERE id = :id AND status = 'open'"
        ),
        {"helper": application.helper_id, "now": now, "id": tid},
    )
    if claim.rowcount == 0:
        await session.rollback()
        return await _judge_lost_accept(session, task, application, actor_id)

    decided = await ledger.accept(application_id)
    if not decided.ok:
        await session.rollback()
        await session.refresh(task)
        return Outcome.failure(decided.error)

    await session.commit()
    await session.refresh(task)
    logger.info(
        "Task %s assigned to %s via application %s", tid, application.helper_id, application_id
    )
    return Outcome.success(task)


async def reject_application(
    session: AsyncSession, tid: str, application_id: str, actor_id: str
) -> Outcome[Application]:
    task, application, error = await _load_pair(session, tid, application_id)
    if error:
        return Outcome.failure(error)
    error = check_reject(task, application, actor_id)
    if error:
        return Outcome.failure(error)

    decided = await ApplicationLedger(session).reject(application_id)
    if not decided.ok:
        await session.rollback()
        return decided
    await session.commit()
    logger.info("Application %s on task %s rejected", application_id, tid)
    return decided


async def withdraw_application(
    session: AsyncSession, application_id: str, actor_id: str
) -> Outcome[Application]:
    application = await ApplicationLedger(session).get(application_id)
    if application is None:
        return Outcome.failure(ApplicationNotFoundError())
    task, application, error = await _load_pair(session, application.task_id, application_id)
    if error:
        return Outcome.failure(error)
    error = check_withdraw(task, application, actor_id)
    if error:
        return Outcome.failure(error)

    decided = await ApplicationLedger(session).withdraw(application_id)
    if not decided.ok:
        await session.rollback()
        return decided
    await session.commit()
    logger.info("Application %s on task %s withdrawn", application_id, task.id)
    return decided


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


async def _transition(
    session: AsyncSession,
    tid: str,
    actor_id: str,
    check: Callable[[Task, str], MarketError | None],
    expected: frozenset[TaskStatus],
    target: TaskStatus,
    stamp: str,
    extra_sets: str = "",
) -> Outcome[Task]:
    task = await get_task(session, tid)
    if task is None:
        return Outcome.failure(TaskNotFoundError())
    error = check(task, actor_id)
    if error:
        return Outcome.failure(error)

    now = datetime.now(UTC)
    result = await session.execute(
        text(
            f"UPDATE tasks SET status = :target, {stamp} = :now, updated_at = :now{extra_sets} "
            f"WHERE id = :id AND status IN ({_status_list(expected)})"
        ),
        {"target": target.value, "now": now, "id": tid},
    )
    if result.rowcount == 0:
        await session.rollback()
        await session.refresh(task)
        error = check(task, actor_id)
        return Outcome.failure(error or InvalidTaskStateError(f"Task is {status_str(task.status)}"))

    await session.commit()
    await session.refresh(task)
    logger.info("Task %s -> %s by %s", tid, target.value, actor_id)
    return Outcome.success(task)


async def start_task(session: AsyncSession, tid: str, actor_id: str) -> Outcome[Task]:
    return await _transition(
        session,
        tid,
        actor_id,
        check_start,
        frozenset({TaskStatus.assigned}),
        TaskStatus.in_progress,
        "started_at",
    )


async def complete_task(session: AsyncSession, tid: str, actor_id: str) -> Outcome[Task]:
    return await _transition(
        session,
        tid,
        actor_id,
        check_complete,
        frozenset({TaskStatus.in_progress}),
        TaskStatus.completed,
        "completed_at",
    )


async def cancel_task(session: AsyncSession, tid: str, actor_id: str) -> Outcome[Task]:
    """Cancel from open, assigned or in_progress.

    The helper slot is released (the accepted application still records who
    held it); started_at is left untouched.
    """
    return await _transition(
        session,
        tid,
        actor_id,
        check_cancel,
        CANCELLABLE_STATUSES,
        TaskStatus.cancelled,
        "cancelled_at",
        extra_sets=", helper_id = NULL",
    )


async def expire_task(session: AsyncSession, tid: str, now: datetime | None = None) -> Outcome[Task]:
    """System transition: open task past its deadline becomes expired.

    Any other task is returned unchanged.
    """
    now = now or datetime.now(UTC)
    task = await get_task(session, tid)
    if task is None:
        return Outcome.failure(TaskNotFoundError())
    if not is_overdue(task, now):
        return Outcome.success(task)

    result = await session.execute(
        text(
            "UPDATE tasks SET status = 'expired', updated_at = :now "
            "WHERE id = :id AND status = 'open'"
        ),
        {"now": now, "id": tid},
    )
    if result.rowcount == 0:
        # Assigned or cancelled in the meantime; nothing to expire
        await session.rollback()
    else:
        await session.commit()
        logger.info("Task %s expired (deadline %s)", tid, iso(task.deadline))
    await session.refresh(task)
    return Outcome.success(task)


async def expire_overdue_tasks(session: AsyncSession, now: datetime | None = None) -> int:
    """Expire every open task whose deadline has passed. Returns the count."""
    now = now or datetime.now(UTC)
    result = await session.execute(
        select(Task.id).where(
            Task.status == TaskStatus.open,
            Task.deadline != None,  # noqa: E711
            Task.deadline <= now,
        )
    )
    candidates = [row[0] for row in result.fetchall()]

    expired = 0
    for tid in candidates:
        update = await session.execute(
            text(
                "UPDATE tasks SET status = 'expired', updated_at = :now "
                "WHERE id = :id AND status = 'open'"
            ),
            {"now": now, "id": tid},
        )
        expired += update.rowcount
    if expired:
        await session.commit()
        logger.info("Expired %d overdue tasks", expired)
    return expired


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def task_to_dict(task: Task, distance_km: float | None = None) -> dict:
    data = {
        "task_id": task.id,
        "title": task.title,
        "description": task.description,
        "category": status_str(task.category),
        "tags": safe_json_loads(task.tags) or [],
        "priority": status_str(task.priority),
        "budget": str(task.budget),
        "currency": task.currency,
        "status": status_str(task.status),
        "latitude": task.latitude,
        "longitude": task.longitude,
        "address": task.address,
        "city": task.city,
        "postal_code": task.postal_code,
        "country": task.country,
        "deadline": iso(task.deadline),
        "estimated_duration": task.estimated_duration,
        "is_urgent": task.is_urgent,
        "is_featured": task.is_featured,
        "author_id": task.author_id,
        "helper_id": task.helper_id,
        "application_count": task.application_count,
        "created_at": iso(task.created_at),
        "assigned_at": iso(task.assigned_at),
        "started_at": iso(task.started_at),
        "completed_at": iso(task.completed_at),
        "cancelled_at": iso(task.cancelled_at),
    }
    if distance_km is not None:
        data["distance_km"] = round(distance_km, 3)
    return data


def application_to_dict(application: Application) -> dict:
    return {
        "application_id": application.id,
        "task_id": application.task_id,
        "helper_id": application.helper_id,
        "message": application.message,
        "proposed_budget": (
            str(application.proposed_budget) if application.proposed_budget is not None else None
        ),
        "proposed_duration": application.proposed_duration,
        "status": status_str(application.status),
        "created_at": iso(application.created_at),
        "decided_at": iso(application.decided_at),
    }
