"""Matching facade: who may do what, and which open tasks are nearby."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from nearhand.config import settings
from nearhand.db_models import Task, TaskCategory, TaskPriority, TaskStatus
from nearhand.lifecycle import (
    Action,
    check_accept,
    check_cancel,
    check_complete,
    check_propose,
    check_reject,
    check_start,
    check_withdraw,
    is_idempotent_accept,
)
from nearhand.proximity import Coordinates, as_coordinates, bounding_box, distance_km, within_radius
from nearhand.utils import as_utc, safe_json_loads, status_str

_TASK_ACTIONS = {
    Action.propose: check_propose,
    Action.start: check_start,
    Action.complete: check_complete,
    Action.cancel: check_cancel,
}
_APPLICATION_ACTIONS = {
    Action.accept: check_accept,
    Action.reject: check_reject,
    Action.withdraw: check_withdraw,
}


def can_act(task, application, actor_id: str, action: Action | str) -> bool:
    """Whether ``actor_id`` may perform ``action`` right now. Never mutates anything.

    Application-level actions need the application; without one they are
    reported as not available.
    """
    action = Action(action)
    if action == Action.propose and application is not None and application.helper_id == actor_id:
        # One application per helper
        return False
    if action in _TASK_ACTIONS:
        return _TASK_ACTIONS[action](task, actor_id) is None
    if application is None:
        return False
    if action == Action.accept and is_idempotent_accept(task, application):
        # Already the accepted one; nothing left to offer
        return False
    return _APPLICATION_ACTIONS[action](task, application, actor_id) is None


def available_actions(task, actor_id: str, application=None) -> list[str]:
    return [a.value for a in Action if can_act(task, application, actor_id, a)]


def application_actions(task, actor_id: str, application) -> list[str]:
    """Decisions available on one application, without the task-level actions."""
    return [a.value for a in _APPLICATION_ACTIONS if can_act(task, application, actor_id, a)]


def task_coordinates(task) -> Coordinates:
    return Coordinates(task.latitude, task.longitude)


class NearbyTasks:
    """Open tasks within a radius, nearest first.

    Iterating recomputes from the source, so the sequence can be walked
    any number of times. Ties on distance go to the older task.
    """

    def __init__(self, tasks: Iterable[Task], origin, radius_km: float):
        if radius_km < 0:
            raise ValueError("radius_km must be >= 0")
        self._tasks = list(tasks)
        self.origin = as_coordinates(origin)
        self.radius_km = radius_km

    def with_distances(self) -> Iterator[tuple[Task, float]]:
        hits = []
        for task in self._tasks:
            if status_str(task.status) != TaskStatus.open.value:
                continue
            point = task_coordinates(task)
            if not within_radius(self.origin, point, self.radius_km):
                continue
            hits.append((task, distance_km(self.origin, point)))
        hits.sort(key=lambda hit: (hit[1], as_utc(hit[0].created_at), hit[0].id))
        yield from hits

    def __iter__(self) -> Iterator[Task]:
        for task, _distance in self.with_distances():
            yield task


def nearby_open_tasks(tasks: Iterable[Task], origin, radius_km: float) -> NearbyTasks:
    return NearbyTasks(tasks, origin, radius_km)


class TaskSort(str, enum.Enum):
    distance = "distance"
    created_at = "created_at"
    budget = "budget"
    budget_desc = "budget_desc"
    deadline = "deadline"
    priority = "priority"


_PRIORITY_RANK = {
    TaskPriority.urgent.value: 0,
    TaskPriority.high.value: 1,
    TaskPriority.medium.value: 2,
    TaskPriority.low.value: 3,
}


def _sort_key(sort: TaskSort):
    """Key over (task, distance) hits. Distance breaks ties for every order."""
    if sort == TaskSort.created_at:
        return lambda hit: (-as_utc(hit[0].created_at).timestamp(), hit[1])
    if sort == TaskSort.budget:
        return lambda hit: (hit[0].budget, hit[1])
    if sort == TaskSort.budget_desc:
        return lambda hit: (-hit[0].budget, hit[1])
    if sort == TaskSort.deadline:
        # Tasks without a deadline go last
        return lambda hit: (
            hit[0].deadline is None,
            as_utc(hit[0].deadline) or datetime.min.replace(tzinfo=UTC),
            hit[1],
        )
    if sort == TaskSort.priority:
        return lambda hit: (_PRIORITY_RANK.get(status_str(hit[0].priority), 2), hit[1])
    return None


def _has_any_tag(task: Task, wanted: set[str]) -> bool:
    tags = safe_json_loads(task.tags) or []
    return any(tag.lower() in wanted for tag in tags)


async def find_nearby_open_tasks(
    session: AsyncSession,
    origin,
    radius_km: float | None = None,
    category: TaskCategory | None = None,
    urgent_only: bool = False,
    exclude_author: str | None = None,
    limit: int | None = None,
    search: str | None = None,
    priority: TaskPriority | None = None,
    budget_min: Decimal | None = None,
    budget_max: Decimal | None = None,
    tags: list[str] | None = None,
    featured_only: bool = False,
    sort: TaskSort | str = TaskSort.distance,
) -> list[tuple[Task, float]]:
    """Query open tasks around ``origin``: bounding-box pre-filter, exact haversine after.

    ``search`` matches title or description, case-insensitively. ``tags``
    keeps tasks carrying at least one of them. Results are nearest first
    unless ``sort`` asks for another order.
    """
    sort = TaskSort(sort)
    radius = settings.default_radius_km if radius_km is None else radius_km
    radius = min(radius, settings.max_radius_km)
    min_lat, max_lat, min_lng, max_lng = bounding_box(origin, radius)

    query = select(Task).where(
        Task.status == TaskStatus.open,
        Task.latitude >= min_lat,
        Task.latitude <= max_lat,
        Task.longitude >= min_lng,
        Task.longitude <= max_lng,
    )
    if category is not None:
        query = query.where(Task.category == category)
    if urgent_only:
        query = query.where(Task.is_urgent == True)  # noqa: E712
    if exclude_author:
        query = query.where(Task.author_id != exclude_author)
    if search and search.strip():
        term = search.strip()
        query = query.where(
            or_(
                Task.title.icontains(term, autoescape=True),
                Task.description.icontains(term, autoescape=True),
            )
        )
    if priority is not None:
        query = query.where(Task.priority == priority)
    if budget_min is not None:
        query = query.where(Task.budget >= budget_min)
    if budget_max is not None:
        query = query.where(Task.budget <= budget_max)
    if featured_only:
        query = query.where(Task.is_featured == True)  # noqa: E712

    result = await session.execute(query)
    hits = list(nearby_open_tasks(result.scalars().all(), origin, radius).with_distances())
    if tags:
        wanted = {t.lower() for t in tags}
        hits = [hit for hit in hits if _has_any_tag(hit[0], wanted)]
    key = _sort_key(sort)
    if key is not None:
        hits.sort(key=key)
    page_limit = limit or settings.nearby_page_limit
    return hits[:page_limit]
