"""Task status state machine and per-action preconditions.

Everything here is pure: rule checks look only at the task/application
snapshots they are given and return ``None`` when the action is allowed or
the :class:`~nearhand.errors.MarketError` that forbids it. The store-backed
transitions in ``nearhand.services.tasks`` and the ``can_act`` predicate in
``nearhand.services.matching`` share these checks.

Passing ``None`` where a task or application is required is a programming
error and raises ``ValueError``.
"""

from __future__ import annotations

import enum
from datetime import datetime

from nearhand.db_models import ApplicationStatus, TaskStatus
from nearhand.errors import (
    AlreadyAssignedError,
    ApplicationNotFoundError,
    InvalidApplicationStateError,
    InvalidTaskStateError,
    MarketError,
    SelfApplicationError,
    TaskNotOpenError,
    UnauthorizedActionError,
)
from nearhand.utils import as_utc, status_str


class Action(str, enum.Enum):
    propose = "propose"
    accept = "accept"
    reject = "reject"
    withdraw = "withdraw"
    start = "start"
    complete = "complete"
    cancel = "cancel"


TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.open: frozenset({TaskStatus.assigned, TaskStatus.cancelled, TaskStatus.expired}),
    TaskStatus.assigned: frozenset({TaskStatus.in_progress, TaskStatus.cancelled}),
    TaskStatus.in_progress: frozenset({TaskStatus.completed, TaskStatus.cancelled}),
    TaskStatus.completed: frozenset(),
    TaskStatus.cancelled: frozenset(),
    TaskStatus.expired: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)
CANCELLABLE_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if TaskStatus.cancelled in targets)
# Applications may be submitted and decided only while the task is in one of these.
APPLICATION_WINDOW = frozenset({TaskStatus.open, TaskStatus.assigned})


def can_transition(current: TaskStatus | str, target: TaskStatus | str) -> bool:
    return TaskStatus(status_str(target)) in TRANSITIONS[TaskStatus(status_str(current))]


def _status(task) -> TaskStatus:
    if task is None:
        raise ValueError("task is required")
    return TaskStatus(status_str(task.status))


def _app_status(application) -> ApplicationStatus:
    if application is None:
        raise ValueError("application is required")
    return ApplicationStatus(status_str(application.status))


def _wrong_state(task, expected: str) -> InvalidTaskStateError:
    return InvalidTaskStateError(f"Task is {status_str(task.status)}, expected {expected}")


def check_propose(task, actor_id: str) -> MarketError | None:
    status = _status(task)
    if actor_id == task.author_id:
        return SelfApplicationError()
    if status not in APPLICATION_WINDOW:
        return TaskNotOpenError(f"Task is {status.value}, not open")
    return None


def is_idempotent_accept(task, application) -> bool:
    """The application is already the accepted one for this assigned task."""
    return (
        _status(task) == TaskStatus.assigned
        and _app_status(application) == ApplicationStatus.accepted
        and task.helper_id == application.helper_id
    )


def check_accept(task, application, actor_id: str) -> MarketError | None:
    status = _status(task)
    app_status = _app_status(application)
    if actor_id != task.author_id:
        return UnauthorizedActionError("Only the task author can accept applications")
    if application.task_id != task.id:
        return ApplicationNotFoundError("Application does not belong to this task")
    if status == TaskStatus.assigned:
        if is_idempotent_accept(task, application):
            return None
        return AlreadyAssignedError()
    if status != TaskStatus.open:
        return TaskNotOpenError(f"Task is {status.value}, not open")
    if app_status != ApplicationStatus.pending:
        return InvalidApplicationStateError(f"Application is {app_status.value}, not pending")
    return None


def check_reject(task, application, actor_id: str) -> MarketError | None:
    status = _status(task)
    app_status = _app_status(application)
    if actor_id != task.author_id:
        return UnauthorizedActionError("Only the task author can reject applications")
    if application.task_id != task.id:
        return ApplicationNotFoundError("Application does not belong to this task")
    if status not in APPLICATION_WINDOW:
        return TaskNotOpenError(f"Task is {status.value}; its applications are closed")
    if app_status != ApplicationStatus.pending:
        return InvalidApplicationStateError(f"Application is {app_status.value}, not pending")
    return None


def check_withdraw(task, application, actor_id: str) -> MarketError | None:
    status = _status(task)
    app_status = _app_status(application)
    if actor_id != application.helper_id:
        return UnauthorizedActionError("Only the applicant can withdraw an application")
    if application.task_id != task.id:
        return ApplicationNotFoundError("Application does not belong to this task")
    if status not in APPLICATION_WINDOW:
        return TaskNotOpenError(f"Task is {status.value}; its applications are closed")
    if app_status != ApplicationStatus.pending:
        return InvalidApplicationStateError(f"Application is {app_status.value}, not pending")
    return None


def check_start(task, actor_id: str) -> MarketError | None:
    status = _status(task)
    if task.helper_id is None or actor_id != task.helper_id:
        return UnauthorizedActionError("Only the assigned helper can start this task")
    if status != TaskStatus.assigned:
        return _wrong_state(task, "assigned")
    return None


def check_complete(task, actor_id: str) -> MarketError | None:
    status = _status(task)
    if actor_id not in _participants(task):
        return UnauthorizedActionError("Only the author or the assigned helper can complete this task")
    if status != TaskStatus.in_progress:
        return _wrong_state(task, "in_progress")
    return None


def check_cancel(task, actor_id: str) -> MarketError | None:
    status = _status(task)
    if actor_id not in _participants(task):
        return UnauthorizedActionError("Only the author or the assigned helper can cancel this task")
    if status not in CANCELLABLE_STATUSES:
        return _wrong_state(task, "open, assigned or in_progress")
    return None


def is_overdue(task, now: datetime) -> bool:
    """Open task whose deadline has passed. Never true for any other status."""
    if _status(task) != TaskStatus.open or task.deadline is None:
        return False
    return as_utc(task.deadline) <= as_utc(now)


def _participants(task) -> set[str]:
    ids = {task.author_id}
    if task.helper_id:
        ids.add(task.helper_id)
    return ids
