"""Typed business errors and the Outcome wrapper returned by engine operations.

Business-rule violations are *returned*, not raised: every lifecycle and
ledger operation hands back an :class:`Outcome` carrying either the updated
snapshot or one of the errors below. Messages are safe to show verbatim to
the actor who triggered them.

:class:`DataIntegrityError` is the exception: it signals an invariant that
the store should have made impossible and is raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class MarketError(Exception):
    code = "market_error"
    status_code = 409
    default_message = "Action not allowed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class TaskNotFoundError(MarketError):
    code = "task_not_found"
    status_code = 404
    default_message = "Task not found"


class ApplicationNotFoundError(MarketError):
    code = "application_not_found"
    status_code = 404
    default_message = "Application not found"


class InvalidTaskStateError(MarketError):
    code = "invalid_task_state"
    default_message = "Task is not in a state that allows this action"


class TaskNotOpenError(InvalidTaskStateError):
    code = "task_not_open"
    default_message = "Task is not open"


class SelfApplicationError(MarketError):
    code = "self_application"
    default_message = "You cannot apply to your own task"


class AlreadyAssignedError(MarketError):
    code = "already_assigned"
    default_message = "Task already has an assigned helper"


class DuplicateApplicationError(MarketError):
    code = "duplicate_application"
    default_message = "You already applied to this task"


class InvalidApplicationStateError(MarketError):
    code = "invalid_application_state"
    default_message = "Application is no longer pending"


class UnauthorizedActionError(MarketError):
    code = "unauthorized_action"
    status_code = 403
    default_message = "You are not allowed to do this"


class DataIntegrityError(RuntimeError):
    """Stored state violates an engine invariant (e.g. two accepted applications)."""


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: T | None = None
    error: MarketError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: MarketError) -> Outcome[T]:
        return cls(error=error)
