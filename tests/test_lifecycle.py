"""Pure state-machine rules, checked on in-memory snapshots."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from nearhand.db_models import Application, ApplicationStatus, Task, TaskStatus
from nearhand.errors import (
    AlreadyAssignedError,
    ApplicationNotFoundError,
    InvalidApplicationStateError,
    InvalidTaskStateError,
    SelfApplicationError,
    TaskNotOpenError,
    UnauthorizedActionError,
)
from nearhand.lifecycle import (
    CANCELLABLE_STATUSES,
    TERMINAL_STATUSES,
    can_transition,
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

AUTHOR = "us_author"
HELPER = "us_helper"
OTHER = "us_other"


def _task(status=TaskStatus.open, helper_id=None, deadline=None) -> Task:
    return Task(
        id="tk_1",
        author_id=AUTHOR,
        helper_id=helper_id,
        title="t",
        description="d",
        budget=Decimal("10"),
        latitude=48.85,
        longitude=2.35,
        status=status,
        deadline=deadline,
    )


def _app(status=ApplicationStatus.pending, helper_id=HELPER, task_id="tk_1") -> Application:
    return Application(id="ap_1", task_id=task_id, helper_id=helper_id, status=status)


class TestTransitions:
    def test_happy_path(self):
        assert can_transition(TaskStatus.open, TaskStatus.assigned)
        assert can_transition(TaskStatus.assigned, TaskStatus.in_progress)
        assert can_transition(TaskStatus.in_progress, TaskStatus.completed)

    def test_no_skipping(self):
        assert not can_transition(TaskStatus.open, TaskStatus.in_progress)
        assert not can_transition(TaskStatus.assigned, TaskStatus.completed)

    def test_expire_only_from_open(self):
        assert can_transition("open", "expired")
        assert not can_transition("assigned", "expired")

    def test_terminal_states(self):
        assert TERMINAL_STATUSES == {TaskStatus.completed, TaskStatus.cancelled, TaskStatus.expired}
        for status in TERMINAL_STATUSES:
            assert not can_transition(status, TaskStatus.open)

    def test_cancellable(self):
        assert CANCELLABLE_STATUSES == {
            TaskStatus.open,
            TaskStatus.assigned,
            TaskStatus.in_progress,
        }


class TestPropose:
    def test_author_cannot_apply(self):
        assert isinstance(check_propose(_task(), AUTHOR), SelfApplicationError)

    def test_open_task(self):
        assert check_propose(_task(), HELPER) is None

    def test_assigned_task_still_accepts_applications(self):
        assert check_propose(_task(TaskStatus.assigned, helper_id=OTHER), HELPER) is None

    @pytest.mark.parametrize(
        "status",
        [TaskStatus.in_progress, TaskStatus.completed, TaskStatus.cancelled, TaskStatus.expired],
    )
    def test_closed_task(self, status):
        assert isinstance(check_propose(_task(status), HELPER), TaskNotOpenError)

    def test_none_task_is_a_programming_error(self):
        with pytest.raises(ValueError):
            check_propose(None, HELPER)


class TestAccept:
    def test_author_accepts_pending(self):
        assert check_accept(_task(), _app(), AUTHOR) is None

    def test_non_author(self):
        assert isinstance(check_accept(_task(), _app(), HELPER), UnauthorizedActionError)

    def test_application_of_another_task(self):
        error = check_accept(_task(), _app(task_id="tk_2"), AUTHOR)
        assert isinstance(error, ApplicationNotFoundError)

    def test_idempotent_when_already_accepted(self):
        task = _task(TaskStatus.assigned, helper_id=HELPER)
        app = _app(ApplicationStatus.accepted)
        assert is_idempotent_accept(task, app)
        assert check_accept(task, app, AUTHOR) is None

    def test_other_application_on_assigned_task(self):
        task = _task(TaskStatus.assigned, helper_id=OTHER)
        assert isinstance(check_accept(task, _app(), AUTHOR), AlreadyAssignedError)

    def test_expired_task(self):
        assert isinstance(check_accept(_task(TaskStatus.expired), _app(), AUTHOR), TaskNotOpenError)

    def test_rejected_application(self):
        error = check_accept(_task(), _app(ApplicationStatus.rejected), AUTHOR)
        assert isinstance(error, InvalidApplicationStateError)

    def test_none_application(self):
        with pytest.raises(ValueError):
            check_accept(_task(), None, AUTHOR)


class TestRejectWithdraw:
    def test_reject_by_author(self):
        assert check_reject(_task(), _app(), AUTHOR) is None

    def test_reject_by_helper(self):
        assert isinstance(check_reject(_task(), _app(), HELPER), UnauthorizedActionError)

    def test_reject_late_application_on_assigned_task(self):
        task = _task(TaskStatus.assigned, helper_id=OTHER)
        assert check_reject(task, _app(), AUTHOR) is None

    def test_reject_after_completion(self):
        task = _task(TaskStatus.completed, helper_id=OTHER)
        assert isinstance(check_reject(task, _app(), AUTHOR), TaskNotOpenError)

    def test_withdraw_by_applicant(self):
        assert check_withdraw(_task(), _app(), HELPER) is None

    def test_withdraw_by_someone_else(self):
        assert isinstance(check_withdraw(_task(), _app(), AUTHOR), UnauthorizedActionError)

    def test_withdraw_accepted(self):
        task = _task(TaskStatus.assigned, helper_id=HELPER)
        error = check_withdraw(task, _app(ApplicationStatus.accepted), HELPER)
        assert isinstance(error, InvalidApplicationStateError)


class TestStartCompleteCancel:
    def test_only_helper_starts(self):
        task = _task(TaskStatus.assigned, helper_id=HELPER)
        assert check_start(task, HELPER) is None
        assert isinstance(check_start(task, AUTHOR), UnauthorizedActionError)

    def test_start_requires_assigned(self):
        task = _task(TaskStatus.in_progress, helper_id=HELPER)
        assert isinstance(check_start(task, HELPER), InvalidTaskStateError)

    def test_start_open_task_has_no_helper(self):
        assert isinstance(check_start(_task(), HELPER), UnauthorizedActionError)

    def test_both_parties_complete(self):
        task = _task(TaskStatus.in_progress, helper_id=HELPER)
        assert check_complete(task, AUTHOR) is None
        assert check_complete(task, HELPER) is None
        assert isinstance(check_complete(task, OTHER), UnauthorizedActionError)

    def test_complete_requires_in_progress(self):
        task = _task(TaskStatus.assigned, helper_id=HELPER)
        assert isinstance(check_complete(task, AUTHOR), InvalidTaskStateError)

    def test_cancel_open_by_author(self):
        assert check_cancel(_task(), AUTHOR) is None

    def test_cancel_by_stranger(self):
        assert isinstance(check_cancel(_task(), OTHER), UnauthorizedActionError)

    def test_cancel_in_progress_by_helper(self):
        task = _task(TaskStatus.in_progress, helper_id=HELPER)
        assert check_cancel(task, HELPER) is None

    @pytest.mark.parametrize("status", [TaskStatus.completed, TaskStatus.expired, TaskStatus.cancelled])
    def test_cancel_terminal(self, status):
        assert isinstance(check_cancel(_task(status), AUTHOR), InvalidTaskStateError)


class TestOverdue:
    def test_open_past_deadline(self):
        now = datetime.now(UTC)
        assert is_overdue(_task(deadline=now - timedelta(minutes=1)), now)

    def test_open_before_deadline(self):
        now = datetime.now(UTC)
        assert not is_overdue(_task(deadline=now + timedelta(hours=1)), now)

    def test_no_deadline(self):
        assert not is_overdue(_task(), datetime.now(UTC))

    def test_assigned_never_overdue(self):
        now = datetime.now(UTC)
        task = _task(TaskStatus.assigned, helper_id=HELPER, deadline=now - timedelta(days=1))
        assert not is_overdue(task, now)

    def test_naive_deadline_treated_as_utc(self):
        now = datetime.now(UTC)
        naive = (now - timedelta(minutes=5)).replace(tzinfo=None)
        assert is_overdue(_task(deadline=naive), now)
