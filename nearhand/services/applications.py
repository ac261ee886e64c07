"""Application ledger: helpers' bids on tasks.

The ledger never commits. Callers in ``nearhand.services.tasks`` own the
transaction so a ledger write and the task transition that depends on it
land together or not at all.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import func, or_, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from nearhand.db_models import Application, ApplicationStatus
from nearhand.errors import (
    ApplicationNotFoundError,
    DataIntegrityError,
    DuplicateApplicationError,
    InvalidApplicationStateError,
    Outcome,
    TaskNotOpenError,
)
from nearhand.ids import application_id as make_application_id
from nearhand.utils import status_str

logger = logging.getLogger("nearhand.applications")


class ApplicationLedger:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, application_id: str) -> Application | None:
        application = await self.session.get(Application, application_id)
        if application is not None:
            await self.session.refresh(application)
        return application

    async def submit(
        self,
        task_id: str,
        helper_id: str,
        message: str | None = None,
        proposed_budget: Decimal | None = None,
        proposed_duration: str | None = None,
    ) -> Outcome[Application]:
        """Record a pending application. One per (task, helper) pair."""
        existing = await self.session.execute(
            select(Application.id).where(
                Application.task_id == task_id, Application.helper_id == helper_id
            )
        )
        if existing.first() is not None:
            return Outcome.failure(DuplicateApplicationError())

        application = Application(
            id=make_application_id(),
            task_id=task_id,
            helper_id=helper_id,
            message=message,
            proposed_budget=proposed_budget,
            proposed_duration=proposed_duration,
        )
        self.session.add(application)
        try:
            await self.session.flush()
        except IntegrityError:
            # Lost a race against a concurrent submit for the same pair
            await self.session.rollback()
            return Outcome.failure(DuplicateApplicationError())

        await self.session.execute(
            text("UPDATE tasks SET application_count = application_count + 1 WHERE id = :id"),
            {"id": task_id},
        )
        return Outcome.success(application)

    async def list_for(
        self,
        task_id: str,
        status: ApplicationStatus | None = None,
        has_message: bool = False,
        has_proposal: bool = False,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[Application]:
        """Applications for a task, oldest first.

        ``has_proposal`` keeps applications carrying a proposed budget or
        duration. The date bounds are inclusive.
        """
        query = select(Application).where(Application.task_id == task_id)
        if status is not None:
            query = query.where(Application.status == status)
        if has_message:
            query = query.where(
                Application.message != None,  # noqa: E711
                Application.message != "",
            )
        if has_proposal:
            query = query.where(
                or_(
                    Application.proposed_budget != None,  # noqa: E711
                    Application.proposed_duration != None,  # noqa: E711
                )
            )
        if date_from is not None:
            query = query.where(Application.created_at >= date_from)
        if date_to is not None:
            query = query.where(Application.created_at <= date_to)
        result = await self.session.execute(
            query.order_by(Application.created_at.asc(), Application.id.asc())
        )
        return list(result.scalars().all())

    async def list_by_helper(self, helper_id: str) -> list[Application]:
        result = await self.session.execute(
            select(Application)
            .where(Application.helper_id == helper_id)
            .order_by(Application.created_at.desc())
        )
        return list(result.scalars().all())

    async def accept(self, application_id: str) -> Outcome[Application]:
        return await self._decide(application_id, ApplicationStatus.accepted)

    async def reject(self, application_id: str) -> Outcome[Application]:
        return await self._decide(application_id, ApplicationStatus.rejected)

    async def withdraw(self, application_id: str) -> Outcome[Application]:
        return await self._decide(application_id, ApplicationStatus.withdrawn)

    async def _decide(
        self, application_id: str, target: ApplicationStatus
    ) -> Outcome[Application]:
        """Atomic pending -> target transition.

        Guarded on the parent task still taking decisions (open or assigned):
        applications are frozen once the task moves on.
        """
        result = await self.session.execute(
            text(
                "UPDATE applications SET status = :target, decided_at = :now "
                "WHERE id = :id AND status = 'pending' AND EXISTS ("
                "SELECT 1 FROM tasks WHERE tasks.id = applications.task_id "
                "AND tasks.status IN ('open', 'assigned'))"
            ),
            {"target": target.value, "now": datetime.now(UTC), "id": application_id},
        )
        application = await self.get(application_id)
        if application is None:
            return Outcome.failure(ApplicationNotFoundError())
        if result.rowcount == 0:
            status = status_str(application.status)
            if status == ApplicationStatus.pending.value:
                return Outcome.failure(TaskNotOpenError("Task no longer takes application decisions"))
            return Outcome.failure(
                InvalidApplicationStateError(f"Application is {status}, not pending")
            )
        return Outcome.success(application)

    async def count_accepted(self, task_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Application)
            .where(
                Application.task_id == task_id,
                Application.status == ApplicationStatus.accepted,
            )
        )
        return result.scalar_one()

    async def has_accepted_application(self, task_id: str) -> bool:
        accepted = await self.count_accepted(task_id)
        if accepted > 1:
            logger.error(
                "Integrity violation: task %s has %d accepted applications", task_id, accepted
            )
            raise DataIntegrityError(f"Task {task_id} has {accepted} accepted applications")
        return accepted == 1
