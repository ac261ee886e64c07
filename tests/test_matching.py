"""Action availability and proximity search."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from nearhand.db_models import (
    Application,
    ApplicationStatus,
    Task,
    TaskCategory,
    TaskPriority,
    TaskStatus,
)
from nearhand.lifecycle import Action
from nearhand.services.matching import (
    application_actions,
    available_actions,
    can_act,
    find_nearby_open_tasks,
    TaskSort,
    nearby_open_tasks,
)
from nearhand.services.tasks import accept_application, propose
from tests.conftest import LYON, PARIS, make_profile, make_task

AUTHOR = "us_author"
HELPER = "us_helper"


def _task(tid="tk_1", at=PARIS, status=TaskStatus.open, helper_id=None, created_at=None) -> Task:
    return Task(
        id=tid,
        author_id=AUTHOR,
        helper_id=helper_id,
        title="t",
        description="d",
        budget=Decimal("10"),
        latitude=at[0],
        longitude=at[1],
        status=status,
        created_at=created_at or datetime.now(UTC),
    )


def _app(status=ApplicationStatus.pending) -> Application:
    return Application(id="ap_1", task_id="tk_1", helper_id=HELPER, status=status)


class TestCanAct:
    def test_author_on_open_task(self):
        task = _task()
        assert available_actions(task, AUTHOR, _app()) == ["accept", "reject", "cancel"]

    def test_helper_on_open_task(self):
        assert available_actions(_task(), HELPER, _app()) == ["withdraw"]

    def test_helper_without_application(self):
        assert available_actions(_task(), HELPER) == ["propose"]

    def test_application_actions_only(self):
        assert application_actions(_task(), AUTHOR, _app()) == ["accept", "reject"]
        assert application_actions(_task(), HELPER, _app()) == ["withdraw"]

    def test_application_actions_need_an_application(self):
        assert not can_act(_task(), None, AUTHOR, Action.accept)
        assert not can_act(_task(), None, HELPER, "withdraw")

    def test_accepted_application_offers_no_accept(self):
        task = _task(status=TaskStatus.assigned, helper_id=HELPER)
        assert not can_act(task, _app(ApplicationStatus.accepted), AUTHOR, Action.accept)

    def test_assigned_helper_can_start_and_cancel(self):
        task = _task(status=TaskStatus.assigned, helper_id=HELPER)
        actions = available_actions(task, HELPER, _app(ApplicationStatus.accepted))
        assert actions == ["start", "cancel"]

    def test_completed_task_offers_nothing(self):
        task = _task(status=TaskStatus.completed, helper_id=HELPER)
        assert available_actions(task, AUTHOR) == []
        assert available_actions(task, HELPER) == []

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            can_act(_task(), None, AUTHOR, "teleport")

    def test_can_act_never_mutates(self):
        task = _task()
        app = _app()
        can_act(task, app, AUTHOR, Action.accept)
        assert task.status == TaskStatus.open
        assert task.helper_id is None
        assert app.status == ApplicationStatus.pending


class TestNearby:
    def test_nearest_first(self):
        near = _task("tk_near", at=(PARIS[0] + 0.01, PARIS[1]))
        nearer = _task("tk_nearer", at=(PARIS[0] + 0.001, PARIS[1]))
        far = _task("tk_far", at=LYON)
        result = [t.id for t in nearby_open_tasks([far, near, nearer], PARIS, 10)]
        assert result == ["tk_nearer", "tk_near"]

    def test_ties_go_to_older_task(self):
        now = datetime.now(UTC)
        young = _task("tk_young", created_at=now)
        old = _task("tk_old", created_at=now - timedelta(hours=1))
        assert [t.id for t in nearby_open_tasks([young, old], PARIS, 1)] == ["tk_old", "tk_young"]

    def test_only_open_tasks(self):
        tasks = [
            _task("tk_open"),
            _task("tk_assigned", status=TaskStatus.assigned, helper_id=HELPER),
            _task("tk_done", status=TaskStatus.completed, helper_id=HELPER),
        ]
        assert [t.id for t in nearby_open_tasks(tasks, PARIS, 5)] == ["tk_open"]

    def test_radius_zero_matches_exact_point_only(self):
        here = _task("tk_here")
        next_door = _task("tk_next", at=(PARIS[0] + 0.0005, PARIS[1]))
        assert [t.id for t in nearby_open_tasks([here, next_door], PARIS, 0)] == ["tk_here"]

    def test_negative_radius(self):
        with pytest.raises(ValueError):
            nearby_open_tasks([], PARIS, -1)

    def test_restartable(self):
        tasks = [_task("tk_a"), _task("tk_b", at=(PARIS[0] + 0.01, PARIS[1]))]
        result = nearby_open_tasks(tasks, PARIS, 10)
        assert list(result) == list(result)
        assert len(list(result)) == 2

    def test_restartable_over_a_generator(self):
        source = (t for t in [_task("tk_a"), _task("tk_b", at=(PARIS[0] + 0.01, PARIS[1]))])
        result = nearby_open_tasks(source, PARIS, 10)
        assert [t.id for t in result] == ["tk_a", "tk_b"]
        assert [t.id for t in result] == ["tk_a", "tk_b"]

    def test_with_distances(self):
        hits = list(nearby_open_tasks([_task(at=LYON)], PARIS, 500).with_distances())
        assert hits[0][1] == pytest.approx(392, abs=2)


class TestFindNearby:
    async def test_query(self, session):
        author = await make_profile(session, "author")
        close = await make_task(session, author.id, at=(PARIS[0] + 0.005, PARIS[1]))
        closer = await make_task(session, author.id, at=PARIS)
        await make_task(session, author.id, at=LYON)

        hits = await find_nearby_open_tasks(session, PARIS, radius_km=5)
        assert [t.id for t, _ in hits] == [closer.id, close.id]
        assert hits[0][1] == pytest.approx(0, abs=1e-6)

        mine_hidden = await find_nearby_open_tasks(session, PARIS, 5, exclude_author=author.id)
        assert mine_hidden == []

    async def test_filters(self, session):
        author = await make_profile(session, "author")
        garden = await make_task(session, author.id, category=TaskCategory.gardening)
        urgent = await make_task(session, author.id, is_urgent=True)

        by_category = await find_nearby_open_tasks(session, PARIS, 5, category=TaskCategory.gardening)
        assert [t.id for t, _ in by_category] == [garden.id]

        only_urgent = await find_nearby_open_tasks(session, PARIS, 5, urgent_only=True)
        assert [t.id for t, _ in only_urgent] == [urgent.id]

    async def test_assigned_tasks_disappear(self, session):
        author = await make_profile(session, "author")
        helper = await make_profile(session, "helper")
        task = await make_task(session, author.id)
        app = (await propose(session, task.id, helper.id)).value
        await accept_application(session, task.id, app.id, author.id)

        assert await find_nearby_open_tasks(session, PARIS, 5) == []

    async def test_limit(self, session):
        author = await make_profile(session, "author")
        for i in range(3):
            await make_task(session, author.id, at=(PARIS[0] + i * 0.001, PARIS[1]))
        assert len(await find_nearby_open_tasks(session, PARIS, 5, limit=2)) == 2


class TestNearbyFilters:
    @pytest.fixture
    async def author(self, session):
        return await make_profile(session, "author")

    async def test_text_search(self, session, author):
        fence = await make_task(session, author.id, title="Paint the FENCE")
        hidden = await make_task(session, author.id, description="Fence posts need 50% more paint")
        await make_task(session, author.id, title="Walk the dog")

        hits = await find_nearby_open_tasks(session, PARIS, 5, search="fence")
        assert {t.id for t, _ in hits} == {fence.id, hidden.id}

        literal = await find_nearby_open_tasks(session, PARIS, 5, search="50%")
        assert [t.id for t, _ in literal] == [hidden.id]

    async def test_priority_budget_and_featured(self, session, author):
        cheap = await make_task(session, author.id, budget=Decimal("5"))
        pricey = await make_task(
            session, author.id, budget=Decimal("90"), priority=TaskPriority.high, is_featured=True
        )

        high = await find_nearby_open_tasks(session, PARIS, 5, priority=TaskPriority.high)
        assert [t.id for t, _ in high] == [pricey.id]

        mid_range = await find_nearby_open_tasks(
            session, PARIS, 5, budget_min=Decimal("1"), budget_max=Decimal("10")
        )
        assert [t.id for t, _ in mid_range] == [cheap.id]

        featured = await find_nearby_open_tasks(session, PARIS, 5, featured_only=True)
        assert [t.id for t, _ in featured] == [pricey.id]

    async def test_any_of_tags(self, session, author):
        plants = await make_task(session, author.id, tags=["plants", "balcony"])
        dog = await make_task(session, author.id, tags=["Dog"])
        await make_task(session, author.id)

        hits = await find_nearby_open_tasks(session, PARIS, 5, tags=["dog", "plants"])
        assert {t.id for t, _ in hits} == {plants.id, dog.id}

    async def test_sort_orders(self, session, author):
        soon = datetime.now(UTC) + timedelta(days=1)
        near = await make_task(session, author.id, budget=Decimal("30"))
        mid = await make_task(
            session,
            author.id,
            at=(PARIS[0] + 0.005, PARIS[1]),
            budget=Decimal("10"),
            priority=TaskPriority.urgent,
            deadline=soon,
        )
        far = await make_task(
            session, author.id, at=(PARIS[0] + 0.01, PARIS[1]), budget=Decimal("50")
        )

        async def order(sort):
            return [t.id for t, _ in await find_nearby_open_tasks(session, PARIS, 5, sort=sort)]

        assert await order(TaskSort.distance) == [near.id, mid.id, far.id]
        assert await order("budget") == [mid.id, near.id, far.id]
        assert await order(TaskSort.budget_desc) == [far.id, near.id, mid.id]
        assert await order(TaskSort.created_at) == [far.id, mid.id, near.id]
        assert (await order(TaskSort.deadline))[0] == mid.id
        assert (await order(TaskSort.priority))[0] == mid.id

    async def test_unknown_sort(self, session):
        with pytest.raises(ValueError):
            await find_nearby_open_tasks(session, PARIS, 5, sort="random")
