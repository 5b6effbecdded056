"""Tests for InMemoryRepository."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from taskmanager.core.exceptions import ConflictError, NotFoundError
from taskmanager.core.types import (
    Project,
    RefreshToken,
    Role,
    TaskHistory,
    TaskItem,
    TaskStatus,
    utcnow,
)
from taskmanager.storage.memory import InMemoryRepository


def make_project(name: str = "Apollo", manager_id: int = 1) -> Project:
    return Project(name=name, manager_id=manager_id)


def make_task(project_id: int, title: str = "Write docs", **kw) -> TaskItem:
    return TaskItem(title=title, project_id=project_id, assigned_by_id=1, **kw)


def history_row(field_name: str = "Created", new_value: str | None = "Task created") -> TaskHistory:
    return TaskHistory(task_id=0, changed_by_id=1, field_name=field_name, new_value=new_value)


def make_token(user_id: int = 1, ttl: timedelta = timedelta(days=7), token: str = "tok-a") -> RefreshToken:
    return RefreshToken(user_id=user_id, token=token, expires_at=utcnow() + ttl)


class TestUsers:

    @pytest.mark.asyncio
    async def test_create_assigns_ids(self, repo: InMemoryRepository, make_user) -> None:
        a = await repo.create_user(make_user("alice"))
        b = await repo.create_user(make_user("bob"))
        assert (a.id, b.id) == (1, 2)
        assert (await repo.get_user(2)).username == "bob"

    @pytest.mark.asyncio
    async def test_get_missing_raises(self, repo: InMemoryRepository) -> None:
        with pytest.raises(NotFoundError):
            await repo.get_user(99)

    @pytest.mark.asyncio
    async def test_find_by_username_and_email(self, repo: InMemoryRepository, make_user) -> None:
        await repo.create_user(make_user("alice"))
        assert (await repo.find_user_by_username("alice")).email == "alice@example.com"
        assert (await repo.find_user_by_email("alice@example.com")).username == "alice"
        assert await repo.find_user_by_username("nobody") is None

    @pytest.mark.asyncio
    async def test_duplicate_username(self, repo: InMemoryRepository, make_user) -> None:
        await repo.create_user(make_user("alice"))
        with pytest.raises(ConflictError) as exc_info:
            await repo.create_user(make_user("alice", email="other@example.com"))
        assert exc_info.value.field == "username"

    @pytest.mark.asyncio
    async def test_duplicate_email(self, repo: InMemoryRepository, make_user) -> None:
        await repo.create_user(make_user("alice"))
        with pytest.raises(ConflictError) as exc_info:
            await repo.create_user(make_user("alice2", email="alice@example.com"))
        assert exc_info.value.field == "email"

    @pytest.mark.asyncio
    async def test_update_rejects_taken_username(self, repo: InMemoryRepository, make_user) -> None:
        await repo.create_user(make_user("alice"))
        bob = await repo.create_user(make_user("bob"))
        with pytest.raises(ConflictError):
            await repo.update_user(bob.model_copy(update={"username": "alice"}))

    @pytest.mark.asyncio
    async def test_update_keeps_own_username(self, repo: InMemoryRepository, make_user) -> None:
        alice = await repo.create_user(make_user("alice"))
        updated = await repo.update_user(alice.model_copy(update={"first_name": "Alicia"}))
        assert updated.first_name == "Alicia"
        assert updated.updated_at >= alice.updated_at

    @pytest.mark.asyncio
    async def test_list_sorted_and_filtered(self, repo: InMemoryRepository, make_user) -> None:
        await repo.create_user(make_user("zed", first_name="Zed"))
        await repo.create_user(make_user("amy", Role.MANAGER, first_name="Amy"))
        bob = await repo.create_user(make_user("bob", first_name="Bob"))
        await repo.update_user(bob.model_copy(update={"is_active": False}))

        assert [u.username for u in await repo.list_users()] == ["amy", "bob", "zed"]
        assert [u.username for u in await repo.list_users(roles=[Role.USER])] == ["bob", "zed"]
        assert [u.username for u in await repo.list_users(active_only=True)] == ["amy", "zed"]

    @pytest.mark.asyncio
    async def test_get_users_skips_missing(self, repo: InMemoryRepository, make_user) -> None:
        alice = await repo.create_user(make_user("alice"))
        users = await repo.get_users([alice.id, 404])
        assert list(users) == [alice.id]


class TestProjects:

    @pytest.mark.asyncio
    async def test_list_newest_first(self, repo: InMemoryRepository) -> None:
        first = await repo.create_project(make_project("First"))
        second = await repo.create_project(make_project("Second"))
        assert [p.id for p in await repo.list_projects()] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_list_by_manager_and_member(self, repo: InMemoryRepository) -> None:
        mine = await repo.create_project(make_project("Mine", manager_id=1))
        theirs = await repo.create_project(make_project("Theirs", manager_id=2))
        await repo.replace_project_members(theirs.id, [7])

        assert [p.id for p in await repo.list_projects(manager_id=1)] == [mine.id]
        assert [p.id for p in await repo.list_projects(member_id=7)] == [theirs.id]
        assert await repo.list_projects(project_ids=[]) == []

    @pytest.mark.asyncio
    async def test_replace_members(self, repo: InMemoryRepository) -> None:
        project = await repo.create_project(make_project())
        await repo.replace_project_members(project.id, [3, 4])
        members = await repo.replace_project_members(project.id, [4, 5, 5])

        assert [m.user_id for m in members] == [4, 5]
        assert {m.user_id for m in await repo.list_memberships(project_ids=[project.id])} == {4, 5}
        assert await repo.is_project_member(project.id, 5)
        assert not await repo.is_project_member(project.id, 3)

    @pytest.mark.asyncio
    async def test_replace_members_missing_project(self, repo: InMemoryRepository) -> None:
        with pytest.raises(NotFoundError):
            await repo.replace_project_members(404, [1])

    @pytest.mark.asyncio
    async def test_delete_cascades(self, repo: InMemoryRepository) -> None:
        project = await repo.create_project(make_project())
        other = await repo.create_project(make_project("Other"))
        await repo.replace_project_members(project.id, [3])
        await repo.create_task(make_task(project.id), [history_row()])
        await repo.create_task(make_task(project.id, "Second"), [history_row()])
        kept = await repo.create_task(make_task(other.id), [history_row()])

        await repo.delete_project(project.id)

        stats = repo.get_statistics()
        assert stats["projects"] == 1
        assert stats["tasks"] == 1
        assert stats["history"] == 1
        assert stats["memberships"] == 0
        assert (await repo.get_task(kept.id)).project_id == other.id
        with pytest.raises(NotFoundError):
            await repo.get_project(project.id)


class TestTasks:

    @pytest.mark.asyncio
    async def test_create_requires_project(self, repo: InMemoryRepository) -> None:
        with pytest.raises(NotFoundError):
            await repo.create_task(make_task(404))

    @pytest.mark.asyncio
    async def test_history_bound_to_new_task(self, repo: InMemoryRepository) -> None:
        project = await repo.create_project(make_project())
        task = await repo.create_task(make_task(project.id), [history_row()])

        rows = await repo.list_task_history(task.id)
        assert len(rows) == 1
        assert rows[0].task_id == task.id
        assert rows[0].id is not None

    @pytest.mark.asyncio
    async def test_update_appends_history_in_order(self, repo: InMemoryRepository) -> None:
        project = await repo.create_project(make_project())
        task = await repo.create_task(make_task(project.id), [history_row()])
        await repo.update_task(
            task.model_copy(update={"title": "Renamed"}),
            [history_row("Title", "Renamed")],
        )

        rows = await repo.list_task_history(task.id)
        assert [r.field_name for r in rows] == ["Created", "Title"]
        assert (await repo.get_task(task.id)).title == "Renamed"

    @pytest.mark.asyncio
    async def test_filters(self, repo: InMemoryRepository) -> None:
        p1 = await repo.create_project(make_project("P1"))
        p2 = await repo.create_project(make_project("P2"))
        await repo.create_task(make_task(p1.id, assigned_to_id=5, status=TaskStatus.ASSIGNED))
        await repo.create_task(make_task(p2.id))

        assert len(await repo.list_tasks()) == 2
        assert len(await repo.list_tasks(project_id=p1.id)) == 1
        assert len(await repo.list_tasks(project_ids=[p2.id])) == 1
        assert len(await repo.list_tasks(status=TaskStatus.ASSIGNED)) == 1
        assert len(await repo.list_tasks(assigned_to_id=5)) == 1
        assert await repo.list_tasks(project_ids=[]) == []

    @pytest.mark.asyncio
    async def test_dates_stored_as_utc(self, repo: InMemoryRepository) -> None:
        project = await repo.create_project(make_project())
        ist = timezone(timedelta(hours=5, minutes=30))
        task = await repo.create_task(
            make_task(
                project.id,
                start_date=datetime(2099, 1, 1),
                due_date=datetime(2099, 1, 2, 10, 0, tzinfo=ist),
            )
        )

        stored = await repo.get_task(task.id)
        assert stored.start_date == datetime(2099, 1, 1, tzinfo=UTC)
        assert stored.due_date == datetime(2099, 1, 2, 4, 30, tzinfo=UTC)
        assert stored.due_date.tzinfo is UTC

    @pytest.mark.asyncio
    async def test_delete_removes_history(self, repo: InMemoryRepository) -> None:
        project = await repo.create_project(make_project())
        task = await repo.create_task(make_task(project.id), [history_row()])
        await repo.delete_task(task.id)

        assert await repo.list_task_history(task.id) == []
        with pytest.raises(NotFoundError):
            await repo.delete_task(task.id)


class TestRefreshTokens:

    @pytest.mark.asyncio
    async def test_add_and_find(self, repo: InMemoryRepository) -> None:
        stored = await repo.add_refresh_token(make_token())
        assert stored.id is not None
        assert (await repo.find_refresh_token("tok-a")).user_id == 1
        assert await repo.find_refresh_token("missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_token_conflicts(self, repo: InMemoryRepository) -> None:
        await repo.add_refresh_token(make_token())
        with pytest.raises(ConflictError):
            await repo.add_refresh_token(make_token())

    @pytest.mark.asyncio
    async def test_rotate_is_single_use(self, repo: InMemoryRepository) -> None:
        await repo.add_refresh_token(make_token(token="old"))
        now = utcnow()

        rotated = await repo.rotate_refresh_token("old", make_token(token="new"), now)
        assert rotated is not None and rotated.token == "new"
        old = await repo.find_refresh_token("old")
        assert old.is_revoked and old.revoked_at == now

        again = await repo.rotate_refresh_token("old", make_token(token="newer"), now)
        assert again is None
        assert await repo.find_refresh_token("newer") is None

    @pytest.mark.asyncio
    async def test_rotate_expired_token(self, repo: InMemoryRepository) -> None:
        await repo.add_refresh_token(make_token(token="stale", ttl=timedelta(seconds=-1)))
        assert await repo.rotate_refresh_token("stale", make_token(token="new"), utcnow()) is None

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, repo: InMemoryRepository) -> None:
        await repo.add_refresh_token(make_token())
        first = utcnow()
        assert await repo.revoke_refresh_token("tok-a", first) is True
        assert await repo.revoke_refresh_token("tok-a", first + timedelta(minutes=5)) is True
        assert (await repo.find_refresh_token("tok-a")).revoked_at == first
        assert await repo.revoke_refresh_token("missing", first) is False

    @pytest.mark.asyncio
    async def test_revoke_all_for_user(self, repo: InMemoryRepository) -> None:
        await repo.add_refresh_token(make_token(token="a"))
        await repo.add_refresh_token(make_token(token="b"))
        await repo.add_refresh_token(make_token(user_id=2, token="c"))

        assert await repo.revoke_user_refresh_tokens(1, utcnow()) == 2
        assert await repo.revoke_user_refresh_tokens(1, utcnow()) == 0
        assert all(t.is_revoked for t in await repo.list_refresh_tokens(1))
        assert not (await repo.find_refresh_token("c")).is_revoked


class TestHousekeeping:

    @pytest.mark.asyncio
    async def test_clear_resets_ids(self, repo: InMemoryRepository, make_user) -> None:
        await repo.create_user(make_user("alice"))
        repo.clear()
        assert repo.get_statistics()["users"] == 0
        assert (await repo.create_user(make_user("bob"))).id == 1
