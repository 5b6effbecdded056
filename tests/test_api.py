"""End-to-end HTTP tests through the FastAPI application.

The app runs on httpx's ASGITransport with an in-memory repository; the
AppManager is initialised by the fixture because ASGITransport does not run
the lifespan.
"""
from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from taskmanager.api import create_app
from taskmanager.core.config import TaskManagerConfig
from taskmanager.manager import AppManager
from taskmanager.storage.memory import InMemoryRepository

ADMIN_PASSWORD = "Admin@123"
PASSWORD = "secret1"


@pytest_asyncio.fixture
async def client(config: TaskManagerConfig) -> AsyncIterator[AsyncClient]:
    seeded = config.model_copy(update={"seed_admin": True})
    repo = InMemoryRepository()
    app = create_app(seeded, repository=repo)

    manager = AppManager(seeded, repository=repo)
    await manager.initialize()
    app.state.app_manager = manager
    app.state.config = seeded

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await manager.shutdown()


async def login(client: AsyncClient, username: str, password: str = PASSWORD) -> dict[str, str]:
    resp = await client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


async def create_user(
    client: AsyncClient, headers: dict[str, str], username: str, role: str = "User"
) -> dict:
    resp = await client.post(
        "/api/users",
        headers=headers,
        json={
            "username": username,
            "email": f"{username}@example.com",
            "password": PASSWORD,
            "first_name": username.capitalize(),
            "last_name": "Api",
            "role": role,
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest_asyncio.fixture
async def team(client: AsyncClient) -> dict:
    """Admin plus two managers and two users, all logged in."""
    admin = await login(client, "admin", ADMIN_PASSWORD)
    ids = {
        "m1": (await create_user(client, admin, "m1", "Manager"))["id"],
        "m2": (await create_user(client, admin, "m2", "Manager"))["id"],
        "u1": (await create_user(client, admin, "u1"))["id"],
        "u2": (await create_user(client, admin, "u2"))["id"],
    }
    headers = {"admin": admin}
    for name in ids:
        headers[name] = await login(client, name)
    return {"ids": ids, "headers": headers}


class TestHealthAndAuth:

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_wrong_password(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/auth/login", json={"username": "admin", "password": "wrong-one"}
        )
        assert resp.status_code == 401
        assert resp.json()["error"] == "unauthorized"
        assert resp.json()["message"] == "Invalid username or password"
        assert resp.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_missing_and_bad_token(self, client: AsyncClient) -> None:
        assert (await client.get("/api/auth/me")).status_code == 401
        resp = await client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid or expired access token"

    @pytest.mark.asyncio
    async def test_me(self, client: AsyncClient) -> None:
        headers = await login(client, "admin", ADMIN_PASSWORD)
        resp = await client.get("/api/auth/me", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["role"] == "Admin"
        assert "password_hash" not in resp.json()

    @pytest.mark.asyncio
    async def test_refresh_rotation_and_logout(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD}
        )
        first = resp.json()

        rotated = await client.post("/api/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert rotated.status_code == 200
        second = rotated.json()
        assert second["refresh_token"] != first["refresh_token"]

        replay = await client.post("/api/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert replay.status_code == 401

        headers = {"Authorization": f"Bearer {second['access_token']}"}
        logout = await client.post("/api/auth/logout", headers=headers)
        assert logout.status_code == 200
        assert logout.json()["revoked"] == 1

        after = await client.post("/api/auth/refresh", json={"refresh_token": second["refresh_token"]})
        assert after.status_code == 401

    @pytest.mark.asyncio
    async def test_revoke(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD}
        )
        pair = resp.json()
        headers = {"Authorization": f"Bearer {pair['access_token']}"}

        revoked = await client.post(
            "/api/auth/revoke", headers=headers, json={"refresh_token": pair["refresh_token"]}
        )
        assert revoked.json() == {"revoked": True}
        unknown = await client.post(
            "/api/auth/revoke", headers=headers, json={"refresh_token": "no-such-token"}
        )
        assert unknown.json() == {"revoked": False}


class TestUsersApi:

    @pytest.mark.asyncio
    async def test_conflict_and_validation(self, client: AsyncClient, team: dict) -> None:
        admin = team["headers"]["admin"]
        dup = await client.post(
            "/api/users",
            headers=admin,
            json={
                "username": "u1",
                "email": "other@example.com",
                "password": PASSWORD,
                "first_name": "U",
                "last_name": "One",
            },
        )
        assert dup.status_code == 409
        assert dup.json()["error"] == "conflict"

        invalid = await client.post(
            "/api/users",
            headers=admin,
            json={"username": "x", "email": "bad", "password": "1", "first_name": "X", "last_name": "Y"},
        )
        assert invalid.status_code == 422

    @pytest.mark.asyncio
    async def test_role_rules(self, client: AsyncClient, team: dict) -> None:
        ids, headers = team["ids"], team["headers"]

        listed = await client.get("/api/users", headers=headers["m1"])
        assert {u["username"] for u in listed.json()} == {"u1", "u2"}

        filtered = await client.get("/api/users", params={"role": "Manager"}, headers=headers["admin"])
        assert {u["username"] for u in filtered.json()} == {"m1", "m2"}

        assert (await client.get("/api/users", headers=headers["u1"])).status_code == 403
        assert (
            await client.get(f"/api/users/{ids['m2']}", headers=headers["m1"])
        ).status_code == 403

        promote = await client.put(
            f"/api/users/{ids['m1']}", headers=headers["admin"], json={"role": "Admin"}
        )
        assert promote.status_code == 400
        assert promote.json()["error"] == "invalid_operation"

    @pytest.mark.asyncio
    async def test_soft_delete(self, client: AsyncClient, team: dict) -> None:
        ids, headers = team["ids"], team["headers"]
        resp = await client.delete(f"/api/users/{ids['u2']}", headers=headers["m1"])
        assert resp.status_code == 204

        fetched = await client.get(f"/api/users/{ids['u2']}", headers=headers["admin"])
        assert fetched.status_code == 200
        assert fetched.json()["is_active"] is False

        relogin = await client.post(
            "/api/auth/login", json={"username": "u2", "password": PASSWORD}
        )
        assert relogin.status_code == 401

        me = await client.get("/api/users/1", headers=headers["admin"])
        self_delete = await client.delete(f"/api/users/{me.json()['id']}", headers=headers["admin"])
        assert self_delete.status_code == 400


class TestProjectTaskFlow:

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, client: AsyncClient, team: dict) -> None:
        ids, headers = team["ids"], team["headers"]
        m1, u1 = headers["m1"], headers["u1"]

        project = await client.post("/api/projects", headers=m1, json={"name": "Apollo"})
        assert project.status_code == 201
        project_id = project.json()["id"]
        assert project.json()["manager_id"] == ids["m1"]

        members = await client.post(
            f"/api/projects/{project_id}/users",
            headers=m1,
            json={"user_ids": [ids["u1"], ids["m2"]]},
        )
        assert [u["username"] for u in members.json()] == ["u1"]

        task = await client.post(
            "/api/tasks",
            headers=m1,
            json={"title": "Ship it", "project_id": project_id, "status": "Closed"},
        )
        assert task.status_code == 201
        task_id = task.json()["id"]
        assert task.json()["status"] == "NotAssigned"

        assigned = await client.put(
            f"/api/tasks/{task_id}", headers=m1, json={"assigned_to_id": ids["u1"]}
        )
        assert assigned.json()["status"] == "Assigned"

        progress = await client.put(
            f"/api/tasks/{task_id}/status", headers=u1, json={"status": "InProgress"}
        )
        assert progress.status_code == 200

        closed = await client.put(
            f"/api/tasks/{task_id}/status",
            headers=u1,
            json={"status": "Closed", "comment": "shipped"},
        )
        assert closed.json()["completed_date"] is not None

        detail = await client.get(f"/api/tasks/{task_id}", headers=u1)
        assert detail.status_code == 200
        history = detail.json()["history"]
        assert [h["field_name"] for h in history] == [
            "Created",
            "Status",
            "AssignedTo",
            "Status",
            "Status",
        ]
        assert history[-1]["comment"] == "shipped"

        assert (await client.get(f"/api/tasks/{task_id}", headers=headers["m2"])).status_code == 403
        assert (await client.get(f"/api/tasks/{task_id}", headers=headers["u2"])).status_code == 403

        mine = await client.get("/api/tasks", headers=u1)
        assert [t["id"] for t in mine.json()] == [task_id]
        assert (await client.get("/api/tasks", headers=headers["u2"])).json() == []

        dashboard = await client.get("/api/dashboard", headers=m1)
        assert dashboard.status_code == 200
        assert dashboard.json()["total_tasks"] == 1
        assert dashboard.json()["completed_tasks"] == 1

        listed = await client.get(f"/api/projects/{project_id}/users", headers=m1)
        assert [u["username"] for u in listed.json()] == ["u1"]

        deleted = await client.delete(f"/api/projects/{project_id}", headers=m1)
        assert deleted.status_code == 204
        gone = await client.get(f"/api/tasks/{task_id}", headers=headers["admin"])
        assert gone.status_code == 404
        assert gone.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_user_cannot_create_project(self, client: AsyncClient, team: dict) -> None:
        resp = await client.post("/api/projects", headers=team["headers"]["u1"], json={"name": "X"})
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_task_in_missing_project(self, client: AsyncClient, team: dict) -> None:
        resp = await client.post(
            "/api/tasks", headers=team["headers"]["admin"], json={"title": "X", "project_id": 999}
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_naive_due_date_on_dashboard(self, client: AsyncClient, team: dict) -> None:
        m1 = team["headers"]["m1"]
        project = await client.post("/api/projects", headers=m1, json={"name": "Apollo"})
        task = await client.post(
            "/api/tasks",
            headers=m1,
            json={
                "title": "Later",
                "project_id": project.json()["id"],
                "due_date": "2099-01-01T00:00:00",
            },
        )
        assert task.status_code == 201
        assert task.json()["due_date"] in ("2099-01-01T00:00:00Z", "2099-01-01T00:00:00+00:00")

        dashboard = await client.get("/api/dashboard", headers=m1)
        assert dashboard.status_code == 200
        assert [t["title"] for t in dashboard.json()["upcoming_deadlines"]] == ["Later"]
