"""
HTTP tests for the auth and admin routers.

The app's database dependency is overridden with the test session, so
every request sees the fixtures' data and the routers' commits land in the
in-memory database.
"""
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from app.auth.rbac_contract import ADMIN_ROLE, ALL_PERMISSIONS, DEFAULT_ROLE_PERMISSIONS
from app.dependencies import get_db
from app.main import app
from app.models import AuditLog, User
from app.security.token_inspection import create_access_token

from conftest import TEST_PASSWORD


@pytest.fixture
async def client(session):
    async def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


async def _audit_count(session) -> int:
    return (await session.execute(select(func.count()).select_from(AuditLog))).scalar_one()


class TestAuthentication:
    @pytest.mark.anyio
    async def test_login_returns_usable_token(self, client, admin):
        response = await client.post("/auth/login", json={"email": "admin@example.com", "password": TEST_PASSWORD})

        assert response.status_code == 200
        token = response.json()["access_token"]
        me = await client.get("/admin/users", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200

    @pytest.mark.anyio
    async def test_login_with_wrong_password(self, client, admin):
        response = await client.post("/auth/login", json={"email": "admin@example.com", "password": "wrong-password"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_ERROR"

    @pytest.mark.anyio
    async def test_missing_token(self, client):
        response = await client.get("/admin/roles")
        assert response.status_code == 401

    @pytest.mark.anyio
    async def test_garbage_token(self, client):
        response = await client.get("/admin/roles", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    @pytest.mark.anyio
    async def test_me_lists_roles_and_permissions(self, client, admin):
        response = await client.get("/auth/me", headers=auth(admin))

        assert response.status_code == 200
        body = response.json()
        assert (body["id"], body["email"], body["roles"]) == (str(admin.id), "admin@example.com", ["admin"])
        assert body["permissions"] == sorted(DEFAULT_ROLE_PERMISSIONS[ADMIN_ROLE])

    @pytest.mark.anyio
    async def test_me_for_super_admin_lists_every_permission(self, client, super_admin):
        response = await client.get("/auth/me", headers=auth(super_admin))

        assert response.status_code == 200
        assert response.json()["roles"] == ["super-admin"]
        assert response.json()["permissions"] == sorted(ALL_PERMISSIONS)

    @pytest.mark.anyio
    async def test_me_without_roles(self, client, seeded, make_user):
        user = await make_user()

        response = await client.get("/auth/me", headers=auth(user))

        assert response.status_code == 200
        assert (response.json()["roles"], response.json()["permissions"]) == ([], [])

    @pytest.mark.anyio
    async def test_me_requires_token(self, client):
        assert (await client.get("/auth/me")).status_code == 401


class TestDenials:
    @pytest.mark.anyio
    async def test_volunteer_cannot_list_users(self, client, volunteer):
        response = await client.get("/admin/users", headers=auth(volunteer))

        assert response.status_code == 403
        assert response.json()["error"] == {
            "code": "PERMISSION_DENIED",
            "message": "This action is unauthorized.",
            "details": None,
        }

    @pytest.mark.anyio
    async def test_super_admin_role_cannot_be_deleted(self, client, session, seeded, super_admin):
        before = await _audit_count(session)

        response = await client.delete(f"/admin/roles/{seeded['super-admin'].id}", headers=auth(super_admin))

        assert response.status_code == 403
        assert await _audit_count(session) == before

    @pytest.mark.anyio
    async def test_cannot_change_own_roles(self, client, seeded, super_admin):
        response = await client.put(
            f"/admin/users/{super_admin.id}/roles",
            json={"roles": [str(seeded["volunteer"].id)]},
            headers=auth(super_admin),
        )
        assert response.status_code == 403

    @pytest.mark.anyio
    async def test_cannot_delete_self(self, client, super_admin):
        response = await client.delete(f"/admin/users/{super_admin.id}", headers=auth(super_admin))
        assert response.status_code == 403

    @pytest.mark.anyio
    async def test_admin_cannot_delete_super_admin(self, client, session, admin, super_admin):
        response = await client.delete(f"/admin/users/{super_admin.id}", headers=auth(admin))

        assert response.status_code == 403
        assert await session.get(User, super_admin.id) is not None

    @pytest.mark.anyio
    async def test_admin_cannot_create_roles(self, client, admin):
        response = await client.post("/admin/roles", json={"name": "editor"}, headers=auth(admin))
        assert response.status_code == 403


class TestRoles:
    @pytest.mark.anyio
    async def test_create_update_delete_role(self, client, session, super_admin):
        groups = (await client.get("/admin/permissions", headers=auth(super_admin))).json()["groups"]
        view_users = next(p["id"] for p in groups["users"] if p["name"] == "view users")
        delete_users = next(p["id"] for p in groups["users"] if p["name"] == "delete users")

        created = await client.post(
            "/admin/roles", json={"name": "editor", "permissions": [view_users]}, headers=auth(super_admin)
        )
        assert created.status_code == 201
        role_id = created.json()["id"]
        assert created.json()["permissions"] == [view_users]

        updated = await client.put(
            f"/admin/roles/{role_id}",
            json={"name": "editor", "permissions": [delete_users]},
            headers=auth(super_admin),
        )
        assert updated.status_code == 200
        assert updated.json()["permissions"] == [delete_users]

        deleted = await client.delete(f"/admin/roles/{role_id}", headers=auth(super_admin))
        assert deleted.status_code == 204

        actions = (
            await session.execute(select(AuditLog.action).where(AuditLog.target_id == role_id))
        ).scalars().all()
        assert sorted(actions) == ["created", "deleted", "permissions_synced", "permissions_synced"]

    @pytest.mark.anyio
    async def test_duplicate_role_name(self, client, super_admin):
        response = await client.post("/admin/roles", json={"name": "admin"}, headers=auth(super_admin))

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DUPLICATE_NAME"

    @pytest.mark.anyio
    async def test_list_roles(self, client, admin):
        response = await client.get("/admin/roles", headers=auth(admin))

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 3
        assert {role["name"] for role in body["roles"]} == {"super-admin", "admin", "volunteer"}


class TestUsers:
    @pytest.mark.anyio
    async def test_super_admin_syncs_roles(self, client, seeded, super_admin, volunteer):
        response = await client.put(
            f"/admin/users/{volunteer.id}/roles",
            json={"roles": [str(seeded["admin"].id)]},
            headers=auth(super_admin),
        )

        assert response.status_code == 200
        assert response.json()["roles"] == ["admin"]
        followup = await client.get("/admin/users", headers=auth(volunteer))
        assert followup.status_code == 200

    @pytest.mark.anyio
    async def test_admin_creates_user(self, client, seeded, admin):
        response = await client.post(
            "/admin/users",
            json={
                "name": "New Volunteer",
                "email": "New@Example.com",
                "password": "s3cret-pass",
                "roles": [str(seeded["volunteer"].id)],
            },
            headers=auth(admin),
        )

        assert response.status_code == 201
        assert response.json()["email"] == "new@example.com"
        assert response.json()["roles"] == ["volunteer"]

    @pytest.mark.anyio
    async def test_initial_roles_need_only_create_permission(self, client, seeded, admin):
        response = await client.post(
            "/admin/users",
            json={
                "name": "Second Root",
                "email": "root2@example.com",
                "password": "s3cret-pass",
                "roles": [str(seeded["super-admin"].id)],
            },
            headers=auth(admin),
        )

        assert response.status_code == 201
        assert response.json()["roles"] == ["super-admin"]
        # once created, the account is out of the admin's reach
        created_id = response.json()["id"]
        followup = await client.put(f"/admin/users/{created_id}/roles", json={"roles": []}, headers=auth(admin))
        assert followup.status_code == 403

    @pytest.mark.anyio
    async def test_duplicate_email(self, client, admin, volunteer):
        response = await client.post(
            "/admin/users",
            json={"name": "Dup", "email": "volunteer@example.com", "password": "s3cret-pass"},
            headers=auth(admin),
        )
        assert response.status_code == 409

    @pytest.mark.anyio
    async def test_update_user(self, client, admin, volunteer):
        response = await client.put(
            f"/admin/users/{volunteer.id}",
            json={"name": "Helper", "email": "volunteer@example.com", "is_approved": False},
            headers=auth(admin),
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Helper"
        assert response.json()["is_approved"] is False

    @pytest.mark.anyio
    async def test_unknown_user(self, client, admin):
        response = await client.get("/admin/users/00000000-0000-0000-0000-000000000000", headers=auth(admin))
        assert response.status_code == 404


class TestDashboardSettingsAudit:
    @pytest.mark.anyio
    async def test_dashboard(self, client, admin):
        response = await client.get("/admin/dashboard", headers=auth(admin))

        assert response.status_code == 200
        body = response.json()
        assert body["stats"]["total_permissions"] == 16
        assert body["recent_users"][0]["email"] == "admin@example.com"

    @pytest.mark.anyio
    async def test_settings_round_trip(self, client, admin):
        current = (await client.get("/admin/settings", headers=auth(admin))).json()
        current["general"]["site_name"] = "Portal"

        response = await client.put("/admin/settings", json=current, headers=auth(admin))

        assert response.status_code == 200
        assert response.json()["general"]["site_name"] == "Portal"

    @pytest.mark.anyio
    async def test_settings_validation(self, client, admin):
        response = await client.put(
            "/admin/settings",
            json={
                "general": {"site_name": "Portal", "admin_email": "admin@example.com"},
                "security": {"password_expiry_days": 400, "session_timeout_minutes": 60},
            },
            headers=auth(admin),
        )
        assert response.status_code == 422

    @pytest.mark.anyio
    async def test_audit_logs(self, client, admin):
        response = await client.get("/admin/audit-logs", params={"target_type": "role"}, headers=auth(admin))

        assert response.status_code == 200
        assert response.json()
        assert {entry["target_type"] for entry in response.json()} == {"role"}

    @pytest.mark.anyio
    async def test_volunteer_cannot_read_audit_logs(self, client, volunteer):
        response = await client.get("/admin/audit-logs", headers=auth(volunteer))
        assert response.status_code == 403


@pytest.mark.anyio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
