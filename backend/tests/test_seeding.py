"""
Default catalogue seeding.
"""
import pytest
from sqlalchemy import func, select

from app.auth import rbac_contract
from app.models import Permission, Role, User
from app.services.admin.role_service import RoleService
from app.services.admin.seeding import ensure_super_admin, seed_rbac
from app.services.admin.user_service import UserService


async def _count(session, model) -> int:
    return await session.scalar(select(func.count()).select_from(model))


@pytest.mark.anyio
async def test_seed_creates_catalogue(session):
    report = await seed_rbac(session)
    await session.commit()

    assert report.changed is True
    assert sorted(report.permissions_created) == sorted(rbac_contract.ALL_PERMISSIONS)
    assert report.roles_created == list(rbac_contract.DEFAULT_ROLES)
    assert rbac_contract.SUPER_ADMIN_ROLE not in report.grants_added
    assert await _count(session, Permission) == len(rbac_contract.ALL_PERMISSIONS)
    assert await _count(session, Role) == len(rbac_contract.DEFAULT_ROLES)


@pytest.mark.anyio
async def test_seed_is_idempotent(session):
    await seed_rbac(session)
    await session.commit()

    report = await seed_rbac(session)
    await session.commit()

    assert report.changed is False
    assert await _count(session, Permission) == len(rbac_contract.ALL_PERMISSIONS)


@pytest.mark.anyio
async def test_seed_restores_missing_default_grant(session, seeded):
    roles = RoleService(session)
    volunteer = seeded[rbac_contract.VOLUNTEER_ROLE]
    await roles.grant_permissions(volunteer, [])
    await session.commit()

    report = await seed_rbac(session)
    await session.commit()

    expected = rbac_contract.DEFAULT_ROLE_PERMISSIONS[rbac_contract.VOLUNTEER_ROLE]
    assert report.grants_added == {rbac_contract.VOLUNTEER_ROLE: sorted(expected)}
    assert {p.name for p in await roles.get_role_permissions(volunteer)} == expected


@pytest.mark.anyio
async def test_seed_keeps_extra_grants(session, seeded):
    roles = RoleService(session)
    volunteer = seeded[rbac_contract.VOLUNTEER_ROLE]
    extra = await roles.create_permission("reports.export")
    current = [p.id for p in await roles.get_role_permissions(volunteer)]
    await roles.grant_permissions(volunteer, current + [extra.id])
    await session.commit()

    await seed_rbac(session)
    await session.commit()

    assert "reports.export" in {p.name for p in await roles.get_role_permissions(volunteer)}


@pytest.mark.anyio
async def test_ensure_super_admin(session, seeded):
    created = await ensure_super_admin(session, " Owner@Example.com ", "long-enough-password")
    await session.commit()

    assert created is True
    user = await session.scalar(select(User).where(User.email == "owner@example.com"))
    assert user.is_approved is True
    assert [role.name for role in await UserService(session).get_roles(user)] == [
        rbac_contract.SUPER_ADMIN_ROLE
    ]

    assert await ensure_super_admin(session, "owner@example.com", "another-password") is False
    assert await _count(session, User) == 1
