"""
Tests for PermissionService decision procedure.

The repositories are mocked so each test pins exactly which roles and
permissions the user holds.
"""
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.models.user import User
from app.services.admin.permission_cache import CachedGrants
from app.services.admin.permission_service import PermissionService


@pytest.fixture
def mock_session():
    """Create a mock AsyncSession."""
    return MagicMock()


@pytest.fixture
def mock_user():
    """Create a mock user."""
    user = MagicMock(spec=User)
    user.id = uuid.uuid4()
    return user


def _service(session, roles=(), permissions=(), all_permissions=()):
    service = PermissionService(session)
    service.user_repo = MagicMock()
    service.user_repo.get_role_names = AsyncMock(return_value=set(roles))
    service.permission_repo = MagicMock()
    service.permission_repo.get_user_permission_names = AsyncMock(return_value=set(permissions))
    listed = []
    for name in all_permissions:
        permission = MagicMock()
        permission.name = name
        listed.append(permission)
    service.permission_repo.list_all = AsyncMock(return_value=listed)
    return service


class TestFailClosed:
    @pytest.mark.anyio
    async def test_none_user_is_denied(self, mock_session):
        service = _service(mock_session, roles={"super-admin"})
        assert await service.authorize(None, "view users") is False

    @pytest.mark.anyio
    @pytest.mark.parametrize("name", ["", "   ", None])
    async def test_empty_permission_name_is_denied(self, mock_session, mock_user, name):
        service = _service(mock_session, roles={"super-admin"})
        assert await service.authorize(mock_user, name) is False

    @pytest.mark.anyio
    async def test_unknown_permission_is_denied(self, mock_session, mock_user):
        service = _service(mock_session, roles={"admin"}, permissions={"view users"})
        assert await service.authorize(mock_user, "launch rockets") is False


class TestSuperAdminBypass:
    @pytest.mark.anyio
    async def test_super_admin_allowed_without_grants(self, mock_session, mock_user):
        service = _service(mock_session, roles={"super-admin"}, permissions=set())

        assert await service.authorize(mock_user, "delete users") is True
        assert await service.authorize(mock_user, "anything at all") is True

    @pytest.mark.anyio
    async def test_super_admin_effective_permissions_are_all_permissions(self, mock_session, mock_user):
        service = _service(
            mock_session,
            roles={"super-admin"},
            all_permissions=["view users", "delete roles"],
        )
        assert await service.get_effective_permissions(mock_user) == {"view users", "delete roles"}

    @pytest.mark.anyio
    async def test_is_super_admin(self, mock_session, mock_user):
        assert await _service(mock_session, roles={"super-admin"}).is_super_admin(mock_user) is True
        assert await _service(mock_session, roles={"admin"}).is_super_admin(mock_user) is False
        assert await _service(mock_session).is_super_admin(None) is False


class TestUnionSemantics:
    @pytest.mark.anyio
    async def test_admin_scenario(self, mock_session, mock_user):
        service = _service(mock_session, roles={"admin"}, permissions={"view users", "edit users"})

        assert await service.authorize(mock_user, "view users") is True
        assert await service.authorize(mock_user, "delete users") is False

    @pytest.mark.anyio
    async def test_user_without_roles_has_nothing(self, mock_session, mock_user):
        service = _service(mock_session)
        assert await service.authorize(mock_user, "view profile") is False
        assert await service.get_effective_permissions(mock_user) == set()


class TestCacheUsage:
    @pytest.mark.anyio
    async def test_cache_hit_skips_database(self, mock_session, mock_user):
        cache = MagicMock()
        cache.generation = AsyncMock(return_value="4")
        cache.get = AsyncMock(return_value=CachedGrants(roles=frozenset({"admin"}), permissions=frozenset({"view users"})))
        cache.set = AsyncMock()
        service = _service(mock_session)
        service.cache = cache

        assert await service.authorize(mock_user, "view users") is True
        cache.get.assert_awaited_once_with(mock_user.id, "4")
        service.user_repo.get_role_names.assert_not_called()
        cache.set.assert_not_called()

    @pytest.mark.anyio
    async def test_cache_miss_fills_generation_read_before_database(self, mock_session, mock_user):
        cache = MagicMock()
        cache.generation = AsyncMock(side_effect=["4", "5"])
        cache.get = AsyncMock(return_value=None)
        cache.set = AsyncMock()
        service = _service(mock_session, roles={"admin"}, permissions={"view users"})
        service.cache = cache

        assert await service.authorize(mock_user, "view users") is True
        cache.generation.assert_awaited_once()
        cache.set.assert_awaited_once_with(
            mock_user.id,
            CachedGrants(roles=frozenset({"admin"}), permissions=frozenset({"view users"})),
            "4",
        )

    @pytest.mark.anyio
    async def test_unreachable_cache_reads_database(self, mock_session, mock_user):
        cache = MagicMock()
        cache.generation = AsyncMock(return_value=None)
        cache.get = AsyncMock()
        cache.set = AsyncMock()
        service = _service(mock_session, roles={"admin"}, permissions={"view users"})
        service.cache = cache

        assert await service.authorize(mock_user, "view users") is True
        cache.get.assert_not_called()
        cache.set.assert_not_called()
