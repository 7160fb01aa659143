from .dashboard_service import DashboardService
from .permission_cache import PermissionCache, get_permission_cache
from .permission_service import PermissionService
from .policies import PolicyService
from .role_service import RoleService
from .settings_service import SettingsService
from .user_service import RoleChange, UserService, UserWithRoles

__all__ = [
    "DashboardService",
    "PermissionCache",
    "PermissionService",
    "PolicyService",
    "RoleChange",
    "RoleService",
    "SettingsService",
    "UserService",
    "UserWithRoles",
    "get_permission_cache",
]
