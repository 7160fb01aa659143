import copy
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.system_setting import SystemSettingRepository
from ...models.user import User
from ..audit.audit_service import AuditService

DEFAULT_SYSTEM_SETTINGS: dict[str, dict[str, Any]] = {
    "general": {
        "site_name": "RBAC Admin",
        "site_description": "Client Portal for Managing Users and Roles",
        "admin_email": "admin@example.com",
        "users_require_approval": True,
    },
    "security": {
        "password_expiry_days": 90,
        "session_timeout_minutes": 60,
        "two_factor_authentication": False,
    },
    "email": {
        "email_notifications": True,
        "welcome_email": True,
        "approval_required_email": True,
    },
}


class SettingsService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = SystemSettingRepository(session)
        self.audit = AuditService(session)

    async def get_settings(self) -> dict[str, dict[str, Any]]:
        """Stored values layered over the defaults, section by section."""
        merged = copy.deepcopy(DEFAULT_SYSTEM_SETTINGS)
        for section, values in (await self.repo.get_all()).items():
            merged.setdefault(section, {}).update(values)
        return merged

    async def update_settings(
        self, changes: dict[str, dict[str, Any]], actor: User | None = None
    ) -> dict[str, dict[str, Any]]:
        current = await self.get_settings()
        updated_fields: list[str] = []

        for section, values in changes.items():
            section_values = dict(current.get(section, {}))
            changed = False
            for key, value in values.items():
                if section_values.get(key) != value:
                    section_values[key] = value
                    updated_fields.append(f"{section}.{key}")
                    changed = True
            if changed:
                await self.repo.upsert(section, section_values)
                current[section] = section_values

        await self.audit.log_updated(
            "settings",
            None,
            "System Settings",
            updated_fields,
            description="System settings updated",
            actor=actor,
        )
        return current
