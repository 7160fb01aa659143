from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.system_setting import SystemSetting


class SystemSettingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_all(self) -> dict[str, dict[str, Any]]:
        result = await self.session.execute(select(SystemSetting))
        return {row.key: dict(row.value) for row in result.scalars().all()}

    async def upsert(self, key: str, value: dict[str, Any]) -> SystemSetting:
        setting = await self.session.get(SystemSetting, key)
        if setting is None:
            setting = SystemSetting(key=key, value=value)
            self.session.add(setting)
        else:
            setting.value = value
        await self.session.flush()
        return setting
