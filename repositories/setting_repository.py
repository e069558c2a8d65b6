"""
SettingRepository - Data access layer for per-tenant Setting rows
"""

from typing import Optional

from repositories.base_repository import TenantScopedRepository
from crm_database import Setting
from services.common.tenant_context import TenantContext


class SettingRepository(TenantScopedRepository[Setting]):
    """Repository for Setting data access"""

    entity_label = 'Setting'

    def __init__(self, session):
        super().__init__(session, Setting)

    def get_value(self, tenant: TenantContext, key: str) -> Optional[str]:
        setting = self.find_one_by(tenant, key=key)
        return setting.value if setting else None

    def set_value(self, tenant: TenantContext, key: str, value: str) -> Setting:
        setting = self.find_one_by(tenant, key=key)
        if setting:
            return self.update(tenant, setting, value=value)
        return self.create(tenant, key=key, value=value)
