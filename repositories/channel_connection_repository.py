"""
ChannelConnectionRepository - Data access layer for channel connections
"""

from typing import Optional

from repositories.base_repository import TenantScopedRepository
from crm_database import ChannelConnection
from services.common.tenant_context import TenantContext


class ChannelConnectionRepository(TenantScopedRepository[ChannelConnection]):
    """Repository for ChannelConnection data access"""

    entity_label = 'Channel connection'

    def __init__(self, session):
        super().__init__(session, ChannelConnection)

    def find_default(self, tenant: TenantContext, channel: Optional[str] = 'whatsapp') -> Optional[ChannelConnection]:
        """Default connection of a channel (any channel when None), falling back to the oldest one."""
        query = self.scoped_query(tenant)
        if channel:
            query = query.filter(ChannelConnection.channel == channel)
        return query.order_by(ChannelConnection.is_default.desc(), ChannelConnection.id).first()
