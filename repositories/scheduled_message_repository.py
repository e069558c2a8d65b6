"""
ScheduledMessageRepository - Data access layer for scheduled outbound messages
"""

from datetime import datetime
from typing import List

from repositories.base_repository import TenantScopedRepository
from crm_database import ScheduledMessage
from services.common.tenant_context import TenantContext


class ScheduledMessageRepository(TenantScopedRepository[ScheduledMessage]):
    """Repository for ScheduledMessage data access"""

    entity_label = 'Scheduled message'

    def __init__(self, session):
        super().__init__(session, ScheduledMessage)

    def find_due(self, tenant: TenantContext, now: datetime, limit: int = 20) -> List[ScheduledMessage]:
        """Pending schedules whose send time has arrived, oldest first."""
        return self.scoped_query(tenant, {'status': 'pending'})\
            .filter(ScheduledMessage.send_at <= now)\
            .order_by(ScheduledMessage.send_at, ScheduledMessage.id)\
            .limit(limit)\
            .all()

    def claim(self, tenant: TenantContext, schedule_id: int) -> bool:
        """Move a schedule from pending to sending; False when someone else got it first."""
        return self.update_where(
            tenant, {'id': schedule_id, 'status': 'pending'}, {'status': 'sending'}
        ) == 1
