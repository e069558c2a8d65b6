"""
QueueRepository - Data access layer for routing queues
"""

from typing import List

from repositories.base_repository import TenantScopedRepository
from crm_database import Queue
from services.common.tenant_context import TenantContext


class QueueRepository(TenantScopedRepository[Queue]):
    """Repository for Queue data access"""

    entity_label = 'Queue'

    def __init__(self, session):
        super().__init__(session, Queue)

    def find_ai_enabled(self, tenant: TenantContext) -> List[Queue]:
        """Queues with automated assistant handling, ordered by name."""
        return self.scoped_query(tenant)\
            .filter(Queue.ai_enabled.is_(True))\
            .order_by(Queue.name)\
            .all()
