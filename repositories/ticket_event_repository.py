"""
TicketEventRepository - Append-only access to the ticket audit log
"""

from datetime import datetime
from typing import List, Optional

from repositories.base_repository import TenantScopedRepository
from crm_database import TicketEvent
from services.common.tenant_context import TenantContext


class TicketEventRepository(TenantScopedRepository[TicketEvent]):
    """Repository for TicketEvent data access. Events are never updated or deleted."""

    entity_label = 'Ticket event'

    def __init__(self, session):
        super().__init__(session, TicketEvent)

    def find_for_ticket(self, tenant: TenantContext, ticket_id: int,
                        event_type: Optional[str] = None) -> List[TicketEvent]:
        filters = {'ticket_id': ticket_id}
        if event_type:
            filters['event_type'] = event_type
        return self.scoped_query(tenant, filters)\
            .order_by(TicketEvent.created_at, TicketEvent.id)\
            .all()

    def count_by_type(self, tenant: TenantContext, event_type: str,
                      queue_id: Optional[int] = None,
                      date_from: Optional[datetime] = None,
                      date_to: Optional[datetime] = None) -> int:
        query = self.scoped_query(tenant, {'event_type': event_type})
        if queue_id is not None:
            query = query.filter(TicketEvent.queue_id == queue_id)
        if date_from:
            query = query.filter(TicketEvent.created_at >= date_from)
        if date_to:
            query = query.filter(TicketEvent.created_at <= date_to)
        return query.count()

    def update(self, tenant, entity, **updates):
        raise NotImplementedError("Ticket events are immutable")

    def delete(self, tenant, entity):
        raise NotImplementedError("Ticket events are immutable")
