"""
TicketRepository - Data access layer for Ticket model

Status, SLA and resolution writes are exposed as conditional updates so
concurrent callers (message ingestion, agents, the SLA sweep) can tell from
the affected row count whether their write took effect.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import desc
from sqlalchemy.orm import joinedload

from repositories.base_repository import TenantScopedRepository
from crm_database import Ticket, TicketStatus, Tag
from services.common.tenant_context import TenantContext


class TicketRepository(TenantScopedRepository[Ticket]):
    """Repository for Ticket data access"""

    entity_label = 'Ticket'

    def __init__(self, session):
        super().__init__(session, Ticket)

    def load_with_associations(self, tenant: TenantContext, ticket_id: int) -> Optional[Ticket]:
        """
        Reload a ticket together with contact, queue, user, channel connection and tags.

        Existing identity-map state is overwritten so the returned object
        reflects what is committed, not what this session last saw.
        """
        return self.scoped_query(tenant)\
            .options(
                joinedload(Ticket.contact),
                joinedload(Ticket.queue),
                joinedload(Ticket.user),
                joinedload(Ticket.channel_connection)
            )\
            .populate_existing()\
            .filter(Ticket.id == ticket_id)\
            .first()

    def find_active_for_contact(self, tenant: TenantContext, contact_id: int,
                                channel_connection_id: Optional[int]) -> Optional[Ticket]:
        """Most recently updated non-closed ticket of a contact on one connection."""
        return self.scoped_query(tenant)\
            .filter(
                Ticket.contact_id == contact_id,
                Ticket.channel_connection_id == channel_connection_id,
                Ticket.status.in_(TicketStatus.ACTIVE)
            )\
            .order_by(desc(Ticket.updated_at), desc(Ticket.id))\
            .first()

    def find_other_active(self, tenant: TenantContext, contact_id: int,
                          channel_connection_id: Optional[int],
                          exclude_ticket_id: Optional[int] = None) -> Optional[Ticket]:
        query = self.scoped_query(tenant).filter(
            Ticket.contact_id == contact_id,
            Ticket.channel_connection_id == channel_connection_id,
            Ticket.status.in_(TicketStatus.ACTIVE)
        )
        if exclude_ticket_id is not None:
            query = query.filter(Ticket.id != exclude_ticket_id)
        return query.first()

    def increment_unread(self, tenant: TenantContext, ticket_id: int, delta: int) -> int:
        if not delta:
            return 0
        return self.update_where(
            tenant, {'id': ticket_id},
            {'unread_messages': Ticket.unread_messages + delta}
        )

    def transition_status(self, tenant: TenantContext, ticket_id: int,
                          from_status: str, to_status: str) -> bool:
        """Set status only while it still equals `from_status`."""
        return self.update_where(
            tenant, {'id': ticket_id, 'status': from_status}, {'status': to_status}
        ) == 1

    def mark_resolved_once(self, tenant: TenantContext, ticket_id: int, when: datetime) -> bool:
        """Stamp resolved_at unless it has ever been stamped before."""
        return self.update_where(
            tenant, {'id': ticket_id, 'resolved_at': None}, {'resolved_at': when}
        ) == 1

    def stamp_first_human_response(self, tenant: TenantContext, ticket_id: int, when: datetime) -> bool:
        """Record the first human reply and stop the SLA clock, once."""
        return self.update_where(
            tenant, {'id': ticket_id, 'first_human_response_at': None},
            {'first_human_response_at': when, 'sla_due_at': None}
        ) == 1

    def clear_sla(self, tenant: TenantContext, ticket_id: int) -> bool:
        return self.update_where(
            tenant, {'id': ticket_id}, {'sla_due_at': None},
            Ticket.sla_due_at.isnot(None)
        ) == 1

    def find_overdue(self, tenant: TenantContext, now: datetime,
                     limit: Optional[int] = None) -> List[Tuple[int, int]]:
        """
        Ids of active tickets whose SLA due date has passed.

        Returns:
            List of (tenant_id, ticket_id) ordered by tenant then due date
        """
        query = self.session.query(Ticket.tenant_id, Ticket.id)
        if not self._check_context(tenant).is_super_admin:
            query = query.filter(Ticket.tenant_id == tenant.tenant_id)
        query = query.filter(
            Ticket.status.in_(TicketStatus.ACTIVE),
            Ticket.sla_due_at.isnot(None),
            Ticket.sla_due_at < now
        ).order_by(Ticket.tenant_id, Ticket.sla_due_at)
        if limit:
            query = query.limit(limit)
        return [(row[0], row[1]) for row in query.all()]

    def escalate_if_overdue(self, tenant: TenantContext, ticket_id: int, now: datetime,
                            queue_id: Optional[int], next_due_at: Optional[datetime]) -> bool:
        """
        Return an overdue ticket to the pending pool in one conditional write.

        Matches nothing when a human reply cleared the SLA or the ticket was
        closed after the sweep selected it.
        """
        updates = {'status': TicketStatus.PENDING, 'user_id': None, 'sla_due_at': next_due_at}
        if queue_id:
            updates['queue_id'] = queue_id
        return self.update_where(
            tenant, {'id': ticket_id}, updates,
            Ticket.status.in_(TicketStatus.ACTIVE),
            Ticket.sla_due_at.isnot(None),
            Ticket.sla_due_at < now
        ) == 1

    def replace_tags(self, tenant: TenantContext, ticket: Ticket, tags: List[Tag]) -> Ticket:
        """Replace the full tag set of a ticket."""
        self.assert_owned(tenant, ticket)
        for tag in tags:
            if tag.tenant_id != ticket.tenant_id:
                self.assert_owned(tenant.for_tenant(ticket.tenant_id), tag)
        ticket.tags = list(tags)
        self.session.flush()
        return ticket

    def find_for_queue(self, tenant: TenantContext, queue_id: int,
                       date_from: Optional[datetime] = None,
                       date_to: Optional[datetime] = None) -> List[Ticket]:
        query = self.scoped_query(tenant).filter(Ticket.queue_id == queue_id)
        if date_from:
            query = query.filter(Ticket.created_at >= date_from)
        if date_to:
            query = query.filter(Ticket.created_at <= date_to)
        return query.all()
