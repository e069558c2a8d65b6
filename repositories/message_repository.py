"""
MessageRepository - Data access layer for Message model
"""

from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import joinedload

from repositories.base_repository import TenantScopedRepository
from crm_database import Message, Ticket
from services.common.tenant_context import TenantContext


class MessageRepository(TenantScopedRepository[Message]):
    """Repository for Message data access"""

    entity_label = 'Message'

    def __init__(self, session):
        super().__init__(session, Message)

    def load_with_associations(self, tenant: TenantContext, message_id: str) -> Optional[Message]:
        """Reload a message with its ticket (and the ticket's associations), contact and quoted message."""
        return self.scoped_query(tenant)\
            .options(
                joinedload(Message.contact),
                joinedload(Message.quoted_msg),
                joinedload(Message.ticket).joinedload(Ticket.contact),
                joinedload(Message.ticket).joinedload(Ticket.queue),
                joinedload(Message.ticket).joinedload(Ticket.user),
                joinedload(Message.ticket).joinedload(Ticket.channel_connection)
            )\
            .populate_existing()\
            .filter(Message.id == message_id)\
            .first()

    def id_taken(self, message_id: str) -> bool:
        """
        Whether any tenant already stored a message under this id.

        Message ids are provider-assigned and share one key space, so a
        foreign row still blocks the id. Nothing about that row is returned.
        """
        return self.session.query(Message.id).filter(Message.id == message_id).first() is not None

    def update_ack_if_higher(self, tenant: TenantContext, message_id: str, ack: int) -> bool:
        """
        Raise the stored ack level to `ack` when it is currently lower.

        The comparison happens in the database, so concurrent deliveries of
        the same or different ack levels converge on the maximum.
        """
        return self.update_where(
            tenant, {'id': message_id}, {'ack': ack},
            Message.ack < ack
        ) == 1

    def find_recent_for_ticket(self, tenant: TenantContext, ticket_id: int, limit: int = 20) -> List[Message]:
        """Last `limit` messages of a ticket in chronological order."""
        rows = self.scoped_query(tenant)\
            .filter(Message.ticket_id == ticket_id, Message.is_deleted.is_(False))\
            .order_by(desc(Message.created_at))\
            .limit(limit)\
            .all()
        return list(reversed(rows))

    def mark_ticket_messages_read(self, tenant: TenantContext, ticket_id: int) -> int:
        """Flag every unread inbound message of a ticket as read."""
        return self.update_where(
            tenant, {'ticket_id': ticket_id, 'read': False, 'from_me': False}, {'read': True}
        )
