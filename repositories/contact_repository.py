"""
ContactRepository - Data access layer for Contact model
"""

from typing import Dict, List, Optional, Tuple
from sqlalchemy import or_

from repositories.base_repository import TenantScopedRepository
from crm_database import Contact, ContactCustomField, Message, Ticket, TicketStatus
from services.common.tenant_context import TenantContext


class ContactRepository(TenantScopedRepository[Contact]):
    """Repository for Contact data access"""

    entity_label = 'Contact'

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, Contact)

    def find_by_number(self, tenant: TenantContext, number: Optional[str]) -> Optional[Contact]:
        if not number:
            return None
        return self.scoped_query(tenant).filter(Contact.number == number).first()

    def find_by_alt_id(self, tenant: TenantContext, alt_id: Optional[str]) -> Optional[Contact]:
        if not alt_id:
            return None
        return self.scoped_query(tenant).filter(Contact.alt_id == alt_id).first()

    def find_by_identity(self, tenant: TenantContext, number: Optional[str],
                         alt_id: Optional[str]) -> Tuple[Optional[Contact], Optional[Contact]]:
        """
        Look up a contact by number and by alternate id independently.

        Returns:
            Tuple of (number match, alternate-id match); either may be None
        """
        return self.find_by_number(tenant, number), self.find_by_alt_id(tenant, alt_id)

    def find_by_number_or_alt_id(self, tenant: TenantContext, number: Optional[str],
                                 alt_id: Optional[str]) -> Optional[Contact]:
        """Re-query used after a uniqueness conflict on insert."""
        conditions = []
        if number:
            conditions.append(Contact.number == number)
        if alt_id:
            conditions.append(Contact.alt_id == alt_id)
        if not conditions:
            return None
        return self.scoped_query(tenant).filter(or_(*conditions)).order_by(Contact.id).first()

    def repoint_references(self, tenant: TenantContext, loser: Contact, survivor: Contact) -> Dict[str, int]:
        """
        Move every ticket, message and custom field of `loser` onto `survivor`.

        Both contacts must belong to the context tenant. Runs inside the
        caller's transaction; the caller deletes the loser afterwards.

        Returns:
            Dictionary with the number of rows repointed per table
        """
        self.assert_owned(tenant, loser)
        self.assert_owned(tenant, survivor)

        tickets = self.session.query(Ticket)\
            .filter(Ticket.tenant_id == loser.tenant_id, Ticket.contact_id == loser.id)\
            .update({'contact_id': survivor.id}, synchronize_session='fetch')
        messages = self.session.query(Message)\
            .filter(Message.tenant_id == loser.tenant_id, Message.contact_id == loser.id)\
            .update({'contact_id': survivor.id}, synchronize_session='fetch')
        fields = self.session.query(ContactCustomField)\
            .filter(ContactCustomField.contact_id == loser.id)\
            .update({'contact_id': survivor.id}, synchronize_session='fetch')
        self.session.flush()
        # The loser's custom_fields collection still lists the moved rows
        self.session.expire(loser)
        self.session.expire(survivor, ['custom_fields'])
        return {'tickets': tickets, 'messages': messages, 'custom_fields': fields}

    def find_duplicate_active_tickets(self, tenant: TenantContext, contact: Contact) -> Dict[int, List[int]]:
        """
        Channel connections on which the contact has more than one active ticket.

        Returns:
            Mapping of channel connection id to the active ticket ids, oldest first
        """
        self.assert_owned(tenant, contact)
        rows = self.session.query(Ticket.channel_connection_id, Ticket.id)\
            .filter(Ticket.tenant_id == contact.tenant_id,
                    Ticket.contact_id == contact.id,
                    Ticket.status.in_(TicketStatus.ACTIVE))\
            .order_by(Ticket.channel_connection_id, Ticket.id)\
            .all()
        by_connection: Dict[int, List[int]] = {}
        for connection_id, ticket_id in rows:
            by_connection.setdefault(connection_id, []).append(ticket_id)
        return {connection_id: ids for connection_id, ids in by_connection.items() if len(ids) > 1}

    def replace_custom_fields(self, tenant: TenantContext, contact: Contact,
                              fields: List[Dict[str, str]]) -> Contact:
        """Replace the ordered custom field list of a contact."""
        self.assert_owned(tenant, contact)
        contact.custom_fields = [
            ContactCustomField(name=field['name'], value=field.get('value') or '')
            for field in fields
        ]
        self.session.flush()
        return contact
