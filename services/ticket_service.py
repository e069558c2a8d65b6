"""
TicketService - Ticket lifecycle engine

Owns the pending/open/closed state machine, conversation ticket lookup,
validated updates and the ticket audit log. Status and resolution writes are
compare-and-set so concurrent callers cannot both win a transition.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from crm_database import ChannelConnection, Contact, Ticket, TicketEvent, TicketStatus
from logging_config import get_logger
from repositories.channel_connection_repository import ChannelConnectionRepository
from repositories.queue_repository import QueueRepository
from repositories.tag_repository import TagRepository
from repositories.ticket_event_repository import TicketEventRepository
from repositories.ticket_repository import TicketRepository
from repositories.user_repository import UserRepository
from services.common.errors import ConflictError, NotFound, PermissionDenied, ValidationError
from services.common.tenant_context import TenantContext, require_tenant
from services.message_service import MessageService
from services.notification_service import NotificationService
from utils.datetime_utils import utc_now

logger = get_logger(__name__)


class _Unset:
    def __repr__(self):
        return 'UNSET'

    def __bool__(self):
        return False


# Marks a TicketUpdate field the caller left untouched (None means "clear")
UNSET: Any = _Unset()

ALLOWED_TRANSITIONS = {
    TicketStatus.PENDING: {TicketStatus.OPEN, TicketStatus.CLOSED},
    TicketStatus.OPEN: {TicketStatus.CLOSED, TicketStatus.PENDING},
    TicketStatus.CLOSED: {TicketStatus.PENDING},
}


@dataclass
class TicketUpdate:
    """Requested ticket changes; fields left as UNSET are not touched"""
    status: Optional[str] = None
    queue_id: Any = UNSET
    user_id: Any = UNSET
    channel_connection_id: Any = UNSET
    lead_score: Optional[int] = None
    tag_ids: Optional[List[int]] = None
    actor_user_id: Optional[int] = None

    def is_empty(self) -> bool:
        return (self.status is None and self.queue_id is UNSET and self.user_id is UNSET
                and self.channel_connection_id is UNSET and self.lead_score is None
                and self.tag_ids is None)


@dataclass
class _Snapshot:
    status: str
    queue_id: Optional[int]
    user_id: Optional[int]
    channel_connection_id: Optional[int]
    unread_messages: int


def validate_transition(from_status: str, to_status: str) -> None:
    """Raise ValidationError unless `from_status -> to_status` is a legal move."""
    if to_status not in TicketStatus.ALL:
        raise ValidationError(f"Unknown ticket status {to_status!r}", details={'status': to_status})
    if from_status == to_status:
        return
    if to_status not in ALLOWED_TRANSITIONS.get(from_status, set()):
        raise ValidationError(
            f"Ticket cannot move from {from_status} to {to_status}",
            details={'from': from_status, 'to': to_status}
        )


class TicketService:
    """Ticket lookup, lifecycle transitions and audit logging for the current tenant"""

    def __init__(self, ticket_repository: TicketRepository,
                 ticket_event_repository: TicketEventRepository,
                 queue_repository: QueueRepository,
                 user_repository: UserRepository,
                 channel_connection_repository: ChannelConnectionRepository,
                 tag_repository: TagRepository,
                 message_service: MessageService,
                 notification_service: NotificationService):
        self.ticket_repository = ticket_repository
        self.ticket_event_repository = ticket_event_repository
        self.queue_repository = queue_repository
        self.user_repository = user_repository
        self.channel_connection_repository = channel_connection_repository
        self.tag_repository = tag_repository
        self.message_service = message_service
        self.notifications = notification_service

    def find_or_create(self, contact: Contact, channel_connection: ChannelConnection,
                       unread_delta: int = 0, group_contact: Optional[Contact] = None) -> Ticket:
        """
        Return the active ticket of a conversation, creating a pending one if needed.

        The conversation contact is the group for group messages. An existing
        ticket has its unread counter raised by `unread_delta`.
        """
        tenant = require_tenant()
        conversation = group_contact or contact
        ticket = self.ticket_repository.find_active_for_contact(
            tenant, conversation.id, channel_connection.id
        )

        if ticket is not None:
            if unread_delta:
                self.ticket_repository.increment_unread(tenant, ticket.id, unread_delta)
            self.ticket_repository.commit()
            return self.ticket_repository.load_with_associations(tenant, ticket.id)

        ticket = self.ticket_repository.create(
            tenant,
            contact_id=conversation.id,
            channel_connection_id=channel_connection.id,
            status=TicketStatus.PENDING,
            channel=channel_connection.channel or 'whatsapp',
            unread_messages=max(unread_delta or 0, 0),
            is_group=group_contact is not None
        )
        self.log_event(ticket, 'ticket_created', payload={'channel': ticket.channel})
        self.ticket_repository.commit()
        logger.info("Created ticket", ticket_id=ticket.id, contact_id=conversation.id,
                    channel_connection_id=channel_connection.id)
        return self.ticket_repository.load_with_associations(tenant, ticket.id)

    def show(self, ticket_id: int) -> Ticket:
        tenant = require_tenant()
        ticket = self.ticket_repository.load_with_associations(tenant, ticket_id)
        if ticket is None:
            raise NotFound(f"Ticket {ticket_id} not found", details={'ticket_id': ticket_id})
        return ticket

    def check_contact_open_tickets(self, contact_id: int, channel_connection_id: Optional[int],
                                   exclude_ticket_id: Optional[int] = None) -> None:
        """
        Raises:
            ConflictError: If the contact already has another non-closed ticket on the connection
        """
        tenant = require_tenant()
        other = self.ticket_repository.find_other_active(
            tenant, contact_id, channel_connection_id, exclude_ticket_id
        )
        if other is not None:
            raise ConflictError(
                "Contact already has an open ticket",
                code='ERR_OTHER_OPEN_TICKET',
                details={'ticket_id': other.id}
            )

    def log_event(self, ticket: Ticket, event_type: str, source: str = 'system',
                  payload: Optional[Dict[str, Any]] = None, user_id: Optional[int] = None,
                  queue_id: Optional[int] = None, commit: bool = False) -> TicketEvent:
        """Append an immutable audit event to a ticket."""
        tenant = require_tenant()
        event = self.ticket_event_repository.create(
            tenant,
            tenant_id=ticket.tenant_id,
            ticket_id=ticket.id,
            queue_id=queue_id if queue_id is not None else ticket.queue_id,
            user_id=user_id,
            event_type=event_type,
            source=source,
            payload=payload or {}
        )
        if commit:
            self.ticket_event_repository.commit()
        return event

    def update_last_message(self, ticket: Ticket, preview: str) -> Ticket:
        tenant = require_tenant()
        self.ticket_repository.update(tenant, ticket, last_message=preview)
        self.ticket_repository.commit()
        return ticket

    def assign_route(self, ticket: Ticket, queue_id: Optional[int] = None,
                     channel: Optional[str] = None, source: str = 'system') -> Ticket:
        """
        Route a ticket to a queue and/or channel without touching its status.

        Used by queue menu routing and omnichannel ingestion.
        """
        tenant = require_tenant()
        updates = {}
        if channel and ticket.channel != channel:
            updates['channel'] = channel
        old_queue_id = ticket.queue_id
        if queue_id and queue_id != old_queue_id:
            queue = self._resolve_reference(tenant, ticket, self.queue_repository, queue_id, 'queue')
            updates['queue_id'] = queue.id
        if not updates:
            return ticket

        self.ticket_repository.update(tenant, ticket, **updates)
        if 'queue_id' in updates:
            self.log_event(ticket, 'ticket_queue_changed', source=source,
                           payload={'from': old_queue_id, 'to': updates['queue_id']})
        self.ticket_repository.commit()

        ticket = self.ticket_repository.load_with_associations(tenant, ticket.id)
        self.notifications.emit_ticket_update(ticket)
        return ticket

    def update(self, ticket_id: int, changes: TicketUpdate, source: str = 'agent') -> Ticket:
        """
        Apply validated changes to a ticket.

        All references are checked before anything is written. The status
        change is a compare-and-set against the status read at the start, so
        of two concurrent callers moving the same ticket only one records the
        transition. `resolved_at` is stamped once, on the first close.

        Raises:
            NotFound: If the ticket or a referenced queue, user, connection or tag is missing
            PermissionDenied: If a referenced entity belongs to another tenant
            ValidationError: For an illegal transition or a negative lead score
            ConflictError: If reopening or moving the ticket would duplicate an open ticket
        """
        tenant = require_tenant()
        ticket = self.ticket_repository.get_by_id(tenant, ticket_id)
        if ticket is None:
            raise NotFound(f"Ticket {ticket_id} not found", details={'ticket_id': ticket_id})

        before = _Snapshot(
            status=ticket.status,
            queue_id=ticket.queue_id,
            user_id=ticket.user_id,
            channel_connection_id=ticket.channel_connection_id,
            unread_messages=ticket.unread_messages or 0
        )

        # Validate everything first
        if changes.status is not None:
            validate_transition(before.status, changes.status)
        if changes.lead_score is not None:
            if isinstance(changes.lead_score, bool) or not isinstance(changes.lead_score, int):
                raise ValidationError("Lead score must be an integer",
                                      details={'lead_score': changes.lead_score})
            if changes.lead_score < 0:
                raise ValidationError("Lead score cannot be negative",
                                      details={'lead_score': changes.lead_score})

        updates: Dict[str, Any] = {}
        if changes.queue_id is not UNSET:
            queue = self._resolve_reference(tenant, ticket, self.queue_repository, changes.queue_id, 'queue')
            updates['queue_id'] = queue.id if queue else None
        if changes.user_id is not UNSET:
            user = self._resolve_reference(tenant, ticket, self.user_repository, changes.user_id, 'user')
            updates['user_id'] = user.id if user else None
        if changes.channel_connection_id is not UNSET:
            connection = self._resolve_reference(
                tenant, ticket, self.channel_connection_repository,
                changes.channel_connection_id, 'channel connection'
            )
            updates['channel_connection_id'] = connection.id if connection else None
        if changes.lead_score is not None:
            updates['lead_score'] = changes.lead_score

        tags = None
        if changes.tag_ids is not None:
            tags = [
                self._resolve_reference(tenant, ticket, self.tag_repository, tag_id, 'tag')
                for tag_id in dict.fromkeys(changes.tag_ids)
            ]

        new_status = changes.status if changes.status and changes.status != before.status else None
        new_connection_id = updates.get('channel_connection_id', before.channel_connection_id)
        reopening = before.status == TicketStatus.CLOSED and new_status is not None
        if reopening or new_connection_id != before.channel_connection_id:
            self.check_contact_open_tickets(ticket.contact_id, new_connection_id, ticket.id)

        read_count = self.message_service.set_messages_as_read(ticket, commit=False)

        status_changed = False
        if new_status is not None:
            status_changed = self._transition(tenant, ticket, before.status, new_status, source,
                                              changes.actor_user_id)

        updates = {k: v for k, v in updates.items() if getattr(ticket, k) != v}
        if updates:
            self.ticket_repository.update(tenant, ticket, **updates)

        if 'queue_id' in updates:
            self.log_event(ticket, 'ticket_queue_changed', source=source,
                           user_id=changes.actor_user_id,
                           payload={'from': before.queue_id, 'to': updates['queue_id']})
        if 'user_id' in updates:
            self.log_event(ticket, 'ticket_user_changed', source=source,
                           user_id=changes.actor_user_id,
                           payload={'from': before.user_id, 'to': updates['user_id']})

        if tags is not None:
            self.ticket_repository.replace_tags(tenant, ticket, tags)

        self.ticket_repository.commit()
        ticket = self.ticket_repository.load_with_associations(tenant, ticket.id)

        if read_count or before.unread_messages:
            self.notifications.emit_unread(ticket)
        if status_changed or 'user_id' in updates:
            self.notifications.emit_ticket_delete(ticket.tenant_id, ticket.id, before.status)
        self.notifications.emit_ticket_update(ticket)
        return ticket

    # Internal helpers

    def _transition(self, tenant: TenantContext, ticket: Ticket, from_status: str,
                    to_status: str, source: str, actor_user_id: Optional[int]) -> bool:
        """Compare-and-set the status; only the winner records the change."""
        won = self.ticket_repository.transition_status(tenant, ticket.id, from_status, to_status)
        if not won:
            logger.info("Ticket status changed concurrently, transition not applied",
                        ticket_id=ticket.id, expected_status=from_status, requested_status=to_status)
            return False

        if to_status == TicketStatus.CLOSED:
            self.ticket_repository.mark_resolved_once(tenant, ticket.id, utc_now())
            self.ticket_repository.clear_sla(tenant, ticket.id)

        self.log_event(ticket, 'ticket_status_changed', source=source, user_id=actor_user_id,
                       payload={'from': from_status, 'to': to_status})
        logger.info("Ticket status changed", ticket_id=ticket.id,
                    from_status=from_status, to_status=to_status, source=source)
        return True

    def _resolve_reference(self, tenant: TenantContext, ticket: Ticket, repository,
                           entity_id: Optional[int], label: str):
        """Load a referenced entity and check it lives in the ticket's tenant."""
        if entity_id is None:
            return None
        entity = repository.get_owned(tenant, entity_id)
        if entity.tenant_id != ticket.tenant_id:
            raise PermissionDenied(
                f"The {label} does not belong to the ticket's tenant",
                details={'id': entity_id}
            )
        return entity
