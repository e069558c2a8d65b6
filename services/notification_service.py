"""
NotificationService - Tenant-scoped realtime fan-out

Emits contact, message, ticket and schedule events to subscriber rooms named
after the tenant. Delivery is fire-and-forget: transport failures are logged
and never reach the caller, and nothing is emitted without a tenant id.
"""

import json
from typing import Any, Dict, Iterable, List, Optional

from crm_database import Contact, Message, Ticket, ScheduledMessage, ticket_payload
from logging_config import get_logger
from services.common.tenant_context import (
    tenant_room, ticket_room, status_room, notification_room
)

logger = get_logger(__name__)


class RedisNotificationTransport:
    """Publishes `{room, event, data}` envelopes on Redis pub/sub, one channel per room"""

    def __init__(self, redis_client, channel_prefix: str = 'omnidesk:rooms'):
        self.redis = redis_client
        self.channel_prefix = channel_prefix

    def publish(self, room: str, event: str, data: Dict[str, Any]) -> None:
        envelope = json.dumps({'room': room, 'event': event, 'data': data}, default=str)
        self.redis.publish(f"{self.channel_prefix}:{room}", envelope)


class LoggingNotificationTransport:
    """Writes notifications to the debug log instead of a broker"""

    def publish(self, room: str, event: str, data: Dict[str, Any]) -> None:
        logger.debug("Realtime notification", room=room, notification_event=event)


class NotificationService:
    """Builds notification payloads and routes them to tenant rooms"""

    def __init__(self, transport):
        self.transport = transport

    def emit(self, tenant_id: Optional[int], rooms: Iterable[str], event: str,
             payload: Dict[str, Any]) -> List[str]:
        """
        Publish one event to several rooms of a tenant.

        Returns:
            The rooms that were published to (empty when skipped)
        """
        if tenant_id is None:
            logger.warning("Skipping realtime emission without tenant id", notification_event=event)
            return []

        delivered = []
        for room in dict.fromkeys(rooms):
            try:
                self.transport.publish(room, event, payload)
                delivered.append(room)
            except Exception as e:
                # Notifications carry no delivery guarantee
                logger.warning("Realtime emission failed", room=room,
                               notification_event=event, error=str(e))
        return delivered

    def emit_contact(self, contact: Contact, action: str) -> List[str]:
        return self.emit(
            contact.tenant_id,
            [tenant_room(contact.tenant_id)] if contact.tenant_id is not None else [],
            'contact',
            {'action': action, 'contact': contact.to_dict()}
        )

    def emit_message(self, message: Message, action: str, ticket: Optional[Ticket] = None,
                     rooms: Optional[List[str]] = None) -> List[str]:
        """
        Emit an appMessage event.

        Creates go to the ticket room, the ticket's status room and the
        notification room; updates default to the ticket room only.
        """
        ticket = ticket or message.ticket
        tenant_id = ticket.tenant_id if ticket is not None else None
        if tenant_id is None:
            logger.warning("Skipping appMessage emission for ticket without tenant",
                           message_id=message.id, ticket_id=getattr(ticket, 'id', None))
            return []

        if rooms is None:
            rooms = [ticket_room(tenant_id, ticket.id)]
            if action == 'create':
                rooms += [status_room(tenant_id, ticket.status), notification_room(tenant_id)]

        payload = {'action': action, 'message': message.to_dict()}
        if action == 'create':
            payload['ticket'] = ticket_payload(ticket, message.created_at)
            payload['contact'] = ticket.contact.to_dict() if ticket.contact else None
        return self.emit(tenant_id, rooms, 'appMessage', payload)

    def emit_ticket_update(self, ticket: Ticket, rooms: Optional[List[str]] = None) -> List[str]:
        tenant_id = ticket.tenant_id
        if tenant_id is None:
            logger.warning("Skipping ticket emission for ticket without tenant", ticket_id=ticket.id)
            return []
        if rooms is None:
            rooms = [
                status_room(tenant_id, ticket.status),
                notification_room(tenant_id),
                ticket_room(tenant_id, ticket.id)
            ]
        return self.emit(tenant_id, rooms, 'ticket', {'action': 'update', 'ticket': ticket_payload(ticket)})

    def emit_ticket_delete(self, tenant_id: Optional[int], ticket_id: int, old_status: str) -> List[str]:
        if tenant_id is None:
            logger.warning("Skipping ticket delete emission without tenant", ticket_id=ticket_id)
            return []
        return self.emit(tenant_id, [status_room(tenant_id, old_status)], 'ticket',
                         {'action': 'delete', 'ticketId': ticket_id})

    def emit_unread(self, ticket: Ticket) -> List[str]:
        tenant_id = ticket.tenant_id
        if tenant_id is None:
            return []
        return self.emit(
            tenant_id,
            [status_room(tenant_id, ticket.status), notification_room(tenant_id)],
            'ticket',
            {'action': 'updateUnread', 'ticketId': ticket.id}
        )

    def emit_schedule(self, schedule: ScheduledMessage) -> List[str]:
        return self.emit(
            schedule.tenant_id,
            [tenant_room(schedule.tenant_id)] if schedule.tenant_id is not None else [],
            'schedule',
            {'action': 'update', 'schedule': schedule.to_dict()}
        )
