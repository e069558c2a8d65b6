"""
ChannelEventService - Ingest entry point for channel events

Channel adapters (or the Celery tasks wrapping them) hand inbound messages
and delivery acknowledgments to this service. Each event is processed inside
the tenant scope of the channel connection it arrived on:

    resolve contact -> find or create ticket -> start SLA -> persist message
    -> run the queue assistant -> route to a queue

Errors are returned as Result failures; nothing raises to the adapter.
"""

import re
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import sentry_sdk

from crm_database import ChannelConnection, Contact, Ticket
from logging_config import get_logger
from repositories.channel_connection_repository import ChannelConnectionRepository
from services.assistant_service import AssistantService
from services.common.errors import AppError, NotFound, PermissionDenied, TransportError, ValidationError
from services.common.result import Result
from services.common.tenant_context import TenantContext, require_tenant, tenant_scope
from services.contact_service import ContactService
from services.media_store import InboundMedia, LocalMediaStore
from services.message_service import MessageData, MessageService, build_last_message_preview
from services.outbound_message_service import OutboundMessageService
from services.sla_service import SlaService
from services.ticket_service import TicketService
from utils.datetime_utils import utc_from_timestamp, utc_now, to_epoch_ms
from utils.message_templates import render_for_contact

logger = get_logger(__name__)

SUPPORTED_CHANNELS = ('whatsapp', 'instagram', 'messenger', 'webchat')

# Invisible left-to-right mark prefixed to automated texts
AUTOMATED_PREFIX = '\u200e'


@dataclass
class ContactPayload:
    """Identity of a sender or group as reported by the channel"""
    name: str = ''
    number: Optional[str] = None
    alt_id: Optional[str] = None
    profile_pic_url: Optional[str] = None
    is_group: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['ContactPayload']:
        if not data:
            return None
        return cls(
            name=data.get('name') or '',
            number=data.get('number'),
            alt_id=data.get('altId') or data.get('lid'),
            profile_pic_url=data.get('profilePicUrl'),
            is_group=bool(data.get('isGroup', False))
        )


@dataclass
class InboundMessageEvent:
    """A message seen on a channel, inbound or echoed outbound"""
    id: Optional[str] = None
    body: str = ''
    from_me: bool = False
    has_media: bool = False
    type: str = 'chat'
    timestamp: Optional[float] = None
    quoted_msg_id: Optional[str] = None
    ack: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InboundMessageEvent':
        return cls(
            id=data.get('id'),
            body=data.get('body') or '',
            from_me=bool(data.get('fromMe', False)),
            has_media=bool(data.get('hasMedia', False)),
            type=data.get('type') or 'chat',
            timestamp=data.get('timestamp'),
            quoted_msg_id=data.get('quotedMsgId'),
            ack=data.get('ack')
        )


@dataclass
class EventContext:
    """Where an event arrived and what the channel says about the conversation"""
    channel_connection_id: int
    unread_messages: int = 0
    group_contact: Optional[ContactPayload] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventContext':
        return cls(
            channel_connection_id=data.get('channelConnectionId'),
            unread_messages=int(data.get('unreadMessages') or 0),
            group_contact=ContactPayload.from_dict(data.get('groupContact'))
        )


def parse_vcard(body: str) -> Tuple[str, List[str]]:
    """Extract the display name and international phone numbers of a vCard."""
    name = ''
    numbers = []
    for line in (body or '').splitlines():
        values = line.split(':')
        for index, value in enumerate(values):
            if '+' in value:
                numbers.append(re.sub(r'\D', '', value))
            if 'FN' in value and index + 1 < len(values) and values[index + 1]:
                name = values[index + 1].strip()
    return name, [number for number in numbers if number]


def mint_inbound_id(channel: str) -> str:
    return f"{channel}-in-{to_epoch_ms(utc_now())}-{secrets.token_hex(4)}"


class ChannelEventService:
    """Processes inbound channel messages and acknowledgments"""

    def __init__(self, channel_connection_repository: ChannelConnectionRepository,
                 contact_service: ContactService,
                 ticket_service: TicketService,
                 message_service: MessageService,
                 sla_service: SlaService,
                 assistant_service: AssistantService,
                 outbound_message_service: OutboundMessageService,
                 media_store: LocalMediaStore):
        self.channel_connection_repository = channel_connection_repository
        self.contact_service = contact_service
        self.ticket_service = ticket_service
        self.message_service = message_service
        self.sla_service = sla_service
        self.assistant_service = assistant_service
        self.outbound = outbound_message_service
        self.media_store = media_store

    # Entry points

    def handle_inbound_message(self, event: InboundMessageEvent, contact: ContactPayload,
                               context: EventContext,
                               media: Optional[InboundMedia] = None) -> Result[Dict[str, Any]]:
        """
        Ingest one message seen on a channel connection.

        Returns:
            Result with {status, ticket_id, message_id}; status is one of
            'created', 'updated' (outbound echo of a stored message) or
            'skipped' (farewell echo)
        """
        return self._guarded('inbound message', event.id, lambda: self._with_connection(
            context.channel_connection_id,
            lambda connection: self._ingest(connection, event, contact, context, media)
        ))

    def handle_ack(self, message_id: str, ack_level: int,
                   channel_connection_id: int) -> Result[Dict[str, Any]]:
        """
        Apply a delivery acknowledgment, buffering it when the message is not stored yet.

        Returns:
            Result with {status: 'applied' | 'buffered', message_id, ack}
        """
        def apply(connection: ChannelConnection) -> Dict[str, Any]:
            message = self.message_service.apply_ack(message_id, ack_level)
            return {
                'status': 'applied' if message is not None else 'buffered',
                'message_id': message_id,
                'ack': message.ack if message is not None else ack_level
            }

        return self._guarded('message ack', message_id,
                             lambda: self._with_connection(channel_connection_id, apply))

    def handle_channel_inbound(self, payload: Dict[str, Any]) -> Result[Dict[str, Any]]:
        """
        Ingest a message from a generic omnichannel adapter.

        Payload keys: channel, body, number or externalId, optional name,
        profilePicUrl, messageId, queueId, channelConnectionId, tenantId.
        """
        return self._guarded('channel inbound', payload.get('messageId'),
                             lambda: self._channel_inbound(payload))

    # Orchestration

    def _guarded(self, label: str, message_id: Optional[str], operation) -> Result[Dict[str, Any]]:
        try:
            return Result.success(operation())
        except AppError as e:
            self.channel_connection_repository.rollback()
            logger.warning(f"Rejected {label}", message_id=message_id, code=e.code, error=e.message)
            return Result.from_error(e)
        except Exception as e:
            self.channel_connection_repository.rollback()
            sentry_sdk.capture_exception(e)
            logger.error(f"Error handling {label}", message_id=message_id, error=str(e), exc_info=True)
            return Result.failure(str(e), code='PROCESSING_ERROR')

    def _with_connection(self, channel_connection_id: Optional[int], operation):
        if not channel_connection_id:
            raise ValidationError("Channel connection id is required")
        connection = self.channel_connection_repository.get_by_id(
            TenantContext.super_admin(), channel_connection_id
        )
        if connection is None:
            raise NotFound(f"Channel connection {channel_connection_id} not found",
                           details={'channel_connection_id': channel_connection_id})
        with tenant_scope(TenantContext(tenant_id=connection.tenant_id, role='admin')):
            return operation(connection)

    def _ingest(self, connection: ChannelConnection, event: InboundMessageEvent,
                contact_payload: ContactPayload, context: EventContext,
                media: Optional[InboundMedia]) -> Dict[str, Any]:
        quoted = self.message_service.quoted_message_id(event.quoted_msg_id)

        if event.from_me and event.id:
            existing = self.message_service.find_message(event.id)
            if existing is not None:
                return self._reconcile_echo(existing, event, quoted, media)

        contact = self._resolve_contact(contact_payload)
        group_contact = self._resolve_contact(context.group_contact) if context.group_contact else None

        if (context.unread_messages == 0 and connection.farewell_message
                and render_for_contact(connection.farewell_message, contact) == event.body):
            logger.info("Skipping farewell message echo", message_id=event.id, contact_id=contact.id)
            return {'status': 'skipped', 'ticket_id': None, 'message_id': event.id}

        ticket = self.ticket_service.find_or_create(
            contact, connection, context.unread_messages, group_contact
        )
        if not event.from_me:
            self.sla_service.start_sla(ticket, 'system')

        data = MessageData(
            id=event.id,
            ticket_id=ticket.id,
            contact_id=None if event.from_me else contact.id,
            body=event.body or '',
            from_me=event.from_me,
            read=event.from_me,
            media_type=event.type,
            quoted_msg_id=quoted,
            ack=event.ack if event.ack is not None else (1 if event.from_me else 0),
            created_at=utc_from_timestamp(event.timestamp) if event.timestamp else None,
            id_hint=connection.channel or 'msg'
        )
        self._attach_media(data, event, media)

        self.ticket_service.update_last_message(ticket, build_last_message_preview(
            event.body, event.type, media.filename if media else None, has_media=event.has_media
        ))
        message = self.message_service.persist(data)

        if event.type == 'vcard':
            self._create_vcard_contacts(event.body)

        if not event.from_me:
            self.assistant_service.process(ticket, message, contact, connection.id)
            ticket = self.ticket_service.show(ticket.id)

        if (not event.from_me and group_contact is None and not ticket.queue_id
                and not ticket.user_id and connection.queues):
            self._route_to_queue(ticket, connection, event.body)

        return {'status': 'created', 'ticket_id': ticket.id, 'message_id': message.id}

    def _channel_inbound(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        channel = str(payload.get('channel') or '').lower()
        if channel not in SUPPORTED_CHANNELS:
            raise ValidationError(f"Unsupported channel {payload.get('channel')!r}",
                                  details={'supported': list(SUPPORTED_CHANNELS)})
        body = payload.get('body')
        if not isinstance(body, str) or not body.strip():
            raise ValidationError("Channel message body is required")

        is_whatsapp = channel == 'whatsapp'
        identity = payload.get('number') if is_whatsapp else (payload.get('externalId') or payload.get('number'))
        if not identity:
            raise ValidationError("Channel contact id is required", code='ERR_CHANNEL_CONTACT_ID_REQUIRED')

        connection = self._channel_connection(payload, channel)
        with tenant_scope(TenantContext(tenant_id=connection.tenant_id, role='admin')):
            contact = self.contact_service.resolve_or_create(
                name=payload.get('name') or str(identity),
                number=str(identity) if is_whatsapp else f"{channel}:{identity}",
                profile_pic_url=payload.get('profilePicUrl'),
                is_group=False,
                keep_number_format=not is_whatsapp
            )
            ticket = self.ticket_service.find_or_create(contact, connection, 1)
            ticket = self.ticket_service.assign_route(
                ticket, queue_id=payload.get('queueId'), channel=channel, source='omnichannel'
            )
            self.ticket_service.update_last_message(ticket, build_last_message_preview(body))
            self.sla_service.start_sla(ticket, 'omnichannel')

            message = self.message_service.persist(MessageData(
                id=payload.get('messageId') or mint_inbound_id(channel),
                ticket_id=ticket.id,
                contact_id=contact.id,
                body=body,
                from_me=False,
                read=False,
                media_type='chat',
                ack=0,
                id_hint=f"{channel}-in"
            ))
            self.assistant_service.process(ticket, message, contact, connection.id)
            return {'status': 'created', 'ticket_id': ticket.id, 'message_id': message.id}

    # Helpers

    def _channel_connection(self, payload: Dict[str, Any], channel: str) -> ChannelConnection:
        connection_id = payload.get('channelConnectionId')
        tenant_id = payload.get('tenantId')
        if connection_id:
            connection = self.channel_connection_repository.get_by_id(
                TenantContext.super_admin(), connection_id
            )
            if connection is not None and tenant_id and connection.tenant_id != tenant_id:
                raise PermissionDenied("Channel connection does not belong to this tenant")
        elif tenant_id:
            scope = TenantContext(tenant_id=tenant_id, role='admin')
            connection = (self.channel_connection_repository.find_default(scope, channel)
                          or self.channel_connection_repository.find_default(scope, None))
        else:
            raise ValidationError("Either channelConnectionId or tenantId is required")

        if connection is None:
            raise NotFound("No channel connection found for the message",
                           code='ERR_NO_DEF_CONNECTION_FOUND')
        return connection

    def _resolve_contact(self, payload: ContactPayload) -> Contact:
        return self.contact_service.resolve_or_create(
            name=payload.name,
            number=payload.number,
            alt_id=payload.alt_id,
            profile_pic_url=payload.profile_pic_url,
            is_group=payload.is_group
        )

    def _reconcile_echo(self, existing, event: InboundMessageEvent, quoted: Optional[str],
                        media: Optional[InboundMedia]) -> Dict[str, Any]:
        """Outbound message echoed back by the channel: merge into the stored row."""
        data = MessageData(
            id=existing.id,
            ticket_id=existing.ticket_id,
            contact_id=existing.contact_id,
            body=existing.body,
            from_me=True,
            read=True,
            quoted_msg_id=quoted,
            ack=event.ack if event.ack is not None else existing.ack
        )
        self._attach_media(data, event, media)
        message = self.message_service.persist(data)
        return {'status': 'updated', 'ticket_id': message.ticket_id, 'message_id': message.id}

    def _attach_media(self, data: MessageData, event: InboundMessageEvent,
                      media: Optional[InboundMedia]) -> None:
        if media is None or not event.has_media:
            return
        filename = self.media_store.save(require_tenant().tenant_id, media)
        data.media_url = filename
        data.media_type = media.media_type
        if not data.body:
            data.body = filename

    def _create_vcard_contacts(self, body: str) -> None:
        name, numbers = parse_vcard(body)
        for number in numbers:
            try:
                self.contact_service.create_contact(name=name, number=number)
            except AppError as e:
                self.channel_connection_repository.rollback()
                logger.info("Shared vCard contact not created", number=number, code=e.code)

    def _route_to_queue(self, ticket: Ticket, connection: ChannelConnection, body: str) -> None:
        """Assign a queue from the connection menu, or send the menu."""
        queues = list(connection.queues)
        if len(queues) == 1:
            self.ticket_service.assign_route(ticket, queue_id=queues[0].id)
            return

        choice = (body or '').strip()
        selected = queues[int(choice) - 1] if choice.isdigit() and 0 < int(choice) <= len(queues) else None
        if selected is not None:
            ticket = self.ticket_service.assign_route(ticket, queue_id=selected.id)
            if selected.greeting_message:
                self._send_automated(ticket, f"{AUTOMATED_PREFIX}{selected.greeting_message}")
            return

        options = ''.join(f"*{index}* - {queue.name}\n" for index, queue in enumerate(queues, start=1))
        self._send_automated(ticket, f"{AUTOMATED_PREFIX}{connection.greeting_message or ''}\n{options}")

    def _send_automated(self, ticket: Ticket, body: str) -> None:
        try:
            self.outbound.send_system_message(ticket, body)
        except TransportError as e:
            logger.error("Failed to send queue routing message", ticket_id=ticket.id,
                         code=e.code, error=e.message)
