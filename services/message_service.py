"""
MessageService - Message reconciliation store

Persists inbound and outbound messages idempotently and merges delivery
acknowledgments, including acknowledgments that arrive before the message
they refer to.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError

from crm_database import Message, MessageAck, Ticket
from logging_config import get_logger
from repositories.message_repository import MessageRepository
from repositories.ticket_repository import TicketRepository
from services.ack_buffer import AckBuffer, merge_ack
from services.common.errors import NotFound, ValidationError
from services.common.tenant_context import TenantContext, require_tenant
from services.notification_service import NotificationService
from utils.datetime_utils import utc_now, to_epoch_ms

logger = get_logger(__name__)

MEDIA_PREVIEW_LABELS = {
    'image': '[Image]',
    'video': '[Video]',
    'audio': '[Audio]',
    'ptt': '[Audio]',
    'document': '[Document]',
    'application': '[Document]',
    'sticker': '[Sticker]',
    'vcard': '[Contact]',
    'multi_vcard': '[Contact]',
    'location': '[Location]',
}


@dataclass
class MessageData:
    """Normalized message content handed to the reconciliation store"""
    ticket_id: int
    body: str = ''
    from_me: bool = False
    id: Optional[str] = None
    contact_id: Optional[int] = None
    read: bool = False
    media_type: Optional[str] = None
    media_url: Optional[str] = None
    ack: Optional[int] = None
    quoted_msg_id: Optional[str] = None
    created_at: Optional[datetime] = None
    id_hint: str = 'msg'


def validate_ack(ack_level) -> int:
    """Coerce an ack level to one of the five ordinal states."""
    if isinstance(ack_level, bool):
        raise ValidationError(f"Invalid ack level {ack_level!r}")
    try:
        return int(MessageAck(int(ack_level)))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid ack level {ack_level!r}", details={'ack': ack_level})


def mint_message_id(hint: str, ticket_id: Optional[int]) -> str:
    """Synthetic identifier: <hint>-<ticketId>-<timestamp ms>-<random>."""
    return f"{hint or 'msg'}-{ticket_id}-{to_epoch_ms(utc_now())}-{secrets.token_hex(4)}"


def build_last_message_preview(body: Optional[str], media_type: Optional[str] = None,
                               filename: Optional[str] = None, has_media: bool = False) -> str:
    """Ticket list preview: the body, or a label for caption-less media."""
    text = ' '.join((body or '').split())
    if text:
        return text
    if media_type:
        label = MEDIA_PREVIEW_LABELS.get(media_type.split('/')[0].lower())
        if label:
            return label
    filename = ' '.join((filename or '').split())
    if filename:
        return filename
    return '[Media]' if has_media else ''


class MessageService:
    """Idempotent message persistence and acknowledgment merging"""

    def __init__(self, message_repository: MessageRepository,
                 ticket_repository: TicketRepository,
                 ack_buffer: AckBuffer,
                 notification_service: NotificationService):
        self.message_repository = message_repository
        self.ticket_repository = ticket_repository
        self.ack_buffer = ack_buffer
        self.notifications = notification_service

    def persist(self, data: MessageData) -> Message:
        """
        Persist a message, never dropping it and never overwriting unrelated content.

        * No id: a synthetic id is minted.
        * Unknown id: inserted as-is.
        * Known id with the same ticket, body and direction: re-delivery,
          upserted with the ack max-merged.
        * Known id with different content: provider id collision, stored
          under a freshly minted id.

        Any ack buffered for the final id is merged in, including one buffered
        while the row was still uncommitted. The stored message is
        reloaded with its associations and announced to the ticket's rooms.

        Raises:
            NotFound: If the ticket is not visible in the current tenant
            ValidationError: If the ack level is not a known state
        """
        tenant = require_tenant()
        ticket = self.ticket_repository.get_by_id(tenant, data.ticket_id)
        if ticket is None:
            raise NotFound(f"Ticket {data.ticket_id} not found", details={'ticket_id': data.ticket_id})
        ack = validate_ack(data.ack) if data.ack is not None else None

        message_id = data.id
        existing = None
        if not message_id:
            message_id = mint_message_id(data.id_hint, ticket.id)
            logger.warning("Message arrived without id, minted synthetic id",
                           message_id=message_id, ticket_id=ticket.id)
        else:
            existing = self.message_repository.get_by_id(tenant, message_id)
            if existing is not None and not self._same_content(existing, ticket, data):
                existing = None
                message_id = self._collision_id(message_id, data, ticket)
            elif existing is None and self.message_repository.id_taken(message_id):
                message_id = self._collision_id(message_id, data, ticket)

        if existing is not None:
            message = self._upsert(tenant, existing, data, ack)
        else:
            message = self._insert(tenant, message_id, ticket, data, ack)

        final_id = message.id
        self.message_repository.commit()
        self._apply_late_ack(tenant, final_id)
        message = self.message_repository.load_with_associations(tenant, final_id)
        self.notifications.emit_message(message, 'create')
        return message

    def apply_ack(self, message_id: str, ack_level) -> Optional[Message]:
        """
        Merge an acknowledgment into a message, buffering it when the message is unknown.

        Returns:
            The updated message, or None when the ack was buffered
        """
        tenant = require_tenant()
        ack = validate_ack(ack_level)
        if not message_id:
            raise ValidationError("Acknowledgment without message id")

        message = self.message_repository.get_by_id(tenant, message_id)
        if message is None:
            key = self._buffer_key(tenant, message_id)
            held = self.ack_buffer.store(key, ack)
            logger.info("Buffered ack for message not yet persisted",
                        message_id=message_id, ack=ack, buffered_ack=held)
            # The message may have been stored while we were buffering
            if self.message_repository.get_by_id(tenant, message_id) is None:
                return None
            ack = merge_ack(ack, self.ack_buffer.consume(key))

        self.message_repository.update_ack_if_higher(tenant, message_id, ack)
        self.message_repository.commit()

        message = self.message_repository.load_with_associations(tenant, message_id)
        self.notifications.emit_message(message, 'update')
        return message

    def set_messages_as_read(self, ticket: Ticket, commit: bool = True) -> int:
        """
        Mark a ticket's unread inbound messages read and reset its unread counter.

        Returns:
            Number of messages flagged as read
        """
        tenant = require_tenant()
        count = self.message_repository.mark_ticket_messages_read(tenant, ticket.id)
        if ticket.unread_messages:
            self.ticket_repository.update(tenant, ticket, unread_messages=0)
        if commit:
            self.message_repository.commit()
            self.notifications.emit_unread(ticket)
        return count

    def recent_messages(self, ticket_id: int, limit: int = 20):
        return self.message_repository.find_recent_for_ticket(require_tenant(), ticket_id, limit)

    def quoted_message_id(self, message_id: Optional[str]) -> Optional[str]:
        """Keep a quoted message reference only when it exists in the current tenant."""
        if not message_id:
            return None
        if self.message_repository.get_by_id(require_tenant(), message_id) is None:
            return None
        return message_id

    def find_message(self, message_id: str) -> Optional[Message]:
        return self.message_repository.get_by_id(require_tenant(), message_id)

    # Internal helpers

    @staticmethod
    def _buffer_key(tenant: TenantContext, message_id: str):
        return tenant.tenant_id, message_id

    @staticmethod
    def _same_content(existing: Message, ticket: Ticket, data: MessageData) -> bool:
        return (existing.ticket_id == ticket.id
                and (existing.body or '') == (data.body or '')
                and bool(existing.from_me) == bool(data.from_me))

    def _apply_late_ack(self, tenant: TenantContext, message_id: str) -> None:
        """Merge an ack buffered by a worker that looked the row up before it was committed."""
        late = self.ack_buffer.consume(self._buffer_key(tenant, message_id))
        if late is None:
            return
        if self.message_repository.update_ack_if_higher(tenant, message_id, late):
            self.message_repository.commit()
        logger.info("Applied ack buffered during persistence", message_id=message_id, ack=late)

    def _collision_id(self, message_id: str, data: MessageData, ticket: Ticket) -> str:
        synthetic = mint_message_id(data.id_hint, ticket.id)
        logger.warning("Provider message id collision, storing under synthetic id",
                       provider_message_id=message_id, message_id=synthetic, ticket_id=ticket.id)
        return synthetic

    def _upsert(self, tenant: TenantContext, existing: Message, data: MessageData,
                ack: Optional[int]) -> Message:
        buffered = self.ack_buffer.consume(self._buffer_key(tenant, existing.id))
        merged = merge_ack(ack, buffered) if (ack is not None or buffered is not None) else None

        updates = {}
        if data.read and not existing.read:
            updates['read'] = True
        if data.media_type and existing.media_type != data.media_type:
            updates['media_type'] = data.media_type
        if data.media_url and existing.media_url != data.media_url:
            updates['media_url'] = data.media_url
        if data.quoted_msg_id and existing.quoted_msg_id != data.quoted_msg_id:
            updates['quoted_msg_id'] = data.quoted_msg_id
        if data.contact_id and existing.contact_id != data.contact_id:
            updates['contact_id'] = data.contact_id
        if updates:
            self.message_repository.update(tenant, existing, **updates)
        if merged is not None:
            self.message_repository.update_ack_if_higher(tenant, existing.id, merged)

        logger.debug("Message re-delivered, upserted", message_id=existing.id, ack=merged)
        return existing

    def _insert(self, tenant: TenantContext, message_id: str, ticket: Ticket,
                data: MessageData, ack: Optional[int]) -> Message:
        buffered = self.ack_buffer.consume(self._buffer_key(tenant, message_id))
        final_ack = merge_ack(ack, buffered)
        fields = dict(
            id=message_id,
            tenant_id=ticket.tenant_id,
            ticket_id=ticket.id,
            contact_id=data.contact_id,
            body=data.body or '',
            from_me=bool(data.from_me),
            read=bool(data.read),
            media_type=data.media_type,
            media_url=data.media_url,
            ack=final_ack,
            quoted_msg_id=data.quoted_msg_id
        )
        if data.created_at:
            fields['created_at'] = data.created_at

        try:
            with self.message_repository.begin_nested():
                return self.message_repository.create(tenant, **fields)
        except IntegrityError:
            # A concurrent delivery inserted the same id first
            existing = self.message_repository.get_by_id(tenant, message_id)
            if existing is None:
                raise
            if not self._same_content(existing, ticket, data):
                fields['id'] = self._collision_id(message_id, data, ticket)
                return self.message_repository.create(tenant, **fields)
            return self._upsert(tenant, existing, data, final_ack)
