"""
OutboundMessageService - Agent and system replies

Sends through the channel gateway, then records the provider's view of the
message through the reconciliation store so later acks and echoes of the
same message converge on one row.
"""

from typing import Optional

from crm_database import Message, Ticket
from logging_config import get_logger
from services.channel_gateway import ChannelGateway, MediaUpload, SentMessage
from services.common.errors import ValidationError
from services.message_service import MessageData, MessageService, build_last_message_preview
from services.sla_service import SlaService
from services.ticket_service import TicketService
from utils.message_templates import render_for_contact

logger = get_logger(__name__)


class OutboundMessageService:
    """Delivers replies for tickets of the current tenant"""

    def __init__(self, ticket_service: TicketService, message_service: MessageService,
                 sla_service: SlaService, channel_gateway: ChannelGateway):
        self.ticket_service = ticket_service
        self.message_service = message_service
        self.sla_service = sla_service
        self.channel_gateway = channel_gateway

    def send_reply(self, ticket_id: int, body: str, user_id: Optional[int] = None,
                   quoted_message_id: Optional[str] = None) -> Message:
        """
        Send an agent's text reply and stop the ticket's SLA clock.

        Raises:
            ValidationError: If the body is empty
            NotFound: If the ticket is not in scope
            SendFailed: If the channel rejected or timed out the send
        """
        body = (body or '').strip()
        if not body:
            raise ValidationError("Reply body cannot be empty")

        ticket = self.ticket_service.show(ticket_id)
        quoted = self.message_service.quoted_message_id(quoted_message_id)
        text = render_for_contact(body, ticket.contact)
        sent = self.channel_gateway.send(ticket.channel_connection, ticket.contact, text, quoted)

        message = self._record(ticket, sent, text, quoted_msg_id=quoted, default_ack=1)
        self.sla_service.register_human_reply(ticket, user_id)
        logger.info("Agent reply sent", ticket_id=ticket.id, message_id=message.id, user_id=user_id)
        return message

    def send_media_reply(self, ticket_id: int, media: MediaUpload, caption: Optional[str] = None,
                         user_id: Optional[int] = None) -> Message:
        """Send an agent's media reply and stop the ticket's SLA clock."""
        if not media or not media.data:
            raise ValidationError("Media reply needs a file")

        ticket = self.ticket_service.show(ticket_id)
        caption = render_for_contact(caption, ticket.contact) if caption else None
        sent = self.channel_gateway.send_media(ticket.channel_connection, ticket.contact, media, caption)

        message = self._record(ticket, sent, caption or media.filename, default_ack=1,
                               filename=media.filename, preview_text=caption or '')
        self.sla_service.register_human_reply(ticket, user_id)
        return message

    def send_system_message(self, ticket: Ticket, body: str) -> Message:
        """
        Send an automated message (queue greeting, menu, scheduled text).

        Not counted as a human reply.
        """
        text = render_for_contact(body, ticket.contact)
        sent = self.channel_gateway.send(ticket.channel_connection, ticket.contact, text)
        return self._record(ticket, sent, text, default_ack=1)

    def _record(self, ticket: Ticket, sent: SentMessage, body: str, default_ack: int,
                quoted_msg_id: Optional[str] = None, filename: Optional[str] = None,
                preview_text: Optional[str] = None) -> Message:
        message = self.message_service.persist(MessageData(
            id=sent.id,
            ticket_id=ticket.id,
            contact_id=ticket.contact_id,
            body=sent.body or body,
            from_me=True,
            read=True,
            media_type=sent.media_type,
            quoted_msg_id=quoted_msg_id,
            ack=sent.ack if sent.ack is not None else default_ack,
            created_at=sent.timestamp,
            id_hint=ticket.channel or 'out'
        ))
        preview_text = message.body if preview_text is None else preview_text
        self.ticket_service.update_last_message(
            ticket, build_last_message_preview(preview_text, message.media_type, filename,
                                               has_media=filename is not None)
        )
        return message
