"""
AssistantService - Queue assistant orchestration

For inbound messages on tickets in an assistant-enabled queue, asks the
external assistant what to do and applies its decision: transfer, assign,
change status, score, tag and optionally reply. The assistant is advisory,
so nothing here ever raises into message ingestion.
"""

import math
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from crm_database import Message, Ticket, TicketStatus
from logging_config import get_logger
from repositories.queue_repository import QueueRepository
from repositories.tag_repository import TagRepository
from services.assistant_webhook_client import AssistantWebhookClient
from services.channel_gateway import ChannelGateway
from services.common.tenant_context import TenantContext, require_tenant
from services.message_service import MessageData, MessageService, build_last_message_preview
from services.ticket_service import TicketService, TicketUpdate, UNSET
from utils.datetime_utils import format_utc_iso, utc_now

logger = get_logger(__name__)

ASSISTANT_EVENT = 'queue.assistant.incoming_message'
ASSISTANT_SOURCE = 'ai_supervisor'
DEFAULT_TAG_COLOR = '#546e7a'


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool) or value == '':
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _positive_id(value: Any) -> Optional[int]:
    number = _number(value)
    if number is None or number <= 0 or not number.is_integer():
        return None
    return int(number)


@dataclass
class AssistantDecision:
    """Parsed assistant response; every field is optional"""
    reply: Optional[str] = None
    transfer_queue_id: Optional[int] = None
    assign_user_id: Optional[int] = None
    ticket_status: Optional[str] = None
    lead_score: Optional[int] = None
    lead_score_delta: float = 0
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> 'AssistantDecision':
        if not isinstance(payload, dict):
            return cls()

        reply = payload.get('reply')
        reply = reply.strip() if isinstance(reply, str) else None

        status = payload.get('ticketStatus')
        if not (isinstance(status, str) and status in TicketStatus.ALL):
            status = TicketStatus.CLOSED if payload.get('closeTicket') else None

        score = _number(payload.get('leadScore'))
        delta = _number(payload.get('leadScoreDelta'))

        tags = []
        raw_tags = payload.get('tags')
        if isinstance(raw_tags, list):
            tags = list(dict.fromkeys(
                item.strip() for item in raw_tags if isinstance(item, str) and item.strip()
            ))

        return cls(
            reply=reply or None,
            transfer_queue_id=_positive_id(payload.get('transferQueueId') or payload.get('queueId')),
            assign_user_id=_positive_id(payload.get('assignUserId') or payload.get('userId')),
            ticket_status=status,
            lead_score=int(round(score)) if score is not None else None,
            lead_score_delta=delta or 0,
            tags=tags
        )

    def next_lead_score(self, current: Optional[int]) -> int:
        """Absolute score wins over the delta; never below zero."""
        if self.lead_score is not None:
            score = self.lead_score
        else:
            score = int(round((current or 0) + self.lead_score_delta))
        return max(0, score)

    @property
    def changes_routing(self) -> bool:
        return bool(self.transfer_queue_id or self.assign_user_id or self.ticket_status)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            'reply': data['reply'],
            'transferQueueId': data['transfer_queue_id'],
            'assignUserId': data['assign_user_id'],
            'ticketStatus': data['ticket_status'],
            'leadScore': data['lead_score'],
            'leadScoreDelta': data['lead_score_delta'],
            'tags': data['tags']
        }


class AssistantService:
    """Runs the queue assistant for inbound messages"""

    def __init__(self, webhook_client: AssistantWebhookClient,
                 message_service: MessageService,
                 ticket_service: TicketService,
                 queue_repository: QueueRepository,
                 tag_repository: TagRepository,
                 channel_gateway: ChannelGateway,
                 context_messages: int = 20):
        self.webhook_client = webhook_client
        self.message_service = message_service
        self.ticket_service = ticket_service
        self.queue_repository = queue_repository
        self.tag_repository = tag_repository
        self.channel_gateway = channel_gateway
        self.context_messages = context_messages

    def process(self, ticket: Ticket, message: Message, contact=None,
                channel_connection_id: Optional[int] = None) -> Optional[AssistantDecision]:
        """
        Consult the assistant about an inbound message and apply its decision.

        Returns:
            The applied decision, or None when the assistant was not consulted
            or did not answer usably. Errors are logged, never raised.
        """
        try:
            return self._process(ticket, message, contact, channel_connection_id)
        except Exception as e:
            # Assistant automation is best effort
            self.queue_repository.rollback()
            logger.error("Queue assistant automation failed", ticket_id=getattr(ticket, 'id', None),
                         error=str(e), exc_info=True)
            return None

    def _process(self, ticket: Ticket, message: Message, contact,
                 channel_connection_id: Optional[int]) -> Optional[AssistantDecision]:
        if message.from_me or ticket.is_group or ticket.user_id or not ticket.queue_id:
            return None

        tenant = require_tenant()
        queue = self.queue_repository.get_by_id(tenant, ticket.queue_id)
        if queue is None or not queue.ai_enabled:
            return None

        url = queue.ai_webhook_url or self.webhook_client.default_url
        if not url:
            return None

        payload = self._build_payload(ticket, message, contact or ticket.contact, queue,
                                      channel_connection_id or ticket.channel_connection_id)
        response = self.webhook_client.call(url, payload)
        if response is None:
            return None

        decision = AssistantDecision.from_payload(response)
        from_queue_id = ticket.queue_id
        tag_ids = self._ensure_tags(tenant, decision.tags)
        next_score = decision.next_lead_score(ticket.lead_score)

        self.ticket_service.log_event(ticket, 'ai_decision', source=ASSISTANT_SOURCE,
                                      user_id=ticket.user_id, payload=decision.to_dict(), commit=True)
        logger.info("Assistant decision received", ticket_id=ticket.id, queue_id=queue.id,
                    transfer_queue_id=decision.transfer_queue_id,
                    assign_user_id=decision.assign_user_id,
                    ticket_status=decision.ticket_status)

        if decision.changes_routing:
            ticket = self.ticket_service.update(ticket.id, TicketUpdate(
                status=decision.ticket_status,
                queue_id=decision.transfer_queue_id or UNSET,
                user_id=decision.assign_user_id or UNSET,
                lead_score=next_score,
                tag_ids=tag_ids
            ), source=ASSISTANT_SOURCE)
            if decision.transfer_queue_id:
                self.ticket_service.log_event(
                    ticket, 'ai_transfer', source=ASSISTANT_SOURCE,
                    queue_id=decision.transfer_queue_id, user_id=decision.assign_user_id,
                    payload={'fromQueueId': from_queue_id, 'toQueueId': decision.transfer_queue_id},
                    commit=True
                )
        elif tag_ids is not None or next_score != (ticket.lead_score or 0):
            ticket = self.ticket_service.update(
                ticket.id, TicketUpdate(lead_score=next_score, tag_ids=tag_ids),
                source=ASSISTANT_SOURCE
            )

        can_reply = queue.ai_mode != 'triage' or bool(queue.ai_auto_reply)
        if decision.reply and can_reply:
            self._send_reply(ticket, decision.reply, from_queue_id)

        return decision

    def _build_payload(self, ticket: Ticket, message: Message, contact, queue,
                       channel_connection_id: Optional[int]) -> Dict[str, Any]:
        recent = self.message_service.recent_messages(ticket.id, self.context_messages)
        return {
            'event': ASSISTANT_EVENT,
            'at': format_utc_iso(utc_now()),
            'channelConnectionId': channel_connection_id,
            'queue': {
                'id': queue.id,
                'name': queue.name,
                'mode': queue.ai_mode,
                'prompt': queue.ai_prompt,
                'autoReply': queue.ai_auto_reply
            },
            'ticket': {
                'id': ticket.id,
                'status': ticket.status,
                'queueId': ticket.queue_id,
                'userId': ticket.user_id
            },
            'contact': {
                'id': ticket.contact_id,
                'name': getattr(contact, 'name', None),
                'number': getattr(contact, 'number', None),
                'altId': getattr(contact, 'alt_id', None)
            },
            'message': {
                'id': message.id,
                'body': message.body,
                'fromMe': message.from_me,
                'mediaType': message.media_type
            },
            'recentMessages': [
                {
                    'id': item.id,
                    'body': item.body,
                    'fromMe': item.from_me,
                    'mediaType': item.media_type,
                    'createdAt': format_utc_iso(item.created_at) if item.created_at else None
                }
                for item in recent
            ]
        }

    def _ensure_tags(self, tenant: TenantContext, names: List[str]) -> Optional[List[int]]:
        """Find or create the named tags in the tenant; None when no tags were named."""
        if not names:
            return None
        existing = {tag.name: tag for tag in self.tag_repository.find_by_names(tenant, names)}
        ids = []
        for name in names:
            tag = existing.get(name)
            if tag is None:
                tag = self._create_tag(tenant, name)
            ids.append(tag.id)
        self.tag_repository.commit()
        return ids or None

    def _create_tag(self, tenant: TenantContext, name: str):
        try:
            with self.tag_repository.begin_nested():
                return self.tag_repository.create(tenant, name=name, color=DEFAULT_TAG_COLOR)
        except IntegrityError:
            tag = self.tag_repository.find_one_by(tenant, name=name)
            if tag is None:
                raise
            return tag

    def _send_reply(self, ticket: Ticket, reply: str, queue_id: Optional[int]) -> Message:
        sent = self.channel_gateway.send(ticket.channel_connection, ticket.contact, reply)
        message = self.message_service.persist(MessageData(
            id=sent.id,
            ticket_id=ticket.id,
            contact_id=ticket.contact_id,
            body=sent.body or reply,
            from_me=True,
            read=True,
            media_type=sent.media_type,
            ack=sent.ack if sent.ack is not None else 0,
            id_hint='ai'
        ))
        self.ticket_service.update_last_message(
            ticket, build_last_message_preview(message.body, message.media_type)
        )
        self.ticket_service.log_event(ticket, 'ai_reply', source=ASSISTANT_SOURCE,
                                      queue_id=queue_id, user_id=ticket.user_id,
                                      payload={'replySize': len(reply)}, commit=True)
        return message
