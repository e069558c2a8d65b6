# crm_database.py

from enum import IntEnum
from typing import Any, Dict, Optional

from sqlalchemy.types import DateTime, TypeDecorator

from extensions import db
from utils.datetime_utils import utc_now, ensure_utc, format_utc_iso, to_epoch_ms


class UTCDateTime(TypeDecorator):
    """DateTime column that always hands back timezone-aware UTC values"""
    impl = DateTime
    cache_ok = True

    def __init__(self, *args, **kwargs):
        kwargs.setdefault('timezone', True)
        super().__init__(*args, **kwargs)

    def process_bind_param(self, value, dialect):
        return ensure_utc(value) if value is not None else None

    def process_result_value(self, value, dialect):
        return ensure_utc(value) if value is not None else None


def _iso(value) -> Optional[str]:
    return format_utc_iso(value) if value else None


class TicketStatus:
    PENDING = 'pending'
    OPEN = 'open'
    CLOSED = 'closed'

    ALL = (PENDING, OPEN, CLOSED)
    ACTIVE = (PENDING, OPEN)


class MessageAck(IntEnum):
    """Ordinal delivery state of a message; never decreases once stored"""
    NONE = 0
    SENT = 1
    DELIVERED = 2
    READ = 3
    PLAYED = 4


class Tenant(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='active')
    created_at = db.Column(UTCDateTime(), default=utc_now)


class User(db.Model):
    """An agent working tickets for one tenant"""
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenant.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='user')  # 'admin', 'user' or 'superadmin'
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(UTCDateTime(), default=utc_now)

    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'email', name='uq_user_tenant_email'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'email': self.email, 'role': self.role}


channel_connection_queue = db.Table(
    'channel_connection_queue',
    db.Column('channel_connection_id', db.Integer, db.ForeignKey('channel_connection.id'), primary_key=True),
    db.Column('queue_id', db.Integer, db.ForeignKey('queue.id'), primary_key=True)
)


class Queue(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenant.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    color = db.Column(db.String(20), nullable=False, default='#2196f3')
    greeting_message = db.Column(db.Text, nullable=True)

    # Automated assistant
    ai_enabled = db.Column(db.Boolean, nullable=False, default=False)
    ai_mode = db.Column(db.String(20), nullable=False, default='triage')  # 'triage' or 'reply'
    ai_auto_reply = db.Column(db.Boolean, nullable=False, default=False)
    ai_prompt = db.Column(db.Text, nullable=True)
    ai_webhook_url = db.Column(db.String(500), nullable=True)

    created_at = db.Column(UTCDateTime(), default=utc_now)

    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'name', name='uq_queue_tenant_name'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'color': self.color,
            'aiEnabled': self.ai_enabled,
            'aiMode': self.ai_mode,
            'aiAutoReply': self.ai_auto_reply
        }


class ChannelConnection(db.Model):
    """A configured endpoint of a messaging channel (e.g. one WhatsApp session)"""
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenant.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    channel = db.Column(db.String(20), nullable=False, default='whatsapp')
    status = db.Column(db.String(20), nullable=False, default='CONNECTED')
    greeting_message = db.Column(db.Text, nullable=True)
    farewell_message = db.Column(db.Text, nullable=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(UTCDateTime(), default=utc_now)

    queues = db.relationship('Queue', secondary=channel_connection_queue, lazy='selectin',
                             order_by='Queue.id')

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'channel': self.channel, 'status': self.status}


class Contact(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenant.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False, default='')
    number = db.Column(db.String(100), nullable=True)
    alt_id = db.Column(db.String(100), nullable=True)  # provider-internal linked identity
    email = db.Column(db.String(200), nullable=False, default='')
    profile_pic_url = db.Column(db.String(500), nullable=True)
    is_group = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(UTCDateTime(), default=utc_now)
    updated_at = db.Column(UTCDateTime(), default=utc_now, onupdate=utc_now)

    custom_fields = db.relationship('ContactCustomField', backref='contact', lazy='selectin',
                                    order_by='ContactCustomField.id', cascade='all, delete-orphan')

    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'number', name='uq_contact_tenant_number'),
        db.UniqueConstraint('tenant_id', 'alt_id', name='uq_contact_tenant_alt_id'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'tenantId': self.tenant_id,
            'name': self.name,
            'number': self.number,
            'altId': self.alt_id,
            'email': self.email,
            'profilePicUrl': self.profile_pic_url,
            'isGroup': self.is_group,
            'extraInfo': [field.to_dict() for field in self.custom_fields]
        }


class ContactCustomField(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    contact_id = db.Column(db.Integer, db.ForeignKey('contact.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    value = db.Column(db.Text, nullable=False, default='')

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'value': self.value}


ticket_tag = db.Table(
    'ticket_tag',
    db.Column('ticket_id', db.Integer, db.ForeignKey('ticket.id'), primary_key=True),
    db.Column('tag_id', db.Integer, db.ForeignKey('tag.id'), primary_key=True)
)


class Tag(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenant.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    color = db.Column(db.String(20), nullable=False, default='#546e7a')

    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'name', name='uq_tag_tenant_name'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'color': self.color}


class Ticket(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenant.id'), nullable=False, index=True)
    contact_id = db.Column(db.Integer, db.ForeignKey('contact.id'), nullable=False)
    channel_connection_id = db.Column(db.Integer, db.ForeignKey('channel_connection.id'), nullable=True)
    queue_id = db.Column(db.Integer, db.ForeignKey('queue.id'), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)

    status = db.Column(db.String(20), nullable=False, default=TicketStatus.PENDING)
    channel = db.Column(db.String(20), nullable=False, default='whatsapp')
    last_message = db.Column(db.Text, nullable=True)
    unread_messages = db.Column(db.Integer, nullable=False, default=0)
    is_group = db.Column(db.Boolean, nullable=False, default=False)
    lead_score = db.Column(db.Integer, nullable=False, default=0)

    # SLA tracking
    sla_due_at = db.Column(UTCDateTime(), nullable=True)
    first_human_response_at = db.Column(UTCDateTime(), nullable=True)
    resolved_at = db.Column(UTCDateTime(), nullable=True)

    created_at = db.Column(UTCDateTime(), default=utc_now)
    updated_at = db.Column(UTCDateTime(), default=utc_now, onupdate=utc_now)

    contact = db.relationship('Contact')
    channel_connection = db.relationship('ChannelConnection')
    queue = db.relationship('Queue')
    user = db.relationship('User')
    tags = db.relationship('Tag', secondary=ticket_tag, lazy='selectin', order_by='Tag.name')

    __table_args__ = (
        db.Index('ix_ticket_tenant_status', 'tenant_id', 'status'),
        db.Index('ix_ticket_contact_connection_status', 'contact_id', 'channel_connection_id', 'status'),
        db.Index('ix_ticket_sla_due_at', 'sla_due_at'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'tenantId': self.tenant_id,
            'status': self.status,
            'channel': self.channel,
            'lastMessage': self.last_message,
            'unreadMessages': self.unread_messages,
            'isGroup': self.is_group,
            'leadScore': self.lead_score,
            'contactId': self.contact_id,
            'channelConnectionId': self.channel_connection_id,
            'queueId': self.queue_id,
            'userId': self.user_id,
            'slaDueAt': _iso(self.sla_due_at),
            'firstHumanResponseAt': _iso(self.first_human_response_at),
            'resolvedAt': _iso(self.resolved_at),
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
            'contact': self.contact.to_dict() if self.contact else None,
            'queue': self.queue.to_dict() if self.queue else None,
            'user': self.user.to_dict() if self.user else None,
            'channelConnection': self.channel_connection.to_dict() if self.channel_connection else None,
            'tags': [tag.to_dict() for tag in self.tags]
        }


class Message(db.Model):
    # Provider-supplied identifier, or a synthetic one minted on collision
    id = db.Column(db.String(255), primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenant.id'), nullable=False, index=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey('ticket.id'), nullable=False, index=True)
    contact_id = db.Column(db.Integer, db.ForeignKey('contact.id'), nullable=True, index=True)
    body = db.Column(db.Text, nullable=False, default='')
    from_me = db.Column(db.Boolean, nullable=False, default=False)
    read = db.Column(db.Boolean, nullable=False, default=False)
    media_type = db.Column(db.String(50), nullable=True)
    media_url = db.Column(db.String(500), nullable=True)
    ack = db.Column(db.Integer, nullable=False, default=int(MessageAck.NONE))
    quoted_msg_id = db.Column(db.String(255), db.ForeignKey('message.id'), nullable=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(UTCDateTime(), default=utc_now)
    updated_at = db.Column(UTCDateTime(), default=utc_now, onupdate=utc_now)

    ticket = db.relationship('Ticket')
    contact = db.relationship('Contact')
    quoted_msg = db.relationship('Message', remote_side=[id])

    __table_args__ = (
        db.Index('ix_message_ticket_created', 'ticket_id', 'created_at'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'ticketId': self.ticket_id,
            'contactId': self.contact_id,
            'body': self.body,
            'fromMe': self.from_me,
            'read': self.read,
            'mediaType': self.media_type,
            'mediaUrl': self.media_url,
            'ack': self.ack,
            'isDeleted': self.is_deleted,
            'createdAt': _iso(self.created_at),
            'quotedMsg': {
                'id': self.quoted_msg.id,
                'body': self.quoted_msg.body,
                'fromMe': self.quoted_msg.from_me
            } if self.quoted_msg else None
        }


class TicketEvent(db.Model):
    """Immutable audit record of a ticket lifecycle transition"""
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenant.id'), nullable=False, index=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey('ticket.id'), nullable=False, index=True)
    queue_id = db.Column(db.Integer, db.ForeignKey('queue.id'), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    event_type = db.Column(db.String(50), nullable=False, index=True)
    source = db.Column(db.String(30), nullable=False, default='system')
    payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(UTCDateTime(), default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'ticketId': self.ticket_id,
            'queueId': self.queue_id,
            'userId': self.user_id,
            'eventType': self.event_type,
            'source': self.source,
            'payload': self.payload,
            'createdAt': _iso(self.created_at)
        }


class Setting(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenant.id'), nullable=False, index=True)
    key = db.Column(db.String(100), nullable=False)
    value = db.Column(db.Text, nullable=False, default='')

    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'key', name='uq_setting_tenant_key'),
    )


class ScheduledMessage(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenant.id'), nullable=False, index=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey('ticket.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    body = db.Column(db.Text, nullable=False)
    send_at = db.Column(UTCDateTime(), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, sending, sent, failed
    sent_at = db.Column(UTCDateTime(), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    message_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(UTCDateTime(), default=utc_now)

    ticket = db.relationship('Ticket')

    __table_args__ = (
        db.Index('ix_scheduled_message_status_send_at', 'status', 'send_at'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'ticketId': self.ticket_id,
            'userId': self.user_id,
            'body': self.body,
            'sendAt': _iso(self.send_at),
            'status': self.status,
            'sentAt': _iso(self.sent_at),
            'errorMessage': self.error_message,
            'messageId': self.message_id
        }


def ticket_payload(ticket: Ticket, last_message_at=None) -> Dict[str, Any]:
    """Ticket snapshot with the list-ordering projection used by realtime clients"""
    data = ticket.to_dict()
    last_at = last_message_at or ticket.updated_at
    data['lastMessageAt'] = _iso(last_at)
    data['lastMessageAtTs'] = to_epoch_ms(last_at)
    return data
