"""
Celery tasks for channel adapters

Adapters enqueue inbound messages and delivery acknowledgments here instead
of calling the ingest service inline. Failures caused by the channel
transport are retried with backoff; every other failure is final and
returned in the task result.
"""

from typing import Any, Dict, Optional

from celery import shared_task
from flask import current_app

from logging_config import get_logger
from services.channel_event_service import ContactPayload, EventContext, InboundMessageEvent
from services.common.errors import TransportError
from services.common.result import Result
from services.media_store import InboundMedia

logger = get_logger(__name__)

RETRYABLE_CODES = ('TRANSPORT_ERROR', 'ERR_SENDING_MSG')


def _summary(task, result: Result) -> Dict[str, Any]:
    if result.is_success:
        summary = {'success': True}
        summary.update(result.data)
    else:
        summary = {'success': False, 'error': result.error, 'code': result.error_code}
    summary['task_id'] = task.request.id
    return summary


def _retry_if_transient(task, result: Result) -> None:
    if result.is_success or result.error_code not in RETRYABLE_CODES:
        return
    if task.request.retries < task.max_retries:
        logger.warning("Retrying channel event after transport failure",
                       code=result.error_code, retries=task.request.retries)
        raise task.retry(
            exc=TransportError(result.error, code=result.error_code),
            countdown=30 * (task.request.retries + 1)
        )


def _inbound_media(data: Optional[Dict[str, Any]]) -> Optional[InboundMedia]:
    if not data:
        return None
    return InboundMedia(
        filename=data.get('filename') or '',
        mimetype=data.get('mimetype') or 'application/octet-stream',
        data=data.get('data') or ''
    )


@shared_task(bind=True, max_retries=3)
def process_inbound_message(self, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Ingest a message seen on a channel connection.

    Payload keys: message (id, body, fromMe, hasMedia, type, timestamp,
    quotedMsgId, ack), contact (name, number, altId, profilePicUrl, isGroup),
    context (channelConnectionId, unreadMessages, groupContact) and an
    optional media object (filename, mimetype, base64 data).
    """
    channel_event_service = current_app.services.get('channel_event')
    result = channel_event_service.handle_inbound_message(
        InboundMessageEvent.from_dict(payload.get('message') or {}),
        ContactPayload.from_dict(payload.get('contact')) or ContactPayload(),
        EventContext.from_dict(payload.get('context') or {}),
        media=_inbound_media(payload.get('media'))
    )
    _retry_if_transient(self, result)
    return _summary(self, result)


@shared_task(bind=True, max_retries=3)
def process_channel_message(self, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Ingest a message from a generic omnichannel adapter."""
    channel_event_service = current_app.services.get('channel_event')
    result = channel_event_service.handle_channel_inbound(payload)
    _retry_if_transient(self, result)
    return _summary(self, result)


@shared_task(bind=True, max_retries=3)
def process_message_ack(self, message_id: str, ack: int, channel_connection_id: int) -> Dict[str, Any]:
    """Apply a delivery acknowledgment reported by a channel connection."""
    channel_event_service = current_app.services.get('channel_event')
    result = channel_event_service.handle_ack(message_id, ack, channel_connection_id)
    _retry_if_transient(self, result)
    return _summary(self, result)
