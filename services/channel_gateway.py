"""
Channel gateway - outbound delivery to messaging channels

The engine never speaks a channel wire protocol itself. Outbound messages
are handed to a gateway, which returns the provider's view of the sent
message. The default gateway posts to a channel adapter webhook.
"""

import base64
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import requests

from crm_database import ChannelConnection, Contact
from logging_config import get_logger, performance_logger
from services.common.errors import SendFailed
from utils.datetime_utils import utc_now, utc_from_timestamp, to_epoch_ms

logger = get_logger(__name__)


@dataclass
class SentMessage:
    """Provider acknowledgment of an outbound message"""
    id: str
    body: str = ''
    ack: Optional[int] = None
    timestamp: Optional[datetime] = None
    media_type: Optional[str] = None


@dataclass
class MediaUpload:
    """Binary attachment to send"""
    filename: str
    mimetype: str
    data: bytes


def fallback_message_id(channel: Optional[str]) -> str:
    return f"{channel or 'channel'}-{to_epoch_ms(utc_now())}-{secrets.token_hex(4)}"


def recipient_address(contact: Contact) -> str:
    """Address a contact on its channel: the number, else the provider alternate id."""
    address = contact.number or contact.alt_id
    if not address:
        raise SendFailed("Contact has no address to send to", details={'contact_id': contact.id})
    return address


class ChannelGateway(ABC):
    """Contract for delivering outbound messages to a channel"""

    @abstractmethod
    def send(self, connection: ChannelConnection, contact: Contact, body: str,
             quoted_message_id: Optional[str] = None) -> SentMessage:
        """Send a text message; raises SendFailed on any delivery failure."""

    @abstractmethod
    def send_media(self, connection: ChannelConnection, contact: Contact, media: MediaUpload,
                   caption: Optional[str] = None) -> SentMessage:
        """Send a media message; raises SendFailed on any delivery failure."""


class WebhookChannelGateway(ChannelGateway):
    """Posts outbound messages to the channel adapter webhook"""

    def __init__(self, url: Optional[str], token: Optional[str] = None, timeout: float = 15.0):
        self.url = url
        self.token = token
        self.timeout = timeout

    def send(self, connection: ChannelConnection, contact: Contact, body: str,
             quoted_message_id: Optional[str] = None) -> SentMessage:
        payload = self._base_payload(connection, contact)
        payload.update({'type': 'text', 'body': body, 'quotedMessageId': quoted_message_id})
        sent = self._post(payload, connection)
        if not sent.body:
            sent.body = body
        return sent

    def send_media(self, connection: ChannelConnection, contact: Contact, media: MediaUpload,
                   caption: Optional[str] = None) -> SentMessage:
        payload = self._base_payload(connection, contact)
        payload.update({
            'type': 'media',
            'body': caption or '',
            'media': {
                'filename': media.filename,
                'mimetype': media.mimetype,
                'data': base64.b64encode(media.data).decode('ascii')
            }
        })
        sent = self._post(payload, connection)
        if not sent.media_type:
            sent.media_type = media.mimetype.split('/')[0] if media.mimetype else None
        if not sent.body:
            sent.body = caption or media.filename
        return sent

    def _base_payload(self, connection: ChannelConnection, contact: Contact) -> Dict[str, Any]:
        return {
            'channel': connection.channel,
            'connectionId': connection.id,
            'tenantId': connection.tenant_id,
            'to': recipient_address(contact),
            'isGroup': bool(contact.is_group)
        }

    def _post(self, payload: Dict[str, Any], connection: ChannelConnection) -> SentMessage:
        if not self.url:
            raise SendFailed("Channel outbound webhook is not configured")

        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"

        started = time.monotonic()
        try:
            response = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.warning("Channel send timed out", connection_id=connection.id, error=str(e))
            raise SendFailed("Channel send timed out", details={'connection_id': connection.id})
        except requests.exceptions.RequestException as e:
            logger.warning("Channel send failed", connection_id=connection.id, error=str(e))
            raise SendFailed(f"Channel send failed: {e}", details={'connection_id': connection.id})

        duration_ms = round((time.monotonic() - started) * 1000, 2)
        performance_logger.log_api_call('channel_gateway', self.url, duration_ms, response.status_code)

        if not response.ok:
            logger.warning("Channel send rejected", connection_id=connection.id,
                           status_code=response.status_code)
            raise SendFailed(
                f"Channel send returned status {response.status_code}",
                details={'connection_id': connection.id, 'status_code': response.status_code}
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        return self._parse_sent(data, connection)

    @staticmethod
    def _parse_sent(data: Dict[str, Any], connection: ChannelConnection) -> SentMessage:
        message_id = data.get('id')
        ack = data.get('ack')
        if not message_id:
            message_id = fallback_message_id(connection.channel)
            ack = 1
        timestamp = data.get('timestamp')
        return SentMessage(
            id=str(message_id),
            body=data.get('body') or '',
            ack=ack if isinstance(ack, int) and not isinstance(ack, bool) else None,
            timestamp=utc_from_timestamp(timestamp) if isinstance(timestamp, (int, float)) else None,
            media_type=data.get('mediaType')
        )
