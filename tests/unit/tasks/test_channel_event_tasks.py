"""
Tests for the channel event Celery tasks
"""

from unittest.mock import Mock, patch

import pytest

from services.channel_event_service import ContactPayload, EventContext, InboundMessageEvent
from services.common.errors import TransportError
from services.common.result import Result
from services.media_store import InboundMedia
from tasks.channel_event_tasks import (
    process_channel_message, process_inbound_message, process_message_ack
)


@pytest.fixture
def channel_event_service(services):
    service = Mock()
    services.register('channel_event', service=service)
    return service


class TestProcessInboundMessage:

    def test_payload_is_unpacked_into_events(self, channel_event_service):
        channel_event_service.handle_inbound_message.return_value = Result.success(
            {'status': 'created', 'ticket_id': 4, 'message_id': 'wamid.1'}
        )

        summary = process_inbound_message({
            'message': {'id': 'wamid.1', 'body': 'Hi', 'hasMedia': True, 'type': 'image'},
            'contact': {'name': 'Maria', 'number': '5511988887777'},
            'context': {'channelConnectionId': 2, 'unreadMessages': 1},
            'media': {'filename': 'photo.jpg', 'mimetype': 'image/jpeg', 'data': 'aGVsbG8='}
        })

        assert summary == {'success': True, 'status': 'created', 'ticket_id': 4,
                           'message_id': 'wamid.1', 'task_id': None}
        event, contact, context = channel_event_service.handle_inbound_message.call_args.args
        media = channel_event_service.handle_inbound_message.call_args.kwargs['media']
        assert isinstance(event, InboundMessageEvent) and event.has_media is True
        assert contact == ContactPayload(name='Maria', number='5511988887777')
        assert context == EventContext(channel_connection_id=2, unread_messages=1)
        assert media == InboundMedia(filename='photo.jpg', mimetype='image/jpeg', data='aGVsbG8=')

    def test_missing_sections_use_empty_defaults(self, channel_event_service):
        channel_event_service.handle_inbound_message.return_value = Result.failure(
            "Channel connection id is required", code='VALIDATION_ERROR'
        )

        summary = process_inbound_message({})

        assert summary['success'] is False
        assert summary['code'] == 'VALIDATION_ERROR'
        _, contact, _ = channel_event_service.handle_inbound_message.call_args.args
        assert contact == ContactPayload()
        assert channel_event_service.handle_inbound_message.call_args.kwargs['media'] is None


class TestProcessChannelMessage:

    def test_payload_is_passed_through(self, channel_event_service):
        channel_event_service.handle_channel_inbound.return_value = Result.success({'status': 'created'})
        payload = {'channel': 'webchat', 'externalId': 'v1', 'body': 'Hi', 'tenantId': 1}

        assert process_channel_message(payload)['success'] is True
        channel_event_service.handle_channel_inbound.assert_called_once_with(payload)


class TestProcessMessageAck:

    def test_ack_result_is_summarised(self, channel_event_service):
        channel_event_service.handle_ack.return_value = Result.success(
            {'status': 'buffered', 'message_id': 'wamid.1', 'ack': 2}
        )

        summary = process_message_ack('wamid.1', 2, 5)

        assert summary['status'] == 'buffered'
        channel_event_service.handle_ack.assert_called_once_with('wamid.1', 2, 5)

    def test_permanent_failures_are_not_retried(self, channel_event_service):
        channel_event_service.handle_ack.return_value = Result.failure("Not found", code='NOT_FOUND')

        with patch.object(process_message_ack, 'retry') as mock_retry:
            summary = process_message_ack('wamid.1', 2, 5)

        mock_retry.assert_not_called()
        assert summary == {'success': False, 'error': 'Not found', 'code': 'NOT_FOUND', 'task_id': None}

    @pytest.mark.parametrize('code', ['TRANSPORT_ERROR', 'ERR_SENDING_MSG'])
    def test_transport_failures_are_retried(self, channel_event_service, code):
        channel_event_service.handle_ack.return_value = Result.failure("Gateway timeout", code=code)

        with patch.object(process_message_ack, 'retry', side_effect=TransportError("retry")) as mock_retry:
            with pytest.raises(TransportError):
                process_message_ack('wamid.1', 2, 5)

        assert mock_retry.call_args.kwargs['countdown'] == 30
        assert mock_retry.call_args.kwargs['exc'].code == code

    def test_exhausted_retries_return_the_failure(self, channel_event_service):
        channel_event_service.handle_ack.return_value = Result.failure("Gateway timeout", code='TRANSPORT_ERROR')

        with patch.object(process_message_ack, 'max_retries', 0):
            summary = process_message_ack('wamid.1', 2, 5)

        assert summary['success'] is False
        assert summary['code'] == 'TRANSPORT_ERROR'
