"""
Assistant decisions applied during omnichannel ingestion
"""

from unittest.mock import Mock, patch

import pytest
import requests

from crm_database import Message, Ticket, TicketEvent
from tests.fixtures.factories import QueueFactory

pytestmark = pytest.mark.integration


@pytest.fixture
def channel_events(services):
    return services.get('channel_event')


@pytest.fixture
def bot_queue(tenant):
    return QueueFactory(tenant_id=tenant.id, name='Bot', assistant=True)


def _webchat(tenant, queue, body='Can I talk to a person?'):
    return {'channel': 'webchat', 'externalId': 'visitor-1', 'name': 'Visitor', 'body': body,
            'tenantId': tenant.id, 'queueId': queue.id}


@patch('services.assistant_webhook_client.requests.post')
def test_transfer_and_reply_are_applied(mock_post, channel_events, connection, tenant, bot_queue,
                                        gateway, db_session):
    humans = QueueFactory(tenant_id=tenant.id, name='Humans')
    mock_post.return_value = Mock(ok=True, status_code=200, json=Mock(return_value={
        'transferQueueId': humans.id,
        'reply': 'Connecting you with our team',
        'tags': ['handoff'],
    }))

    result = channel_events.handle_channel_inbound(_webchat(tenant, bot_queue))

    assert result.is_success
    url = mock_post.call_args.args[0]
    assert url == bot_queue.ai_webhook_url
    ticket = db_session.get(Ticket, result.data['ticket_id'])
    assert ticket.queue_id == humans.id
    assert [tag.name for tag in ticket.tags] == ['handoff']
    assert gateway.sent[-1]['body'] == 'Connecting you with our team'
    assert db_session.query(Message).filter_by(ticket_id=ticket.id).count() == 2
    event_types = {event.event_type for event in db_session.query(TicketEvent).filter_by(ticket_id=ticket.id)}
    assert {'ai_decision', 'ai_transfer', 'ai_reply'} <= event_types


@patch('services.assistant_webhook_client.requests.post')
def test_unreachable_assistant_leaves_message_for_a_human(mock_post, channel_events, connection, tenant,
                                                          bot_queue, gateway, db_session):
    mock_post.side_effect = requests.exceptions.Timeout("assistant is slow")

    result = channel_events.handle_channel_inbound(_webchat(tenant, bot_queue))

    assert result.is_success
    ticket = db_session.get(Ticket, result.data['ticket_id'])
    assert ticket.queue_id == bot_queue.id
    assert db_session.get(Message, result.data['message_id']).body == 'Can I talk to a person?'
    assert gateway.sent == []


@patch('services.assistant_webhook_client.requests.post')
def test_failed_reply_send_does_not_fail_ingest(mock_post, channel_events, connection, tenant,
                                                bot_queue, gateway, db_session):
    mock_post.return_value = Mock(ok=True, status_code=200, json=Mock(return_value={'reply': 'Hello!'}))
    gateway.fail()

    result = channel_events.handle_channel_inbound(_webchat(tenant, bot_queue))

    assert result.is_success
    assert db_session.query(Message).count() == 1
