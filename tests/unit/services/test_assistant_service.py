"""
Tests for the queue assistant: decision parsing, webhook client and orchestration
"""

from unittest.mock import Mock, patch

import pytest
import requests

from crm_database import Ticket, TicketStatus
from services.assistant_service import AssistantDecision
from services.assistant_webhook_client import AssistantWebhookClient
from tests.fixtures.factories import MessageFactory, QueueFactory, TicketFactory, UserFactory


class TestAssistantDecision:

    def test_non_object_payload_is_an_empty_decision(self):
        decision = AssistantDecision.from_payload(['not', 'a', 'dict'])
        assert decision == AssistantDecision()
        assert not decision.changes_routing

    def test_close_flag_maps_to_closed_status(self):
        assert AssistantDecision.from_payload({'closeTicket': True}).ticket_status == TicketStatus.CLOSED

    def test_explicit_status_wins_over_close_flag(self):
        decision = AssistantDecision.from_payload({'ticketStatus': 'open', 'closeTicket': True})
        assert decision.ticket_status == TicketStatus.OPEN

    def test_unknown_status_is_ignored(self):
        assert AssistantDecision.from_payload({'ticketStatus': 'archived'}).ticket_status is None

    @pytest.mark.parametrize('raw,expected', [
        (4, 4),
        ('7', 7),
        (0, None),
        (-2, None),
        (2.5, None),
        ('abc', None),
        (True, None),
    ])
    def test_ids_must_be_positive_integers(self, raw, expected):
        assert AssistantDecision.from_payload({'transferQueueId': raw}).transfer_queue_id == expected

    def test_alias_keys_are_accepted(self):
        decision = AssistantDecision.from_payload({'queueId': 3, 'userId': 8})
        assert decision.transfer_queue_id == 3
        assert decision.assign_user_id == 8

    def test_tags_are_trimmed_and_deduplicated(self):
        decision = AssistantDecision.from_payload({'tags': [' vip ', 'vip', '', 3, 'hot lead']})
        assert decision.tags == ['vip', 'hot lead']

    def test_absolute_lead_score_wins_over_delta(self):
        decision = AssistantDecision.from_payload({'leadScore': 40, 'leadScoreDelta': 10})
        assert decision.next_lead_score(25) == 40

    def test_delta_is_added_and_clamped_at_zero(self):
        assert AssistantDecision.from_payload({'leadScoreDelta': 2.6}).next_lead_score(10) == 13
        assert AssistantDecision.from_payload({'leadScoreDelta': -50}).next_lead_score(10) == 0
        assert AssistantDecision.from_payload({'leadScore': -5}).next_lead_score(10) == 0

    def test_non_finite_numbers_are_ignored(self):
        decision = AssistantDecision.from_payload({'leadScore': float('nan'), 'leadScoreDelta': float('inf')})
        assert decision.next_lead_score(12) == 12


class TestAssistantWebhookClient:

    @pytest.fixture
    def client(self):
        return AssistantWebhookClient(default_url='http://assistant.test/hook', token='t0k', timeout=3)

    @patch('services.assistant_webhook_client.requests.post')
    def test_returns_decision_object(self, mock_post, client):
        mock_post.return_value = Mock(ok=True, status_code=200, json=Mock(return_value={'reply': 'Hi'}))

        assert client.call('http://assistant.test/hook', {'event': 'x'}) == {'reply': 'Hi'}
        assert mock_post.call_args.kwargs['headers']['Authorization'] == 'Bearer t0k'

    @patch('services.assistant_webhook_client.requests.post')
    def test_timeout_yields_none(self, mock_post, client):
        mock_post.side_effect = requests.exceptions.Timeout()
        assert client.call('http://assistant.test/hook', {}) is None

    @patch('services.assistant_webhook_client.requests.post')
    def test_error_status_yields_none(self, mock_post, client):
        mock_post.return_value = Mock(ok=False, status_code=500)
        assert client.call('http://assistant.test/hook', {}) is None

    @patch('services.assistant_webhook_client.requests.post')
    def test_unparsable_or_non_object_body_yields_none(self, mock_post, client):
        mock_post.return_value = Mock(ok=True, status_code=200, json=Mock(side_effect=ValueError()))
        assert client.call('http://assistant.test/hook', {}) is None

        mock_post.return_value = Mock(ok=True, status_code=200, json=Mock(return_value=['x']))
        assert client.call('http://assistant.test/hook', {}) is None


class TestAssistantService:
    """Orchestration against the database with a stubbed webhook client"""

    @pytest.fixture
    def webhook(self, services):
        client = Mock(spec=AssistantWebhookClient)
        client.default_url = None
        client.call.return_value = None
        services.register('assistant_webhook_client', service=client)
        return client

    @pytest.fixture
    def assistant(self, services, webhook):
        return services.get('assistant')

    @pytest.fixture
    def ai_queue(self, tenant):
        return QueueFactory(tenant_id=tenant.id, name='Sales bot', assistant=True)

    @pytest.fixture
    def ticket(self, tenant, connection, ai_queue):
        return TicketFactory(tenant_id=tenant.id, channel_connection_id=connection.id,
                             queue_id=ai_queue.id, status=TicketStatus.PENDING)

    def _events(self, services, ticket):
        from services.common.tenant_context import require_tenant
        repository = services.get('ticket_event_repository')
        return [event.event_type for event in repository.find_for_ticket(require_tenant(), ticket.id)]

    def test_not_consulted_outside_assistant_queues(self, assistant, webhook, tenant, tenant_context):
        plain_queue = QueueFactory(tenant_id=tenant.id, ai_enabled=False)
        ticket = TicketFactory(tenant_id=tenant.id, queue_id=plain_queue.id)

        assert assistant.process(ticket, MessageFactory(ticket=ticket)) is None
        webhook.call.assert_not_called()

    def test_not_consulted_for_assigned_or_outbound(self, assistant, webhook, ticket, tenant, tenant_context):
        outbound = MessageFactory(ticket=ticket, from_me=True)
        assert assistant.process(ticket, outbound) is None

        agent = UserFactory(tenant_id=tenant.id)
        ticket.user_id = agent.id
        assert assistant.process(ticket, MessageFactory(ticket=ticket)) is None
        webhook.call.assert_not_called()

    def test_payload_carries_conversation_context(self, assistant, webhook, ticket, ai_queue, tenant_context):
        message = MessageFactory(ticket=ticket, body='Is the plan still available?')

        assistant.process(ticket, message)

        url, payload = webhook.call.call_args.args
        assert url == ai_queue.ai_webhook_url
        assert payload['event'] == 'queue.assistant.incoming_message'
        assert payload['queue']['id'] == ai_queue.id
        assert payload['queue']['mode'] == ai_queue.ai_mode
        assert payload['queue']['autoReply'] == ai_queue.ai_auto_reply
        assert payload['queue']['prompt'] == ai_queue.ai_prompt
        assert 'aiMode' not in payload['queue']
        assert payload['message']['body'] == 'Is the plan still available?'
        assert payload['recentMessages'][-1]['id'] == message.id

    def test_transfer_decision_is_applied_and_audited(self, assistant, webhook, services, gateway,
                                                      ticket, tenant, db_session, tenant_context):
        target = QueueFactory(tenant_id=tenant.id, name='Human sales')
        webhook.call.return_value = {
            'transferQueueId': target.id,
            'tags': ['vip'],
            'leadScoreDelta': 5,
            'reply': 'Passing you to our team!'
        }

        decision = assistant.process(ticket, MessageFactory(ticket=ticket))

        assert decision.transfer_queue_id == target.id
        stored = db_session.get(Ticket, ticket.id)
        assert stored.queue_id == target.id
        assert stored.lead_score == 5
        assert [tag.name for tag in stored.tags] == ['vip']
        assert gateway.sent[-1]['body'] == 'Passing you to our team!'
        assert stored.last_message == 'Passing you to our team!'
        events = self._events(services, ticket)
        for expected in ('ai_decision', 'ticket_queue_changed', 'ai_transfer', 'ai_reply'):
            assert expected in events

    def test_triage_queue_without_auto_reply_stays_silent(self, assistant, webhook, gateway,
                                                          tenant, tenant_context):
        queue = QueueFactory(tenant_id=tenant.id, assistant=True, ai_mode='triage', ai_auto_reply=False)
        ticket = TicketFactory(tenant_id=tenant.id, queue_id=queue.id)
        webhook.call.return_value = {'reply': 'I would answer this'}

        assistant.process(ticket, MessageFactory(ticket=ticket))

        assert gateway.sent == []

    def test_failures_never_raise(self, assistant, webhook, ticket, tenant_context):
        webhook.call.side_effect = RuntimeError("assistant exploded")

        assert assistant.process(ticket, MessageFactory(ticket=ticket)) is None
