"""
Tests for NotificationService room routing
"""

from unittest.mock import Mock

import pytest

from crm_database import TicketStatus
from services.notification_service import NotificationService, RedisNotificationTransport
from tests.fixtures.factories import ContactFactory, MessageFactory, TicketFactory


@pytest.fixture
def transport():
    return Mock()


@pytest.fixture
def service(transport):
    return NotificationService(transport)


class TestEmit:

    def test_emit_without_tenant_is_skipped(self, service, transport):
        assert service.emit(None, ['company-1'], 'ticket', {}) == []
        transport.publish.assert_not_called()

    def test_transport_failure_never_reaches_caller(self, service, transport):
        transport.publish.side_effect = [ConnectionError("redis down"), None]

        delivered = service.emit(7, ['company-7', 'company-7-notification'], 'ticket', {'action': 'update'})

        assert delivered == ['company-7-notification']

    def test_duplicate_rooms_are_published_once(self, service, transport):
        service.emit(7, ['company-7', 'company-7'], 'contact', {})
        transport.publish.assert_called_once()


class TestRooms:

    def test_message_create_reaches_ticket_status_and_notification_rooms(self, service, transport, tenant):
        ticket = TicketFactory(tenant_id=tenant.id, status=TicketStatus.OPEN)
        message = MessageFactory(ticket=ticket)

        service.emit_message(message, 'create', ticket=ticket)

        rooms = [c.args[0] for c in transport.publish.call_args_list]
        assert rooms == [
            f"company-{tenant.id}-ticket-{ticket.id}",
            f"company-{tenant.id}-tickets-open",
            f"company-{tenant.id}-notification",
        ]
        event, payload = transport.publish.call_args_list[0].args[1:]
        assert event == 'appMessage'
        assert payload['action'] == 'create'
        assert payload['message']['id'] == message.id
        assert payload['ticket']['id'] == ticket.id
        assert 'lastMessageAtTs' in payload['ticket']

    def test_message_update_reaches_ticket_room_only(self, service, transport, tenant):
        message = MessageFactory(ticket=TicketFactory(tenant_id=tenant.id))

        service.emit_message(message, 'update')

        transport.publish.assert_called_once()
        assert transport.publish.call_args.args[0] == f"company-{tenant.id}-ticket-{message.ticket_id}"

    def test_ticket_delete_targets_previous_status_room(self, service, transport):
        service.emit_ticket_delete(3, 11, TicketStatus.PENDING)

        transport.publish.assert_called_once_with(
            'company-3-tickets-pending', 'ticket', {'action': 'delete', 'ticketId': 11}
        )

    def test_contact_events_go_to_tenant_room(self, service, transport, tenant):
        contact = ContactFactory(tenant_id=tenant.id)

        service.emit_contact(contact, 'create')

        room, event, payload = transport.publish.call_args.args
        assert room == f"company-{tenant.id}"
        assert event == 'contact'
        assert payload['contact']['id'] == contact.id


def test_redis_transport_publishes_envelope_per_room():
    client = Mock()
    transport = RedisNotificationTransport(client, channel_prefix='omnidesk:rooms')

    transport.publish('company-1-notification', 'ticket', {'action': 'updateUnread', 'ticketId': 4})

    channel, envelope = client.publish.call_args.args
    assert channel == 'omnidesk:rooms:company-1-notification'
    assert '"event": "ticket"' in envelope
    assert '"ticketId": 4' in envelope
