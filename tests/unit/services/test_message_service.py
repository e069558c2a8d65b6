"""
Tests for MessageService - idempotent persistence and ack merging
"""

from unittest.mock import patch

import pytest

from crm_database import Message, Ticket
from services.common.errors import NotFound, TenantContextRequired, ValidationError
from services.message_service import MessageData, build_last_message_preview, validate_ack
from tests.fixtures.factories import MessageFactory, TicketFactory


@pytest.fixture
def message_service(services):
    return services.get('message')


@pytest.fixture
def ticket(tenant, connection):
    return TicketFactory(tenant_id=tenant.id, channel_connection_id=connection.id)


def _data(ticket, **overrides):
    fields = dict(id='wamid.ABC', ticket_id=ticket.id, contact_id=ticket.contact_id,
                  body='Hello, I need help', from_me=False, ack=0)
    fields.update(overrides)
    return MessageData(**fields)


class TestPersist:

    def test_new_message_is_stored_and_announced(self, message_service, ticket, notifications,
                                                 tenant, tenant_context):
        message = message_service.persist(_data(ticket))

        assert message.id == 'wamid.ABC'
        assert message.tenant_id == tenant.id
        assert message.ticket.id == ticket.id
        assert notifications.rooms_for('appMessage', 'create') == [
            f"company-{tenant.id}-ticket-{ticket.id}",
            f"company-{tenant.id}-tickets-pending",
            f"company-{tenant.id}-notification",
        ]

    def test_missing_id_gets_synthetic_id(self, message_service, ticket, tenant_context):
        message = message_service.persist(_data(ticket, id=None, id_hint='whatsapp'))

        assert message.id.startswith(f"whatsapp-{ticket.id}-")
        assert len(message.id.split('-')) == 4

    def test_redelivery_is_idempotent_and_keeps_highest_ack(self, message_service, ticket,
                                                           db_session, tenant_context):
        message_service.persist(_data(ticket, ack=2))
        message_service.persist(_data(ticket, ack=1))
        again = message_service.persist(_data(ticket, ack=3, read=True))

        assert db_session.query(Message).count() == 1
        assert again.ack == 3
        assert again.read is True

    def test_same_id_with_different_content_is_kept_separately(self, message_service, ticket,
                                                              db_session, tenant_context):
        original = message_service.persist(_data(ticket))
        collided = message_service.persist(_data(ticket, body='Completely different text'))

        assert collided.id != original.id
        assert collided.id.startswith(f"msg-{ticket.id}-")
        assert db_session.get(Message, 'wamid.ABC').body == 'Hello, I need help'
        assert db_session.query(Message).count() == 2

    def test_id_used_by_another_tenant_is_not_overwritten(self, message_service, ticket,
                                                         other_tenant, db_session, tenant_context):
        foreign = MessageFactory(id='wamid.SHARED', ticket=TicketFactory(tenant_id=other_tenant.id),
                                 body='Foreign secret')

        stored = message_service.persist(_data(ticket, id='wamid.SHARED'))

        assert stored.id != 'wamid.SHARED'
        assert db_session.get(Message, foreign.id).body == 'Foreign secret'

    def test_ticket_outside_scope_is_not_found(self, message_service, other_tenant, tenant_context):
        foreign_ticket = TicketFactory(tenant_id=other_tenant.id)

        with pytest.raises(NotFound):
            message_service.persist(_data(foreign_ticket))

    def test_requires_tenant_scope(self, message_service, ticket):
        with pytest.raises(TenantContextRequired):
            message_service.persist(_data(ticket))

    def test_rejects_unknown_ack_level(self, message_service, ticket, tenant_context):
        with pytest.raises(ValidationError):
            message_service.persist(_data(ticket, ack=9))


class TestApplyAck:

    def test_ack_before_message_is_buffered_then_merged(self, message_service, services, ticket,
                                                        tenant, tenant_context):
        assert message_service.apply_ack('wamid.EARLY', 3) is None
        assert services.get('ack_buffer').peek((tenant.id, 'wamid.EARLY')) == 3

        message = message_service.persist(_data(ticket, id='wamid.EARLY', ack=1))

        assert message.ack == 3
        assert services.get('ack_buffer').peek((tenant.id, 'wamid.EARLY')) is None

    def test_ack_arriving_before_commit_is_not_lost(self, message_service, services, ticket,
                                                   tenant, db_session, tenant_context):
        repository = message_service.message_repository
        real_create = repository.create

        def create_while_ack_arrives(scope, **fields):
            created = real_create(scope, **fields)
            # A second worker cannot see the uncommitted row yet
            with patch.object(repository, 'get_by_id', return_value=None):
                assert message_service.apply_ack('wamid.RACE', 3) is None
            return created

        with patch.object(repository, 'create', side_effect=create_while_ack_arrives):
            message = message_service.persist(_data(ticket, id='wamid.RACE', from_me=True, ack=1))

        assert message.ack == 3
        assert db_session.get(Message, 'wamid.RACE').ack == 3
        assert services.get('ack_buffer').peek((tenant.id, 'wamid.RACE')) is None

    def test_ack_never_decreases(self, message_service, ticket, notifications, tenant_context):
        message_service.persist(_data(ticket, ack=0))

        assert message_service.apply_ack('wamid.ABC', 3).ack == 3
        assert message_service.apply_ack('wamid.ABC', 2).ack == 3
        assert len(notifications.rooms_for('appMessage', 'update')) == 2

    def test_ack_for_foreign_message_is_only_buffered(self, message_service, other_tenant,
                                                      db_session, tenant_context):
        foreign = MessageFactory(ticket=TicketFactory(tenant_id=other_tenant.id), ack=1)

        assert message_service.apply_ack(foreign.id, 4) is None
        assert db_session.get(Message, foreign.id).ack == 1

    def test_ack_requires_message_id(self, message_service, tenant_context):
        with pytest.raises(ValidationError):
            message_service.apply_ack('', 2)


class TestReadState:

    def test_marking_read_resets_unread_counter(self, message_service, tenant, db_session, tenant_context):
        ticket = TicketFactory(tenant_id=tenant.id, unread_messages=2)
        MessageFactory(ticket=ticket, read=False)
        MessageFactory(ticket=ticket, read=False)

        assert message_service.set_messages_as_read(ticket) == 2
        assert db_session.get(Ticket, ticket.id).unread_messages == 0

    def test_quoted_reference_must_exist_in_tenant(self, message_service, ticket, other_tenant,
                                                   tenant_context):
        local = MessageFactory(ticket=ticket)
        foreign = MessageFactory(ticket=TicketFactory(tenant_id=other_tenant.id))

        assert message_service.quoted_message_id(local.id) == local.id
        assert message_service.quoted_message_id(foreign.id) is None
        assert message_service.quoted_message_id(None) is None


class TestHelpers:

    @pytest.mark.parametrize('body,media_type,filename,has_media,expected', [
        ('  Hello\n there ', None, None, False, 'Hello there'),
        ('', 'image', None, True, '[Image]'),
        ('', 'audio/ogg', None, True, '[Audio]'),
        ('', 'unknown', 'report.xlsx', True, 'report.xlsx'),
        ('', None, None, True, '[Media]'),
        ('', None, None, False, ''),
    ])
    def test_last_message_preview(self, body, media_type, filename, has_media, expected):
        assert build_last_message_preview(body, media_type, filename, has_media=has_media) == expected

    def test_ack_levels(self):
        assert validate_ack('2') == 2
        for invalid in (True, -1, 5, 'read', None):
            with pytest.raises(ValidationError):
                validate_ack(invalid)
