# tests/conftest.py
"""
Shared fixtures for the pytest suite.

Every test gets its own application: a fresh in-memory database, a fresh
service registry and therefore a fresh ack buffer. The notification
transport and the channel gateway are replaced with recording fakes before
any service is built, so tests can assert on realtime emissions and
outbound sends without a broker or a channel adapter.
"""
import itertools
import os

import pytest

from app import create_app
from extensions import db
from services.channel_gateway import ChannelGateway, SentMessage
from services.common.errors import SendFailed
from services.common.tenant_context import TenantContext, tenant_scope
from tests.fixtures.factories import ChannelConnectionFactory, TenantFactory


class RecordingTransport:
    """Notification transport that keeps every published envelope"""

    def __init__(self):
        self.published = []

    def publish(self, room, event, data):
        self.published.append((room, event, data))

    def rooms_for(self, event, action=None):
        return [
            room for room, name, data in self.published
            if name == event and (action is None or data.get('action') == action)
        ]

    def payloads(self, event, action=None):
        return [
            data for _, name, data in self.published
            if name == event and (action is None or data.get('action') == action)
        ]

    def clear(self):
        self.published.clear()


class FakeChannelGateway(ChannelGateway):
    """Channel gateway that records sends and answers with sequential provider ids"""

    def __init__(self):
        self.sent = []
        self.fail_with = None
        self.ack = None
        self._ids = itertools.count(1)

    def send(self, connection, contact, body, quoted_message_id=None):
        return self._deliver(connection, contact, body, quoted_message_id=quoted_message_id)

    def send_media(self, connection, contact, media, caption=None):
        return self._deliver(connection, contact, caption or media.filename, media=media,
                             media_type=media.mimetype.split('/')[0])

    def _deliver(self, connection, contact, body, media_type=None, **extra):
        if self.fail_with is not None:
            raise self.fail_with
        message_id = f"fake-out-{next(self._ids)}"
        self.sent.append({
            'id': message_id,
            'connection_id': connection.id if connection else None,
            'contact_id': contact.id if contact else None,
            'body': body,
            **extra
        })
        return SentMessage(id=message_id, body=body, ack=self.ack, media_type=media_type)

    def fail(self, message="Channel offline"):
        self.fail_with = SendFailed(message)


@pytest.fixture
def app():
    """
    A fresh Flask application per test, with tables created in an
    in-memory SQLite database and fakes registered for external transports.
    """
    os.environ['FLASK_ENV'] = 'testing'
    app = create_app(config_name='testing')

    with app.app_context():
        db.create_all()
        app.services.register('notification_transport', service=RecordingTransport())
        app.services.register('channel_gateway', service=FakeChannelGateway())

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture
def db_session(app):
    return db.session


@pytest.fixture
def services(app):
    return app.services


@pytest.fixture
def notifications(services):
    """The recording transport behind the notification service"""
    return services.get('notification_transport')


@pytest.fixture
def gateway(services):
    """The fake channel gateway used for outbound sends"""
    return services.get('channel_gateway')


@pytest.fixture
def tenant(db_session):
    return TenantFactory(name='Acme Support')


@pytest.fixture
def other_tenant(db_session):
    return TenantFactory(name='Globex Support')


@pytest.fixture
def tenant_context(tenant):
    """Enter the tenant's scope for the duration of the test"""
    with tenant_scope(TenantContext(tenant_id=tenant.id, role='admin')) as context:
        yield context


@pytest.fixture
def connection(tenant):
    return ChannelConnectionFactory(tenant_id=tenant.id, name='Main WhatsApp', is_default=True)
