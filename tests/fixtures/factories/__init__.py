"""
Test Data Factories for Omnidesk

Usage:
    from tests.fixtures.factories import TicketFactory

    ticket = TicketFactory(tenant_id=tenant.id)
    overdue = TicketFactory(tenant_id=tenant.id, overdue=True)
"""

from .base import BaseFactory
from .contact_factory import ContactFactory
from .tenant_factory import (
    ChannelConnectionFactory, QueueFactory, SettingFactory, TagFactory, TenantFactory, UserFactory
)
from .ticket_factory import MessageFactory, ScheduledMessageFactory, TicketFactory

__all__ = [
    'BaseFactory',
    'ChannelConnectionFactory',
    'ContactFactory',
    'MessageFactory',
    'QueueFactory',
    'ScheduledMessageFactory',
    'SettingFactory',
    'TagFactory',
    'TenantFactory',
    'TicketFactory',
    'UserFactory'
]
