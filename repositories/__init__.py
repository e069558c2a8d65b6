"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern with explicit tenant scoping
"""

from .base_repository import BaseRepository, TenantScopedRepository
from .channel_connection_repository import ChannelConnectionRepository
from .contact_repository import ContactRepository
from .message_repository import MessageRepository
from .queue_repository import QueueRepository
from .scheduled_message_repository import ScheduledMessageRepository
from .setting_repository import SettingRepository
from .tag_repository import TagRepository
from .ticket_event_repository import TicketEventRepository
from .ticket_repository import TicketRepository
from .user_repository import UserRepository

__all__ = [
    'BaseRepository',
    'TenantScopedRepository',
    'ChannelConnectionRepository',
    'ContactRepository',
    'MessageRepository',
    'QueueRepository',
    'ScheduledMessageRepository',
    'SettingRepository',
    'TagRepository',
    'TicketEventRepository',
    'TicketRepository',
    'UserRepository'
]
