"""
UserRepository - Data access layer for agents
"""

from repositories.base_repository import TenantScopedRepository
from crm_database import User


class UserRepository(TenantScopedRepository[User]):
    """Repository for User data access"""

    entity_label = 'User'

    def __init__(self, session):
        super().__init__(session, User)
