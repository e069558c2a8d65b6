"""
TagRepository - Data access layer for ticket tags
"""

from typing import Iterable, List

from repositories.base_repository import TenantScopedRepository
from crm_database import Tag
from services.common.tenant_context import TenantContext


class TagRepository(TenantScopedRepository[Tag]):
    """Repository for Tag data access"""

    entity_label = 'Tag'

    def __init__(self, session):
        super().__init__(session, Tag)

    def find_by_names(self, tenant: TenantContext, names: Iterable[str]) -> List[Tag]:
        names = list(names)
        if not names:
            return []
        return self.scoped_query(tenant).filter(Tag.name.in_(names)).all()
