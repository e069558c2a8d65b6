"""
Base Repository - Abstract base classes for all repositories
Implements common database operations following the Repository Pattern.

Every tenant-owned model is accessed through TenantScopedRepository. Its
methods take the caller's TenantContext as a mandatory first argument and
compose the tenant predicate into each query themselves; there is no
implicit query interception.
"""

from abc import ABC
from typing import TypeVar, Generic, List, Optional, Dict, Any, Type, Iterable
from sqlalchemy.orm import Session, Query
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging

from services.common.errors import NotFound, PermissionDenied, TenantContextRequired
from services.common.tenant_context import TenantContext

logger = logging.getLogger(__name__)

# Type variable for model classes
T = TypeVar('T')


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository with common CRUD operations.

    This class provides a foundation for all repository implementations,
    ensuring consistent database access patterns across the application.
    """

    def __init__(self, session: Session, model_class: Type[T]):
        """
        Initialize repository with database session and model class.

        Args:
            session: SQLAlchemy database session
            model_class: The model class this repository manages
        """
        self.session = session
        self.model_class = model_class

    # Transaction Management

    def commit(self) -> None:
        """Commit the current transaction."""
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.session.rollback()

    def flush(self) -> None:
        """Flush pending changes without committing."""
        self.session.flush()

    def begin_nested(self):
        """Open a savepoint; used to recover from uniqueness races locally."""
        return self.session.begin_nested()

    # Helper Methods

    def _apply_filters(self, query: Query, filters: Optional[Dict[str, Any]] = None) -> Query:
        """
        Apply field filters to a query.

        Lists become IN clauses, None becomes an IS NULL check and anything
        else an equality test. Unknown field names are ignored.
        """
        if filters:
            for field, value in filters.items():
                if not hasattr(self.model_class, field):
                    continue
                column = getattr(self.model_class, field)
                if isinstance(value, (list, tuple, set)):
                    query = query.filter(column.in_(list(value)))
                elif value is None:
                    query = query.filter(column.is_(None))
                else:
                    query = query.filter(column == value)
        return query


class TenantScopedRepository(BaseRepository[T]):
    """
    Repository for models carrying a `tenant_id` column.

    Unless the context role is super-admin, reads, updates and deletes are
    restricted to the context tenant and creates are stamped with it.
    """

    entity_label = 'Entity'

    # Context checks

    def _check_context(self, tenant: TenantContext) -> TenantContext:
        if tenant is None:
            raise TenantContextRequired()
        if tenant.tenant_id is None and not tenant.is_super_admin:
            raise TenantContextRequired()
        return tenant

    def owns(self, tenant: TenantContext, entity: Any) -> bool:
        """True when the entity is visible to the given context."""
        self._check_context(tenant)
        if tenant.is_super_admin:
            return True
        return getattr(entity, 'tenant_id', None) == tenant.tenant_id

    def assert_owned(self, tenant: TenantContext, entity: Any) -> None:
        """Raise PermissionDenied when the entity belongs to another tenant."""
        if not self.owns(tenant, entity):
            logger.warning(
                f"Cross-tenant access to {self.model_class.__name__} {getattr(entity, 'id', None)} "
                f"denied for tenant {tenant.tenant_id}"
            )
            raise PermissionDenied(
                f"{self.entity_label} does not belong to this tenant",
                details={'id': getattr(entity, 'id', None)}
            )

    def scoped_query(self, tenant: TenantContext, filters: Optional[Dict[str, Any]] = None) -> Query:
        """
        Build a query restricted to the context tenant.

        An explicit `tenant_id` filter is kept as given; a super-admin context
        is not restricted at all.
        """
        self._check_context(tenant)
        filters = dict(filters or {})
        query = self.session.query(self.model_class)
        if not tenant.is_super_admin and 'tenant_id' not in filters:
            query = query.filter(self.model_class.tenant_id == tenant.tenant_id)
        elif 'tenant_id' in filters and not tenant.is_super_admin and filters['tenant_id'] != tenant.tenant_id:
            raise PermissionDenied(f"Cannot query {self.entity_label} of another tenant")
        return self._apply_filters(query, filters)

    # CREATE Operations

    def create(self, tenant: TenantContext, **kwargs) -> T:
        """
        Create a new entity stamped with the context tenant.

        Raises:
            TenantContextRequired: If neither the row nor the context carries a tenant
            PermissionDenied: If the row names a tenant other than the context's
            SQLAlchemyError: If database operation fails
        """
        self._check_context(tenant)
        explicit = kwargs.get('tenant_id')
        if explicit is None:
            if tenant.tenant_id is None:
                raise TenantContextRequired()
            kwargs['tenant_id'] = tenant.tenant_id
        elif not tenant.is_super_admin and explicit != tenant.tenant_id:
            raise PermissionDenied(f"Cannot create {self.entity_label} for another tenant")

        try:
            entity = self.model_class(**kwargs)
            self.session.add(entity)
            self.session.flush()
            logger.debug(f"Created {self.model_class.__name__} with id {entity.id}")
            return entity
        except IntegrityError as e:
            logger.warning(f"Integrity conflict creating {self.model_class.__name__}: {e.orig}")
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self.model_class.__name__}: {e}")
            raise

    # READ Operations

    def get_by_id(self, tenant: TenantContext, entity_id: Any) -> Optional[T]:
        """
        Get entity by ID within the context tenant.

        Returns:
            Entity instance, or None if missing or owned by another tenant
        """
        self._check_context(tenant)
        entity = self.session.get(self.model_class, entity_id)
        if entity is None or not self.owns(tenant, entity):
            return None
        return entity

    def get_owned(self, tenant: TenantContext, entity_id: Any) -> T:
        """
        Get entity by ID, distinguishing missing from foreign rows.

        Raises:
            NotFound: If no row exists with that id
            PermissionDenied: If the row belongs to another tenant
        """
        self._check_context(tenant)
        entity = self.session.get(self.model_class, entity_id)
        if entity is None:
            raise NotFound(f"{self.entity_label} {entity_id} not found", details={'id': entity_id})
        self.assert_owned(tenant, entity)
        return entity

    def find_by(self, tenant: TenantContext, **filters) -> List[T]:
        """Find entities in the context tenant by field values."""
        return self.scoped_query(tenant, filters).all()

    def find_one_by(self, tenant: TenantContext, **filters) -> Optional[T]:
        """Find the first entity in the context tenant matching field values."""
        return self.scoped_query(tenant, filters).first()

    def find_by_ids(self, tenant: TenantContext, ids: Iterable[Any]) -> List[T]:
        ids = list(ids)
        if not ids:
            return []
        return self.scoped_query(tenant).filter(self.model_class.id.in_(ids)).all()

    def exists(self, tenant: TenantContext, **filters) -> bool:
        return self.scoped_query(tenant, filters).first() is not None

    def count(self, tenant: TenantContext, **filters) -> int:
        return self.scoped_query(tenant, filters).count()

    # UPDATE Operations

    def update(self, tenant: TenantContext, entity: T, **updates) -> T:
        """
        Update an entity owned by the context tenant.

        Raises:
            PermissionDenied: If the entity is foreign or the update moves it to another tenant
            SQLAlchemyError: If database operation fails
        """
        self.assert_owned(tenant, entity)
        if 'tenant_id' in updates and updates['tenant_id'] != entity.tenant_id:
            raise PermissionDenied(f"Cannot move {self.entity_label} to another tenant")
        try:
            for field, value in updates.items():
                if hasattr(entity, field):
                    setattr(entity, field, value)
            self.session.flush()
            logger.debug(f"Updated {self.model_class.__name__} with id {entity.id}")
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self.model_class.__name__}: {e}")
            raise

    def update_where(self, tenant: TenantContext, filters: Dict[str, Any],
                     updates: Dict[str, Any], *criteria) -> int:
        """
        Conditional bulk update inside the context tenant.

        Extra SQLAlchemy criteria narrow the match further; callers use the
        returned row count as a compare-and-set outcome.
        """
        if 'tenant_id' in updates:
            raise PermissionDenied(f"Cannot move {self.entity_label} to another tenant")
        query = self.scoped_query(tenant, filters)
        for criterion in criteria:
            query = query.filter(criterion)
        try:
            count = query.update(updates, synchronize_session='fetch')
            self.session.flush()
            logger.debug(f"Updated {count} {self.model_class.__name__} entities")
            return count
        except SQLAlchemyError as e:
            logger.error(f"Error updating multiple {self.model_class.__name__}: {e}")
            raise

    # DELETE Operations

    def delete(self, tenant: TenantContext, entity: T) -> None:
        """Delete an entity owned by the context tenant."""
        self.assert_owned(tenant, entity)
        try:
            self.session.delete(entity)
            self.session.flush()
            logger.debug(f"Deleted {self.model_class.__name__} with id {entity.id}")
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {self.model_class.__name__}: {e}")
            raise

    def refresh(self, entity: T) -> T:
        self.session.refresh(entity)
        return entity
