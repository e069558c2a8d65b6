"""
Tenant context

Carries the current tenant id and caller role through an operation. The
context is established once per inbound operation (channel callback, Celery
task, sweep) with `tenant_scope` and read back with `current_tenant` or
`require_tenant`. Repositories never read it implicitly: services pass the
context they obtained here as the first argument of every scoped call.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator, Optional

import structlog

from services.common.errors import TenantContextRequired

SUPER_ADMIN_ROLE = 'superadmin'

_current: ContextVar[Optional['TenantContext']] = ContextVar('tenant_context', default=None)


@dataclass(frozen=True)
class TenantContext:
    """Immutable scoping value for one operation."""

    tenant_id: Optional[int]
    role: str = 'admin'

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN_ROLE

    @classmethod
    def super_admin(cls) -> 'TenantContext':
        return cls(tenant_id=None, role=SUPER_ADMIN_ROLE)

    def for_tenant(self, tenant_id: int) -> 'TenantContext':
        """Copy of this context narrowed to one tenant, keeping the role."""
        return TenantContext(tenant_id=tenant_id, role=self.role)


def current_tenant() -> Optional[TenantContext]:
    """Return the active tenant context, or None outside any scope."""
    return _current.get()


def require_tenant() -> TenantContext:
    """
    Return the active tenant context.

    Raises:
        TenantContextRequired: When no scope is active, or the scope carries
            no tenant id and is not a super-admin scope.
    """
    context = _current.get()
    if context is None:
        raise TenantContextRequired()
    if context.tenant_id is None and not context.is_super_admin:
        raise TenantContextRequired()
    return context


@contextmanager
def tenant_scope(context: TenantContext) -> Iterator[TenantContext]:
    """
    Make `context` the active tenant context for the enclosed block.

    Scopes nest; leaving a block restores the previous context. The tenant id
    and role are bound into structlog's contextvars so every log line emitted
    inside the block carries them.
    """
    token = _current.set(context)
    log_tokens = structlog.contextvars.bind_contextvars(
        tenant_id=context.tenant_id,
        tenant_role=context.role
    )
    try:
        yield context
    finally:
        structlog.contextvars.reset_contextvars(**log_tokens)
        _current.reset(token)


def tenant_room(tenant_id: int) -> str:
    return f"company-{tenant_id}"


def ticket_room(tenant_id: int, ticket_id: int) -> str:
    return f"company-{tenant_id}-ticket-{ticket_id}"


def status_room(tenant_id: int, status: str) -> str:
    return f"company-{tenant_id}-tickets-{status}"


def notification_room(tenant_id: int) -> str:
    return f"company-{tenant_id}-notification"
