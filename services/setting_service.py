"""
SettingService - Per-tenant key/value settings
Exposes the SLA escalation configuration consulted by the SLA scheduler.
"""

from dataclasses import dataclass
from typing import Optional

from repositories.setting_repository import SettingRepository
from services.common.errors import ValidationError
from services.common.tenant_context import TenantContext, require_tenant
import logging

logger = logging.getLogger(__name__)

SLA_ESCALATION_ENABLED = 'slaEscalationEnabled'
SLA_REPLY_MINUTES = 'slaReplyMinutes'
SLA_ESCALATION_QUEUE_ID = 'slaEscalationQueueId'

DEFAULT_SLA_REPLY_MINUTES = 30


@dataclass(frozen=True)
class SlaSettings:
    enabled: bool = False
    reply_minutes: int = DEFAULT_SLA_REPLY_MINUTES
    escalation_queue_id: Optional[int] = None


class SettingService:
    """Service for settings business logic with repository pattern"""

    def __init__(self, repository: SettingRepository):
        """Initialize service with repository dependency"""
        self.repository = repository

    def get_value(self, key: str, default: Optional[str] = None,
                  tenant: Optional[TenantContext] = None) -> Optional[str]:
        """
        Get a setting value for the current tenant.

        Raises:
            ValidationError: If key is empty
            TenantContextRequired: If no tenant scope is active
        """
        if not key:
            raise ValidationError("Setting key cannot be empty")
        tenant = tenant or require_tenant()
        value = self.repository.get_value(tenant, key)
        return default if value is None else value

    def set_value(self, key: str, value: str, tenant: Optional[TenantContext] = None) -> None:
        if not key:
            raise ValidationError("Setting key cannot be empty")
        tenant = tenant or require_tenant()
        self.repository.set_value(tenant, key, '' if value is None else str(value))
        self.repository.commit()

    def get_sla_settings(self, tenant: Optional[TenantContext] = None) -> SlaSettings:
        """
        Read the SLA configuration of the current tenant.

        Unparsable numbers fall back to their defaults; an empty or
        non-positive escalation queue id means "keep the ticket's queue".
        """
        tenant = tenant or require_tenant()
        enabled = (self.repository.get_value(tenant, SLA_ESCALATION_ENABLED) or 'disabled') == 'enabled'

        raw_minutes = self.repository.get_value(tenant, SLA_REPLY_MINUTES)
        try:
            reply_minutes = int(raw_minutes) if raw_minutes not in (None, '') else DEFAULT_SLA_REPLY_MINUTES
        except ValueError:
            logger.warning(f"Invalid {SLA_REPLY_MINUTES} value {raw_minutes!r} for tenant {tenant.tenant_id}")
            reply_minutes = DEFAULT_SLA_REPLY_MINUTES

        raw_queue = self.repository.get_value(tenant, SLA_ESCALATION_QUEUE_ID)
        try:
            queue_id = int(raw_queue) if raw_queue not in (None, '') else None
        except ValueError:
            logger.warning(f"Invalid {SLA_ESCALATION_QUEUE_ID} value {raw_queue!r} for tenant {tenant.tenant_id}")
            queue_id = None
        if queue_id is not None and queue_id <= 0:
            queue_id = None

        return SlaSettings(enabled=enabled, reply_minutes=reply_minutes, escalation_queue_id=queue_id)
