"""
SlaService - First-reply SLA clock and escalation sweep

An inbound customer message starts the clock, the first human reply stops
it, and the periodic sweep returns overdue tickets to the pending pool of
the tenant's escalation queue.
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, List, Optional

from crm_database import Ticket, TicketStatus
from logging_config import get_logger
from repositories.queue_repository import QueueRepository
from repositories.ticket_repository import TicketRepository
from services.common.tenant_context import (
    TenantContext, require_tenant, tenant_scope, status_room, notification_room
)
from services.notification_service import NotificationService
from services.setting_service import SettingService, SlaSettings
from services.ticket_service import TicketService
from utils.datetime_utils import format_utc_iso, utc_minutes_from_now, utc_now

logger = get_logger(__name__)


@dataclass
class SweepSummary:
    """Outcome of one escalation sweep"""
    skipped: bool = False
    tenants: int = 0
    tenants_disabled: int = 0
    tenants_failed: int = 0
    escalated: int = 0
    already_handled: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class SlaService:
    """Starts, stops and enforces the first-reply SLA"""

    def __init__(self, ticket_repository: TicketRepository,
                 queue_repository: QueueRepository,
                 setting_service: SettingService,
                 ticket_service: TicketService,
                 notification_service: NotificationService):
        self.ticket_repository = ticket_repository
        self.queue_repository = queue_repository
        self.setting_service = setting_service
        self.ticket_service = ticket_service
        self.notifications = notification_service
        self._sweep_lock = threading.Lock()

    def start_sla(self, ticket: Ticket, source: str = 'system') -> Optional[datetime]:
        """
        Start (or restart) the reply clock of a ticket.

        Returns:
            The new due date, or None when no SLA applies
        """
        if ticket.is_group or ticket.status == TicketStatus.CLOSED:
            return None
        tenant = require_tenant()
        settings = self.setting_service.get_sla_settings(tenant)
        if not settings.enabled or settings.reply_minutes <= 0:
            return None

        due_at = utc_minutes_from_now(settings.reply_minutes)
        self.ticket_repository.update(tenant, ticket, sla_due_at=due_at)
        self.ticket_service.log_event(
            ticket, 'sla_started', source=source, user_id=ticket.user_id,
            payload={'dueAt': format_utc_iso(due_at)}
        )
        self.ticket_repository.commit()
        logger.debug("SLA started", ticket_id=ticket.id, due_at=format_utc_iso(due_at))
        return due_at

    def register_human_reply(self, ticket: Ticket, user_id: Optional[int] = None) -> bool:
        """
        Stop the SLA clock after an agent replied.

        Returns:
            True when this reply was the ticket's first human response
        """
        tenant = require_tenant()
        if ticket.first_human_response_at is None:
            now = utc_now()
            if self.ticket_repository.stamp_first_human_response(tenant, ticket.id, now):
                self.ticket_service.log_event(
                    ticket, 'human_first_response', source='agent',
                    user_id=user_id or ticket.user_id
                )
                self.ticket_repository.commit()
                return True

        if self.ticket_repository.clear_sla(tenant, ticket.id):
            self.ticket_repository.commit()
        return False

    def run_escalation_sweep(self, now: Optional[datetime] = None) -> SweepSummary:
        """
        Escalate every overdue ticket across all tenants.

        Overlapping invocations return immediately with `skipped=True`.

        The lock only spans this process. Across Celery workers the single
        beat entry keeps sweeps from overlapping, and when two sweeps do
        meet, the conditional escalation write lets only one of them move
        each ticket; the other counts it as already handled.
        """
        if not self._sweep_lock.acquire(blocking=False):
            logger.info("SLA escalation sweep already running, skipping")
            return SweepSummary(skipped=True)
        try:
            return self._sweep(now or utc_now())
        finally:
            self._sweep_lock.release()

    # Internal helpers

    def _sweep(self, now: datetime) -> SweepSummary:
        summary = SweepSummary()
        overdue = self.ticket_repository.find_overdue(TenantContext.super_admin(), now)

        by_tenant: 'OrderedDict[int, List[int]]' = OrderedDict()
        for tenant_id, ticket_id in overdue:
            by_tenant.setdefault(tenant_id, []).append(ticket_id)

        for tenant_id, ticket_ids in by_tenant.items():
            summary.tenants += 1
            with tenant_scope(TenantContext(tenant_id=tenant_id, role='admin')) as tenant:
                try:
                    self._sweep_tenant(tenant, ticket_ids, now, summary)
                except Exception as e:
                    # Settings or queue lookup failed; the remaining tenants still run
                    self.ticket_repository.rollback()
                    summary.tenants_failed += 1
                    logger.error("SLA escalation failed for tenant", tenant_id=tenant_id,
                                 tickets=len(ticket_ids), error=str(e), exc_info=True)

        if overdue:
            logger.info("SLA escalation sweep finished", **summary.to_dict())
        return summary

    def _sweep_tenant(self, tenant: TenantContext, ticket_ids: List[int], now: datetime,
                      summary: SweepSummary) -> None:
        settings = self.setting_service.get_sla_settings(tenant)
        if not settings.enabled:
            summary.tenants_disabled += 1
            return

        queue_id = self._escalation_queue_id(tenant, settings)
        next_due_at = (utc_minutes_from_now(settings.reply_minutes, now)
                       if settings.reply_minutes > 0 else None)

        for ticket_id in ticket_ids:
            try:
                if self._escalate(tenant, ticket_id, now, queue_id, next_due_at):
                    summary.escalated += 1
                else:
                    summary.already_handled += 1
            except Exception as e:
                # One broken ticket must not stall the sweep
                self.ticket_repository.rollback()
                summary.failed += 1
                logger.error("SLA escalation failed for ticket", ticket_id=ticket_id,
                             error=str(e), exc_info=True)

    def _escalation_queue_id(self, tenant: TenantContext, settings: SlaSettings) -> Optional[int]:
        """Escalation queue of the tenant, ignoring ids that do not resolve in it."""
        if not settings.escalation_queue_id:
            return None
        queue = self.queue_repository.get_by_id(tenant, settings.escalation_queue_id)
        if queue is None:
            logger.warning("SLA escalation queue not found in tenant, keeping ticket queues",
                           queue_id=settings.escalation_queue_id)
            return None
        return queue.id

    def _escalate(self, tenant: TenantContext, ticket_id: int, now: datetime,
                  queue_id: Optional[int], next_due_at: Optional[datetime]) -> bool:
        ticket = self.ticket_repository.get_by_id(tenant, ticket_id)
        if ticket is None:
            return False
        previous_status = ticket.status

        if not self.ticket_repository.escalate_if_overdue(tenant, ticket_id, now, queue_id, next_due_at):
            return False

        target_queue_id = ticket.queue_id
        self.ticket_service.log_event(
            ticket, 'sla_escalated', source='sla', queue_id=target_queue_id,
            payload={'previousStatus': previous_status, 'escalationQueueId': target_queue_id}
        )
        self.ticket_repository.commit()

        ticket = self.ticket_repository.load_with_associations(tenant, ticket_id)
        logger.info("Ticket escalated by SLA", ticket_id=ticket_id,
                    previous_status=previous_status, queue_id=target_queue_id)
        self.notifications.emit_ticket_update(ticket, rooms=[
            status_room(ticket.tenant_id, TicketStatus.PENDING),
            notification_room(ticket.tenant_id)
        ])
        return True
