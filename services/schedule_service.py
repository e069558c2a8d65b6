"""
ScheduleService - Scheduled outbound messages

Agents schedule a text for a ticket; a periodic runner sends whatever is
due and records the outcome on the schedule row.
"""

import threading
from datetime import datetime
from typing import Any, Dict, Optional

from crm_database import ScheduledMessage
from logging_config import get_logger
from repositories.scheduled_message_repository import ScheduledMessageRepository
from services.common.errors import NotFound, ValidationError
from services.common.tenant_context import TenantContext, require_tenant, tenant_scope
from services.notification_service import NotificationService
from services.outbound_message_service import OutboundMessageService
from services.ticket_service import TicketService
from utils.datetime_utils import ensure_utc, utc_now

logger = get_logger(__name__)


class ScheduleService:
    """Creates, cancels and runs scheduled messages"""

    def __init__(self, scheduled_message_repository: ScheduledMessageRepository,
                 ticket_service: TicketService,
                 outbound_message_service: OutboundMessageService,
                 notification_service: NotificationService,
                 batch_size: int = 20):
        self.repository = scheduled_message_repository
        self.ticket_service = ticket_service
        self.outbound = outbound_message_service
        self.notifications = notification_service
        self.batch_size = batch_size
        self._run_lock = threading.Lock()

    def create(self, ticket_id: int, body: str, send_at: datetime,
               user_id: Optional[int] = None) -> ScheduledMessage:
        """
        Raises:
            ValidationError: If the body is empty or send_at is missing or in the past
            NotFound: If the ticket is not in scope
        """
        tenant = require_tenant()
        body = (body or '').strip()
        if not body:
            raise ValidationError("Scheduled message body cannot be empty", code='ERR_SCHEDULE_EMPTY_BODY')
        if not isinstance(send_at, datetime):
            raise ValidationError("Scheduled message needs a send time", code='ERR_SCHEDULE_INVALID_DATE')
        send_at = ensure_utc(send_at)
        if send_at < utc_now():
            raise ValidationError("Scheduled message send time is in the past",
                                  code='ERR_SCHEDULE_INVALID_DATE')

        ticket = self.ticket_service.show(ticket_id)
        schedule = self.repository.create(
            tenant,
            tenant_id=ticket.tenant_id,
            ticket_id=ticket.id,
            user_id=user_id,
            body=body,
            send_at=send_at,
            status='pending'
        )
        self.repository.commit()
        self.notifications.emit_schedule(schedule)
        return schedule

    def cancel(self, schedule_id: int) -> None:
        """
        Delete a pending schedule.

        Raises:
            NotFound: If the schedule is not in scope
            ValidationError: If it is no longer pending
        """
        tenant = require_tenant()
        schedule = self.repository.get_by_id(tenant, schedule_id)
        if schedule is None:
            raise NotFound(f"Scheduled message {schedule_id} not found", details={'id': schedule_id})
        if schedule.status != 'pending':
            raise ValidationError("Only pending scheduled messages can be cancelled",
                                  details={'status': schedule.status})
        self.repository.delete(tenant, schedule)
        self.repository.commit()

    def run_due(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Send every due schedule, oldest first, each inside its tenant's scope.

        Overlapping invocations return immediately.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info("Scheduled message runner already active, skipping")
            return {'skipped': True, 'sent': 0, 'failed': 0}
        try:
            return self._run(limit or self.batch_size, now or utc_now())
        finally:
            self._run_lock.release()

    def _run(self, limit: int, now: datetime) -> Dict[str, Any]:
        summary = {'skipped': False, 'sent': 0, 'failed': 0}
        due = [(row.tenant_id, row.id) for row in
               self.repository.find_due(TenantContext.super_admin(), now, limit)]

        for tenant_id, schedule_id in due:
            with tenant_scope(TenantContext(tenant_id=tenant_id, role='admin')) as tenant:
                if not self.repository.claim(tenant, schedule_id):
                    continue
                self.repository.commit()
                schedule = self.repository.get_by_id(tenant, schedule_id)
                if self._send(tenant, schedule):
                    summary['sent'] += 1
                else:
                    summary['failed'] += 1
                self.notifications.emit_schedule(schedule)

        if due:
            logger.info("Scheduled message run finished", **summary)
        return summary

    def _send(self, tenant: TenantContext, schedule: ScheduledMessage) -> bool:
        try:
            ticket = self.ticket_service.show(schedule.ticket_id)
            message = self.outbound.send_system_message(ticket, schedule.body)
        except Exception as e:
            self.repository.rollback()
            logger.error("Scheduled message failed", schedule_id=schedule.id,
                         ticket_id=schedule.ticket_id, error=str(e), exc_info=True)
            self.repository.update(tenant, schedule, status='failed',
                                   error_message=getattr(e, 'message', None) or str(e) or 'UNKNOWN_ERROR')
            self.repository.commit()
            return False

        self.repository.update(tenant, schedule, status='sent', sent_at=utc_now(),
                               error_message=None, message_id=message.id)
        self.repository.commit()
        return True
