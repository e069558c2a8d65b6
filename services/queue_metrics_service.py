"""
QueueMetricsService - Assistant queue performance
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from crm_database import TicketStatus
from repositories.queue_repository import QueueRepository
from repositories.ticket_event_repository import TicketEventRepository
from repositories.ticket_repository import TicketRepository
from services.common.errors import ValidationError
from services.common.tenant_context import require_tenant


class QueueMetricsService:
    """Aggregates ticket outcomes for assistant-enabled queues"""

    def __init__(self, queue_repository: QueueRepository,
                 ticket_repository: TicketRepository,
                 ticket_event_repository: TicketEventRepository):
        self.queue_repository = queue_repository
        self.ticket_repository = ticket_repository
        self.ticket_event_repository = ticket_event_repository

    def list_ai_queue_metrics(self, date_from: Optional[datetime] = None,
                              date_to: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        One row per assistant-enabled queue of the current tenant.

        Tickets are filtered on creation time and events on their own
        timestamp. Average time to human only counts tickets whose first human
        response came after creation.
        """
        if date_from and date_to and date_from > date_to:
            raise ValidationError("date_from must not be after date_to")
        tenant = require_tenant()

        metrics = []
        for queue in self.queue_repository.find_ai_enabled(tenant):
            tickets = self.ticket_repository.find_for_queue(tenant, queue.id, date_from, date_to)
            resolved = sum(1 for ticket in tickets if ticket.status == TicketStatus.CLOSED)

            responded = [t for t in tickets if t.first_human_response_at is not None]
            total_minutes = 0.0
            for ticket in responded:
                if ticket.created_at and ticket.first_human_response_at > ticket.created_at:
                    total_minutes += (ticket.first_human_response_at - ticket.created_at).total_seconds() / 60
            average = round(total_minutes / len(responded), 2) if responded else 0

            metrics.append({
                'queueId': queue.id,
                'queueName': queue.name,
                'aiMode': queue.ai_mode,
                'aiAutoReply': queue.ai_auto_reply,
                'resolvedCount': resolved,
                'transferCount': self.ticket_event_repository.count_by_type(
                    tenant, 'ai_transfer', queue.id, date_from, date_to),
                'aiReplyCount': self.ticket_event_repository.count_by_type(
                    tenant, 'ai_reply', queue.id, date_from, date_to),
                'avgTimeToHumanMinutes': average
            })
        return metrics
