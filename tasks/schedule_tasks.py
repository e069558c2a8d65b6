"""
Celery tasks for scheduled messages
"""

from typing import Any, Dict, Optional

from celery import shared_task
from flask import current_app

from logging_config import get_logger
from utils.datetime_utils import utc_now

logger = get_logger(__name__)


@shared_task(bind=True)
def send_due_scheduled_messages(self, limit: Optional[int] = None) -> Dict[str, Any]:
    """
    Send pending scheduled messages whose send time has passed.

    Returns:
        Dictionary with the sent and failed counts
    """
    schedule_service = current_app.services.get('schedule')
    stats = schedule_service.run_due(limit=limit)

    stats['executed_at'] = utc_now().isoformat()
    if stats.get('sent') or stats.get('failed'):
        logger.info("Scheduled messages processed", **stats)
    return stats
