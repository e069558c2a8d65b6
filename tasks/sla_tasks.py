"""
Celery tasks for SLA escalation

Beat runs the sweep every SLA_SWEEP_INTERVAL seconds. Each run escalates the
overdue tickets of every tenant; overlapping runs in one worker are skipped.
"""

from typing import Any, Dict, Optional

from celery import shared_task
from flask import current_app

from logging_config import get_logger
from utils.datetime_utils import parse_utc_iso, utc_now

logger = get_logger(__name__)


@shared_task(bind=True)
def run_sla_escalation(self, now: Optional[str] = None) -> Dict[str, Any]:
    """
    Escalate open and pending tickets whose SLA deadline has passed.

    Args:
        now: ISO timestamp to evaluate deadlines against (defaults to the current time)

    Returns:
        Sweep summary with the number of escalated, skipped and failed tickets
    """
    sla_service = current_app.services.get('sla')
    summary = sla_service.run_escalation_sweep(now=parse_utc_iso(now) if now else None)

    result = summary.to_dict()
    result['executed_at'] = utc_now().isoformat()
    logger.info("SLA escalation sweep finished", **result)
    return result
