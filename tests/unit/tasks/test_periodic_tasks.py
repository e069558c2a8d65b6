"""
Tests for the periodic SLA and scheduled message tasks and their beat schedule
"""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from celery_config import build_beat_schedule
from services.setting_service import SLA_ESCALATION_ENABLED
from services.sla_service import SweepSummary
from tasks.schedule_tasks import send_due_scheduled_messages
from tasks.sla_tasks import run_sla_escalation
from tests.fixtures.factories import SettingFactory, TicketFactory


class TestRunSlaEscalation:

    @pytest.fixture
    def sla_service(self, services):
        service = Mock()
        service.run_escalation_sweep.return_value = SweepSummary(tenants=2, escalated=3)
        services.register('sla', service=service)
        return service

    def test_sweep_summary_is_returned(self, sla_service):
        result = run_sla_escalation()

        assert result['escalated'] == 3
        assert result['tenants'] == 2
        assert result['skipped'] is False
        assert 'executed_at' in result
        sla_service.run_escalation_sweep.assert_called_once_with(now=None)

    def test_explicit_now_is_parsed_as_utc(self, sla_service):
        run_sla_escalation('2024-05-01T12:00:00Z')

        now = sla_service.run_escalation_sweep.call_args.kwargs['now']
        assert now == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_runs_against_the_database(self, tenant):
        SettingFactory(tenant_id=tenant.id, key=SLA_ESCALATION_ENABLED, value='enabled')
        TicketFactory(tenant_id=tenant.id, overdue=True)

        result = run_sla_escalation()

        assert result['tenants'] == 1
        assert result['escalated'] == 1


class TestSendDueScheduledMessages:

    def test_counts_are_returned(self, services):
        service = Mock()
        service.run_due.return_value = {'skipped': False, 'sent': 2, 'failed': 1}
        services.register('schedule', service=service)

        result = send_due_scheduled_messages(limit=5)

        assert result['sent'] == 2
        assert result['failed'] == 1
        assert 'executed_at' in result
        service.run_due.assert_called_once_with(limit=5)


class TestBeatSchedule:

    def test_periodic_tasks_follow_configured_intervals(self, app):
        schedule = build_beat_schedule(app.config)

        assert schedule['sla-escalation-sweep'] == {
            'task': 'tasks.sla_tasks.run_sla_escalation',
            'schedule': app.config['SLA_SWEEP_INTERVAL'],
        }
        assert schedule['send-due-scheduled-messages']['task'] == \
            'tasks.schedule_tasks.send_due_scheduled_messages'
        assert schedule['send-due-scheduled-messages']['schedule'] > 0
