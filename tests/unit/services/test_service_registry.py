"""
Tests for the service registry and the application's service wiring
"""

import threading
import time
from unittest.mock import Mock

import pytest

from services.service_registry import ServiceLifecycle, ServiceRegistry, create_registry


class TestServiceRegistry:
    """Lifecycle and dependency resolution"""

    @pytest.fixture
    def registry(self):
        return create_registry()

    def test_register_service_instance(self, registry):
        instance = Mock()
        registry.register('notification_transport', service=instance)

        assert registry.has('notification_transport')
        assert registry.get('notification_transport') is instance

    def test_register_requires_instance_or_factory(self, registry):
        with pytest.raises(ValueError):
            registry.register('empty')

    def test_factory_is_lazy_and_singleton_by_default(self, registry):
        factory = Mock(return_value='ack_buffer')
        registry.register_factory('ack_buffer', factory)

        factory.assert_not_called()
        assert registry.get('ack_buffer') == 'ack_buffer'
        assert registry.get('ack_buffer') == 'ack_buffer'
        factory.assert_called_once()

    def test_transient_lifecycle(self, registry):
        counter = {'value': 0}

        def factory():
            counter['value'] += 1
            return f"instance_{counter['value']}"

        registry.register_transient('transient', factory)

        assert registry.get('transient') == 'instance_1'
        assert registry.get('transient') == 'instance_2'

    def test_scoped_lifecycle(self, registry):
        counter = {'value': 0}

        def factory():
            counter['value'] += 1
            return f"session_{counter['value']}"

        registry.register('db_session', factory=factory, lifecycle=ServiceLifecycle.SCOPED)

        assert registry.get('db_session', scope_id='a') == registry.get('db_session', scope_id='a')
        assert registry.get('db_session', scope_id='b') == 'session_2'

        registry.clear_scope('a')
        assert registry.get('db_session', scope_id='a') == 'session_3'

    def test_dependencies_are_passed_as_keyword_arguments(self, registry):
        repository = Mock(name='ticket_repository')
        notifications = Mock(name='notification')
        registry.register('ticket_repository', service=repository)
        registry.register('notification', service=notifications)

        registry.register_factory(
            'ticket',
            lambda ticket_repository, notification: (ticket_repository, notification),
            dependencies=['ticket_repository', 'notification']
        )

        assert registry.get('ticket') == (repository, notifications)

    def test_circular_dependency_detection(self, registry):
        registry.register_factory('message', lambda ticket: Mock(), dependencies=['ticket'])
        registry.register_factory('ticket', lambda sla: Mock(), dependencies=['sla'])
        registry.register_factory('sla', lambda message: Mock(), dependencies=['message'])

        with pytest.raises(RuntimeError, match="Circular dependency detected"):
            registry.get('message')
        with pytest.raises(RuntimeError, match="Circular dependency detected"):
            registry.get_initialization_order()

    def test_missing_dependency(self, registry):
        registry.register_factory('ticket', lambda ticket_repository: Mock(),
                                  dependencies=['ticket_repository'])

        assert registry.validate_dependencies() == [
            "Service 'ticket' depends on unregistered service 'ticket_repository'"
        ]
        with pytest.raises(ValueError, match="Service 'ticket_repository' is not registered"):
            registry.get('ticket')

    def test_initialization_order_puts_dependencies_first(self, registry):
        registry.register_factory('message', lambda message_repository: Mock(),
                                  dependencies=['message_repository'])
        registry.register_factory('message_repository', lambda: Mock())

        order = registry.get_initialization_order()

        assert order.index('message_repository') < order.index('message')

    def test_reset_service_rebuilds_dependents(self, registry):
        registry.register_factory('channel_gateway', lambda: object())
        registry.register_factory('outbound_message', lambda channel_gateway: Mock(gateway=channel_gateway),
                                  dependencies=['channel_gateway'])
        before = registry.get('outbound_message')

        registry.reset_service('channel_gateway')
        after = registry.get('outbound_message')

        assert after is not before
        assert after.gateway is not before.gateway

    def test_reregistering_replaces_the_service(self, registry):
        registry.register_factory('channel_gateway', lambda: 'webhook')
        assert registry.get('channel_gateway') == 'webhook'

        registry.register('channel_gateway', service='fake')

        assert registry.get('channel_gateway') == 'fake'

    def test_singleton_is_created_once_across_threads(self, registry):
        created = {'value': 0}

        def slow_factory():
            created['value'] += 1
            time.sleep(0.05)
            return object()

        registry.register_singleton('ack_buffer', slow_factory)
        results = []
        threads = [threading.Thread(target=lambda: results.append(registry.get('ack_buffer')))
                   for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert created['value'] == 1
        assert len({id(result) for result in results}) == 1


class TestApplicationWiring:
    """The registry built by create_app"""

    def test_registry_validates(self, services):
        assert services.validate_dependencies() == []

    def test_every_engine_service_resolves(self, services):
        for name in ('notification', 'setting', 'contact', 'message', 'ticket', 'sla',
                     'assistant', 'outbound_message', 'channel_event', 'schedule', 'queue_metrics'):
            assert services.get(name) is not None

    def test_ack_buffer_is_shared_by_message_services(self, services):
        assert services.get('message').ack_buffer is services.get('ack_buffer')

    def test_fake_gateway_reaches_outbound_service(self, services, gateway):
        assert services.get('outbound_message').channel_gateway is gateway

    def test_registry_class(self, services):
        assert isinstance(services, ServiceRegistry)
