# app.py

from flask import Flask, g, jsonify, request
from config import get_config
from extensions import db, migrate
import os
import uuid
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(app_name="omnidesk", log_level=os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_logger(__name__)


# Configure Sentry for production error tracking
def init_sentry():
    """Initialize Sentry error tracking in production."""
    sentry_dsn = os.environ.get('SENTRY_DSN')
    if sentry_dsn and os.environ.get('FLASK_ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.celery import CeleryIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FlaskIntegration(transaction_style='endpoint'),
                SqlalchemyIntegration(),
                CeleryIntegration()
            ],
            traces_sample_rate=0.1,
            environment=os.environ.get('FLASK_ENV', 'development'),
            release=os.environ.get('GIT_SHA', 'unknown')
        )
        logger.info("Sentry error tracking initialized")


init_sentry()


def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)
    config_class.init_app(app)

    if test_config:
        app.config.update(test_config)

    db.init_app(app)
    migrate.init_app(app, db)

    from services.service_registry import create_registry, ServiceLifecycle
    registry = create_registry()
    config = app.config

    # Base services (no dependencies)
    registry.register_factory(
        'db_session',
        lambda: db.session,
        lifecycle=ServiceLifecycle.SCOPED
    )
    registry.register_singleton(
        'notification_transport',
        lambda: _create_notification_transport(config)
    )
    registry.register_singleton(
        'ack_buffer',
        lambda: _create_ack_buffer(config)
    )
    registry.register_singleton(
        'channel_gateway',
        lambda: _create_channel_gateway(config),
        tags={'external'}
    )
    registry.register_singleton(
        'assistant_webhook_client',
        lambda: _create_assistant_webhook_client(config),
        tags={'external'}
    )
    registry.register_singleton(
        'media_store',
        lambda: _create_media_store(config)
    )

    # Repositories
    for name, factory in (
        ('contact_repository', _create_contact_repository),
        ('ticket_repository', _create_ticket_repository),
        ('message_repository', _create_message_repository),
        ('ticket_event_repository', _create_ticket_event_repository),
        ('queue_repository', _create_queue_repository),
        ('user_repository', _create_user_repository),
        ('channel_connection_repository', _create_channel_connection_repository),
        ('tag_repository', _create_tag_repository),
        ('setting_repository', _create_setting_repository),
        ('scheduled_message_repository', _create_scheduled_message_repository),
    ):
        registry.register_factory(name, factory, dependencies=['db_session'], tags={'repository'})

    # Services
    registry.register_factory(
        'notification',
        _create_notification_service,
        dependencies=['notification_transport']
    )
    registry.register_factory(
        'setting',
        _create_setting_service,
        dependencies=['setting_repository']
    )
    registry.register_factory(
        'contact',
        _create_contact_service,
        dependencies=['contact_repository', 'notification']
    )
    registry.register_factory(
        'message',
        _create_message_service,
        dependencies=['message_repository', 'ticket_repository', 'ack_buffer', 'notification']
    )
    registry.register_factory(
        'ticket',
        _create_ticket_service,
        dependencies=['ticket_repository', 'ticket_event_repository', 'queue_repository',
                      'user_repository', 'channel_connection_repository', 'tag_repository',
                      'message', 'notification']
    )
    registry.register_factory(
        'sla',
        _create_sla_service,
        dependencies=['ticket_repository', 'queue_repository', 'setting', 'ticket', 'notification']
    )
    registry.register_factory(
        'assistant',
        lambda **deps: _create_assistant_service(config, **deps),
        dependencies=['assistant_webhook_client', 'message', 'ticket', 'queue_repository',
                      'tag_repository', 'channel_gateway']
    )
    registry.register_factory(
        'outbound_message',
        _create_outbound_message_service,
        dependencies=['ticket', 'message', 'sla', 'channel_gateway']
    )
    registry.register_factory(
        'channel_event',
        _create_channel_event_service,
        dependencies=['channel_connection_repository', 'contact', 'ticket', 'message', 'sla',
                      'assistant', 'outbound_message', 'media_store']
    )
    registry.register_factory(
        'schedule',
        lambda **deps: _create_schedule_service(config, **deps),
        dependencies=['scheduled_message_repository', 'ticket', 'outbound_message', 'notification']
    )
    registry.register_factory(
        'queue_metrics',
        _create_queue_metrics_service,
        dependencies=['queue_repository', 'ticket_repository', 'ticket_event_repository']
    )

    errors = registry.validate_dependencies()
    if errors:
        for error in errors:
            logger.error("Service dependency error", error=error)
        raise RuntimeError(f"Service registry validation failed: {errors}")
    logger.debug("Service initialization order", order=registry.get_initialization_order())

    app.services = registry

    @app.before_request
    def before_request():
        g.request_id = str(uuid.uuid4())
        logger.info("Request started",
                    request_id=g.request_id,
                    method=request.method,
                    path=request.path)

    @app.after_request
    def after_request(response):
        logger.info("Request completed",
                    request_id=getattr(g, 'request_id', None),
                    status_code=response.status_code)
        return response

    @app.errorhandler(500)
    def internal_error(error):
        logger.error("Internal server error",
                     request_id=getattr(g, 'request_id', None),
                     error=str(error))
        return jsonify({'status': 'error', 'error': 'Internal server error'}), 500

    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring"""
        from sqlalchemy import text
        health_status = {
            'status': 'healthy',
            'service': 'omnidesk'
        }

        try:
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except Exception as e:
            health_status['database'] = 'error'
            health_status['status'] = 'degraded'
            logger.error("Health check database error", error=str(e))

        return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

    return app


# Service Factory Functions
# These are only called when the service is first requested

def _create_notification_transport(config):
    from services.notification_service import (
        LoggingNotificationTransport, RedisNotificationTransport
    )
    if config.get('NOTIFICATION_TRANSPORT') == 'redis':
        import redis
        client = redis.from_url(config['REDIS_URL'])
        return RedisNotificationTransport(client, config.get('NOTIFICATION_CHANNEL_PREFIX', 'omnidesk:rooms'))
    return LoggingNotificationTransport()


def _create_ack_buffer(config):
    from services.ack_buffer import AckBuffer
    return AckBuffer(max_entries=config.get('ACK_BUFFER_MAX_ENTRIES', 10000))


def _create_channel_gateway(config):
    from services.channel_gateway import WebhookChannelGateway
    return WebhookChannelGateway(
        url=config.get('CHANNEL_OUTBOUND_WEBHOOK_URL'),
        token=config.get('CHANNEL_OUTBOUND_WEBHOOK_TOKEN'),
        timeout=config.get('CHANNEL_SEND_TIMEOUT', 15.0)
    )


def _create_assistant_webhook_client(config):
    from services.assistant_webhook_client import AssistantWebhookClient
    return AssistantWebhookClient(
        default_url=config.get('ASSISTANT_WEBHOOK_URL'),
        token=config.get('ASSISTANT_WEBHOOK_TOKEN'),
        timeout=config.get('ASSISTANT_WEBHOOK_TIMEOUT', 15.0)
    )


def _create_media_store(config):
    from services.media_store import LocalMediaStore
    return LocalMediaStore(config['MEDIA_ROOT'])


def _create_contact_repository(db_session):
    from repositories.contact_repository import ContactRepository
    return ContactRepository(db_session)


def _create_ticket_repository(db_session):
    from repositories.ticket_repository import TicketRepository
    return TicketRepository(db_session)


def _create_message_repository(db_session):
    from repositories.message_repository import MessageRepository
    return MessageRepository(db_session)


def _create_ticket_event_repository(db_session):
    from repositories.ticket_event_repository import TicketEventRepository
    return TicketEventRepository(db_session)


def _create_queue_repository(db_session):
    from repositories.queue_repository import QueueRepository
    return QueueRepository(db_session)


def _create_user_repository(db_session):
    from repositories.user_repository import UserRepository
    return UserRepository(db_session)


def _create_channel_connection_repository(db_session):
    from repositories.channel_connection_repository import ChannelConnectionRepository
    return ChannelConnectionRepository(db_session)


def _create_tag_repository(db_session):
    from repositories.tag_repository import TagRepository
    return TagRepository(db_session)


def _create_setting_repository(db_session):
    from repositories.setting_repository import SettingRepository
    return SettingRepository(db_session)


def _create_scheduled_message_repository(db_session):
    from repositories.scheduled_message_repository import ScheduledMessageRepository
    return ScheduledMessageRepository(db_session)


def _create_notification_service(notification_transport):
    from services.notification_service import NotificationService
    return NotificationService(notification_transport)


def _create_setting_service(setting_repository):
    from services.setting_service import SettingService
    return SettingService(setting_repository)


def _create_contact_service(contact_repository, notification):
    from services.contact_service import ContactService
    return ContactService(contact_repository, notification)


def _create_message_service(message_repository, ticket_repository, ack_buffer, notification):
    from services.message_service import MessageService
    return MessageService(message_repository, ticket_repository, ack_buffer, notification)


def _create_ticket_service(ticket_repository, ticket_event_repository, queue_repository,
                           user_repository, channel_connection_repository, tag_repository,
                           message, notification):
    from services.ticket_service import TicketService
    return TicketService(
        ticket_repository=ticket_repository,
        ticket_event_repository=ticket_event_repository,
        queue_repository=queue_repository,
        user_repository=user_repository,
        channel_connection_repository=channel_connection_repository,
        tag_repository=tag_repository,
        message_service=message,
        notification_service=notification
    )


def _create_sla_service(ticket_repository, queue_repository, setting, ticket, notification):
    from services.sla_service import SlaService
    return SlaService(ticket_repository, queue_repository, setting, ticket, notification)


def _create_assistant_service(config, assistant_webhook_client, message, ticket,
                              queue_repository, tag_repository, channel_gateway):
    from services.assistant_service import AssistantService
    return AssistantService(
        webhook_client=assistant_webhook_client,
        message_service=message,
        ticket_service=ticket,
        queue_repository=queue_repository,
        tag_repository=tag_repository,
        channel_gateway=channel_gateway,
        context_messages=config.get('ASSISTANT_CONTEXT_MESSAGES', 20)
    )


def _create_outbound_message_service(ticket, message, sla, channel_gateway):
    from services.outbound_message_service import OutboundMessageService
    return OutboundMessageService(ticket, message, sla, channel_gateway)


def _create_channel_event_service(channel_connection_repository, contact, ticket, message, sla,
                                  assistant, outbound_message, media_store):
    from services.channel_event_service import ChannelEventService
    return ChannelEventService(
        channel_connection_repository=channel_connection_repository,
        contact_service=contact,
        ticket_service=ticket,
        message_service=message,
        sla_service=sla,
        assistant_service=assistant,
        outbound_message_service=outbound_message,
        media_store=media_store
    )


def _create_schedule_service(config, scheduled_message_repository, ticket, outbound_message,
                             notification):
    from services.schedule_service import ScheduleService
    return ScheduleService(
        scheduled_message_repository, ticket, outbound_message, notification,
        batch_size=config.get('SCHEDULE_BATCH_SIZE', 20)
    )


def _create_queue_metrics_service(queue_repository, ticket_repository, ticket_event_repository):
    from services.queue_metrics_service import QueueMetricsService
    return QueueMetricsService(queue_repository, ticket_repository, ticket_event_repository)


if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)
