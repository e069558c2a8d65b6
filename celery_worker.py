# celery_worker.py
from app import create_app
from celery_config import build_beat_schedule, create_celery_app
from logging_config import get_logger

logger = get_logger(__name__)

# Create Celery instance with shared configuration
celery = create_celery_app(__name__)

# The Flask app provides the service registry and database session to tasks.
flask_app = create_app()


class ContextTask(celery.Task):
    def __call__(self, *args, **kwargs):
        with flask_app.app_context():
            return self.run(*args, **kwargs)


celery.Task = ContextTask
celery.set_default()

# --- Celery Beat Schedule ---
celery.conf.beat_schedule = build_beat_schedule(flask_app.config)
celery.conf.timezone = 'UTC'

# Import tasks so they are registered with Celery
import tasks.channel_event_tasks  # noqa: E402,F401
import tasks.schedule_tasks  # noqa: E402,F401
import tasks.sla_tasks  # noqa: E402,F401

logger.info("Registered tasks", tasks=sorted(name for name in celery.tasks if name.startswith('tasks.')))
