import os
import logging
from celery import Celery

logger = logging.getLogger(__name__)


def make_celery() -> Celery:
    """
    Base Celery instance for the sync pipelines, with a connection check
    logged at startup.
    """
    celery_app = Celery("vera_sync")

    broker_url = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
    result_backend = os.getenv("CELERY_RESULT_BACKEND", broker_url)

    celery_app.conf.update(
        broker_url=broker_url,
        result_backend=result_backend,
        task_ignore_result=False,
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone=os.getenv("TZ", "UTC"),
        enable_utc=True,
        # una sola tarea a la vez por worker: un pipeline no se solapa consigo mismo
        worker_prefetch_multiplier=1,
        task_acks_late=True,
    )

    # Diagnóstico de conexión
    try:
        conn = celery_app.connection()
        conn.ensure_connection(max_retries=1)
        logger.info("Celery connected to broker", extra={"broker": broker_url})
    except Exception as e:
        logger.error("Could not connect to Celery broker", extra={"broker": broker_url, "error": str(e)})

    return celery_app


def beat_schedule(config) -> dict:
    """Periodic runs from REPLICATE_INTERVAL / PUSH_INTERVAL (seconds, 0 = off)."""
    schedule = {}
    if float(config.get("REPLICATE_INTERVAL") or 0) > 0:
        schedule["replicate"] = {"task": "sync.replicate", "schedule": float(config["REPLICATE_INTERVAL"])}
    if float(config.get("PUSH_INTERVAL") or 0) > 0:
        schedule["push-forward"] = {"task": "sync.push_forward", "schedule": float(config["PUSH_INTERVAL"])}
    return schedule


celery = make_celery()


def _init_celery_with_flask():
    """Bind Celery tasks to a Flask app context."""
    from vera_sync import create_app
    config_name = os.getenv("FLASK_ENV", "development")
    flask_app = create_app(config_name)

    broker = flask_app.config.get("CELERY_BROKER_URL")
    backend = flask_app.config.get("CELERY_RESULT_BACKEND") or broker
    if broker:
        celery.conf.broker_url = broker
    if backend:
        celery.conf.result_backend = backend
    celery.conf.beat_schedule = beat_schedule(flask_app.config)

    TaskBase = celery.Task

    class ContextTask(TaskBase):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return TaskBase.__call__(self, *args, **kwargs)

    celery.Task = ContextTask
    celery.set_default()

    with flask_app.app_context():
        from vera_sync.tasks import sync_tasks  # noqa: F401

    return flask_app


_flask_app = _init_celery_with_flask()
