# shadowsettle/tasks/celery_app.py
import os
import logging
from celery import Celery

logger = logging.getLogger(__name__)


def make_celery() -> Celery:
    """
    Instancia base de Celery. No abre conexión al broker al importarse;
    el diagnóstico vive en check_broker() y lo llama el worker.
    """
    celery_app = Celery("shadowsettle")

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
        # observing a task can take the whole observation window
        task_acks_late=True,
        worker_prefetch_multiplier=1,
    )
    return celery_app


celery = make_celery()
_BaseTask = celery.Task


def check_broker(celery_app: Celery = celery) -> bool:
    broker_url = celery_app.conf.broker_url
    try:
        conn = celery_app.connection()
        conn.ensure_connection(max_retries=1)
        conn.release()
        logger.info("celery connected to broker %s", broker_url)
        return True
    except Exception as e:
        logger.error("celery could not reach broker %s: %s", broker_url, e)
        return False


def init_celery(flask_app) -> Celery:
    """Bind Celery to the Flask app: broker config from app.config, tasks inside an app context."""
    broker = flask_app.config.get("CELERY_BROKER_URL")
    backend = flask_app.config.get("CELERY_RESULT_BACKEND") or broker
    if broker:
        celery.conf.broker_url = broker
    if backend:
        celery.conf.result_backend = backend

    class ContextTask(_BaseTask):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return _BaseTask.__call__(self, *args, **kwargs)

    celery.Task = ContextTask
    celery.set_default()
    flask_app.extensions["celery"] = celery

    # registra las tareas
    from shadowsettle.tasks import settlement_tasks  # noqa: F401

    return celery
