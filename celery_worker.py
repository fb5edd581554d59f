# celery -A celery_worker.celery worker --loglevel=INFO
import os

from shadowsettle import create_app
from shadowsettle.tasks.celery_app import celery, check_broker

flask_app = create_app(os.getenv("FLASK_ENV", "production"))
check_broker(celery)
