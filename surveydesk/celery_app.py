from celery import Celery
from celery.signals import worker_process_init

from surveydesk.logging import configure_logging
from surveydesk.services.scheduler_config import build_beat_schedule, get_celery_config
from surveydesk.telemetry import setup_worker_otel

configure_logging()

celery_app = Celery("surveydesk")
celery_app.conf.update(get_celery_config())
celery_app.conf.beat_schedule = build_beat_schedule()
celery_app.autodiscover_tasks(["surveydesk"])


@worker_process_init.connect
def _init_worker_tracing(**_kwargs):
    setup_worker_otel()
