import os
from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "vod_pipeline.settings")

celery_app = Celery("vod_pipeline")
celery_app.config_from_object("django.conf:settings", namespace="CELERY")
celery_app.autodiscover_tasks()

# ingest jobs run for minutes: one message per worker process, and a job lost
# with its worker goes back to the queue
celery_app.conf.worker_prefetch_multiplier = 1
celery_app.conf.task_reject_on_worker_lost = True
