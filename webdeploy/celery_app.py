from celery import Celery
from celery.schedules import crontab

from webdeploy.config import settings

celery_app = Celery("webdeploy")
celery_app.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Deployments are not idempotent; never redeliver a half-run pipeline.
    task_acks_late=False,
    worker_prefetch_multiplier=1,
)
celery_app.conf.beat_schedule = {
    "prune-old-backups": {
        "task": "webdeploy.tasks.cleanup.prune_old_backups",
        "schedule": crontab(hour=3, minute=0),
    },
    "cleanup-stuck-deployments": {
        "task": "webdeploy.tasks.cleanup.cleanup_stuck_deployments",
        "schedule": crontab(minute="*/15"),
    },
}
celery_app.autodiscover_tasks(
    [
        "webdeploy.tasks.deploy",
        "webdeploy.tasks.cleanup",
    ]
)
