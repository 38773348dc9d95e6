"""
Cleanup Task — Periodically prune old content backups and fail stuck deployments.
"""

import logging

from celery import shared_task

from webdeploy.config import settings
from webdeploy.db import SessionLocal

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=2, default_retry_delay=60)
def prune_old_backups(self, retention_days: int | None = None) -> dict:
    """Delete content backups older than the retention window."""
    from webdeploy.services.backup_service import BackupService

    days = retention_days or settings.backup_retention_days
    deleted = BackupService().prune_older_than(days)
    logger.info("Pruned %d backups older than %d days", deleted, days)
    return {"deleted_backups": deleted}


@shared_task(bind=True, max_retries=2, default_retry_delay=60)
def cleanup_stuck_deployments(self, max_age_minutes: int | None = None) -> dict:
    """Mark deployments abandoned in progress as failed."""
    with SessionLocal() as db:
        from webdeploy.services.deploy_service import DeployService

        svc = DeployService(db)
        marked = svc.mark_stuck_deployments(max_age_minutes=max_age_minutes)
        db.commit()

    logger.info("Marked %d stuck deployments as failed", marked)
    return {"marked_stuck_deployments": marked}
