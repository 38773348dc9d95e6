"""
Deploy Task — Celery tasks that run deployments and rollbacks off the
request thread.
"""

import logging
import time

from celery import shared_task

from webdeploy.db import SessionLocal
from webdeploy.metrics import observe_job

logger = logging.getLogger(__name__)


@shared_task
def deploy_application(application_id: str, archive_path: str, version: str, username: str) -> dict:
    """Run the deployment pipeline for an application."""
    logger.info("Starting deployment of %s version %s by %s", application_id, version, username)
    start = time.monotonic()

    with SessionLocal() as db:
        from webdeploy.services.deploy_service import DeployService

        result = DeployService(db).deploy(application_id, archive_path, version, username)

    observe_job("deploy_application", "success" if result.success else "failed", time.monotonic() - start)
    logger.info("Deployment %s complete: %s", result.deployment_id, result.success)
    return result.model_dump()


@shared_task
def rollback_deployment(deployment_id: int, username: str) -> dict:
    """Restore the backup taken before a deployment."""
    logger.info("Starting rollback of deployment %s by %s", deployment_id, username)
    start = time.monotonic()

    with SessionLocal() as db:
        from webdeploy.services.rollback_service import RollbackService

        result = RollbackService(db).rollback_deployment(deployment_id, username)

    observe_job("rollback_deployment", "success" if result.success else "failed", time.monotonic() - start)
    logger.info("Rollback of deployment %s complete: %s", deployment_id, result.success)
    return result.model_dump()
