"""
Rollback Service — restore a deployment's pre-deploy backup.

The running state of the site and app pool is captured before anything is
touched; units that were running are stopped for the restore and started
again afterwards, units that were deliberately stopped stay stopped.
"""

from __future__ import annotations

import logging
import os
import time
import traceback
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from webdeploy.config import settings
from webdeploy.models.application import Application
from webdeploy.models.deployment import Deployment, DeploymentStatus
from webdeploy.models.deployment_step import StepStatus
from webdeploy.schemas.deployments import RollbackResult
from webdeploy.services.backup_service import BackupService
from webdeploy.services.deploy_service import (
    ALREADY_RUNNING_MESSAGE,
    FAILURE_STEP_NUMBER,
    add_step,
    claim_application,
)
from webdeploy.services.lifecycle import LifecycleController, get_lifecycle_controllers
from webdeploy.services.locks import application_lock

logger = logging.getLogger(__name__)


class RollbackError(Exception):
    pass


class RollbackService:
    def __init__(
        self,
        db: Session,
        site_controller: LifecycleController | None = None,
        pool_controller: LifecycleController | None = None,
        backup_service: BackupService | None = None,
    ):
        self.db = db
        if site_controller is None or pool_controller is None:
            default_site, default_pool = get_lifecycle_controllers()
            site_controller = site_controller or default_site
            pool_controller = pool_controller or default_pool
        self.site_controller = site_controller
        self.pool_controller = pool_controller
        self.backup_service = backup_service or BackupService()

    def can_rollback(self, deployment_id: int) -> bool:
        """True when the deployment has a recorded backup. The file itself is not checked."""
        deployment = self.db.get(Deployment, deployment_id)
        return deployment is not None and deployment.can_rollback and bool(deployment.backup_path)

    def rollback_deployment(self, deployment_id: int, username: str) -> RollbackResult:
        """Restore the backup taken before ``deployment_id``. Never raises."""
        result = RollbackResult()

        deployment = self.db.get(Deployment, deployment_id)
        if not deployment:
            result.message = "Deployment not found"
            return result
        if not deployment.can_rollback or not deployment.backup_path:
            result.message = "Deployment cannot be rolled back (no backup available)"
            return result
        if not os.path.isfile(deployment.backup_path):
            result.message = "Backup file not found"
            return result
        application = self.db.get(Application, deployment.application_id)
        if not application:
            result.message = "Application not found"
            return result
        if not (application.physical_path or "").strip():
            result.message = "Application content root path is not configured"
            return result

        with application_lock(application.application_id) as acquired:
            if not acquired:
                result.message = ALREADY_RUNNING_MESSAGE
                return result
            if not claim_application(self.db, application.application_id):
                logger.warning("Refusing rollback of %s while a deployment is active", application.name)
                result.message = ALREADY_RUNNING_MESSAGE
                return result

            rollback_record: Deployment | None = None
            try:
                rollback_record = self._open_record(application, deployment, username)
                result.rollback_deployment_id = rollback_record.id
                self._restore(application, deployment.backup_path, result)
                self._finalize(deployment, rollback_record, result)
                result.success = True
                result.message = "Rollback completed successfully"
                logger.info("Rollback completed for deployment %s", deployment_id)
            except Exception as e:
                logger.exception("Rollback failed for deployment %s", deployment_id)
                self.db.rollback()
                result.success = False
                result.message = f"Rollback failed: {e}"
                if rollback_record is not None:
                    self._record_failure(rollback_record, str(e), result)

        self._record_rollback_metric(application.name, result.success)
        return result

    def _restore(self, application: Application, backup_path: str, result: RollbackResult) -> None:
        site_was_running = self.site_controller.get_state(application.site_name).is_running
        pool_was_running = self.pool_controller.get_state(application.app_pool_name).is_running
        logger.info(
            "Rolling back %s (site running=%s, app pool running=%s)",
            application.name,
            site_was_running,
            pool_was_running,
        )
        result.steps.append("Rollback initiated")

        site_stopped = False
        pool_stopped = False
        try:
            if site_was_running:
                if not self.site_controller.stop(application.site_name):
                    raise RollbackError(f"Failed to stop IIS site: {application.site_name}")
                site_stopped = True
                result.steps.append("IIS site stopped")
            if pool_was_running:
                if not self.pool_controller.stop(application.app_pool_name):
                    raise RollbackError(f"Failed to stop app pool: {application.app_pool_name}")
                pool_stopped = True
                result.steps.append("App pool stopped")

            if site_stopped or pool_stopped:
                # Let worker processes release their file locks
                time.sleep(settings.rollback_stop_delay_seconds)

            if not self.backup_service.restore_backup(backup_path, application.physical_path):
                raise RollbackError("Failed to restore backup")
            result.steps.append("Backup restored")

            if pool_was_running:
                if not self.pool_controller.start(application.app_pool_name):
                    raise RollbackError(f"Failed to start app pool: {application.app_pool_name}")
                pool_stopped = False
                result.steps.append("App pool started")
            if site_was_running:
                if not self.site_controller.start(application.site_name):
                    raise RollbackError(f"Failed to start IIS site: {application.site_name}")
                site_stopped = False
                result.steps.append("IIS site started")
        except Exception:
            self._restart_stopped(application, site_stopped, pool_stopped)
            raise

    def _restart_stopped(self, application: Application, site_stopped: bool, pool_stopped: bool) -> None:
        if pool_stopped:
            try:
                self.pool_controller.start(application.app_pool_name)
            except Exception:
                logger.exception("Could not restart app pool %s after failed rollback", application.app_pool_name)
        if site_stopped:
            try:
                self.site_controller.start(application.site_name)
            except Exception:
                logger.exception("Could not restart IIS site %s after failed rollback", application.site_name)

    def _open_record(self, application: Application, deployment: Deployment, username: str) -> Deployment:
        """Write the in-progress audit record of this rollback.

        Committing it releases the application row lock; while it is in
        progress no deployment can start for the application.
        """
        record = Deployment(
            application_id=application.application_id,
            deployed_by=username,
            version=f"Rollback from {deployment.version}"[:200],
            archive_file_name=os.path.basename(deployment.backup_path),
            archive_file_size=os.path.getsize(deployment.backup_path),
            status=DeploymentStatus.in_progress,
            started_at=datetime.now(UTC),
            can_rollback=False,
        )
        self.db.add(record)
        self.db.commit()
        return record

    def _finalize(self, deployment: Deployment, rollback_record: Deployment, result: RollbackResult) -> None:
        """Mark the original deployment rolled back and complete the rollback record."""
        deployment.status = DeploymentStatus.rolled_back
        rollback_record.status = DeploymentStatus.succeeded
        rollback_record.completed_at = datetime.now(UTC)
        self.db.commit()
        for number, name in enumerate(result.steps, start=1):
            add_step(self.db, rollback_record, number, name)

    def _record_failure(self, rollback_record: Deployment, error: str, result: RollbackResult) -> None:
        try:
            rollback_record.status = DeploymentStatus.failed
            rollback_record.error_message = error
            rollback_record.completed_at = datetime.now(UTC)
            self.db.commit()
            for number, name in enumerate(result.steps, start=1):
                add_step(self.db, rollback_record, number, name)
            add_step(
                self.db,
                rollback_record,
                FAILURE_STEP_NUMBER,
                f"Rollback failed: {error}",
                StepStatus.failed,
                error_details=traceback.format_exc(),
            )
        except Exception:
            logger.exception("Could not record failure for rollback %s", rollback_record.id)

    def _record_rollback_metric(self, application_name: str, success: bool) -> None:
        try:
            from webdeploy.metrics import record_rollback

            record_rollback(application_name, success)
        except Exception:
            logger.debug("Failed to record rollback metric for %s", application_name, exc_info=True)
