"""
Deploy Service — archive-based deployment pipeline for web applications.

The pipeline runs strictly in order:

    validate -> record -> extract -> stop site -> stop pool -> delay
    -> backup -> replace content -> start pool -> start site -> health check
    -> finalize

Every phase appends a DeploymentStep row (skipped phases included) and the
session is committed after each one, so a failed run still leaves a
complete trail of what happened.
"""

from __future__ import annotations

import itertools
import logging
import os
import shutil
import tempfile
import time
import traceback
import uuid
import zipfile
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from webdeploy.config import settings
from webdeploy.models.application import Application
from webdeploy.models.deployment import Deployment, DeploymentStatus
from webdeploy.models.deployment_step import DeploymentStep, StepStatus
from webdeploy.schemas.deployments import DeploymentResult
from webdeploy.services.backup_service import BackupService
from webdeploy.services.common import coerce_uuid
from webdeploy.services.content_service import replace_content
from webdeploy.services.exclusion import parse_patterns
from webdeploy.services.health_service import HealthService
from webdeploy.services.lifecycle import LifecycleController, get_lifecycle_controllers
from webdeploy.services.locks import application_lock, is_locked

logger = logging.getLogger(__name__)

FAILURE_STEP_NUMBER = 99
ALREADY_RUNNING_MESSAGE = "A deployment or rollback is already running for this application"


class DeployError(Exception):
    def __init__(self, step: str, message: str):
        self.step = step
        self.message = message
        super().__init__(f"Deploy failed at {step}: {message}")


def add_step(
    db: Session,
    deployment: Deployment,
    step_number: int,
    step_name: str,
    status: StepStatus = StepStatus.succeeded,
    message: str | None = None,
    error_details: str | None = None,
) -> DeploymentStep:
    """Append one step row to a deployment's log and commit it."""
    now = datetime.now(UTC)
    step = DeploymentStep(
        deployment_id=deployment.id,
        step_number=step_number,
        step_name=step_name[:500],
        status=status,
        started_at=now,
        completed_at=now,
        message=message,
        error_details=error_details,
    )
    db.add(step)
    db.commit()
    return step


def has_active_deployment(db: Session, application_id: uuid.UUID) -> bool:
    """Check whether the database holds an unfinished deployment for the application."""
    stmt = select(func.count(Deployment.id)).where(
        Deployment.application_id == application_id,
        Deployment.status.in_([DeploymentStatus.pending, DeploymentStatus.in_progress]),
    )
    return (db.scalar(stmt) or 0) > 0


def claim_application(db: Session, application_id: uuid.UUID) -> bool:
    """Lock the application row and make sure nothing else is running for it.

    Uses SELECT FOR UPDATE so that two workers cannot both pass the
    active-deployment check. The row lock lasts until the caller's next
    commit, which must write its own in-progress record. Returns False
    (with the lock released) when another deployment or rollback is active.
    """
    stmt = select(Application).where(Application.application_id == application_id).with_for_update()
    if db.scalar(stmt) is None or has_active_deployment(db, application_id):
        db.rollback()
        return False
    return True


class DeployService:
    def __init__(
        self,
        db: Session,
        site_controller: LifecycleController | None = None,
        pool_controller: LifecycleController | None = None,
        health_service: HealthService | None = None,
        backup_service: BackupService | None = None,
    ):
        self.db = db
        if site_controller is None or pool_controller is None:
            default_site, default_pool = get_lifecycle_controllers()
            site_controller = site_controller or default_site
            pool_controller = pool_controller or default_pool
        self.site_controller = site_controller
        self.pool_controller = pool_controller
        self.health_service = health_service or HealthService()
        self.backup_service = backup_service or BackupService()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_deployment(self, deployment_id: int) -> Deployment | None:
        return self.db.get(Deployment, deployment_id)

    def get_steps(self, deployment_id: int) -> list[DeploymentStep]:
        stmt = select(DeploymentStep).where(DeploymentStep.deployment_id == deployment_id).order_by(DeploymentStep.id)
        return list(self.db.scalars(stmt).all())

    def get_deployment_history(
        self, application_id: uuid.UUID | str | None = None, limit: int = 100
    ) -> list[Deployment]:
        stmt = select(Deployment)
        if application_id is not None:
            stmt = stmt.where(Deployment.application_id == coerce_uuid(application_id))
        stmt = stmt.order_by(Deployment.started_at.desc(), Deployment.id.desc()).limit(limit)
        return list(self.db.scalars(stmt).all())

    def get_latest_successful(self, application_id: uuid.UUID | str) -> Deployment | None:
        stmt = (
            select(Deployment)
            .where(
                Deployment.application_id == coerce_uuid(application_id),
                Deployment.status == DeploymentStatus.succeeded,
            )
            .order_by(Deployment.started_at.desc(), Deployment.id.desc())
            .limit(1)
        )
        return self.db.scalar(stmt)

    def has_active_deployment(self, application_id: uuid.UUID) -> bool:
        return has_active_deployment(self.db, application_id)

    def mark_stuck_deployments(self, max_age_minutes: int | None = None) -> int:
        """Fail deployments left in progress by a worker that died mid-pipeline.

        Rows whose pipeline is still running in this process are skipped. Runs
        in other processes cannot be seen, so ``max_age_minutes`` must exceed
        the longest legitimate pipeline.
        """
        max_age = max_age_minutes or settings.stuck_deployment_minutes
        cutoff = datetime.now(UTC) - timedelta(minutes=max_age)
        stmt = select(Deployment).where(
            Deployment.status.in_([DeploymentStatus.pending, DeploymentStatus.in_progress]),
            Deployment.started_at < cutoff,
        )
        count = 0
        for deployment in self.db.scalars(stmt).all():
            if is_locked(deployment.application_id):
                logger.info("Deployment %s is still running, not marking it stuck", deployment.id)
                continue
            deployment.status = DeploymentStatus.failed
            deployment.error_message = f"Deployment did not complete within {max_age} minutes"
            deployment.completed_at = datetime.now(UTC)
            count += 1
        self.db.flush()
        return count

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def deploy(
        self, application_id: uuid.UUID | str, archive_path: str, version: str, username: str
    ) -> DeploymentResult:
        """Deploy ``archive_path`` to an application. Never raises."""
        result = DeploymentResult()

        app_uuid = coerce_uuid(application_id)
        application = self.db.get(Application, app_uuid) if app_uuid else None
        if not application or not application.is_active:
            result.message = "Application not found or inactive"
            return result

        with application_lock(application.application_id) as acquired:
            if not acquired or not claim_application(self.db, application.application_id):
                logger.warning("Refusing concurrent deployment of %s", application.name)
                result.message = ALREADY_RUNNING_MESSAGE
                return result
            self._run_pipeline(application, archive_path, version, username, result)

        self._record_deploy_metric(application.name, result.success)
        return result

    def _run_pipeline(
        self,
        application: Application,
        archive_path: str,
        version: str,
        username: str,
        result: DeploymentResult,
    ) -> None:
        result.steps.append("Application validated")
        seq = itertools.count(1)
        deployment: Deployment | None = None
        temp_dir: str | None = None
        site_stopped = False
        pool_stopped = False

        try:
            deployment = Deployment(
                application_id=application.application_id,
                deployed_by=username,
                version=version,
                archive_file_name=os.path.basename(archive_path or ""),
                archive_file_size=os.path.getsize(archive_path) if archive_path and os.path.isfile(archive_path) else 0,
                status=DeploymentStatus.pending,
                started_at=datetime.now(UTC),
            )
            self.db.add(deployment)
            self.db.flush()
            deployment.status = DeploymentStatus.in_progress
            self.db.commit()
            result.deployment_id = deployment.id
            add_step(self.db, deployment, next(seq), "Deployment initialized")
            result.steps.append("Deployment record created")

            if not (application.physical_path or "").strip():
                raise DeployError("validate", "Application content root path is not configured")

            if not archive_path or not os.path.isfile(archive_path):
                raise DeployError("validate_archive", f"Archive file not found: {archive_path}")
            add_step(self.db, deployment, next(seq), "Archive file validated")
            result.steps.append("Archive validated")

            temp_dir = self._extract_archive(archive_path)
            add_step(self.db, deployment, next(seq), "Archive extracted to temp directory")
            result.steps.append("Archive extracted")

            target = f"{application.site_name}{application.application_path or '/'}"
            logger.info("Deploying %s version %s to: %s", application.name, version, target)
            add_step(self.db, deployment, next(seq), f"Target: {target}")

            site_stopped = self._stop_site(application, deployment, seq, result)
            pool_stopped = self._stop_pool(application, deployment, seq, result)
            self._wait_for_shutdown(application, deployment, seq)
            self._backup(application, deployment, version, seq, result)

            patterns = parse_patterns(application.excluded_paths)
            copied = replace_content(temp_dir, application.physical_path, patterns)
            add_step(self.db, deployment, next(seq), "Files replaced successfully", message=f"{copied} files copied")
            result.steps.append("Files replaced")

            self._start_pool(application, deployment, seq, result)
            self._start_site(application, deployment, seq, result)
            self._health_check(application, deployment, seq, result)

            deployment.status = DeploymentStatus.succeeded
            deployment.completed_at = datetime.now(UTC)
            self.db.commit()
            add_step(self.db, deployment, next(seq), "Deployment marked as succeeded")

            result.success = True
            result.message = "Deployment completed successfully"
            logger.info("Deployment %s completed successfully", deployment.id)

        except Exception as e:
            error = e.message if isinstance(e, DeployError) else str(e)
            logger.exception("Deployment failed for application %s", application.name)
            result.success = False
            result.message = "Deployment failed"
            result.error_details = error

            if deployment is not None:
                self._record_failure(deployment, error, traceback.format_exc())
            self._recover_units(application, site_stopped, pool_stopped)

        finally:
            if temp_dir and os.path.isdir(temp_dir):
                try:
                    shutil.rmtree(temp_dir)
                except OSError:
                    logger.warning("Failed to cleanup temp directory: %s", temp_dir, exc_info=True)

    def _extract_archive(self, archive_path: str) -> str:
        os.makedirs(settings.temp_dir, exist_ok=True)
        temp_dir = tempfile.mkdtemp(prefix="webdeploy_", dir=settings.temp_dir)
        try:
            with zipfile.ZipFile(archive_path) as zf:
                zf.extractall(temp_dir)
        except Exception:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise
        return temp_dir

    def _stop_site(
        self, application: Application, deployment: Deployment, seq: Iterator[int], result: DeploymentResult
    ) -> bool:
        if not application.stop_site_before_deployment:
            add_step(self.db, deployment, next(seq), "Skipped stopping IIS site (not configured)")
            result.steps.append("IIS site stop skipped")
            return False
        if not self.site_controller.stop(application.site_name):
            raise DeployError("stop_site", f"Failed to stop IIS site: {application.site_name}")
        add_step(self.db, deployment, next(seq), f"IIS site '{application.site_name}' stopped")
        result.steps.append("IIS site stopped")
        return True

    def _stop_pool(
        self, application: Application, deployment: Deployment, seq: Iterator[int], result: DeploymentResult
    ) -> bool:
        if not application.stop_app_pool_before_deployment:
            add_step(self.db, deployment, next(seq), "Skipped stopping app pool (not configured)")
            result.steps.append("App pool stop skipped")
            return False
        if not self.pool_controller.stop(application.app_pool_name):
            raise DeployError("stop_pool", f"Failed to stop app pool: {application.app_pool_name}")
        add_step(self.db, deployment, next(seq), f"App pool '{application.app_pool_name}' stopped")
        result.steps.append("App pool stopped")
        return True

    def _wait_for_shutdown(self, application: Application, deployment: Deployment, seq: Iterator[int]) -> None:
        delay = application.deployment_delay_seconds or 0
        if delay > 0:
            time.sleep(delay)
            add_step(self.db, deployment, next(seq), f"Waited {delay}s for worker processes to exit")
        else:
            add_step(self.db, deployment, next(seq), "No post-stop delay configured")

    def _backup(
        self,
        application: Application,
        deployment: Deployment,
        version: str,
        seq: Iterator[int],
        result: DeploymentResult,
    ) -> None:
        if not application.create_backup:
            deployment.can_rollback = False
            self.db.commit()
            add_step(self.db, deployment, next(seq), "Backup skipped (not configured)")
            result.steps.append("Backup skipped")
            return

        backup_path = self.backup_service.create_backup(application.physical_path, application.name, version)
        if backup_path:
            deployment.backup_path = backup_path
            deployment.can_rollback = True
            self.db.commit()
            add_step(self.db, deployment, next(seq), f"Backup created at '{backup_path}'")
            result.steps.append("Backup created")
            self._record_backup_metric(application.name)
        else:
            deployment.can_rollback = False
            self.db.commit()
            add_step(self.db, deployment, next(seq), "First deployment - backup skipped")
            result.steps.append("Backup skipped (first deployment)")

    def _start_pool(
        self, application: Application, deployment: Deployment, seq: Iterator[int], result: DeploymentResult
    ) -> None:
        if not application.start_app_pool_after_deployment:
            add_step(self.db, deployment, next(seq), "Skipped starting app pool (not configured)")
            result.steps.append("App pool start skipped")
            return
        if not self.pool_controller.start(application.app_pool_name):
            raise DeployError("start_pool", f"Failed to start app pool: {application.app_pool_name}")
        add_step(self.db, deployment, next(seq), f"App pool '{application.app_pool_name}' started")
        result.steps.append("App pool started")

    def _start_site(
        self, application: Application, deployment: Deployment, seq: Iterator[int], result: DeploymentResult
    ) -> None:
        if not application.start_site_after_deployment:
            add_step(self.db, deployment, next(seq), "Skipped starting IIS site (not configured)")
            result.steps.append("IIS site start skipped")
            return
        if not self.site_controller.start(application.site_name):
            raise DeployError("start_site", f"Failed to start IIS site: {application.site_name}")
        add_step(self.db, deployment, next(seq), f"IIS site '{application.site_name}' started")
        result.steps.append("IIS site started")
        # Give the site a moment to warm up before probing it
        time.sleep(settings.site_warmup_seconds)

    def _health_check(
        self, application: Application, deployment: Deployment, seq: Iterator[int], result: DeploymentResult
    ) -> None:
        if not application.run_health_check:
            add_step(self.db, deployment, next(seq), "Health check skipped (not configured)")
            result.steps.append("Health check skipped")
            return
        if not application.health_check_url:
            add_step(self.db, deployment, next(seq), "Health check skipped (no URL configured)")
            result.steps.append("Health check skipped")
            return

        probe = self.health_service.check(application.health_check_url, settings.health_check_timeout_seconds)
        if probe.healthy:
            add_step(self.db, deployment, next(seq), "Health check passed", message=probe.message)
        else:
            # Verification is best-effort: an unhealthy probe does not fail the deployment.
            logger.warning("Health check failed but deployment will continue: %s", probe.message)
            add_step(self.db, deployment, next(seq), f"Health check warning: {probe.message}")
        result.steps.append("Health check completed")

    def _record_failure(self, deployment: Deployment, error: str, details: str) -> None:
        try:
            self.db.rollback()
            deployment.status = DeploymentStatus.failed
            deployment.error_message = error
            deployment.completed_at = datetime.now(UTC)
            self.db.commit()
            add_step(
                self.db,
                deployment,
                FAILURE_STEP_NUMBER,
                f"Deployment failed: {error}",
                StepStatus.failed,
                error_details=details,
            )
        except Exception:
            logger.exception("Could not record failure for deployment %s", deployment.id)

    def _recover_units(self, application: Application, site_stopped: bool, pool_stopped: bool) -> None:
        """Best-effort restart of whatever this run stopped."""
        if pool_stopped:
            try:
                if not self.pool_controller.start(application.app_pool_name):
                    logger.error("Recovery could not restart app pool %s", application.app_pool_name)
            except Exception:
                logger.exception("Recovery restart of app pool %s failed", application.app_pool_name)
        if site_stopped:
            try:
                if not self.site_controller.start(application.site_name):
                    logger.error("Recovery could not restart IIS site %s", application.site_name)
            except Exception:
                logger.exception("Recovery restart of IIS site %s failed", application.site_name)

    def _record_deploy_metric(self, application_name: str, success: bool) -> None:
        try:
            from webdeploy.metrics import record_deployment

            record_deployment(application_name, success)
        except Exception:
            logger.debug("Failed to record deployment metric for %s", application_name, exc_info=True)

    def _record_backup_metric(self, application_name: str) -> None:
        try:
            from webdeploy.metrics import record_backup

            record_backup(application_name, time.time())
        except Exception:
            logger.debug("Failed to record backup metric for %s", application_name, exc_info=True)
