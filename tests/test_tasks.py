"""Tests for the deployment and cleanup Celery tasks."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from webdeploy.schemas.deployments import DeploymentResult, RollbackResult
from webdeploy.tasks.cleanup import cleanup_stuck_deployments, prune_old_backups
from webdeploy.tasks.deploy import deploy_application, rollback_deployment


def _bind_session(mock_sl, db_session) -> None:
    mock_sl.return_value.__enter__ = lambda s: db_session
    mock_sl.return_value.__exit__ = MagicMock(return_value=False)


class TestDeployTasks:
    def test_deploy_application_returns_result_dict(self, db_session) -> None:
        outcome = DeploymentResult(success=True, message="Deployment completed successfully", deployment_id=7)
        with (
            patch("webdeploy.tasks.deploy.SessionLocal") as mock_sl,
            patch("webdeploy.services.deploy_service.DeployService.__init__", return_value=None),
            patch("webdeploy.services.deploy_service.DeployService.deploy", return_value=outcome) as mock_deploy,
        ):
            _bind_session(mock_sl, db_session)
            result = deploy_application("app-id", "/tmp/release.zip", "1.0", "alice")

        mock_deploy.assert_called_once_with("app-id", "/tmp/release.zip", "1.0", "alice")
        assert result["success"] is True
        assert result["deployment_id"] == 7

    def test_rollback_deployment_returns_result_dict(self, db_session) -> None:
        outcome = RollbackResult(success=False, message="Backup file not found")
        with (
            patch("webdeploy.tasks.deploy.SessionLocal") as mock_sl,
            patch("webdeploy.services.rollback_service.RollbackService.__init__", return_value=None),
            patch(
                "webdeploy.services.rollback_service.RollbackService.rollback_deployment", return_value=outcome
            ) as mock_rollback,
        ):
            _bind_session(mock_sl, db_session)
            result = rollback_deployment(12, "bob")

        mock_rollback.assert_called_once_with(12, "bob")
        assert result == outcome.model_dump()


class TestCleanupTasks:
    def test_prune_old_backups_uses_retention(self) -> None:
        with patch(
            "webdeploy.services.backup_service.BackupService.prune_older_than", return_value=3
        ) as mock_prune:
            result = prune_old_backups(retention_days=10)

        mock_prune.assert_called_once_with(10)
        assert result == {"deleted_backups": 3}

    def test_prune_old_backups_defaults_to_settings(self) -> None:
        from webdeploy.config import settings

        with patch(
            "webdeploy.services.backup_service.BackupService.prune_older_than", return_value=0
        ) as mock_prune:
            prune_old_backups()

        mock_prune.assert_called_once_with(settings.backup_retention_days)

    def test_cleanup_stuck_deployments(self, db_session) -> None:
        with (
            patch("webdeploy.tasks.cleanup.SessionLocal") as mock_sl,
            patch("webdeploy.services.deploy_service.get_lifecycle_controllers", return_value=(None, None)),
            patch(
                "webdeploy.services.deploy_service.DeployService.mark_stuck_deployments", return_value=2
            ) as mock_mark,
        ):
            _bind_session(mock_sl, db_session)
            result = cleanup_stuck_deployments(max_age_minutes=30)

        mock_mark.assert_called_once_with(max_age_minutes=30)
        assert result == {"marked_stuck_deployments": 2}


class TestBeatSchedule:
    def test_cleanup_jobs_are_scheduled(self) -> None:
        from webdeploy.celery_app import celery_app

        tasks = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
        assert tasks == {
            "webdeploy.tasks.cleanup.prune_old_backups",
            "webdeploy.tasks.cleanup.cleanup_stuck_deployments",
        }
