"""Result objects returned by the deployment, rollback and backup services."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class DeploymentResult(BaseModel):
    success: bool = False
    message: str = ""
    deployment_id: int | None = None
    steps: list[str] = Field(default_factory=list)
    error_details: str | None = None


class RollbackResult(BaseModel):
    success: bool = False
    message: str = ""
    rollback_deployment_id: int | None = None
    steps: list[str] = Field(default_factory=list)


class HealthProbeResult(BaseModel):
    healthy: bool = False
    status_code: int | None = None
    message: str = ""
    elapsed_ms: int = 0


class BackupInfo(BaseModel):
    path: str
    application_name: str
    version: str
    created_at: datetime
    size_bytes: int
