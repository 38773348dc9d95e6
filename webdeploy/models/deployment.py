import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from webdeploy.db import Base


class DeploymentStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    succeeded = "succeeded"
    failed = "failed"
    failed_rolled_back = "failed_rolled_back"
    rolled_back = "rolled_back"


class Deployment(Base):
    __tablename__ = "deployments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("applications.application_id"), nullable=False, index=True
    )
    deployed_by: Mapped[str] = mapped_column(String(120), nullable=False)
    version: Mapped[str] = mapped_column(String(200), nullable=False)
    archive_file_name: Mapped[str] = mapped_column(String(255), default="")
    archive_file_size: Mapped[int] = mapped_column(BigInteger, default=0)
    status: Mapped[DeploymentStatus] = mapped_column(Enum(DeploymentStatus), default=DeploymentStatus.pending)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)
    backup_path: Mapped[str | None] = mapped_column(String(1024))
    can_rollback: Mapped[bool] = mapped_column(Boolean, default=False)

    application = relationship("Application", back_populates="deployments")
    steps = relationship("DeploymentStep", back_populates="deployment", order_by="DeploymentStep.id")
