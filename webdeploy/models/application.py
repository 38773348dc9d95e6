import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from webdeploy.db import Base


class Application(Base):
    __tablename__ = "applications"

    application_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    site_name: Mapped[str] = mapped_column(String(200), nullable=False)
    app_pool_name: Mapped[str] = mapped_column(String(200), nullable=False)
    physical_path: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    # Virtual path under the site, e.g. "/" or "/portal"
    application_path: Mapped[str] = mapped_column(String(200), default="/")
    environment: Mapped[str | None] = mapped_column(String(40))
    health_check_url: Mapped[str | None] = mapped_column(String(512))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Deployment behaviour
    stop_site_before_deployment: Mapped[bool] = mapped_column(Boolean, default=False)
    stop_app_pool_before_deployment: Mapped[bool] = mapped_column(Boolean, default=False)
    start_app_pool_after_deployment: Mapped[bool] = mapped_column(Boolean, default=False)
    start_site_after_deployment: Mapped[bool] = mapped_column(Boolean, default=False)
    create_backup: Mapped[bool] = mapped_column(Boolean, default=True)
    run_health_check: Mapped[bool] = mapped_column(Boolean, default=False)
    deployment_delay_seconds: Mapped[int] = mapped_column(Integer, default=2)
    # Comma/semicolon separated names or wildcard patterns left untouched on deploy
    excluded_paths: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    deployments = relationship("Deployment", back_populates="application")
