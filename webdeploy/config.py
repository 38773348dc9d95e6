import os
import tempfile

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, model_validator

load_dotenv()


_TRUTHY_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in _TRUTHY_VALUES


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str | None = os.getenv("DATABASE_URL")
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    # Backups
    backup_root: str = os.getenv("BACKUP_ROOT", "/var/lib/webdeploy/backups")
    backup_retention_days: int = int(os.getenv("BACKUP_RETENTION_DAYS", "30"))

    # Deployment pipeline
    temp_dir: str = os.getenv("DEPLOY_TEMP_DIR") or tempfile.gettempdir()
    health_check_timeout_seconds: int = int(os.getenv("HEALTH_CHECK_TIMEOUT", "30"))
    site_warmup_seconds: int = int(os.getenv("SITE_WARMUP_SECONDS", "3"))
    rollback_stop_delay_seconds: int = int(os.getenv("ROLLBACK_STOP_DELAY_SECONDS", "2"))
    stuck_deployment_minutes: int = int(os.getenv("STUCK_DEPLOYMENT_MINUTES", "60"))

    # Web server lifecycle host
    lifecycle_host: str = os.getenv("LIFECYCLE_HOST", "localhost")
    lifecycle_port: int = int(os.getenv("LIFECYCLE_PORT", "22"))
    lifecycle_user: str = os.getenv("LIFECYCLE_USER", "Administrator")
    lifecycle_key_path: str = os.getenv("LIFECYCLE_KEY_PATH", os.path.expanduser("~/.ssh/id_rsa"))
    lifecycle_is_local: bool = _env_bool("LIFECYCLE_IS_LOCAL", "true")
    appcmd_path: str = os.getenv("APPCMD_PATH", r"%windir%\system32\inetsrv\appcmd.exe")

    # Celery
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    celery_result_backend: str = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

    # Runtime flags
    testing: bool = _env_bool("TESTING")

    @model_validator(mode="after")
    def require_database_url_when_not_testing(self) -> "Settings":
        if not self.testing and not (self.database_url and self.database_url.strip()):
            raise ValueError("DATABASE_URL must be set when TESTING is false")
        return self


settings = Settings()
