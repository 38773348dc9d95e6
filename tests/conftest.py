import os
import tempfile
import uuid
import zipfile
from unittest.mock import MagicMock

import pytest

# Configure the environment BEFORE any webdeploy imports
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["BACKUP_ROOT"] = tempfile.mkdtemp(prefix="webdeploy_test_backups_")
os.environ["DEPLOY_TEMP_DIR"] = tempfile.mkdtemp(prefix="webdeploy_test_tmp_")
os.environ["SITE_WARMUP_SECONDS"] = "0"
os.environ["ROLLBACK_STOP_DELAY_SECONDS"] = "0"
os.environ["LIFECYCLE_IS_LOCAL"] = "true"

import webdeploy.models  # noqa: E402,F401
from webdeploy.db import Base, SessionLocal, get_engine  # noqa: E402
from webdeploy.models.application import Application  # noqa: E402
from webdeploy.schemas.deployments import HealthProbeResult  # noqa: E402
from webdeploy.services.backup_service import BackupService  # noqa: E402
from webdeploy.services.health_service import HealthService  # noqa: E402
from webdeploy.services.lifecycle import LifecycleController, UnitState  # noqa: E402

# Create all tables
Base.metadata.create_all(get_engine())


@pytest.fixture()
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def content_dir(tmp_path):
    path = tmp_path / "site"
    path.mkdir()
    return path


@pytest.fixture()
def make_application(db_session, content_dir):
    def _make(**overrides) -> Application:
        name = overrides.pop("name", f"App{uuid.uuid4().hex[:8]}")
        fields = dict(
            name=name,
            site_name=f"{name}Site",
            app_pool_name=f"{name}Pool",
            physical_path=str(content_dir),
            health_check_url="http://localhost/health",
            deployment_delay_seconds=0,
        )
        fields.update(overrides)
        app = Application(**fields)
        db_session.add(app)
        db_session.commit()
        db_session.refresh(app)
        return app

    return _make


@pytest.fixture()
def site_controller():
    ctrl = MagicMock(spec=LifecycleController, name="site_controller")
    ctrl.stop.return_value = True
    ctrl.start.return_value = True
    ctrl.get_state.return_value = UnitState.started
    return ctrl


@pytest.fixture()
def pool_controller():
    ctrl = MagicMock(spec=LifecycleController, name="pool_controller")
    ctrl.stop.return_value = True
    ctrl.start.return_value = True
    ctrl.get_state.return_value = UnitState.started
    return ctrl


@pytest.fixture()
def health_service():
    svc = MagicMock(spec=HealthService, name="health_service")
    svc.check.return_value = HealthProbeResult(healthy=True, status_code=200, message="Health check passed")
    return svc


@pytest.fixture()
def backup_service(tmp_path):
    return BackupService(str(tmp_path / "backups"))


def write_files(root, files: dict[str, str]) -> None:
    for rel, content in files.items():
        path = os.path.join(str(root), *rel.split("/"))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(content)


def read_tree(root) -> dict[str, str]:
    tree = {}
    for dirpath, _, filenames in os.walk(str(root)):
        for name in filenames:
            full = os.path.join(dirpath, name)
            rel = os.path.relpath(full, str(root)).replace(os.sep, "/")
            with open(full) as f:
                tree[rel] = f.read()
    return tree


@pytest.fixture()
def make_archive(tmp_path):
    def _make(files: dict[str, str], name: str = "release.zip") -> str:
        archive = tmp_path / "uploads" / name
        archive.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive, "w") as zf:
            for rel, content in files.items():
                zf.writestr(rel, content)
        return str(archive)

    return _make
