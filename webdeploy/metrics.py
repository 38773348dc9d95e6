from prometheus_client import Counter, Gauge, Histogram

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)

DEPLOYMENTS_TOTAL = Counter(
    "webdeploy_deployments_total",
    "Total deployments per application",
    ["application", "status"],
)
ROLLBACKS_TOTAL = Counter(
    "webdeploy_rollbacks_total",
    "Total rollbacks per application",
    ["application", "status"],
)
BACKUP_LAST_SUCCESS = Gauge(
    "webdeploy_backup_last_success_timestamp",
    "Last successful content backup time (unix timestamp)",
    ["application"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)


def record_deployment(application: str, success: bool) -> None:
    DEPLOYMENTS_TOTAL.labels(application=application, status="success" if success else "failed").inc()


def record_rollback(application: str, success: bool) -> None:
    ROLLBACKS_TOTAL.labels(application=application, status="success" if success else "failed").inc()


def record_backup(application: str, timestamp: float) -> None:
    BACKUP_LAST_SUCCESS.labels(application=application).set(timestamp)
