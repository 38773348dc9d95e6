"""
Backup Service — Compressed snapshots of application content directories.

Backups are plain zip files laid out as
``{backup_root}/{app}/{app}_{version}_{yyyyMMdd_HHmmss}.zip``; the file
system is the only record of them.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import zipfile
from datetime import UTC, datetime, timedelta

from webdeploy.config import settings
from webdeploy.schemas.deployments import BackupInfo

logger = logging.getLogger(__name__)

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_file_name(value: str) -> str:
    """Strip characters that are not valid in a file name; spaces become underscores."""
    sanitized = _INVALID_FILENAME_CHARS.sub("", value or "").strip().replace(" ", "_")
    return sanitized or "backup"


def _parse_version(stem: str, safe_app: str) -> str:
    """Pull the version out of ``{app}_{version}_{yyyyMMdd}_{HHmmss}``.

    The sanitized app name may itself contain underscores, so the prefix is
    stripped before splitting off the timestamp.
    """
    prefix = f"{safe_app}_"
    if stem.startswith(prefix):
        parts = stem[len(prefix) :].rsplit("_", 2)
        if len(parts) == 3 and parts[0]:
            return parts[0]
    parts = stem.split("_")
    return parts[1] if len(parts) > 1 else "Unknown"


def _file_created_at(path: str) -> datetime:
    # Backup archives are written once, so mtime is their creation time.
    return datetime.fromtimestamp(os.stat(path).st_mtime, tz=UTC)


class BackupService:
    def __init__(self, backup_root: str | None = None):
        self.backup_root = backup_root or settings.backup_root
        os.makedirs(self.backup_root, exist_ok=True)

    def application_dir(self, app_name: str) -> str:
        return os.path.join(self.backup_root, sanitize_file_name(app_name))

    def create_backup(self, source_path: str, app_name: str, version: str) -> str:
        """Zip ``source_path`` and return the archive path.

        Returns an empty string when there is nothing to back up (missing or
        empty source, i.e. a first deployment). Any I/O failure propagates.
        """
        if not source_path or not os.path.isdir(source_path):
            logger.info("Source path does not exist (first deployment), skipping backup: %s", source_path)
            return ""
        with os.scandir(source_path) as entries:
            is_empty = next(entries, None) is None
        if is_empty:
            logger.info("Source path is empty (first deployment), skipping backup: %s", source_path)
            return ""

        safe_app = sanitize_file_name(app_name)
        safe_version = sanitize_file_name(version)
        timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
        backup_dir = self.application_dir(app_name)
        os.makedirs(backup_dir, exist_ok=True)
        backup_file = os.path.abspath(os.path.join(backup_dir, f"{safe_app}_{safe_version}_{timestamp}.zip"))

        try:
            with zipfile.ZipFile(backup_file, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=1) as zf:
                for root, dirs, files in os.walk(source_path):
                    rel_root = os.path.relpath(root, source_path)
                    if rel_root != "." and not dirs and not files:
                        zf.writestr(rel_root.replace(os.sep, "/") + "/", "")
                    for name in files:
                        full = os.path.join(root, name)
                        zf.write(full, os.path.relpath(full, source_path))
        except Exception:
            logger.exception("Failed to create backup for %s", app_name)
            if os.path.exists(backup_file):
                os.remove(backup_file)
            raise

        logger.info("Backup created successfully: %s", backup_file)
        return backup_file

    def restore_backup(self, backup_path: str, destination_path: str) -> bool:
        """Replace the contents of ``destination_path`` with the backup archive."""
        if not backup_path or not os.path.isfile(backup_path):
            logger.error("Backup file not found: %s", backup_path)
            return False

        try:
            if os.path.isdir(destination_path):
                self._clear_directory(destination_path)
            else:
                os.makedirs(destination_path, exist_ok=True)

            with zipfile.ZipFile(backup_path) as zf:
                zf.extractall(destination_path)
        except Exception:
            logger.exception("Failed to restore backup from %s", backup_path)
            return False

        logger.info("Backup restored successfully from %s to %s", backup_path, destination_path)
        return True

    def list_backups(self, app_name: str) -> list[BackupInfo]:
        """List an application's backups, newest first."""
        app_dir = self.application_dir(app_name)
        if not os.path.isdir(app_dir):
            return []
        safe_app = sanitize_file_name(app_name)

        backups: list[BackupInfo] = []
        for entry in os.scandir(app_dir):
            if not entry.is_file() or not entry.name.lower().endswith(".zip"):
                continue
            backups.append(
                BackupInfo(
                    path=entry.path,
                    application_name=app_name,
                    version=_parse_version(os.path.splitext(entry.name)[0], safe_app),
                    created_at=_file_created_at(entry.path),
                    size_bytes=entry.stat().st_size,
                )
            )
        backups.sort(key=lambda b: b.created_at, reverse=True)
        return backups

    def prune_older_than(self, retention_days: int) -> int:
        """Delete backups older than ``retention_days`` across all applications."""
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        deleted = 0
        if not os.path.isdir(self.backup_root):
            return 0

        for app_dir in os.scandir(self.backup_root):
            if not app_dir.is_dir():
                continue
            for entry in os.scandir(app_dir.path):
                if not entry.is_file() or not entry.name.lower().endswith(".zip"):
                    continue
                try:
                    if _file_created_at(entry.path) < cutoff:
                        os.remove(entry.path)
                        deleted += 1
                        logger.info("Deleted old backup: %s", entry.path)
                except OSError:
                    logger.warning("Could not delete backup file: %s", entry.path, exc_info=True)

        logger.info("Backup cleanup completed. Deleted %d old backups", deleted)
        return deleted

    @staticmethod
    def _clear_directory(path: str) -> None:
        with os.scandir(path) as entries:
            children = list(entries)
        for entry in children:
            if entry.is_dir(follow_symlinks=False):
                shutil.rmtree(entry.path)
            else:
                os.remove(entry.path)
