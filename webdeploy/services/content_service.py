"""
Content Service — locate the deployable root of an extracted archive and
copy it over an application's live content directory.

Copying is file-by-file over the destination tree; it is not atomic.
"""

from __future__ import annotations

import logging
import os
import shutil

from webdeploy.services.exclusion import is_excluded

logger = logging.getLogger(__name__)

WEB_CONTENT_FILES = ("web.config", "appsettings.json", "index.html", "default.aspx", "global.asax")
WEB_CONTENT_FOLDERS = ("bin", "wwwroot", "content", "scripts", "app_data")

# Archives are commonly wrapped in up to two redundant project-named folders.
MAX_WRAPPER_DEPTH = 2


def has_web_content(path: str) -> bool:
    """Check for well-known web content markers, ignoring case."""
    with os.scandir(path) as entries:
        for entry in entries:
            name = entry.name.lower()
            if entry.is_file() and name in WEB_CONTENT_FILES:
                return True
            if entry.is_dir() and name in WEB_CONTENT_FOLDERS:
                return True
    return False


def _subdirectories(path: str) -> list[str]:
    with os.scandir(path) as entries:
        return [entry.path for entry in entries if entry.is_dir()]


def find_content_root(extracted_path: str) -> str:
    """Return the directory inside ``extracted_path`` that holds the site content."""
    if has_web_content(extracted_path):
        return extracted_path

    candidate = extracted_path
    for depth in range(1, MAX_WRAPPER_DEPTH + 1):
        subdirs = _subdirectories(candidate)
        if len(subdirs) != 1:
            break
        candidate = subdirs[0]
        if has_web_content(candidate):
            logger.info("Detected nested archive structure (depth %d), using: %s", depth, candidate)
            return candidate

    logger.warning("No web content detected, using root extraction path: %s", extracted_path)
    return extracted_path


def copy_directory(source_dir: str, dest_dir: str, patterns: list[str] | None = None, _relative: str = "") -> int:
    """Recursively copy ``source_dir`` into ``dest_dir``, overwriting files.

    Entries matching an exclusion pattern (by name, or by path relative to
    the copy root for patterns containing ``/``) are skipped along with
    their whole subtree; whatever already exists at that location in
    ``dest_dir`` is left alone.
    Returns the number of files copied.
    """
    if not os.path.isdir(source_dir):
        raise FileNotFoundError(f"Source directory does not exist: {source_dir}")

    patterns = patterns or []
    os.makedirs(dest_dir, exist_ok=True)

    copied = 0
    with os.scandir(source_dir) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        relative = f"{_relative}/{entry.name}" if _relative else entry.name
        if is_excluded(entry.name, patterns, relative):
            logger.debug("Excluded from deployment: %s", relative)
            continue
        target = os.path.join(dest_dir, entry.name)
        if entry.is_dir():
            copied += copy_directory(entry.path, target, patterns, relative)
        else:
            shutil.copy2(entry.path, target)
            copied += 1
    return copied


def replace_content(extracted_path: str, destination_path: str, patterns: list[str] | None = None) -> int:
    """Copy the detected content root of an extracted archive over ``destination_path``."""
    os.makedirs(destination_path, exist_ok=True)
    source = find_content_root(extracted_path)
    logger.info("Deploying from: %s", source)
    return copy_directory(source, destination_path, patterns)
