"""
Backup of a controller's JENKINS_HOME configuration.

Works on the local filesystem, so it must run on (or with a mount of) the
controller host.  Backups are named jenkins_backup_<YYYYmmdd_HHMMSS> and are
written either as a .zip archive or as a plain directory copy.
"""

from __future__ import annotations

import logging
import os
import shutil
import zipfile
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILES = [
    "config.xml",
    "credentials.xml",
    "hudson.plugins.git.GitTool.xml",
    "jenkins.model.JenkinsLocationConfiguration.xml",
    "hudson.tasks.Mailer.xml",
    "users/",
    "secrets/",
    "jobs/",
    "nodes/",
    "plugins/",
]

BACKUP_PREFIX = "jenkins_backup_"


def _walk_files(root: str):
    for dirpath, _, filenames in os.walk(root):
        for filename in sorted(filenames):
            yield os.path.join(dirpath, filename)


def _unique_path(base: str, suffix: str) -> str:
    """*base* or *base*_<n>, whichever does not exist yet with *suffix* appended."""
    candidate, n = base, 1
    while os.path.exists(candidate + suffix):
        candidate = f"{base}_{n}"
        n += 1
    return candidate


class JenkinsConfigBackup:
    def __init__(self, jenkins_home: str | None):
        self.jenkins_home = jenkins_home
        self.config_files = list(DEFAULT_CONFIG_FILES)
        self.compress = True

    def with_config_files(self, config_files: list[str]) -> "JenkinsConfigBackup":
        self.config_files = list(config_files)
        return self

    def with_compression(self, compress: bool) -> "JenkinsConfigBackup":
        self.compress = compress
        return self

    def _check_home(self) -> str:
        home = self.jenkins_home
        if not home or not os.path.isdir(home) or not os.access(home, os.R_OK | os.X_OK):
            raise PermissionError(
                f"JENKINS_HOME is not a readable directory: {home!r}. "
                "Set JENKINS_HOME to the controller's home directory."
            )
        return os.path.abspath(home)

    def _sources(self, home: str):
        """Absolute path of every configured entry that exists."""
        real_home = os.path.realpath(home)
        for entry in self.config_files:
            source = os.path.join(home, entry)
            if os.path.commonpath([real_home, os.path.realpath(source)]) != real_home:
                logger.warning("Skipping config entry outside JENKINS_HOME: %s", entry)
                continue
            if not os.path.exists(source):
                logger.warning("Config file or directory not found: %s", source)
                continue
            yield source

    def create_backup(self, backup_dir: str) -> str:
        """Write a new backup under *backup_dir* and return its path."""
        home = self._check_home()
        os.makedirs(backup_dir, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        base = os.path.join(backup_dir, f"{BACKUP_PREFIX}{timestamp}")
        backup_path = _unique_path(base, ".zip" if self.compress else "")
        if self.compress:
            return self._create_compressed(home, backup_path)
        return self._create_uncompressed(home, backup_path)

    def _create_uncompressed(self, home: str, backup_path: str) -> str:
        os.makedirs(backup_path)
        copied = 0
        for source in self._sources(home):
            for path in _walk_files(source) if os.path.isdir(source) else [source]:
                target = os.path.join(backup_path, os.path.relpath(path, home))
                os.makedirs(os.path.dirname(target), exist_ok=True)
                shutil.copy2(path, target)
                copied += 1
        logger.info("Backed up %d files to %s", copied, backup_path)
        return backup_path

    def _create_compressed(self, home: str, backup_path: str) -> str:
        zip_path = backup_path + ".zip"
        copied = 0
        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for source in self._sources(home):
                for path in _walk_files(source) if os.path.isdir(source) else [source]:
                    arcname = os.path.relpath(path, home).replace(os.sep, "/")
                    try:
                        archive.write(path, arcname)
                        copied += 1
                    except OSError as exc:
                        logger.warning("Failed to add file to zip: %s (%s)", path, exc)
        logger.info("Backed up %d files to %s", copied, zip_path)
        return zip_path

    def list_available_backups(self, backup_dir: str) -> list[dict]:
        """Backups in *backup_dir*, newest first."""
        if not os.path.isdir(backup_dir):
            return []

        backups = []
        for name in os.listdir(backup_dir):
            path = os.path.join(backup_dir, name)
            if not name.startswith(BACKUP_PREFIX):
                continue
            is_dir = os.path.isdir(path)
            if not is_dir and not name.endswith(".zip"):
                continue
            size = sum(os.path.getsize(p) for p in _walk_files(path)) if is_dir else os.path.getsize(path)
            backups.append({
                "path": path,
                "name": name,
                "date": datetime.fromtimestamp(os.path.getmtime(path), tz=timezone.utc),
                "size": size,
                "compressed": name.endswith(".zip"),
            })

        # Names embed the creation timestamp; use them to break mtime ties.
        backups.sort(key=lambda b: (b["date"], b["name"]), reverse=True)
        return backups

    def purge_old_backups(self, backup_dir: str, keep_count: int) -> int:
        """Delete all but the newest *keep_count* backups; return how many were deleted."""
        backups = self.list_available_backups(backup_dir)
        keep_count = max(keep_count, 0)
        if len(backups) <= keep_count:
            return 0

        deleted = 0
        for backup in backups[keep_count:]:
            try:
                if os.path.isdir(backup["path"]):
                    shutil.rmtree(backup["path"])
                else:
                    os.remove(backup["path"])
                deleted += 1
                logger.info("Deleted old backup: %s", backup["name"])
            except OSError as exc:
                logger.warning("Failed to delete backup: %s (%s)", backup["path"], exc)
        return deleted
