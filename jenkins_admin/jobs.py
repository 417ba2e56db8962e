"""
Job housekeeping: deleting build history and disabling jobs in bulk.
"""

from __future__ import annotations

import logging
import re

import requests

from jenkins_admin import jenkins_api
from jenkins_admin.errors import (
    handle_error,
    handle_error_with_default,
    require_non_empty,
    require_non_null,
    require_positive,
    with_error_handling,
)

logger = logging.getLogger(__name__)

_DEFAULT_BUILD_TOTAL = 100

_API_ERRORS = (requests.HTTPError, ConnectionError, TimeoutError)


class JobCleaner:
    """Delete the newest builds of one job and optionally reset its build number."""

    def __init__(self, job_name: str, reset_build_number: bool = False, build_total: int = _DEFAULT_BUILD_TOTAL):
        self.job_name = require_non_empty(job_name, "Job name")
        self.reset_build_number = reset_build_number
        self.build_total = require_positive(build_total, "buildTotal", _DEFAULT_BUILD_TOTAL)

    def clean(self) -> bool:
        try:
            job = jenkins_api.get_job(self.job_name, build_limit=self.build_total)
        except _API_ERRORS as exc:
            return handle_error_with_default(f"looking up job {self.job_name}", exc, False, logger)

        if job is None:
            logger.warning("Item not found: %s", self.job_name)
            return False
        if jenkins_api.is_folder(job):
            logger.warning("Unsupported job type: %s", self.job_name)
            return False

        try:
            self._delete_builds(job)
            if self.reset_build_number:
                return self._reset_build_number(job)
            return True
        except Exception as exc:
            return handle_error_with_default(f"cleaning project {job['full_name']}", exc, False, logger)

    def _delete_builds(self, job: dict) -> int:
        deleted = 0
        for number in job["builds"]:
            if deleted >= self.build_total:
                break
            try:
                jenkins_api.delete_build(job["full_name"], number)
                deleted += 1
                logger.debug("Deleted build %s for job %s", number, job["full_name"])
            except _API_ERRORS as exc:
                handle_error(f"deleting build {number} for job {job['full_name']}", exc, logger)
        logger.info("Deleted %d builds from job %s", deleted, job["full_name"])
        return deleted

    def _reset_build_number(self, job: dict) -> bool:
        try:
            jenkins_api.set_next_build_number(job["full_name"], 1)
        except _API_ERRORS as exc:
            handle_error(f"resetting build number for job {job['full_name']}", exc, logger)
            return False
        logger.info("Reset build number for job %s", job["full_name"])
        return True


class JobDisabler:
    """Disable jobs selected by name list, regex, or (by default) every buildable job.

    Names take precedence over the pattern. Both match against a job's short
    name or its full folder path.
    """

    def __init__(self) -> None:
        self.job_names: list[str] = []
        self.pattern: re.Pattern | None = None

    def with_job_names(self, job_names: list[str]) -> "JobDisabler":
        self.job_names = list(require_non_null(job_names, "Job names list"))
        return self

    def with_pattern(self, pattern: str) -> "JobDisabler":
        self.pattern = re.compile(require_non_empty(pattern, "Pattern string"))
        return self

    def _has_admin_permission(self) -> bool:
        if jenkins_api.has_admin_permission():
            return True
        logger.error("Operation aborted. User lacks required administrative privileges.")
        return False

    def find_jobs_to_disable(self) -> list[dict]:
        jobs = [j for j in jenkins_api.get_all_jobs() if not jenkins_api.is_folder(j)]
        if self.job_names:
            wanted = set(self.job_names)
            return [j for j in jobs if j["name"] in wanted or j["full_name"] in wanted]
        if self.pattern is not None:
            return [
                j for j in jobs
                if self.pattern.fullmatch(j["name"]) or self.pattern.fullmatch(j["full_name"])
            ]
        return [j for j in jobs if j["buildable"]]

    def disable_jobs(self) -> int:
        if not self._has_admin_permission():
            return 0
        jobs = self.find_jobs_to_disable()
        disabled = sum(1 for job in jobs if self._disable(job["full_name"]))
        logger.info("Disabled %d of %d jobs", disabled, len(jobs))
        return disabled

    def disable_all_jobs(self) -> int:
        return self.disable_jobs()

    def disable_job(self, job_name: str) -> bool:
        if not self._has_admin_permission():
            return False
        try:
            job_name = require_non_empty(job_name, "Job name")
        except ValueError as exc:
            return handle_error_with_default("validating job name", exc, False, logger)

        job = jenkins_api.get_job(job_name, build_limit=0)
        if job is None or jenkins_api.is_folder(job):
            logger.warning("Job not found: %s", job_name)
            return False
        return self._disable(job["full_name"])

    def _disable(self, full_name: str) -> bool:
        def _action() -> bool:
            jenkins_api.disable_job(full_name)
            logger.info("Successfully disabled job: %s", full_name)
            return True

        return with_error_handling(f"disabling job {full_name}", _action, logger, False)
