"""
Clean wrappers for the Jenkins REST API calls used by the admin tools.

All functions raise meaningful exceptions rather than returning error strings,
so callers (managers and MCP tools) can decide how to surface the failure.
"""

import logging
import os
import time
from urllib.parse import quote

import requests
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_JENKINS_URL = os.environ.get("JENKINS_URL", "").rstrip("/")
_JENKINS_USER = os.environ.get("JENKINS_USER", "")
_JENKINS_TOKEN = os.environ.get("JENKINS_TOKEN", "")

_MISSING = [k for k, v in {
    "JENKINS_URL": _JENKINS_URL,
    "JENKINS_USER": _JENKINS_USER,
    "JENKINS_TOKEN": _JENKINS_TOKEN,
}.items() if not v]

if _MISSING:
    raise EnvironmentError(
        f"Missing required environment variables: {', '.join(_MISSING)}. "
        "Copy .env.example to .env and fill in your credentials."
    )

_AUTH = (_JENKINS_USER, _JENKINS_TOKEN)
_TIMEOUT = 30

_VERIFY_SSL = os.environ.get("JENKINS_VERIFY_SSL", "true").lower() not in ("false", "0", "no")

if not _VERIFY_SSL:
    import urllib3
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

_UPDATE_CENTER_URL = os.environ.get(
    "JENKINS_UPDATE_CENTER_URL",
    "https://updates.jenkins.io/update-center.actual.json",
)

_RETRYABLE_STATUSES = {429, 502, 503, 504}
_MAX_RETRIES = 2
_RETRY_DELAYS = (1, 3)  # seconds between retry 0→1 and 1→2

_MAX_JOB_DEPTH = 10
_CONTROLLER_NAMES = frozenset({"master", "built-in", "(built-in)", "(master)"})


def jenkins_url() -> str:
    return _JENKINS_URL


def _get(path: str, **kwargs) -> requests.Response:
    """HTTP GET with bounded retry for transient failures (429/502/503/504)."""
    url = f"{_JENKINS_URL}{path}"
    for attempt in range(_MAX_RETRIES + 1):
        try:
            response = requests.get(
                url, auth=_AUTH, timeout=_TIMEOUT, verify=_VERIFY_SSL, **kwargs,
            )
            if response.status_code in _RETRYABLE_STATUSES and attempt < _MAX_RETRIES:
                time.sleep(_RETRY_DELAYS[attempt])
                continue
            response.raise_for_status()
            return response
        except requests.HTTPError as exc:
            logger.debug("Jenkins HTTP %s for %s", exc.response.status_code, url)
            raise
        except requests.ConnectionError:
            if attempt < _MAX_RETRIES:
                time.sleep(_RETRY_DELAYS[attempt])
                continue
            raise ConnectionError(
                f"Cannot reach Jenkins at {_JENKINS_URL}. "
                "Verify the server is running and JENKINS_URL is correct."
            )
        except requests.Timeout:
            if attempt < _MAX_RETRIES:
                time.sleep(_RETRY_DELAYS[attempt])
                continue
            raise TimeoutError(
                f"Jenkins did not respond within {_TIMEOUT} seconds ({url})."
            )
    raise RuntimeError(f"Exhausted retries for {url}")


def _crumb_header() -> dict:
    """Fetch a CSRF crumb.  Returns {} when the crumb issuer is disabled."""
    try:
        data = _get("/crumbIssuer/api/json").json()
    except requests.HTTPError as exc:
        if exc.response.status_code == 404:
            return {}
        raise
    field = data.get("crumbRequestField")
    crumb = data.get("crumb")
    if not field or not crumb:
        return {}
    return {field: crumb}


def _post(path: str, data: dict | None = None, params: dict | None = None) -> requests.Response:
    """HTTP POST to a Jenkins action URL.  Not retried: actions are not idempotent."""
    url = f"{_JENKINS_URL}{path}"
    try:
        response = requests.post(
            url, auth=_AUTH, timeout=_TIMEOUT, verify=_VERIFY_SSL,
            headers=_crumb_header(), data=data, params=params,
        )
        response.raise_for_status()
        return response
    except requests.HTTPError as exc:
        logger.debug("Jenkins HTTP %s for POST %s", exc.response.status_code, url)
        raise
    except requests.ConnectionError:
        raise ConnectionError(
            f"Cannot reach Jenkins at {_JENKINS_URL}. "
            "Verify the server is running and JENKINS_URL is correct."
        )
    except requests.Timeout:
        raise TimeoutError(
            f"Jenkins did not respond within {_TIMEOUT} seconds ({url})."
        )


def _job_path(job_name: str) -> str:
    """Convert a slash-separated job name into a Jenkins API path segment.

    'my-org/my-repo/main' -> '/job/my-org/job/my-repo/job/main'
    """
    segments = [quote(seg, safe="") for seg in job_name.split("/")]
    return "/job/" + "/job/".join(segments)


def _computer_path(node_name: str) -> str:
    """'master' / 'built-in' map to the controller computer."""
    if node_name.lower() in _CONTROLLER_NAMES:
        return "/computer/(built-in)"
    return f"/computer/{quote(node_name, safe='')}"


def is_controller(computer: dict) -> bool:
    """True for the built-in controller computer entry of /computer/api/json."""
    cls = computer.get("_class", "")
    if cls.endswith("$MasterComputer"):
        return True
    return (computer.get("displayName") or "").lower() in _CONTROLLER_NAMES


# ---------------------------------------------------------------------------
# Controller configuration
# ---------------------------------------------------------------------------


def get_controller_config_xml() -> str:
    """Fetch the controller's config.xml (clouds, security realm, strategy).

    Requires Administer; a 403 here means the credentials are not admin.
    """
    response = _get("/config.xml")
    response.encoding = "utf-8"
    return response.text


def has_admin_permission() -> bool:
    try:
        _get("/config.xml")
    except requests.HTTPError as exc:
        if exc.response.status_code in (401, 403):
            return False
        raise
    return True


# ---------------------------------------------------------------------------
# Computers / nodes
# ---------------------------------------------------------------------------

_COMPUTER_FIELDS = (
    "_class,displayName,description,numExecutors,offline,temporarilyOffline,"
    "offlineCauseReason,idle,connectTime,assignedLabels[name]"
)


def _prune_computer(c: dict) -> dict:
    return {
        "_class": c.get("_class", ""),
        "displayName": c.get("displayName", ""),
        "description": c.get("description") or "",
        "numExecutors": c.get("numExecutors", 0),
        "offline": c.get("offline", True),
        "temporarilyOffline": c.get("temporarilyOffline", False),
        "offlineCauseReason": c.get("offlineCauseReason") or None,
        "idle": c.get("idle", False),
        "connectTime": c.get("connectTime") or 0,
        "labels": [
            lbl.get("name", "")
            for lbl in (c.get("assignedLabels") or [])
            if lbl.get("name")
        ],
    }


def get_computers() -> list[dict]:
    """List every computer (controller included) with runtime state."""
    path = f"/computer/api/json?tree=computer[{_COMPUTER_FIELDS}]"
    data = _get(path).json()
    return [_prune_computer(c) for c in data.get("computer") or []]


def get_computer(node_name: str) -> dict | None:
    """Fetch one computer's runtime state.  None when the node does not exist."""
    path = f"{_computer_path(node_name)}/api/json?tree={_COMPUTER_FIELDS}"
    try:
        data = _get(path).json()
    except requests.HTTPError as exc:
        if exc.response.status_code == 404:
            return None
        raise
    return _prune_computer(data)


def get_node_config_xml(node_name: str) -> str | None:
    """Fetch an agent's config.xml.  None when the node does not exist."""
    try:
        response = _get(f"{_computer_path(node_name)}/config.xml")
    except requests.HTTPError as exc:
        if exc.response.status_code == 404:
            return None
        raise
    response.encoding = "utf-8"
    return response.text


def launch_agent(node_name: str) -> None:
    _post(f"{_computer_path(node_name)}/launchSlaveAgent")


def delete_node(node_name: str) -> None:
    """Delete an agent.  Cloud plugins terminate the backing instance/pod."""
    _post(f"{_computer_path(node_name)}/doDelete")


def provision_from_cloud(cloud_name: str, template: str) -> None:
    """Ask a cloud to provision one agent from the named template."""
    _post(f"/cloud/{quote(cloud_name, safe='')}/provision", params={"template": template})


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


FOLDER_CLASSES = frozenset({
    "com.cloudbees.hudson.plugins.folder.Folder",
    "jenkins.branch.OrganizationFolder",
    "org.jenkinsci.plugins.workflow.multibranch.WorkflowMultiBranchProject",
})


def is_folder(item: dict) -> bool:
    return item.get("_class", "") in FOLDER_CLASSES


def _jobs_tree(depth: int) -> str:
    tree = "name,fullName,url,buildable,_class"
    for _ in range(depth):
        tree = f"name,fullName,url,buildable,_class,jobs[{tree}]"
    return f"jobs[{tree}]"


def get_all_jobs() -> list[dict]:
    """Flatten every job in every folder into one list.

    Folders are included (with buildable=False) so callers can tell them apart.
    """
    data = _get(f"/api/json?tree={_jobs_tree(_MAX_JOB_DEPTH)}").json()

    jobs: list[dict] = []
    stack = list(reversed(data.get("jobs") or []))
    while stack:
        j = stack.pop()
        jobs.append({
            "name": j.get("name", ""),
            "full_name": j.get("fullName") or j.get("name", ""),
            "_class": j.get("_class", ""),
            "buildable": bool(j.get("buildable", False)),
            "url": j.get("url", ""),
        })
        stack.extend(reversed(j.get("jobs") or []))
    return jobs


def get_job(job_name: str, build_limit: int | None = None) -> dict | None:
    """Fetch a job with its build numbers (newest first).  None on 404.

    Uses allBuilds: the plain builds list is capped at 100 by Jenkins.
    """
    builds = "allBuilds[number]" if build_limit is None else f"allBuilds[number]{{0,{build_limit}}}"
    tree = f"name,fullName,_class,buildable,nextBuildNumber,{builds}"
    try:
        data = _get(f"{_job_path(job_name)}/api/json?tree={tree}").json()
    except requests.HTTPError as exc:
        if exc.response.status_code == 404:
            return None
        raise
    return {
        "name": data.get("name", ""),
        "full_name": data.get("fullName") or job_name,
        "_class": data.get("_class", ""),
        "buildable": bool(data.get("buildable", False)),
        "next_build_number": data.get("nextBuildNumber"),
        "builds": [b["number"] for b in data.get("allBuilds") or [] if "number" in b],
    }


def delete_build(job_name: str, build_number: int) -> None:
    _post(f"{_job_path(job_name)}/{build_number}/doDelete")


def set_next_build_number(job_name: str, number: int) -> None:
    """Requires the Next Build Number plugin on the controller."""
    _post(f"{_job_path(job_name)}/nextbuildnumber/submit", data={"nextBuildNumber": str(number)})


def disable_job(job_name: str) -> None:
    _post(f"{_job_path(job_name)}/disable")


# ---------------------------------------------------------------------------
# Security inputs
# ---------------------------------------------------------------------------


def get_plugins() -> list[dict]:
    tree = "plugins[shortName,longName,version,active,enabled,hasUpdate]"
    data = _get(f"/pluginManager/api/json?tree={tree}").json()
    return [
        {
            "short_name": p.get("shortName", ""),
            "long_name": p.get("longName") or p.get("shortName", ""),
            "version": p.get("version", ""),
            "active": p.get("active", False),
            "enabled": p.get("enabled", False),
            "has_update": p.get("hasUpdate", False),
        }
        for p in data.get("plugins") or []
    ]


def get_users() -> list[dict]:
    data = _get("/asynchPeople/api/json?tree=users[user[id,fullName]]").json()
    users = []
    for entry in data.get("users") or []:
        user = entry.get("user") or {}
        if user.get("id"):
            users.append({"id": user["id"], "full_name": user.get("fullName") or user["id"]})
    return users


def get_update_center_warnings() -> list[dict]:
    """Fetch published security warnings.  Returns [] if the update center is unreachable."""
    try:
        response = requests.get(_UPDATE_CENTER_URL, timeout=_TIMEOUT)
        response.raise_for_status()
        return response.json().get("warnings") or []
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Could not fetch update-center warnings: %s", exc)
        return []


def check_anonymous_access(path: str) -> int | None:
    """Status code of an unauthenticated GET, None if Jenkins is unreachable."""
    url = f"{_JENKINS_URL}{path}"
    try:
        response = requests.get(url, timeout=_TIMEOUT, verify=_VERIFY_SSL, allow_redirects=False)
    except requests.RequestException as exc:
        logger.debug("Anonymous probe of %s failed: %s", url, exc)
        return None
    return response.status_code
