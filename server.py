"""
Jenkins Admin MCP Server

A Model Context Protocol server exposing Jenkins administration utilities:
cloud agent management (EC2, Kubernetes, Azure VM Agents, Oracle Cloud),
build-history cleanup, bulk job disabling, agent inspection and launching,
JENKINS_HOME configuration backups, and a security audit.

Transport: Streamable HTTP by default (MCP_TRANSPORT=http, host 0.0.0.0, port 8000).
           Set MCP_TRANSPORT=stdio to use stdio instead (e.g. for Cursor/Claude Desktop).
Logs:      All application logs go to stderr to avoid corrupting the JSON-RPC stream.
"""

import logging
import os
import sys
import time

import requests
from dotenv import load_dotenv
from fastmcp import FastMCP

from jenkins_admin.cloud import listing
from jenkins_admin.cloud.base import CloudNodesManager
from jenkins_admin.config_backup import JenkinsConfigBackup
from jenkins_admin.jobs import JobCleaner, JobDisabler
from jenkins_admin.nodes import ComputerLauncher, SlaveInfoManager
from jenkins_admin.security_audit import JenkinsSecurityAuditor

load_dotenv()

# Route all library and application logs to stderr, never stdout.
logging.basicConfig(
    stream=sys.stderr,
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("jenkins-admin")

TOOL_DELAY = float(os.getenv("TOOL_DELAY_SECONDS", "0"))
JENKINS_HOME = os.getenv("JENKINS_HOME", "")
BACKUP_DIR = os.getenv("JENKINS_BACKUP_DIR", "./backups")

mcp = FastMCP(
    "Jenkins Admin",
    instructions=(
        "You are a Jenkins administration assistant. "
        "Use list_agents and get_agent_info to inspect agents, start_offline_agents to reconnect them. "
        "Use list_cloud_nodes / get_cloud_node_stats for cloud agents, list_cloud_templates before "
        "provision_cloud_agent, and terminate_cloud_agent to remove one. "
        "clean_job deletes build history; disable_jobs disables jobs by name or regex. "
        "backup_jenkins_config, list_config_backups and purge_config_backups manage JENKINS_HOME backups. "
        "audit_security reports security findings by severity. "
        "Destructive tools (terminate, clean, disable, purge) act immediately: confirm with the user first."
    ),
)


def _handle_error(exc: Exception, context: str) -> str:
    """Convert common exceptions into readable strings for the AI."""
    if isinstance(exc, requests.HTTPError):
        status = exc.response.status_code
        if status == 401:
            return f"[{context}] Authentication failed (401). Check JENKINS_USER and JENKINS_TOKEN."
        if status == 403:
            return f"[{context}] Permission denied (403). This operation requires Jenkins Administer permission."
        if status == 404:
            return f"[{context}] Not found (404). Verify the job, agent or cloud name."
        return f"[{context}] Jenkins API error {status}: {exc.response.text[:300]}"
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return f"[{context}] {exc}"
    if isinstance(exc, ValueError):
        return f"[{context}] Invalid argument: {exc}"
    if isinstance(exc, PermissionError):
        return f"[{context}] {exc}"
    return f"[{context}] Unexpected error: {exc}"


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def _format_value(key: str, value, indent: str) -> list[str]:
    if isinstance(value, dict):
        lines = [f"{indent}{key}:"]
        for k, v in value.items():
            lines.extend(_format_value(k, v, indent + "  "))
        return lines
    if isinstance(value, list) and value and isinstance(value[0], dict):
        lines = [f"{indent}{key}:"]
        for item in value:
            entries = list(item.items())
            for i, (k, v) in enumerate(entries):
                prefix = indent + ("  - " if i == 0 else "    ")
                lines.append(f"{prefix}{k}: {v}")
        return lines
    return [f"{indent}{key}: {value}"]


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size} B"


# ---------------------------------------------------------------------------
# Cloud Agent Tools
# ---------------------------------------------------------------------------


@mcp.tool
def list_cloud_nodes(providers: str = "") -> str:
    """List cloud-provisioned agents with provider details (instance IDs, pods, VMs).

    Args:
        providers: Comma-separated subset of aws, kubernetes, azure, oracle (empty = all).
    """
    try:
        results = listing.list_cloud_nodes(_split_csv(providers))
    except Exception as exc:
        return _handle_error(exc, "list_cloud_nodes")
    finally:
        time.sleep(TOOL_DELAY)

    return listing.format_cloud_nodes(results)


@mcp.tool
def get_cloud_node_stats() -> str:
    """Total / online / offline cloud agents per cloud type."""
    try:
        stats = CloudNodesManager().get_cloud_node_stats()
    except Exception as exc:
        return _handle_error(exc, "get_cloud_node_stats")
    finally:
        time.sleep(TOOL_DELAY)

    return listing.format_cloud_stats(stats)


@mcp.tool
def list_cloud_templates(provider: str) -> str:
    """List the agent templates configured for a cloud provider.

    Use the template identifier shown here with provision_cloud_agent.

    Args:
        provider: One of aws, kubernetes, azure, oracle.
    """
    try:
        manager = listing.get_provider(provider)
        if not manager.is_provider_configured():
            return f"No {manager.provider_name} clouds are configured."
        templates = manager.get_resource_templates_info()
    except Exception as exc:
        return _handle_error(exc, "list_cloud_templates")
    finally:
        time.sleep(TOOL_DELAY)

    if not templates:
        return f"No {manager.provider_name} templates found."

    lines = [f"{manager.provider_name} templates ({len(templates)}):", ""]
    for template in templates:
        for key, value in template.items():
            lines.extend(_format_value(key, value, "  "))
        lines.append("")
    return "\n".join(lines)


@mcp.tool
def provision_cloud_agent(provider: str, template: str, cloud_name: str = "") -> str:
    """Ask a cloud to provision one new agent from a template.

    Args:
        provider:   One of aws, kubernetes, azure, oracle.
        template:   Template identifier (EC2 description, pod label, Azure template name, OCI template ID).
        cloud_name: Restrict to the cloud with this name (empty = any cloud of the provider).
    """
    try:
        manager = listing.get_provider(provider)
        ok = manager.provision_new_resource(template, cloud_name or None)
    except Exception as exc:
        return _handle_error(exc, "provision_cloud_agent")
    finally:
        time.sleep(TOOL_DELAY)

    if ok:
        return f"Provisioning initiated for a new {manager.provider_name} agent from template '{template}'."
    return (
        f"Could not provision a {manager.provider_name} agent from template '{template}'. "
        "Check the cloud name and template identifier with list_cloud_templates."
    )


@mcp.tool
def terminate_cloud_agent(provider: str, identifier: str) -> str:
    """Delete a cloud agent; its plugin terminates the backing instance, pod or VM.

    Args:
        provider:   One of aws, kubernetes, azure, oracle.
        identifier: EC2/OCI instance ID, Kubernetes pod name, or Azure agent node name.
    """
    try:
        manager = listing.get_provider(provider)
        ok = manager.terminate_resource(identifier)
    except Exception as exc:
        return _handle_error(exc, "terminate_cloud_agent")
    finally:
        time.sleep(TOOL_DELAY)

    if ok:
        return f"Termination initiated for {manager.provider_name} agent '{identifier}'."
    return f"No {manager.provider_name} agent found for '{identifier}'."


# ---------------------------------------------------------------------------
# Job Tools
# ---------------------------------------------------------------------------


@mcp.tool
def clean_job(job_name: str, reset_build_number: bool = False, build_total: int = 100) -> str:
    """Delete up to build_total builds of a job, newest first.

    Args:
        job_name:           Full job path, e.g. "team/service".
        reset_build_number: Reset the next build number to 1 afterwards (needs the Next Build Number plugin).
        build_total:        Maximum number of builds to delete.
    """
    try:
        ok = JobCleaner(job_name, reset_build_number, build_total).clean()
    except Exception as exc:
        return _handle_error(exc, "clean_job")
    finally:
        time.sleep(TOOL_DELAY)

    if ok:
        suffix = " and reset its build number" if reset_build_number else ""
        return f"Cleaned build history of '{job_name}'{suffix}."
    return f"Could not clean '{job_name}'. The job may not exist or may be a folder; see server logs."


@mcp.tool
def disable_jobs(job_names: str = "", pattern: str = "", all_jobs: bool = False) -> str:
    """Disable jobs by name list or regex (requires Administer).

    Args:
        job_names: Comma-separated short or full job names.
        pattern:   Regex that must fully match a job's short or full name.
        all_jobs:  Set to true to disable every buildable job when no names or pattern are given.
    """
    names = _split_csv(job_names)
    if not names and not pattern and not all_jobs:
        return "Nothing to do: give job_names or pattern, or set all_jobs=true to disable every buildable job."

    try:
        disabler = JobDisabler()
        if names:
            disabler.with_job_names(names)
        if pattern:
            disabler.with_pattern(pattern)
        count = disabler.disable_jobs()
    except Exception as exc:
        return _handle_error(exc, "disable_jobs")
    finally:
        time.sleep(TOOL_DELAY)

    return f"Disabled {count} job(s)."


# ---------------------------------------------------------------------------
# Agent Tools
# ---------------------------------------------------------------------------


@mcp.tool
def list_agents() -> str:
    """List every agent (controller excluded) with configuration and state; EC2 agents include instance details."""
    try:
        manager = SlaveInfoManager()
        agents = manager.list_all_slaves()
    except Exception as exc:
        return _handle_error(exc, "list_agents")
    finally:
        time.sleep(TOOL_DELAY)

    if not agents:
        return "No agents found."
    return f"Jenkins agents ({len(agents)}):\n\n" + "\n".join(manager.format_slave_info(a) for a in agents)


@mcp.tool
def get_agent_info(agent_name: str) -> str:
    """Detailed information about one agent.

    Args:
        agent_name: Agent (node) name.
    """
    try:
        manager = SlaveInfoManager()
        info = manager.get_slave_info(agent_name)
    except Exception as exc:
        return _handle_error(exc, "get_agent_info")
    finally:
        time.sleep(TOOL_DELAY)

    if info is None:
        return f"Agent '{agent_name}' not found."
    return manager.format_slave_info(info)


@mcp.tool
def start_offline_agents(agent_name: str = "") -> str:
    """Launch an offline agent, or every offline agent, and wait up to 60 s for each to connect.

    Args:
        agent_name: Agent to start (empty = all offline agents).
    """
    try:
        launcher = ComputerLauncher()
        if agent_name:
            ok = launcher.start_computer(agent_name)
            result = (
                f"Agent '{agent_name}' is online."
                if ok
                else f"Agent '{agent_name}' was not started (unknown, controller, or still connecting)."
            )
        else:
            result = f"Started {launcher.start_all_offline_computers()} offline agent(s)."
    except Exception as exc:
        return _handle_error(exc, "start_offline_agents")
    finally:
        time.sleep(TOOL_DELAY)

    return result


# ---------------------------------------------------------------------------
# Backup Tools
# ---------------------------------------------------------------------------


@mcp.tool
def backup_jenkins_config(backup_dir: str = "", compress: bool = True, config_files: str = "") -> str:
    """Back up JENKINS_HOME configuration (config.xml, credentials, jobs, nodes, plugins...).

    Args:
        backup_dir:   Destination directory (empty = JENKINS_BACKUP_DIR).
        compress:     Write a .zip archive instead of a directory copy.
        config_files: Comma-separated paths relative to JENKINS_HOME (empty = defaults).
    """
    try:
        backup = JenkinsConfigBackup(JENKINS_HOME).with_compression(compress)
        files = _split_csv(config_files)
        if files:
            backup.with_config_files(files)
        path = backup.create_backup(backup_dir or BACKUP_DIR)
    except Exception as exc:
        return _handle_error(exc, "backup_jenkins_config")

    return f"Backup created: {path}"


@mcp.tool
def list_config_backups(backup_dir: str = "") -> str:
    """List configuration backups, newest first.

    Args:
        backup_dir: Directory to scan (empty = JENKINS_BACKUP_DIR).
    """
    directory = backup_dir or BACKUP_DIR
    try:
        backups = JenkinsConfigBackup(JENKINS_HOME).list_available_backups(directory)
    except Exception as exc:
        return _handle_error(exc, "list_config_backups")

    if not backups:
        return f"No backups found in {directory}."

    lines = [f"Backups in {directory} ({len(backups)}):\n"]
    lines.append(f"  {'Name':<40} {'Date (UTC)':<20} {'Size':>10}  Type")
    lines.append(f"  {'-'*40} {'-'*20} {'-'*10}  {'-'*9}")
    for b in backups:
        kind = "zip" if b["compressed"] else "directory"
        date = b["date"].strftime("%Y-%m-%d %H:%M:%S")
        lines.append(f"  {b['name']:<40} {date:<20} {_format_size(b['size']):>10}  {kind}")
    return "\n".join(lines)


@mcp.tool
def purge_config_backups(keep_count: int, backup_dir: str = "") -> str:
    """Delete all but the newest keep_count backups.

    Args:
        keep_count: Number of most recent backups to keep.
        backup_dir: Directory to purge (empty = JENKINS_BACKUP_DIR).
    """
    try:
        deleted = JenkinsConfigBackup(JENKINS_HOME).purge_old_backups(backup_dir or BACKUP_DIR, keep_count)
    except Exception as exc:
        return _handle_error(exc, "purge_config_backups")

    return f"Deleted {deleted} old backup(s); kept the newest {keep_count}."


# ---------------------------------------------------------------------------
# Security Tool
# ---------------------------------------------------------------------------


@mcp.tool
def audit_security(html_path: str = "") -> str:
    """Audit controller security (realm, authorization, CSRF, plugins, script approvals, agents).

    Args:
        html_path: Also write an HTML report to this file (empty = text only).
    """
    try:
        auditor = JenkinsSecurityAuditor(JENKINS_HOME or None)
        findings = auditor.run_full_audit()
    except Exception as exc:
        return _handle_error(exc, "audit_security")
    finally:
        time.sleep(TOOL_DELAY)

    counts = auditor.summary()
    lines = [
        f"Security audit: {len(findings)} finding(s)",
        "  " + ", ".join(f"{name.title()}: {count}" for name, count in counts.items()),
        "",
    ]
    for finding in sorted(findings, key=lambda f: list(counts).index(f.severity.name)):
        lines.append(f"[{finding.severity.name}] {finding.title} ({finding.category.name})")
        lines.append(f"  {finding.description}")

    if html_path:
        try:
            with open(html_path, "w", encoding="utf-8") as fh:
                fh.write(auditor.generate_html_report())
        except OSError as exc:
            lines.append(f"\nCould not write HTML report to {html_path}: {exc}")
        else:
            lines.append(f"\nHTML report written to {html_path}")

    return "\n".join(lines)


def main() -> None:
    import socket

    transport = os.getenv("MCP_TRANSPORT", "http")
    host = os.getenv("MCP_HOST", "0.0.0.0")
    port = int(os.getenv("MCP_PORT", "8000"))

    if transport == "stdio":
        mcp.run(transport="stdio", show_banner=False)
    else:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as _s:
            try:
                _s.connect(("8.8.8.8", 80))
                external_ip = _s.getsockname()[0]
            except OSError:
                external_ip = "127.0.0.1"

        print(
            f"Jenkins Admin MCP server starting\n"
            f"  Local:    http://127.0.0.1:{port}/mcp\n"
            f"  Network:  http://{external_ip}:{port}/mcp",
            file=sys.stderr,
        )
        mcp.run(transport=transport, host=host, port=port, show_banner=False)


if __name__ == "__main__":
    main()
