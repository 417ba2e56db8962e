"""
Security audit of a Jenkins controller.

Each check inspects one area (realm, authorization strategy, CSRF, plugins,
script approvals, agent protocols, credentials) and records findings.  Inputs
come from the controller config.xml, the plugin manager, the people directory,
unauthenticated probes, the update-center warnings feed and, when
JENKINS_HOME is available locally, scriptApproval.xml.
"""

from __future__ import annotations

import html
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from jenkins_admin import config_xml, jenkins_api

logger = logging.getLogger(__name__)

_ADMINISTER = "hudson.model.Hudson.Administer"
_ALL_USERS_SIDS = frozenset({"authenticated"})
_INSECURE_PROTOCOLS = ("JNLP-connect", "JNLP2-connect")
_DANGEROUS_SIGNATURES = (
    "java.lang.Runtime.exec",
    "java.lang.ProcessBuilder",
    "jenkins.model.Jenkins.getInstance",
    "hudson.model.Hudson.getInstance",
    "java.io.File.delete",
    "java.net.URLClassLoader",
)
_MAX_SCRIPT_APPROVALS = 50
_MAX_ADMINS = 5

_SIGNATURE_MEMBER_KINDS = ("method", "staticMethod", "field", "staticField")


class FindingCategory(Enum):
    AUTHENTICATION = "AUTHENTICATION"
    AUTHORIZATION = "AUTHORIZATION"
    CSRF = "CSRF"
    PLUGIN = "PLUGIN"
    SCRIPT_SECURITY = "SCRIPT_SECURITY"
    CONFIGURATION = "CONFIGURATION"
    NETWORK = "NETWORK"
    CREDENTIALS = "CREDENTIALS"


class FindingSeverity(Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"


_SECTION_TITLES = {
    FindingSeverity.CRITICAL: "Critical Findings",
    FindingSeverity.HIGH: "High Findings",
    FindingSeverity.MEDIUM: "Medium Findings",
    FindingSeverity.LOW: "Low Findings",
    FindingSeverity.INFO: "Informational Findings",
}


@dataclass
class SecurityFinding:
    category: FindingCategory
    severity: FindingSeverity
    title: str
    description: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _dotted_signature(signature: str) -> str:
    """'method java.lang.Runtime exec java.lang.String' -> 'java.lang.Runtime.exec java.lang.String'."""
    parts = signature.split()
    if len(parts) >= 3 and parts[0] in _SIGNATURE_MEMBER_KINDS:
        return " ".join([f"{parts[1]}.{parts[2]}", *parts[3:]])
    if len(parts) >= 2 and parts[0] == "new":
        return " ".join(parts[1:])
    return signature


def _version_matches(version: str, warning: dict) -> bool:
    for entry in warning.get("versions") or []:
        pattern = entry.get("pattern")
        if not pattern:
            continue
        try:
            if re.fullmatch(pattern, version):
                return True
        except re.error:
            logger.debug("Ignoring invalid warning pattern %r", pattern)
    return False


class JenkinsSecurityAuditor:
    def __init__(self, jenkins_home: str | None = None):
        self.jenkins_home = jenkins_home
        self.findings: list[SecurityFinding] = []
        self._config: dict | None = None
        self._plugins: list[dict] | None = None
        self._users: list[dict] | None = None

    # -- inputs ----------------------------------------------------------------

    def _controller_config(self) -> dict:
        if self._config is None:
            parsed = config_xml.parse_controller_config(jenkins_api.get_controller_config_xml())
            if parsed is None:
                raise ValueError("Controller config.xml could not be parsed")
            self._config = parsed
        return self._config

    def _installed_plugins(self) -> list[dict]:
        if self._plugins is None:
            self._plugins = jenkins_api.get_plugins()
        return self._plugins

    def _all_users(self) -> list[dict]:
        if self._users is None:
            self._users = jenkins_api.get_users()
        return self._users

    def _has_plugin(self, short_name: str) -> bool:
        return any(p["short_name"] == short_name for p in self._installed_plugins())

    def _approved_signatures(self) -> list[str] | None:
        """Approved script signatures, or None when scriptApproval.xml is not readable."""
        if not self.jenkins_home:
            return None
        path = os.path.join(self.jenkins_home, "scriptApproval.xml")
        try:
            with open(path, encoding="utf-8") as fh:
                content = fh.read()
        except OSError as exc:
            logger.debug("Could not check script approvals: %s", exc)
            return None
        return config_xml.parse_script_approvals(content)

    # -- audit -------------------------------------------------------------------

    def add_finding(self, category: FindingCategory, severity: FindingSeverity, title: str, description: str) -> None:
        self.findings.append(SecurityFinding(category, severity, title, description))

    def run_full_audit(self) -> list[SecurityFinding]:
        self.findings = []
        self._config = self._plugins = self._users = None

        self.check_authentication_settings()
        self.check_authorization_settings()
        self.check_user_permissions()
        self.check_csrf_protection()
        self.check_plugin_security()
        self.check_script_security()
        self.check_agent_security()
        self.check_credential_security()
        return self.findings

    def check_authentication_settings(self) -> None:
        config = self._controller_config()
        realm = config["security_realm"]

        if not config["use_security"] or not realm or "None" in realm:
            self.add_finding(
                FindingCategory.AUTHENTICATION, FindingSeverity.CRITICAL,
                "Security Disabled",
                "Jenkins security is disabled. Anyone can access and modify Jenkins without authentication.",
            )
        elif "HudsonPrivateSecurityRealm" in realm and len(self._all_users()) < 2:
            self.add_finding(
                FindingCategory.AUTHENTICATION, FindingSeverity.MEDIUM,
                "Limited User Accounts",
                "Only a single user account detected. Consider creating additional accounts for accountability.",
            )

        if config["use_security"] and config["slave_agent_port"] == 0:
            self.add_finding(
                FindingCategory.AUTHENTICATION, FindingSeverity.HIGH,
                "JNLP Port Not Fixed",
                "JNLP port for agent connections is not fixed. This could allow unauthorized agents to connect.",
            )

    def check_authorization_settings(self) -> None:
        strategy = self._controller_config()["authorization_strategy"]

        if not strategy or strategy.endswith("$Unsecured"):
            self.add_finding(
                FindingCategory.AUTHORIZATION, FindingSeverity.CRITICAL,
                "Unsecured Authorization",
                "Jenkins is using the Unsecured authorization strategy. Anyone can do anything.",
            )
        elif "FullControlOnceLoggedInAuthorizationStrategy" in strategy:
            self.add_finding(
                FindingCategory.AUTHORIZATION, FindingSeverity.HIGH,
                "Logged-in Users Have Full Access",
                "Any logged-in user has full administrator access.",
            )
        elif "LegacyAuthorizationStrategy" in strategy:
            self.add_finding(
                FindingCategory.AUTHORIZATION, FindingSeverity.HIGH,
                "Legacy Authorization Strategy",
                "Using legacy authorization strategy which grants unnecessary permissions.",
            )

    def count_admins(self) -> int:
        config = self._controller_config()
        strategy = config["authorization_strategy"]
        users = self._all_users()

        if not strategy or strategy.endswith("$Unsecured") or "FullControlOnceLoggedIn" in strategy:
            return len(users)

        admins: set[str] = set()
        for grant in config["permissions"]:
            parts = grant.split(":")
            # "USER:perm:sid" (typed) or "perm:sid" (legacy)
            perm, sid = (parts[1], parts[2]) if len(parts) >= 3 else (parts[0], parts[-1])
            if perm != _ADMINISTER or sid == "anonymous":
                continue
            if sid in _ALL_USERS_SIDS:
                return len(users)
            admins.add(sid)
        return len(admins)

    def check_user_permissions(self) -> None:
        if jenkins_api.check_anonymous_access("/config.xml") == 200:
            self.add_finding(
                FindingCategory.AUTHORIZATION, FindingSeverity.CRITICAL,
                "Anonymous Admin Access",
                "Anonymous users have administrator permissions.",
            )
        elif jenkins_api.check_anonymous_access("/api/json") == 200:
            self.add_finding(
                FindingCategory.AUTHORIZATION, FindingSeverity.MEDIUM,
                "Anonymous Read Access",
                "Anonymous users have read access to Jenkins. Consider restricting to authenticated users only.",
            )

        admin_count = self.count_admins()
        if admin_count == 0:
            self.add_finding(
                FindingCategory.AUTHORIZATION, FindingSeverity.HIGH,
                "No Admin Users",
                "No administrative users found. Jenkins administration may be inaccessible.",
            )
        elif admin_count > _MAX_ADMINS:
            self.add_finding(
                FindingCategory.AUTHORIZATION, FindingSeverity.LOW,
                "Excessive Admin Users",
                f"Found {admin_count} admin users. Consider reducing the number of administrative accounts.",
            )

    def check_csrf_protection(self) -> None:
        if not self._controller_config()["crumb_issuer"]:
            self.add_finding(
                FindingCategory.CSRF, FindingSeverity.HIGH,
                "CSRF Protection Disabled",
                "Cross-Site Request Forgery (CSRF) protection is disabled.",
            )

    def check_plugin_security(self) -> None:
        try:
            plugins = self._installed_plugins()
            warnings = [w for w in jenkins_api.get_update_center_warnings() if w.get("type") == "plugin"]
        except Exception as exc:
            logger.warning("Failed to check plugin updates: %s", exc)
            return

        for plugin in plugins:
            if not plugin["has_update"]:
                continue
            vulnerable = any(
                w.get("name") == plugin["short_name"] and _version_matches(plugin["version"], w)
                for w in warnings
            )
            self.add_finding(
                FindingCategory.PLUGIN,
                FindingSeverity.HIGH if vulnerable else FindingSeverity.MEDIUM,
                f"Outdated Plugin: {plugin['long_name']}",
                f"Plugin {plugin['long_name']} is outdated (installed {plugin['version']})"
                + (" and has security vulnerabilities." if vulnerable else "."),
            )

    def check_script_security(self) -> None:
        if not self._has_plugin("script-security"):
            self.add_finding(
                FindingCategory.SCRIPT_SECURITY, FindingSeverity.HIGH,
                "Script Security Plugin Missing",
                "Script Security Plugin is not installed, which is crucial for securing Groovy scripts.",
            )

        signatures = self._approved_signatures()
        if signatures is None:
            return

        candidates = [(s, _dotted_signature(s)) for s in signatures]
        for pattern in _DANGEROUS_SIGNATURES:
            if any(pattern in raw or pattern in dotted for raw, dotted in candidates):
                self.add_finding(
                    FindingCategory.SCRIPT_SECURITY, FindingSeverity.HIGH,
                    "Dangerous Script Approval",
                    f"Potentially dangerous script signature approved: {pattern}",
                )

        if len(signatures) > _MAX_SCRIPT_APPROVALS:
            self.add_finding(
                FindingCategory.SCRIPT_SECURITY, FindingSeverity.MEDIUM,
                "Excessive Script Approvals",
                f"{len(signatures)} script signatures approved. Consider reviewing the list.",
            )

    def check_agent_security(self) -> None:
        config = self._controller_config()
        for protocol in _INSECURE_PROTOCOLS:
            if protocol in config["enabled_agent_protocols"]:
                self.add_finding(
                    FindingCategory.NETWORK, FindingSeverity.HIGH,
                    "Insecure Agent Protocol",
                    f"Insecure agent protocol enabled: {protocol}. Consider using JNLP4 instead.",
                )

        port = config["slave_agent_port"]
        if port > 0:
            self.add_finding(
                FindingCategory.NETWORK, FindingSeverity.MEDIUM,
                "Agent Port Configuration",
                f"Agent port ({port}) is open but not enforced. "
                "Consider using a specific port or disabling it if not needed.",
            )

    def check_credential_security(self) -> None:
        if not self._has_plugin("credentials"):
            self.add_finding(
                FindingCategory.CREDENTIALS, FindingSeverity.MEDIUM,
                "Credentials Plugin Missing",
                "Credentials Plugin is not installed, which is recommended for securely storing secrets.",
            )

    # -- reporting ---------------------------------------------------------------

    def summary(self) -> dict[str, int]:
        counts = {severity.name: 0 for severity in FindingSeverity}
        for finding in self.findings:
            counts[finding.severity.name] += 1
        return counts

    def generate_html_report(self) -> str:
        counts = self.summary()
        generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        parts = [
            "<html>",
            "<head>",
            "<title>Jenkins Security Audit Report</title>",
            "<style>",
            "body { font-family: Arial, sans-serif; margin: 20px; }",
            "h1 { color: #333; }",
            "h2 { color: #666; margin-top: 30px; }",
            ".summary { margin: 20px 0; }",
            ".finding { border: 1px solid #ddd; padding: 10px; margin-bottom: 10px; border-radius: 5px; }",
            ".critical { border-left: 5px solid #d9534f; }",
            ".high { border-left: 5px solid #f0ad4e; }",
            ".medium { border-left: 5px solid #5bc0de; }",
            ".low { border-left: 5px solid #5cb85c; }",
            ".info { border-left: 5px solid #5bc0de; }",
            ".finding-title { font-weight: bold; margin-bottom: 5px; }",
            ".finding-meta { color: #666; font-size: 0.9em; margin-bottom: 5px; }",
            ".finding-desc { margin-top: 5px; }",
            "</style>",
            "</head>",
            "<body>",
            "<h1>Jenkins Security Audit Report</h1>",
            f"<p>Generated on {generated} UTC</p>",
            '<div class="summary">',
            "<h2>Summary</h2>",
            f"<p>Found {len(self.findings)} security issues:</p>",
            "<ul>",
            f"<li>Critical: {counts['CRITICAL']}</li>",
            f"<li>High: {counts['HIGH']}</li>",
            f"<li>Medium: {counts['MEDIUM']}</li>",
            f"<li>Low: {counts['LOW']}</li>",
            f"<li>Info: {counts['INFO']}</li>",
            "</ul>",
            "</div>",
        ]

        for severity in FindingSeverity:
            matching = [f for f in self.findings if f.severity is severity]
            if not matching:
                continue
            parts.append(f"<h2>{_SECTION_TITLES[severity]}</h2>")
            css = severity.name.lower()
            for finding in matching:
                parts += [
                    f'<div class="finding {css}">',
                    f'<div class="finding-title">{html.escape(finding.title)}</div>',
                    f'<div class="finding-meta">Category: {finding.category.name}</div>',
                    f'<div class="finding-desc">{html.escape(finding.description)}</div>',
                    "</div>",
                ]

        parts.append("</body></html>")
        return "\n".join(parts)
