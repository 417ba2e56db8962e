"""
Cross-provider listing of cloud agents.

Importing this module registers every provider manager with
CloudNodesManager, so the base heuristic is only used for unknown clouds.
"""

from __future__ import annotations

from jenkins_admin.cloud.aws import AWSNodeManager
from jenkins_admin.cloud.azure import AzureNodeManager
from jenkins_admin.cloud.base import ProviderNodesManager
from jenkins_admin.cloud.kubernetes import KubernetesNodeManager
from jenkins_admin.cloud.oracle import OracleCloudNodeManager

PROVIDERS: dict[str, type[ProviderNodesManager]] = {
    "aws": AWSNodeManager,
    "kubernetes": KubernetesNodeManager,
    "azure": AzureNodeManager,
    "oracle": OracleCloudNodeManager,
}


def get_provider(name: str) -> ProviderNodesManager:
    """Instantiate the manager for *name* ('aws', 'kubernetes', 'azure', 'oracle')."""
    key = (name or "").strip().lower()
    if key not in PROVIDERS:
        raise ValueError(f"Unknown cloud provider '{name}'. Choose one of: {', '.join(PROVIDERS)}")
    return PROVIDERS[key]()


def list_cloud_nodes(providers: list[str] | None = None) -> dict[str, tuple[ProviderNodesManager, list[dict]]]:
    """Node info per configured provider.  All providers when *providers* is empty.

    Providers without a configured cloud are left out.
    """
    results = {}
    for name in providers or list(PROVIDERS):
        manager = get_provider(name)
        if manager.is_provider_configured():
            results[name.strip().lower()] = (manager, manager.get_managed_nodes_info())
    return results


def format_cloud_nodes(results: dict[str, tuple[ProviderNodesManager, list[dict]]]) -> str:
    lines: list[str] = []
    total = 0
    for provider, (manager, nodes) in results.items():
        if not nodes:
            lines.append(f"No {provider} nodes found")
            lines.append("")
            continue
        heading = f"{provider.upper()} NODES:"
        lines += [heading, "=" * len(heading)]
        for info in nodes:
            lines.append(manager.format_node_info(info))
            lines.append("-" * 80)
        lines.append(f"Total {provider} nodes: {len(nodes)}")
        lines.append("")
        total += len(nodes)

    if total == 0:
        lines += [
            "No cloud nodes found in this Jenkins instance.",
            "You may need to install and configure cloud provider plugins:",
            "- EC2 Plugin for AWS",
            "- Kubernetes Plugin for Kubernetes",
            "- Azure VM Agents Plugin for Azure",
            "- Oracle Cloud Infrastructure Compute Plugin for Oracle Cloud",
        ]
    else:
        lines.append(f"Total cloud nodes across all providers: {total}")
    return "\n".join(lines)


def format_cloud_stats(stats: dict[str, dict[str, int]]) -> str:
    if not stats:
        return "No cloud nodes found"

    lines = ["Cloud Node Statistics:", "======================"]
    for cloud_type, counts in stats.items():
        lines += [
            f"{cloud_type}:",
            f"  Total: {counts['total']}",
            f"  Online: {counts['online']}",
            f"  Offline: {counts['offline']}",
            "",
        ]
    lines.append(f"Total cloud nodes across all providers: {sum(c['total'] for c in stats.values())}")
    return "\n".join(lines)
