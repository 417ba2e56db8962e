"""
Common functionality for cloud-provisioned Jenkins agents.

Runtime state comes from /computer/api/json; plugin detail (instance IDs,
pod names, resource groups) comes from each agent's config.xml; cloud and
template definitions come from the controller config.xml.  Provider
subclasses register themselves so the base manager can route a cloud class
to exact computer-class matching instead of the name heuristic.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from jenkins_admin import config_xml, jenkins_api
from jenkins_admin.errors import require_non_empty, require_non_null, with_error_handling

logger = logging.getLogger(__name__)

_RANDOM_SUFFIX_RE = re.compile(r".*-[a-z0-9]{8}$")
_FETCH_WORKERS = 8


def simple_class_name(java_class: str) -> str:
    return java_class.rsplit(".", 1)[-1] if java_class else ""


def format_millis(ms) -> str | None:
    """Epoch millis -> 'YYYY-MM-DD HH:MM' (UTC)."""
    try:
        ms = int(ms)
    except (TypeError, ValueError):
        return None
    if ms <= 0:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def pick(sources: list[dict], *keys: str, default=None):
    """First non-empty value for any of *keys* across *sources*, in order."""
    for source in sources:
        if not source:
            continue
        for key in keys:
            value = source.get(key)
            if value not in (None, ""):
                return value
    return default


class CloudNodesManager:
    """Cloud agents across every configured provider.

    Subclasses set ``cloud_class_markers`` (substrings of the cloud's XML
    element name) and ``computer_classes`` (exact computer ``_class`` values).
    """

    provider_name = "Cloud"
    cloud_class_markers: tuple[str, ...] = ()
    computer_classes: tuple[str, ...] = ()

    _providers: list[type["CloudNodesManager"]] = []

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if cls.cloud_class_markers:
            CloudNodesManager._providers.append(cls)

    def __init__(self) -> None:
        self.jenkins_url = jenkins_api.jenkins_url().strip()
        if not self.jenkins_url:
            logger.warning(
                "Jenkins URL is not configured. Cloud agents may not be able to connect back to Jenkins."
            )
        self._controller: dict | None = None
        self._computers: list[dict] | None = None
        self._node_configs: dict[str, dict | None] = {}

    # -- shared lookups ----------------------------------------------------

    def _controller_config(self) -> dict:
        if self._controller is None:
            parsed = config_xml.parse_controller_config(jenkins_api.get_controller_config_xml())
            self._controller = parsed or {"clouds": []}
        return self._controller

    def _all_computers(self) -> list[dict]:
        if self._computers is None:
            self._computers = [
                c for c in jenkins_api.get_computers() if not jenkins_api.is_controller(c)
            ]
        return self._computers

    def node_config(self, node_name: str) -> dict | None:
        if node_name not in self._node_configs:
            self._node_configs[node_name] = with_error_handling(
                f"reading config of node {node_name}",
                lambda: config_xml.parse_node_config(jenkins_api.get_node_config_xml(node_name) or ""),
                logger,
                None,
            )
        return self._node_configs[node_name]

    def prefetch_node_configs(self, node_names: list[str]) -> None:
        missing = [n for n in node_names if n not in self._node_configs]
        if len(missing) < 2:
            return
        with ThreadPoolExecutor(max_workers=_FETCH_WORKERS) as executor:
            list(executor.map(self.node_config, missing))

    def find_computer(self, node_name: str) -> dict | None:
        for computer in self._all_computers():
            if computer["displayName"] == node_name:
                return computer
        return None

    # -- clouds --------------------------------------------------------------

    def get_configured_clouds(self) -> list[dict]:
        return with_error_handling(
            "retrieving configured clouds",
            lambda: list(self._controller_config().get("clouds") or []),
            logger,
            [],
        )

    @staticmethod
    def _cloud_matches(cloud: dict, cloud_class: str) -> bool:
        cls = cloud.get("class", "")
        return cls == cloud_class or simple_class_name(cls) == simple_class_name(cloud_class)

    def is_cloud_configured(self, cloud_class: str) -> bool:
        return with_error_handling(
            "checking for configured cloud type",
            lambda: any(self._cloud_matches(c, cloud_class) for c in self.get_configured_clouds()),
            logger,
            False,
        )

    @classmethod
    def handles_cloud_class(cls, cloud_class: str) -> bool:
        return any(marker in cloud_class for marker in cls.cloud_class_markers)

    def get_cloud_nodes(self, cloud_class: str) -> list[dict]:
        """Computers managed by clouds of *cloud_class*.

        Known providers match on computer class; anything else falls back to
        a naming heuristic.
        """
        for provider in CloudNodesManager._providers:
            if provider.handles_cloud_class(cloud_class):
                return with_error_handling(
                    "retrieving cloud nodes",
                    lambda: [c for c in self._all_computers() if c["_class"] in provider.computer_classes],
                    logger,
                    [],
                )

        def _heuristic() -> list[dict]:
            nodes = []
            for c in self._all_computers():
                name = c["displayName"]
                if (
                    "cloud" in name.lower()
                    or _RANDOM_SUFFIX_RE.match(name)
                    or any("cloud" in lbl.lower() for lbl in c["labels"])
                    or "cloud" in c["_class"].lower()
                ):
                    nodes.append(c)
            return nodes

        return with_error_handling("retrieving cloud nodes", _heuristic, logger, [])

    def get_all_cloud_nodes(self) -> dict[str, list[dict]]:
        def _collect() -> dict[str, list[dict]]:
            result: dict[str, list[dict]] = {}
            for cloud in self.get_configured_clouds():
                cloud_type = simple_class_name(cloud["class"])
                if cloud_type in result:
                    continue
                nodes = self.get_cloud_nodes(cloud["class"])
                if nodes:
                    result[cloud_type] = nodes
            return result

        return with_error_handling("getting all cloud nodes", _collect, logger, {})

    def get_cloud_node_stats(self) -> dict[str, dict[str, int]]:
        def _stats() -> dict[str, dict[str, int]]:
            result = {}
            for cloud_type, nodes in self.get_all_cloud_nodes().items():
                offline = sum(1 for n in nodes if n["offline"])
                result[cloud_type] = {
                    "total": len(nodes),
                    "online": len(nodes) - offline,
                    "offline": offline,
                }
            return result

        return with_error_handling("getting cloud node statistics", _stats, logger, {})

    # -- node info -----------------------------------------------------------

    def extract_node_info(self, computer: dict) -> dict:
        require_non_null(computer, "Node instance")

        def _extract() -> dict:
            name = computer.get("displayName", "")
            node = self.node_config(name) or {}
            return {
                "name": name,
                "display_name": name,
                "description": computer.get("description") or node.get("description", ""),
                "num_executors": computer.get("numExecutors", node.get("num_executors", 0)),
                "labels": " ".join(computer.get("labels") or []) or node.get("label", ""),
                "remote_fs": node.get("remote_fs", ""),
                "offline": computer.get("offline", True),
                "temporarily_offline": computer.get("temporarilyOffline", False),
                "connect_time": computer.get("connectTime", 0),
                "offline_cause": computer.get("offlineCauseReason"),
            }

        return with_error_handling("extracting node information", _extract, logger, {})

    def format_node_info(self, node_info: dict) -> str:
        if not node_info:
            return "No information available"

        lines = [f"Node: {node_info.get('name')}"]
        for key in sorted(node_info):
            if key == "name":
                continue
            value = node_info[key]
            if isinstance(value, dict):
                lines.append(f"{key}:")
                lines.extend(f"  {k}: {v}" for k, v in value.items())
            else:
                lines.append(f"{key}: {value}")
        return "\n".join(lines) + "\n"

    def _format_header(self, title: str, node_info: dict) -> list[str]:
        lines = [
            f"{title}: {node_info.get('name')}",
            f"Status: {'OFFLINE' if node_info.get('offline') else 'ONLINE'}",
        ]
        if node_info.get("offline") and node_info.get("offline_cause"):
            lines.append(f"Offline Cause: {node_info['offline_cause']}")
        lines.append(f"Executors: {node_info.get('num_executors')}")
        lines.append(f"Labels: {node_info.get('labels')}")
        return lines


class ProviderNodesManager(CloudNodesManager):
    """Shared plumbing for a single cloud provider.

    Subclasses set ``info_key`` (the provider sub-dict name in node info),
    ``template_id_field`` (how a template is identified) and implement
    ``provider_details`` / ``template_info``.
    """

    info_key = ""
    template_id_field = ""
    template_id_label = "Template"

    def __init__(self) -> None:
        super().__init__()
        self._provider_clouds: list[dict] | None = None

    def get_provider_clouds(self) -> list[dict]:
        if self._provider_clouds is None:
            self._provider_clouds = with_error_handling(
                f"retrieving {self.provider_name} clouds",
                lambda: [c for c in self.get_configured_clouds() if self.handles_cloud_class(c["class"])],
                logger,
                [],
            )
        return self._provider_clouds

    def is_provider_configured(self) -> bool:
        return bool(self.get_provider_clouds())

    def find_cloud(self, cloud_name: str | None) -> dict | None:
        if not cloud_name:
            return None
        for cloud in self.get_provider_clouds():
            if cloud["name"] == cloud_name:
                return cloud
        return None

    def find_template(self, cloud: dict | None, **criteria) -> dict | None:
        """First template matching every non-empty criterion (None if none given)."""
        criteria = {k: v for k, v in criteria.items() if v}
        if not criteria:
            return None
        clouds = [cloud] if cloud else self.get_provider_clouds()
        for c in clouds:
            for template in c.get("templates") or []:
                if all(template.get(k) == v for k, v in criteria.items()):
                    return template
        return None

    def get_cloud_nodes(self, cloud_class: str) -> list[dict]:
        if self.handles_cloud_class(cloud_class):
            return self.get_managed_nodes()
        return []

    def get_managed_nodes(self) -> list[dict]:
        return with_error_handling(
            f"retrieving {self.provider_name} nodes",
            lambda: [c for c in self._all_computers() if c["_class"] in self.computer_classes],
            logger,
            [],
        )

    def extract_provider_node_info(self, computer: dict) -> dict:
        require_non_null(computer, "Node instance")
        info = self.extract_node_info(computer)
        if computer.get("_class") not in self.computer_classes:
            return info

        def _details() -> dict:
            node = self.node_config(computer["displayName"]) or {}
            info[self.info_key] = self.provider_details(computer, node)
            return info

        return with_error_handling(
            f"extracting {self.provider_name} node information", _details, logger, info,
        )

    def get_managed_nodes_info(self) -> list[dict]:
        def _collect() -> list[dict]:
            nodes = self.get_managed_nodes()
            self.prefetch_node_configs([n["displayName"] for n in nodes])
            return [info for info in (self.extract_provider_node_info(n) for n in nodes) if info]

        return with_error_handling(f"getting {self.provider_name} nodes info", _collect, logger, [])

    def provider_details(self, computer: dict, node: dict) -> dict:
        raise NotImplementedError

    # -- templates -----------------------------------------------------------

    def get_resource_templates(self) -> list[dict]:
        return with_error_handling(
            f"retrieving {self.provider_name} templates",
            lambda: [t for c in self.get_provider_clouds() for t in c.get("templates") or []],
            logger,
            [],
        )

    def get_resource_templates_info(self) -> list[dict]:
        return with_error_handling(
            f"getting {self.provider_name} templates info",
            lambda: [self.template_info(t) for t in self.get_resource_templates()],
            logger,
            [],
        )

    def template_info(self, template: dict) -> dict:
        raise NotImplementedError

    # -- lifecycle -----------------------------------------------------------

    def provision_new_resource(self, template_identifier: str, cloud_name: str | None = None) -> bool:
        template_identifier = require_non_empty(template_identifier, self.template_id_label)

        def _provision() -> bool:
            clouds = self.get_provider_clouds()
            if cloud_name:
                clouds = [c for c in clouds if c["name"] == cloud_name]
            if not clouds:
                suffix = f" with name '{cloud_name}'" if cloud_name else ""
                logger.warning("No %s clouds found%s", self.provider_name, suffix)
                return False

            for cloud in clouds:
                for template in cloud.get("templates") or []:
                    if template.get(self.template_id_field) == template_identifier:
                        jenkins_api.provision_from_cloud(cloud["name"], template_identifier)
                        logger.info(
                            "Provisioning initiated for new %s agent from template: %s",
                            self.provider_name, template_identifier,
                        )
                        return True

            logger.warning("No %s template found matching: %s", self.provider_name, template_identifier)
            return False

        return with_error_handling(f"provisioning new {self.provider_name} agent", _provision, logger, False)

    def _terminate_matching(self, detail_key: str, identifier: str, label: str) -> bool:
        """Delete the agent whose provider detail *detail_key* equals *identifier*."""

        def _terminate() -> bool:
            match = next(
                (n for n in self.get_managed_nodes_info()
                 if (n.get(self.info_key) or {}).get(detail_key) == identifier),
                None,
            )
            if match is None:
                logger.warning("No %s agent found with %s: %s", self.provider_name, label, identifier)
                return False

            current = jenkins_api.get_computer(match["name"])
            if current is None or current["_class"] not in self.computer_classes:
                logger.warning("Node not found or not a %s node: %s", self.provider_name, match["name"])
                return False

            jenkins_api.delete_node(match["name"])
            logger.info("%s termination initiated for: %s", self.provider_name, identifier)
            return True

        return with_error_handling(f"terminating {self.provider_name} agent", _terminate, logger, False)
