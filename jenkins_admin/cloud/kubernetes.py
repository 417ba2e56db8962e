"""Kubernetes pod agents provisioned by the Kubernetes plugin."""

from __future__ import annotations

import logging

from jenkins_admin.cloud.base import ProviderNodesManager, pick
from jenkins_admin.errors import require_non_empty

logger = logging.getLogger(__name__)


class KubernetesNodeManager(ProviderNodesManager):
    provider_name = "Kubernetes"
    cloud_class_markers = ("org.csanchez.jenkins.plugins.kubernetes.",)
    computer_classes = ("org.csanchez.jenkins.plugins.kubernetes.KubernetesComputer",)
    info_key = "kubernetes"
    template_id_field = "label"
    template_id_label = "Template label"

    def _pod_template(self, fields: dict, label: str) -> tuple[dict | None, dict]:
        cloud = self.find_cloud(fields.get("cloudName"))
        template = (
            self.find_template(cloud, id=fields.get("podTemplateId"))
            or self.find_template(cloud, label=fields.get("templateLabel") or label)
            or {}
        )
        return cloud, template

    def provider_details(self, computer: dict, node: dict) -> dict:
        fields = node.get("fields") or {}
        _, template = self._pod_template(fields, node.get("label", ""))
        return {
            "pod_name": node.get("name") or computer.get("displayName"),
            "namespace": pick([fields, template], "namespace"),
            "cloud_name": fields.get("cloudName"),
            "template": template.get("label") or node.get("label"),
            "containers": [
                {
                    "name": c.get("name"),
                    "image": c.get("image"),
                    "resource_limit_cpu": c.get("resource_limit_cpu"),
                    "resource_limit_memory": c.get("resource_limit_memory"),
                    "resource_request_cpu": c.get("resource_request_cpu"),
                    "resource_request_memory": c.get("resource_request_memory"),
                    "working_dir": c.get("working_dir"),
                    "ports": c.get("ports") or [],
                }
                for c in template.get("containers") or []
            ],
        }

    def template_info(self, template: dict) -> dict:
        return {
            "name": template.get("name"),
            "label": template.get("label"),
            "namespace": template.get("namespace"),
            "node_usage_mode": template.get("node_usage_mode"),
            "service_account": template.get("service_account"),
            "idle_minutes": template.get("idle_minutes"),
            "slave_connect_timeout": template.get("slave_connect_timeout"),
            "containers": [
                {
                    "name": c.get("name"),
                    "image": c.get("image"),
                    "working_dir": c.get("working_dir"),
                    "command": c.get("command"),
                    "args": c.get("args"),
                }
                for c in template.get("containers") or []
            ],
        }

    def get_kubernetes_clouds(self) -> list[dict]:
        return self.get_provider_clouds()

    def is_kubernetes_cloud_configured(self) -> bool:
        return self.is_provider_configured()

    def get_kubernetes_nodes(self) -> list[dict]:
        return self.get_managed_nodes()

    def get_kubernetes_nodes_info(self) -> list[dict]:
        return self.get_managed_nodes_info()

    def get_pod_templates_info(self) -> list[dict]:
        return self.get_resource_templates_info()

    def provision_new_pod(self, template_label: str, cloud_name: str | None = None) -> bool:
        return self.provision_new_resource(template_label, cloud_name)

    def terminate_pod(self, pod_name: str) -> bool:
        pod_name = require_non_empty(pod_name, "Pod name")
        return self._terminate_matching("pod_name", pod_name, "pod name")

    def terminate_resource(self, identifier: str) -> bool:
        return self.terminate_pod(identifier)

    def format_node_info(self, node_info: dict) -> str:
        if not node_info:
            return "No information available"

        lines = self._format_header("Kubernetes Node", node_info)
        kube = node_info.get("kubernetes")
        if kube:
            lines += [
                "",
                "Kubernetes Details:",
                f"  Pod Name: {kube.get('pod_name')}",
                f"  Namespace: {kube.get('namespace')}",
                f"  Cloud: {kube.get('cloud_name')}",
                f"  Template: {kube.get('template')}",
            ]
            if kube.get("containers"):
                lines += ["", "  Containers:"]
                for container in kube["containers"]:
                    lines.append(f"    Name: {container.get('name')}")
                    lines.append(f"    Image: {container.get('image')}")
                    if container.get("resource_limit_cpu"):
                        lines.append(f"    CPU Limit: {container['resource_limit_cpu']}")
                    if container.get("resource_limit_memory"):
                        lines.append(f"    Memory Limit: {container['resource_limit_memory']}")
                    if container.get("working_dir"):
                        lines.append(f"    Working Dir: {container['working_dir']}")
                    if container.get("ports"):
                        lines.append(f"    Ports: {', '.join(container['ports'])}")
                    lines.append("")
        return "\n".join(lines) + "\n"
