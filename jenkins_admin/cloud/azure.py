"""Azure VM agents provisioned by the Azure VM Agents plugin."""

from __future__ import annotations

import logging

from jenkins_admin import jenkins_api
from jenkins_admin.cloud.base import ProviderNodesManager, pick
from jenkins_admin.errors import require_non_empty, with_error_handling

logger = logging.getLogger(__name__)


class AzureNodeManager(ProviderNodesManager):
    provider_name = "Azure"
    cloud_class_markers = ("com.microsoft.azure.vmagent.",)
    computer_classes = ("com.microsoft.azure.vmagent.AzureVMComputer",)
    info_key = "azure"
    template_id_field = "template_name"
    template_id_label = "Template name"

    def provider_details(self, computer: dict, node: dict) -> dict:
        fields = node.get("fields") or {}
        cloud = self.find_cloud(fields.get("cloudName"))
        template = self.find_template(cloud, template_name=fields.get("templateName")) or {}
        return {
            "vm_name": node.get("name") or computer.get("displayName"),
            "resource_group_name": pick([fields], "resourceGroupName"),
            "template_name": fields.get("templateName"),
            "location": pick([fields, template], "location"),
            "vm_size": pick([fields, template], "virtualMachineSize", "virtual_machine_size"),
            "os_type": pick([fields, template], "osType", "os_type"),
            "agent_launch_method": pick([fields, template], "agentLaunchMethod", "agent_launch_method"),
            "retention_strategy": pick([fields, template], "retentionStrategy", "retention_strategy"),
        }

    def template_info(self, template: dict) -> dict:
        return {
            "template_name": template.get("template_name"),
            "labels": template.get("labels"),
            "location": template.get("location"),
            "vm_size": template.get("virtual_machine_size"),
            "retention_strategy": template.get("retention_strategy"),
            "os_type": template.get("os_type"),
            "image_top_level_type": template.get("image_top_level_type"),
            "launch_method": template.get("agent_launch_method"),
            "storage_account_type": template.get("storage_account_type"),
            "disk_type": template.get("disk_type"),
            "no_of_parallel_jobs": template.get("no_of_parallel_jobs"),
            "usage_mode": template.get("usage_mode"),
        }

    def get_azure_clouds(self) -> list[dict]:
        return self.get_provider_clouds()

    def is_azure_cloud_configured(self) -> bool:
        return self.is_provider_configured()

    def get_azure_nodes(self) -> list[dict]:
        return self.get_managed_nodes()

    def get_azure_nodes_info(self) -> list[dict]:
        return self.get_managed_nodes_info()

    def get_azure_templates_info(self) -> list[dict]:
        return self.get_resource_templates_info()

    def provision_new_vm(self, template_name: str, cloud_name: str | None = None) -> bool:
        return self.provision_new_resource(template_name, cloud_name)

    def cleanup_vm(self, node_name: str) -> bool:
        """Deprovision an Azure agent by node name."""
        node_name = require_non_empty(node_name, "Node name")

        def _cleanup() -> bool:
            computer = jenkins_api.get_computer(node_name)
            if computer is None or computer["_class"] not in self.computer_classes:
                logger.warning("No Azure VM agent found with name: %s", node_name)
                return False
            jenkins_api.delete_node(node_name)
            logger.info("Azure VM cleanup initiated for: %s", node_name)
            return True

        return with_error_handling("cleaning up Azure VM", _cleanup, logger, False)

    def terminate_resource(self, identifier: str) -> bool:
        return self.cleanup_vm(identifier)

    def format_node_info(self, node_info: dict) -> str:
        if not node_info:
            return "No information available"

        lines = self._format_header("Azure VM Node", node_info)
        azure = node_info.get("azure")
        if azure:
            lines += [
                "",
                "Azure Details:",
                f"  VM Name: {azure.get('vm_name')}",
                f"  Resource Group: {azure.get('resource_group_name')}",
                f"  Location: {azure.get('location')}",
                f"  VM Size: {azure.get('vm_size')}",
                f"  OS Type: {azure.get('os_type')}",
                f"  Launch Method: {azure.get('agent_launch_method')}",
                f"  Template: {azure.get('template_name')}",
                f"  Retention Strategy: {azure.get('retention_strategy')}",
            ]
        return "\n".join(lines) + "\n"
