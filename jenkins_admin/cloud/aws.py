"""AWS EC2 agents provisioned by the EC2 plugin."""

from __future__ import annotations

import logging

from jenkins_admin.cloud.base import ProviderNodesManager, format_millis, pick
from jenkins_admin.errors import require_non_empty

logger = logging.getLogger(__name__)


class AWSNodeManager(ProviderNodesManager):
    provider_name = "EC2"
    cloud_class_markers = ("hudson.plugins.ec2.",)
    computer_classes = ("hudson.plugins.ec2.EC2Computer",)
    info_key = "ec2"
    template_id_field = "description"
    template_id_label = "Template description"

    def find_cloud(self, cloud_name: str | None) -> dict | None:
        # Agents record the cloud as "ec2-<name>" on older plugin versions.
        if not cloud_name:
            return None
        for cloud in self.get_provider_clouds():
            if cloud_name in (cloud["name"], f"ec2-{cloud['name']}"):
                return cloud
        return None

    def _find_instance_region(self, cloud: dict | None) -> str:
        return (cloud or {}).get("region") or "unknown"

    def provider_details(self, computer: dict, node: dict) -> dict:
        fields = node.get("fields") or {}
        cloud = self.find_cloud(fields.get("cloudName"))
        template = self.find_template(cloud, description=fields.get("templateDescription")) or {}
        return {
            "instance_id": fields.get("instanceId"),
            "instance_type": pick([fields, template], "type"),
            "private_ip": pick([fields], "privateIpAddress", "privateDNS"),
            "public_ip": pick([fields], "publicIpAddress", "publicDNS"),
            "ami_id": pick([fields, template], "amiId", "ami"),
            "launch_time": format_millis(fields.get("createdTime")),
            "state": fields.get("state") or ("running" if not computer.get("offline") else None),
            "region": self._find_instance_region(cloud),
            "tags": node.get("tags") or {},
        }

    def template_info(self, template: dict) -> dict:
        spot = template.get("spot_config")
        info = {
            "description": template.get("description"),
            "ami": template.get("ami"),
            "instance_type": template.get("type"),
            "labels": template.get("labels") or template.get("label_string"),
            "num_executors": template.get("num_executors"),
            "remote_fs": template.get("remote_fs"),
            "security_groups": template.get("security_groups"),
            "user_data": "(user data script provided)" if template.get("user_data") else "(none)",
            "spot_instance": spot is not None,
        }
        if spot is not None:
            info["spot_details"] = {
                "max_bid_price": spot.get("spot_max_bid_price"),
                "fallback_to_on_demand": spot.get("fallback_to_ondemand"),
            }
        return info

    # Provider-named aliases

    def get_ec2_clouds(self) -> list[dict]:
        return self.get_provider_clouds()

    def is_ec2_cloud_configured(self) -> bool:
        return self.is_provider_configured()

    def get_ec2_nodes(self) -> list[dict]:
        return self.get_managed_nodes()

    def get_ec2_nodes_info(self) -> list[dict]:
        return self.get_managed_nodes_info()

    def get_ec2_templates_info(self) -> list[dict]:
        return self.get_resource_templates_info()

    def provision_new_instance(self, template_description: str, cloud_name: str | None = None) -> bool:
        return self.provision_new_resource(template_description, cloud_name)

    def terminate_instance(self, instance_id: str) -> bool:
        instance_id = require_non_empty(instance_id, "Instance ID")
        return self._terminate_matching("instance_id", instance_id, "instance ID")

    def terminate_resource(self, identifier: str) -> bool:
        return self.terminate_instance(identifier)

    def format_node_info(self, node_info: dict) -> str:
        if not node_info:
            return "No information available"

        lines = self._format_header("EC2 Node", node_info)
        ec2 = node_info.get("ec2")
        if ec2:
            lines += [
                "",
                "EC2 Details:",
                f"  Instance ID: {ec2.get('instance_id')}",
                f"  Type: {ec2.get('instance_type')}",
                f"  Region: {ec2.get('region')}",
                f"  State: {ec2.get('state')}",
                f"  Private IP: {ec2.get('private_ip')}",
                f"  Public IP: {ec2.get('public_ip')}",
                f"  Launch Time: {ec2.get('launch_time')}",
            ]
            if ec2.get("tags"):
                lines.append("  Tags:")
                lines.extend(f"    {k}: {v}" for k, v in ec2["tags"].items())
        return "\n".join(lines) + "\n"
