"""Oracle Cloud Infrastructure agents provisioned by the OCI Compute plugin."""

from __future__ import annotations

import logging

from jenkins_admin.cloud.base import ProviderNodesManager, format_millis, pick
from jenkins_admin.errors import require_non_empty

logger = logging.getLogger(__name__)


class OracleCloudNodeManager(ProviderNodesManager):
    provider_name = "Oracle Cloud"
    cloud_class_markers = ("com.oracle.cloud.baremetal.jenkins.",)
    computer_classes = ("com.oracle.cloud.baremetal.jenkins.BaremetalCloudComputer",)
    info_key = "oci"
    template_id_field = "template_id"
    template_id_label = "Template ID"

    def provider_details(self, computer: dict, node: dict) -> dict:
        fields = node.get("fields") or {}
        cloud = self.find_cloud(fields.get("cloudName"))
        template = self.find_template(cloud, template_id=fields.get("templateId")) or {}
        sources = [fields, template]
        return {
            "instance_id": fields.get("instanceId"),
            "instance_name": node.get("name") or computer.get("displayName"),
            "compartment_id": pick(sources, "compartmentId", "compartment_id"),
            "availability_domain": pick(sources, "availableDomain", "availability_domain", "available_domain"),
            "vcn_id": pick(sources, "vcnId", "vcn_id"),
            "subnet_id": pick(sources, "subnetId", "subnet_id"),
            "shape": pick(sources, "shape"),
            "template_id": pick(sources, "templateId", "template_id"),
            "ocpus": pick(sources, "numberOfOcpus", "number_of_ocpus"),
            "memory_in_gbs": pick(sources, "memoryInGBs", "memory_in_gbs"),
            "region": (cloud or {}).get("region"),
            "private_ip": pick([fields], "privateIp", "host"),
            "public_ip": pick([fields], "publicIp"),
            "instance_state": fields.get("instanceState"),
            "launch_time": format_millis(fields.get("launchTime")),
        }

    def template_info(self, template: dict) -> dict:
        return {
            "description": template.get("description"),
            "template_id": template.get("template_id"),
            "compartment_id": template.get("compartment_id"),
            "availability_domain": template.get("available_domain") or template.get("availability_domain"),
            "vcn_compartment_id": template.get("vcn_compartment_id"),
            "vcn_id": template.get("vcn_id"),
            "subnet_compartment_id": template.get("subnet_compartment_id"),
            "subnet_id": template.get("subnet_id"),
            "image_compartment_id": template.get("image_compartment_id"),
            "image_id": template.get("image_id"),
            "shape": template.get("shape"),
            "ocpus": template.get("number_of_ocpus"),
            "memory_in_gbs": template.get("memory_in_gbs"),
            "ssh_public_key": "(SSH key provided)" if pick([template], "ssh_publickey", "ssh_public_key") else "(None)",
            "labels": template.get("label_string"),
            "mode": template.get("mode"),
            "num_executors": template.get("num_executors"),
            "remote_fs": template.get("remote_fs"),
            "assign_public_ip": template.get("assign_public_ip"),
            "use_public_ip": template.get("use_public_ip"),
            "timeout": template.get("start_timeout_seconds") or template.get("timeout"),
        }

    def get_oracle_clouds(self) -> list[dict]:
        return self.get_provider_clouds()

    def get_oracle_cloud_nodes(self) -> list[dict]:
        return self.get_managed_nodes()

    def get_oracle_cloud_nodes_info(self) -> list[dict]:
        return self.get_managed_nodes_info()

    def get_oracle_cloud_templates_info(self) -> list[dict]:
        return self.get_resource_templates_info()

    def provision_new_instance(self, template_id: str, cloud_name: str | None = None) -> bool:
        return self.provision_new_resource(template_id, cloud_name)

    def terminate_instance(self, instance_id: str) -> bool:
        instance_id = require_non_empty(instance_id, "Instance ID")
        return self._terminate_matching("instance_id", instance_id, "instance ID")

    def terminate_resource(self, identifier: str) -> bool:
        return self.terminate_instance(identifier)

    def format_node_info(self, node_info: dict) -> str:
        if not node_info:
            return "No information available"

        lines = self._format_header("Oracle Cloud Node", node_info)
        oci = node_info.get("oci")
        if oci:
            lines += [
                "",
                "Oracle Cloud Details:",
                f"  Instance ID: {oci.get('instance_id')}",
                f"  Region: {oci.get('region')}",
                f"  Availability Domain: {oci.get('availability_domain')}",
                f"  Compartment ID: {oci.get('compartment_id')}",
                f"  Shape: {oci.get('shape')}",
            ]
            if oci.get("ocpus"):
                lines.append(f"  OCPUs: {oci['ocpus']}")
            if oci.get("memory_in_gbs"):
                lines.append(f"  Memory (GB): {oci['memory_in_gbs']}")
            lines.append(f"  State: {oci.get('instance_state')}")
            lines.append(f"  Private IP: {oci.get('private_ip')}")
            if oci.get("public_ip"):
                lines.append(f"  Public IP: {oci['public_ip']}")
            if oci.get("launch_time"):
                lines.append(f"  Launch Time: {oci['launch_time']}")
            lines.append(f"  Template ID: {oci.get('template_id')}")
        return "\n".join(lines) + "\n"
