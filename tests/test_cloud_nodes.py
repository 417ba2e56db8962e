"""Tests for cloud agent managers (base heuristics, EC2, Kubernetes, Azure, Oracle) and the cross-provider listing."""

from __future__ import annotations

import logging
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import requests

from jenkins_admin.cloud import listing
from jenkins_admin.cloud.aws import AWSNodeManager
from jenkins_admin.cloud.azure import AzureNodeManager
from jenkins_admin.cloud.base import CloudNodesManager, format_millis, pick, simple_class_name
from jenkins_admin.cloud.kubernetes import KubernetesNodeManager
from jenkins_admin.cloud.oracle import OracleCloudNodeManager


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


CONTROLLER_XML = """<?xml version='1.1' encoding='UTF-8'?>
<hudson>
  <clouds>
    <hudson.plugins.ec2.EC2Cloud>
      <name>prod-aws</name>
      <region>us-east-1</region>
      <templates>
        <hudson.plugins.ec2.SlaveTemplate>
          <ami>ami-123</ami>
          <description>linux-large</description>
          <type>M5Large</type>
          <labels>linux</labels>
          <numExecutors>2</numExecutors>
          <remoteFS>/home/ec2-user</remoteFS>
          <userData>#!/bin/bash</userData>
          <spotConfig>
            <spotMaxBidPrice>0.10</spotMaxBidPrice>
            <fallbackToOndemand>true</fallbackToOndemand>
          </spotConfig>
        </hudson.plugins.ec2.SlaveTemplate>
      </templates>
    </hudson.plugins.ec2.EC2Cloud>
    <org.csanchez.jenkins.plugins.kubernetes.KubernetesCloud>
      <name>k8s</name>
      <templates>
        <org.csanchez.jenkins.plugins.kubernetes.PodTemplate>
          <id>pod-1</id>
          <name>maven</name>
          <namespace>ci</namespace>
          <label>maven-pod</label>
          <serviceAccount>jenkins</serviceAccount>
          <containers>
            <org.csanchez.jenkins.plugins.kubernetes.ContainerTemplate>
              <name>maven</name>
              <image>maven:3.9</image>
              <workingDir>/home/jenkins/agent</workingDir>
              <resourceLimitCpu>2</resourceLimitCpu>
              <resourceLimitMemory>4Gi</resourceLimitMemory>
              <ports>
                <org.csanchez.jenkins.plugins.kubernetes.PortMapping>
                  <name>http</name><containerPort>8080</containerPort>
                </org.csanchez.jenkins.plugins.kubernetes.PortMapping>
              </ports>
            </org.csanchez.jenkins.plugins.kubernetes.ContainerTemplate>
          </containers>
        </org.csanchez.jenkins.plugins.kubernetes.PodTemplate>
      </templates>
    </org.csanchez.jenkins.plugins.kubernetes.KubernetesCloud>
    <com.microsoft.azure.vmagent.AzureVMCloud>
      <cloudName>azure-prod</cloudName>
      <vmTemplates>
        <com.microsoft.azure.vmagent.AzureVMAgentTemplate>
          <templateName>win</templateName>
          <labels>windows</labels>
          <location>westus</location>
          <virtualMachineSize>Standard_D2</virtualMachineSize>
          <osType>Windows</osType>
          <agentLaunchMethod>SSH</agentLaunchMethod>
          <noOfParallelJobs>1</noOfParallelJobs>
          <retentionStrategy class="com.microsoft.azure.vmagent.AzureVMCloudRetensionStrategy">
            <idleTerminationMinutes>60</idleTerminationMinutes>
          </retentionStrategy>
        </com.microsoft.azure.vmagent.AzureVMAgentTemplate>
      </vmTemplates>
    </com.microsoft.azure.vmagent.AzureVMCloud>
    <com.oracle.cloud.baremetal.jenkins.BaremetalCloud>
      <name>oci-prod</name>
      <regionId>us-ashburn-1</regionId>
      <templates>
        <com.oracle.cloud.baremetal.jenkins.BaremetalCloudAgentTemplate>
          <description>oci-linux</description>
          <templateId>1</templateId>
          <compartmentId>ocid1.compartment.oc1..c</compartmentId>
          <availableDomain>AD-1</availableDomain>
          <shape>VM.Standard2.1</shape>
          <numberOfOcpus>2</numberOfOcpus>
          <memoryInGBs>16</memoryInGBs>
          <sshPublickey>ssh-rsa AAAA</sshPublickey>
          <labelString>oci</labelString>
        </com.oracle.cloud.baremetal.jenkins.BaremetalCloudAgentTemplate>
      </templates>
    </com.oracle.cloud.baremetal.jenkins.BaremetalCloud>
  </clouds>
</hudson>
"""


def _computer(name, cls, offline=False, labels=()):
    return {
        "_class": cls,
        "displayName": name,
        "description": "",
        "numExecutors": 1,
        "offline": offline,
        "temporarilyOffline": False,
        "offlineCauseReason": "Disconnected" if offline else None,
        "idle": True,
        "connectTime": 0,
        "labels": list(labels),
    }


COMPUTERS = [
    _computer("Built-In Node", "hudson.model.Hudson$MasterComputer"),
    _computer("ec2-agent (i-0abc)", "hudson.plugins.ec2.EC2Computer", labels=["linux"]),
    _computer("maven-pod-abc12", "org.csanchez.jenkins.plugins.kubernetes.KubernetesComputer", offline=True),
    _computer("azure-win-1", "com.microsoft.azure.vmagent.AzureVMComputer"),
    _computer("oci-agent-1", "com.oracle.cloud.baremetal.jenkins.BaremetalCloudComputer"),
    _computer("static-1", "hudson.slaves.SlaveComputer"),
    _computer("cloudy-worker", "hudson.slaves.SlaveComputer"),
    _computer("build-x1y2z3w4", "hudson.slaves.SlaveComputer"),
]


NODE_CONFIGS = {
    "ec2-agent (i-0abc)": """<hudson.plugins.ec2.EC2OndemandSlave>
  <name>ec2-agent (i-0abc)</name>
  <remoteFS>/home/ec2-user</remoteFS>
  <numExecutors>1</numExecutors>
  <instanceId>i-0abc</instanceId>
  <templateDescription>linux-large</templateDescription>
  <cloudName>ec2-prod-aws</cloudName>
  <privateDNS>10.0.0.5</privateDNS>
  <createdTime>1700000000000</createdTime>
  <tags>
    <hudson.plugins.ec2.EC2Tag><name>Name</name><value>agent</value></hudson.plugins.ec2.EC2Tag>
  </tags>
</hudson.plugins.ec2.EC2OndemandSlave>""",
    "maven-pod-abc12": """<org.csanchez.jenkins.plugins.kubernetes.KubernetesSlave>
  <name>maven-pod-abc12</name>
  <label>maven-pod</label>
  <cloudName>k8s</cloudName>
  <podTemplateId>pod-1</podTemplateId>
</org.csanchez.jenkins.plugins.kubernetes.KubernetesSlave>""",
    "azure-win-1": """<com.microsoft.azure.vmagent.AzureVMAgent>
  <name>azure-win-1</name>
  <cloudName>azure-prod</cloudName>
  <templateName>win</templateName>
  <resourceGroupName>rg-ci</resourceGroupName>
</com.microsoft.azure.vmagent.AzureVMAgent>""",
    "oci-agent-1": """<com.oracle.cloud.baremetal.jenkins.BaremetalCloudAgent>
  <name>oci-agent-1</name>
  <cloudName>oci-prod</cloudName>
  <instanceId>ocid1.instance.oc1..x</instanceId>
  <templateId>1</templateId>
  <host>10.2.0.4</host>
</com.oracle.cloud.baremetal.jenkins.BaremetalCloudAgent>""",
    "static-1": "<slave><name>static-1</name><remoteFS>/opt/agent</remoteFS></slave>",
}


@pytest.fixture
def jenkins():
    """Patch the REST layer with an in-memory controller."""
    by_name = {c["displayName"]: c for c in COMPUTERS}
    fake = SimpleNamespace(
        get_controller_config_xml=MagicMock(return_value=CONTROLLER_XML),
        get_computers=MagicMock(return_value=COMPUTERS),
        get_computer=MagicMock(side_effect=by_name.get),
        get_node_config_xml=MagicMock(side_effect=NODE_CONFIGS.get),
        delete_node=MagicMock(),
        provision_from_cloud=MagicMock(),
    )
    with patch.multiple("jenkins_admin.jenkins_api", **vars(fake)):
        yield fake


def _node(manager, name):
    return next(n for n in manager.get_managed_nodes_info() if n["name"] == name)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_simple_class_name(self):
        assert simple_class_name("hudson.plugins.ec2.EC2Cloud") == "EC2Cloud"
        assert simple_class_name("") == ""

    def test_format_millis(self):
        assert format_millis(1700000000000) == "2023-11-14 22:13"
        assert format_millis("1700000000000") == "2023-11-14 22:13"
        assert format_millis(0) is None
        assert format_millis(None) is None
        assert format_millis("soon") is None

    def test_pick_skips_empty(self):
        assert pick([{"a": ""}, {"b": "x"}], "a", "b") == "x"
        assert pick([None, {}], "a", default="d") == "d"


# ---------------------------------------------------------------------------
# CloudNodesManager
# ---------------------------------------------------------------------------


class TestCloudNodesManager:
    def test_warns_without_jenkins_url(self, caplog):
        with patch("jenkins_admin.jenkins_api.jenkins_url", return_value=""):
            with caplog.at_level(logging.WARNING):
                CloudNodesManager()
        assert "may not be able to connect back" in caplog.text

    def test_configured_clouds(self, jenkins):
        clouds = CloudNodesManager().get_configured_clouds()
        assert [c["name"] for c in clouds] == ["prod-aws", "k8s", "azure-prod", "oci-prod"]

    def test_configured_clouds_empty_on_error(self, jenkins):
        resp = MagicMock(spec=requests.Response)
        resp.status_code = 403
        jenkins.get_controller_config_xml.side_effect = requests.HTTPError(response=resp)
        manager = CloudNodesManager()
        assert manager.get_configured_clouds() == []
        assert manager.is_cloud_configured("hudson.plugins.ec2.EC2Cloud") is False

    def test_is_cloud_configured(self, jenkins):
        manager = CloudNodesManager()
        assert manager.is_cloud_configured("hudson.plugins.ec2.EC2Cloud")
        assert not manager.is_cloud_configured("com.example.GceCloud")

    def test_known_provider_matches_computer_class(self, jenkins):
        nodes = CloudNodesManager().get_cloud_nodes("org.csanchez.jenkins.plugins.kubernetes.KubernetesCloud")
        assert [n["displayName"] for n in nodes] == ["maven-pod-abc12"]

    def test_unknown_cloud_uses_heuristic(self, jenkins):
        nodes = CloudNodesManager().get_cloud_nodes("com.example.GceCloud")
        assert [n["displayName"] for n in nodes] == ["oci-agent-1", "cloudy-worker", "build-x1y2z3w4"]

    def test_controller_never_listed(self, jenkins):
        manager = CloudNodesManager()
        assert manager.find_computer("Built-In Node") is None

    def test_all_cloud_nodes_and_stats(self, jenkins):
        manager = CloudNodesManager()
        assert set(manager.get_all_cloud_nodes()) == {
            "EC2Cloud", "KubernetesCloud", "AzureVMCloud", "BaremetalCloud",
        }
        stats = manager.get_cloud_node_stats()
        assert stats["EC2Cloud"] == {"total": 1, "online": 1, "offline": 0}
        assert stats["KubernetesCloud"] == {"total": 1, "online": 0, "offline": 1}

    def test_extract_node_info(self, jenkins):
        manager = CloudNodesManager()
        info = manager.extract_node_info(manager.find_computer("ec2-agent (i-0abc)"))
        assert info == {
            "name": "ec2-agent (i-0abc)",
            "display_name": "ec2-agent (i-0abc)",
            "description": "",
            "num_executors": 1,
            "labels": "linux",
            "remote_fs": "/home/ec2-user",
            "offline": False,
            "temporarily_offline": False,
            "connect_time": 0,
            "offline_cause": None,
        }

    def test_extract_node_info_rejects_none(self, jenkins):
        with pytest.raises(ValueError):
            CloudNodesManager().extract_node_info(None)

    def test_format_node_info(self):
        text = CloudNodesManager().format_node_info({"name": "n1", "offline": True, "ec2": {"instance_id": "i-1"}})
        assert text == "Node: n1\nec2:\n  instance_id: i-1\noffline: True\n"

    def test_format_empty(self):
        assert CloudNodesManager().format_node_info({}) == "No information available"


# ---------------------------------------------------------------------------
# AWSNodeManager
# ---------------------------------------------------------------------------


class TestAWSNodeManager:
    def test_configured(self, jenkins):
        manager = AWSNodeManager()
        assert manager.is_ec2_cloud_configured()
        assert [c["name"] for c in manager.get_ec2_clouds()] == ["prod-aws"]

    def test_node_info(self, jenkins):
        info = _node(AWSNodeManager(), "ec2-agent (i-0abc)")
        assert info["ec2"] == {
            "instance_id": "i-0abc",
            "instance_type": "M5Large",
            "private_ip": "10.0.0.5",
            "public_ip": None,
            "ami_id": "ami-123",
            "launch_time": "2023-11-14 22:13",
            "state": "running",
            "region": "us-east-1",
            "tags": {"Name": "agent"},
        }

    def test_region_unknown_without_cloud(self, jenkins):
        jenkins.get_node_config_xml.side_effect = lambda name: (
            "<hudson.plugins.ec2.EC2OndemandSlave><instanceId>i-9</instanceId></hudson.plugins.ec2.EC2OndemandSlave>"
        )
        info = _node(AWSNodeManager(), "ec2-agent (i-0abc)")
        assert info["ec2"]["region"] == "unknown"
        assert info["ec2"]["instance_type"] is None

    def test_templates_info(self, jenkins):
        [template] = AWSNodeManager().get_ec2_templates_info()
        assert template["description"] == "linux-large"
        assert template["instance_type"] == "M5Large"
        assert template["user_data"] == "(user data script provided)"
        assert template["spot_instance"] is True
        assert template["spot_details"] == {"max_bid_price": "0.10", "fallback_to_on_demand": "true"}

    def test_provision(self, jenkins):
        assert AWSNodeManager().provision_new_instance("linux-large") is True
        jenkins.provision_from_cloud.assert_called_once_with("prod-aws", "linux-large")

    def test_provision_unknown_cloud(self, jenkins, caplog):
        with caplog.at_level(logging.WARNING):
            assert AWSNodeManager().provision_new_instance("linux-large", "other") is False
        assert "No EC2 clouds found with name 'other'" in caplog.text
        jenkins.provision_from_cloud.assert_not_called()

    def test_provision_unknown_template(self, jenkins):
        assert AWSNodeManager().provision_new_instance("gpu") is False
        jenkins.provision_from_cloud.assert_not_called()

    def test_provision_api_failure(self, jenkins):
        jenkins.provision_from_cloud.side_effect = ConnectionError("down")
        assert AWSNodeManager().provision_new_instance("linux-large") is False

    def test_provision_requires_identifier(self, jenkins):
        with pytest.raises(ValueError):
            AWSNodeManager().provision_new_instance(" ")

    def test_terminate(self, jenkins):
        assert AWSNodeManager().terminate_instance("i-0abc") is True
        jenkins.delete_node.assert_called_once_with("ec2-agent (i-0abc)")

    def test_terminate_unknown(self, jenkins):
        assert AWSNodeManager().terminate_instance("i-missing") is False
        jenkins.delete_node.assert_not_called()

    def test_terminate_requires_identifier(self, jenkins):
        with pytest.raises(ValueError):
            AWSNodeManager().terminate_instance("")

    def test_format(self, jenkins):
        manager = AWSNodeManager()
        text = manager.format_node_info(_node(manager, "ec2-agent (i-0abc)"))
        assert text.startswith("EC2 Node: ec2-agent (i-0abc)\nStatus: ONLINE\n")
        assert "  Instance ID: i-0abc" in text
        assert "  Region: us-east-1" in text
        assert "    Name: agent" in text


# ---------------------------------------------------------------------------
# KubernetesNodeManager
# ---------------------------------------------------------------------------


class TestKubernetesNodeManager:
    def test_node_info(self, jenkins):
        info = _node(KubernetesNodeManager(), "maven-pod-abc12")
        kube = info["kubernetes"]
        assert kube["pod_name"] == "maven-pod-abc12"
        assert kube["namespace"] == "ci"
        assert kube["cloud_name"] == "k8s"
        assert kube["template"] == "maven-pod"
        assert kube["containers"] == [{
            "name": "maven",
            "image": "maven:3.9",
            "resource_limit_cpu": "2",
            "resource_limit_memory": "4Gi",
            "resource_request_cpu": None,
            "resource_request_memory": None,
            "working_dir": "/home/jenkins/agent",
            "ports": ["http:8080"],
        }]

    def test_template_resolved_by_label(self, jenkins):
        NODE = "<org.csanchez.jenkins.plugins.kubernetes.KubernetesSlave><label>maven-pod</label></org.csanchez.jenkins.plugins.kubernetes.KubernetesSlave>"
        jenkins.get_node_config_xml.side_effect = lambda name: NODE
        kube = _node(KubernetesNodeManager(), "maven-pod-abc12")["kubernetes"]
        assert kube["namespace"] == "ci"
        assert kube["containers"][0]["image"] == "maven:3.9"

    def test_pod_templates_info(self, jenkins):
        [template] = KubernetesNodeManager().get_pod_templates_info()
        assert template["label"] == "maven-pod"
        assert template["service_account"] == "jenkins"
        assert template["containers"][0]["working_dir"] == "/home/jenkins/agent"

    def test_provision_by_label(self, jenkins):
        assert KubernetesNodeManager().provision_new_pod("maven-pod") is True
        jenkins.provision_from_cloud.assert_called_once_with("k8s", "maven-pod")

    def test_terminate_pod(self, jenkins):
        assert KubernetesNodeManager().terminate_pod("maven-pod-abc12") is True
        jenkins.delete_node.assert_called_once_with("maven-pod-abc12")

    def test_format(self, jenkins):
        manager = KubernetesNodeManager()
        text = manager.format_node_info(_node(manager, "maven-pod-abc12"))
        assert "Status: OFFLINE" in text
        assert "Offline Cause: Disconnected" in text
        assert "  Containers:" in text
        assert "    Ports: http:8080" in text


# ---------------------------------------------------------------------------
# AzureNodeManager
# ---------------------------------------------------------------------------


class TestAzureNodeManager:
    def test_node_info(self, jenkins):
        azure = _node(AzureNodeManager(), "azure-win-1")["azure"]
        assert azure == {
            "vm_name": "azure-win-1",
            "resource_group_name": "rg-ci",
            "template_name": "win",
            "location": "westus",
            "vm_size": "Standard_D2",
            "os_type": "Windows",
            "agent_launch_method": "SSH",
            "retention_strategy": "AzureVMCloudRetensionStrategy",
        }

    def test_templates_info(self, jenkins):
        [template] = AzureNodeManager().get_azure_templates_info()
        assert template["template_name"] == "win"
        assert template["vm_size"] == "Standard_D2"
        assert template["no_of_parallel_jobs"] == "1"

    def test_provision(self, jenkins):
        assert AzureNodeManager().provision_new_vm("win", "azure-prod") is True
        jenkins.provision_from_cloud.assert_called_once_with("azure-prod", "win")

    def test_cleanup_vm(self, jenkins):
        assert AzureNodeManager().cleanup_vm("azure-win-1") is True
        jenkins.delete_node.assert_called_once_with("azure-win-1")

    def test_cleanup_rejects_non_azure_node(self, jenkins):
        assert AzureNodeManager().cleanup_vm("static-1") is False
        assert AzureNodeManager().cleanup_vm("ghost") is False
        jenkins.delete_node.assert_not_called()


# ---------------------------------------------------------------------------
# OracleCloudNodeManager
# ---------------------------------------------------------------------------


class TestOracleCloudNodeManager:
    def test_node_info(self, jenkins):
        oci = _node(OracleCloudNodeManager(), "oci-agent-1")["oci"]
        assert oci["instance_id"] == "ocid1.instance.oc1..x"
        assert oci["shape"] == "VM.Standard2.1"
        assert oci["ocpus"] == "2"
        assert oci["memory_in_gbs"] == "16"
        assert oci["availability_domain"] == "AD-1"
        assert oci["region"] == "us-ashburn-1"
        assert oci["private_ip"] == "10.2.0.4"
        assert oci["launch_time"] is None

    def test_templates_mask_ssh_key(self, jenkins):
        [template] = OracleCloudNodeManager().get_oracle_cloud_templates_info()
        assert template["ssh_public_key"] == "(SSH key provided)"
        assert template["labels"] == "oci"
        assert OracleCloudNodeManager().template_info({})["ssh_public_key"] == "(None)"

    def test_terminate(self, jenkins):
        assert OracleCloudNodeManager().terminate_instance("ocid1.instance.oc1..x") is True
        jenkins.delete_node.assert_called_once_with("oci-agent-1")

    def test_format_optional_lines(self, jenkins):
        manager = OracleCloudNodeManager()
        text = manager.format_node_info(_node(manager, "oci-agent-1"))
        assert text.startswith("Oracle Cloud Node: oci-agent-1")
        assert "  OCPUs: 2" in text
        assert "Public IP" not in text
        assert "Launch Time" not in text


# ---------------------------------------------------------------------------
# Cross-provider listing
# ---------------------------------------------------------------------------


class TestListing:
    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown cloud provider"):
            listing.get_provider("gcp")

    def test_list_selected_providers(self, jenkins):
        results = listing.list_cloud_nodes(["AWS"])
        assert list(results) == ["aws"]
        manager, nodes = results["aws"]
        assert isinstance(manager, AWSNodeManager)
        assert [n["name"] for n in nodes] == ["ec2-agent (i-0abc)"]

    def test_list_all(self, jenkins):
        results = listing.list_cloud_nodes()
        assert list(results) == ["aws", "kubernetes", "azure", "oracle"]
        text = listing.format_cloud_nodes(results)
        assert "AWS NODES:" in text
        assert "Total cloud nodes across all providers: 4" in text

    def test_format_no_nodes(self):
        text = listing.format_cloud_nodes({})
        assert text.startswith("No cloud nodes found in this Jenkins instance.")

    def test_format_stats(self):
        text = listing.format_cloud_stats({"EC2Cloud": {"total": 3, "online": 2, "offline": 1}})
        assert "EC2Cloud:\n  Total: 3\n  Online: 2\n  Offline: 1" in text
        assert text.endswith("Total cloud nodes across all providers: 3")
        assert listing.format_cloud_stats({}) == "No cloud nodes found"
