"""
Static agent inspection and launching.

SlaveInfoManager reports every permanent and cloud agent; EC2 agents get an
extra block of instance details read from their config.xml.  ComputerLauncher
asks Jenkins to reconnect offline agents and waits for them to come online.
"""

from __future__ import annotations

import logging
import time

import requests

from jenkins_admin import jenkins_api
from jenkins_admin.cloud.aws import AWSNodeManager
from jenkins_admin.cloud.base import format_millis
from jenkins_admin.errors import handle_error, require_non_empty, with_error_handling

logger = logging.getLogger(__name__)

_LAUNCH_TIMEOUT = 60  # seconds
_POLL_INTERVAL = 2


class SlaveInfoManager:
    def __init__(self) -> None:
        self._aws = AWSNodeManager()

    def list_all_slaves(self) -> list[dict]:
        result = []
        for computer in jenkins_api.get_computers():
            if jenkins_api.is_controller(computer):
                continue
            info = with_error_handling(
                f"collecting information for node {computer['displayName']}",
                lambda: self._collect_slave_info(computer),
                logger,
                None,
            )
            if info:
                result.append(info)
        return result

    def get_slave_info(self, slave_name: str) -> dict | None:
        try:
            slave_name = require_non_empty(slave_name, "Slave name")
        except ValueError as exc:
            handle_error("validating slave name", exc, logger)
            return None

        computer = jenkins_api.get_computer(slave_name)
        if computer is None or jenkins_api.is_controller(computer):
            logger.warning("Slave node not found: %s", slave_name)
            return None
        return self._collect_slave_info(computer)

    def _collect_slave_info(self, computer: dict) -> dict:
        name = computer["displayName"]
        node = self._aws.node_config(name) or {}
        info = {
            "name": name,
            "display_name": name,
            "description": computer.get("description") or node.get("description", ""),
            "remote_fs": node.get("remote_fs", ""),
            "num_executors": computer.get("numExecutors", node.get("num_executors", 0)),
            "mode": node.get("mode", ""),
            "offline": computer.get("offline", True),
            "temporarily_offline": computer.get("temporarilyOffline", False),
        }

        if computer["_class"] in AWSNodeManager.computer_classes:
            self._add_ec2_info(info, computer, node)
        else:
            info["host_name"] = node.get("host")
            info["connection_time"] = format_millis(computer.get("connectTime"))
            info["offline_cause"] = computer.get("offlineCauseReason")
        return info

    def _add_ec2_info(self, info: dict, computer: dict, node: dict) -> None:
        ec2 = with_error_handling(
            f"collecting EC2 information for {info['name']}",
            lambda: self._aws.provider_details(computer, node) if node else None,
            logger,
            None,
        )
        if ec2:
            info["ec2"] = ec2
        else:
            info["ec2_error"] = "Failed to retrieve EC2 instance information"

    def format_slave_info(self, slave_info: dict | None) -> str:
        if not slave_info:
            return "No information available"

        lines = [f"Node: {slave_info['name']}"]
        for key, value in slave_info.items():
            if key not in ("name", "ec2"):
                lines.append(f"  {key}: {value}")
        if "ec2" in slave_info:
            lines.append("  EC2 Details:")
            lines.extend(f"    {k}: {v}" for k, v in slave_info["ec2"].items())
        return "\n".join(lines) + "\n"


class ComputerLauncher:
    def __init__(self, timeout: float = _LAUNCH_TIMEOUT, poll_interval: float = _POLL_INTERVAL) -> None:
        self.timeout = timeout
        self.poll_interval = poll_interval

    def start_computer(self, computer_name: str | None) -> bool:
        if computer_name is None or not computer_name.strip():
            logger.warning("No computer name provided.")
            return False

        computer = jenkins_api.get_computer(computer_name)
        if computer is None:
            logger.warning("Computer with name %s not found.", computer_name)
            return False
        if jenkins_api.is_controller(computer):
            logger.info("Cannot start master computer.")
            return False
        return self._start(computer)

    def start_all_offline_computers(self) -> int:
        started = 0
        for computer in jenkins_api.get_computers():
            if not jenkins_api.is_controller(computer) and computer["offline"]:
                if self._start(computer):
                    started += 1
        logger.info("Started %d offline computers", started)
        return started

    def _start(self, computer: dict) -> bool:
        name = computer["displayName"]
        if not computer["offline"]:
            logger.info("Computer %s is already online.", name)
            return True

        try:
            logger.info("Attempting to start computer %s...", name)
            jenkins_api.launch_agent(name)
            if self._wait_until_online(name):
                logger.info("Computer %s started successfully.", name)
                return True
        except (requests.HTTPError, ConnectionError, TimeoutError) as exc:
            handle_error(f"starting computer {name}", exc, logger)
            return False

        logger.warning(
            "Starting computer %s is taking longer than expected. "
            "The connection attempt will continue in the background.", name,
        )
        return False

    def _wait_until_online(self, name: str) -> bool:
        deadline = time.monotonic() + self.timeout
        while True:
            current = jenkins_api.get_computer(name)
            if current is not None and not current["offline"]:
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.poll_interval)
