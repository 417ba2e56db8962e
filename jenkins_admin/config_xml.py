"""
Pure config.xml parser: no API calls, no formatting.

Accepts raw controller or agent config.xml and returns plain dicts.  Cloud
plugins serialize with XStream, so element names are fully-qualified Java
class names and fields are simple text children; this module relies only on
that shape rather than on per-plugin schemas.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

# Tags whose children are templates, per cloud plugin.
_TEMPLATE_CONTAINERS = ("templates", "vmTemplates")
# Tags that name a cloud, per cloud plugin.
_CLOUD_NAME_TAGS = ("name", "cloudName", "displayName")

_PERMISSION_TAGS = ("permission", "entry")
# Structured grants: <entry><user name="alice"><permissions><permission>...
_SID_TYPES = {"user": "USER", "group": "GROUP"}


def snake_case(tag: str) -> str:
    return _CAMEL_RE.sub("_", tag).lower()


def _parse(xml_content: str) -> ET.Element | None:
    if not xml_content:
        return None
    # ElementTree rejects XML 1.1 declarations, which Jenkins writes.
    xml_content = re.sub(r"^\s*<\?xml[^>]*\?>", "", xml_content, count=1)
    try:
        return ET.fromstring(xml_content)
    except ET.ParseError:
        return None


def _text(elem: ET.Element | None, tag: str, default: str | None = None) -> str | None:
    if elem is None:
        return default
    child = elem.find(tag)
    if child is None or child.text is None:
        return default
    return child.text.strip()


def _is_leaf(elem: ET.Element) -> bool:
    return len(elem) == 0


def _leaf_fields(elem: ET.Element, snake: bool = True) -> dict:
    """Collect simple text children into a dict."""
    fields: dict = {}
    for child in elem:
        key = snake_case(child.tag) if snake else child.tag
        text = (child.text or "").strip()
        if _is_leaf(child) and (text or not child.get("class")):
            fields[key] = text
        elif child.get("class"):
            # e.g. <retentionStrategy class="...AzureVMCloudRetensionStrategy">
            fields[key] = child.get("class", "").rsplit(".", 1)[-1]
    return fields


def _parse_tags(elem: ET.Element) -> dict:
    """EC2-style <tags><hudson.plugins.ec2.EC2Tag><name/><value/></...></tags>."""
    tags: dict = {}
    container = elem.find("tags")
    if container is None:
        return tags
    for tag in container:
        name = _text(tag, "name")
        if name:
            tags[name] = _text(tag, "value", "")
    return tags


def _parse_container(elem: ET.Element) -> dict:
    container = _leaf_fields(elem)
    ports = elem.find("ports")
    if ports is not None:
        container["ports"] = [
            f"{_text(p, 'name', '')}:{_text(p, 'containerPort', '')}" for p in ports
        ]
    return container


def _parse_template(elem: ET.Element) -> dict:
    template = _leaf_fields(elem)
    template["class"] = elem.tag

    containers = elem.find("containers")
    if containers is not None:
        template["containers"] = [_parse_container(c) for c in containers]

    spot = elem.find("spotConfig")
    if spot is not None:
        template["spot_config"] = _leaf_fields(spot)

    tags = _parse_tags(elem)
    if tags:
        template["tags"] = tags
    return template


def _parse_cloud(elem: ET.Element) -> dict:
    name = ""
    for tag in _CLOUD_NAME_TAGS:
        name = _text(elem, tag) or ""
        if name:
            break

    templates: list[dict] = []
    for tag in _TEMPLATE_CONTAINERS:
        container = elem.find(tag)
        if container is not None:
            templates.extend(_parse_template(t) for t in container)

    return {
        "class": elem.tag,
        "name": name,
        "region": _text(elem, "region") or _text(elem, "regionId"),
        "templates": templates,
    }


def _agent_protocols(root: ET.Element, tag: str) -> list[str]:
    container = root.find(tag)
    if container is None:
        return []
    return [(s.text or "").strip() for s in container if (s.text or "").strip()]


def _permissions(strategy: ET.Element | None) -> list[str]:
    """Matrix grants as 'USER:perm:sid' (or legacy 'perm:sid'), from text or structured entries."""
    if strategy is None:
        return []
    grants = []
    for tag in _PERMISSION_TAGS:
        for elem in strategy.iter(tag):
            if elem.text and ":" in elem.text:
                grants.append(elem.text.strip())

    for entry in strategy.iter("entry"):
        for holder in entry:
            sid_type = _SID_TYPES.get(holder.tag)
            sid = holder.get("name")
            if sid_type is None or not sid:
                continue
            for perm in holder.iter("permission"):
                text = (perm.text or "").strip()
                if text and ":" not in text:
                    grants.append(f"{sid_type}:{text}:{sid}")
    return grants


def parse_controller_config(xml_content: str) -> dict | None:
    """Parse the controller config.xml.

    Returns None if the content is not a Jenkins controller config.
    """
    root = _parse(xml_content)
    if root is None or root.tag != "hudson":
        return None

    realm = root.find("securityRealm")
    strategy = root.find("authorizationStrategy")
    crumb = root.find("crumbIssuer")

    port_text = _text(root, "slaveAgentPort")
    try:
        port = int(port_text) if port_text is not None else -1
    except ValueError:
        port = -1

    clouds_elem = root.find("clouds")
    clouds = [_parse_cloud(c) for c in clouds_elem] if clouds_elem is not None else []

    return {
        "use_security": (_text(root, "useSecurity", "false") or "").lower() == "true",
        "security_realm": realm.get("class", "") if realm is not None else "",
        "authorization_strategy": strategy.get("class", "") if strategy is not None else "",
        "crumb_issuer": crumb.get("class", "") if crumb is not None else "",
        "slave_agent_port": port,
        "enabled_agent_protocols": _agent_protocols(root, "enabledAgentProtocols"),
        "disabled_agent_protocols": _agent_protocols(root, "disabledAgentProtocols"),
        "permissions": _permissions(strategy),
        "clouds": clouds,
    }


def parse_node_config(xml_content: str) -> dict | None:
    """Parse an agent's config.xml into common fields plus raw plugin fields."""
    root = _parse(xml_content)
    if root is None:
        return None

    fields = _leaf_fields(root, snake=False)
    common = {
        "name": fields.pop("name", ""),
        "description": fields.pop("description", ""),
        "remote_fs": fields.pop("remoteFS", ""),
        "mode": fields.pop("mode", ""),
        "label": fields.pop("label", ""),
        # SSH launchers keep the agent host on the launcher element.
        "host": _text(root.find("launcher"), "host"),
    }
    num_executors = fields.pop("numExecutors", "")
    try:
        common["num_executors"] = int(num_executors)
    except ValueError:
        common["num_executors"] = 0

    return {
        "class": root.tag,
        **common,
        "fields": fields,
        "tags": _parse_tags(root),
    }


def parse_script_approvals(xml_content: str) -> list[str] | None:
    """Approved signatures from scriptApproval.xml (None if unparseable)."""
    root = _parse(xml_content)
    if root is None:
        return None
    container = root.find("approvedSignatures")
    if container is None:
        return []
    return [(s.text or "").strip() for s in container if (s.text or "").strip()]
