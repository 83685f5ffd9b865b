"""Parsing of the pod network-selection annotation."""

from __future__ import annotations

import ipaddress
import json
import logging
import re
import string
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

IFNAMSIZ = 16
_DNS1123_LABEL = re.compile(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?")
_IFNAME_FORBIDDEN = set(" \t\n\v\f\r/")
_HEX = set(string.hexdigits)

_KNOWN_KEYS = {
    "name",
    "namespace",
    "ips",
    "mac",
    "infiniband-guid",
    "interface",
    "interfaceRequest",
    "default-route",
}


class NetworkAnnotationError(ValueError):
    """Raised when a pod network annotation cannot be parsed or validated."""


def _optional_str(item: dict, key: str) -> str:
    value = item.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise NetworkAnnotationError(f"field {key!r} must be a string, got {value!r}")
    return value


def _optional_str_list(item: dict, key: str) -> list[str] | None:
    value = item.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise NetworkAnnotationError(f"field {key!r} must be a list of strings, got {value!r}")
    return list(value)


@dataclass
class NetworkSelectionElement:
    """One network requested by a pod, as named in its annotation."""

    name: str = ""
    namespace: str = ""
    ip_request: list[str] | None = None
    mac_request: str = ""
    infiniband_guid_request: str = ""
    interface_request: str = ""
    deprecated_interface_request: str = ""
    gateway_request: list[str] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def _from_json(cls, item: Any) -> NetworkSelectionElement:
        if not isinstance(item, dict):
            raise NetworkAnnotationError(f"network selection element is not an object: {item!r}")
        gateways = _optional_str_list(item, "default-route")
        for gateway in gateways or []:
            if not _is_ip(gateway):
                raise NetworkAnnotationError(f"invalid IP address in default-route: {gateway!r}")
        return cls(
            name=_optional_str(item, "name"),
            namespace=_optional_str(item, "namespace"),
            ip_request=_optional_str_list(item, "ips"),
            mac_request=_optional_str(item, "mac"),
            infiniband_guid_request=_optional_str(item, "infiniband-guid"),
            interface_request=_optional_str(item, "interface"),
            deprecated_interface_request=_optional_str(item, "interfaceRequest"),
            gateway_request=gateways,
            extra={k: v for k, v in item.items() if k not in _KNOWN_KEYS},
        )


def _is_hardware_address(value: str) -> bool:
    """Accept 6, 8 or 20 byte addresses in colon, hyphen or dotted notation."""
    if len(value) < 14:
        return False
    if value[2] in ":-":
        if (len(value) + 1) % 3 != 0:
            return False
        count = (len(value) + 1) // 3
        if count not in (6, 8, 20):
            return False
        separator = value[2]
        groups = value.split(separator)
        return len(groups) == count and all(
            len(g) == 2 and set(g) <= _HEX for g in groups
        )
    if value[4] == ".":
        if (len(value) + 1) % 5 != 0:
            return False
        count = 2 * (len(value) + 1) // 5
        if count not in (6, 8, 20):
            return False
        groups = value.split(".")
        return len(groups) == count // 2 and all(
            len(g) == 4 and set(g) <= _HEX for g in groups
        )
    return False


def _is_ip(value: str) -> bool:
    if "%" in value:
        return False
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def _is_cidr(value: str) -> bool:
    address, sep, prefix = value.partition("/")
    if not sep or not _is_ip(address):
        return False
    if not prefix or not prefix.isascii() or not prefix.isdigit():
        return False
    bits = ipaddress.ip_address(address).max_prefixlen
    return int(prefix) <= bits


def parse_pod_network_object_name(podnetwork) -> tuple[str, str, str]:
    """Split ``[<namespace>/]<network>[@<interface>]`` into its three parts."""
    logger.debug("parsePodNetworkObjectName: %s", podnetwork)
    namespace = ""
    interface = ""
    slash_items = podnetwork.split("/")
    if len(slash_items) == 2:
        namespace = slash_items[0].strip()
        network_name = slash_items[1]
    elif len(slash_items) == 1:
        network_name = slash_items[0]
    else:
        raise NetworkAnnotationError(
            "parsePodNetworkObjectName: Invalid network object (failed at '/')"
        )

    at_items = network_name.split("@")
    network_name = at_items[0].strip()
    if len(at_items) == 2:
        interface = at_items[1].strip()
    elif len(at_items) != 1:
        raise NetworkAnnotationError(
            "parsePodNetworkObjectName: Invalid network object (failed at '@')"
        )

    for item in (namespace, network_name):
        if item and not _DNS1123_LABEL.fullmatch(item):
            raise NetworkAnnotationError(
                "parsePodNetworkObjectName: Failed to parse: one or more items did not match "
                "comma-delimited format (must consist of lower case alphanumeric characters). "
                f"Must start and end with an alphanumeric character), mismatch @ '{item}'"
            )

    if interface and (
        len(interface.encode("utf-8")) > IFNAMSIZ - 1
        or any(ch in _IFNAME_FORBIDDEN for ch in interface)
    ):
        raise NetworkAnnotationError(
            "parsePodNetworkObjectName: Failed to parse interface name: must be less than "
            f"15 chars and not contain '/' or spaces. interface name '{interface}'"
        )

    logger.debug(
        "parsePodNetworkObjectName: parsed: %s, %s, %s", namespace, network_name, interface
    )
    return namespace, network_name, interface


def _parse_json_networks(pod_networks: str) -> list[NetworkSelectionElement]:
    try:
        document = json.loads(pod_networks)
    except ValueError as exc:
        raise NetworkAnnotationError(
            "parsePodNetworkAnnotation: failed to parse pod Network Attachment Selection "
            f"Annotation JSON format: {exc}"
        ) from exc
    if document is None:
        return []
    if not isinstance(document, list):
        raise NetworkAnnotationError(
            "parsePodNetworkAnnotation: failed to parse pod Network Attachment Selection "
            "Annotation JSON format: expected a list"
        )
    return [NetworkSelectionElement._from_json(item) for item in document]


def _validate(network: NetworkSelectionElement) -> None:
    if network.mac_request and not _is_hardware_address(network.mac_request):
        raise NetworkAnnotationError(
            f"parsePodNetworkAnnotation: failed to mac: invalid MAC address {network.mac_request}"
        )
    if network.infiniband_guid_request and not _is_hardware_address(
        network.infiniband_guid_request
    ):
        raise NetworkAnnotationError(
            "parsePodNetworkAnnotation: failed to validate infiniband GUID: "
            f"invalid MAC address {network.infiniband_guid_request}"
        )
    for ip in network.ip_request or []:
        if "/" in ip:
            if not _is_cidr(ip):
                raise NetworkAnnotationError(f"failed to parse CIDR {ip!r}")
        elif not _is_ip(ip):
            raise NetworkAnnotationError(f"failed to parse IP address {ip!r}")


def parse_pod_network_annotation(pod_networks, default_namespace) -> list[NetworkSelectionElement]:
    """Parse a network annotation given as JSON or as a comma-separated name list."""
    logger.debug("parsePodNetworkAnnotation: %s, %s", pod_networks, default_namespace)
    if not pod_networks:
        raise NetworkAnnotationError(
            'parsePodNetworkAnnotation: pod annotation does not have "network" as key'
        )

    if any(ch in pod_networks for ch in '[{"'):
        networks = _parse_json_networks(pod_networks)
    else:
        networks = []
        for item in pod_networks.split(","):
            try:
                namespace, name, interface = parse_pod_network_object_name(item.strip())
            except NetworkAnnotationError as exc:
                raise NetworkAnnotationError(f"parsePodNetworkAnnotation: {exc}") from exc
            networks.append(
                NetworkSelectionElement(
                    name=name, namespace=namespace, interface_request=interface
                )
            )

    for network in networks:
        if not network.namespace:
            network.namespace = default_namespace
        _validate(network)
        if network.deprecated_interface_request and not network.interface_request:
            network.interface_request = network.deprecated_interface_request

    return networks