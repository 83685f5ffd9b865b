"""Pod device allocations from the kubelet pod-resources gRPC API."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, field

import grpc

from multus_cni import checkpoint
from multus_cni.resources import Pod, ResourceInfo

logger = logging.getLogger(__name__)

DEFAULT_KUBELET_SOCKET = "kubelet"
KUBELET_CONNECTION_TIMEOUT = 10.0
DEFAULT_POD_RESOURCES_MAX_SIZE = 1024 * 1024 * 16
DEFAULT_POD_RESOURCES_PATH = "/var/lib/kubelet/pod-resources"
LIST_METHOD = "/v1.PodResourcesLister/List"


class ResourceClientError(Exception):
    """Raised when pod resources cannot be fetched or queried."""


@dataclass
class ContainerDevices:
    resource_name: str = ""
    device_ids: list[str] = field(default_factory=list)


@dataclass
class ClaimResource:
    """A claim's resources; ``cdi_devices`` holds the CDI device names."""

    cdi_devices: list[str] = field(default_factory=list)


@dataclass
class DynamicResource:
    class_name: str = ""
    claim_name: str = ""
    claim_namespace: str = ""
    claim_resources: list[ClaimResource] = field(default_factory=list)


@dataclass
class ContainerResources:
    name: str = ""
    devices: list[ContainerDevices] = field(default_factory=list)
    dynamic_resources: list[DynamicResource] = field(default_factory=list)


@dataclass
class PodResources:
    name: str = ""
    namespace: str = ""
    containers: list[ContainerResources] = field(default_factory=list)


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise ResourceClientError("truncated varint in protobuf message")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7
        if shift >= 64:
            raise ResourceClientError("varint too long in protobuf message")


def _take(data: bytes, pos: int, size: int) -> tuple[bytes, int]:
    end = pos + size
    if end > len(data):
        raise ResourceClientError("truncated field in protobuf message")
    return data[pos:end], end


def _fields(data: bytes) -> Iterator[tuple[int, int, object]]:
    """Yield (field number, wire type, value) for each field of a message."""
    pos = 0
    while pos < len(data):
        key, pos = _read_varint(data, pos)
        number, wire_type = key >> 3, key & 0x7
        if wire_type == 0:
            value, pos = _read_varint(data, pos)
        elif wire_type == 1:
            value, pos = _take(data, pos, 8)
        elif wire_type == 2:
            length, pos = _read_varint(data, pos)
            value, pos = _take(data, pos, length)
        elif wire_type == 5:
            value, pos = _take(data, pos, 4)
        else:
            raise ResourceClientError(f"unsupported protobuf wire type {wire_type}")
        yield number, wire_type, value


def _length_delimited(data: bytes) -> Iterator[tuple[int, bytes]]:
    for number, wire_type, value in _fields(data):
        if wire_type == 2:
            yield number, value


def _text(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ResourceClientError(f"invalid UTF-8 string in protobuf message: {exc}") from exc


def _decode_container_devices(data: bytes) -> ContainerDevices:
    devices = ContainerDevices()
    for number, value in _length_delimited(data):
        if number == 1:
            devices.resource_name = _text(value)
        elif number == 2:
            devices.device_ids.append(_text(value))
    return devices


def _decode_claim_resource(data: bytes) -> ClaimResource:
    claim = ClaimResource()
    for number, value in _length_delimited(data):
        if number == 1:
            name = ""
            for inner_number, inner_value in _length_delimited(value):
                if inner_number == 1:
                    name = _text(inner_value)
            claim.cdi_devices.append(name)
    return claim


def _decode_dynamic_resource(data: bytes) -> DynamicResource:
    resource = DynamicResource()
    for number, value in _length_delimited(data):
        if number == 1:
            resource.class_name = _text(value)
        elif number == 2:
            resource.claim_name = _text(value)
        elif number == 3:
            resource.claim_namespace = _text(value)
        elif number == 4:
            resource.claim_resources.append(_decode_claim_resource(value))
    return resource


def _decode_container(data: bytes) -> ContainerResources:
    container = ContainerResources()
    for number, value in _length_delimited(data):
        if number == 1:
            container.name = _text(value)
        elif number == 2:
            container.devices.append(_decode_container_devices(value))
        elif number == 5:
            container.dynamic_resources.append(_decode_dynamic_resource(value))
    return container


def _decode_pod_resources(data: bytes) -> PodResources:
    pod = PodResources()
    for number, value in _length_delimited(data):
        if number == 1:
            pod.name = _text(value)
        elif number == 2:
            pod.namespace = _text(value)
        elif number == 3:
            pod.containers.append(_decode_container(value))
    return pod


def decode_list_response(data) -> list[PodResources]:
    """Decode a serialized ListPodResourcesResponse into its pod resources."""
    return [
        _decode_pod_resources(value)
        for number, value in _length_delimited(bytes(data))
        if number == 1
    ]


def local_endpoint(path) -> str:
    """Return the unix socket path for an endpoint name."""
    return f"{path}.sock"


def fetch_pod_resources(socket_path, timeout) -> list[PodResources]:
    """Call the kubelet List API on ``socket_path`` and return its pod resources."""
    options = [("grpc.max_receive_message_length", DEFAULT_POD_RESOURCES_MAX_SIZE)]
    try:
        with grpc.insecure_channel(f"unix:{socket_path}", options=options) as channel:
            list_call = channel.unary_unary(LIST_METHOD, response_deserializer=decode_list_response)
            return list_call(b"", timeout=timeout)
    except grpc.RpcError as exc:
        raise ResourceClientError(
            f"getPodResources: failed to list pod resources from {socket_path}: {exc}"
        ) from exc


@dataclass
class KubeletClient:
    """Pod resources as reported by the kubelet."""

    resources: list[PodResources] = field(default_factory=list)

    def get_pod_resource_map(self, pod: Pod) -> dict[str, ResourceInfo]:
        """Return the devices allocated to ``pod``, keyed by resource or class name."""
        if not pod.name or not pod.namespace:
            raise ResourceClientError("GetPodResourceMap: Pod name or namespace cannot be empty")
        resource_map: dict[str, ResourceInfo] = {}
        for resources in self.resources:
            if resources.name != pod.name or resources.namespace != pod.namespace:
                continue
            for container in resources.containers:
                self._add_device_plugin_resources(container.devices, resource_map)
                self._add_dra_resources(container.dynamic_resources, resource_map)
        return resource_map

    @staticmethod
    def _add_device_plugin_resources(devices, resource_map):
        for device in devices:
            info = resource_map.setdefault(device.resource_name, ResourceInfo())
            info.device_ids.extend(device.device_ids)

    @staticmethod
    def _add_dra_resources(dynamic_resources, resource_map):
        for dynamic in dynamic_resources:
            device_ids = []
            for claim in dynamic.claim_resources:
                for cdi_name in claim.cdi_devices:
                    parts = cdi_name.split("=")
                    if len(parts) == 2:
                        device_ids.append(parts[1])
                    else:
                        logger.error("GetPodResourceMap: Invalid CDI format")
            info = resource_map.setdefault(dynamic.class_name, ResourceInfo())
            info.device_ids.extend(device_ids)


def get_kubelet_client(socket_path) -> KubeletClient:
    """Fetch pod resources from the kubelet socket at ``socket_path``."""
    try:
        resources = fetch_pod_resources(socket_path, KUBELET_CONNECTION_TIMEOUT)
    except ResourceClientError as exc:
        raise ResourceClientError(
            f"getKubeletClient: error getting pod resources from client: {exc}"
        ) from exc
    return KubeletClient(resources=resources)


def get_resource_client(kubelet_socket=""):
    """Return a resource client: the kubelet API if its socket exists, else the checkpoint."""
    socket_path = kubelet_socket or local_endpoint(
        os.path.join(DEFAULT_POD_RESOURCES_PATH, DEFAULT_KUBELET_SOCKET)
    )
    if os.path.exists(socket_path):
        logger.debug("GetResourceClient: using Kubelet resource API endpoint")
        return get_kubelet_client(socket_path)
    logger.debug("GetResourceClient: using Kubelet device plugin checkpoint")
    return checkpoint.get_checkpoint()