"""Reading device allocations from the kubelet device-plugin checkpoint file."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from multus_cni.resources import Pod, ResourceInfo

logger = logging.getLogger(__name__)

CHECKPOINT_FILE = "/var/lib/kubelet/device-plugins/kubelet_internal_checkpoint"


class CheckpointError(Exception):
    """Raised when the checkpoint cannot be read or queried."""


@dataclass
class PodDevicesEntry:
    """One device allocation record: pod, container, resource and devices."""

    pod_uid: str = ""
    container_name: str = ""
    resource_name: str = ""
    device_ids: dict[int, list[str]] = field(default_factory=dict)
    alloc_resp: bytes = b""

    @classmethod
    def _from_json(cls, item) -> PodDevicesEntry:
        if not isinstance(item, dict):
            raise CheckpointError(f"pod device entry is not an object: {item!r}")
        device_ids = {}
        for key, ids in (item.get("DeviceIDs") or {}).items():
            if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
                raise CheckpointError(f"device IDs for key {key!r} are not a list of strings")
            try:
                device_ids[int(key)] = list(ids)
            except ValueError as exc:
                raise CheckpointError(f"invalid device ID key {key!r}") from exc
        alloc = item.get("AllocResp") or ""
        try:
            alloc_resp = base64.b64decode(alloc, validate=True)
        except (binascii.Error, TypeError) as exc:
            raise CheckpointError(f"invalid AllocResp value: {exc}") from exc
        return cls(
            pod_uid=str(item.get("PodUID") or ""),
            container_name=str(item.get("ContainerName") or ""),
            resource_name=str(item.get("ResourceName") or ""),
            device_ids=device_ids,
            alloc_resp=alloc_resp,
        )


@dataclass
class Checkpoint:
    """The pod device entries loaded from a checkpoint file."""

    file_name: str
    pod_entries: list[PodDevicesEntry] = field(default_factory=list)

    @classmethod
    def from_file(cls, path) -> Checkpoint:
        """Load the pod device entries from ``path``."""
        try:
            raw = Path(path).read_bytes()
        except OSError as exc:
            raise CheckpointError(f"getPodEntries: error reading file {path}: {exc}") from exc
        try:
            document = json.loads(raw)
        except ValueError as exc:
            raise CheckpointError(f"getPodEntries: error unmarshalling raw bytes {exc}") from exc
        if not isinstance(document, dict):
            raise CheckpointError("getPodEntries: checkpoint is not a JSON object")
        data = document.get("Data") or {}
        if not isinstance(data, dict):
            raise CheckpointError("getPodEntries: checkpoint Data is not a JSON object")
        entries = [PodDevicesEntry._from_json(item) for item in data.get("PodDeviceEntries") or []]
        logger.debug("getPodEntries: pod entries %r", entries)
        return cls(file_name=str(path), pod_entries=entries)

    def get_pod_resource_map(self, pod: Pod) -> dict[str, ResourceInfo]:
        """Return the devices allocated to ``pod``, keyed by resource name."""
        if not pod.uid:
            raise CheckpointError("GetPodResourceMap: invalid Pod cannot be empty")
        resource_map: dict[str, ResourceInfo] = {}
        for entry in self.pod_entries:
            if entry.pod_uid != pod.uid:
                continue
            info = resource_map.setdefault(entry.resource_name, ResourceInfo())
            for ids in entry.device_ids.values():
                info.device_ids.extend(ids)
        return resource_map


def get_checkpoint(path=None) -> Checkpoint:
    """Load the kubelet checkpoint, from the default location unless ``path`` is given."""
    path = CHECKPOINT_FILE if path is None else path
    checkpoint = Checkpoint.from_file(path)
    logger.debug("getCheckpoint: created checkpoint instance with file: %s", path)
    return checkpoint