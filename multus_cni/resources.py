"""Shared data types describing pods and the devices allocated to them."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ResourceInfo:
    """Device IDs allocated to a pod for one resource name.

    ``index`` points at the next device ID to hand out to a delegate.
    """

    device_ids: list[str] = field(default_factory=list)
    index: int = 0


@dataclass
class Pod:
    """The parts of a Kubernetes pod that the plugin looks at."""

    name: str = ""
    namespace: str = ""
    uid: str = ""
    annotations: dict[str, str] = field(default_factory=dict)