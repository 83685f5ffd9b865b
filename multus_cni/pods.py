"""Pod-level helpers: reading network annotations and classifying pods."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from multus_cni.networks import NetworkSelectionElement, parse_pod_network_annotation
from multus_cni.resources import Pod

logger = logging.getLogger(__name__)

RESOURCE_NAME_ANNOT = "k8s.v1.cni.cncf.io/resourceName"
DEFAULT_NET_ANNOT = "v1.multus-cni.io/default-network"
NETWORK_ATTACHMENT_ANNOT = "k8s.v1.cni.cncf.io/networks"
CONFIG_SOURCE_ANNOTATION_KEY = "kubernetes.io/config.source"


class NoK8sNetworkError(Exception):
    """Raised when a pod carries no network attachment annotation."""


def get_pod_network(pod: Pod) -> list[NetworkSelectionElement]:
    """Return the networks requested in ``pod``'s network attachment annotation.

    Raises ``NoK8sNetworkError`` when the annotation is missing or empty, and
    ``NetworkAnnotationError`` when it cannot be parsed.
    """
    logger.debug("GetPodNetwork: %r", pod)
    annotation = (pod.annotations or {}).get(NETWORK_ATTACHMENT_ANNOT, "")
    if not annotation:
        raise NoK8sNetworkError("no kubernetes network found")
    return parse_pod_network_annotation(annotation, pod.namespace)


def is_valid_namespace_reference(target_ns, allowed_namespaces: Iterable[str]) -> bool:
    """Return True if ``target_ns`` is one of ``allowed_namespaces``."""
    return target_ns in allowed_namespaces


def is_static_pod(pod: Pod) -> bool:
    """Return True if the pod was not created through the API server."""
    source = (pod.annotations or {}).get(CONFIG_SOURCE_ANNOTATION_KEY)
    return source is not None and source != "api"