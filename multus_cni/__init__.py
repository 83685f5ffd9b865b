"""Node-side tooling for a multi-network CNI meta-plugin: config generation, installers,
device resource lookup, network annotation parsing and CSR review."""

__version__ = "4.0.0"

__all__ = [
    "certapprover",
    "checkpoint",
    "cmdutils",
    "install",
    "kubeletclient",
    "networks",
    "pods",
    "resources",
    "thin_entrypoint",
    "thin_options",
]