[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "multus_cni"
version = "4.0.0"
description = "Node-side tooling for a multi-network CNI meta-plugin: config generation, installers, device resource lookup, network annotation parsing and CSR review."
requires-python = ">=3.10"
keywords = [
    "cni",
    "kubernetes",
    "networking",
    "multus",
    "network-attachment-definition",
    "kubelet",
    "csr",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "cryptography",
    "grpcio",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
multus-install = "multus_cni.install:main"
multus-thin-entrypoint = "multus_cni.thin_entrypoint:main"

[tool.hatch.build.targets.wheel]
packages = ["multus_cni"]

[tool.hatch.build.targets.sdist]
include = [
    "multus_cni",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
