# multus_cni

Node-side tooling for a CNI meta-plugin that attaches several networks to a
Kubernetes pod. It provides:

- generation of the meta-plugin's CNI configuration from the node's primary
  ("master") CNI configuration, kept up to date while the entrypoint runs;
- a kubeconfig for the plugin written from the pod's service account;
- atomic installation of plugin binaries into the CNI binary directory;
- lookup of the devices the kubelet has allocated to a pod, over the kubelet
  pod-resources gRPC socket or from the device-plugin checkpoint file;
- parsing of the `k8s.v1.cni.cncf.io/networks` pod annotation;
- the review rules for per-node certificate signing requests.

## Installation

```
pip install multus_cni
```

For running the tests:

```
pip install "multus_cni[test]"
pytest
```

## Commands

### `multus-install`

Copies a plugin binary from `/usr/src/multus-cni/bin` into the CNI binary
directory, replacing any existing file atomically and keeping the source's
permission bits.

```
multus-install --type thick --dest-dir /host/opt/cni/bin
multus-install -t thin
```

`--type` (`-t`) is `thick` (installs `multus-shim`) or `thin` (installs
`multus`); a missing or other value prints an error and exits with status 1.
`--dest-dir` (`-d`) defaults to `/host/opt/cni/bin`. `--help` (`-h`) prints
the options and exits with status 1.

### `multus-thin-entrypoint`

Entrypoint for the stand-alone ("thin") deployment. It

1. checks that `--cni-conf-dir`, `--cni-bin-dir`, `--multus-bin-file` and,
   unless it is `auto`, `--multus-conf-file` exist;
2. copies the plugin binary into the CNI binary directory as `multus`
   (skipped with `--skip-multus-binary-copy`);
3. writes `<cni-conf-dir>/multus.d/multus.kubeconfig` from the
   service-account CA and token under
   `/var/run/secrets/kubernetes.io/serviceaccount/`, pointing at
   `KUBERNETES_SERVICE_PROTOCOL` (default `https`), `KUBERNETES_SERVICE_HOST`
   and `KUBERNETES_SERVICE_PORT`;
4. either copies the file given by `--multus-conf-file` into the CNI config
   directory, or, with `--multus-conf-file auto` (the default), generates
   `00-multus.conf` (or `00-multus.conflist` when the CNI version is 1.0.0)
   delegating to the master configuration: the file named by
   `--multus-master-cni-file-name`, or else the alphabetically first
   `.conf`/`.conflist` file in `--multus-autoconfig-dir` whose name does not
   start with `00-multus.conf`;
5. waits for SIGINT or SIGTERM.

```
multus-thin-entrypoint \
    --cni-conf-dir /host/etc/cni/net.d \
    --cni-bin-dir /host/opt/cni/bin \
    --multus-conf-file auto \
    --cleanup-config-on-exit
```

With `--cleanup-config-on-exit` and `--multus-conf-file auto`, and without
`--skip-config-watch`, the command checks once a second for changes to the
service-account credentials and to the master configuration and regenerates
its output when they change; if the master file disappears it waits for it to
come back. With `--cleanup-config-on-exit` the configuration it wrote is
removed on exit.

Other options: `--cni-version`, `--multus-cni-conf-dir`,
`--multus-kubeconfig-file-host`, `--namespace-isolation`,
`--global-namespaces`, `--multus-log-to-stderr`, `--multus-log-level`
(`debug`, `verbose`, `error` or `panic`, any case), `--multus-log-file`,
`--readiness-indicator-file`, `--additional-bin-dir`,
`--override-network-name` and `--rename-conf-file`. Boolean options may be
given alone or as `--option=true`/`--option=false`. Run with `--help` for the
full list.

## Library use

Copy a file atomically, keeping the source's permission bits:

```python
from multus_cni.cmdutils import copy_file_atomic

copy_file_atomic("/usr/src/bin/multus", "/opt/cni/bin", "multus.temp", "multus")
```

Generate the multus configuration directly:

```python
from multus_cni.thin_options import Options

options = Options(
    multus_autoconfig_dir="/etc/cni/net.d",
    cni_conf_dir="/etc/cni/net.d",
    multus_kubeconfig_file_host="/etc/cni/net.d/multus.d/multus.kubeconfig",
)
master_path, master_hash = options.create_multus_config(None)
```

Failures raise `EntrypointError`.

Parse a network-selection annotation, either the comma-separated short form
(`namespace/name@ifname`) or the JSON list form:

```python
from multus_cni.networks import parse_pod_network_annotation

networks = parse_pod_network_annotation("macvlan-conf, other-ns/sriov@net1", "default")
for net in networks:
    print(net.namespace, net.name, net.interface_request)
```

Malformed annotations raise `NetworkAnnotationError`.
`multus_cni.pods.get_pod_network` reads the annotation from a `Pod` and
raises `NoK8sNetworkError` when it is absent.

Look up the devices allocated to a pod:

```python
from multus_cni.kubeletclient import get_resource_client
from multus_cni.resources import Pod

pod = Pod(name="pod-name", namespace="pod-namespace", uid="pod-uid")
client = get_resource_client("")
resource_map = client.get_pod_resource_map(pod)
```

`get_resource_client` uses the kubelet pod-resources socket when it exists
and falls back to the kubelet device-plugin checkpoint file otherwise; the
result maps resource (or device class) names to `ResourceInfo` entries with
their device IDs.

Review a certificate signing request submitted by a node:

```python
from multus_cni.certapprover import apply_review, review_csr

review = review_csr(csr, "system:multus")
apply_review(csr, review)
```

`review_csr` approves a request only when its user is `system:node:<name>` or
`system:multus:<name>` with a valid DNS subdomain as the name, its usages are
exactly digital signature and client auth, its groups are among
`system:nodes`, `system:multus` and `system:authenticated`, its subject has
common name `system:multus:<name>` and organization `system:multus`, and its
expiration is set and at most one year. Requests already signed, approved or
denied are skipped. `apply_review` appends the matching condition.

## What this package does not do

It does not talk to the Kubernetes API server. There is no controller that
watches and updates certificate signing requests (the review rules work on
`CertificateSigningRequest` objects you supply), no lookup of network
attachment definitions, and no code that attaches networks to pods: the CNI
plugin and daemon that consume the generated configuration are not part of
this package.