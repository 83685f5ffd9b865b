"""Entrypoint for thin images: installs multus, its kubeconfig and its CNI config."""

from __future__ import annotations

import argparse
import base64
import os
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager, suppress

from multus_cni.cmdutils import copy_file_atomic
from multus_cni.thin_options import AUTO, EntrypointError, Options, get_file_and_hash

SERVICE_ACCOUNT_TOKEN_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/token"
SERVICE_ACCOUNT_CA_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"
WATCH_INTERVAL = 1.0

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def _render_kubeconfig(server: str, tls_config: str, token: str) -> str:
    return (
        "# Kubeconfig file for Multus CNI plugin.\n"
        "apiVersion: v1\n"
        "kind: Config\n"
        "clusters:\n"
        "- name: local\n"
        "  cluster:\n"
        f"    server: {server}\n"
        f"    {tls_config}\n"
        "users:\n"
        "- name: multus\n"
        "  user:\n"
        f'    token: "{token}"\n'
        "contexts:\n"
        "- name: multus-context\n"
        "  context:\n"
        "    cluster: local\n"
        "    user: multus\n"
        "current-context: multus-context\n"
    )


def _go_bool(value: bool) -> str:
    return "true" if value else "false"


def create_kube_config(
    options: Options,
    prev_ca_hash=None,
    prev_sa_token_hash=None,
    ca_file=SERVICE_ACCOUNT_CA_FILE,
    token_file=SERVICE_ACCOUNT_TOKEN_FILE,
) -> tuple[bytes, bytes]:
    """Write the multus kubeconfig from the service account CA and token.

    Returns the CA and token hashes. The file is left alone when the relevant
    hashes match the previous ones (only the token counts when TLS
    verification is skipped).
    """
    ca_bytes, ca_hash = get_file_and_hash(ca_file)
    token_bytes, token_hash = get_file_and_hash(token_file)

    ca_unchanged = prev_ca_hash is not None and prev_ca_hash == ca_hash
    sa_unchanged = prev_sa_token_hash is not None and prev_sa_token_hash == token_hash

    if options.skip_tls_verify:
        if sa_unchanged:
            return ca_hash, token_hash
    elif ca_unchanged and sa_unchanged:
        return ca_hash, token_hash

    if prev_sa_token_hash is not None:
        print(
            f"CA ({_go_bool(not ca_unchanged)}) or SA token ({_go_bool(not sa_unchanged)}) "
            "changed - recreating kubeconfig"
        )

    multus_d = f"{options.cni_conf_dir}/multus.d"
    try:
        os.makedirs(multus_d, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise EntrypointError(f"cannot create multus.d directory: {exc}") from exc
    try:
        os.makedirs(options.multus_cni_conf_dir, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise EntrypointError(
            f"cannot create multus-cni-conf-dir({options.multus_cni_conf_dir}) directory: {exc}"
        ) from exc

    protocol = os.environ.get("KUBERNETES_SERVICE_PROTOCOL") or "https"
    host = os.environ.get("KUBERNETES_SERVICE_HOST", "")
    port = os.environ.get("KUBERNETES_SERVICE_PORT", "")

    if options.skip_tls_verify:
        tls_config = "insecure-skip-tls-verify: true"
    else:
        ca_data = base64.b64encode(ca_bytes).decode("ascii").replace("\n", "")
        tls_config = f"certificate-authority-data: {ca_data}"

    content = _render_kubeconfig(
        f"{protocol}://[{host}]:{port}",
        tls_config,
        token_bytes.decode("utf-8", errors="surrogateescape"),
    )

    temp_path = f"{multus_d}/multus.kubeconfig.new"
    dest_path = f"{multus_d}/multus.kubeconfig"
    try:
        fd = os.open(temp_path, os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o600)
    except OSError as exc:
        raise EntrypointError(f"cannot create kubeconfig temp file: {exc}") from exc
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(content.encode("utf-8", errors="surrogateescape"))
            handle.flush()
            os.fsync(handle.fileno())
    except OSError as exc:
        with suppress(OSError):
            os.remove(temp_path)
        raise EntrypointError(f"cannot flush kubeconfig temp file: {exc}") from exc

    try:
        os.replace(temp_path, dest_path)
    except OSError as exc:
        raise EntrypointError(
            f"cannot replace {dest_path!r} with temp file {temp_path!r}: {exc}"
        ) from exc

    print(f"kubeconfig is created in {dest_path}")
    return ca_hash, token_hash


def cleanup_multus_conf(options: Options) -> None:
    """Remove the multus CNI config written or copied by the entrypoint."""
    if options.multus_conf_file == AUTO:
        targets = [
            f"{options.cni_conf_dir}/00-multus.conf",
            f"{options.cni_conf_dir}/00-multus.conflist",
        ]
    else:
        targets = [
            os.path.join(options.cni_conf_dir, os.path.basename(options.multus_conf_file))
        ]
    for target in targets:
        with suppress(OSError):
            os.remove(target)


def _parse_bool(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {text!r}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="thin_entrypoint", add_help=False)

    def text(flag, dest, default, help_text):
        parser.add_argument(flag, dest=dest, default=default, help=help_text)

    def flag(name, dest, default, help_text):
        parser.add_argument(
            name, dest=dest, default=default, nargs="?", const=True,
            type=_parse_bool, metavar="BOOL", help=help_text,
        )

    text("--cni-bin-dir", "cni_bin_dir", "/host/opt/cni/bin", "CNI binary directory")
    text("--cni-conf-dir", "cni_conf_dir", "/host/etc/cni/net.d", "CNI config directory")
    text("--cni-version", "cni_version", "",
         "CNI version for multus CNI config (e.g. '0.3.1')")
    text("--multus-conf-file", "multus_conf_file", AUTO, "multus CNI config file")
    text("--multus-bin-file", "multus_bin_file", "/usr/src/multus-cni/bin/multus",
         "multus binary file path")
    text("--multus-cni-conf-dir", "multus_cni_conf_dir", "/host/etc/cni/multus/net.d",
         "multus specific CNI config directory")
    flag("--skip-multus-binary-copy", "skip_multus_binary_copy", False,
         "skip multus binary file copy")
    text("--multus-kubeconfig-file-host", "multus_kubeconfig_file_host",
         "/etc/cni/net.d/multus.d/multus.kubeconfig",
         "kubeconfig for multus (used only with --multus-conf-file=auto)")
    text("--multus-master-cni-file-name", "multus_master_cni_file_name", "",
         "master CNI file in multus-autoconfig-dir")
    flag("--namespace-isolation", "namespace_isolation", False, "namespace isolation")
    text("--global-namespaces", "global_namespaces", "",
         "global namespaces, comma separated (used only with --namespace-isolation=true)")
    text("--multus-autoconfig-dir", "multus_autoconfig_dir", "/host/etc/cni/net.d",
         "multus autoconfig dir (used only with --multus-conf-file=auto)")
    flag("--multus-log-to-stderr", "multus_log_to_stderr", True, "log to stderr")
    text("--multus-log-level", "multus_log_level", "", "multus log level")
    text("--multus-log-file", "multus_log_file", "", "multus log file")
    flag("--override-network-name", "override_network_name", False,
         "override network name from master cni file (used only with --multus-conf-file=auto)")
    flag("--cleanup-config-on-exit", "cleanup_config_on_exit", False,
         "cleanup config file on exit")
    flag("--skip-config-watch", "skip_multus_conf_watch", False,
         "dont watch for config (master cni and kubeconfig) changes "
         "(used only with --multus-conf-file=auto)")
    flag("--rename-conf-file", "rename_conf_file", False,
         "rename master config file to invalidate (used only with --multus-conf-file=auto)")
    text("--readiness-indicator-file", "readiness_indicator_file", "",
         "readiness indicator file (used only with --multus-conf-file=auto)")
    text("--additional-bin-dir", "additional_bin_dir", "",
         "adds binDir option to configuration (used only with --multus-conf-file=auto)")
    flag("--skip-tls-verify", "skip_tls_verify", False, argparse.SUPPRESS)
    flag("--force-cni-version", "force_cni_version", False, argparse.SUPPRESS)
    parser.add_argument("-h", "--help", dest="help", action="store_true",
                        help="show help message and quit")
    return parser


def parse_args(argv=None) -> Options:
    """Parse the command line into ``Options``.

    Asking for help prints it to stderr and raises ``SystemExit(1)``.
    """
    parser = _build_parser()
    namespace = parser.parse_args(argv)
    values = vars(namespace)
    if values.pop("help"):
        parser.print_help(sys.stderr)
        raise SystemExit(1)
    return Options(**values)


@contextmanager
def _stop_on_signals() -> Iterator[threading.Event]:
    stop = threading.Event()
    handled = (signal.SIGINT, signal.SIGTERM)
    previous = {sig: signal.getsignal(sig) for sig in handled}
    for sig in handled:
        signal.signal(sig, lambda _signum, _frame: stop.set())
    try:
        yield stop
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _fail(message: str) -> int:
    print(message, file=sys.stderr)
    return 1


def _watch(options: Options, stop: threading.Event, master_path: str,
           master_hash: bytes, ca_hash: bytes, sa_hash: bytes) -> int:
    print("Entering watch loop...")
    master_exists = True
    while not stop.wait(WATCH_INTERVAL):
        try:
            ca_hash, sa_hash = create_kube_config(options, ca_hash, sa_hash)
        except EntrypointError as exc:
            return _fail(f"failed to update multus kubeconfig: {exc}")

        if not os.path.exists(master_path):
            if master_exists:
                print(f"Master plugin @ {master_path!r} has been deleted. "
                      "waiting for its restoration...")
            master_exists = False
            continue

        if not master_exists:
            print(f"Master plugin @ {master_path!r} was restored. "
                  "Regenerating given configuration.")
            master_exists = True

        try:
            master_path, master_hash = options.create_multus_config(master_hash)
        except EntrypointError as exc:
            return _fail(f"failed to create multus config: {exc}")
    return 0


def main(argv=None) -> int:
    """Install multus and its configuration, then wait (and optionally watch) until signalled."""
    try:
        options = parse_args(argv)
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 1

    try:
        options.verify_file_exists()
    except EntrypointError as exc:
        return _fail(str(exc))

    if not options.skip_multus_binary_copy:
        try:
            copy_file_atomic(options.multus_bin_file, options.cni_bin_dir, "_multus", "multus")
        except OSError as exc:
            return _fail(f"failed at multus copy: {exc}")

    master_path = ""
    master_hash = b""
    try:
        ca_hash, sa_hash = create_kube_config(options)
    except EntrypointError as exc:
        return _fail(f"failed to create multus kubeconfig: {exc}")

    if options.multus_conf_file != AUTO:
        conf_name = os.path.basename(options.multus_conf_file)
        try:
            copy_file_atomic(options.multus_conf_file, options.cni_conf_dir,
                             f"{conf_name}.temp", conf_name)
        except OSError as exc:
            return _fail(f"failed at copy multus conf file: {exc}")
        print(f"multus config file {options.multus_conf_file} is copied.")
    else:
        print("kubeconfig file is created.")
        try:
            master_path, master_hash = options.create_multus_config(None)
        except EntrypointError as exc:
            return _fail(f"failed to create multus config: {exc}")
        print("multus config file is created.")

    with _stop_on_signals() as stop:
        try:
            watch = (
                options.cleanup_config_on_exit
                and options.multus_conf_file == AUTO
                and not options.skip_multus_conf_watch
            )
            if watch:
                return _watch(options, stop, master_path, master_hash, ca_hash, sa_hash)
            stop.wait()
            return 0
        finally:
            if options.cleanup_config_on_exit:
                cleanup_multus_conf(options)


if __name__ == "__main__":
    sys.exit(main())