"""Options of the thin entrypoint and generation of the multus CNI config file."""

from __future__ import annotations

import hashlib
import json
import os
from contextlib import suppress
from dataclasses import dataclass
from decimal import Decimal
from string import Template

AUTO = "auto"
MULTUS_CONF_PREFIX = "00-multus.conf"
DEFAULT_NETWORK_NAME = "multus-cni-network"
LOG_LEVELS = frozenset({"debug", "error", "panic", "verbose"})
CONF_EXTENSIONS = (".conf", ".conflist")

_INDENT = "\n        "

_CONFLIST_TEMPLATE = Template(
    "{\n"
    '    "cniVersion": "${cni_version}",\n'
    '    "name": "${network_name}",\n'
    '    "plugins": [ {\n'
    '        "type": "multus",${options}\n'
    '        "kubeconfig": "${kubeconfig}",\n'
    '        "delegates": [\n'
    "            ${master_plugin}\n"
    "        ]\n"
    "    }]\n"
    "}\n"
)

_CONF_TEMPLATE = Template(
    "{\n"
    '        "cniVersion": "${cni_version}",\n'
    '        "name": "${network_name}",\n'
    '        "type": "multus",${options}\n'
    '        "kubeconfig": "${kubeconfig}",\n'
    '        "delegates": [\n'
    "                ${master_plugin}\n"
    "        ]\n"
    "}\n"
)

_SHORT_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
    '"': '\\"',
}

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class EntrypointError(Exception):
    """Raised when the entrypoint cannot prepare its files."""


def _go_quote(value: str) -> str:
    """Quote a string the way a %q verb renders it."""
    out = []
    for ch in value:
        if ch in _SHORT_ESCAPES:
            out.append(_SHORT_ESCAPES[ch])
        elif ch.isprintable():
            out.append(ch)
        else:
            code = ord(ch)
            if code < 0x20 or code == 0x7F:
                out.append(f"\\x{code:02x}")
            elif code < 0x10000:
                out.append(f"\\u{code:04x}")
            else:
                out.append(f"\\U{code:08x}")
    return '"' + "".join(out) + '"'


def _json_number(text: str) -> float:
    value = float(text)
    if value in (float("inf"), float("-inf")):
        raise ValueError(f"number {text} out of range")
    return value


def _reject_constant(name: str):
    raise ValueError(f"invalid JSON value {name}")


def _load_json(data: bytes):
    return json.loads(
        data,
        parse_float=_json_number,
        parse_int=_json_number,
        parse_constant=_reject_constant,
    )


def _format_number(value: float) -> str:
    magnitude = abs(value)
    if magnitude != 0 and (magnitude < 1e-6 or magnitude >= 1e21):
        mantissa, _, exponent = repr(value).partition("e")
        if exponent.startswith("-0"):
            exponent = "-" + exponent[2:]
        return f"{mantissa}e{exponent}"
    return format(Decimal(repr(value)).normalize(), "f")


def _format_string(value: str) -> str:
    text = json.dumps(value, ensure_ascii=False)
    return "".join(_HTML_ESCAPES.get(ch, ch) for ch in text)


def _go_json(value) -> str:
    """Encode compactly with sorted keys, as the config's consumers expect."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _format_number(float(value))
    if isinstance(value, str):
        return _format_string(value)
    if isinstance(value, dict):
        items = (f"{_format_string(k)}:{_go_json(value[k])}" for k in sorted(value))
        return "{" + ",".join(items) + "}"
    if isinstance(value, list):
        return "[" + ",".join(_go_json(item) for item in value) + "]"
    raise TypeError(f"cannot encode value of type {type(value).__name__}")


def get_file_and_hash(path) -> tuple[bytes, bytes]:
    """Return the contents of ``path`` and their SHA-256 digest."""
    try:
        os.stat(path)
    except OSError as exc:
        raise EntrypointError(f"file {path} not found: {exc}") from exc
    try:
        with open(path, "rb") as handle:
            content = handle.read()
    except OSError as exc:
        raise EntrypointError(f"cannot read {path} file: {exc}") from exc
    return content, hashlib.sha256(content).digest()


def _extension(name: str) -> str:
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def conf_files(directory, extensions) -> list[str]:
    """Return the files in ``directory`` with one of ``extensions``, sorted by name.

    A missing directory yields an empty list.
    """
    try:
        with os.scandir(directory) as entries:
            ordered = sorted(entries, key=lambda entry: entry.name)
    except FileNotFoundError:
        return []
    wanted = set(extensions)
    return [
        os.path.join(directory, entry.name)
        for entry in ordered
        if not entry.is_dir(follow_symlinks=False) and _extension(entry.name) in wanted
    ]


def _bool_map(mapping, where: str) -> dict[str, bool]:
    if not isinstance(mapping, dict):
        raise EntrypointError(f"'capabilities' in {where} is not an object")
    result = {}
    for key, value in mapping.items():
        if not isinstance(value, bool):
            raise EntrypointError(f"capability {key!r} in {where} is not a boolean")
        result[key] = value
    return result


def _write_replace(temp_path: str, content: str, dest_path: str) -> None:
    try:
        fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    except OSError as exc:
        raise EntrypointError(f"cannot create multus cni temp file: {exc}") from exc
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
    except OSError as exc:
        with suppress(OSError):
            os.remove(temp_path)
        raise EntrypointError(f"cannot flush multus cni config: {exc}") from exc
    try:
        os.replace(temp_path, dest_path)
    except OSError as exc:
        raise EntrypointError(
            f"cannot replace {_go_quote(dest_path)} with temp file {_go_quote(temp_path)}: {exc}"
        ) from exc


@dataclass
class Options:
    """Command line options of the thin entrypoint.

    Every field defaults to its empty value; the command line parser supplies
    the documented flag defaults.
    """

    cni_bin_dir: str = ""
    cni_conf_dir: str = ""
    cni_version: str = ""
    multus_conf_file: str = ""
    multus_bin_file: str = ""
    multus_cni_conf_dir: str = ""
    skip_multus_binary_copy: bool = False
    multus_kubeconfig_file_host: str = ""
    multus_master_cni_file_name: str = ""
    namespace_isolation: bool = False
    global_namespaces: str = ""
    multus_autoconfig_dir: str = ""
    multus_log_to_stderr: bool = False
    multus_log_level: str = ""
    multus_log_file: str = ""
    override_network_name: bool = False
    cleanup_config_on_exit: bool = False
    rename_conf_file: bool = False
    readiness_indicator_file: str = ""
    additional_bin_dir: str = ""
    force_cni_version: bool = False
    skip_tls_verify: bool = False
    skip_multus_conf_watch: bool = False

    def verify_file_exists(self) -> None:
        """Raise ``EntrypointError`` if a configured directory or file is missing."""
        checks = [
            ("cni-conf-dir", self.cni_conf_dir),
            ("cni-bin-dir", self.cni_bin_dir),
            ("multus-bin-file", self.multus_bin_file),
        ]
        if self.multus_conf_file != AUTO:
            checks.append(("multus-conf-file", self.multus_conf_file))
        for flag, path in checks:
            try:
                os.stat(path)
            except OSError as exc:
                raise EntrypointError(f"{flag} is not found: {exc}") from exc

    def get_master_config_path(self) -> str:
        """Return the path of the master CNI config to delegate to."""
        if self.multus_master_cni_file_name:
            return os.path.join(self.multus_autoconfig_dir, self.multus_master_cni_file_name)
        try:
            files = conf_files(self.multus_autoconfig_dir, CONF_EXTENSIONS)
        except OSError as exc:
            raise EntrypointError(
                f"cannot find master CNI config in {_go_quote(self.multus_autoconfig_dir)}: {exc}"
            ) from exc
        for filename in files:
            if not os.path.basename(filename).startswith(MULTUS_CONF_PREFIX):
                return filename
        raise EntrypointError(
            f"cannot find valid master CNI config in {_go_quote(self.multus_autoconfig_dir)}"
        )

    def _option_lines(self, capabilities: dict[str, bool]) -> str:
        level = self.multus_log_level.lower()
        if level and level not in LOG_LEVELS:
            raise EntrypointError(
                "Log levels should be one of: debug/verbose/error/panic, did not understand: "
                f"{_go_quote(self.multus_log_level)}"
            )
        lines = []
        if capabilities:
            lines.append(f'"capabilities": {_go_json(capabilities)},')
        if self.namespace_isolation:
            lines.append('"namespaceIsolation": true,')
        if self.global_namespaces:
            lines.append(f'"globalNamespaces": {_go_quote(self.global_namespaces)},')
        if not self.multus_log_to_stderr:
            lines.append('"logToStderr": false,')
        if level:
            lines.append(f'"logLevel": {_go_quote(level)},')
        if self.multus_log_file:
            lines.append(f'"logFile": {_go_quote(self.multus_log_file)},')
        if self.additional_bin_dir:
            lines.append(f'"binDir": {_go_quote(self.additional_bin_dir)},')
        if self.multus_cni_conf_dir:
            lines.append(f'"cniConf": {_go_quote(self.multus_cni_conf_dir)},')
        if self.readiness_indicator_file:
            lines.append(f'"readinessindicatorfile": {_go_quote(self.readiness_indicator_file)},')
        return "".join(_INDENT + line for line in lines)

    def create_multus_config(self, prev_master_config_file_hash=None) -> tuple[str, bytes]:
        """Write the multus config delegating to the master CNI config.

        Returns the master config path and its hash. Nothing is written when
        the master config's hash equals ``prev_master_config_file_hash``.
        """
        master_path = self.get_master_config_path()
        master_bytes, master_hash = get_file_and_hash(master_path)

        if prev_master_config_file_hash is not None:
            if prev_master_config_file_hash == master_hash:
                return master_path, master_hash
            print("master config changed - recreating multus config")

        try:
            master = _load_json(master_bytes)
        except ValueError as exc:
            raise EntrypointError(f"cannot read master CNI config json: {exc}") from exc
        if not isinstance(master, dict):
            raise EntrypointError("cannot read master CNI config json: not a JSON object")

        if "cniVersion" not in master:
            raise EntrypointError(
                f"cannot get cniVersion in master CNI config file {_go_quote(master_path)}"
            )
        if self.force_cni_version:
            master["cniVersion"] = self.cni_version
            print(f"force CNI version to {_go_quote(self.cni_version)}")
        else:
            master_version = master["cniVersion"]
            if not isinstance(master_version, str):
                raise EntrypointError(
                    f"cniVersion in master CNI config file {_go_quote(master_path)} is not a string"
                )
            if self.cni_version and master_version != self.cni_version:
                raise EntrypointError(
                    f"Multus cni version is {_go_quote(self.cni_version)} while master plugin "
                    f"cni version is {_go_quote(master_version)}"
                )
            self.cni_version = master_version

        network_name = DEFAULT_NETWORK_NAME
        if self.override_network_name:
            name = master.get("name")
            if not isinstance(name, str):
                raise EntrypointError(
                    f"cannot get name in master CNI config file {_go_quote(master_path)}"
                )
            network_name = name
            print(f"master plugin name is overrided to {_go_quote(network_name)}")

        capabilities: dict[str, bool] = {}
        if "plugins" in master:
            plugins = master["plugins"]
            if not isinstance(plugins, list):
                raise EntrypointError(
                    f"'plugins' field in master CNI config file {_go_quote(master_path)} "
                    "is not a list"
                )
            for plugin in plugins:
                if not isinstance(plugin, dict):
                    raise EntrypointError(
                        f"plugin in master CNI config file {_go_quote(master_path)} "
                        "is not an object"
                    )
                if "capabilities" in plugin:
                    capabilities.update(_bool_map(plugin["capabilities"], master_path))
            print("master capabilities is get from conflist")
        else:
            if "capabilities" in master:
                capabilities.update(_bool_map(master["capabilities"], master_path))
            print("master capabilities is get from conffile")

        options = self._option_lines(capabilities)

        if self.cni_version == "1.0.0":
            template = _CONFLIST_TEMPLATE
            dest_path = os.path.join(self.cni_conf_dir, "00-multus.conflist")
        else:
            template = _CONF_TEMPLATE
            dest_path = os.path.join(self.cni_conf_dir, "00-multus.conf")

        content = template.substitute(
            cni_version=self.cni_version,
            network_name=network_name,
            options=options,
            kubeconfig=self.multus_kubeconfig_file_host,
            master_plugin=_go_json(master),
        )
        temp_path = os.path.join(self.cni_conf_dir, "00-multus.conf.new")
        _write_replace(temp_path, content, dest_path)

        if self.rename_conf_file:
            renamed = f"{master_path}.old"
            try:
                os.replace(master_path, renamed)
            except OSError as exc:
                raise EntrypointError(
                    f"cannot move original master file to {_go_quote(renamed)}"
                ) from exc
            print(f"Original master file moved to {_go_quote(renamed)}")

        return master_path, master_hash