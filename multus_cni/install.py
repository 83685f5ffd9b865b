"""Command that installs the multus binary into the CNI binary directory."""

from __future__ import annotations

import argparse
import os
import sys

from multus_cni.cmdutils import copy_file_atomic

SOURCE_DIR = "/usr/src/multus-cni/bin"
DEFAULT_DEST_DIR = "/host/opt/cni/bin"

_FILE_NAMES = {"thick": "multus-shim", "thin": "multus"}


def installer_file_name(kind) -> str:
    """Return the binary name for installer type ``kind`` ("thick" or "thin")."""
    try:
        return _FILE_NAMES[kind]
    except KeyError:
        raise ValueError("--type is missing or --type has invalid value") from None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="install_multus", add_help=False)
    parser.add_argument("-t", "--type", default="", help="specify installer type (thick/thin)")
    parser.add_argument("-d", "--dest-dir", default=DEFAULT_DEST_DIR, help="destination directory")
    parser.add_argument("-h", "--help", action="store_true", help="show help message and quit")
    return parser


def main(argv=None) -> int:
    """Copy the multus binary for the chosen type; return the exit status."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.help:
        parser.print_help(sys.stderr)
        return 1

    try:
        file_name = installer_file_name(args.type)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 1

    try:
        copy_file_atomic(
            os.path.join(SOURCE_DIR, file_name), args.dest_dir, f"{file_name}.temp", file_name
        )
    except OSError as exc:
        print(f"failed to copy file {file_name}: {exc}", file=sys.stderr)
        return 1

    print(f"multus {file_name} copy succeeded!")
    return 0


if __name__ == "__main__":
    sys.exit(main())