"""File helpers used by the installer commands."""

from __future__ import annotations

import os
import shutil
import stat
import tempfile
from contextlib import suppress
from pathlib import Path


def copy_file_atomic(src_file_path, dest_dir, temp_file_name, dest_file_name):
    """Copy a file into ``dest_dir`` under ``dest_file_name`` atomically.

    The data is written to a temporary file in the destination directory,
    flushed, given the source file's permissions and then renamed over the
    destination. Raises ``OSError`` on failure.
    """
    dest_dir = Path(dest_dir)
    stale_temp = dest_dir / temp_file_name
    if stale_temp.exists():
        try:
            stale_temp.unlink()
        except OSError as exc:
            raise OSError(f"cannot remove old temp file {str(stale_temp)!r}: {exc}") from exc

    try:
        fd, temp_path = tempfile.mkstemp(prefix=temp_file_name, dir=dest_dir)
    except OSError as exc:
        raise OSError(
            f"cannot create temp file {temp_file_name!r} in {str(dest_dir)!r}: {exc}"
        ) from exc

    try:
        with os.fdopen(fd, "wb") as temp_file:
            try:
                source = open(src_file_path, "rb")
            except OSError as exc:
                raise OSError(f"cannot open file {str(src_file_path)!r}: {exc}") from exc
            with source:
                try:
                    shutil.copyfileobj(source, temp_file)
                except OSError as exc:
                    raise OSError(f"cannot write data to temp file {temp_path!r}: {exc}") from exc
            try:
                temp_file.flush()
                os.fsync(temp_file.fileno())
            except OSError as exc:
                raise OSError(f"cannot flush temp file {temp_path!r}: {exc}") from exc

        dest_path = dest_dir / dest_file_name
        with suppress(FileNotFoundError):
            os.stat(dest_path)
        source_mode = stat.S_IMODE(os.stat(src_file_path).st_mode)

        try:
            os.chmod(temp_path, source_mode)
        except OSError as exc:
            raise OSError(f"cannot set stat on temp file {temp_path!r}: {exc}") from exc

        try:
            os.replace(temp_path, dest_path)
        except OSError as exc:
            raise OSError(
                f"cannot replace {str(dest_path)!r} with temp file {temp_path!r}: {exc}"
            ) from exc
    except BaseException:
        with suppress(FileNotFoundError):
            os.unlink(temp_path)
        raise