import os
import stat

import pytest

from multus_cni.cmdutils import copy_file_atomic


def test_copy_file_atomic_replaces_destination(tmp_path):
    src_dir = tmp_path / "src"
    src_dir.mkdir(mode=0o755)
    dest_dir = tmp_path / "dest"
    dest_dir.mkdir(mode=0o755)

    src_file = src_dir / "sampleInput"
    src_file.write_bytes(b"sampleInputABC")
    os.chmod(src_file, 0o744)

    dest_file = dest_dir / "sampleInputDest"
    dest_file.write_bytes(b"inputOldXYZ")
    os.chmod(dest_file, 0o611)

    copy_file_atomic(str(src_file), str(dest_dir), "temp_file", "sampleInputDest")

    assert stat.S_IMODE(os.stat(dest_file).st_mode) == 0o744
    assert dest_file.read_bytes() == b"sampleInputABC"


def test_copy_file_atomic_leaves_only_destination(tmp_path):
    src_file = tmp_path / "source"
    src_file.write_bytes(b"payload")
    dest_dir = tmp_path / "dest"
    dest_dir.mkdir()
    (dest_dir / "temp_file").write_bytes(b"stale")

    copy_file_atomic(src_file, dest_dir, "temp_file", "target")

    assert sorted(os.listdir(dest_dir)) == ["target"]
    assert (dest_dir / "target").read_bytes() == b"payload"


def test_copy_file_atomic_missing_source_raises_and_cleans_up(tmp_path):
    dest_dir = tmp_path / "dest"
    dest_dir.mkdir()
    (dest_dir / "keep").write_bytes(b"old")

    with pytest.raises(OSError, match="cannot open file"):
        copy_file_atomic(tmp_path / "missing", dest_dir, "temp_file", "keep")

    assert sorted(os.listdir(dest_dir)) == ["keep"]
    assert (dest_dir / "keep").read_bytes() == b"old"


def test_copy_file_atomic_missing_dest_dir_raises(tmp_path):
    src_file = tmp_path / "source"
    src_file.write_bytes(b"payload")
    with pytest.raises(OSError, match="cannot create temp file"):
        copy_file_atomic(src_file, tmp_path / "nowhere", "temp_file", "target")