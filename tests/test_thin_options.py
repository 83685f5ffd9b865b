import os

import pytest

from multus_cni.thin_options import (
    EntrypointError,
    Options,
    conf_files,
    get_file_and_hash,
)

KUBECONFIG = "/etc/foobar_kubeconfig"

MASTER_031 = """
		{
			"cniVersion": "0.3.1",
			"name": "test1",
			"type": "cnitesttype"
		}"""

MASTER_031_CAPS = """
		{
			"cniVersion": "0.3.1",
			"name": "test1",
			"capabilities": { "bandwidth": true },
			"type": "cnitesttype"
		}"""

MASTER_100 = """
		{
			"cniVersion": "1.0.0",
			"name": "test1",
			"type": "cnitesttype"
		}"""

MASTER_100_CAPS = """
		{
			"cniVersion": "1.0.0",
			"name": "test1",
			"capabilities": { "bandwidth": true },
			"type": "cnitesttype"
		}"""

EXPECTED_DEFAULT_CONF = (
    "{\n"
    '        "cniVersion": "0.3.1",\n'
    '        "name": "multus-cni-network",\n'
    '        "type": "multus",\n'
    '        "logToStderr": false,\n'
    '        "kubeconfig": "/etc/foobar_kubeconfig",\n'
    '        "delegates": [\n'
    '                {"cniVersion":"0.3.1","name":"test1","type":"cnitesttype"}\n'
    "        ]\n"
    "}\n"
)

EXPECTED_CAPS_CONF = (
    "{\n"
    '        "cniVersion": "0.3.1",\n'
    '        "name": "multus-cni-network",\n'
    '        "type": "multus",\n'
    '        "capabilities": {"bandwidth":true},\n'
    '        "logToStderr": false,\n'
    '        "kubeconfig": "/etc/foobar_kubeconfig",\n'
    '        "delegates": [\n'
    '                {"capabilities":{"bandwidth":true},"cniVersion":"0.3.1",'
    '"name":"test1","type":"cnitesttype"}\n'
    "        ]\n"
    "}\n"
)

EXPECTED_OPTIONS_CONF = (
    "{\n"
    '        "cniVersion": "0.3.1",\n'
    '        "name": "multus-cni-network",\n'
    '        "type": "multus",\n'
    '        "namespaceIsolation": true,\n'
    '        "globalNamespaces": "foobar,barfoo",\n'
    '        "logLevel": "debug",\n'
    '        "logFile": "/tmp/foobar.log",\n'
    '        "binDir": "/tmp/add_bin_dir",\n'
    '        "cniConf": "/tmp/multus/net.d",\n'
    '        "readinessindicatorfile": "/var/lib/foobar_indicator",\n'
    '        "kubeconfig": "/etc/foobar_kubeconfig",\n'
    '        "delegates": [\n'
    '                {"cniVersion":"0.3.1","name":"test1","type":"cnitesttype"}\n'
    "        ]\n"
    "}\n"
)

EXPECTED_DEFAULT_CONFLIST = (
    "{\n"
    '    "cniVersion": "1.0.0",\n'
    '    "name": "multus-cni-network",\n'
    '    "plugins": [ {\n'
    '        "type": "multus",\n'
    '        "logToStderr": false,\n'
    '        "kubeconfig": "/etc/foobar_kubeconfig",\n'
    '        "delegates": [\n'
    '            {"cniVersion":"1.0.0","name":"test1","type":"cnitesttype"}\n'
    "        ]\n"
    "    }]\n"
    "}\n"
)

EXPECTED_CAPS_CONFLIST = (
    "{\n"
    '    "cniVersion": "1.0.0",\n'
    '    "name": "multus-cni-network",\n'
    '    "plugins": [ {\n'
    '        "type": "multus",\n'
    '        "capabilities": {"bandwidth":true},\n'
    '        "logToStderr": false,\n'
    '        "kubeconfig": "/etc/foobar_kubeconfig",\n'
    '        "delegates": [\n'
    '            {"capabilities":{"bandwidth":true},"cniVersion":"1.0.0",'
    '"name":"test1","type":"cnitesttype"}\n'
    "        ]\n"
    "    }]\n"
    "}\n"
)

EXPECTED_OPTIONS_CONFLIST = (
    "{\n"
    '    "cniVersion": "1.0.0",\n'
    '    "name": "multus-cni-network",\n'
    '    "plugins": [ {\n'
    '        "type": "multus",\n'
    '        "namespaceIsolation": true,\n'
    '        "globalNamespaces": "foobar,barfoo",\n'
    '        "logLevel": "debug",\n'
    '        "logFile": "/tmp/foobar.log",\n'
    '        "binDir": "/tmp/add_bin_dir",\n'
    '        "cniConf": "/tmp/multus/net.d",\n'
    '        "readinessindicatorfile": "/var/lib/foobar_indicator",\n'
    '        "kubeconfig": "/etc/foobar_kubeconfig",\n'
    '        "delegates": [\n'
    '            {"cniVersion":"1.0.0","name":"test1","type":"cnitesttype"}\n'
    "        ]\n"
    "    }]\n"
    "}\n"
)

WITH_OPTIONS = dict(
    namespace_isolation=True,
    global_namespaces="foobar,barfoo",
    multus_log_to_stderr=True,
    multus_log_level="DEBUG",
    multus_log_file="/tmp/foobar.log",
    additional_bin_dir="/tmp/add_bin_dir",
    multus_cni_conf_dir="/tmp/multus/net.d",
    readiness_indicator_file="/var/lib/foobar_indicator",
)


@pytest.fixture
def dirs(tmp_path):
    auto_dir = tmp_path / "auto_conf"
    conf_dir = tmp_path / "cni_conf"
    auto_dir.mkdir()
    conf_dir.mkdir()
    return auto_dir, conf_dir


def _options(dirs, **kwargs):
    auto_dir, conf_dir = dirs
    return Options(
        multus_autoconfig_dir=str(auto_dir),
        cni_conf_dir=str(conf_dir),
        multus_kubeconfig_file_host=KUBECONFIG,
        **kwargs,
    )


def test_verify_file_exists_with_all_files(tmp_path):
    (tmp_path / "cni_conf_dir").mkdir()
    (tmp_path / "cni_bin_dir").mkdir()
    (tmp_path / "multus_bin").write_bytes(b"")
    (tmp_path / "multus_conf").write_bytes(b"")
    options = Options(
        cni_conf_dir=str(tmp_path / "cni_conf_dir"),
        cni_bin_dir=str(tmp_path / "cni_bin_dir"),
        multus_bin_file=str(tmp_path / "multus_bin"),
        multus_conf_file=str(tmp_path / "multus_conf"),
    )
    assert options.verify_file_exists() is None


def test_verify_file_exists_missing_bin_file(tmp_path):
    (tmp_path / "cni_conf_dir").mkdir()
    (tmp_path / "cni_bin_dir").mkdir()
    (tmp_path / "multus_conf").write_bytes(b"")
    options = Options(
        cni_conf_dir=str(tmp_path / "cni_conf_dir"),
        cni_bin_dir=str(tmp_path / "cni_bin_dir"),
        multus_bin_file=str(tmp_path / "multus_bin"),
        multus_conf_file=str(tmp_path / "multus_conf"),
    )
    with pytest.raises(EntrypointError, match="multus-bin-file is not found"):
        options.verify_file_exists()


def test_verify_file_exists_auto_skips_conf_file(tmp_path):
    (tmp_path / "conf").mkdir()
    (tmp_path / "bin").mkdir()
    (tmp_path / "multus").write_bytes(b"")
    options = Options(
        cni_conf_dir=str(tmp_path / "conf"),
        cni_bin_dir=str(tmp_path / "bin"),
        multus_bin_file=str(tmp_path / "multus"),
        multus_conf_file="auto",
    )
    assert options.verify_file_exists() is None


@pytest.mark.parametrize(
    "file_name, master, extra, output, expected",
    [
        ("10-testcni.conf", MASTER_031, {}, "00-multus.conf", EXPECTED_DEFAULT_CONF),
        ("10-testcni.conf", MASTER_031_CAPS, {}, "00-multus.conf", EXPECTED_CAPS_CONF),
        ("10-testcni.conf", MASTER_031, WITH_OPTIONS, "00-multus.conf", EXPECTED_OPTIONS_CONF),
        ("10-testcni.conf", MASTER_100, {}, "00-multus.conflist", EXPECTED_DEFAULT_CONFLIST),
        (
            "10-testcni.conflist",
            MASTER_100_CAPS,
            {},
            "00-multus.conflist",
            EXPECTED_CAPS_CONFLIST,
        ),
        (
            "10-testcni.conflist",
            MASTER_100,
            WITH_OPTIONS,
            "00-multus.conflist",
            EXPECTED_OPTIONS_CONFLIST,
        ),
    ],
)
def test_create_multus_config(dirs, file_name, master, extra, output, expected):
    auto_dir, conf_dir = dirs
    (auto_dir / file_name).write_text(master)
    path, digest = _options(dirs, **extra).create_multus_config(None)
    assert path == str(auto_dir / file_name)
    assert len(digest) == 32
    assert (conf_dir / output).read_text() == expected


def test_create_multus_config_with_master_file_name(dirs):
    auto_dir, conf_dir = dirs
    (auto_dir / "10-testcni.conf").write_text(MASTER_100)
    (auto_dir / "09-test2cni.conf").write_text(
        '{"cniVersion": "1.0.0", "name": "test2", "type": "cnitest2type"}'
    )
    options = _options(dirs, multus_master_cni_file_name="10-testcni.conf")
    path, _ = options.create_multus_config(None)
    assert path == os.path.join(str(auto_dir), "10-testcni.conf")
    assert (conf_dir / "00-multus.conflist").read_text() == EXPECTED_DEFAULT_CONFLIST


def test_master_picks_alphabetically_first(dirs):
    auto_dir, _ = dirs
    (auto_dir / "10-testcni.conf").write_text(MASTER_100)
    (auto_dir / "09-test2cni.conf").write_text(MASTER_100)
    (auto_dir / "00-multus.conf").write_text(MASTER_100)
    assert _options(dirs).get_master_config_path() == str(auto_dir / "09-test2cni.conf")


def test_master_missing_raises(dirs):
    with pytest.raises(EntrypointError, match="cannot find valid master CNI config"):
        _options(dirs).get_master_config_path()


def test_unchanged_hash_does_not_rewrite(dirs):
    auto_dir, conf_dir = dirs
    (auto_dir / "10-testcni.conf").write_text(MASTER_031)
    options = _options(dirs)
    path, digest = options.create_multus_config(None)
    (conf_dir / "00-multus.conf").unlink()
    again_path, again_digest = options.create_multus_config(digest)
    assert (again_path, again_digest) == (path, digest)
    assert not (conf_dir / "00-multus.conf").exists()


def test_changed_hash_rewrites(dirs):
    auto_dir, conf_dir = dirs
    (auto_dir / "10-testcni.conf").write_text(MASTER_031)
    options = _options(dirs)
    options.create_multus_config(b"\x00" * 32)
    assert (conf_dir / "00-multus.conf").read_text() == EXPECTED_DEFAULT_CONF


def test_invalid_log_level(dirs):
    auto_dir, _ = dirs
    (auto_dir / "10-testcni.conf").write_text(MASTER_031)
    with pytest.raises(EntrypointError, match="Log levels should be one of"):
        _options(dirs, multus_log_level="trace").create_multus_config(None)


def test_version_mismatch(dirs):
    auto_dir, _ = dirs
    (auto_dir / "10-testcni.conf").write_text(MASTER_031)
    with pytest.raises(EntrypointError, match='Multus cni version is "1.0.0"'):
        _options(dirs, cni_version="1.0.0").create_multus_config(None)


def test_missing_cni_version(dirs):
    auto_dir, _ = dirs
    (auto_dir / "10-testcni.conf").write_text('{"name": "test1", "type": "x"}')
    with pytest.raises(EntrypointError, match="cannot get cniVersion"):
        _options(dirs).create_multus_config(None)


def test_bad_json(dirs):
    auto_dir, _ = dirs
    (auto_dir / "10-testcni.conf").write_text("BAD BAD DATA")
    with pytest.raises(EntrypointError, match="cannot read master CNI config json"):
        _options(dirs).create_multus_config(None)


def test_force_cni_version(dirs):
    auto_dir, conf_dir = dirs
    (auto_dir / "10-testcni.conf").write_text(MASTER_031)
    _options(dirs, cni_version="1.0.0", force_cni_version=True).create_multus_config(None)
    content = (conf_dir / "00-multus.conflist").read_text()
    assert '{"cniVersion":"1.0.0","name":"test1","type":"cnitesttype"}' in content


def test_override_network_name(dirs):
    auto_dir, conf_dir = dirs
    (auto_dir / "10-testcni.conf").write_text(MASTER_031)
    options = _options(dirs, override_network_name=True)
    options.create_multus_config(None)
    assert '"name": "test1",' in (conf_dir / "00-multus.conf").read_text()
    assert options.cni_version == "0.3.1"


def test_rename_conf_file(dirs):
    auto_dir, _ = dirs
    (auto_dir / "10-testcni.conf").write_text(MASTER_031)
    _options(dirs, rename_conf_file=True).create_multus_config(None)
    assert not (auto_dir / "10-testcni.conf").exists()
    assert (auto_dir / "10-testcni.conf.old").read_text() == MASTER_031


def test_conflist_capabilities_from_plugins(dirs):
    auto_dir, conf_dir = dirs
    (auto_dir / "10-net.conflist").write_text(
        '{"cniVersion": "0.4.0", "name": "n", "plugins": ['
        '{"type": "a", "capabilities": {"portMappings": true}},'
        '{"type": "b", "capabilities": {"bandwidth": false}}]}'
    )
    _options(dirs).create_multus_config(None)
    content = (conf_dir / "00-multus.conf").read_text()
    assert '"capabilities": {"bandwidth":false,"portMappings":true},' in content


def test_numbers_and_html_characters_in_delegate(dirs):
    auto_dir, conf_dir = dirs
    (auto_dir / "10-net.conf").write_text(
        '{"cniVersion": "0.3.1", "name": "a<b", "type": "t", "mtu": 1500, "ratio": 0.5}'
    )
    _options(dirs).create_multus_config(None)
    content = (conf_dir / "00-multus.conf").read_text()
    assert (
        '{"cniVersion":"0.3.1","mtu":1500,"name":"a\\u003cb","ratio":0.5,"type":"t"}'
        in content
    )


def test_get_file_and_hash(tmp_path):
    path = tmp_path / "file"
    path.write_bytes(b"abc")
    content, digest = get_file_and_hash(str(path))
    assert content == b"abc"
    assert digest.hex() == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_get_file_and_hash_missing(tmp_path):
    with pytest.raises(EntrypointError, match="not found"):
        get_file_and_hash(str(tmp_path / "missing"))


def test_conf_files_filters_and_sorts(tmp_path):
    (tmp_path / "b.conflist").write_text("")
    (tmp_path / "a.conf").write_text("")
    (tmp_path / "c.json").write_text("")
    (tmp_path / "d.conf").mkdir()
    result = conf_files(str(tmp_path), [".conf", ".conflist"])
    assert result == [str(tmp_path / "a.conf"), str(tmp_path / "b.conflist")]


def test_conf_files_missing_directory(tmp_path):
    assert conf_files(str(tmp_path / "missing"), [".conf"]) == []