import json
import subprocess
from unittest import mock

import pytest

from bcvkit.volumes import (
    BootcVolume,
    ListVolumesOptions,
    VirshError,
    extract_xml_value,
    format_size,
    parse_virsh_size,
    parse_volume_info,
    parse_volume_list,
    parse_volume_metadata,
    run,
)

VOL_LIST = """ Name                     Path
------------------------------------------------------------
 bootc-fedora-bootc-42.raw   /var/lib/libvirt/images/bootc-fedora-bootc-42.raw
 other.qcow2              /var/lib/libvirt/images/other.qcow2

"""

VOL_INFO = """Name:           bootc-fedora-bootc-42.raw
Type:           file
Capacity:       5.00 GiB
Allocation:     1.00 GiB
"""

NEW_XML = (
    "<volume type='file'>\n"
    "  <name>bootc-x.raw</name>\n"
    '  <description>bcvk volume: {"source_image": "quay.io/fedora/fedora-bootc:42",'
    ' "source_digest": "sha256:abc", "created": "2024-01-01T00:00:00Z"}</description>\n'
    "</volume>"
)

OLD_XML = """<volume>
  <metadata>
    <bootc:container xmlns:bootc="https://github.com/containers/bootc">
      <bootc:source-image>quay.io/fedora/fedora-bootc:42</bootc:source-image>
      <bootc:created>2024-02-02</bootc:created>
    </bootc:container>
  </metadata>
</volume>"""


def _vol(name, source_image=None, size=2048):
    return BootcVolume(name=name, size=size, format="file", path=f"/p/{name}",
                       source_image=source_image)


def _fake_virsh(responses):
    def fake(argv, **kwargs):
        key = argv[argv.index("virsh") + 1:]
        for prefix, (code, out) in responses.items():
            if tuple(key[: len(prefix)]) == prefix:
                return subprocess.CompletedProcess(argv, code, out.encode(), b"boom")
        return subprocess.CompletedProcess(argv, 1, b"", b"unknown")
    return fake


def test_extract_xml_value():
    assert extract_xml_value("<a><name> vm1 </name></a>", "name") == "vm1"
    assert extract_xml_value("<a></a>", "name") is None
    assert extract_xml_value("<name>open", "name") is None


def test_parse_virsh_size():
    assert parse_virsh_size("5.00 GiB") == 5 * 1024**3
    assert parse_virsh_size("3 bytes") == 3
    assert parse_virsh_size("2 MB") == 2 * 1024**2
    assert parse_virsh_size("5.00") is None
    assert parse_virsh_size("5 XiB") is None
    assert parse_virsh_size("five GiB") is None


def test_format_size():
    assert format_size(512) == "512B"
    assert format_size(1024) == "1.0KB"
    assert format_size(5 * 1024**3) == "5.0GB"
    assert format_size(1024**5).endswith("TB")


def test_format_size_round_trip():
    for size in (1024, 3 * 1024**2, 7 * 1024**3):
        text = format_size(size)
        number, unit = text[:-2], text[-2:]
        assert parse_virsh_size(f"{number} {unit}") == size


def test_parse_volume_list():
    assert parse_volume_list(VOL_LIST) == ["bootc-fedora-bootc-42.raw", "other.qcow2"]
    assert parse_volume_list("header\n----\n") == []


def test_parse_volume_info():
    assert parse_volume_info(VOL_INFO) == (5 * 1024**3, "file")
    assert parse_volume_info("") == (0, "unknown")


def test_parse_metadata_from_description():
    image, digest, created = parse_volume_metadata(NEW_XML)
    assert image == "quay.io/fedora/fedora-bootc:42"
    assert digest == "sha256:abc"
    assert created == "2024-01-01T00:00:00Z"


def test_parse_metadata_fallback_namespace():
    assert parse_volume_metadata(OLD_XML) == (
        "quay.io/fedora/fedora-bootc:42", None, "2024-02-02")


def test_parse_metadata_bad_json_and_none():
    xml = "<volume><description>bcvk volume: {not json</description></volume>"
    assert parse_volume_metadata(xml) == (None, None, None)
    assert parse_volume_metadata("<volume/>") == (None, None, None)


def test_is_bootc_volume():
    assert _vol("bootc-a.raw").is_bootc_volume()
    assert _vol("other.raw", source_image="img").is_bootc_volume()
    assert not _vol("other.raw").is_bootc_volume()


def test_to_json_fields():
    vol = _vol("bootc-a.raw", source_image="img")
    data = vol.to_json()
    assert data["name"] == "bootc-a.raw"
    assert data["source_image"] == "img"
    assert data["created"] is None
    assert set(data) == {"name", "size", "format", "path", "source_image",
                         "source_digest", "created"}


def test_filter_volumes():
    vols = [_vol("bootc-a.raw"), _vol("x.raw"), _vol("y.raw", source_image="quay.io/fedora")]
    assert [v.name for v in ListVolumesOptions().filter_volumes(vols)] == ["bootc-a.raw", "y.raw"]
    assert len(ListVolumesOptions(all=True).filter_volumes(vols)) == 3
    filtered = ListVolumesOptions(all=True, source_image="fedora").filter_volumes(vols)
    assert [v.name for v in filtered] == ["y.raw"]


def test_virsh_command():
    assert ListVolumesOptions().virsh_command("vol-list", "default") == [
        "virsh", "vol-list", "default"]
    opts = ListVolumesOptions(connect="qemu:///system")
    assert opts.virsh_command("pool-info", "p") == [
        "virsh", "-c", "qemu:///system", "pool-info", "p"]


def test_render_json_round_trip():
    opts = ListVolumesOptions(pool="tank")
    vols = [_vol("bootc-a.raw", source_image="img")]
    data = json.loads(opts.render_json(vols))
    assert data["pool"] == "tank"
    assert data["volume_count"] == 1
    assert data["volumes"] == [vols[0].to_json()]


def test_render_human_empty():
    assert ListVolumesOptions(pool="p", all=True).render_human([]) == \
        "No volumes found in pool 'p'"
    text = ListVolumesOptions(pool="p").render_human([])
    assert "Use --all to see all volumes" in text


def test_render_human_table():
    opts = ListVolumesOptions(pool="p")
    text = opts.render_human([_vol("bootc-a.raw"), _vol("bootc-b.raw", source_image="img")])
    assert "bootc-a.raw" in text and "bootc-b.raw" in text
    assert "<no metadata>" in text
    assert text.endswith("Found 2 volumes in pool 'p'")
    single = opts.render_human([_vol("bootc-a.raw")])
    assert single.endswith("Found 1 volume in pool 'p'")


def test_render_human_detailed():
    text = ListVolumesOptions(detailed=True).render_human([_vol("bootc-a.raw")])
    assert "CREATED" in text
    assert "N/A" in text
    assert "/p/bootc-a.raw" in text


def test_get_volume_info_with_mocked_virsh():
    responses = {
        ("vol-path",): (0, "/images/bootc-x.raw\n"),
        ("vol-info",): (0, VOL_INFO),
        ("vol-dumpxml",): (0, NEW_XML),
    }
    with mock.patch("subprocess.run", side_effect=_fake_virsh(responses)):
        vol = ListVolumesOptions().get_volume_info("bootc-x.raw")
    assert vol.path == "/images/bootc-x.raw"
    assert vol.size == 5 * 1024**3
    assert vol.format == "file"
    assert vol.source_image == "quay.io/fedora/fedora-bootc:42"


def test_get_volume_info_failures_give_defaults():
    with mock.patch("subprocess.run", side_effect=_fake_virsh({})):
        vol = ListVolumesOptions().get_volume_info("x.raw")
    assert vol.path == "(unknown path)"
    assert (vol.size, vol.format, vol.source_image) == (0, "unknown", None)


def test_check_pool_exists_raises():
    with mock.patch("subprocess.run", side_effect=_fake_virsh({})):
        with pytest.raises(VirshError, match="Cannot access storage pool 'default'"):
            ListVolumesOptions().check_pool_exists()


def test_list_pool_volumes_error():
    responses = {("pool-info",): (0, "")}
    with mock.patch("subprocess.run", side_effect=_fake_virsh(responses)):
        with pytest.raises(VirshError, match="Failed to list volumes"):
            ListVolumesOptions().list_pool_volumes()


def test_missing_virsh_raises():
    with mock.patch("subprocess.run", side_effect=FileNotFoundError("virsh")):
        with pytest.raises(VirshError):
            ListVolumesOptions().check_pool_exists()


def test_run_json_empty_pool(capsys):
    responses = {("pool-info",): (0, ""), ("vol-list",): (0, "h\n---\n")}
    with mock.patch("subprocess.run", side_effect=_fake_virsh(responses)):
        run(ListVolumesOptions(pool="default", json=True))
    data = json.loads(capsys.readouterr().out)
    assert data == {"pool": "default", "volume_count": 0, "volumes": []}


def test_run_lists_bootc_volumes(capsys):
    responses = {
        ("pool-info",): (0, ""),
        ("vol-list",): (0, VOL_LIST),
        ("vol-path",): (0, "/images/v\n"),
        ("vol-info",): (0, VOL_INFO),
        ("vol-dumpxml",): (0, "<volume/>"),
    }
    with mock.patch("subprocess.run", side_effect=_fake_virsh(responses)):
        run(ListVolumesOptions(json=True))
    data = json.loads(capsys.readouterr().out)
    assert data["volume_count"] == 1
    assert data["volumes"][0]["name"] == "bootc-fedora-bootc-42.raw"