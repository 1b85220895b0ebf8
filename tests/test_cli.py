import argparse
import json

import pytest

from safeloader.build_firmware import _revision, main

from .conftest import FIXED_TIMESTAMP


@pytest.fixture(autouse=True)
def fixed_epoch(monkeypatch):
    monkeypatch.setenv("SOURCE_DATE_EPOCH", str(FIXED_TIMESTAMP))


def _build(tmp_path, kernel, rootfs, *extra):
    out = tmp_path / "image.bin"
    main([
        "build", "-B", "CPE510",
        "-k", str(kernel), "-r", str(rootfs), "-o", str(out),
        "-V", "r7", *extra,
    ])
    return out


def test_revision_parsing():
    assert _revision("r123") == 123
    assert _revision("45") == 45
    with pytest.raises(argparse.ArgumentTypeError):
        _revision("rev1")


def test_build_and_info(tmp_path, kernel, rootfs, capsys):
    out = _build(tmp_path, kernel, rootfs)
    assert out.exists()

    main(["info", str(out)])
    text = capsys.readouterr().out
    assert "Firmware vendor string:" in text
    assert "Revision: 7" in text
    assert "Date: 2019-05-17" in text
    assert "[Partition table]" in text


def test_info_json(tmp_path, kernel, rootfs, capsys):
    out = _build(tmp_path, kernel, rootfs)
    capsys.readouterr()
    main(["info", str(out), "--json"])
    data = json.loads(capsys.readouterr().out)
    assert data["variant"] == "vendor"
    assert data["soft_version"]["revision"] == 7
    assert data["checksum"]["ok"] is True


def test_build_is_reproducible(tmp_path, kernel, rootfs):
    first = _build(tmp_path, kernel, rootfs).read_bytes()
    second = _build(tmp_path, kernel, rootfs).read_bytes()
    assert first == second


def test_extract(tmp_path, kernel, rootfs):
    out = _build(tmp_path, kernel, rootfs)
    directory = tmp_path / "parts"
    directory.mkdir()
    main(["extract", str(out), "-d", str(directory)])
    assert (directory / "os-image").read_bytes() == kernel.read_bytes()


def test_convert(tmp_path, kernel, rootfs):
    out = _build(tmp_path, kernel, rootfs)
    converted = tmp_path / "sysupgrade.bin"
    main(["convert", str(out), "-o", str(converted)])
    assert converted.read_bytes().startswith(kernel.read_bytes())


def test_sysupgrade_and_jffs2(tmp_path, kernel, rootfs):
    out = _build(tmp_path, kernel, rootfs, "-S", "-j")
    data = out.read_bytes()
    assert data.startswith(kernel.read_bytes())
    assert b"\xde\xad\xc0\xde" in data


def test_boards(capsys):
    main(["boards"])
    boards = capsys.readouterr().out.split()
    assert "CPE510" in boards
    assert boards == sorted(boards)


def test_unknown_board(tmp_path, kernel, rootfs):
    with pytest.raises(SystemExit) as exc:
        main([
            "build", "-B", "NO-SUCH-BOARD",
            "-k", str(kernel), "-r", str(rootfs), "-o", str(tmp_path / "x.bin"),
        ])
    assert exc.value.code == 1
    assert not (tmp_path / "x.bin").exists()


def test_missing_input(tmp_path, rootfs):
    with pytest.raises(SystemExit) as exc:
        main([
            "build", "-B", "CPE510",
            "-k", str(tmp_path / "missing"), "-r", str(rootfs), "-o", str(tmp_path / "x.bin"),
        ])
    assert exc.value.code == 1


def test_bad_source_date_epoch(tmp_path, kernel, rootfs, monkeypatch):
    monkeypatch.setenv("SOURCE_DATE_EPOCH", "yesterday")
    with pytest.raises(SystemExit) as exc:
        _build(tmp_path, kernel, rootfs)
    assert exc.value.code == 1


def test_bad_revision(tmp_path, kernel, rootfs):
    with pytest.raises(SystemExit) as exc:
        main([
            "build", "-B", "CPE510",
            "-k", str(kernel), "-r", str(rootfs), "-o", str(tmp_path / "x.bin"),
            "-V", "rX",
        ])
    assert exc.value.code == 2


def test_info_on_garbage(tmp_path):
    path = tmp_path / "garbage.bin"
    path.write_bytes(b"\x00" * 16)
    with pytest.raises(SystemExit) as exc:
        main(["info", str(path)])
    assert exc.value.code == 1


@pytest.mark.parametrize("value", ["²", "99999999999999"])
def test_unusable_source_date_epoch(tmp_path, kernel, rootfs, monkeypatch, value):
    monkeypatch.setenv("SOURCE_DATE_EPOCH", value)
    with pytest.raises(SystemExit) as exc:
        _build(tmp_path, kernel, rootfs)
    assert exc.value.code == 1
    assert not (tmp_path / "image.bin").exists()
