from pathlib import Path

import pytest

from safeloader.config import (
    DEFAULT_BOARDS_FILE,
    MAX_PARTITIONS,
    SoftVersionSpec,
    TrailerPolicy,
    get_all_boards,
    get_device_profile,
    get_extra_para,
    load_boards,
    profile_from_dict,
    source_date_epoch,
)
from safeloader.errors import ConfigError


def _entry(**overrides):
    entry = {
        "id": "TEST",
        "support_list": "SupportList:\n",
        "partitions": [["fs-uboot", 0, 0x20000], ["firmware", 0x20000, 0x100000]],
        "first_sysupgrade_partition": "os-image",
        "last_sysupgrade_partition": "file-system",
    }
    entry.update(overrides)
    return entry


class TestBoardDatabase:
    def test_bundled_boards_load(self):
        boards = load_boards(DEFAULT_BOARDS_FILE)
        assert "CPE510" in boards
        assert "ARCHER-C7-V5" in boards
        for profile in boards.values():
            assert profile.partitions
            assert len(profile.partitions) <= MAX_PARTITIONS

    def test_support_list_line_continuations(self):
        profile = get_device_profile("CPE510")
        assert profile.support_list.startswith(
            "SupportList:\r\nCPE510(TP-LINK|UN|N300-5):1.0\r\n"
        )
        assert "    " not in profile.support_list

    def test_lookup_is_case_insensitive(self):
        assert get_device_profile("archer-c7-v5").id == "ARCHER-C7-V5"

    def test_unknown_board(self):
        with pytest.raises(ConfigError, match="Unsupported board"):
            get_device_profile("NO-SUCH-BOARD")

    def test_get_all_boards(self):
        ids = get_all_boards()
        assert "EAP225-V3" in ids
        assert "DECO-M5" in ids

    def test_trailer_and_compat_level(self):
        eap = get_device_profile("EAP225-V3")
        assert eap.trailer is TrailerPolicy.NONE
        assert eap.compat_level == 1
        assert get_device_profile("CPE210").trailer is TrailerPolicy.PAD_FF
        assert get_device_profile("ARCHER-A7-V5").trailer is TrailerPolicy.PAD_00

    def test_soft_version_forms(self):
        assert get_device_profile("ARCHER-A7-V5").soft_version == SoftVersionSpec(
            text="soft_ver:7.0.0\n"
        )
        assert get_device_profile("CPE510").soft_version == SoftVersionSpec()

    def test_partition_names_override(self):
        deco = get_device_profile("DECO-M5")
        assert deco.partition_names.os_image == "os-image@1"
        assert deco.partition_names.support_list == "support-list"
        assert deco.find_partition("firmware") is None

    def test_vendor(self):
        assert get_device_profile("CPE510").vendor == "CPE510(TP-LINK|UN|N300-5):1.0\r\n"
        assert get_device_profile("ARCHER-C6-V2").vendor == ""
        assert get_device_profile("ARCHER-C7-V5").vendor is None


class TestExtraPara:
    @pytest.mark.parametrize(
        "board_id, flags",
        [
            ("ARCHER-C7-V5", b"\x01\x00"),
            ("archer-a7-v5", b"\x01\x00"),
            ("TL-WA1201-V2", b"\x00\x01"),
            ("EAP245-V3", b"\x01\x01"),
            ("CPE510", None),
        ],
    )
    def test_quirk_groups(self, board_id, flags):
        assert get_extra_para(board_id) == flags

    def test_resolved_at_load(self):
        assert get_device_profile("ARCHER-C6-V2").extra_para == b"\x00\x01"
        assert get_device_profile("EAP120").extra_para is None

    def test_bundled_quirk_boards_have_slot(self):
        boards = load_boards(DEFAULT_BOARDS_FILE)
        quirked = [p for p in boards.values() if p.extra_para is not None]
        assert quirked
        for profile in quirked:
            assert profile.find_partition(profile.partition_names.extra_para) is not None, profile.id


class TestProfileValidation:
    def test_minimal_entry(self):
        profile = profile_from_dict(_entry())
        assert profile.trailer is TrailerPolicy.PAD_00
        assert profile.compat_level == 0
        assert profile.vendor is None

    def test_missing_key(self):
        entry = _entry()
        del entry["partitions"]
        with pytest.raises(ConfigError, match="partitions"):
            profile_from_dict(entry)

    @pytest.mark.parametrize("trailer", [0x12, "zero", True])
    def test_bad_trailer(self, trailer):
        with pytest.raises(ConfigError, match="trailer"):
            profile_from_dict(_entry(trailer=trailer))

    def test_bad_partition_entry(self):
        with pytest.raises(ConfigError, match="partition entry"):
            profile_from_dict(_entry(partitions=[["fs-uboot", 0]]))

    def test_too_many_partitions(self):
        parts = [[f"p{i}", i * 0x1000, 0x1000] for i in range(MAX_PARTITIONS + 1)]
        with pytest.raises(ConfigError):
            profile_from_dict(_entry(partitions=parts))

    def test_bad_partition_names(self):
        with pytest.raises(ConfigError, match="partition_names"):
            profile_from_dict(_entry(partition_names={"kernel": "x"}))

    def test_bad_soft_version(self):
        with pytest.raises(ConfigError, match="soft_version"):
            profile_from_dict(_entry(soft_version=[1, 2]))

    def test_duplicate_ids(self, tmp_path: Path):
        path = tmp_path / "boards.yaml"
        path.write_text(
            "- id: A\n"
            "  support_list: x\n"
            "  partitions: [[firmware, 0, 0x1000]]\n"
            "  first_sysupgrade_partition: os-image\n"
            "  last_sysupgrade_partition: file-system\n"
            "- id: a\n"
            "  support_list: y\n"
            "  partitions: [[firmware, 0, 0x1000]]\n"
            "  first_sysupgrade_partition: os-image\n"
            "  last_sysupgrade_partition: file-system\n"
        )
        with pytest.raises(ConfigError, match="duplicate"):
            load_boards(path)

    def test_not_a_list(self, tmp_path: Path):
        path = tmp_path / "boards.yaml"
        path.write_text("id: A\n")
        with pytest.raises(ConfigError):
            load_boards(path)


class TestSourceDateEpoch:
    def test_unset(self):
        assert source_date_epoch({}) is None

    def test_empty(self):
        assert source_date_epoch({"SOURCE_DATE_EPOCH": ""}) is None

    def test_integer(self):
        assert source_date_epoch({"SOURCE_DATE_EPOCH": "1558094400"}) == 1558094400

    @pytest.mark.parametrize("value", ["abc", "-1", "12.5", "1e9"])
    def test_garbage(self, value):
        with pytest.raises(ConfigError):
            source_date_epoch({"SOURCE_DATE_EPOCH": value})

    @pytest.mark.parametrize("value", ["²", "٣٤", "99999999999999"])
    def test_rejects_unusable_values(self, value):
        with pytest.raises(ConfigError):
            source_date_epoch({"SOURCE_DATE_EPOCH": value})

    def test_last_four_digit_year(self):
        assert source_date_epoch({"SOURCE_DATE_EPOCH": "253402300799"}) == 253402300799
        with pytest.raises(ConfigError, match="out of range"):
            source_date_epoch({"SOURCE_DATE_EPOCH": "253402300800"})
