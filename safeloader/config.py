"""Board database, device profiles and build configuration."""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

MAX_PARTITIONS = 32

DEFAULT_BOARDS_FILE = Path(__file__).parent / "boards.yaml"

# Soft-version dates are stored with a four-digit year
MAX_SOURCE_DATE_EPOCH = int(datetime(9999, 12, 31, 23, 59, 59, tzinfo=timezone.utc).timestamp())


class TrailerPolicy(Enum):
    """Byte appended after the payload of every meta partition."""

    PAD_00 = 0x00
    PAD_FF = 0xFF
    NONE = 0x100  # no trailer byte at all

    @property
    def pad_byte(self) -> int | None:
        if self is TrailerPolicy.NONE:
            return None
        return self.value


@dataclass(frozen=True)
class FlashPartition:
    """One slot of a flash layout: the byte range [base, base + size)."""

    name: str
    base: int
    size: int


@dataclass
class ImagePartition:
    """Logical partition content as produced or consumed by the codec."""

    name: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class SoftVersionSpec:
    """Either a literal soft-version text or a numeric major.minor.patch."""

    text: str | None = None
    major: int = 0
    minor: int = 0
    patch: int = 0

    @property
    def is_text(self) -> bool:
        return self.text is not None


@dataclass(frozen=True)
class PartitionNames:
    partition_table: str = "partition-table"
    soft_version: str = "soft-version"
    os_image: str = "os-image"
    support_list: str = "support-list"
    file_system: str = "file-system"
    extra_para: str = "extra-para"


@dataclass
class DeviceProfile:
    """Static description of one board, as loaded from the board database."""

    id: str
    support_list: str
    partitions: list[FlashPartition]
    first_sysupgrade_partition: str
    last_sysupgrade_partition: str
    vendor: str | None = None  # "" still writes a zero-length vendor block
    trailer: TrailerPolicy = TrailerPolicy.PAD_00
    soft_version: SoftVersionSpec = field(default_factory=SoftVersionSpec)
    compat_level: int = 0
    partition_names: PartitionNames = field(default_factory=PartitionNames)
    extra_para: bytes | None = None

    def find_partition(self, name: str) -> FlashPartition | None:
        for part in self.partitions:
            if part.name == name:
                return part
        return None


@dataclass
class BuildConfig:
    """Inputs and options for a single image build."""

    kernel: Path
    rootfs: Path
    output: Path
    revision: int = 0
    add_jffs2_eof: bool = False
    sysupgrade: bool = False
    timestamp: int | None = None  # fixed build date, seconds since epoch


# Boards whose upgrade check wants an extra-para partition, keyed by the
# flag bytes it must contain. Ids are compared case-insensitively.
EXTRA_PARA_QUIRKS: dict[bytes, list[str]] = {
    b"\x01\x00": [
        "ARCHER-A6-V3",
        "ARCHER-A7-V5",
        "ARCHER-A9-V6",
        "ARCHER-AX23-V1",
        "ARCHER-C2-V3",
        "ARCHER-C7-V4",
        "ARCHER-C7-V5",
        "ARCHER-C25-V1",
        "ARCHER-C59-V2",
        "ARCHER-C60-V2",
        "ARCHER-C60-V3",
        "ARCHER-C6U-V1",
        "ARCHER-C6-V3",
        "DECO-M4R-V4",
        "MR70X",
        "TLWR1043NV5",
    ],
    b"\x00\x01": [
        "ARCHER-C6-V2",
        "TL-WA1201-V2",
    ],
    b"\x01\x01": [
        "ARCHER-C6-V2-US",
        "EAP245-V3",
    ],
}

# Precomputed reverse map: upper-case board id to extra-para bytes
_EXTRA_PARA_BY_ID: dict[str, bytes] = {}
for _flags, _ids in EXTRA_PARA_QUIRKS.items():
    for _board_id in _ids:
        _EXTRA_PARA_BY_ID[_board_id.upper()] = _flags


def get_extra_para(board_id: str) -> bytes | None:
    """Get the extra-para flags for a board id, or None if it needs none."""
    return _EXTRA_PARA_BY_ID.get(board_id.upper())


# ---------------------------------------------------------------------------
# Board database loading
# ---------------------------------------------------------------------------


def _parse_trailer(board_id: str, value: Any) -> TrailerPolicy:
    if value is None or (isinstance(value, str) and value.lower() == "none"):
        return TrailerPolicy.NONE
    if isinstance(value, int) and not isinstance(value, bool):
        for policy in TrailerPolicy:
            if policy.value == value:
                return policy
    raise ConfigError(f"{board_id}: invalid trailer {value!r} (expected 0x00, 0xff or none)")


def _parse_soft_version(board_id: str, value: Any) -> SoftVersionSpec:
    if value is None:
        return SoftVersionSpec()
    if isinstance(value, str):
        return SoftVersionSpec(text=value)
    if isinstance(value, list) and len(value) == 3 and all(
        isinstance(v, int) and 0 <= v <= 0xFF for v in value
    ):
        return SoftVersionSpec(major=value[0], minor=value[1], patch=value[2])
    raise ConfigError(f"{board_id}: invalid soft_version {value!r}")


def _parse_partitions(board_id: str, value: Any) -> list[FlashPartition]:
    if not isinstance(value, list) or not value:
        raise ConfigError(f"{board_id}: partitions must be a non-empty list")
    if len(value) > MAX_PARTITIONS:
        raise ConfigError(
            f"{board_id}: {len(value)} partitions (at most {MAX_PARTITIONS})"
        )

    partitions = []
    for item in value:
        if (
            not isinstance(item, list)
            or len(item) != 3
            or not isinstance(item[0], str)
            or not all(isinstance(v, int) and 0 <= v <= 0xFFFFFFFF for v in item[1:])
        ):
            raise ConfigError(f"{board_id}: invalid partition entry {item!r}")
        partitions.append(FlashPartition(name=item[0], base=item[1], size=item[2]))
    return partitions


def profile_from_dict(entry: dict[str, Any]) -> DeviceProfile:
    """Build a DeviceProfile from one board database entry."""
    if not isinstance(entry, dict) or "id" not in entry:
        raise ConfigError(f"Board entry without id: {entry!r}")
    board_id = str(entry["id"])

    for key in ("support_list", "partitions", "first_sysupgrade_partition",
                "last_sysupgrade_partition"):
        if key not in entry:
            raise ConfigError(f"{board_id}: missing required key '{key}'")

    names = entry.get("partition_names") or {}
    try:
        partition_names = PartitionNames(**names)
    except TypeError as e:
        raise ConfigError(f"{board_id}: invalid partition_names: {e}") from e

    compat_level = entry.get("compat_level", 0)
    if not isinstance(compat_level, int) or not 0 <= compat_level <= 0xFFFFFFFF:
        raise ConfigError(f"{board_id}: invalid compat_level {compat_level!r}")

    vendor = entry.get("vendor")
    if vendor is not None and not isinstance(vendor, str):
        raise ConfigError(f"{board_id}: vendor must be a string")

    return DeviceProfile(
        id=board_id,
        vendor=vendor,
        support_list=str(entry["support_list"]),
        trailer=_parse_trailer(board_id, entry.get("trailer", 0x00)),
        soft_version=_parse_soft_version(board_id, entry.get("soft_version")),
        compat_level=compat_level,
        partitions=_parse_partitions(board_id, entry["partitions"]),
        first_sysupgrade_partition=str(entry["first_sysupgrade_partition"]),
        last_sysupgrade_partition=str(entry["last_sysupgrade_partition"]),
        partition_names=partition_names,
        extra_para=get_extra_para(board_id),
    )


def load_boards(config_path: Path = DEFAULT_BOARDS_FILE) -> dict[str, DeviceProfile]:
    """Load the board database from a YAML file, keyed by upper-case id."""
    with open(config_path) as f:
        data = yaml.safe_load(f)

    if not isinstance(data, list):
        raise ConfigError(f"{config_path}: expected a list of boards")

    boards: dict[str, DeviceProfile] = {}
    for entry in data:
        profile = profile_from_dict(entry)
        key = profile.id.upper()
        if key in boards:
            raise ConfigError(f"{config_path}: duplicate board id {profile.id}")
        boards[key] = profile
    return boards


_BOARD_CACHE: dict[Path, dict[str, DeviceProfile]] = {}


def _get_boards(config_path: Path) -> dict[str, DeviceProfile]:
    if config_path not in _BOARD_CACHE:
        _BOARD_CACHE[config_path] = load_boards(config_path)
    return _BOARD_CACHE[config_path]


def get_device_profile(
    board_id: str, config_path: Path = DEFAULT_BOARDS_FILE
) -> DeviceProfile:
    """Get a device profile by case-insensitive board id."""
    boards = _get_boards(config_path)
    profile = boards.get(board_id.upper())
    if profile is None:
        raise ConfigError(f"Unsupported board: {board_id}")
    return profile


def get_all_boards(config_path: Path = DEFAULT_BOARDS_FILE) -> list[str]:
    """Get the ids of all known boards."""
    return [p.id for p in _get_boards(config_path).values()]


def source_date_epoch(environ: dict[str, str] | None = None) -> int | None:
    """Read SOURCE_DATE_EPOCH; None when unset or empty."""
    if environ is None:
        environ = dict(os.environ)
    value = environ.get("SOURCE_DATE_EPOCH", "")
    if not value:
        return None
    if not (value.isascii() and value.isdigit()):
        raise ConfigError(f"Invalid SOURCE_DATE_EPOCH: {value!r}")
    timestamp = int(value)
    if timestamp > MAX_SOURCE_DATE_EPOCH:
        raise ConfigError(f"SOURCE_DATE_EPOCH out of range: {value}")
    return timestamp
