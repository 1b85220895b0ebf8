"""Meta partitions: soft-version, support-list and extra-para.

Every meta partition starts with an 8-byte header (payload length as a
big-endian u32, then a zero u32), followed by the payload and, depending on
the board, a single trailer byte.
"""

import struct
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from .config import DeviceProfile, ImagePartition, SoftVersionSpec, TrailerPolicy
from .errors import FormatError

META_HEADER = struct.Struct(">II")

# pad1, major, minor, patch, year_hi, year_lo, month, day, rev
SOFT_VERSION_STRUCT = struct.Struct(">BBBBBBBBI")
COMPAT_LEVEL_STRUCT = struct.Struct(">I")


@dataclass
class SoftVersionRecord:
    """Decoded binary soft-version payload. Date fields are raw BCD bytes."""

    major: int
    minor: int
    patch: int
    year_hi: int
    year_lo: int
    month: int
    day: int
    revision: int
    compat_level: int | None = None

    @property
    def version(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @property
    def date(self) -> str:
        return f"{self.year_hi:02x}{self.year_lo:02x}-{self.month:02x}-{self.day:02x}"


def make_meta(payload: bytes, trailer: TrailerPolicy) -> bytes:
    """Wrap a payload in a meta header and the board's trailer byte."""
    data = META_HEADER.pack(len(payload), 0) + payload
    if trailer.pad_byte is not None:
        data += bytes([trailer.pad_byte])
    return data


def read_meta(data: bytes) -> bytes:
    """Return the payload of a meta partition."""
    if len(data) < META_HEADER.size:
        raise FormatError(f"Meta partition too short ({len(data)} bytes)")
    length, _ = META_HEADER.unpack_from(data)
    if META_HEADER.size + length > len(data):
        raise FormatError(
            f"Meta partition declares {length} bytes, only "
            f"{len(data) - META_HEADER.size} present"
        )
    return data[META_HEADER.size:META_HEADER.size + length]


def bcd(value: int) -> int:
    """Binary-coded decimal representation of an integer in [0, 99]."""
    if not 0 <= value <= 99:
        raise ValueError(f"BCD value out of range: {value}")
    return 0x10 * (value // 10) + value % 10


def encode_soft_version(
    version: SoftVersionSpec,
    compat_level: int,
    revision: int,
    timestamp: int | None = None,
) -> bytes:
    """
    Build the soft-version payload.

    A text version is used as is, including its terminating NUL. Otherwise a
    binary record is packed carrying the version triple, the build date
    (UTC date of ``timestamp``, or today) and the revision. The trailing
    compat_level field is only present when it is non-zero; older
    bootloaders reject the longer record.
    """
    if version.is_text:
        return version.text.encode() + b"\x00"

    if timestamp is None:
        timestamp = int(time.time())
    date = datetime.fromtimestamp(timestamp, tz=timezone.utc)

    data = SOFT_VERSION_STRUCT.pack(
        0xFF,
        version.major,
        version.minor,
        version.patch,
        bcd(date.year // 100),
        bcd(date.year % 100),
        bcd(date.month),
        bcd(date.day),
        revision & 0xFFFFFFFF,
    )
    if compat_level != 0:
        data += COMPAT_LEVEL_STRUCT.pack(compat_level)
    return data


def decode_soft_version(payload: bytes) -> str | SoftVersionRecord:
    """Decode a soft-version payload into its text or its binary record."""
    if all(b < 0x80 for b in payload):
        return payload.split(b"\x00", 1)[0].decode("ascii")

    if len(payload) < SOFT_VERSION_STRUCT.size:
        raise FormatError(
            f"Soft-version record too short ({len(payload)} bytes)"
        )
    _, major, minor, patch, year_hi, year_lo, month, day, rev = (
        SOFT_VERSION_STRUCT.unpack_from(payload)
    )
    compat_level = None
    if len(payload) >= SOFT_VERSION_STRUCT.size + COMPAT_LEVEL_STRUCT.size:
        (compat_level,) = COMPAT_LEVEL_STRUCT.unpack_from(
            payload, SOFT_VERSION_STRUCT.size
        )
    return SoftVersionRecord(
        major=major,
        minor=minor,
        patch=patch,
        year_hi=year_hi,
        year_lo=year_lo,
        month=month,
        day=day,
        revision=rev,
        compat_level=compat_level,
    )


def make_soft_version(
    profile: DeviceProfile, revision: int, timestamp: int | None = None
) -> ImagePartition:
    payload = encode_soft_version(
        profile.soft_version, profile.compat_level, revision, timestamp
    )
    return ImagePartition(
        name=profile.partition_names.soft_version,
        data=make_meta(payload, profile.trailer),
    )


def make_support_list(profile: DeviceProfile) -> ImagePartition:
    return ImagePartition(
        name=profile.partition_names.support_list,
        data=make_meta(profile.support_list.encode(), profile.trailer),
    )


def make_extra_para(profile: DeviceProfile) -> ImagePartition | None:
    """Generate the extra-para partition for boards that need one."""
    if profile.extra_para is None:
        return None
    return ImagePartition(
        name=profile.partition_names.extra_para,
        data=make_meta(profile.extra_para, profile.trailer),
    )
