"""Text partition tables embedded in SafeLoader images.

Two line formats share one parser:

    fwup-ptn <name> base 0x<hex> size 0x<hex>\\t\\r\\n     (image table)
    partition <name> base 0x<hex> size 0x<hex>\\n       (flash table)

The image table sits at the start of the payload and maps the partitions of
one image to offsets inside that image. The flash table lives inside the
partition-table partition (behind a 4-byte magic) and describes the flash
layout the bootloader should apply.
"""

import re

from .config import MAX_PARTITIONS, DeviceProfile, FlashPartition, ImagePartition
from .errors import CapacityError, FormatError, PartitionTableNotFound

TABLE_SIZE = 0x800

FWUP_HEADER = b"fwup-ptn"
FLASH_HEADER = b"partition"

PARTITION_TABLE_MAGIC = b"\x00\x04\x00\x00"

MAX_NAME_LEN = 31

_HEX_PREFIX = re.compile(rb"\s*\+?(?:0[xX](?=[0-9a-fA-F]))?([0-9a-fA-F]*)")


def _parse_hex(field: bytes) -> int:
    """Parse the leading hexadecimal number of a field; 0 if there is none."""
    m = _HEX_PREFIX.match(field)
    digits = m.group(1) if m else b""
    return int(digits, 16) if digits else 0


def decode_partition_table(
    buf: bytes,
    header: bytes,
    max_entries: int = MAX_PARTITIONS,
) -> list[FlashPartition]:
    """
    Decode a text partition table starting at the beginning of ``buf``.

    Lines are read while they start with ``header``. Each line must hold the
    space-separated fields ``<header> <name> base <base> size <size>``; the
    size runs up to the line terminator and is parsed leniently.
    """
    window = bytearray(buf[:TABLE_SIZE])
    if len(window) == TABLE_SIZE:
        window[-1] = 0
    data = bytes(window)
    end = len(data)

    if not data.startswith(header):
        raise PartitionTableNotFound(
            f"No '{header.decode()}' partition table found"
        )

    entries: list[FlashPartition] = []
    pos = 0
    while pos + len(header) < end and data.startswith(header, pos):
        line_end = data.find(b"\n", pos)
        if line_end < 0:
            break

        fields = []
        for _ in range(4):
            sep = data.find(b" ", pos, line_end)
            if sep < 0:
                raise FormatError(
                    f"Malformed partition table line: {data[pos:line_end]!r}"
                )
            fields.append(data[pos:sep])
            pos = sep + 1
        sep = data.find(b" ", pos, line_end)
        if sep < 0:
            raise FormatError(
                f"Malformed partition table line: {data[pos:line_end]!r}"
            )
        size = _parse_hex(data[sep + 1:line_end])

        if len(entries) >= max_entries:
            raise CapacityError(
                f"No free flash partition entry available (max {max_entries})"
            )
        name = fields[1][:MAX_NAME_LEN].decode("latin-1")
        entries.append(FlashPartition(name=name, base=_parse_hex(fields[3]), size=size))
        pos = line_end + 1

    return entries


def encode_flash_table(partitions: list[FlashPartition]) -> bytes:
    """Encode a flash layout in the ``partition ...`` line format."""
    return b"".join(
        b"partition %s base 0x%05x size 0x%05x\n"
        % (p.name.encode("latin-1"), p.base, p.size)
        for p in partitions
    )


def _finish_table(table: bytes, what: str) -> bytes:
    # table text, one NUL, then 0xFF up to TABLE_SIZE
    if len(table) + 1 > TABLE_SIZE:
        raise CapacityError(
            f"{what} overflow ({len(table) + 1} bytes, max {TABLE_SIZE})"
        )
    return table + b"\x00" + b"\xff" * (TABLE_SIZE - len(table) - 1)


def encode_image_table(entries: list[FlashPartition]) -> bytes:
    """Encode the image partition table into its fixed 0x800-byte region."""
    lines = b"".join(
        b"fwup-ptn %s base 0x%05x size 0x%05x\t\r\n"
        % (e.name.encode("latin-1"), e.base, e.size)
        for e in entries
    )
    return _finish_table(lines, "Image partition table")


def make_partition_table(
    profile: DeviceProfile, partitions: list[FlashPartition]
) -> ImagePartition:
    """Generate the partition-table partition for a (split) flash layout."""
    table = PARTITION_TABLE_MAGIC + encode_flash_table(partitions)
    return ImagePartition(
        name=profile.partition_names.partition_table,
        data=_finish_table(table, "Flash partition table"),
    )
