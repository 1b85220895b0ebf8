"""SafeLoader container: preamble, checksum, header variants.

Image layout:

    Bytes (hex)  Usage
    -----------  -----
    0000-0003    Image size (4 bytes, big endian)
    0004-0013    MD5 of a 16-byte salt followed by the image from 0x14 on
    0014-1013    Header region (0x1000 bytes, content depends on the variant)
    1014-1813    Image partition table (0x800 bytes, padded with 0xff)
    1814-xxxx    Partitions

QNEW images carry an extra 0x3C-byte block before the header region, so
their payload starts at 0x1050 instead of 0x1014.
"""

import hashlib
import logging
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO

from .config import FlashPartition
from .errors import CapacityError, PartitionTableNotFound, TruncatedImageError
from .ptable import FWUP_HEADER, TABLE_SIZE, decode_partition_table

log = logging.getLogger(__name__)

PREAMBLE_SIZE = 0x14
HEADER_SIZE = 0x1000
QNEW_HEADER_SIZE = 0x3C
PAYLOAD_OFFSET = PREAMBLE_SIZE + HEADER_SIZE
QNEW_PAYLOAD_OFFSET = PREAMBLE_SIZE + QNEW_HEADER_SIZE + HEADER_SIZE

# Bytes after the preamble inspected by variant detection
DETECT_SIZE = 64

CHECKSUM_OFFSET = 0x04
CHECKSUM_SIZE = 16

MD5_SALT = bytes([
    0x7a, 0x2b, 0x15, 0xed,
    0x9b, 0x98, 0x59, 0x6d,
    0xe5, 0x04, 0xab, 0x44,
    0xac, 0x2a, 0x9f, 0x4e,
])

U32 = struct.Struct(">I")


class ImageVariant(Enum):
    DEFAULT = "default"
    VENDOR = "vendor"
    CLOUD = "cloud"
    QNEW = "qnew"


# Header signatures, checked in order against the bytes at PREAMBLE_SIZE
HEADER_SIGNATURES: list[tuple[bytes, ImageVariant]] = [
    (b"?NEW", ImageVariant.QNEW),
    (b"fw-type:Cloud", ImageVariant.CLOUD),
]

PAYLOAD_OFFSETS: dict[ImageVariant, int] = {
    ImageVariant.DEFAULT: PAYLOAD_OFFSET,
    ImageVariant.VENDOR: PAYLOAD_OFFSET,
    ImageVariant.CLOUD: PAYLOAD_OFFSET,
    ImageVariant.QNEW: QNEW_PAYLOAD_OFFSET,
}


@dataclass(frozen=True)
class SafeloaderImageInfo:
    """Parsed container of an existing image."""

    variant: ImageVariant
    payload_offset: int
    entries: list[FlashPartition] = field(default_factory=list)

    def find_entry(self, name: str) -> FlashPartition | None:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None


# ---------------------------------------------------------------------------
# Checksum
# ---------------------------------------------------------------------------


def compute_checksum(data: bytes, salt: bytes = MD5_SALT) -> bytes:
    """16-byte MD5 over the salt followed by the data."""
    md5 = hashlib.md5(salt)
    md5.update(data)
    return md5.digest()


def compute_file_checksum(fp: BinaryIO, salt: bytes = MD5_SALT) -> bytes:
    """Checksum of an image file, hashing everything after the preamble."""
    md5 = hashlib.md5(salt)
    fp.seek(PREAMBLE_SIZE)
    for chunk in iter(lambda: fp.read(8192), b""):
        md5.update(chunk)
    return md5.digest()


def stored_checksum(image: bytes) -> bytes:
    return bytes(image[CHECKSUM_OFFSET:CHECKSUM_OFFSET + CHECKSUM_SIZE])


def verify_checksum(image: bytes) -> bool:
    """Check the preamble checksum of a complete image."""
    if len(image) < PREAMBLE_SIZE:
        return False
    return stored_checksum(image) == compute_checksum(image[PREAMBLE_SIZE:])


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def put_vendor(image: bytearray, vendor: str) -> None:
    """Write the length-prefixed vendor string into the header region."""
    data = vendor.encode()
    if U32.size + len(data) > HEADER_SIZE:
        raise CapacityError(
            f"Vendor string too long ({len(data)} bytes, max {HEADER_SIZE - U32.size})"
        )
    U32.pack_into(image, PREAMBLE_SIZE, len(data))
    image[PREAMBLE_SIZE + U32.size:PREAMBLE_SIZE + U32.size + len(data)] = data


def put_preamble(image: bytearray) -> None:
    """Stamp the image size and checksum. Must run after all other writes."""
    U32.pack_into(image, 0, len(image))
    image[CHECKSUM_OFFSET:CHECKSUM_OFFSET + CHECKSUM_SIZE] = compute_checksum(
        bytes(image[PREAMBLE_SIZE:])
    )


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def read_exact(fp: BinaryIO, offset: int, size: int, what: str) -> bytes:
    """Read exactly ``size`` bytes at ``offset`` or raise TruncatedImageError."""
    fp.seek(offset)
    data = fp.read(size)
    if len(data) != size:
        raise TruncatedImageError(
            f"Can not read {what}: wanted {size} bytes at 0x{offset:x}, got {len(data)}"
        )
    return data


def detect_variant(header: bytes) -> ImageVariant:
    """Classify an image by the bytes that follow its preamble."""
    for signature, variant in HEADER_SIGNATURES:
        if header.startswith(signature):
            return variant
    if len(header) < U32.size:
        raise TruncatedImageError("Image header too short for variant detection")
    (length,) = U32.unpack_from(header)
    if length <= HEADER_SIZE:
        return ImageVariant.VENDOR
    return ImageVariant.DEFAULT


def payload_offset(variant: ImageVariant) -> int:
    return PAYLOAD_OFFSETS[variant]


def parse_image(fp: BinaryIO) -> SafeloaderImageInfo:
    """Detect the variant of an image and decode its image partition table."""
    header = read_exact(fp, PREAMBLE_SIZE, DETECT_SIZE, "image header")
    variant = detect_variant(header)
    offset = payload_offset(variant)

    table = read_exact(fp, offset, TABLE_SIZE, "image partition table")
    try:
        entries = decode_partition_table(table, FWUP_HEADER)
    except PartitionTableNotFound:
        log.warning("No image partition table at offset 0x%x", offset)
        entries = []

    log.debug(
        "Image variant %s, payload at 0x%x, %d partitions",
        variant.name, offset, len(entries),
    )
    return SafeloaderImageInfo(variant=variant, payload_offset=offset, entries=entries)


def read_vendor(fp: BinaryIO) -> str:
    """Read the vendor string of a VENDOR image."""
    (length,) = U32.unpack(read_exact(fp, PREAMBLE_SIZE, U32.size, "vendor length"))
    length = min(length, HEADER_SIZE - U32.size)
    data = read_exact(fp, PREAMBLE_SIZE + U32.size, length, "vendor string")
    return data.split(b"\x00", 1)[0].decode("latin-1")
