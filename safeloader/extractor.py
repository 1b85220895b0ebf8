"""Inspection, extraction and conversion of existing SafeLoader images."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO

from .config import FlashPartition
from .errors import (
    CapacityError,
    ConfigError,
    FormatError,
    PartitionTableNotFound,
    TruncatedImageError,
)
from .headers import (
    CHECKSUM_OFFSET,
    CHECKSUM_SIZE,
    ImageVariant,
    SafeloaderImageInfo,
    compute_file_checksum,
    parse_image,
    read_exact,
    read_vendor,
)
from .meta import SoftVersionRecord, decode_soft_version, read_meta
from .ptable import FLASH_HEADER, PARTITION_TABLE_MAGIC, TABLE_SIZE, decode_partition_table

log = logging.getLogger(__name__)

CHUNK_SIZE = 4096


@dataclass
class ImageReport:
    """Everything the info operation learns about an image."""

    path: str
    variant: ImageVariant
    payload_offset: int
    size: int
    vendor: str | None = None
    stored_checksum: bytes | None = None
    computed_checksum: bytes | None = None
    partitions: list[FlashPartition] = field(default_factory=list)
    soft_version: str | SoftVersionRecord | None = None
    soft_version_error: str | None = None
    support_list: str | None = None
    support_list_error: str | None = None
    flash_partitions: list[FlashPartition] | None = None

    @property
    def checksum_ok(self) -> bool | None:
        if self.stored_checksum is None or self.computed_checksum is None:
            return None
        return self.stored_checksum == self.computed_checksum

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.soft_version, SoftVersionRecord):
            soft_version: Any = {
                "version": self.soft_version.version,
                "date": self.soft_version.date,
                "revision": self.soft_version.revision,
                "compat_level": self.soft_version.compat_level,
            }
        else:
            soft_version = self.soft_version

        def entries(parts: list[FlashPartition]) -> list[dict[str, Any]]:
            return [{"name": p.name, "base": p.base, "size": p.size} for p in parts]

        return {
            "path": self.path,
            "variant": self.variant.value,
            "payload_offset": self.payload_offset,
            "size": self.size,
            "vendor": self.vendor,
            "checksum": {
                "stored": self.stored_checksum.hex() if self.stored_checksum else None,
                "computed": self.computed_checksum.hex() if self.computed_checksum else None,
                "ok": self.checksum_ok,
            },
            "partitions": entries(self.partitions),
            "soft_version": soft_version,
            "soft_version_error": self.soft_version_error,
            "support_list": self.support_list,
            "support_list_error": self.support_list_error,
            "flash_partitions": (
                entries(self.flash_partitions) if self.flash_partitions is not None else None
            ),
        }

    def format_lines(self) -> list[str]:
        """Render the human-readable report."""
        lines = []
        if self.vendor is not None:
            lines.append("Firmware vendor string:")
            lines.append(self.vendor)

        lines.append("Firmware image partitions:")
        lines.append(f"{'base':<8} {'size':<8} name")
        for p in self.partitions:
            lines.append(f"{p.base:08x} {p.size:08x} {p.name}")

        if self.soft_version is not None or self.soft_version_error is not None:
            lines.append("")
            lines.append("[Software version]")
            if isinstance(self.soft_version, SoftVersionRecord):
                lines.append(f"Version: {self.soft_version.version}")
                lines.append(f"Date: {self.soft_version.date}")
                lines.append(f"Revision: {self.soft_version.revision}")
            elif self.soft_version is not None:
                lines.append(self.soft_version)
            else:
                lines.append("Failed to parse data")

        if self.support_list is not None or self.support_list_error is not None:
            lines.append("")
            lines.append("[Support list]")
            if self.support_list is not None:
                lines.append(self.support_list)
            else:
                lines.append("Failed to parse data")

        if self.flash_partitions is not None:
            lines.append("")
            lines.append("[Partition table]")
            lines.append(f"{'base':<8} {'size':<8} name")
            for p in self.flash_partitions:
                lines.append(f"{p.base:08x} {p.size:08x} {p.name}")

        if self.checksum_ok is not None:
            lines.append("")
            lines.append(f"Checksum: {'OK' if self.checksum_ok else 'MISMATCH'}")

        return lines


def read_partition(fp: BinaryIO, info: SafeloaderImageInfo, entry: FlashPartition) -> bytes:
    return read_exact(fp, info.payload_offset + entry.base, entry.size, entry.name)


def read_flash_table(fp: BinaryIO, info: SafeloaderImageInfo) -> list[FlashPartition]:
    """Decode the flash layout stored in the partition-table partition."""
    entry = info.find_entry("partition-table")
    if entry is None:
        raise FormatError("Image has no partition-table partition")

    offset = info.payload_offset + entry.base + len(PARTITION_TABLE_MAGIC)
    fp.seek(offset)
    data = fp.read(TABLE_SIZE)
    try:
        return decode_partition_table(data, FLASH_HEADER)
    except PartitionTableNotFound as e:
        raise FormatError(f"Can not read the flash partition table: {e}") from e


def firmware_info(path: Path) -> ImageReport:
    """Inspect an image: variant, vendor, partitions, meta data and flash layout."""
    with open(path, "rb") as fp:
        info = parse_image(fp)
        report = ImageReport(
            path=str(path),
            variant=info.variant,
            payload_offset=info.payload_offset,
            size=path.stat().st_size,
            partitions=list(info.entries),
        )

        if info.variant is ImageVariant.VENDOR:
            report.vendor = read_vendor(fp)

        entry = info.find_entry("soft-version")
        if entry is not None:
            try:
                payload = read_meta(read_partition(fp, info, entry))
                report.soft_version = decode_soft_version(payload)
            except FormatError as e:
                log.debug("Undecodable soft-version: %s", e)
                report.soft_version_error = str(e)

        entry = info.find_entry("support-list")
        if entry is not None:
            try:
                payload = read_meta(read_partition(fp, info, entry))
                report.support_list = payload.decode("latin-1")
            except FormatError as e:
                log.debug("Undecodable support-list: %s", e)
                report.support_list_error = str(e)

        if info.find_entry("partition-table") is not None:
            report.flash_partitions = read_flash_table(fp, info)

        # QNEW images put their extra block before the checksummed region
        if info.variant is not ImageVariant.QNEW:
            report.stored_checksum = read_exact(fp, CHECKSUM_OFFSET, CHECKSUM_SIZE, "checksum")
            report.computed_checksum = compute_file_checksum(fp)

    return report


def write_partition(
    in_fp: BinaryIO, payload_offset: int, entry: FlashPartition, out_fp: BinaryIO
) -> None:
    """Copy one partition of an image to an output stream."""
    if entry.size == 0:
        return

    in_fp.seek(payload_offset + entry.base)
    remaining = entry.size
    while remaining > 0:
        chunk = in_fp.read(min(CHUNK_SIZE, remaining))
        if not chunk:
            raise TruncatedImageError(
                f"Can not read partition {entry.name}: "
                f"{entry.size - remaining} of {entry.size} bytes available"
            )
        out_fp.write(chunk)
        remaining -= len(chunk)


def write_ff(out_fp: BinaryIO, size: int) -> None:
    """Write ``size`` bytes of 0xFF."""
    buf = b"\xFF" * CHUNK_SIZE
    while size > 0:
        n = min(size, CHUNK_SIZE)
        out_fp.write(buf[:n])
        size -= n


def _output_path(output_dir: Path, name: str) -> Path:
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise FormatError(f"Refusing to extract partition with unsafe name {name!r}")
    return output_dir / name


def extract_firmware(path: Path, output_dir: Path) -> list[Path]:
    """Write every partition of an image to its own file in ``output_dir``."""
    if not output_dir.is_dir():
        raise ConfigError(f"Output directory {output_dir} does not exist")

    written = []
    with open(path, "rb") as in_fp:
        info = parse_image(in_fp)
        for entry in info.entries:
            out_path = _output_path(output_dir, entry.name)
            with open(out_path, "wb") as out_fp:
                write_partition(in_fp, info.payload_offset, entry, out_fp)
            log.debug("Extracted %s (%d bytes) to %s", entry.name, entry.size, out_path)
            written.append(out_path)

    return written


def _require(entry: FlashPartition | None, what: str) -> FlashPartition:
    if entry is None:
        raise FormatError(f"Can not find {what} partition")
    return entry


def convert_firmware(path: Path, output: Path) -> None:
    """
    Convert a factory image into a sysupgrade image.

    The os-image is written at offset 0 and padded with 0xFF to the size of
    its flash slot; the file-system follows at its flash offset relative to
    the os-image.
    """
    with open(path, "rb") as in_fp:
        info = parse_image(in_fp)

        fwup_os_image = _require(info.find_entry("os-image"), "os-image (fwup)")
        fwup_file_system = _require(info.find_entry("file-system"), "file-system (fwup)")
        _require(info.find_entry("partition-table"), "partition-table")

        flash = read_flash_table(in_fp, info)
        by_name = {p.name: p for p in flash}
        flash_os_image = _require(by_name.get("os-image"), "os-image (flash)")
        flash_file_system = _require(by_name.get("file-system"), "file-system (flash)")

        if fwup_os_image.size > flash_os_image.size:
            raise CapacityError(
                f"os-image too big for its flash partition "
                f"({fwup_os_image.size} bytes, max {flash_os_image.size})"
            )
        if flash_file_system.base < flash_os_image.base:
            raise FormatError("file-system partition precedes os-image in flash layout")

        with open(output, "wb") as out_fp:
            write_partition(in_fp, info.payload_offset, fwup_os_image, out_fp)
            write_ff(out_fp, flash_os_image.size - fwup_os_image.size)

            out_fp.seek(flash_file_system.base - flash_os_image.base)
            write_partition(in_fp, info.payload_offset, fwup_file_system, out_fp)
