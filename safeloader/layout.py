"""Flash layout handling and image assembly for factory/sysupgrade images."""

import logging

from .config import (
    MAX_PARTITIONS,
    DeviceProfile,
    FlashPartition,
    ImagePartition,
    PartitionNames,
)
from .errors import CapacityError, FormatError
from .headers import PAYLOAD_OFFSET, put_preamble, put_vendor
from .ptable import TABLE_SIZE, encode_image_table

log = logging.getLogger(__name__)

ERASE_BLOCK_SIZE = 0x10000

FIRMWARE_PARTITION = "firmware"


def _align_up(value: int, alignment: int) -> int:
    """Round up to next alignment boundary."""
    if alignment <= 1:
        return value
    return (value + alignment - 1) & ~(alignment - 1)


def _find(partitions: list[FlashPartition], name: str) -> tuple[int, FlashPartition] | None:
    for i, part in enumerate(partitions):
        if part.name == name:
            return i, part
    return None


def split_firmware(
    partitions: list[FlashPartition],
    names: PartitionNames,
    kernel_size: int,
    sysupgrade: bool = False,
) -> list[FlashPartition]:
    """
    Split the "firmware" flash partition into os-image and file-system.

    The kernel occupies the start of the firmware partition; the root
    filesystem follows it. Factory images start the filesystem on the next
    erase block, sysupgrade images right behind the kernel. Layouts without
    a firmware partition are returned unchanged.
    """
    found = _find(partitions, FIRMWARE_PARTITION)
    if found is None:
        return list(partitions)
    index, firmware = found

    if kernel_size > firmware.size:
        raise CapacityError(
            f"Kernel overflowed firmware partition ({kernel_size} bytes, "
            f"max {firmware.size})"
        )
    if len(partitions) + 1 > MAX_PARTITIONS:
        raise CapacityError(
            f"No room to split firmware partition (max {MAX_PARTITIONS} partitions)"
        )

    fs_base = firmware.base + kernel_size
    if not sysupgrade:
        fs_base = _align_up(fs_base, ERASE_BLOCK_SIZE)

    os_image = FlashPartition(name=names.os_image, base=firmware.base, size=kernel_size)
    file_system = FlashPartition(
        name=names.file_system,
        base=fs_base,
        size=firmware.size - (fs_base - firmware.base),
    )
    log.debug(
        "Split %s: %s at 0x%x size 0x%x, %s at 0x%x size 0x%x",
        firmware.name, os_image.name, os_image.base, os_image.size,
        file_system.name, file_system.base, file_system.size,
    )

    result = list(partitions)
    result[index] = os_image
    result.insert(index + 1, file_system)
    return result


def _flash_slot(partitions: list[FlashPartition], part: ImagePartition) -> FlashPartition:
    found = _find(partitions, part.name)
    if found is None:
        raise FormatError(f"No flash partition for image partition {part.name}")
    slot = found[1]
    if part.size > slot.size:
        raise CapacityError(
            f"{slot.name} partition too big (more than {slot.size} bytes)"
        )
    return slot


def generate_factory_image(
    profile: DeviceProfile,
    partitions: list[FlashPartition],
    parts: list[ImagePartition],
) -> bytes:
    """
    Assemble a factory image.

    The partitions are stored back to back right after the image partition
    table; table offsets are relative to the payload start (0x1014).
    """
    total_size = PAYLOAD_OFFSET + TABLE_SIZE + sum(p.size for p in parts)

    # Pre-fill with 0xFF (erased flash)
    image = bytearray(b"\xFF" * total_size)

    if profile.vendor is not None:
        put_vendor(image, profile.vendor)

    entries: list[FlashPartition] = []
    base = TABLE_SIZE
    for part in parts:
        _flash_slot(partitions, part)
        offset = PAYLOAD_OFFSET + base
        image[offset:offset + part.size] = part.data
        entries.append(FlashPartition(name=part.name, base=base, size=part.size))
        base += part.size

    image[PAYLOAD_OFFSET:PAYLOAD_OFFSET + TABLE_SIZE] = encode_image_table(entries)
    put_preamble(image)

    return bytes(image)


def generate_sysupgrade_image(
    profile: DeviceProfile,
    partitions: list[FlashPartition],
    parts: list[ImagePartition],
) -> bytes:
    """
    Assemble a sysupgrade image.

    The result mirrors the flash range from the first to the last sysupgrade
    partition, with every built partition at its flash offset and 0xFF in
    between. There is no preamble, header or partition table.
    """
    first = _find(partitions, profile.first_sysupgrade_partition)
    last = _find(partitions, profile.last_sysupgrade_partition)
    if first is None or last is None:
        raise FormatError(
            f"Sysupgrade range {profile.first_sysupgrade_partition}.."
            f"{profile.last_sysupgrade_partition} not found in flash layout"
        )
    first_index, first_part = first
    last_index, last_part = last
    if first_index >= last_index:
        raise FormatError(
            f"Sysupgrade partition {first_part.name} does not precede {last_part.name}"
        )

    by_name = {p.name: p for p in parts}
    last_image = by_name.get(last_part.name)
    if last_image is None:
        raise FormatError(f"Image has no {last_part.name} partition")

    total_size = last_part.base - first_part.base + last_image.size
    image = bytearray(b"\xFF" * total_size)

    for slot in partitions[first_index:last_index + 1]:
        part = by_name.get(slot.name)
        if part is None:
            continue
        if part.size > slot.size:
            raise CapacityError(
                f"{slot.name} partition too big (more than {slot.size} bytes)"
            )
        offset = slot.base - first_part.base
        if offset < 0 or offset + part.size > total_size:
            raise CapacityError(
                f"{slot.name} partition does not fit the sysupgrade image "
                f"(0x{offset:x} + 0x{part.size:x} > 0x{total_size:x})"
            )
        image[offset:offset + part.size] = part.data

    return bytes(image)
