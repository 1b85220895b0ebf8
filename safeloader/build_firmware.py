#!/usr/bin/env python3
"""
SafeLoader Image Tool

Builds factory and sysupgrade images for TP-Link SafeLoader devices from a
kernel and a rootfs image, and inspects, extracts or converts existing
images.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import (
    DEFAULT_BOARDS_FILE,
    BuildConfig,
    DeviceProfile,
    FlashPartition,
    ImagePartition,
    get_all_boards,
    get_device_profile,
    source_date_epoch,
)
from .errors import SafeloaderError
from .extractor import convert_firmware, extract_firmware, firmware_info
from .layout import (
    ERASE_BLOCK_SIZE,
    FIRMWARE_PARTITION,
    _align_up,
    generate_factory_image,
    generate_sysupgrade_image,
    split_firmware,
)
from .meta import make_extra_para, make_soft_version, make_support_list
from .ptable import make_partition_table

log = logging.getLogger(__name__)

JFFS2_EOF_MARK = b"\xde\xad\xc0\xde"


def read_file(
    part_name: str,
    path: Path,
    add_jffs2_eof: bool = False,
    file_system_partition: FlashPartition | None = None,
) -> ImagePartition:
    """
    Create an image partition from a file.

    With ``add_jffs2_eof`` the data is padded with 0xFF up to the next erase
    block and followed by the JFFS2 end-of-filesystem marker. The erase block
    is measured in flash addresses when the partition's flash base is known.
    """
    data = path.read_bytes()
    if not add_jffs2_eof:
        return ImagePartition(name=part_name, data=data)

    if file_system_partition is not None:
        base = file_system_partition.base
        total = _align_up(len(data) + base, ERASE_BLOCK_SIZE) + len(JFFS2_EOF_MARK) - base
    else:
        total = _align_up(len(data), ERASE_BLOCK_SIZE) + len(JFFS2_EOF_MARK)

    padding = b"\xFF" * (total - len(data) - len(JFFS2_EOF_MARK))
    return ImagePartition(name=part_name, data=data + padding + JFFS2_EOF_MARK)


def build_partitions(
    profile: DeviceProfile, config: BuildConfig
) -> tuple[list[FlashPartition], list[ImagePartition]]:
    """Compute the flash layout and produce all image partitions."""
    names = profile.partition_names
    kernel_size = config.kernel.stat().st_size

    partitions = split_firmware(
        profile.partitions, names, kernel_size, sysupgrade=config.sysupgrade
    )
    file_system = None
    if any(p.name == FIRMWARE_PARTITION for p in profile.partitions):
        file_system = next(p for p in partitions if p.name == names.file_system)

    parts = [
        make_partition_table(profile, partitions),
        make_soft_version(profile, config.revision, config.timestamp),
        make_support_list(profile),
        read_file(names.os_image, config.kernel),
        read_file(names.file_system, config.rootfs, config.add_jffs2_eof, file_system),
    ]

    # Some devices need the extra-para partition to accept the firmware
    extra_para = make_extra_para(profile)
    if extra_para is not None:
        parts.append(extra_para)

    for part in parts:
        log.debug("Partition %-16s %8d bytes", part.name, part.size)
    return partitions, parts


def build_image(profile: DeviceProfile, config: BuildConfig) -> bytes:
    """Generate an image for a board according to the build configuration."""
    partitions, parts = build_partitions(profile, config)
    if config.sysupgrade:
        return generate_sysupgrade_image(profile, partitions, parts)
    return generate_factory_image(profile, partitions, parts)


def write_image(profile: DeviceProfile, config: BuildConfig) -> int:
    """Build an image and write it to ``config.output``. Returns its size."""
    image = build_image(profile, config)
    config.output.write_bytes(image)
    log.info(
        "Wrote %s image for %s: %s (%d bytes)",
        "sysupgrade" if config.sysupgrade else "factory",
        profile.id, config.output, len(image),
    )
    return len(image)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _revision(value: str) -> int:
    """Parse a revision given as ``r<N>`` or ``<N>``."""
    digits = value[1:] if value.startswith("r") else value
    if not (digits.isascii() and digits.isdigit()):
        raise argparse.ArgumentTypeError(f"invalid revision: {value!r}")
    return int(digits)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SafeLoader image tool: build, inspect, extract and convert images"
    )
    parser.add_argument(
        "--boards",
        type=Path,
        default=DEFAULT_BOARDS_FILE,
        help="Board database (default: bundled boards.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Create a new image")
    build.add_argument("-B", "--board", required=True, help="Board to build for")
    build.add_argument("-k", "--kernel", type=Path, required=True, help="Kernel image")
    build.add_argument("-r", "--rootfs", type=Path, required=True, help="Rootfs image")
    build.add_argument("-o", "--output", type=Path, required=True, help="Output file")
    build.add_argument(
        "-V", "--revision",
        type=_revision,
        default=0,
        help="Revision number, e.g. r12345",
    )
    build.add_argument(
        "-j", "--jffs2-eof",
        action="store_true",
        help="Add JFFS2 end-of-filesystem markers",
    )
    build.add_argument(
        "-S", "--sysupgrade",
        action="store_true",
        help="Create sysupgrade instead of factory image",
    )

    info = sub.add_parser("info", help="Show information about an image")
    info.add_argument("image", type=Path)
    info.add_argument("--json", action="store_true", help="Print the report as JSON")

    extract = sub.add_parser("extract", help="Extract all partitions of an image")
    extract.add_argument("image", type=Path)
    extract.add_argument(
        "-d", "--directory",
        type=Path,
        required=True,
        help="Existing directory to extract into",
    )

    convert = sub.add_parser("convert", help="Convert a factory image into a sysupgrade image")
    convert.add_argument("image", type=Path)
    convert.add_argument("-o", "--output", type=Path, required=True, help="Output file")

    sub.add_parser("boards", help="List supported boards")

    return parser


def _run(args: argparse.Namespace) -> None:
    if args.command == "build":
        profile = get_device_profile(args.board, args.boards)
        config = BuildConfig(
            kernel=args.kernel,
            rootfs=args.rootfs,
            output=args.output,
            revision=args.revision,
            add_jffs2_eof=args.jffs2_eof,
            sysupgrade=args.sysupgrade,
            timestamp=source_date_epoch(),
        )
        write_image(profile, config)

    elif args.command == "info":
        report = firmware_info(args.image)
        if args.json:
            print(json.dumps(report.to_dict(), indent=2))
        else:
            for line in report.format_lines():
                print(line)

    elif args.command == "extract":
        written = extract_firmware(args.image, args.directory)
        log.info("Extracted %d partitions to %s", len(written), args.directory)

    elif args.command == "convert":
        convert_firmware(args.image, args.output)
        log.info("Wrote sysupgrade image %s", args.output)

    elif args.command == "boards":
        for board_id in sorted(get_all_boards(args.boards)):
            print(board_id)


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-5s %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        _run(args)
    except (SafeloaderError, OSError) as e:
        log.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
