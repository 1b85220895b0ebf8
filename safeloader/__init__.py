"""Build and inspect TP-Link SafeLoader firmware images."""

from .build_firmware import build_image, read_file, write_image
from .config import (
    BuildConfig,
    DeviceProfile,
    FlashPartition,
    ImagePartition,
    PartitionNames,
    SoftVersionSpec,
    TrailerPolicy,
    get_all_boards,
    get_device_profile,
    load_boards,
)
from .errors import (
    CapacityError,
    ConfigError,
    FormatError,
    PartitionTableNotFound,
    SafeloaderError,
    TruncatedImageError,
)
from .extractor import ImageReport, convert_firmware, extract_firmware, firmware_info
from .headers import ImageVariant, SafeloaderImageInfo, parse_image
from .layout import generate_factory_image, generate_sysupgrade_image, split_firmware
from .ptable import decode_partition_table

__all__ = [
    # Build
    "build_image",
    "read_file",
    "write_image",
    # Config
    "BuildConfig",
    "DeviceProfile",
    "FlashPartition",
    "ImagePartition",
    "PartitionNames",
    "SoftVersionSpec",
    "TrailerPolicy",
    "get_all_boards",
    "get_device_profile",
    "load_boards",
    # Errors
    "CapacityError",
    "ConfigError",
    "FormatError",
    "PartitionTableNotFound",
    "SafeloaderError",
    "TruncatedImageError",
    # Extractor
    "ImageReport",
    "convert_firmware",
    "extract_firmware",
    "firmware_info",
    # Headers
    "ImageVariant",
    "SafeloaderImageInfo",
    "parse_image",
    # Layout
    "generate_factory_image",
    "generate_sysupgrade_image",
    "split_firmware",
    # Partition tables
    "decode_partition_table",
]
