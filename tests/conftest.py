from pathlib import Path

import pytest

from safeloader.config import (
    BuildConfig,
    DeviceProfile,
    FlashPartition,
    SoftVersionSpec,
    TrailerPolicy,
)

# 2019-05-17 12:00:00 UTC
FIXED_TIMESTAMP = 1558094400

KERNEL_SIZE = 0x150000
ROOTFS_SIZE = 0x2345


def _pattern(size: int, seed: int) -> bytes:
    return bytes((i * 7 + seed) & 0xFF for i in range(size))


@pytest.fixture
def cpe_profile() -> DeviceProfile:
    """Small CPE-like board with a vendor block and 0xff trailers."""
    return DeviceProfile(
        id="TEST-CPE",
        vendor="CPE510(TP-LINK|UN|N300-5):1.0\r\n",
        support_list="SupportList:\r\nFOO:1.0\r\n",
        trailer=TrailerPolicy.PAD_FF,
        soft_version=SoftVersionSpec(major=1, minor=2, patch=3),
        partitions=[
            FlashPartition("fs-uboot", 0x00000, 0x20000),
            FlashPartition("partition-table", 0x20000, 0x02000),
            FlashPartition("firmware", 0x40000, 0x770000),
            FlashPartition("soft-version", 0x7b0000, 0x00100),
            FlashPartition("support-list", 0x7b1000, 0x00400),
            FlashPartition("radio", 0x7f0000, 0x10000),
        ],
        first_sysupgrade_partition="os-image",
        last_sysupgrade_partition="support-list",
    )


@pytest.fixture
def archer_profile() -> DeviceProfile:
    """Archer-like board: text soft-version, extra-para, sysupgrade ends at file-system."""
    return DeviceProfile(
        id="TEST-ARCHER",
        support_list="SupportList:\n{product_name:Test,product_ver:1.0.0,special_id:00000000}\n",
        trailer=TrailerPolicy.PAD_00,
        soft_version=SoftVersionSpec(text="soft_ver:7.0.0\n"),
        partitions=[
            FlashPartition("fs-uboot", 0x00000, 0x20000),
            FlashPartition("partition-table", 0x20000, 0x10000),
            FlashPartition("soft-version", 0x30000, 0x01000),
            FlashPartition("extra-para", 0x31000, 0x01000),
            FlashPartition("support-list", 0x32000, 0x0a000),
            FlashPartition("firmware", 0x40000, 0xf00000),
            FlashPartition("radio", 0xff0000, 0x10000),
        ],
        first_sysupgrade_partition="os-image",
        last_sysupgrade_partition="file-system",
        extra_para=b"\x01\x00",
    )


@pytest.fixture
def kernel(tmp_path: Path) -> Path:
    path = tmp_path / "kernel.bin"
    path.write_bytes(_pattern(KERNEL_SIZE, 1))
    return path


@pytest.fixture
def rootfs(tmp_path: Path) -> Path:
    path = tmp_path / "rootfs.bin"
    path.write_bytes(_pattern(ROOTFS_SIZE, 2))
    return path


@pytest.fixture
def build_config(tmp_path: Path, kernel: Path, rootfs: Path) -> BuildConfig:
    return BuildConfig(
        kernel=kernel,
        rootfs=rootfs,
        output=tmp_path / "out.bin",
        revision=42,
        timestamp=FIXED_TIMESTAMP,
    )
