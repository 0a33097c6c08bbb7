import warnings

import pytest

from zfs_installer.config import BootMode, InstallConfig, Layout, RedundancyMode
from zfs_installer.errors import DegradedRedundancyWarning, PlanError, PoolError
from zfs_installer.zfs_manager import (
    ZFSManager,
    boot_pool_spec,
    build_device_plan,
    plan_devices,
    root_pool_spec,
    zpool_create_command,
)

A, B, C, D, E = "/dev/sda", "/dev/sdb", "/dev/sdc", "/dev/sdd", "/dev/sde"


@pytest.mark.parametrize("mode", list(RedundancyMode) + ["bogus"])
def test_single_disk_ignores_mode(mode):
    assert build_device_plan([A], mode, 4) == ["/dev/sda4"]


def test_striped_mirror_pairs_in_order():
    assert build_device_plan([A, B, C, D], "raid10", 3) == [
        "mirror", "/dev/sda3", "/dev/sdb3", "mirror", "/dev/sdc3", "/dev/sdd3",
    ]
    assert build_device_plan([A, B, C, D], RedundancyMode.RAID10, 4) == [
        "mirror", "/dev/sda4", "/dev/sdb4", "mirror", "/dev/sdc4", "/dev/sdd4",
    ]


@pytest.mark.parametrize("count", [2, 4, 6])
def test_striped_mirror_even_count(count):
    disks = [f"/dev/vd{chr(ord('a') + i)}" for i in range(count)]
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        plan = build_device_plan(disks, "raid10", 4)
    assert len(plan) == 3 * (count // 2)


def test_striped_mirror_odd_disk_is_flagged():
    with pytest.warns(DegradedRedundancyWarning, match="/dev/sde4 to the preceding mirror, making it three-way"):
        plan = build_device_plan([A, B, C, D, E], "raid10", 4)
    assert plan == [
        "mirror", "/dev/sda4", "/dev/sdb4", "mirror", "/dev/sdc4", "/dev/sdd4", "/dev/sde4",
    ]


@pytest.mark.parametrize("mode", ["mirror", "raidz1", "raidz2", "raidz3"])
def test_single_vdev_modes(mode):
    disks = [A, B, C, D, E]
    plan = build_device_plan(disks, mode, 4)
    assert len(plan) == len(disks) + 1
    assert plan[0] == mode
    assert plan[1:] == [f"{disk}4" for disk in disks]


def test_parity_scenario():
    assert build_device_plan([A, B, C], "raidz2", 4) == ["raidz2", "/dev/sda4", "/dev/sdb4", "/dev/sdc4"]


def test_plan_is_deterministic():
    assert build_device_plan([C, A, B], "raidz1", 3) == build_device_plan([C, A, B], "raidz1", 3)


def test_nvme_partition_names():
    assert build_device_plan(["/dev/nvme0n1", "/dev/nvme1n1"], "mirror", 3) == [
        "mirror", "/dev/nvme0n1p3", "/dev/nvme1n1p3",
    ]


@pytest.mark.parametrize("disks, mode", [
    ([A, B], "raid5"),
    ([A, B], RedundancyMode.NONE),
    ([A, B], "raidz2"),
    ([A, B, C], "raidz3"),
    ([], "mirror"),
])
def test_invalid_plans_fail_fast(disks, mode):
    with pytest.raises(PlanError):
        build_device_plan(disks, mode, 4)


def test_plan_devices_uses_both_slots():
    config = InstallConfig(
        hostname="node1", layout=Layout.STANDARD, boot_mode=BootMode.UEFI,
        disks=(A, B), redundancy=RedundancyMode.MIRROR,
    )
    plan = plan_devices(config)
    assert plan.bpool == ["mirror", "/dev/sda3", "/dev/sdb3"]
    assert plan.rpool == ["mirror", "/dev/sda4", "/dev/sdb4"]


def test_boot_pool_properties():
    spec = boot_pool_spec("/mnt")
    assert spec.name == "bpool"
    assert spec.pool_properties["compatibility"] == "grub2"
    assert spec.fs_properties["mountpoint"] == "/boot"
    assert spec.fs_properties["canmount"] == "off"
    assert "encryption" not in spec.fs_properties


def test_root_pool_encryption_is_optional():
    plain = root_pool_spec("/mnt", encrypt=False)
    assert not [key for key in plain.fs_properties if key.startswith(("encryption", "key"))]

    encrypted = root_pool_spec("/mnt", encrypt=True)
    assert encrypted.fs_properties["encryption"] == "on"
    assert encrypted.fs_properties["keylocation"] == "prompt"
    assert encrypted.fs_properties["keyformat"] == "passphrase"
    assert encrypted.fs_properties["dnodesize"] == "auto"


def test_zpool_create_command():
    cmd = zpool_create_command(root_pool_spec("/target"), ["mirror", "/dev/sda4", "/dev/sdb4"])
    assert cmd[:3] == ["zpool", "create", "-f"]
    assert cmd[-6:] == ["-R", "/target", "rpool", "mirror", "/dev/sda4", "/dev/sdb4"]
    assert ["-o", "ashift=12"] == cmd[3:5]
    assert "mountpoint=/" in cmd


def test_create_pool_runs_zpool(commands):
    manager = ZFSManager()
    manager.create_pool(boot_pool_spec("/mnt"), ["/dev/sda3"])
    assert commands.calls[0][:2] == ["zpool", "create"]
    assert commands.calls[0][-1] == "/dev/sda3"
    assert manager.pools == ["bpool"]


def test_create_pool_failure(commands):
    commands.fail("zpool", "create")
    with pytest.raises(PoolError):
        ZFSManager().create_pool(boot_pool_spec("/mnt"), ["/dev/sda3"])


def test_create_datasets_order(commands):
    config = InstallConfig(
        hostname="node1", layout=Layout.ALTERNATE, boot_mode=BootMode.LEGACY, disks=(A,),
    )
    created = ZFSManager().create_datasets(config)
    assert created == ["rpool/ROOT", "bpool/BOOT", "rpool/ROOT/pve-1", "bpool/BOOT/pve-1", "rpool/data"]

    calls = commands.calls
    assert calls[2] == ["zfs", "create", "-o", "canmount=noauto", "-o", "mountpoint=/", "rpool/ROOT/pve-1"]
    assert calls[3] == ["zfs", "mount", "rpool/ROOT/pve-1"]
    assert calls[-1] == ["zfs", "create", "-o", "mountpoint=/var/lib/vz", "rpool/data"]


def test_create_datasets_without_extra(commands):
    config = InstallConfig(
        hostname="node1", layout=Layout.STANDARD, boot_mode=BootMode.LEGACY, disks=(A,),
    )
    assert "rpool/data" not in ZFSManager().create_datasets(config)


def test_export_is_best_effort(commands):
    commands.fail("zpool", "export")
    assert ZFSManager().export_all() is False
