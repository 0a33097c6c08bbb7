#!/usr/bin/env python3
# ZFS Manager Module
# Handles pool device plans, pool creation and the dataset hierarchy

import warnings
from dataclasses import dataclass, field

from . import shell
from .config import RedundancyMode, BPOOL_SLOT, RPOOL_SLOT
from .disk_manager import partition_path
from .errors import CommandError, ConfigError, DegradedRedundancyWarning, PlanError, PoolError

BOOT_POOL = "bpool"
ROOT_POOL = "rpool"
CACHE_FILE = "/etc/zfs/zpool.cache"


def build_device_plan(disks, mode, slot):
    """Build the vdev arguments for ``zpool create`` from one partition slot.

    The result is a pure function of its inputs: keywords such as ``mirror``
    or ``raidz2`` interleaved with partition paths, each disk contributing
    exactly one path, in selection order.
    """
    disks = list(disks)
    if not disks:
        raise PlanError("No disks to build a pool from.")

    paths = [partition_path(disk, slot) for disk in disks]
    if len(paths) == 1:
        return paths

    try:
        mode = RedundancyMode.parse(mode)
    except ConfigError as e:
        raise PlanError(str(e))

    if mode is RedundancyMode.MIRROR:
        return ["mirror"] + paths

    if mode is RedundancyMode.RAID10:
        plan = []
        for i in range(0, len(paths), 2):
            pair = paths[i:i + 2]
            if len(pair) == 2:
                plan.extend(["mirror"] + pair)
            else:
                warnings.warn(
                    f"Disk {disks[i]} has no mirror partner in the RAID10 layout; "
                    f"zpool will add {pair[0]} to the preceding mirror, making it three-way "
                    f"without adding capacity.",
                    DegradedRedundancyWarning,
                    stacklevel=2,
                )
                plan.extend(pair)
        return plan

    if mode.parity:
        if len(paths) <= mode.parity:
            raise PlanError(
                f"{mode.value} needs at least {mode.parity + 1} disks, {len(paths)} selected."
            )
        return [mode.value] + paths

    raise PlanError(f"A redundancy mode is required for {len(paths)} disks.")


@dataclass(frozen=True)
class DevicePlan:
    bpool: list
    rpool: list


def plan_devices(config):
    """Device lists for both pools, computed before any disk is modified"""
    return DevicePlan(
        bpool=build_device_plan(config.disks, config.redundancy, BPOOL_SLOT),
        rpool=build_device_plan(config.disks, config.redundancy, RPOOL_SLOT),
    )


@dataclass
class PoolSpec:
    name: str
    pool_properties: dict = field(default_factory=dict)
    fs_properties: dict = field(default_factory=dict)
    altroot: str = "/mnt"


def boot_pool_spec(mount_root="/mnt"):
    """bpool: unencrypted and restricted to features GRUB can read"""
    return PoolSpec(
        name=BOOT_POOL,
        pool_properties={
            "ashift": "12",
            "autotrim": "on",
            "compatibility": "grub2",
            "cachefile": CACHE_FILE,
        },
        fs_properties={
            "devices": "off",
            "acltype": "posixacl",
            "xattr": "sa",
            "compression": "lz4",
            "normalization": "formD",
            "relatime": "on",
            "canmount": "off",
            "mountpoint": "/boot",
        },
        altroot=mount_root,
    )


def root_pool_spec(mount_root="/mnt", encrypt=False):
    fs_properties = {}
    if encrypt:
        fs_properties.update({
            "encryption": "on",
            "keylocation": "prompt",
            "keyformat": "passphrase",
        })
    fs_properties.update({
        "acltype": "posixacl",
        "xattr": "sa",
        "dnodesize": "auto",
        "compression": "lz4",
        "normalization": "formD",
        "relatime": "on",
        "canmount": "off",
        "mountpoint": "/",
    })
    return PoolSpec(
        name=ROOT_POOL,
        pool_properties={"ashift": "12", "autotrim": "on"},
        fs_properties=fs_properties,
        altroot=mount_root,
    )


def zpool_create_command(spec, devices):
    cmd = ["zpool", "create", "-f"]
    for key, value in spec.pool_properties.items():
        cmd.extend(["-o", f"{key}={value}"])
    for key, value in spec.fs_properties.items():
        cmd.extend(["-O", f"{key}={value}"])
    cmd.extend(["-R", spec.altroot, spec.name])
    cmd.extend(devices)
    return cmd


class ZFSManager:
    def __init__(self):
        self.pools = []
        self.datasets = []

    def create_pool(self, spec, devices):
        """Create the pool with the specified configuration"""
        if not devices:
            raise PoolError(f"No devices for pool '{spec.name}'.")

        encrypted = "encryption" in spec.fs_properties
        print(f"\nCreating {spec.name}{' (encrypted, native ZFS)' if encrypted else ''}...")

        cmd = zpool_create_command(spec, devices)
        print(f"{spec.name} command in execution: {' '.join(cmd)}")
        try:
            # The terminal is shared so zpool can ask for the passphrase
            shell.run(cmd)
        except CommandError as e:
            raise PoolError(f"Error creating ZFS pool '{spec.name}': {e}")

        self.pools.append(spec.name)
        print(f"ZFS pool '{spec.name}' created successfully.")
        return spec.name

    def create_pools(self, config, plan):
        self.create_pool(boot_pool_spec(config.mount_root), plan.bpool)
        self.create_pool(root_pool_spec(config.mount_root, config.encrypt), plan.rpool)

    def create_datasets(self, config):
        """Create the root and boot hierarchies, containers first"""
        print("\nCreating ZFS datasets...")

        self._create_dataset(f"{ROOT_POOL}/ROOT", canmount="off", mountpoint="none")
        self._create_dataset(f"{BOOT_POOL}/BOOT", canmount="off", mountpoint="none")

        # noauto, then an explicit mount, so nothing else lands on / first
        print(f"Creating and mounting root filesystem ({config.root_dataset})...")
        self._create_dataset(config.root_dataset, canmount="noauto", mountpoint="/")
        try:
            shell.run(["zfs", "mount", config.root_dataset])
        except CommandError as e:
            raise PoolError(f"Error mounting {config.root_dataset}: {e}")

        print(f"Creating boot filesystem ({config.boot_dataset})...")
        self._create_dataset(config.boot_dataset, mountpoint="/boot")

        if config.extra_dataset:
            print(f"Creating extra dataset {config.extra_dataset} mounted at {config.extra_mountpoint}...")
            self._create_dataset(config.extra_dataset, mountpoint=config.extra_mountpoint)

        print("ZFS datasets created successfully.")
        return list(self.datasets)

    def _create_dataset(self, name, **properties):
        """Create a ZFS dataset with the given properties"""
        cmd = ["zfs", "create"]
        for key, value in properties.items():
            cmd.extend(["-o", f"{key}={value}"])
        cmd.append(name)

        try:
            shell.run(cmd)
        except CommandError as e:
            raise PoolError(f"Error creating dataset {name}: {e}")
        self.datasets.append(name)

    def unmount_all(self):
        shell.run(["zfs", "umount", "-a"], fatal=False)

    def export_all(self):
        """Export every pool, required before rebooting"""
        result = shell.run(["zpool", "export", "-a"], fatal=False)
        if result.returncode == 0:
            print("ZFS pools exported successfully.")
        return result.returncode == 0
