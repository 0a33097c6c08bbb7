#!/usr/bin/env python3
# Disk Manager Module
# Handles disk discovery and destructive partitioning of the selected disks

import os
import json
from dataclasses import dataclass

from . import shell
from .config import BootMode, BIOS_BOOT_SLOT, EFI_SLOT, BPOOL_SLOT, RPOOL_SLOT
from .errors import CommandError, PartitionError


@dataclass(frozen=True)
class Disk:
    path: str
    size: str = ""
    model: str = ""

    @property
    def label(self):
        return f"{self.path} ({self.size}) - {self.model}".rstrip(" -")


@dataclass(frozen=True)
class PartitionSet:
    disk: str
    boot_loader: str
    bpool: str
    rpool: str


def partition_path(disk, slot):
    """Device node of partition ``slot`` on ``disk``"""
    # nvme0n1 -> nvme0n1p3, mmcblk0 -> mmcblk0p3
    if disk[-1:].isdigit():
        return f"{disk}p{slot}"
    return f"{disk}{slot}"


class DiskManager:
    def __init__(self):
        self.partitions = {}

    def get_available_disks(self):
        """Get the physical disks using lsblk, skipping loop and optical devices"""
        cmd = ["lsblk", "-dnJ", "-o", "NAME,SIZE,TYPE,MODEL", "-e", "7,11"]
        result = shell.run(cmd, capture=True)
        try:
            devices = json.loads(result.stdout).get("blockdevices", [])
        except json.JSONDecodeError as e:
            raise CommandError(cmd, result.returncode, f"unreadable lsblk output: {e}")

        disks = []
        for device in devices:
            if device.get("type") != "disk":
                continue
            name = device["name"]
            path = name if name.startswith("/dev/") else f"/dev/{name}"
            disks.append(Disk(
                path=path,
                size=device.get("size") or "",
                model=(device.get("model") or "").strip(),
            ))
        return disks

    def parse_disk_selection(self, text, disks):
        """Map 1-based numbers to disk paths.

        Returns ``(selected, ignored)``; unknown or repeated numbers end up in
        ``ignored`` and the rest keep the order the operator typed them in.
        """
        selected = []
        ignored = []
        for token in (text or "").replace(",", " ").split():
            if not token.isdigit() or not 1 <= int(token) <= len(disks):
                ignored.append(token)
                continue
            path = disks[int(token) - 1].path
            if path in selected:
                ignored.append(token)
                continue
            selected.append(path)
        return selected, ignored

    def resolve_disks(self, paths, disks=None):
        """Resolve device paths (by-id links included) to whole disks from the inventory.

        Returns ``(resolved, unknown)``; anything that is not a whole disk
        lsblk reports, such as a partition or a missing node, ends up in
        ``unknown``.
        """
        if disks is None:
            disks = self.get_available_disks()
        available = {disk.path for disk in disks}

        resolved = []
        unknown = []
        for path in paths:
            real = os.path.realpath(path)
            if real not in available:
                unknown.append(path)
            elif real not in resolved:
                resolved.append(real)
        return resolved, unknown

    def partition_disk(self, disk, boot_mode):
        """Wipe ``disk`` and lay out the boot-loader, bpool and rpool partitions"""
        if not os.path.exists(disk):
            raise PartitionError(f"Disk {disk} not found.")

        print(f"\nProcessing disk: {disk}")

        # Old signatures may legitimately be absent on a blank disk
        shell.run(["wipefs", "-a", disk], fatal=False)
        shell.run(["blkdiscard", "-f", disk], fatal=False)
        shell.run(["sgdisk", "--zap-all", disk], fatal=False)
        shell.run(["dd", "if=/dev/zero", f"of={disk}", "bs=512", "count=100"], fatal=False)

        try:
            shell.run(["sgdisk", "-Z", disk])

            if boot_mode is BootMode.LEGACY:
                print(f"Configuring for BIOS (Legacy) booting on {disk}...")
                shell.run(["sgdisk", "-a1", f"-n{BIOS_BOOT_SLOT}:24K:+1000K", f"-t{BIOS_BOOT_SLOT}:EF02", disk])
                boot_loader = partition_path(disk, BIOS_BOOT_SLOT)
            elif boot_mode is BootMode.UEFI:
                print(f"Configuring for UEFI booting on {disk}...")
                shell.run(["sgdisk", f"-n{EFI_SLOT}:1M:+512M", f"-t{EFI_SLOT}:EF00", disk])
                boot_loader = partition_path(disk, EFI_SLOT)
            else:
                raise PartitionError(f"Unsupported boot mode for {disk}: {boot_mode}")

            print(f"Creating bpool partition on {disk}...")
            shell.run(["sgdisk", f"-n{BPOOL_SLOT}:0:+1G", f"-t{BPOOL_SLOT}:BF01", disk])

            print(f"Creating rpool partition on {disk}...")
            shell.run(["sgdisk", f"-n{RPOOL_SLOT}:0:0", f"-t{RPOOL_SLOT}:BF00", disk])
        except CommandError as e:
            raise PartitionError(f"Error partitioning {disk}: {e}")

        # Let the kernel and udev catch up before zpool looks for the nodes
        shell.run(["partprobe", disk], fatal=False)
        shell.run(["udevadm", "settle"], fatal=False)

        partitions = PartitionSet(
            disk=disk,
            boot_loader=boot_loader,
            bpool=partition_path(disk, BPOOL_SLOT),
            rpool=partition_path(disk, RPOOL_SLOT),
        )
        self.partitions[disk] = partitions
        print(f"Partitioning on {disk} completed.")
        return partitions

    def partition_disks(self, config):
        """Partition every selected disk; the first failure aborts the run"""
        return [self.partition_disk(disk, config.boot_mode) for disk in config.disks]
