#!/usr/bin/env python3
# Installer Module
# Main installation pipeline for Debian with root on ZFS

import os
import shutil
from pathlib import Path

from . import shell
from .boot_manager import BootManager
from .disk_manager import DiskManager
from .errors import BootstrapError, CommandError
from .zfs_manager import CACHE_FILE, ZFSManager, plan_devices

LIVE_INTERFACES = "/etc/network/interfaces"

APT_SOURCES_TEMPLATE = """\
deb http://deb.debian.org/debian {release} main contrib non-free-firmware
deb-src http://deb.debian.org/debian {release} main contrib non-free-firmware

deb http://security.debian.org/debian-security {release}-security main contrib non-free-firmware
deb-src http://security.debian.org/debian-security {release}-security main contrib non-free-firmware

deb http://deb.debian.org/debian {release}-updates main contrib non-free-firmware
deb-src http://deb.debian.org/debian {release}-updates main contrib non-free-firmware
"""


def hosts_file(config):
    return (
        "127.0.0.1   localhost\n"
        f"127.0.1.1   {config.fqdn} {config.hostname}\n"
        "::1         localhost ip6-localhost ip6-loopback\n"
        "ff02::1     ip6-allnodes\n"
        "ff02::2     ip6-allrouters\n"
    )


def apt_sources(release):
    return APT_SOURCES_TEMPLATE.format(release=release)


def mounts_below(root, mounts_file="/proc/self/mounts"):
    """Mountpoints at or below ``root``, deepest first"""
    root = str(root).rstrip("/")
    mountpoints = []
    with open(mounts_file, "r") as f:
        for line in f:
            fields = line.split()
            if len(fields) < 2:
                continue
            # Spaces in mountpoints are escaped as \040
            mountpoint = fields[1].replace("\\040", " ")
            if mountpoint == root or mountpoint.startswith(root + "/"):
                mountpoints.append(mountpoint)
    return sorted(set(mountpoints), reverse=True)


class Installer:
    def __init__(self, config, disk_manager=None, zfs_manager=None, boot_manager=None):
        self.config = config
        self.root = Path(config.mount_root)
        self.disk_manager = disk_manager or DiskManager()
        self.zfs_manager = zfs_manager or ZFSManager()
        self.boot_manager = boot_manager or BootManager(config)
        self.disks_touched = False
        self.installation_complete = False

    def run(self):
        """Run every stage in order; a failure after the disks are touched still cleans up"""
        # Built first so a bad selection fails before anything is wiped
        plan = plan_devices(self.config)

        try:
            self.disks_touched = True
            self.disk_manager.partition_disks(self.config)
            self.zfs_manager.create_pools(self.config, plan)
            print("---")
            print("ZFS operations completed.")

            self.zfs_manager.create_datasets(self.config)
            self.bootstrap()
            self.prepare_target()
            self.boot_manager.configure()
            self.installation_complete = True
        finally:
            self.cleanup()

        print("\n" + "=" * 80)
        print("Installation and configuration complete.")
        print("=" * 80)
        print("\nYou can now reboot the system.")
        print("Remove the live installation medium before rebooting.")

    def bootstrap(self):
        """Install the base system with debootstrap and give it an identity"""
        print(f"\nStarting Debian ({self.config.release}) operating system installation phase...")

        run_dir = self.root / "run"
        run_dir.mkdir(parents=True, exist_ok=True)
        try:
            shell.run(["mount", "-t", "tmpfs", "tmpfs", str(run_dir)])
            (run_dir / "lock").mkdir(parents=True, exist_ok=True)

            print(f"Starting debootstrap to install Debian {self.config.release}...")
            shell.run(["debootstrap", self.config.release, str(self.root)])
        except CommandError as e:
            raise BootstrapError(f"Error installing base system: {e}")

        print("Copying zpool.cache file to the target...")
        zfs_dir = self.root / "etc/zfs"
        zfs_dir.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy(CACHE_FILE, zfs_dir / "zpool.cache")
        except OSError as e:
            raise BootstrapError(f"Error copying {CACHE_FILE}: {e}")

        print("Configuring hostname and /etc/hosts inside target...")
        (self.root / "etc/hostname").write_text(f"{self.config.hostname}\n")
        (self.root / "etc/hosts").write_text(hosts_file(self.config))

        print("Base operating system installation phase completed.")

    def prepare_target(self):
        """Network, APT sources and the virtual filesystems the chroot needs"""
        print("\nStarting system configuration phase...")

        interfaces = LIVE_INTERFACES
        if os.path.exists(interfaces):
            target = self.root / "etc/network"
            target.mkdir(parents=True, exist_ok=True)
            shutil.copy(interfaces, target / "interfaces")
        else:
            print(f"Warning: {interfaces} not found on the live system. "
                  "It may need to be configured manually later.")

        apt_dir = self.root / "etc/apt"
        apt_dir.mkdir(parents=True, exist_ok=True)
        (apt_dir / "sources.list").write_text(apt_sources(self.config.release))

        print("Mounting virtual directories for chroot environment...")
        try:
            for fs in ("dev", "proc", "sys"):
                target = self.root / fs
                target.mkdir(parents=True, exist_ok=True)
                shell.run(["mount", "--make-private", "--rbind", f"/{fs}", str(target)])
        except CommandError as e:
            raise BootstrapError(f"Error preparing chroot environment: {e}")

    def cleanup(self):
        """Unmount the target and export the pools; never raises"""
        if not self.disks_touched:
            return

        print("\nStarting cleanup and finalization phase...")
        try:
            mountpoints = mounts_below(self.root)
        except OSError as e:
            print(f"Warning: Could not read mount table: {e}")
            mountpoints = []

        for mountpoint in mountpoints:
            shell.run(["umount", mountpoint], fatal=False)

        print("Unmounting all ZFS filesystems...")
        self.zfs_manager.unmount_all()
        print("Exporting ZFS pools...")
        if not self.zfs_manager.export_all():
            print("You may need to export the pools manually before rebooting:")
            print("  # zpool export -a")

        if not self.installation_complete:
            print("Installation did not complete. The selected disks hold a partial system "
                  "and the installer must be run again.")
