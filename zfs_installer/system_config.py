#!/usr/bin/env python3
# System Configuration Module
# Collects the operator's choices into one immutable InstallConfig

from argparse import Namespace
from InquirerPy import inquirer
from InquirerPy.base.control import Choice

from .config import (
    HOSTNAME_RE,
    LAYOUTS,
    BootMode,
    InstallConfig,
    Layout,
    RedundancyMode,
    fqdn_for,
)
from .disk_manager import DiskManager
from .errors import OperatorCancelled, PreflightError


class SystemConfig:
    """Interactive collector; values given on the command line skip their prompt"""

    def __init__(self, args=None, disk_manager=None):
        self.args = args or Namespace()
        self.disk_manager = disk_manager or DiskManager()

    def _arg(self, name, default=None):
        value = getattr(self.args, name, None)
        return default if value is None else value

    def collect(self):
        hostname, domain = self._configure_network()
        layout = self._configure_layout()
        disks = self._select_disks()
        self._confirm_destruction(disks)
        boot_mode = self._configure_boot_mode()
        encrypt = self._configure_encryption()
        redundancy = self._configure_redundancy(disks)

        return InstallConfig(
            hostname=hostname,
            domain=domain,
            layout=layout,
            boot_mode=boot_mode,
            encrypt=encrypt,
            redundancy=redundancy,
            disks=tuple(disks),
            release=self._arg("release", "trixie"),
            mount_root=self._arg("mount_root", "/mnt"),
            locale=self._arg("locale", "en_CA.UTF-8"),
            timezone=self._arg("timezone", "America/Toronto"),
            keymap=self._arg("keymap", "us"),
        )

    def _configure_network(self):
        """Hostname and optional domain"""
        print("\n--- Hostname / Domain configuration ---")

        hostname = self._arg("hostname")
        if hostname is None:
            hostname = inquirer.text(
                message="Enter hostname (short, e.g. 'debian-zfs'):",
                validate=lambda text: HOSTNAME_RE.fullmatch(text) is not None,
                invalid_message="Use letters, digits and '-' only",
            ).execute()

        domain = self._arg("domain")
        if domain is None:
            domain = inquirer.text(
                message="Enter domain name (e.g. 'example.com'; leave blank for none):",
                default="",
            ).execute()

        print(f"Fully qualified name: {fqdn_for(hostname, domain)}")
        return hostname, domain.strip()

    def _configure_layout(self):
        print("\n--- Dataset Layout ---")
        layout = self._arg("layout")
        if layout is None:
            layout = inquirer.select(
                message="Choose dataset layout:",
                choices=[
                    Choice(Layout.STANDARD, "Debian-style: rpool/ROOT/debian -> /, bpool/BOOT/debian -> /boot"),
                    Choice(Layout.ALTERNATE, "Proxmox-style: rpool/ROOT/pve-1 -> /, bpool/BOOT/pve-1 -> /boot, rpool/data -> /var/lib/vz"),
                ],
                default=Layout.STANDARD,
            ).execute()
        layout = Layout.parse(layout)

        datasets = LAYOUTS[layout]
        print(f"Using layout: {layout.value}")
        print(f"Root dataset: {datasets.root}")
        print(f"Boot dataset: {datasets.boot}")
        if datasets.extra:
            print(f"Extra dataset: {datasets.extra} (will be mounted at {datasets.extra_mountpoint})")
        return layout

    def _select_disks(self):
        disks = self.disk_manager.get_available_disks()
        if not disks:
            raise PreflightError("No physical hard drives found on the system.")

        preset = self._arg("disks")
        if preset:
            selected, unknown = self.disk_manager.resolve_disks(preset, disks)
            if unknown:
                raise PreflightError(f"Not a whole disk on this system: {', '.join(unknown)}")
            return selected

        print("---")
        print("Available disks:")
        for number, disk in enumerate(disks, start=1):
            print(f"{number}) {disk.label}")

        print("---")
        text = inquirer.text(
            message="Enter the numbers of the disks you want to select, separated by spaces (e.g., 1 3):",
        ).execute()
        selected, ignored = self.disk_manager.parse_disk_selection(text, disks)
        for token in ignored:
            print(f"Warning: Number '{token}' is not valid and will be ignored.")

        if not selected:
            raise PreflightError("No disks selected.")
        return selected

    def _confirm_destruction(self, disks):
        print("---")
        print("You have selected the following disks:")
        for disk in disks:
            print(f"- {disk}")

        if self._arg("yes", False):
            return
        print("---")
        confirm = inquirer.confirm(
            message="WARNING: Subsequent operations on the selected disks are DESTRUCTIVE "
                    "and will erase all data. Are you sure you want to proceed?",
            default=False
        ).execute()
        if not confirm:
            raise OperatorCancelled("Operation canceled by the user. No disks have been modified.")

    def _configure_boot_mode(self):
        boot_mode = self._arg("boot_mode")
        if boot_mode is None:
            boot_mode = inquirer.select(
                message="Choose booting type:",
                choices=[
                    Choice(BootMode.LEGACY, "BIOS (Legacy)"),
                    Choice(BootMode.UEFI, "UEFI"),
                ],
            ).execute()
        return BootMode.parse(boot_mode)

    def _configure_encryption(self):
        encrypt = self._arg("encrypt")
        if encrypt is None:
            encrypt = inquirer.confirm(
                message="Do you want to use ZFS native encryption for the main pool (rpool)?",
                default=False
            ).execute()
        return bool(encrypt)

    def _configure_redundancy(self, disks):
        """Only asked for multi-disk selections"""
        if len(disks) < 2:
            return RedundancyMode.NONE

        redundancy = self._arg("redundancy")
        if redundancy is None:
            redundancy = inquirer.select(
                message="You have selected multiple disks. How do you want to configure the ZFS pool?",
                choices=[
                    Choice(RedundancyMode.MIRROR, "Simple Mirror (raid1)"),
                    Choice(RedundancyMode.RAID10, "RAID10 (striped mirrors)"),
                    Choice(RedundancyMode.RAIDZ1, "RAIDZ1"),
                    Choice(RedundancyMode.RAIDZ2, "RAIDZ2"),
                    Choice(RedundancyMode.RAIDZ3, "RAIDZ3"),
                ],
            ).execute()
        redundancy = RedundancyMode.parse(redundancy)

        if redundancy is RedundancyMode.RAID10 and len(disks) % 2:
            print(f"Warning: For RAID10, an even number of disks is highly recommended. "
                  f"{disks[-1]} has no mirror partner and will join the last mirror "
                  f"as a third copy, adding no capacity.")
            if not self._arg("yes", False):
                proceed = inquirer.confirm(
                    message=f"Proceed with {disks[-3]}, {disks[-2]} and {disks[-1]} as one three-way mirror?",
                    default=False
                ).execute()
                if not proceed:
                    raise OperatorCancelled("Operation canceled by the user. No disks have been modified.")
        return redundancy
