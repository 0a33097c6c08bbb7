#!/usr/bin/env python3
# Configuration Module
# Immutable installation record shared by every stage

import re
from dataclasses import dataclass
from enum import Enum

from .errors import ConfigError

HOSTNAME_RE = re.compile(r"[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?")

# Partition slots are the same on every selected disk
BIOS_BOOT_SLOT = 1
EFI_SLOT = 2
BPOOL_SLOT = 3
RPOOL_SLOT = 4


class _Choice(Enum):
    @classmethod
    def parse(cls, value):
        """Look up a member by value, rejecting anything unknown"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(member.value for member in cls)
            raise ConfigError(f"Invalid {cls.__name__} '{value}' (expected one of: {allowed})")


class Layout(_Choice):
    STANDARD = "standard"
    ALTERNATE = "alternate"


class BootMode(_Choice):
    LEGACY = "legacy"
    UEFI = "uefi"


class RedundancyMode(_Choice):
    NONE = "none"
    MIRROR = "mirror"
    RAID10 = "raid10"
    RAIDZ1 = "raidz1"
    RAIDZ2 = "raidz2"
    RAIDZ3 = "raidz3"

    @property
    def parity(self):
        """Parity width for the raidz levels, 0 otherwise"""
        if self.value.startswith("raidz"):
            return int(self.value[-1])
        return 0


@dataclass(frozen=True)
class DatasetLayout:
    root: str
    boot: str
    extra: str = ""
    extra_mountpoint: str = ""


LAYOUTS = {
    Layout.STANDARD: DatasetLayout(
        root="rpool/ROOT/debian",
        boot="bpool/BOOT/debian",
    ),
    Layout.ALTERNATE: DatasetLayout(
        root="rpool/ROOT/pve-1",
        boot="bpool/BOOT/pve-1",
        extra="rpool/data",
        extra_mountpoint="/var/lib/vz",
    ),
}


def fqdn_for(hostname, domain):
    """hostname.domain, or the bare hostname when there is no domain"""
    domain = (domain or "").strip().strip(".")
    if domain:
        return f"{hostname}.{domain}"
    return hostname


def boot_loader_slot(boot_mode):
    if boot_mode is BootMode.LEGACY:
        return BIOS_BOOT_SLOT
    if boot_mode is BootMode.UEFI:
        return EFI_SLOT
    raise ConfigError(f"Unsupported boot mode: {boot_mode}")


@dataclass(frozen=True)
class InstallConfig:
    """Everything the operator chose, fixed before any disk is touched"""

    hostname: str
    layout: Layout
    boot_mode: BootMode
    disks: tuple
    domain: str = ""
    encrypt: bool = False
    redundancy: RedundancyMode = RedundancyMode.NONE
    release: str = "trixie"
    mount_root: str = "/mnt"
    locale: str = "en_CA.UTF-8"
    timezone: str = "America/Toronto"
    keymap: str = "us"

    def __post_init__(self):
        if not HOSTNAME_RE.fullmatch(self.hostname or ""):
            raise ConfigError(f"Invalid hostname: '{self.hostname}'")
        if not self.disks:
            raise ConfigError("At least one disk must be selected.")
        if len(set(self.disks)) != len(self.disks):
            raise ConfigError(f"Disks selected more than once: {' '.join(self.disks)}")

        object.__setattr__(self, "disks", tuple(self.disks))
        object.__setattr__(self, "layout", Layout.parse(self.layout))
        object.__setattr__(self, "boot_mode", BootMode.parse(self.boot_mode))
        redundancy = RedundancyMode.parse(self.redundancy)
        # Redundancy only means something across several disks
        if len(self.disks) == 1:
            redundancy = RedundancyMode.NONE
        object.__setattr__(self, "redundancy", redundancy)

    @property
    def fqdn(self):
        return fqdn_for(self.hostname, self.domain)

    @property
    def datasets(self):
        return LAYOUTS[self.layout]

    @property
    def root_dataset(self):
        return self.datasets.root

    @property
    def boot_dataset(self):
        return self.datasets.boot

    @property
    def extra_dataset(self):
        return self.datasets.extra

    @property
    def extra_mountpoint(self):
        return self.datasets.extra_mountpoint

    @property
    def boot_loader_slot(self):
        return boot_loader_slot(self.boot_mode)

    def to_env(self):
        """Environment record handed to commands run inside the target"""
        return {
            "PATH": "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin",
            "HOME": "/root",
            "LANG": "C.UTF-8",
            "DEBIAN_FRONTEND": "noninteractive",
            "BOOT_MODE": self.boot_mode.value,
            "LAYOUT": self.layout.value,
            "ROOT_FS": self.root_dataset,
            "BOOT_FS": self.boot_dataset,
            "EXTRA_DATASET": self.extra_dataset,
            "SELECTED_DISKS": " ".join(self.disks),
            "BOOT_PARTITION_NUMBER": str(self.boot_loader_slot),
        }
