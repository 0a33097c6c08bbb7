#!/usr/bin/env python3
# Debian ZFS Installer
# Package initialization file

from .config import InstallConfig, Layout, BootMode, RedundancyMode
from .disk_manager import DiskManager
from .zfs_manager import ZFSManager, build_device_plan
from .boot_manager import BootManager
from .system_config import SystemConfig
from .installer import Installer
