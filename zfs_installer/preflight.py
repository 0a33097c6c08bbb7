#!/usr/bin/env python3
# Preflight Module
# Checks the live environment before anything is prompted for or modified

import os
from InquirerPy import inquirer

from . import shell
from .errors import CommandError, PreflightError

REQUIRED_PACKAGES = [
    "zfsutils-linux",
    "debootstrap",
    "gdisk",
    "dosfstools",
    "parted",
]


def require_root():
    if os.geteuid() != 0:
        raise PreflightError(
            "This installer must be run with root privileges. "
            "Please run this script with sudo or as the root user."
        )


def missing_packages(packages=REQUIRED_PACKAGES):
    """Packages dpkg does not report as installed"""
    return [
        pkg for pkg in packages
        if shell.run(["dpkg", "-s", pkg], fatal=False, capture=True, quiet=True).returncode != 0
    ]


def ensure_packages(install=None, packages=REQUIRED_PACKAGES):
    """Install missing live-environment tools, asking first unless ``install`` is set"""
    print("--- Checking for required live-environment packages ---")
    missing = missing_packages(packages)
    if not missing:
        print("All required packages are present.")
        return []

    print("The following required packages are missing in the live environment:")
    for pkg in missing:
        print(f" - {pkg}")

    if install is None:
        install = inquirer.confirm(
            message="Install them automatically?",
            default=False
        ).execute()
    if not install:
        raise PreflightError("Cannot proceed without required packages.")

    print("--- Installing missing required packages ---")
    try:
        shell.run(["apt", "update"])
        shell.run(["apt", "install", "-y"] + missing)
    except CommandError as e:
        raise PreflightError(f"Error installing required packages: {e}")
    return missing


def ensure_zfs_module():
    """Load the zfs kernel module unless it is already present"""
    if os.path.isdir("/sys/module/zfs"):
        return False
    print("Loading the zfs kernel module...")
    try:
        shell.run(["modprobe", "zfs"])
    except CommandError as e:
        raise PreflightError(f"ZFS kernel module is not available: {e}")
    return True
