#!/usr/bin/env python3
# Debian ZFS Installer
# Main entry point for the installer

import sys
import argparse
import traceback

from zfs_installer import shell
from zfs_installer.config import BootMode, Layout, RedundancyMode
from zfs_installer.errors import InstallerError, OperatorCancelled
from zfs_installer.installer import Installer
from zfs_installer.preflight import ensure_packages, ensure_zfs_module, require_root
from zfs_installer.system_config import SystemConfig


def _choices(enum, skip=()):
    return [member.value for member in enum if member not in skip]


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Debian root-on-ZFS installer (bpool + rpool, optional native encryption)"
    )
    parser.add_argument("--debug", action="store_true", help="Echo commands and show tracebacks")
    parser.add_argument("--hostname", help="Short hostname of the new system")
    parser.add_argument("--domain", help="Domain name; empty for none")
    parser.add_argument("--layout", choices=_choices(Layout), help="Dataset layout")
    parser.add_argument("--disk", dest="disks", action="append", metavar="PATH",
                        help="Disk to install to (repeat for several disks)")
    parser.add_argument("--boot-mode", choices=_choices(BootMode), help="Firmware boot mode")
    parser.add_argument("--encrypt", dest="encrypt", action="store_true", default=None,
                        help="Use native ZFS encryption on rpool")
    parser.add_argument("--no-encrypt", dest="encrypt", action="store_false",
                        help="Leave rpool unencrypted")
    parser.add_argument("--redundancy", choices=_choices(RedundancyMode, skip=(RedundancyMode.NONE,)),
                        help="Pool layout for multi-disk selections")
    parser.add_argument("--yes", action="store_true", help="Do not ask before erasing the disks")
    parser.add_argument("--install-missing", action="store_true", default=None,
                        help="Install missing live-environment packages without asking")
    parser.add_argument("--release", default="trixie", help="Debian release for debootstrap")
    parser.add_argument("--mount-root", default="/mnt", help="Where the new system is assembled")
    parser.add_argument("--locale", default="en_CA.UTF-8")
    parser.add_argument("--timezone", default="America/Toronto")
    parser.add_argument("--keymap", default="us")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    shell.set_debug(args.debug)

    print("=" * 80)
    print("Debian ZFS Installer")
    print("=" * 80)
    print("\nWARNING: This installer is DESTRUCTIVE on the selected disks. Make sure you have")
    print("a backup of all important data before proceeding.\n")

    try:
        require_root()
        ensure_packages(install=args.install_missing)
        ensure_zfs_module()

        config = SystemConfig(args).collect()
        Installer(config).run()

    except OperatorCancelled as e:
        print(f"\n{e}")
        return 0
    except KeyboardInterrupt:
        print("\nInstallation cancelled by user.")
        return 130
    except InstallerError as e:
        print(f"\nError: {e}")
        if args.debug:
            traceback.print_exc()
        return 1
    except Exception as e:
        print(f"\nError during installation: {e}")
        if args.debug:
            traceback.print_exc()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
