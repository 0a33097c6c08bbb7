#!/usr/bin/env python3
# Boot Manager Module
# Configures the bootstrapped system from inside its own root and installs GRUB

import os
import re
from pathlib import Path

from . import shell
from .config import BootMode
from .disk_manager import partition_path
from .errors import BootloaderError, CommandError
from .zfs_manager import BOOT_POOL, ROOT_POOL, CACHE_FILE

BPOOL_IMPORT_SERVICE = """\
[Unit]
DefaultDependencies=no
Before=zfs-import-scan.service
Before=zfs-import-cache.service

[Service]
Type=oneshot
RemainAfterExit=yes
ExecStart=/sbin/zpool import -N -o cachefile=none bpool
# Work-around to preserve zpool cache:
ExecStartPre=-/bin/mv /etc/zfs/zpool.cache /etc/zfs/preboot_zpool.cache
ExecStartPost=-/bin/mv /etc/zfs/preboot_zpool.cache /etc/zfs/zpool.cache

[Install]
WantedBy=zfs-import.target
"""

KEYBOARD_TEMPLATE = """\
XKBMODEL="pc105"
XKBLAYOUT="{keymap}"
XKBVARIANT=""
XKBOPTIONS=""
BACKSPACE="guess"
"""


def _replace_or_append(text, pattern, line):
    """Replace the first line matching ``pattern``, or append ``line``"""
    lines = text.splitlines(keepends=True)
    regex = re.compile(pattern)
    for i, current in enumerate(lines):
        if regex.match(current):
            lines[i] = line + "\n"
            return "".join(lines)
    if lines and not lines[-1].endswith("\n"):
        lines[-1] += "\n"
    lines.append(line + "\n")
    return "".join(lines)


def set_grub_cmdline(text, root_dataset):
    """Point GRUB_CMDLINE_LINUX at the root dataset"""
    return _replace_or_append(
        text, r"^GRUB_CMDLINE_LINUX=", f'GRUB_CMDLINE_LINUX="root=ZFS={root_dataset}"'
    )


def permit_root_login(text):
    return _replace_or_append(text, r"^#?PermitRootLogin\s", "PermitRootLogin yes")


def strip_mount_prefix(text, mount_root="/mnt"):
    """Drop the install-time mount root from the paths of a zfs-list.cache file"""
    prefix = re.compile(re.escape(mount_root.rstrip("/")) + r"/?")
    return "".join(prefix.sub("/", line, count=1) for line in text.splitlines(keepends=True))


class BootManager:
    """Runs the configuration steps inside the target tree, in order"""

    def __init__(self, config):
        self.config = config
        self.root = Path(config.mount_root)
        self.env = config.to_env()

    def target_path(self, path):
        """Host path of ``path`` inside the target tree"""
        return self.root / path.lstrip("/")

    def chroot(self, cmd, **kwargs):
        return shell.chroot(self.root, cmd, env=self.env, **kwargs)

    def apt_install(self, *packages):
        self.chroot(["apt", "install", "--yes"] + list(packages))

    def write_file(self, path, content):
        target = self.target_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)

    def edit_file(self, path, transform):
        target = self.target_path(path)
        text = target.read_text() if target.is_file() else ""
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(transform(text))

    def configure(self):
        """Bring the bootstrapped tree to a bootable state"""
        print("\nEntering chroot environment for final configuration...")
        try:
            self.install_base()
            self.configure_locale()
            self.install_kernel()
            self.install_bootloader_packages()
            self.set_root_password()
            self.install_bpool_import_service()
            self.enable_root_ssh()
            self.refresh_root_mount()
            self.configure_grub()
            self.install_bootloader()
            self.fix_mount_cache()
        except CommandError as e:
            raise BootloaderError(f"Error configuring the target system: {e}")
        print("Exiting chroot environment.")

    def install_base(self):
        print("Installing standard Debian base system and SSH server...")
        self.chroot(["apt", "update"])
        self.apt_install("tasksel")
        self.chroot(["tasksel", "install", "standard", "ssh-server"])

    def configure_locale(self):
        locale = self.config.locale
        print(f"Configuring locale {locale}, timezone {self.config.timezone}, keyboard {self.config.keymap}...")
        self.apt_install("console-setup", "locales", "tzdata", "keyboard-configuration")

        self.write_file("/etc/locale.gen", f"{locale} UTF-8\n")
        self.chroot(["locale-gen"])
        self.write_file("/etc/default/locale", f"LANG={locale}\nLC_ALL={locale}\n")
        self.chroot(["update-locale", f"LANG={locale}"])

        self.chroot(["ln", "-sf", f"/usr/share/zoneinfo/{self.config.timezone}", "/etc/localtime"])
        self.chroot(["dpkg-reconfigure", "--frontend", "noninteractive", "tzdata"])

        self.write_file("/etc/default/keyboard", KEYBOARD_TEMPLATE.format(keymap=self.config.keymap))
        self.chroot(["dpkg-reconfigure", "--frontend", "noninteractive", "keyboard-configuration"])
        self.chroot(["dpkg-reconfigure", "--frontend", "noninteractive", "console-setup"])

    def install_kernel(self):
        print("Installing kernel, headers and zfs-initramfs...")
        self.apt_install("linux-headers-amd64", "linux-image-amd64")
        self.apt_install("zfs-initramfs")
        # Rebuild the initramfs whenever DKMS rebuilds the zfs module
        self.write_file("/etc/dkms/zfs.conf", "REMAKE_INITRD=yes\n")

    def install_bootloader_packages(self):
        boot_mode = self.config.boot_mode
        if boot_mode is BootMode.LEGACY:
            self.apt_install("grub-pc")
        elif boot_mode is BootMode.UEFI:
            self.apt_install("dosfstools", "grub-efi-amd64", "shim-signed")
        else:
            raise BootloaderError(f"Unsupported boot mode: {boot_mode}")
        self.apt_install("openssh-server")

    def set_root_password(self):
        print("Setting root password. You will be prompted for the password twice.")
        self.chroot(["passwd"])

    def install_bpool_import_service(self):
        print("Creating and enabling zfs-import-bpool.service...")
        self.target_path("/etc/systemd/system/zfs-import.target.wants").mkdir(parents=True, exist_ok=True)
        self.write_file("/etc/systemd/system/zfs-import-bpool.service", BPOOL_IMPORT_SERVICE)
        self.chroot(["systemctl", "enable", "zfs-import-bpool.service"])

    def enable_root_ssh(self):
        print("Enabling SSH login for root...")
        self.edit_file("/etc/ssh/sshd_config", permit_root_login)

    def refresh_root_mount(self):
        """Toggle canmount so the mount generator picks the root dataset up"""
        root_fs = self.config.root_dataset
        boot_fs = self.config.boot_dataset
        self.chroot(["zfs", "set", "canmount=noauto", root_fs])
        self.chroot(["zfs", "set", "canmount=on", root_fs])
        self.chroot(["zfs", "set", "canmount=on", boot_fs])
        # Usually still mounted from dataset creation
        self.chroot(["zfs", "mount", root_fs], fatal=False, quiet=True)
        self.chroot(["zfs", "mount", boot_fs], fatal=False, quiet=True)
        self.chroot(["zfs", "mount", "-a"], fatal=False)

    def configure_grub(self):
        print("Configuring GRUB_CMDLINE_LINUX in /etc/default/grub for ZFS...")
        self.edit_file("/etc/default/grub", lambda text: set_grub_cmdline(text, self.config.root_dataset))

        probe = self.chroot(["grub-probe", "/boot"], fatal=False, capture=True, quiet=True)
        if probe.returncode != 0:
            print("Warning: grub-probe /boot returned an error. There might be an issue with ZFS recognition.")

        print("Refreshing initramfs...")
        self.chroot(["update-initramfs", "-c", "-k", "all"])
        print("Updating GRUB...")
        self.chroot(["update-grub"])

    def install_bootloader(self):
        boot_mode = self.config.boot_mode
        print("Installing GRUB bootloader on the selected disks...")
        if boot_mode is BootMode.LEGACY:
            for disk in self.config.disks:
                print(f"Executing grub-install for BIOS on {disk}...")
                self.chroot(["grub-install", disk])
        elif boot_mode is BootMode.UEFI:
            self._install_grub_efi()
        else:
            raise BootloaderError(f"Unsupported boot mode: {boot_mode}")

    def _efi_mounted(self):
        return self.chroot(["mountpoint", "-q", "/boot/efi"], fatal=False, quiet=True).returncode == 0

    def _install_grub_efi(self):
        self.target_path("/boot/efi").mkdir(parents=True, exist_ok=True)

        for disk in self.config.disks:
            esp = partition_path(disk, self.config.boot_loader_slot)
            if not os.path.exists(esp):
                raise BootloaderError(f"EFI partition {esp} not found.")

            print(f"Processing EFI partition: {esp}")
            if self._efi_mounted():
                self.chroot(["umount", "/boot/efi"])

            self.chroot(["mkdosfs", "-F", "32", "-s", "1", "-n", "EFI", esp])
            self.chroot(["mount", esp, "/boot/efi"])
            self._add_efi_fstab_entry(esp)

            print(f"Executing grub-install on {disk}...")
            self.chroot([
                "grub-install",
                "--target=x86_64-efi",
                "--efi-directory=/boot/efi",
                "--bootloader-id=debian",
                "--recheck",
                disk,
            ])
            print(f"GRUB-EFI installation completed for {disk}.")

        if self._efi_mounted():
            self.chroot(["umount", "/boot/efi"])

    def _add_efi_fstab_entry(self, esp):
        """Only the first ESP goes into fstab"""
        fstab = self.target_path("/etc/fstab")
        if fstab.is_file() and "/boot/efi" in fstab.read_text():
            return
        result = self.chroot(["blkid", "-s", "UUID", "-o", "value", esp], capture=True)
        uuid = result.stdout.strip()
        self.edit_file(
            "/etc/fstab",
            lambda text: _replace_or_append(text, r"^\S+\s+/boot/efi\s", f"UUID={uuid} /boot/efi vfat defaults 0 0"),
        )
        print(f"Added EFI entry to /etc/fstab: {uuid}")

    def fix_mount_cache(self):
        """Make the cached mountpoints valid for the installed system"""
        print("Configuring ZFS mount order...")
        for pool in (BOOT_POOL, ROOT_POOL):
            self.chroot(["zpool", "set", f"cachefile={CACHE_FILE}", pool])

        cache_dir = self.target_path("/etc/zfs/zfs-list.cache")
        cache_dir.mkdir(parents=True, exist_ok=True)
        self.chroot(["zfs", "list", "-t", "filesystem", "-o", "name,mountpoint,canmount"], capture=True)

        cache_files = sorted(path for path in cache_dir.iterdir() if path.is_file())
        if not cache_files:
            print("No files found in /etc/zfs/zfs-list.cache/ for modification.")
        for path in cache_files:
            path.write_text(strip_mount_prefix(path.read_text(), self.config.mount_root))

        # From here on the zfs-mount-generator and initramfs mount these
        self.chroot(["zfs", "set", "canmount=noauto", self.config.root_dataset])
        self.chroot(["zfs", "set", "canmount=noauto", f"{BOOT_POOL}/BOOT"])
