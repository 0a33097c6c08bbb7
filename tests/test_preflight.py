import pytest

from zfs_installer import preflight
from zfs_installer.errors import PreflightError


def test_require_root(monkeypatch):
    monkeypatch.setattr(preflight.os, "geteuid", lambda: 1000)
    with pytest.raises(PreflightError):
        preflight.require_root()

    monkeypatch.setattr(preflight.os, "geteuid", lambda: 0)
    preflight.require_root()


def test_all_packages_present(commands):
    assert preflight.ensure_packages() == []
    assert all(cmd[:2] == ["dpkg", "-s"] for cmd in commands.calls)
    assert len(commands.calls) == len(preflight.REQUIRED_PACKAGES)


def test_missing_packages_installed(commands):
    commands.fail("dpkg", "-s", "debootstrap")
    commands.fail("dpkg", "-s", "parted")
    assert preflight.ensure_packages(install=True) == ["debootstrap", "parted"]
    assert ["apt", "update"] in commands.calls
    assert ["apt", "install", "-y", "debootstrap", "parted"] in commands.calls


def test_missing_packages_refused(commands, monkeypatch, fake_inquirer):
    commands.fail("dpkg", "-s", "gdisk")
    monkeypatch.setattr(preflight, "inquirer", fake_inquirer([False]))
    with pytest.raises(PreflightError):
        preflight.ensure_packages()
    assert not any(cmd[0] == "apt" for cmd in commands.calls)


def test_zfs_module(commands, monkeypatch):
    monkeypatch.setattr(preflight.os.path, "isdir", lambda path: True)
    assert preflight.ensure_zfs_module() is False
    assert commands.calls == []

    monkeypatch.setattr(preflight.os.path, "isdir", lambda path: False)
    assert preflight.ensure_zfs_module() is True
    assert commands.calls == [["modprobe", "zfs"]]

    commands.fail("modprobe")
    with pytest.raises(PreflightError):
        preflight.ensure_zfs_module()
