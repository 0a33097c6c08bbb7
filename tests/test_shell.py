import subprocess

import pytest

from zfs_installer import shell
from zfs_installer.errors import CommandError


@pytest.fixture
def fake_subprocess(monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append((cmd, kwargs))
        if cmd[0] == "missing":
            raise FileNotFoundError(cmd[0])
        returncode = 1 if cmd[0] == "false" else 0
        return subprocess.CompletedProcess(cmd, returncode, "out", "err")

    monkeypatch.setattr(shell.subprocess, "run", fake_run)
    return calls


def test_run_success(fake_subprocess):
    result = shell.run(["true", 3], capture=True)
    assert result.returncode == 0
    cmd, kwargs = fake_subprocess[0]
    assert cmd == ["true", "3"]
    assert kwargs["capture_output"] is True


def test_fatal_failure(fake_subprocess):
    with pytest.raises(CommandError) as excinfo:
        shell.run(["false"], capture=True)
    assert excinfo.value.returncode == 1
    assert excinfo.value.stderr == "err"


def test_best_effort_failure(fake_subprocess, capsys):
    result = shell.run(["false"], fatal=False)
    assert result.returncode == 1
    assert "Warning" in capsys.readouterr().out

    shell.run(["false"], fatal=False, quiet=True)
    assert capsys.readouterr().out == ""


def test_missing_command(fake_subprocess):
    with pytest.raises(CommandError, match="not found"):
        shell.run(["missing"])
    assert shell.run(["missing"], fatal=False).returncode == 127


def test_debug_echo(fake_subprocess, capsys):
    shell.set_debug(True)
    try:
        shell.run(["echo", "a b"])
    finally:
        shell.set_debug(False)
    assert "+ echo 'a b'" in capsys.readouterr().out


def test_chroot_passes_only_the_given_env(fake_subprocess):
    shell.chroot("/mnt", ["update-grub"], env={"ROOT_FS": "rpool/ROOT/debian"})
    cmd, kwargs = fake_subprocess[0]
    assert cmd == ["chroot", "/mnt", "/usr/bin/env", "-i", "ROOT_FS=rpool/ROOT/debian", "update-grub"]
    assert kwargs["env"] is None
