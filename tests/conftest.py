import subprocess

import pytest

from zfs_installer import shell
from zfs_installer.errors import CommandError


class CommandRecorder:
    """Stands in for shell.run: records commands and returns canned results"""

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.outputs = {}

    def fail(self, *prefix, returncode=1):
        self.failures[tuple(prefix)] = returncode

    def output(self, *prefix, stdout=""):
        self.outputs[tuple(prefix)] = stdout

    def _lookup(self, table, cmd):
        for prefix, value in table.items():
            if tuple(cmd[:len(prefix)]) == prefix or _contains(cmd, prefix):
                return value
        return None

    def __call__(self, cmd, fatal=True, capture=False, env=None, input_text=None, quiet=False):
        cmd = [str(part) for part in cmd]
        self.calls.append(cmd)
        returncode = self._lookup(self.failures, cmd) or 0
        stdout = self._lookup(self.outputs, cmd) or ""
        if returncode and fatal:
            raise CommandError(cmd, returncode)
        return subprocess.CompletedProcess(cmd, returncode, stdout, "")

    def commands(self):
        """Calls with any chroot prefix removed"""
        return [_strip_chroot(cmd) for cmd in self.calls]

    def names(self):
        return [cmd[0] for cmd in self.commands()]


def _contains(cmd, prefix):
    """True when ``prefix`` appears contiguously inside a chroot-wrapped command"""
    return cmd[:1] == ["chroot"] and tuple(_strip_chroot(cmd)[:len(prefix)]) == prefix


def _strip_chroot(cmd):
    if cmd[:1] != ["chroot"]:
        return cmd
    rest = cmd[4:]  # chroot ROOT /usr/bin/env -i
    while rest and "=" in rest[0] and not rest[0].startswith("/"):
        rest = rest[1:]
    return rest


@pytest.fixture
def commands(monkeypatch):
    recorder = CommandRecorder()
    monkeypatch.setattr(shell, "run", recorder)
    return recorder


class FakePrompt:
    def __init__(self, value):
        self.value = value

    def execute(self):
        return self.value


class FakeInquirer:
    """Replays scripted answers in prompt order"""

    def __init__(self, answers):
        self.answers = list(answers)
        self.messages = []

    def _prompt(self, message, **kwargs):
        self.messages.append(message)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {message}")
        return FakePrompt(self.answers.pop(0))

    text = _prompt
    select = _prompt
    confirm = _prompt
    secret = _prompt


@pytest.fixture
def fake_inquirer():
    return FakeInquirer
