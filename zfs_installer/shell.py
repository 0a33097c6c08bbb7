#!/usr/bin/env python3
# Shell Module
# Runs external commands with an explicit failure policy per call

import shlex
import subprocess

from .errors import CommandError

_debug = False


def set_debug(enabled):
    """Echo every command before running it"""
    global _debug
    _debug = bool(enabled)


def run(cmd, fatal=True, capture=False, env=None, input_text=None, quiet=False):
    """Run a command and return the CompletedProcess.

    A non-zero exit (or a missing executable) raises CommandError when
    ``fatal`` is set. Otherwise a warning is printed and the result is
    returned so the caller can inspect it; ``quiet`` drops the warning for
    probes whose exit status is the answer. Without ``capture`` the command
    shares the terminal, which lets tools like ``zpool`` and ``passwd``
    prompt the operator directly.
    """
    cmd = [str(part) for part in cmd]
    if _debug:
        print(f"+ {shlex.join(cmd)}")

    try:
        result = subprocess.run(
            cmd,
            capture_output=capture,
            text=True,
            env=env,
            input=input_text,
        )
    except FileNotFoundError:
        if fatal:
            raise CommandError(cmd)
        if not quiet:
            print(f"Warning: {cmd[0]} not found, skipped.")
        return subprocess.CompletedProcess(cmd, 127, "", "")

    if result.returncode != 0:
        if fatal:
            raise CommandError(cmd, result.returncode, result.stderr if capture else "")
        if not quiet:
            print(f"Warning: '{shlex.join(cmd)}' exited with status {result.returncode} (ignored).")
    return result


def chroot(root, cmd, env=None, **kwargs):
    """Run a command with ``root`` as its apparent root directory.

    The command starts from an empty environment holding only ``env``.
    """
    prefix = ["chroot", str(root), "/usr/bin/env", "-i"]
    prefix.extend(f"{key}={value}" for key, value in (env or {}).items())
    return run(prefix + list(cmd), **kwargs)
