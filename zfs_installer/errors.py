#!/usr/bin/env python3
# Installer Errors
# Exception types raised by the installer stages


class InstallerError(Exception):
    """Base class for every error that aborts the installation"""


class PreflightError(InstallerError):
    """The live environment cannot run the installer (no root, missing tools, no disks)"""


class ConfigError(InstallerError):
    """The collected configuration is not usable"""


class PlanError(InstallerError):
    """The pool device lists cannot be built from the selection"""


class CommandError(InstallerError):
    """An external command failed"""

    def __init__(self, cmd, returncode=None, stderr=""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        if returncode is None:
            message = f"Command not found: {self.cmd[0]}"
        else:
            message = f"Command '{' '.join(self.cmd)}' exited with status {returncode}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


class PartitionError(InstallerError):
    pass


class PoolError(InstallerError):
    pass


class BootstrapError(InstallerError):
    pass


class BootloaderError(InstallerError):
    pass


class OperatorCancelled(Exception):
    """The operator declined to continue before any disk was modified"""


class DegradedRedundancyWarning(UserWarning):
    """A pool member ends up without a redundancy partner"""
