"""
antiscan Exceptions

Error hierarchy shared by all managers.

Library code raises these to its caller; only the CLI pipeline decides
whether a given failure aborts the run or is logged as a warning.

Author: antiscan Project
License: GNU GPL v3
"""

from typing import Optional, Sequence


class AntiscanError(Exception):
    """Base exception for antiscan errors."""
    pass


class CommandError(AntiscanError):
    """Raised when an external command exits non-zero, times out or is missing."""

    def __init__(self, command: Sequence[str], returncode: Optional[int], output: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        status = "timed out" if returncode is None else f"exit status {returncode}"
        message = f"command '{' '.join(self.command)}' failed: {status}"
        if output:
            message += f": {output.strip()}"
        super().__init__(message)


class InstallError(AntiscanError):
    """Raised when a required package or privilege is missing."""
    pass


class SafetyGateError(AntiscanError):
    """
    Raised when enabling UFW would lock the operator out of SSH.

    Always fatal: the run must stop before UFW is toggled.
    """
    pass


class IntegrationError(AntiscanError):
    """Raised when the UFW rule files cannot be updated for the primary family."""
    pass


class PersistenceError(AntiscanError):
    """Raised when firewall rules cannot be saved for reboot survival."""
    pass


class FatalStepError(AntiscanError):
    """Raised by the pipeline when a fatal step fails."""

    def __init__(self, step_name: str, cause: Exception):
        self.step_name = step_name
        self.cause = cause
        super().__init__(f"{step_name}: {cause}")
