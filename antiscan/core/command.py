"""
antiscan Command Executor

Centralized execution of external commands (ipset, iptables, ufw, systemctl).

Two kinds of invocation exist and the distinction matters:
- Logged calls (run, run_captured) mutate state; a failure is a fault,
  logged at ERROR and raised as CommandError.
- Quiet calls (run_quiet, run_captured_quiet) are probes; a non-zero exit
  is a negative answer, never logged as an error.

Output is decoded as UTF-8 with undecodable bytes replaced, since registry
and firewall output is not guaranteed to be UTF-8.

Author: antiscan Project
License: GNU GPL v3
"""

import logging
import os
import shutil
import subprocess
from typing import Dict, List, Optional, Tuple

from ..config import get_config
from ..exceptions import CommandError


class CommandExecutor:
    """Runs external commands with consistent logging and error reporting."""

    def __init__(self, config=None):
        """
        Initialize command executor.

        Args:
            config: Configuration object (optional, uses get_config() if None)
        """
        self.config = config or get_config()
        self.logger = logging.getLogger(__name__)
        self.timeout = self.config.command_timeout

    def _execute(self, argv: List[str], timeout: Optional[float], env: Optional[Dict[str, str]],
                 merge_output: bool) -> subprocess.CompletedProcess:
        run_env = None
        if env:
            run_env = dict(os.environ)
            run_env.update(env)

        return subprocess.run(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merge_output else subprocess.PIPE,
            text=True,
            encoding='utf-8',
            errors='replace',
            timeout=timeout if timeout is not None else self.timeout,
            env=run_env,
        )

    def run(self, name: str, *args: str, timeout: Optional[float] = None,
            env: Optional[Dict[str, str]] = None) -> str:
        """
        Execute a mutating command.

        Args:
            name: Executable name
            *args: Command arguments
            timeout: Seconds before the command is killed (default: config.command_timeout)
            env: Extra environment variables

        Returns:
            Standard output of the command

        Raises:
            CommandError: On non-zero exit, timeout or missing executable
        """
        argv = [name, *args]
        self.logger.debug(f"Executing command: {' '.join(argv)}")

        try:
            result = self._execute(argv, timeout, env, merge_output=False)
        except subprocess.TimeoutExpired:
            self.logger.error(f"Command timed out: {' '.join(argv)}")
            raise CommandError(argv, None)
        except FileNotFoundError:
            self.logger.error(f"Command not found: {name}")
            raise CommandError(argv, 127, f"{name}: command not found")

        if result.returncode != 0:
            stderr = (result.stderr or result.stdout or "").strip()
            self.logger.error(
                f"Command failed ({result.returncode}): {' '.join(argv)}: {stderr}"
            )
            raise CommandError(argv, result.returncode, stderr)

        return result.stdout

    def run_captured(self, name: str, *args: str, timeout: Optional[float] = None) -> str:
        """
        Execute a command and return combined stdout+stderr.

        Used where the caller parses the output (status queries).

        Raises:
            CommandError: On non-zero exit, timeout or missing executable
        """
        argv = [name, *args]
        self.logger.debug(f"Executing command with output: {' '.join(argv)}")

        try:
            result = self._execute(argv, timeout, None, merge_output=True)
        except subprocess.TimeoutExpired:
            self.logger.error(f"Command timed out: {' '.join(argv)}")
            raise CommandError(argv, None)
        except FileNotFoundError:
            self.logger.error(f"Command not found: {name}")
            raise CommandError(argv, 127, f"{name}: command not found")

        if result.returncode != 0:
            self.logger.error(
                f"Command failed ({result.returncode}): {' '.join(argv)}: {result.stdout.strip()}"
            )
            raise CommandError(argv, result.returncode, result.stdout)

        return result.stdout

    def run_quiet(self, name: str, *args: str, timeout: Optional[float] = None) -> bool:
        """
        Execute a probe command without logging failures.

        Returns:
            True if the command exited 0, False otherwise
        """
        returncode, _ = self.run_captured_quiet(name, *args, timeout=timeout)
        return returncode == 0

    def run_captured_quiet(self, name: str, *args: str,
                           timeout: Optional[float] = None) -> Tuple[Optional[int], str]:
        """
        Execute a probe command and return (returncode, combined output).

        returncode is None when the command timed out, 127 when it is missing.
        """
        argv = [name, *args]
        try:
            result = self._execute(argv, timeout, None, merge_output=True)
        except subprocess.TimeoutExpired:
            self.logger.debug(f"Probe timed out: {' '.join(argv)}")
            return None, ""
        except FileNotFoundError:
            return 127, ""
        return result.returncode, result.stdout

    def command_exists(self, name: str) -> bool:
        """Check if a command is available in PATH."""
        exists = shutil.which(name) is not None
        self.logger.debug(f"Checking command existence: {name} -> {exists}")
        return exists

    # ========================================================================
    # SYSTEMD HELPERS
    # ========================================================================

    def is_service_active(self, service_name: str) -> bool:
        if not self.command_exists('systemctl'):
            return False
        returncode, output = self.run_captured_quiet('systemctl', 'is-active', service_name)
        return returncode == 0 and output.strip() == 'active'

    def is_service_enabled(self, service_name: str) -> bool:
        if not self.command_exists('systemctl'):
            return False
        returncode, output = self.run_captured_quiet('systemctl', 'is-enabled', service_name)
        return returncode == 0 and output.strip() == 'enabled'

    def enable_service(self, service_name: str):
        self.logger.info(f"Enabling service: {service_name}")
        self.run('systemctl', 'enable', service_name)

    def start_service(self, service_name: str):
        self.logger.info(f"Starting service: {service_name}")
        self.run('systemctl', 'start', service_name)

    def restart_service(self, service_name: str):
        self.logger.info(f"Restarting service: {service_name}")
        self.run('systemctl', 'restart', service_name)

    def daemon_reload(self):
        self.logger.info("Reloading systemd daemon")
        self.run('systemctl', 'daemon-reload')

    def is_package_installed(self, package_name: str) -> bool:
        """Check if a Debian package is installed (dpkg 'ii' state)."""
        if not self.command_exists('dpkg'):
            return False

        returncode, output = self.run_captured_quiet('dpkg', '-l', package_name)
        if returncode != 0:
            return False

        for line in output.splitlines():
            fields = line.split()
            if len(fields) >= 2 and fields[0] == 'ii' and fields[1].split(':')[0] == package_name:
                return True
        return False
