"""
antiscan Installer

Privilege check, distribution detection and installation of the packages
antiscan drives (iptables, ip6tables, ipset, rule-persistence helpers).

Author: antiscan Project
License: GNU GPL v3
"""

import logging
import os
from pathlib import Path
from typing import Optional

from ..config import get_config
from ..core.command import CommandExecutor
from ..exceptions import CommandError, InstallError

DEBIAN = "debian"
REDHAT = "redhat"
UNKNOWN_DISTRO = "unknown"

# Binary -> package name per distribution family
PACKAGE_NAMES = {
    DEBIAN: {'iptables': 'iptables', 'ip6tables': 'iptables', 'ipset': 'ipset'},
    REDHAT: {'iptables': 'iptables', 'ip6tables': 'iptables', 'ipset': 'ipset'},
}

NONINTERACTIVE_ENV = {'DEBIAN_FRONTEND': 'noninteractive'}


class Installer:
    """Installs missing system packages through apt-get or yum."""

    debian_marker = Path('/etc/debian_version')
    redhat_marker = Path('/etc/redhat-release')
    iptables_init = Path('/usr/libexec/iptables/iptables.init')

    def __init__(self, executor: Optional[CommandExecutor] = None, config=None):
        self.config = config or get_config()
        self.executor = executor or CommandExecutor(self.config)
        self.logger = logging.getLogger(__name__)
        self._distro = None

    def check_root_privileges(self):
        """
        Raises:
            InstallError: If not running as root
        """
        if os.geteuid() != 0:
            raise InstallError("this program must be run as root (use sudo)")

    def detect_distro(self) -> str:
        """Return 'debian', 'redhat' or 'unknown' from release marker files."""
        if self._distro is None:
            if self.debian_marker.exists():
                self._distro = DEBIAN
            elif self.redhat_marker.exists():
                self._distro = REDHAT
            else:
                self._distro = UNKNOWN_DISTRO
            self.logger.debug(f"Detected distribution: {self._distro}")
        return self._distro

    def install_packages(self, *packages: str):
        """
        Install packages non-interactively.

        Raises:
            InstallError: On unsupported distribution or package manager failure
        """
        distro = self.detect_distro()
        timeout = self.config.install_timeout

        try:
            if distro == DEBIAN:
                self.executor.run('apt-get', 'install', '-y', *packages,
                                  timeout=timeout, env=NONINTERACTIVE_ENV)
            elif distro == REDHAT:
                self.executor.run('yum', 'install', '-y', *packages, timeout=timeout)
            else:
                raise InstallError(
                    f"unsupported distribution, please install {' '.join(packages)} manually"
                )
        except CommandError as e:
            raise InstallError(f"failed to install {' '.join(packages)}: {e}") from e

    def update_package_index(self):
        """apt-get update (Debian only)."""
        if self.detect_distro() == DEBIAN:
            self.executor.run('apt-get', 'update', timeout=self.config.install_timeout,
                              env=NONINTERACTIVE_ENV)

    def ensure_package(self, binary: str, retry_after_update: bool = False):
        """
        Install the package providing binary when it is not in PATH.

        Args:
            binary: Command that must exist afterwards
            retry_after_update: On Debian, retry once after apt-get update
        """
        if self.executor.command_exists(binary):
            self.logger.debug(f"{binary} already installed")
            return

        package = PACKAGE_NAMES.get(self.detect_distro(), {}).get(binary, binary)
        self.logger.info(f"Installing {package}")

        try:
            self.install_packages(package)
        except InstallError:
            if not (retry_after_update and self.detect_distro() == DEBIAN):
                raise
            self.logger.warning("Install failed, refreshing apt package index and retrying")
            try:
                self.update_package_index()
            except CommandError as e:
                raise InstallError(f"failed to update apt-get: {e}") from e
            self.install_packages(package)

        self.logger.info(f"{package} installed")

    def ensure_dependencies(self):
        """Make sure iptables, ip6tables and ipset are available."""
        self.logger.info("Checking dependencies")
        self.ensure_package('iptables')
        self.ensure_package('ip6tables')
        self.ensure_package('ipset', retry_after_update=True)
        self.logger.info("All dependencies satisfied")

    def ensure_netfilter_persistent(self):
        """
        Install the rule-persistence helper when UFW will not own persistence.

        Debian: netfilter-persistent + iptables-persistent.
        RedHat: iptables-services.
        """
        if self.executor.command_exists('ufw'):
            self.logger.info("UFW detected, it will own rule persistence")
            return

        distro = self.detect_distro()

        if distro == DEBIAN:
            if self.executor.command_exists('netfilter-persistent'):
                self.logger.debug("netfilter-persistent already installed")
                return
            self.logger.info("Installing netfilter-persistent and iptables-persistent")
            try:
                self.update_package_index()
            except CommandError as e:
                self.logger.warning(f"Could not update apt-get: {e}")
            self.install_packages('netfilter-persistent', 'iptables-persistent')

        elif distro == REDHAT:
            if self.executor.is_service_enabled('iptables') or self.iptables_init.exists():
                self.logger.debug("iptables-services already installed")
                return
            self.logger.info("Installing iptables-services")
            self.install_packages('iptables-services')

        else:
            self.logger.debug("No rule-persistence helper known for this distribution")
