"""
antiscan Persistence Manager

Makes the address sets and firewall rules survive a reboot.

- Address sets: always saved with 'ipset save' and restored at boot by a
  unit ordered before ufw.service and netfilter-persistent.service.
- Rules: exactly one mechanism owns them. With UFW installed the rules
  live in UFW's before*.rules (see ufw_integrator). Without UFW they are
  dumped to the distro rule files and saved through the persistence helper.

Author: antiscan Project
License: GNU GPL v3
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from ..config import get_config
from ..core.command import CommandExecutor
from ..exceptions import CommandError, InstallError, PersistenceError
from ..models import IPFamily
from .installer import DEBIAN, REDHAT, Installer
from .iptables_manager import IptablesCommands
from .ipset_manager import AddressSetManager
from .ufw_integrator import FirewallManagerIntegrator

UFW = "ufw"


@dataclass
class PersistenceBackend:
    """
    A generic rule-persistence helper.

    Installed when init_script exists, or else when binary is on PATH.
    """
    name: str
    binary: str
    rule_paths: Dict[IPFamily, str]
    save_command: tuple
    init_script: Optional[str] = None


def debian_backend(config) -> PersistenceBackend:
    return PersistenceBackend(
        name="netfilter-persistent",
        binary="netfilter-persistent",
        rule_paths={IPFamily.V4: config.debian_rules_v4_path,
                    IPFamily.V6: config.debian_rules_v6_path},
        save_command=('netfilter-persistent', 'save'),
    )


def redhat_backend(config, init_script: str) -> PersistenceBackend:
    return PersistenceBackend(
        name="iptables-services",
        binary="service",
        rule_paths={IPFamily.V4: config.redhat_rules_v4_path,
                    IPFamily.V6: config.redhat_rules_v6_path},
        save_command=('service', 'iptables', 'save'),
        init_script=init_script,
    )


class PersistenceManager:
    """Selects and drives the persistence mechanism."""

    def __init__(self, executor: Optional[CommandExecutor] = None, config=None,
                 integrator: Optional[FirewallManagerIntegrator] = None,
                 address_sets: Optional[AddressSetManager] = None,
                 installer: Optional[Installer] = None):
        self.config = config or get_config()
        self.executor = executor or CommandExecutor(self.config)
        self.integrator = integrator or FirewallManagerIntegrator(self.executor, self.config)
        self.address_sets = address_sets or AddressSetManager(self.executor, self.config)
        self.installer = installer or Installer(self.executor, self.config)
        self.logger = logging.getLogger(__name__)

    def select_backend(self):
        """
        Returns:
            'ufw' when UFW is installed, else the distro PersistenceBackend

        Raises:
            PersistenceError: Unknown distribution without UFW
        """
        if self.integrator.is_installed():
            return UFW

        distro = self.installer.detect_distro()
        if distro == DEBIAN:
            return debian_backend(self.config)
        if distro == REDHAT:
            return redhat_backend(self.config, str(self.installer.iptables_init))
        raise PersistenceError("no rule persistence mechanism known for this distribution")

    def save_address_sets(self):
        """Save the sets to ipset_config_path (raises CommandError/OSError)."""
        self.address_sets.save(self.config.ipset_config_path)

    def create_restore_service(self):
        self.address_sets.create_restore_service()

    def save_rules(self):
        """
        Persist the firewall rules through the selected mechanism.

        Raises:
            SafetyGateError / IntegrationError: UFW integration failed
            PersistenceError: Helper missing or IPv4 rules could not be dumped
        """
        self.logger.info("Saving iptables rules")
        backend = self.select_backend()

        if backend == UFW:
            self.logger.info("UFW detected, integrating with UFW")
            self.integrator.integrate()
            return

        self._ensure_helper(backend)
        self.logger.info(f"Using {backend.name}")

        try:
            IptablesCommands(self.executor, IPFamily.V4).save_to(backend.rule_paths[IPFamily.V4])
        except (CommandError, OSError) as e:
            raise PersistenceError(f"failed to save IPv4 rules: {e}") from e

        try:
            IptablesCommands(self.executor, IPFamily.V6).save_to(backend.rule_paths[IPFamily.V6])
        except (CommandError, OSError) as e:
            self.logger.warning(f"Failed to save IPv6 rules: {e}")

        try:
            self.executor.run(*backend.save_command)
        except CommandError as e:
            self.logger.warning(f"{backend.name} save failed: {e}")

    def _helper_installed(self, backend: PersistenceBackend) -> bool:
        if backend.init_script:
            return Path(backend.init_script).exists()
        return self.executor.command_exists(backend.binary)

    def _ensure_helper(self, backend: PersistenceBackend):
        if self._helper_installed(backend):
            return
        self.logger.info(f"{backend.name} not found, installing it")
        try:
            self.installer.ensure_netfilter_persistent()
        except (CommandError, InstallError) as e:
            raise PersistenceError(f"{backend.name} is not installed: {e}") from e
        if not self._helper_installed(backend):
            raise PersistenceError(f"{backend.name} is not installed, run the dependency installation first")
