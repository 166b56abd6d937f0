"""
antiscan UFW Integration

Coexistence with UFW, which owns and regenerates the host's iptables state.

When UFW is installed the block chain is not hooked into INPUT directly.
Instead a marker-delimited section is spliced into /etc/ufw/before.rules
(and before6.rules) so UFW itself declares the chain and jumps to it from
ufw-before-input on every reload.

Safety gate: if UFW is installed but inactive, integration would enable
it. That is only allowed when a rule permitting inbound SSH exists;
otherwise the run aborts before UFW is touched, with the exact commands
needed to fix it.

After UFW reloads, its own ACCEPT rules (established, ICMP) land ahead
of our hook, so the hook is moved back to position 1, and a one-shot
systemd unit repeats that after every boot.

Author: antiscan Project
License: GNU GPL v3
"""

import logging
import re
import shlex
from pathlib import Path
from typing import Dict, Optional

from .. import templates
from ..config import get_config
from ..core.command import CommandExecutor
from ..core.rule_builder import jump_rule
from ..exceptions import CommandError, IntegrationError, SafetyGateError
from ..models import IPFamily, PersistedSection, SafetyGateResult
from ..utils.fileio import atomic_write_text
from .iptables_manager import ChainReconciler, IptablesCommands

SSH_PORT = 22
SSH_NAMES = {'22', '22/tcp', 'ssh', 'ssh/tcp', 'openssh'}

# --dport 22, --dports 80,22, dport ssh, --dports 20:25
_DPORT_RE = re.compile(r'(?:^|\s)(?:--)?dports?\s+(\S+)')
_REFUSING_RE = re.compile(r'-j\s+(?:DROP|REJECT)\b|ufw6?-user-(?:deny|reject)|\b(?:deny|reject)\b')

REMEDIATION = """\
UFW is installed but has NO rule allowing SSH.
Enabling UFW without an SSH rule WILL LOCK YOU OUT of this server.

Step 1: allow SSH in UFW, with ONE of:
  sudo ufw allow 22/tcp
  sudo ufw allow OpenSSH
  sudo ufw allow ssh

Check the rule with:
  sudo ufw show added

Step 2: run the installation again:
  sudo antiscan full -u <list-url>

Alternative: if UFW is not needed, remove it and antiscan will manage iptables directly:
  sudo apt remove --purge ufw"""


def _ports_include_ssh(port_spec: str) -> bool:
    """True if a dport/dports value (single, list or range) covers SSH."""
    for item in port_spec.strip(',').split(','):
        item = item.strip().lower()
        if item in ('ssh', str(SSH_PORT)):
            return True
        if ':' in item:
            low, _, high = item.partition(':')
            if low.isdigit() and high.isdigit() and int(low) <= SSH_PORT <= int(high):
                return True
    return False


def rule_line_allows_ssh(line: str) -> bool:
    """True for an iptables-restore rule line that opens port 22 and is not a deny."""
    line = line.strip()
    if not line or line.startswith('#'):
        return False
    if _REFUSING_RE.search(line):
        return False
    return any(_ports_include_ssh(match.group(1)) for match in _DPORT_RE.finditer(line))


def added_line_allows_ssh(line: str) -> bool:
    """
    True for a 'ufw show added' line like 'ufw allow 22/tcp' or 'ufw limit OpenSSH'.

    The argument of 'comment' is free text and never counts as a port or app.
    """
    try:
        tokens = [token.lower() for token in shlex.split(line)]
    except ValueError:
        tokens = [token.strip('\'"').lower() for token in line.split()]

    if 'comment' in tokens:
        index = tokens.index('comment')
        tokens = tokens[:index] + tokens[index + 2:]

    if not any(action in tokens for action in ('allow', 'limit')):
        return False
    return any(token in SSH_NAMES for token in tokens)


class FirewallManagerIntegrator:
    """Safe integration of the block chain with UFW."""

    def __init__(self, executor: Optional[CommandExecutor] = None, config=None,
                 enable_logging: bool = False, reconciler: Optional[ChainReconciler] = None):
        self.config = config or get_config()
        self.executor = executor or CommandExecutor(self.config)
        self.enable_logging = enable_logging
        self.reconciler = reconciler or ChainReconciler(self.executor, self.config, enable_logging)
        self.logger = logging.getLogger(__name__)
        self.gate: Optional[SafetyGateResult] = None

    # ========================================================================
    # DETECTION
    # ========================================================================

    def is_installed(self) -> bool:
        return self.executor.command_exists('ufw')

    def is_active(self) -> bool:
        returncode, output = self.executor.run_captured_quiet('ufw', 'status')
        return returncode == 0 and 'Status: active' in output

    def detect(self) -> SafetyGateResult:
        """Probe UFW presence and state. Never raises."""
        present = self.is_installed()
        active = present and self.is_active()
        result = SafetyGateResult(present=present, active=active)
        if self.gate is not None and self.gate.present == present and self.gate.active == active:
            result.ssh_rule_present = self.gate.ssh_rule_present
        self.gate = result
        self.logger.debug(f"UFW detection: installed={present} active={active}")
        return result

    def link_to_input(self) -> bool:
        """
        Whether the reconciler should hook INPUT directly.

        Only without UFW: an inactive UFW is enabled later in the run and
        would then jump to the chain as well.
        """
        gate = self.gate or self.detect()
        return not gate.present

    def warn_if_inactive(self):
        gate = self.gate or self.detect()
        if gate.needs_gate:
            self.logger.warning("UFW is installed but inactive, it will be enabled "
                                "after verifying an SSH rule exists")
        elif gate.active:
            self.logger.info("UFW is active, rules will be integrated into UFW")

    # ========================================================================
    # SAFETY GATE
    # ========================================================================

    def ssh_rule_in_files(self) -> bool:
        for path in (self.config.ufw_user_rules, self.config.ufw6_user_rules):
            try:
                content = Path(path).read_text()
            except OSError as e:
                self.logger.debug(f"Cannot read {path}: {e}")
                continue
            if any(rule_line_allows_ssh(line) for line in content.splitlines()):
                self.logger.debug(f"SSH rule found in {path}")
                return True
        return False

    def ssh_rule_in_added(self) -> bool:
        returncode, output = self.executor.run_captured_quiet('ufw', 'show', 'added')
        if returncode != 0:
            return False
        return any(added_line_allows_ssh(line) for line in output.splitlines())

    def check_safety(self) -> SafetyGateResult:
        """
        Refuse to continue if UFW would be enabled without an SSH rule.

        Only evaluated when UFW is installed but inactive.

        Raises:
            SafetyGateError: No SSH-permitting rule in user.rules, user6.rules
                or 'ufw show added'
        """
        gate = self.detect()
        if not gate.needs_gate:
            return gate

        self.logger.warning("UFW is installed but inactive, checking for an SSH rule before enabling it")
        gate.ssh_rule_present = self.ssh_rule_in_files() or self.ssh_rule_in_added()

        if not gate.ssh_rule_present:
            for line in REMEDIATION.splitlines():
                self.logger.error(line)
            raise SafetyGateError(
                "SSH not allowed in UFW, installation aborted to prevent server lockout"
            )

        self.logger.info("SSH rule found in UFW configuration")
        return gate

    # ========================================================================
    # SECTION INJECTION
    # ========================================================================

    def before_rules_path(self, family: IPFamily) -> str:
        return self.config.ufw6_before_rules if family is IPFamily.V6 else self.config.ufw_before_rules

    def before_input_chain(self, family: IPFamily) -> str:
        if family is IPFamily.V6:
            return self.config.ufw6_before_input_chain
        return self.config.ufw_before_input_chain

    def build_section(self, family: IPFamily) -> PersistedSection:
        chain = self.config.chain_name
        body = [
            "# DO NOT EDIT THIS SECTION MANUALLY",
            f":{chain} - [0:0]",
            f"-A {self.before_input_chain(family)} -j {chain}",
        ]
        if self.enable_logging:
            body.append(f"-A {chain} {self.reconciler.log_rule(family).render()}")
        body.append(f"-A {chain} {self.reconciler.drop_rule(family).render()}")
        return PersistedSection(self.config.section_marker, body, self.config.section_end_marker)

    def inject_section(self, path: str, section: PersistedSection) -> bool:
        """
        Splice section before the last COMMIT line of a UFW rules file.

        An existing section is kept when its body matches and replaced in
        place otherwise, so a changed LOG setting survives UFW reloads.

        Returns:
            True if the file was rewritten, False if the same section was already there

        Raises:
            IntegrationError: File unreadable or unwritable, without COMMIT,
                or holding a section without its end marker
        """
        try:
            content = Path(path).read_text()
        except OSError as e:
            raise IntegrationError(f"cannot read {path}: {e}") from e

        lines = content.splitlines()
        stripped = [line.strip() for line in lines]

        if section.marker in stripped:
            start = stripped.index(section.marker)
            try:
                end = stripped.index(section.end_marker, start + 1)
            except ValueError:
                raise IntegrationError(f"{path}: {self.config.chain_name} section has no end marker")

            if lines[start + 1:end] == section.body:
                self.logger.info(f"{path} already contains the {self.config.chain_name} section")
                return False

            self.logger.info(f"Replacing outdated {self.config.chain_name} section in {path}")
            new_lines = lines[:start + 1] + section.body + lines[end:]
        else:
            if 'COMMIT' not in stripped:
                raise IntegrationError(f"no COMMIT found in {path}")
            commit_index = len(stripped) - 1 - stripped[::-1].index('COMMIT')
            new_lines = lines[:commit_index] + section.lines() + lines[commit_index:]

        try:
            atomic_write_text(path, '\n'.join(new_lines) + '\n')
        except OSError as e:
            raise IntegrationError(f"cannot write {path}: {e}") from e

        self.logger.info(f"Updated {path}")
        return True

    # ========================================================================
    # RELOAD AND PRIORITY
    # ========================================================================

    def reload(self, was_active: bool):
        """
        Toggle UFW off and on so it re-reads before*.rules.

        Raises:
            SafetyGateError: If UFW would be enabled without a verified SSH rule
            IntegrationError: If UFW cannot be enabled again
        """
        gate = self.gate or self.detect()
        if not gate.may_enable:
            raise SafetyGateError("refusing to enable UFW without a verified SSH rule")

        if not was_active:
            self.logger.warning("UFW was inactive, enabling it now (SSH rule verified)")
        self.logger.info("Restarting UFW to apply before.rules")

        try:
            self.executor.run('ufw', '--force', 'disable')
        except CommandError as e:
            self.logger.warning(f"Could not disable UFW: {e}")

        try:
            self.executor.run('ufw', '--force', 'enable')
        except CommandError as e:
            raise IntegrationError(f"could not enable UFW: {e}") from e

        gate.active = True

    def reassert_priority(self, family: IPFamily) -> bool:
        """
        Move the hook to position 1 of the UFW before-input chain.

        Returns:
            False if the insert failed (logged as a warning)
        """
        ipt = IptablesCommands(self.executor, family)
        ufw_chain = self.before_input_chain(family)
        hook = jump_rule(self.config.chain_name)

        try:
            while ipt.rule_exists(ufw_chain, hook):
                ipt.delete_rule(ufw_chain, hook)
        except CommandError as e:
            self.logger.warning(f"Could not remove {self.config.chain_name} from {ufw_chain}: {e}")

        try:
            ipt.insert_rule(ufw_chain, hook, 1)
        except CommandError as e:
            self.logger.warning(f"Could not insert {self.config.chain_name} at position 1 "
                                f"of {ufw_chain} ({family.label}): {e}")
            return False

        self.logger.info(f"{self.config.chain_name} moved to position 1 in {ufw_chain} ({family.label})")
        return True

    def create_move_rules_service(self):
        """
        Install the unit that re-asserts hook priority after UFW starts at boot.

        Raises:
            OSError: If the unit file cannot be written
            CommandError: If the unit cannot be enabled
        """
        unit = self.config.move_rules_unit
        unit_path = self.config.unit_path(unit)
        atomic_write_text(unit_path, templates.move_rules_service(self.config), mode=0o644)
        self.logger.info(f"Created systemd unit {unit_path}")

        try:
            self.executor.daemon_reload()
        except CommandError as e:
            self.logger.warning(f"Could not reload systemd daemon: {e}")

        self.executor.enable_service(unit)
        self.logger.info(f"{self.config.chain_name} will be kept at position 1 after reboot")

    # ========================================================================
    # FULL INTEGRATION
    # ========================================================================

    def integrate(self) -> Dict[IPFamily, bool]:
        """
        Persist and activate the block chain through UFW.

        Returns:
            {family: section written} for the families whose file was processed

        Raises:
            SafetyGateError: SSH gate failed
            IntegrationError: IPv4 before.rules could not be updated or UFW not re-enabled
        """
        gate = self.gate or self.detect()
        if not gate.may_enable:
            gate = self.check_safety()
        was_active = gate.active

        written = {}
        written[IPFamily.V4] = self.inject_section(
            self.before_rules_path(IPFamily.V4), self.build_section(IPFamily.V4))

        try:
            written[IPFamily.V6] = self.inject_section(
                self.before_rules_path(IPFamily.V6), self.build_section(IPFamily.V6))
        except IntegrationError as e:
            self.logger.warning(f"IPv6 UFW integration skipped: {e}")

        for family in IPFamily:
            try:
                self.reconciler.unhook_input(family)
            except CommandError as e:
                self.logger.warning(f"Could not remove direct INPUT hook ({family.label}): {e}")

        self.reload(was_active)

        for family in IPFamily:
            self.reassert_priority(family)

        try:
            self.create_move_rules_service()
        except (OSError, CommandError) as e:
            self.logger.warning(f"Could not create {self.config.move_rules_unit}: {e}")

        self.logger.info("iptables rules integrated with UFW")
        return written
