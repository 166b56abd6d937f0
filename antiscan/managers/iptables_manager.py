"""
antiscan Chain Reconciler

Creates and wires the block chain for both address families.

IptablesCommands wraps iptables/ip6tables for one family. ChainReconciler
drives the per-family state machine, once per run:

1. Chain exists? flush it : create it
2. Hook '-j CHAIN' at INPUT position 1 (only when no UFW will own the hook)
3. Rate-limited LOG rule at position 1 (when logging is enabled)
4. DROP rule appended at the tail

Every mutation is preceded by an existence check (-C) with the same
RuleSpec, so a second run changes nothing beyond the initial flush.

Author: antiscan Project
License: GNU GPL v3
"""

import logging
from typing import Dict, Optional

from ..config import get_config
from ..core.command import CommandExecutor
from ..core.rule_builder import drop_rule_for_set, jump_rule, log_rule_for_set
from ..models import ChainState, HookState, IPFamily, RuleSpec
from ..utils.fileio import atomic_write_text

TABLE_FILTER = "filter"
CHAIN_INPUT = "INPUT"


class IptablesCommands:
    """iptables primitives for one address family and table."""

    def __init__(self, executor: CommandExecutor, family: IPFamily, table: str = TABLE_FILTER):
        self.executor = executor
        self.family = family
        self.table = table
        self.cmd = family.iptables_cmd
        self.logger = logging.getLogger(__name__)

    def _run(self, *args: str) -> str:
        return self.executor.run(self.cmd, '-t', self.table, *args)

    def _probe(self, *args: str) -> bool:
        return self.executor.run_quiet(self.cmd, '-t', self.table, *args)

    def create_chain(self, chain: str):
        self.logger.debug(f"{self.cmd}: creating chain {chain}")
        self._run('-N', chain)

    def delete_chain(self, chain: str):
        self._run('-X', chain)

    def flush_chain(self, chain: str):
        self.logger.debug(f"{self.cmd}: flushing chain {chain}")
        self._run('-F', chain)

    def flush_all(self):
        self._run('-F')

    def chain_exists(self, chain: str) -> bool:
        return self._probe('-n', '-L', chain)

    def rule_exists(self, chain: str, rule: RuleSpec) -> bool:
        return self._probe('-C', chain, *rule.args())

    def append_rule(self, chain: str, rule: RuleSpec):
        self._run('-A', chain, *rule.args())

    def insert_rule(self, chain: str, rule: RuleSpec, position: int = 1):
        self._run('-I', chain, str(position), *rule.args())

    def delete_rule(self, chain: str, rule: RuleSpec):
        self._run('-D', chain, *rule.args())

    def delete_rule_by_number(self, chain: str, number: int):
        self._run('-D', chain, str(number))

    def list_chain(self, chain: str) -> str:
        return self.executor.run_captured(self.cmd, '-t', self.table, '-n', '-v',
                                          '--line-numbers', '-L', chain)

    def save(self) -> str:
        """Full rule dump in iptables-restore format."""
        return self.executor.run(f"{self.cmd}-save")

    def save_to(self, path: str):
        """Dump the rules to path atomically."""
        atomic_write_text(path, self.save(), mode=0o640)
        self.logger.info(f"{self.family.label} rules saved to {path}")

    def restore(self, path: str):
        self.executor.run(f"{self.cmd}-restore", path)


class ChainReconciler:
    """Idempotently ensures the block chain and its rules for each family."""

    def __init__(self, executor: Optional[CommandExecutor] = None, config=None,
                 enable_logging: bool = False):
        self.config = config or get_config()
        self.executor = executor or CommandExecutor(self.config)
        self.enable_logging = enable_logging
        self.logger = logging.getLogger(__name__)

    def commands(self, family: IPFamily) -> IptablesCommands:
        return IptablesCommands(self.executor, family)

    def set_name(self, family: IPFamily) -> str:
        return self.config.ipset_v6_name if family is IPFamily.V6 else self.config.ipset_v4_name

    def log_prefix(self, family: IPFamily) -> str:
        return self.config.log_prefix_v6 if family is IPFamily.V6 else self.config.log_prefix_v4

    def log_rule(self, family: IPFamily) -> RuleSpec:
        return log_rule_for_set(
            self.set_name(family),
            self.log_prefix(family),
            rate=self.config.log_rate,
            burst=self.config.log_burst,
            level=self.config.log_rule_level,
        )

    def drop_rule(self, family: IPFamily) -> RuleSpec:
        return drop_rule_for_set(self.set_name(family))

    def setup_chains(self, link_to_input: bool) -> Dict[IPFamily, ChainState]:
        """
        Reconcile both families (IPv4 first).

        Args:
            link_to_input: Hook the chain directly into INPUT. False when UFW
                owns the hook through its before*.rules section.

        Raises:
            CommandError: On any failed mutation (fail-fast)
        """
        self.logger.info("Setting up iptables chains")
        if not link_to_input:
            self.logger.info(f"UFW detected, {self.config.chain_name} will be hooked via UFW before-input")

        states = {}
        for family in IPFamily:
            states[family] = self.reconcile_family(family, link_to_input)

        self.logger.info("iptables chains ready")
        return states

    def reconcile_family(self, family: IPFamily, link_to_input: bool) -> ChainState:
        chain = self.config.chain_name
        ipt = self.commands(family)
        state = ChainState(family=family, chain=chain)

        if ipt.chain_exists(chain):
            self.logger.info(f"Flushing existing {ipt.cmd} chain {chain}")
            ipt.flush_chain(chain)
        else:
            self.logger.info(f"Creating {ipt.cmd} chain {chain}")
            ipt.create_chain(chain)
            state.created = True

        if link_to_input:
            hook = jump_rule(chain)
            if not ipt.rule_exists(CHAIN_INPUT, hook):
                self.logger.info(f"Hooking {chain} into {ipt.cmd} {CHAIN_INPUT}")
                ipt.insert_rule(CHAIN_INPUT, hook, 1)
            state.hook_state = HookState.HOOKED_TO_INPUT
        else:
            state.hook_state = HookState.HOOKED_VIA_UFW

        if self.enable_logging:
            log_rule = self.log_rule(family)
            if not ipt.rule_exists(chain, log_rule):
                self.logger.info(f"Adding {family.label} LOG rule")
                ipt.insert_rule(chain, log_rule, 1)
            state.log_rule = log_rule

        drop_rule = self.drop_rule(family)
        if not ipt.rule_exists(chain, drop_rule):
            self.logger.info(f"Adding {family.label} DROP rule")
            ipt.append_rule(chain, drop_rule)
        state.drop_rule = drop_rule

        return state

    def unhook_input(self, family: IPFamily) -> bool:
        """Remove a direct INPUT hook left by an earlier run; True if one was removed."""
        ipt = self.commands(family)
        hook = jump_rule(self.config.chain_name)
        if not ipt.rule_exists(CHAIN_INPUT, hook):
            return False
        ipt.delete_rule(CHAIN_INPUT, hook)
        self.logger.info(f"Removed direct {ipt.cmd} {CHAIN_INPUT} hook, UFW owns it now")
        return True
