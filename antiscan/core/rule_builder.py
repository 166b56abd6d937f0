"""
antiscan Rule Builder

Fluent construction of canonical iptables rule token sequences.

The same RuleSpec is used for existence checks (-C), inserts (-I),
appends (-A) and deletes (-D), so it must be built identically every
time: each match module is followed by its own options, the target
comes last, and target options (log prefix/level) follow the target.

No validation is done beyond that ordering; iptables is the judge.

Author: antiscan Project
License: GNU GPL v3
"""

from enum import Enum
from typing import List

from ..models import RuleSpec


class Target(Enum):
    """Built-in iptables targets."""
    ACCEPT = "ACCEPT"
    DROP = "DROP"
    REJECT = "REJECT"
    LOG = "LOG"
    RETURN = "RETURN"


class RuleBuilder:
    """Accumulates rule tokens; build() returns an immutable RuleSpec."""

    def __init__(self):
        self._spec: List[str] = []

    def protocol(self, proto: str) -> "RuleBuilder":
        self._spec += ["-p", proto]
        return self

    def source(self, addr: str) -> "RuleBuilder":
        self._spec += ["-s", addr]
        return self

    def destination(self, addr: str) -> "RuleBuilder":
        self._spec += ["-d", addr]
        return self

    def source_port(self, port) -> "RuleBuilder":
        self._spec += ["--sport", str(port)]
        return self

    def destination_port(self, port) -> "RuleBuilder":
        self._spec += ["--dport", str(port)]
        return self

    def in_interface(self, iface: str) -> "RuleBuilder":
        self._spec += ["-i", iface]
        return self

    def out_interface(self, iface: str) -> "RuleBuilder":
        self._spec += ["-o", iface]
        return self

    def match(self, module: str, *options: str) -> "RuleBuilder":
        """Add a match module followed by its own option tokens."""
        self._spec += ["-m", module, *options]
        return self

    def match_set(self, set_name: str, flag: str = "src") -> "RuleBuilder":
        """Match membership of an ipset set (flag: src, dst, src,dst...)."""
        return self.match("set", "--match-set", set_name, flag)

    def match_limit(self, rate: str, burst=None) -> "RuleBuilder":
        options = ["--limit", rate]
        if burst is not None and str(burst) != "":
            options += ["--limit-burst", str(burst)]
        return self.match("limit", *options)

    def match_state(self, *states: str) -> "RuleBuilder":
        return self.match("state", "--state", ",".join(states))

    def match_conntrack(self, *states: str) -> "RuleBuilder":
        return self.match("conntrack", "--ctstate", ",".join(states))

    def comment(self, text: str) -> "RuleBuilder":
        return self.match("comment", "--comment", text)

    def jump(self, target: Target) -> "RuleBuilder":
        self._spec += ["-j", target.value]
        return self

    def jump_chain(self, chain_name: str) -> "RuleBuilder":
        """Jump to a custom chain."""
        self._spec += ["-j", chain_name]
        return self

    def log_prefix(self, prefix: str) -> "RuleBuilder":
        self._spec += ["--log-prefix", prefix]
        return self

    def log_level(self, level) -> "RuleBuilder":
        self._spec += ["--log-level", str(level)]
        return self

    def build(self) -> RuleSpec:
        return RuleSpec(tuple(self._spec))


# Helper constructors for the rules antiscan manages

def jump_rule(chain_name: str) -> RuleSpec:
    """Hook rule: -j <chain>"""
    return RuleBuilder().jump_chain(chain_name).build()


def drop_rule_for_set(set_name: str, flag: str = "src") -> RuleSpec:
    """Terminal rule: drop everything whose source is in the set."""
    return RuleBuilder().match_set(set_name, flag).jump(Target.DROP).build()


def log_rule_for_set(set_name: str, prefix: str, rate: str = "10/min", burst=5,
                     level=4, flag: str = "src") -> RuleSpec:
    """Rate-limited LOG rule for packets whose source is in the set."""
    return (RuleBuilder()
            .match_set(set_name, flag)
            .match_limit(rate, burst)
            .jump(Target.LOG)
            .log_prefix(prefix)
            .log_level(level)
            .build())
