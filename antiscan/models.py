"""
antiscan Data Models

Core data structures used throughout the application.

This module defines:
- IPFamily: per-family command names, ipset family and UFW chain lookup
- NetworkList: downloaded subnets split by family
- RuleSpec: canonical token sequence for one iptables rule
- FilterSet / ChainState: what the reconciler created for a family
- PersistedSection: the managed block spliced into UFW before*.rules
- SafetyGateResult: UFW detection outcome used by the SSH safety gate
- WhoisCacheEntry / AggregateRecord: log aggregation records

Type safety: All models use dataclasses for automatic __init__, __repr__, etc.

Author: antiscan Project
License: GNU GPL v3
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple


UNKNOWN = "UNKNOWN"


class IPFamily(Enum):
    """
    Address family handled by one chain and one ipset set.

    Values are the short labels used in log prefixes and the aggregate CSV.
    """
    V4 = "v4"
    V6 = "v6"

    @property
    def iptables_cmd(self) -> str:
        return "ip6tables" if self is IPFamily.V6 else "iptables"

    @property
    def ipset_family(self) -> str:
        return "inet6" if self is IPFamily.V6 else "inet"

    @property
    def label(self) -> str:
        return "IPv6" if self is IPFamily.V6 else "IPv4"

    @classmethod
    def of(cls, address: str) -> "IPFamily":
        """Infer family from an address or CIDR string (':' means IPv6)."""
        return cls.V6 if ':' in address else cls.V4


class HookState(Enum):
    """How the block chain is reached from the input path."""
    UNHOOKED = "unhooked"
    HOOKED_TO_INPUT = "hooked-to-input"
    HOOKED_VIA_UFW = "hooked-via-competing-manager"


@dataclass
class NetworkList:
    """Downloaded subnets grouped by address family, in first-seen order."""
    ipv4_subnets: List[str] = field(default_factory=list)
    ipv6_subnets: List[str] = field(default_factory=list)

    def add(self, subnet: str):
        if IPFamily.of(subnet) is IPFamily.V6:
            self.ipv6_subnets.append(subnet)
        else:
            self.ipv4_subnets.append(subnet)

    def for_family(self, family: IPFamily) -> List[str]:
        return self.ipv6_subnets if family is IPFamily.V6 else self.ipv4_subnets

    @property
    def total_count(self) -> int:
        return len(self.ipv4_subnets) + len(self.ipv6_subnets)


def _restore_quote(token: str) -> str:
    """Double-quote a token for iptables-restore if it is empty or has blanks."""
    if token and not any(c.isspace() or c in '"\'' for c in token):
        return token
    return '"' + token.replace('"', '\\"') + '"'


@dataclass(frozen=True)
class RuleSpec:
    """
    One firewall rule as an ordered token sequence.

    Two rules are the same rule iff their tokens are equal, which is what
    the reconciler relies on for existence checks (iptables -C) before
    inserting, appending or deleting.
    """
    tokens: Tuple[str, ...] = ()

    def args(self) -> List[str]:
        """Tokens as an argv fragment for iptables -C/-A/-I/-D."""
        return list(self.tokens)

    def render(self) -> str:
        """Tokens as an iptables-restore line fragment (double-quoted where needed)."""
        return ' '.join(_restore_quote(token) for token in self.tokens)

    def __len__(self) -> int:
        return len(self.tokens)

    def __str__(self) -> str:
        return self.render()


@dataclass
class FilterSet:
    """An ipset hash:net set holding the blocked networks of one family."""
    name: str
    family: IPFamily
    hashsize: int
    maxelem: int
    members: List[str] = field(default_factory=list)
    created: bool = False  # False means an existing set was flushed


@dataclass
class ChainState:
    """Outcome of reconciling the block chain for one family."""
    family: IPFamily
    chain: str
    table: str = "filter"
    hook_state: HookState = HookState.UNHOOKED
    log_rule: Optional[RuleSpec] = None
    drop_rule: Optional[RuleSpec] = None
    created: bool = False


@dataclass
class PersistedSection:
    """
    Marker-delimited block of iptables-restore lines inside a UFW rules file.

    Rendered as: blank line, marker, body lines, end marker, blank line.
    The marker line identifies an existing section; a section whose body
    differs is rewritten in place.
    """
    marker: str
    body: List[str]
    end_marker: str

    def lines(self) -> List[str]:
        return ["", self.marker, *self.body, self.end_marker, ""]

    def render(self) -> str:
        return '\n'.join(self.lines()) + '\n'


@dataclass
class SafetyGateResult:
    """
    UFW detection result.

    UFW may only move from inactive to active when ssh_rule_present is True.
    ssh_rule_present is None until the gate has been evaluated.
    """
    present: bool = False
    active: bool = False
    ssh_rule_present: Optional[bool] = None

    @property
    def needs_gate(self) -> bool:
        """Enabling UFW is the dangerous transition."""
        return self.present and not self.active

    @property
    def may_enable(self) -> bool:
        return self.active or bool(self.ssh_rule_present)


@dataclass
class WhoisCacheEntry:
    """Cached reverse-WHOIS answer for one address."""
    ip: str
    asn: str
    netname: str
    resolved_at: datetime

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.resolved_at > ttl

    def to_line(self) -> str:
        return f"{self.ip}|{self.asn}|{self.netname}|{int(self.resolved_at.timestamp())}"


@dataclass
class AggregateRecord:
    """
    Accumulated blocked-connection statistics for one source address.

    Keyed by (ip_type, ip_address); rows of the aggregate CSV.
    """
    ip_type: str
    ip_address: str
    asn: str = UNKNOWN
    netname: str = UNKNOWN
    count: int = 0
    last_seen: str = ""

    @property
    def key(self) -> Tuple[str, str]:
        return (self.ip_type, self.ip_address)

    def to_row(self) -> List[str]:
        return [self.ip_type, self.ip_address, self.asn, self.netname,
                str(self.count), self.last_seen]

    @classmethod
    def from_row(cls, row: List[str]) -> "AggregateRecord":
        """
        Build a record from a CSV row.

        Raises:
            ValueError: If the row does not have 6 fields or COUNT is not numeric
        """
        if len(row) != 6:
            raise ValueError(f"expected 6 fields, got {len(row)}")
        ip_type, ip_address, asn, netname, count, last_seen = row
        if not count.isdigit():
            raise ValueError(f"non-numeric count: {count!r}")
        return cls(ip_type, ip_address, asn or UNKNOWN, netname or UNKNOWN,
                   int(count), last_seen)


@dataclass
class BatchEntry:
    """
    Per-address result of parsing one grabbed log batch.

    asn/netname are None when no resolution was attempted for this batch.
    """
    ip_type: str
    ip_address: str
    count: int
    last_seen: str
    asn: Optional[str] = None
    netname: Optional[str] = None


# Convenience alias for the parsed batch of one aggregation cycle
Batch = Dict[Tuple[str, str], BatchEntry]
