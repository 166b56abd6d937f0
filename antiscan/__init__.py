"""
antiscan - Scanner Subnet Blocking for iptables/ipset

Downloads scanner subnet lists, loads them into ipset sets and wires an
iptables/ip6tables chain that drops their traffic. Coexists with UFW,
persists across reboots and aggregates blocked-connection logs.

Author: antiscan Project
License: GNU GPL v3
"""

__version__ = "1.0.0"
