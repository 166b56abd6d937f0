"""
In-memory stand-in for the external commands antiscan drives.

FakeFirewall has the CommandExecutor interface and emulates enough of
ipset, iptables/ip6tables, ufw, systemctl and whois to check idempotence
and ordering without touching the host.

Author: antiscan Project
License: GNU GPL v3
"""

import ipaddress
import shlex
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from antiscan.exceptions import CommandError

ESTABLISHED_ACCEPT = ('-m', 'conntrack', '--ctstate', 'RELATED,ESTABLISHED', '-j', 'ACCEPT')


class FakeFirewall:
    """Records every command and keeps ipset/iptables state in dicts."""

    def __init__(self, binaries=None, ufw_installed=False, ufw_active=False,
                 ufw_added="", before_rules_paths=None):
        self.binaries = set(binaries or ['iptables', 'ip6tables', 'ipset', 'whois',
                                         'systemctl', 'netfilter-persistent'])
        if ufw_installed:
            self.binaries.add('ufw')
        self.ufw_active = ufw_active
        self.ufw_added = ufw_added
        self.before_rules_paths = before_rules_paths or {}

        self.calls: List[Tuple[str, ...]] = []
        self.fail_on: List[Tuple[str, ...]] = []

        # name -> {'family': inet|inet6, 'members': [..]}
        self.sets: Dict[str, dict] = {}
        # command -> chain -> [rule tokens]
        self.tables: Dict[str, Dict[str, List[Tuple[str, ...]]]] = {
            'iptables': {'INPUT': [], 'FORWARD': [], 'OUTPUT': []},
            'ip6tables': {'INPUT': [], 'FORWARD': [], 'OUTPUT': []},
        }

        self.whois_responses: Dict[str, str] = {}
        self.whois_timeouts = set()

        self.enabled_units = set()
        self.started_units = set()

        if ufw_installed and ufw_active:
            self._load_ufw_chains()

    # ========================================================================
    # EXECUTOR INTERFACE
    # ========================================================================

    def run(self, name, *args, timeout=None, env=None):
        argv = (name, *args)
        returncode, output = self._execute(argv)
        if returncode != 0:
            raise CommandError(argv, returncode, output)
        return output

    def run_captured(self, name, *args, timeout=None):
        return self.run(name, *args, timeout=timeout)

    def run_quiet(self, name, *args, timeout=None):
        returncode, _ = self.run_captured_quiet(name, *args, timeout=timeout)
        return returncode == 0

    def run_captured_quiet(self, name, *args, timeout=None):
        argv = (name, *args)
        if name == 'whois' and argv[-1] in self.whois_timeouts:
            self.calls.append(argv)
            return None, ""
        return self._execute(argv)

    def command_exists(self, name):
        return name in self.binaries

    def is_service_active(self, service_name):
        return service_name in self.started_units

    def is_service_enabled(self, service_name):
        return service_name in self.enabled_units

    def enable_service(self, service_name):
        self.run('systemctl', 'enable', service_name)

    def start_service(self, service_name):
        self.run('systemctl', 'start', service_name)

    def restart_service(self, service_name):
        self.run('systemctl', 'restart', service_name)

    def daemon_reload(self):
        self.run('systemctl', 'daemon-reload')

    def is_package_installed(self, package_name):
        return package_name in self.binaries

    # ========================================================================
    # HELPERS FOR ASSERTIONS
    # ========================================================================

    def chain(self, cmd, chain):
        return self.tables[cmd].get(chain)

    def calls_to(self, name, *prefix):
        return [call for call in self.calls
                if call[0] == name and call[1:1 + len(prefix)] == prefix]

    def snapshot(self):
        """Comparable copy of all engine state."""
        return (
            {name: (s['family'], tuple(s['members'])) for name, s in self.sets.items()},
            {cmd: {chain: tuple(rules) for chain, rules in chains.items()}
             for cmd, chains in self.tables.items()},
        )

    # ========================================================================
    # DISPATCH
    # ========================================================================

    def _execute(self, argv):
        self.calls.append(tuple(argv))
        for prefix in self.fail_on:
            if tuple(argv[:len(prefix)]) == tuple(prefix):
                return 1, f"forced failure: {' '.join(argv)}"

        name = argv[0]
        if name not in self.binaries and name not in ('iptables-save', 'ip6tables-save',
                                                      'iptables-restore', 'ip6tables-restore',
                                                      'apt-get', 'yum', 'service'):
            return 127, f"{name}: command not found"

        if name in ('iptables', 'ip6tables'):
            return self._iptables(name, list(argv[1:]))
        if name in ('iptables-save', 'ip6tables-save'):
            return 0, self._iptables_save(name[:-len('-save')])
        if name == 'ipset':
            return self._ipset(list(argv[1:]))
        if name == 'ufw':
            return self._ufw(list(argv[1:]))
        if name == 'systemctl':
            return self._systemctl(list(argv[1:]))
        if name == 'whois':
            return 0, self.whois_responses.get(argv[-1], "")
        return 0, ""

    # ------------------------------------------------------------------ iptables

    def _iptables(self, cmd, args):
        chains = self.tables[cmd]
        if args[:1] == ['-t']:
            args = args[2:]

        if '-L' in args:
            chain = args[args.index('-L') + 1]
            if chain not in chains:
                return 1, f"iptables: No chain/target/match by that name."
            return 0, '\n'.join(' '.join(rule) for rule in chains[chain])

        op = args[0]
        if op == '-F' and len(args) == 1:
            for chain in chains:
                chains[chain] = []
            return 0, ""

        chain = args[1]
        rest = tuple(args[2:])

        if op == '-N':
            if chain in chains:
                return 1, "iptables: Chain already exists."
            chains[chain] = []
            return 0, ""

        if chain not in chains:
            return 1, "iptables: No chain/target/match by that name."

        if op == '-F':
            chains[chain] = []
        elif op == '-X':
            del chains[chain]
        elif op == '-C':
            return (0, "") if rest in chains[chain] else (1, "iptables: Bad rule.")
        elif op == '-A':
            chains[chain].append(rest)
        elif op == '-I':
            position = int(rest[0]) if rest and rest[0].isdigit() else 1
            rule = rest[1:] if rest and rest[0].isdigit() else rest
            chains[chain].insert(position - 1, rule)
        elif op == '-D':
            if len(rest) == 1 and rest[0].isdigit():
                index = int(rest[0]) - 1
                if index >= len(chains[chain]):
                    return 1, "iptables: Index of deletion too big."
                del chains[chain][index]
            elif rest in chains[chain]:
                chains[chain].remove(rest)
            else:
                return 1, "iptables: Bad rule (does a matching rule exist in that chain?)."
        else:
            return 2, f"unknown option {op}"
        return 0, ""

    def _iptables_save(self, cmd):
        lines = ["*filter"]
        for chain in self.tables[cmd]:
            lines.append(f":{chain} - [0:0]")
        for chain, rules in self.tables[cmd].items():
            for rule in rules:
                lines.append(f"-A {chain} {' '.join(rule)}")
        lines.append("COMMIT")
        return '\n'.join(lines) + '\n'

    # ------------------------------------------------------------------ ipset

    def _ipset(self, args):
        op = args[0]

        if op == 'create':
            name = args[1]
            if name in self.sets:
                return 1, f"ipset v7: Set cannot be created: set with the same name already exists"
            options = dict(zip(args[3::2], args[4::2]))
            self.sets[name] = {'type': args[2], 'family': options.get('family', 'inet'),
                               'options': options, 'members': []}
            return 0, ""

        if op == 'list':
            name = args[-1] if len(args) > 1 else None
            if name is not None and name not in self.sets:
                return 1, f"ipset v7: The set with the given name does not exist"
            return 0, f"Name: {name}\n"

        if op == 'save':
            names = [args[1]] if len(args) > 1 else list(self.sets)
            lines = []
            for name in names:
                s = self.sets[name]
                lines.append(f"create {name} {s['type']} family {s['family']}")
                lines.extend(f"add {name} {member}" for member in s['members'])
            return 0, '\n'.join(lines) + '\n'

        if op == 'restore':
            return 0, ""

        if op in ('rename', 'swap'):
            first, second = args[1], args[2]
            if first not in self.sets or (op == 'swap') != (second in self.sets):
                return 1, f"ipset v7: cannot {op} {first} {second}"
            if op == 'rename':
                self.sets[second] = self.sets.pop(first)
            else:
                self.sets[first], self.sets[second] = self.sets[second], self.sets[first]
            return 0, ""

        name = args[1]
        if name not in self.sets:
            return 1, f"ipset v7: The set with the given name does not exist"
        members = self.sets[name]['members']

        if op == 'flush':
            members.clear()
        elif op == 'destroy':
            del self.sets[name]
        elif op == 'add':
            entry = args[2]
            try:
                network = ipaddress.ip_network(entry, strict=False)
            except ValueError:
                return 1, f"ipset v7: Syntax error: '{entry}' is invalid"
            expected = 6 if self.sets[name]['family'] == 'inet6' else 4
            if network.version != expected:
                return 1, f"ipset v7: Syntax error: cannot parse {entry}: resolving to IPv{expected} address failed"
            if entry in members:
                return 1, f"ipset v7: Element cannot be added to the set: it's already added"
            members.append(entry)
        elif op == 'del':
            if args[2] not in members:
                return 1, "ipset v7: Element cannot be deleted from the set: it's not added"
            members.remove(args[2])
        elif op == 'test':
            if args[2] in members:
                return 0, f"{args[2]} is in set {name}."
            return 1, f"{args[2]} is NOT in set {name}."
        else:
            return 2, f"unknown command {op}"
        return 0, ""

    # ------------------------------------------------------------------ ufw

    def _ufw(self, args):
        if args == ['status']:
            return 0, "Status: active\n" if self.ufw_active else "Status: inactive\n"
        if args == ['show', 'added']:
            return 0, self.ufw_added
        if args == ['--force', 'disable']:
            self.ufw_active = False
            for cmd, chain in (('iptables', 'ufw-before-input'), ('ip6tables', 'ufw6-before-input')):
                self.tables[cmd].pop(chain, None)
            return 0, "Firewall stopped and disabled on system startup\n"
        if args == ['--force', 'enable']:
            self.ufw_active = True
            self._load_ufw_chains()
            return 0, "Firewall is active and enabled on system startup\n"
        return 0, ""

    def _load_ufw_chains(self):
        """
        Rebuild chains the way a UFW start would.

        Like 'iptables-restore -n', every chain declared in before*.rules is
        flushed and refilled from the file's -A lines.
        """
        for cmd, chain in (('iptables', 'ufw-before-input'), ('ip6tables', 'ufw6-before-input')):
            path = self.before_rules_paths.get(cmd)
            if not (path and Path(path).exists()):
                self.tables[cmd][chain] = [ESTABLISHED_ACCEPT]
                continue

            declared = {chain}
            self.tables[cmd][chain] = []
            for line in Path(path).read_text().splitlines():
                if line.startswith(':') and not line.startswith(':ufw'):
                    name = line[1:].split()[0]
                    declared.add(name)
                    self.tables[cmd][name] = []
                elif line.startswith('-A '):
                    tokens = shlex.split(line)
                    if tokens[1] in declared:
                        self.tables[cmd][tokens[1]].append(tuple(tokens[2:]))

    # ------------------------------------------------------------------ systemctl

    def _systemctl(self, args):
        if args[0] == 'enable':
            self.enabled_units.add(args[1])
        elif args[0] == 'start':
            self.started_units.add(args[1])
        return 0, ""


def make_config(tmpdir: str, **overrides):
    """AntiscanConfig with every path redirected under tmpdir."""
    from antiscan.config import AntiscanConfig

    base = Path(tmpdir)
    paths = dict(
        ufw_before_rules=str(base / 'ufw' / 'before.rules'),
        ufw6_before_rules=str(base / 'ufw' / 'before6.rules'),
        ufw_user_rules=str(base / 'ufw' / 'user.rules'),
        ufw6_user_rules=str(base / 'ufw' / 'user6.rules'),
        ipset_config_path=str(base / 'ipset.conf'),
        debian_rules_v4_path=str(base / 'iptables' / 'rules.v4'),
        debian_rules_v6_path=str(base / 'iptables' / 'rules.v6'),
        redhat_rules_v4_path=str(base / 'sysconfig' / 'iptables'),
        redhat_rules_v6_path=str(base / 'sysconfig' / 'ip6tables'),
        systemd_dir=str(base / 'systemd'),
        rsyslog_config_path=str(base / 'rsyslog.d' / '10-iptables-scanners.conf'),
        logrotate_config_path=str(base / 'logrotate.d' / 'iptables-scanners'),
        ipv4_log_path=str(base / 'log' / 'iptables-scanners-ipv4.log'),
        ipv6_log_path=str(base / 'log' / 'iptables-scanners-ipv6.log'),
        aggregate_csv_path=str(base / 'log' / 'iptables-scanners-aggregate.csv'),
        whois_cache_path=str(base / 'cache' / 'whois-cache.txt'),
        app_log_file=str(base / 'log' / 'antiscan.log'),
    )
    paths.update(overrides)
    return AntiscanConfig(**paths)


UFW_BEFORE_RULES = """\
*filter
:ufw-before-input - [0:0]
:ufw-before-output - [0:0]

# allow all on loopback
-A ufw-before-input -i lo -j ACCEPT

# quickly process packets for which we already have a connection
-A ufw-before-input -m conntrack --ctstate RELATED,ESTABLISHED -j ACCEPT

# don't delete the 'COMMIT' line or these rules won't be processed
COMMIT
"""

UFW6_BEFORE_RULES = UFW_BEFORE_RULES.replace('ufw-', 'ufw6-')
