"""
antiscan Address-Set Manager

Manages the two hash:net ipset sets holding the blocked networks.

IpsetCommands is a thin typed wrapper over the ipset CLI. AddressSetManager
uses it to create-or-flush one set per family, fill it from the downloaded
lists, save it for reboot and install the boot-time restore unit.

Author: antiscan Project
License: GNU GPL v3
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .. import templates
from ..config import get_config
from ..core.command import CommandExecutor
from ..exceptions import CommandError
from ..models import FilterSet, IPFamily, NetworkList
from ..utils.fileio import atomic_write_text

HASH_NET = "hash:net"
HASH_IP = "hash:ip"


@dataclass
class CreateSetOptions:
    """Arguments of 'ipset create'; zero values are omitted."""
    name: str
    set_type: str = HASH_NET
    family: str = ""
    hashsize: int = 0
    maxelem: int = 0
    timeout: int = 0
    comment: bool = False

    def args(self) -> List[str]:
        args = ["create", self.name, self.set_type]
        if self.family:
            args += ["family", self.family]
        if self.hashsize > 0:
            args += ["hashsize", str(self.hashsize)]
        if self.maxelem > 0:
            args += ["maxelem", str(self.maxelem)]
        if self.timeout > 0:
            args += ["timeout", str(self.timeout)]
        if self.comment:
            args.append("comment")
        return args


class IpsetCommands:
    """ipset CLI primitives. Mutations raise CommandError; probes return bool."""

    def __init__(self, executor: CommandExecutor):
        self.executor = executor
        self.logger = logging.getLogger(__name__)

    def create(self, options: CreateSetOptions):
        self.logger.debug(f"Creating ipset set {options.name} ({options.set_type} {options.family})")
        self.executor.run('ipset', *options.args())

    def create_hash_net(self, name: str, family: str, hashsize: int, maxelem: int):
        self.create(CreateSetOptions(name, HASH_NET, family, hashsize, maxelem))

    def destroy(self, name: str):
        self.executor.run('ipset', 'destroy', name)

    def flush(self, name: str):
        self.executor.run('ipset', 'flush', name)

    def add(self, set_name: str, entry: str, timeout: Optional[int] = None,
            comment: Optional[str] = None):
        args = ['add', set_name, entry]
        if timeout:
            args += ['timeout', str(timeout)]
        if comment:
            args += ['comment', comment]
        self.executor.run('ipset', *args)

    def delete(self, set_name: str, entry: str):
        self.executor.run('ipset', 'del', set_name, entry)

    def test(self, set_name: str, entry: str) -> bool:
        """
        Membership test.

        Raises:
            CommandError: When ipset fails for a reason other than non-membership
        """
        returncode, output = self.executor.run_captured_quiet('ipset', 'test', set_name, entry)
        if returncode == 0:
            return True
        if "is NOT in set" in output:
            return False
        raise CommandError(['ipset', 'test', set_name, entry], returncode, output)

    def list(self, name: Optional[str] = None) -> str:
        if name:
            return self.executor.run_captured('ipset', 'list', name)
        return self.executor.run_captured('ipset', 'list')

    def exists(self, name: str) -> bool:
        return self.executor.run_quiet('ipset', 'list', '-name', name)

    def save(self, path: str, set_name: Optional[str] = None):
        """Write 'ipset save' output to path atomically."""
        self.logger.info(f"Saving ipset configuration to {path}")
        args = ['save', set_name] if set_name else ['save']
        dump = self.executor.run('ipset', *args)
        atomic_write_text(path, dump, mode=0o600)

    def restore(self, path: str, force: bool = False):
        """Load a saved configuration; existing sets are kept unless force."""
        self.logger.info(f"Restoring ipset configuration from {path}")
        if force:
            self.executor.run('ipset', 'restore', '-file', path)
        else:
            self.executor.run('ipset', 'restore', '-exist', '-file', path)

    def rename(self, old_name: str, new_name: str):
        self.executor.run('ipset', 'rename', old_name, new_name)

    def swap(self, first: str, second: str):
        self.executor.run('ipset', 'swap', first, second)


class AddressSetManager:
    """Ensures one block set per family exists and holds the downloaded networks."""

    def __init__(self, executor: Optional[CommandExecutor] = None, config=None):
        self.config = config or get_config()
        self.executor = executor or CommandExecutor(self.config)
        self.commands = IpsetCommands(self.executor)
        self.logger = logging.getLogger(__name__)

    def set_name(self, family: IPFamily) -> str:
        return self.config.ipset_v6_name if family is IPFamily.V6 else self.config.ipset_v4_name

    def filter_set(self, family: IPFamily) -> FilterSet:
        return FilterSet(
            name=self.set_name(family),
            family=family,
            hashsize=self.config.ipset_hashsize,
            maxelem=self.config.ipset_maxelem,
        )

    def setup(self) -> Dict[IPFamily, FilterSet]:
        """
        Create each family's set, or flush it when it already exists.

        Raises:
            CommandError: If a set can be neither flushed nor created
        """
        self.logger.info("Setting up ipset sets")
        sets = {}
        for family in IPFamily:
            sets[family] = self._setup_set(self.filter_set(family))
        self.logger.info("ipset sets ready")
        return sets

    def _setup_set(self, filter_set: FilterSet) -> FilterSet:
        if self.commands.exists(filter_set.name):
            self.logger.info(f"Flushing existing set {filter_set.name}")
            self.commands.flush(filter_set.name)
            filter_set.created = False
        else:
            self.logger.info(f"Creating set {filter_set.name} ({filter_set.family.ipset_family})")
            self.commands.create_hash_net(
                filter_set.name,
                filter_set.family.ipset_family,
                filter_set.hashsize,
                filter_set.maxelem,
            )
            filter_set.created = True
        return filter_set

    def fill(self, networks: NetworkList) -> Dict[IPFamily, Tuple[int, int]]:
        """
        Add every subnet to its family's set.

        Per-entry failures are counted and logged, never raised.

        Returns:
            {family: (added, errors)}
        """
        self.logger.info(
            f"Filling ipset sets: {len(networks.ipv4_subnets)} IPv4, "
            f"{len(networks.ipv6_subnets)} IPv6"
        )

        results = {}
        for family in IPFamily:
            results[family] = self._fill_set(self.set_name(family), networks.for_family(family),
                                             family.label)

        (added_v4, errors_v4), (added_v6, errors_v6) = results[IPFamily.V4], results[IPFamily.V6]
        self.logger.info(
            f"ipset sets filled: IPv4 added={added_v4} errors={errors_v4}, "
            f"IPv6 added={added_v6} errors={errors_v6}"
        )
        return results

    def _fill_set(self, set_name: str, subnets: Iterable[str], label: str) -> Tuple[int, int]:
        # Order-preserving dedup; a second add of the same entry would fail in ipset
        unique = list(dict.fromkeys(subnets))
        total = len(unique)
        added = errors = 0

        for index, subnet in enumerate(unique, 1):
            try:
                self.commands.add(set_name, subnet)
                added += 1
            except CommandError as e:
                errors += 1
                self.logger.warning(f"Failed to add {subnet} to {set_name}: {e}")

            if index % 100 == 0:
                self.logger.debug(f"{label}: {index}/{total}")

        return added, errors

    def save(self, path: Optional[str] = None):
        path = path or self.config.ipset_config_path
        self.commands.save(path)
        self.logger.info(f"ipset configuration saved to {path}")

    def restore(self, path: Optional[str] = None):
        path = path or self.config.ipset_config_path
        self.commands.restore(path)
        self.logger.info(f"ipset configuration restored from {path}")

    def create_restore_service(self):
        """
        Install and enable the boot unit that restores the sets before UFW starts.

        Raises:
            OSError: If the unit file cannot be written
            CommandError: If the unit cannot be enabled
        """
        unit = self.config.ipset_restore_unit
        unit_path = self.config.unit_path(unit)
        atomic_write_text(unit_path, templates.ipset_restore_service(self.config), mode=0o644)
        self.logger.info(f"Created systemd unit {unit_path}")

        try:
            self.executor.daemon_reload()
        except CommandError as e:
            self.logger.warning(f"Could not reload systemd daemon: {e}")

        self.executor.enable_service(unit)
        self.logger.info("ipset sets will be restored at boot before UFW starts")
