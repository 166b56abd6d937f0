#!/usr/bin/env python3
"""
antiscan - Scanner Block-List Installer

Main entry point.

Usage:
    antiscan full -u URL [-u URL | -u URL,URL] [-l]   # Download, install and persist
    antiscan aggregate                                 # One log aggregation cycle
    antiscan aggregate --daemon [--interval N]         # Aggregate until interrupted

'full' runs the installation as an ordered table of steps. A fatal step
aborts the run with exit status 1; a recoverable step only logs a warning.

Author: antiscan Project
License: GNU GPL v3
"""

import argparse
import logging
import sys
from typing import List, Optional

from antiscan import __version__
from antiscan.config import get_config
from antiscan.core.command import CommandExecutor
from antiscan.core.pipeline import Pipeline
from antiscan.exceptions import AntiscanError, FatalStepError
from antiscan.managers.aggregator import LogAggregator
from antiscan.managers.downloader import Downloader
from antiscan.managers.installer import Installer
from antiscan.managers.iptables_manager import ChainReconciler
from antiscan.managers.ipset_manager import AddressSetManager
from antiscan.managers.log_setup import LogSetupManager
from antiscan.managers.persistence import PersistenceManager
from antiscan.managers.ufw_integrator import FirewallManagerIntegrator
from antiscan.utils.logging import setup_logging

LOG_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}


def split_urls(values: Optional[List[str]]) -> List[str]:
    """Flatten repeated and comma-separated -u values."""
    urls = []
    for value in values or []:
        urls.extend(part.strip() for part in value.split(',') if part.strip())
    return urls


class Installation:
    """
    Wires the managers for one 'full' run and exposes its step table.

    Shared state between steps (downloaded networks, UFW detection) lives
    on this object.
    """

    def __init__(self, urls: List[str], enable_logging: bool = False,
                 config=None, executor: Optional[CommandExecutor] = None,
                 downloader: Optional[Downloader] = None):
        self.config = config or get_config()
        self.executor = executor or CommandExecutor(self.config)
        self.urls = urls
        self.enable_logging = enable_logging
        self.logger = logging.getLogger(__name__)

        self.installer = Installer(self.executor, self.config)
        self.downloader = downloader or Downloader(self.config)
        self.address_sets = AddressSetManager(self.executor, self.config)
        self.reconciler = ChainReconciler(self.executor, self.config, enable_logging)
        self.integrator = FirewallManagerIntegrator(self.executor, self.config,
                                                    enable_logging, self.reconciler)
        self.persistence = PersistenceManager(self.executor, self.config, self.integrator,
                                              self.address_sets, self.installer)
        self.log_setup = LogSetupManager(self.executor, self.config)

        self.networks = None

    def check_urls(self):
        if not self.urls:
            raise AntiscanError("no subnet list URLs given, use --urls")

    def download(self):
        self.networks = self.downloader.download(self.urls)
        return self.networks

    def fill(self):
        return self.address_sets.fill(self.networks)

    def setup_chains(self):
        return self.reconciler.setup_chains(self.integrator.link_to_input())

    def pipeline(self) -> Pipeline:
        pipeline = Pipeline()
        pipeline.add("Check root privileges", self.installer.check_root_privileges)
        pipeline.add("Check source URLs", self.check_urls)
        pipeline.add("Detect UFW", self.integrator.warn_if_inactive)
        pipeline.add("UFW SSH safety gate", self.integrator.check_safety)
        pipeline.add("Install dependencies", self.installer.ensure_dependencies)
        pipeline.add("Install rule persistence helper", self.installer.ensure_netfilter_persistent)
        pipeline.add("Download subnet lists", self.download)
        pipeline.add("Set up ipset sets", self.address_sets.setup)
        pipeline.add("Fill ipset sets", self.fill)
        pipeline.add("Set up iptables chains", self.setup_chains)
        if self.enable_logging:
            pipeline.add("Configure logging", self.log_setup.setup, fatal=False)
        pipeline.add("Save ipset configuration", self.persistence.save_address_sets, fatal=False)
        pipeline.add("Create ipset restore service", self.persistence.create_restore_service, fatal=False)
        pipeline.add("Save iptables rules", self.persistence.save_rules)
        return pipeline

    def run(self):
        self.logger.info("=== Full installation ===")
        self.pipeline().run()
        self.logger.info("Full installation completed successfully")


def run_full(args) -> int:
    urls = split_urls(args.urls)
    installation = Installation(urls, enable_logging=args.enable_logging)

    try:
        installation.run()
    except FatalStepError as e:
        logger = logging.getLogger(__name__)
        logger.error("INSTALLATION ABORTED")
        logger.error(f"{e.step_name} failed: {e.cause}")
        return 1

    return 0


def run_aggregate(args) -> int:
    aggregator = LogAggregator()
    if args.daemon:
        aggregator.run_forever(args.interval)
        return 0

    try:
        aggregator.run_cycle()
    except Exception as e:
        logging.getLogger(__name__).error(f"Aggregation failed: {e}", exc_info=True)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='antiscan',
        description='antiscan - block network scanners with ipset and iptables'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--log-level', choices=sorted(LOG_LEVELS), default='info',
                        help='Log level (default: info)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    full = subparsers.add_parser('full', help='Download lists, configure ipset/iptables and persist')
    full.add_argument('--urls', '-u', action='append', required=True, metavar='URL',
                      help='Subnet list URL (repeatable, or comma-separated)')
    full.add_argument('--enable-logging', '-l', action='store_true',
                      help='Log blocked connections and aggregate statistics')
    full.set_defaults(func=run_full)

    aggregate = subparsers.add_parser('aggregate', help='Aggregate blocked-connection logs')
    aggregate.add_argument('--daemon', action='store_true', help='Keep running every --interval seconds')
    aggregate.add_argument('--interval', type=int, default=None,
                           help='Seconds between cycles in daemon mode (default: from config)')
    aggregate.set_defaults(func=run_aggregate)

    return parser


def main(argv: Optional[List[str]] = None):
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else LOG_LEVELS[args.log_level]
    setup_logging(level=level)

    sys.exit(args.func(args))


if __name__ == '__main__':
    main()
