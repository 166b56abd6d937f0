"""
antiscan/managers/__init__.py

Firewall, persistence and log aggregation managers
"""

from .installer import Installer
from .downloader import Downloader
from .ipset_manager import AddressSetManager, IpsetCommands
from .iptables_manager import ChainReconciler, IptablesCommands
from .ufw_integrator import FirewallManagerIntegrator
from .persistence import PersistenceManager
from .log_setup import LogSetupManager
from .whois_resolver import WhoisResolver
from .aggregator import LogAggregator, AggregateTable


__all__ = [
    # Installation
    'Installer',
    'Downloader',

    # Firewall state
    'AddressSetManager',
    'IpsetCommands',
    'ChainReconciler',
    'IptablesCommands',
    'FirewallManagerIntegrator',
    'PersistenceManager',

    # Log aggregation
    'LogSetupManager',
    'WhoisResolver',
    'LogAggregator',
    'AggregateTable'
]
