"""
antiscan Configuration Module

Centralized configuration management using INI-style config.conf file.

Configuration precedence (highest to lowest):
1. Explicit keyword arguments (used by tests to redirect paths)
2. Environment variables (ANTISCAN_* for every field)
3. config.conf file (INI format, any section)
4. Default values

Config file search locations (first found wins):
1. Path specified in ANTISCAN_CONFIG_FILE environment variable
2. /etc/antiscan/config.conf (system-wide)
3. ~/.local/share/antiscan/config.conf (user-specific, XDG standard)
4. ./config.conf (current directory)
5. Built-in defaults (if no config file found)

Every fixed identifier the firewall code touches (chain and set names,
UFW rule files, persistence paths, unit paths, log paths) lives here so
components never carry scattered literals.

Author: antiscan Project
License: GNU GPL v3
"""

from pydantic_settings import BaseSettings
from pydantic import Field, model_validator
from typing import Any, Optional
from pathlib import Path
import logging
import os
import warnings
import configparser


def find_config_file() -> Optional[Path]:
    """
    Search for config.conf in standard locations.

    Returns:
        Path to config file if found, None otherwise
    """
    # Priority 1: Environment variable override
    env_config = os.environ.get('ANTISCAN_CONFIG_FILE')
    if env_config:
        path = Path(env_config)
        if path.exists():
            return path
        warnings.warn(f"ANTISCAN_CONFIG_FILE={env_config} does not exist")

    # Priority 2-4: Standard locations
    search_paths = [
        Path('/etc/antiscan/config.conf'),
        Path.home() / '.local' / 'share' / 'antiscan' / 'config.conf',
        Path('config.conf'),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config_file() -> dict:
    """
    Load configuration from config.conf file.

    Sections only group related keys for humans; every key is flattened
    to the field name it configures.

    Returns:
        Dictionary mapping field names to raw string values
    """
    logger = logging.getLogger(__name__)
    config_file = find_config_file()

    if not config_file:
        logger.debug("No config.conf file found, using environment variables and defaults")
        return {}

    parser = configparser.ConfigParser(
        interpolation=configparser.ExtendedInterpolation()
    )

    try:
        parser.read(config_file)
    except configparser.Error as e:
        logger.warning(f"Failed to parse {config_file}: {e}. Using defaults.")
        return {}

    logger.debug(f"Loaded configuration from: {config_file}")

    config = {}
    for section in parser.sections():
        for key, value in parser.items(section):
            # Strip inline comments (anything after ' #')
            value = value.split(' #')[0].strip()
            config[key.lower()] = os.path.expanduser(value)

    return config


class AntiscanConfig(BaseSettings):
    """
    Main configuration with validation.

    Configuration is loaded from:
    1. Keyword arguments / environment variables (highest priority)
    2. config.conf file
    3. Default values (lowest priority)
    """

    # === Chain and Set Identifiers ===
    chain_name: str = Field(
        default="SCANNERS-BLOCK",
        description="Custom iptables/ip6tables chain holding the block rules"
    )
    ipset_v4_name: str = "SCANNERS-BLOCK-V4"
    ipset_v6_name: str = "SCANNERS-BLOCK-V6"
    ipset_hashsize: int = 1024
    ipset_maxelem: int = 65536

    # === LOG Rule ===
    log_prefix_v4: str = "ANTISCAN-v4: "
    log_prefix_v6: str = "ANTISCAN-v6: "
    log_rate: str = "10/min"
    log_burst: int = 5
    log_rule_level: int = 4

    # === UFW Integration ===
    ufw_before_rules: str = "/etc/ufw/before.rules"
    ufw6_before_rules: str = "/etc/ufw/before6.rules"
    ufw_user_rules: str = "/etc/ufw/user.rules"
    ufw6_user_rules: str = "/etc/ufw/user6.rules"
    ufw_before_input_chain: str = "ufw-before-input"
    ufw6_before_input_chain: str = "ufw6-before-input"

    # === Persistence ===
    ipset_config_path: str = "/etc/ipset.conf"
    debian_rules_v4_path: str = "/etc/iptables/rules.v4"
    debian_rules_v6_path: str = "/etc/iptables/rules.v6"
    redhat_rules_v4_path: str = "/etc/sysconfig/iptables"
    redhat_rules_v6_path: str = "/etc/sysconfig/ip6tables"

    # === systemd Units ===
    systemd_dir: str = "/etc/systemd/system"
    ipset_restore_unit: str = "antiscan-ipset-restore.service"
    move_rules_unit: str = "antiscan-move-rules.service"
    aggregate_service_unit: str = "antiscan-aggregate.service"
    aggregate_timer_unit: str = "antiscan-aggregate.timer"
    antiscan_bin: str = "/usr/local/bin/antiscan"

    # === Kernel Log Collection ===
    rsyslog_config_path: str = "/etc/rsyslog.d/10-iptables-scanners.conf"
    logrotate_config_path: str = "/etc/logrotate.d/iptables-scanners"
    ipv4_log_path: str = "/var/log/iptables-scanners-ipv4.log"
    ipv6_log_path: str = "/var/log/iptables-scanners-ipv6.log"
    log_file_owner: str = "syslog"
    log_file_group: str = "adm"
    log_file_mode: str = "640"  # octal, as passed to chmod

    # === Aggregation ===
    aggregate_csv_path: str = "/var/log/iptables-scanners-aggregate.csv"
    aggregate_interval: int = 30
    whois_cache_path: str = "/var/cache/antiscan/whois-cache.txt"
    whois_server: str = "whois.ripe.net"
    whois_timeout: float = 3.0
    whois_cache_ttl_hours: int = 24

    # === Downloads and Commands ===
    download_timeout: int = 30
    command_timeout: int = 60
    install_timeout: int = 300

    # === Application Log ===
    app_log_file: str = "/var/log/antiscan.log"
    log_max_bytes: int = 10485760  # 10MB default
    log_backup_count: int = 5

    model_config = {
        'env_prefix': 'ANTISCAN_',
        'case_sensitive': False
    }

    @model_validator(mode='before')
    @classmethod
    def merge_config_file(cls, data: Any) -> Any:
        """Fill fields not given explicitly or via environment from config.conf"""
        if not isinstance(data, dict):
            return data

        logger = logging.getLogger(__name__)
        for key, value in load_config_file().items():
            if key not in cls.model_fields:
                logger.warning(f"Ignoring unknown config.conf key: {key}")
                continue
            data.setdefault(key, value)

        return data

    # === Derived Identifiers ===

    @property
    def section_marker(self) -> str:
        """Line that opens the managed section inside UFW before*.rules"""
        return f"# {self.chain_name} chain - managed by antiscan"

    @property
    def section_end_marker(self) -> str:
        """Line that closes the managed section inside UFW before*.rules"""
        return f"# END {self.chain_name}"

    def unit_path(self, unit_name: str) -> Path:
        """Absolute path of a systemd unit file we manage."""
        return Path(self.systemd_dir) / unit_name


# Global configuration instance (singleton pattern)
_config_instance = None


def get_config() -> AntiscanConfig:
    """
    Get global configuration instance with lazy initialization.

    Ensures configuration is loaded once and shared across modules.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = AntiscanConfig()
    return _config_instance
