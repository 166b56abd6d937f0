"""
antiscan Log Collection Setup

Installs what turns the kernel LOG rule output into aggregate statistics:
rsyslog routing per family, the raw log files, logrotate policy and the
systemd timer that runs 'antiscan aggregate' every 30 seconds.

Author: antiscan Project
License: GNU GPL v3
"""

import logging
from pathlib import Path
from typing import Optional

from .. import templates
from ..config import get_config
from ..core.command import CommandExecutor
from ..exceptions import CommandError
from ..utils.fileio import atomic_write_text, restore_ownership


class LogSetupManager:
    """Configures rsyslog, logrotate and the aggregation timer."""

    def __init__(self, executor: Optional[CommandExecutor] = None, config=None):
        self.config = config or get_config()
        self.executor = executor or CommandExecutor(self.config)
        self.logger = logging.getLogger(__name__)

    def setup(self):
        """
        Raises:
            OSError: If a configuration file cannot be written
        """
        self.logger.info("Configuring logging")

        self.setup_rsyslog()
        self.create_log_files()
        self.setup_logrotate()
        self.setup_timer()

        try:
            self.executor.restart_service('rsyslog')
        except CommandError as e:
            self.logger.warning(f"Could not restart rsyslog, a manual restart may be needed: {e}")

        self.logger.info("Logging configuration ready")
        self.logger.info(f"  Raw logs: {self.config.ipv4_log_path}, {self.config.ipv6_log_path}")
        self.logger.info(f"  Aggregate: {self.config.aggregate_csv_path} "
                         f"(ASN/netname, updated every {self.config.aggregate_interval}s)")
        self.logger.info(f"  Rate limit: {self.config.log_rate}")
        self.logger.info(f"  Status: systemctl status {self.config.aggregate_timer_unit}")

    def setup_rsyslog(self):
        path = self.config.rsyslog_config_path
        atomic_write_text(path, templates.rsyslog_config(self.config), mode=0o644)
        self.logger.info(f"Created rsyslog config {path}")

    def create_log_files(self):
        """Create missing raw log files owned by the syslog user."""
        mode = int(self.config.log_file_mode, 8)
        for path in (self.config.ipv4_log_path, self.config.ipv6_log_path):
            log_file = Path(path)
            if log_file.exists():
                continue
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_file.touch()
            try:
                restore_ownership(log_file, self.config.log_file_owner,
                                  self.config.log_file_group, mode)
            except OSError as e:
                self.logger.warning(f"Could not set ownership of {log_file}: {e}")
            self.logger.info(f"Created log file {log_file}")

    def setup_logrotate(self):
        path = self.config.logrotate_config_path
        atomic_write_text(path, templates.logrotate_config(self.config), mode=0o644)
        self.logger.info(f"Created logrotate config {path}")

    def setup_timer(self):
        service = self.config.aggregate_service_unit
        timer = self.config.aggregate_timer_unit

        atomic_write_text(self.config.unit_path(service),
                          templates.aggregate_service(self.config), mode=0o644)
        atomic_write_text(self.config.unit_path(timer),
                          templates.aggregate_timer(self.config), mode=0o644)
        self.logger.info(f"Created systemd units {service} and {timer}")

        for action in (self.executor.daemon_reload,
                       lambda: self.executor.enable_service(timer),
                       lambda: self.executor.start_service(timer)):
            try:
                action()
            except CommandError as e:
                self.logger.warning(f"Aggregation timer setup incomplete: {e}")

        self.logger.info(f"Aggregation timer enabled (every {self.config.aggregate_interval} seconds)")
