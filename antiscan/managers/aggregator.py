"""
antiscan Log Aggregator

Turns the raw kernel LOG lines routed by rsyslog into a per-attacker
statistics table:

    IP_TYPE|IP_ADDRESS|ASN|NETNAME|COUNT|LAST_SEEN

Each cycle grabs and truncates the per-family log files, counts hits per
source address, enriches new batches with cached WHOIS data, merges into
the table (counts sum, last-seen overwritten) and rewrites it atomically,
sorted by count descending.

A cycle with no new log lines does not touch the table.

Author: antiscan Project
License: GNU GPL v3
"""

import csv
import io
import logging
import re
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config import get_config
from ..core.command import CommandExecutor
from ..models import UNKNOWN, AggregateRecord, Batch, BatchEntry, IPFamily
from ..utils.fileio import atomic_write_text, grab_and_truncate
from ..utils.validators import validate_ip
from .whois_resolver import WhoisResolver

HEADER = ["IP_TYPE", "IP_ADDRESS", "ASN", "NETNAME", "COUNT", "LAST_SEEN"]
DELIMITER = "|"


class TableDialect(csv.Dialect):
    """Unquoted pipe-delimited rows; a literal '|' or '\\' in a field is backslash-escaped."""
    delimiter = DELIMITER
    quotechar = '"'
    escapechar = '\\'
    doublequote = False
    skipinitialspace = False
    lineterminator = '\n'
    quoting = csv.QUOTE_NONE

SRC_PATTERNS = {
    IPFamily.V4: re.compile(r'SRC=([0-9.]+)'),
    IPFamily.V6: re.compile(r'SRC=([0-9a-fA-F:]+)'),
}


def parse_batch(family: IPFamily, text: str, marker: str) -> Batch:
    """
    Count LOG lines per source address.

    Args:
        family: Family of the log being parsed
        text: Raw log content
        marker: Log prefix identifying our LOG rule (e.g. 'ANTISCAN-v4:')

    Returns:
        {(ip_type, ip): BatchEntry}; last_seen is the first token of the
        address's last matching line
    """
    batch: Batch = {}
    pattern = SRC_PATTERNS[family]

    for line in text.splitlines():
        if marker not in line:
            continue
        match = pattern.search(line)
        if not match or not validate_ip(match.group(1), family):
            continue

        key = (family.value, match.group(1))
        timestamp = line.split(None, 1)[0]
        entry = batch.get(key)
        if entry is None:
            batch[key] = BatchEntry(family.value, match.group(1), 1, timestamp)
        else:
            entry.count += 1
            entry.last_seen = timestamp

    return batch


class AggregateTable:
    """The durable aggregate CSV, keyed by (ip_type, ip_address)."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.records: Dict[Tuple[str, str], AggregateRecord] = {}
        self.logger = logging.getLogger(__name__)

    def load(self) -> "AggregateTable":
        self.records = {}
        if not self.path.exists():
            return self

        with open(self.path, newline='', errors='replace') as f:
            for line_no, row in enumerate(csv.reader(f, dialect=TableDialect), 1):
                if not row or row == HEADER:
                    continue
                try:
                    record = AggregateRecord.from_row(row)
                except ValueError as e:
                    self.logger.warning(f"{self.path}:{line_no}: dropping row: {e}")
                    continue

                existing = self.records.get(record.key)
                if existing is None:
                    self.records[record.key] = record
                else:
                    existing.count += record.count
                    existing.last_seen = record.last_seen

        return self

    def merge(self, batch: Batch):
        """
        Fold a batch into the table.

        Counts are summed and last-seen overwritten. ASN and netname are
        replaced only by a resolved (non-UNKNOWN) batch value.
        """
        for key, entry in batch.items():
            record = self.records.get(key)
            if record is None:
                self.records[key] = AggregateRecord(
                    entry.ip_type, entry.ip_address,
                    entry.asn or UNKNOWN, entry.netname or UNKNOWN,
                    entry.count, entry.last_seen,
                )
                continue

            record.count += entry.count
            record.last_seen = entry.last_seen
            if entry.asn and entry.asn != UNKNOWN:
                record.asn = entry.asn
            if entry.netname and entry.netname != UNKNOWN:
                record.netname = entry.netname

    def sorted_records(self) -> List[AggregateRecord]:
        return sorted(self.records.values(),
                      key=lambda r: (-r.count, r.ip_type, r.ip_address))

    def render(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, dialect=TableDialect)
        writer.writerow(HEADER)
        for record in self.sorted_records():
            writer.writerow(record.to_row())
        return buffer.getvalue()

    def save(self):
        atomic_write_text(self.path, self.render(), mode=0o640)


class LogAggregator:
    """One aggregation cycle: grab, parse, resolve, merge, save."""

    def __init__(self, executor: Optional[CommandExecutor] = None, config=None,
                 resolver: Optional[WhoisResolver] = None):
        self.config = config or get_config()
        self.executor = executor or CommandExecutor(self.config)
        self.resolver = resolver or WhoisResolver(self.executor, self.config)
        self.logger = logging.getLogger(__name__)

    def log_path(self, family: IPFamily) -> str:
        return self.config.ipv6_log_path if family is IPFamily.V6 else self.config.ipv4_log_path

    def marker(self, family: IPFamily) -> str:
        prefix = self.config.log_prefix_v6 if family is IPFamily.V6 else self.config.log_prefix_v4
        return prefix.strip()

    def grab_logs(self) -> Dict[IPFamily, str]:
        mode = int(self.config.log_file_mode, 8)
        return {
            family: grab_and_truncate(self.log_path(family), self.config.log_file_owner,
                                      self.config.log_file_group, mode)
            for family in IPFamily
        }

    def collect(self) -> Batch:
        batch: Batch = {}
        for family, text in self.grab_logs().items():
            if text:
                batch.update(parse_batch(family, text, self.marker(family)))
        return batch

    def enrich(self, batch: Batch):
        for entry in batch.values():
            entry.asn, entry.netname = self.resolver.resolve(entry.ip_address)

    def run_cycle(self) -> int:
        """
        Returns:
            Number of distinct addresses merged (0 means the table was not touched)
        """
        batch = self.collect()
        if not batch:
            self.logger.debug("No new log entries")
            return 0

        self.enrich(batch)

        table = AggregateTable(self.config.aggregate_csv_path).load()
        table.merge(batch)
        table.save()

        self.logger.info(f"Aggregated {len(batch)} address(es) into {self.config.aggregate_csv_path}")
        return len(batch)

    def run_forever(self, interval: Optional[int] = None):
        """Run cycles until interrupted; a failing cycle is logged and retried next interval."""
        interval = interval or self.config.aggregate_interval
        self.logger.info(f"Aggregating every {interval}s")
        try:
            while True:
                try:
                    self.run_cycle()
                except Exception as e:
                    self.logger.error(f"Aggregation cycle failed: {e}", exc_info=True)
                time.sleep(interval)
        except KeyboardInterrupt:
            self.logger.info("Aggregation stopped")
