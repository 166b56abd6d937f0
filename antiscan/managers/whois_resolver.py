"""
antiscan WHOIS Resolver

Resolves source addresses to (ASN, netname) through a single registry
(whois.ripe.net by default) with a flat-file cache.

Cache format, one entry per line:
    IP|ASN|NETNAME|EPOCH

Entries older than whois_cache_ttl_hours are treated as absent and are
dropped the next time the cache is loaded. Lines without EPOCH are aged by
the cache file's mtime. The first fresh line for an address wins. Every
lookup result is appended, including UNKNOWN ones, so an unresolvable
address is retried only after the TTL.

Lookups never raise: timeouts and errors degrade to UNKNOWN.

Author: antiscan Project
License: GNU GPL v3
"""

import logging
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from ..config import get_config
from ..core.command import CommandExecutor
from ..models import UNKNOWN, WhoisCacheEntry
from ..utils.fileio import atomic_write_text

_ORIGIN_RE = re.compile(r'^origin:', re.IGNORECASE)
_NETNAME_RE = re.compile(r'^netname:', re.IGNORECASE)

# Field separator of the cache and aggregate table, and control characters
_UNSAFE_RE = re.compile(r'[|\x00-\x1f\x7f]')


def _first_field(output: str, pattern) -> str:
    """Second whitespace token of the first line matching pattern."""
    for line in output.splitlines():
        if pattern.match(line):
            parts = line.split()
            return parts[1].strip() if len(parts) > 1 else ""
    return ""


def parse_whois(output: str) -> Tuple[str, str]:
    """
    Extract (ASN, netname) from a WHOIS response.

    ASN is normalized to 'AS<digits>'; anything non-numeric becomes UNKNOWN.
    '|' and control characters in the netname are replaced with '_'.

    Example:
        >>> parse_whois("netname: EXAMPLE-NET\\norigin: AS64500\\n")
        ('AS64500', 'EXAMPLE-NET')
    """
    asn = re.sub('AS', '', _first_field(output, _ORIGIN_RE), flags=re.IGNORECASE)
    netname = _UNSAFE_RE.sub('_', _first_field(output, _NETNAME_RE))

    asn = f"AS{asn}" if asn.isdigit() else UNKNOWN
    return asn, netname or UNKNOWN


class WhoisResolver:
    """Cached reverse-WHOIS lookups."""

    def __init__(self, executor: Optional[CommandExecutor] = None, config=None,
                 clock: Callable[[], datetime] = datetime.now):
        self.config = config or get_config()
        self.executor = executor or CommandExecutor(self.config)
        self.logger = logging.getLogger(__name__)
        self.clock = clock
        self.cache_path = Path(self.config.whois_cache_path)
        self.ttl = timedelta(hours=self.config.whois_cache_ttl_hours)
        self._cache: Optional[Dict[str, WhoisCacheEntry]] = None
        self.queries = 0

    # ========================================================================
    # CACHE
    # ========================================================================

    def _parse_line(self, line: str, file_time: datetime) -> Optional[WhoisCacheEntry]:
        fields = line.rstrip('\n').split('|')
        if len(fields) == 3:
            ip, asn, netname = fields
            resolved_at = file_time
        elif len(fields) == 4 and fields[3].isdigit():
            ip, asn, netname = fields[:3]
            resolved_at = datetime.fromtimestamp(int(fields[3]))
        else:
            return None
        if not ip:
            return None
        return WhoisCacheEntry(ip, asn or UNKNOWN, netname or UNKNOWN, resolved_at)

    def load_cache(self) -> Dict[str, WhoisCacheEntry]:
        """Read fresh entries; rewrite the file without stale or malformed lines."""
        if self._cache is not None:
            return self._cache

        self._cache = {}
        if not self.cache_path.exists():
            return self._cache

        now = self.clock()
        try:
            file_time = datetime.fromtimestamp(self.cache_path.stat().st_mtime)
            lines = self.cache_path.read_text(errors='replace').splitlines()
        except OSError as e:
            self.logger.warning(f"Cannot read WHOIS cache {self.cache_path}: {e}")
            return self._cache

        dropped = 0
        for line in lines:
            entry = self._parse_line(line, file_time)
            if entry is None or entry.is_expired(now, self.ttl):
                dropped += 1
                continue
            self._cache.setdefault(entry.ip, entry)

        if dropped:
            self.logger.debug(f"Compacting WHOIS cache, {dropped} stale line(s) dropped")
            try:
                atomic_write_text(self.cache_path,
                                  ''.join(e.to_line() + '\n' for e in self._cache.values()))
            except OSError as e:
                self.logger.warning(f"Cannot compact WHOIS cache: {e}")

        return self._cache

    def _append(self, entry: WhoisCacheEntry):
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.cache_path, 'a') as f:
                f.write(entry.to_line() + '\n')
        except OSError as e:
            self.logger.warning(f"Cannot write WHOIS cache {self.cache_path}: {e}")

    # ========================================================================
    # LOOKUP
    # ========================================================================

    def query(self, ip: str) -> Tuple[str, str]:
        """Ask the registry directly; UNKNOWN on timeout or error."""
        self.queries += 1
        try:
            returncode, output = self.executor.run_captured_quiet(
                'whois', '-h', self.config.whois_server, ip,
                timeout=self.config.whois_timeout,
            )
        except Exception as e:
            self.logger.warning(f"WHOIS lookup for {ip} failed: {e}")
            return UNKNOWN, UNKNOWN
        if returncode is None:
            self.logger.debug(f"WHOIS lookup for {ip} timed out")
            return UNKNOWN, UNKNOWN
        if not output:
            return UNKNOWN, UNKNOWN
        return parse_whois(output)

    def resolve(self, ip: str) -> Tuple[str, str]:
        """
        (ASN, netname) for ip, from cache when fresh.

        Returns:
            Tuple of ASN ('AS<n>' or UNKNOWN) and netname (or UNKNOWN)
        """
        cache = self.load_cache()
        now = self.clock()

        entry = cache.get(ip)
        if entry is not None and not entry.is_expired(now, self.ttl):
            return entry.asn, entry.netname

        asn, netname = self.query(ip)
        entry = WhoisCacheEntry(ip, asn, netname, now)
        cache[ip] = entry
        self._append(entry)
        self.logger.debug(f"WHOIS {ip}: {asn} {netname}")
        return asn, netname
