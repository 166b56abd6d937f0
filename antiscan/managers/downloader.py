"""
antiscan Source List Downloader

Fetches newline-delimited CIDR lists over HTTP(S) and merges them into a
single deduplicated NetworkList.

- Blank lines and lines starting with '#' are ignored
- A subnet seen in an earlier list is not added again
- Family is decided per line: ':' means IPv6
- A URL that cannot be fetched is skipped with a warning

Author: antiscan Project
License: GNU GPL v3
"""

import logging
from typing import Iterable, List, Optional

import requests

from .. import __version__
from ..config import get_config
from ..models import NetworkList


class Downloader:
    """Downloads subnet lists from URLs."""

    def __init__(self, config=None, session: Optional[requests.Session] = None):
        self.config = config or get_config()
        self.logger = logging.getLogger(__name__)
        self.timeout = self.config.download_timeout
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': f'antiscan/{__version__}'})

    def download(self, urls: Iterable[str]) -> NetworkList:
        """
        Fetch every URL and merge the subnets.

        Args:
            urls: Source list URLs, fetched in order

        Returns:
            NetworkList with first-seen ordering preserved
        """
        urls = list(urls)
        self.logger.info(f"Downloading {len(urls)} subnet list(s)")

        networks = NetworkList()
        seen = set()

        for index, url in enumerate(urls, 1):
            self.logger.info(f"[{index}/{len(urls)}] Downloading {url}")

            try:
                lines = self.fetch(url)
            except requests.RequestException as e:
                self.logger.warning(f"Failed to download {url}, skipping: {e}")
                continue

            added = self.merge_lines(lines, networks, seen)
            self.logger.info(f"Added {added} subnet(s) from {url}")

        self.logger.info(
            f"Download complete: {len(networks.ipv4_subnets)} IPv4, "
            f"{len(networks.ipv6_subnets)} IPv6, {networks.total_count} total"
        )
        return networks

    def fetch(self, url: str) -> List[str]:
        """
        Raises:
            requests.RequestException: On connection errors or a non-2xx status
        """
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.text.splitlines()

    @staticmethod
    def merge_lines(lines: Iterable[str], networks: NetworkList, seen: set) -> int:
        """Add new subnets from lines to networks; returns how many were added."""
        added = 0
        for line in lines:
            subnet = line.strip()
            if not subnet or subnet.startswith('#'):
                continue
            if subnet in seen:
                continue
            seen.add(subnet)
            networks.add(subnet)
            added += 1
        return added
