"""
antiscan Address Validators

Checks applied to SRC= addresses pulled out of kernel LOG lines before they
become aggregate keys.

Author: antiscan Project
License: GNU GPL v3
"""

import ipaddress
from typing import Optional

from ..models import IPFamily


def validate_ip(value: str, family: Optional[IPFamily] = None) -> bool:
    """
    True if value is a single IP address, of the given family when one is given.

    Example:
        >>> validate_ip("203.0.113.5", IPFamily.V4)
        True
        >>> validate_ip("203.0.113.5", IPFamily.V6)
        False
        >>> validate_ip("203.0.113.0/24")
        False
    """
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return False
    if family is None:
        return True
    return address.version == (6 if family is IPFamily.V6 else 4)
