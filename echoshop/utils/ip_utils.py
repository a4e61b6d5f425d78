"""Client address extraction for audit records, request logs and throttling"""
import ipaddress
from typing import Optional

from fastapi import Request

# Checked in order; only the first hop of a list is trusted
FORWARDING_HEADERS = ("x-forwarded-for", "x-real-ip")


def is_valid_ip(ip: str) -> bool:
    """True for a literal IPv4 or IPv6 address"""
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return False
    return True


def get_client_ip(request: Request) -> Optional[str]:
    """
    Best-effort client address.

    A forwarding header wins when its first entry parses as an address;
    anything else falls back to the socket peer, or None without one.
    """
    for header in FORWARDING_HEADERS:
        value = request.headers.get(header)
        if not value:
            continue
        candidate = value.split(",", 1)[0].strip()
        if is_valid_ip(candidate):
            return candidate

    client = request.client
    return client.host if client else None
