"""Detection of VPN/tunnel network interfaces"""

import socket
from typing import Iterable, List

from ..utils.logger import get_logger

logger = get_logger(__name__)

TUNNEL_INTERFACE_PREFIXES = (
    "utun",
    "tun",
    "tap",
    "ppp",
    "ipsec",
    "wg",
    "tailscale",
    "zt",
)


def list_interface_names() -> List[str]:
    try:
        return [name for _, name in socket.if_nameindex()]
    except (OSError, AttributeError) as e:
        logger.debug("Could not enumerate network interfaces", error=str(e))
        return []


def has_tunnel_interface(names: Iterable[str]) -> bool:
    return any(name.lower().startswith(TUNNEL_INTERFACE_PREFIXES) for name in names)


def is_behind_tunnel() -> bool:
    """True when a tunnel-type interface (VPN, WireGuard, PPP...) is present."""
    return has_tunnel_interface(list_interface_names())
