"""
=============================================================================
IP ACCESS CONTROL
=============================================================================

Allow/deny lists of IP addresses and CIDR networks.

    ┌──────────────────────────────────────────────────────────────────┐
    │  client IP                                                       │
    │     │                                                            │
    │     ├── in denied_ips?            ──yes──► 403                   │
    │     │                                                            │
    │     ├── allowed_ips empty?        ──yes──► allow                 │
    │     │                                                            │
    │     └── in allowed_ips?           ──yes──► allow                 │
    │                                   ──no───► 403                   │
    └──────────────────────────────────────────────────────────────────┘

The deny list is consulted first, so an address present in both lists is
blocked: blacklisting stays safe even when a broad allow rule such as
10.0.0.0/8 overlaps it.

=============================================================================
"""

import ipaddress
from typing import Iterable, List, Union

from .base import Continue, Stage, StageOutcome, Terminate
from ..http.request import HTTPRequest
from ..http.status_codes import HTTPStatus


Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_networks(entries: Iterable[str]) -> List[Network]:
    """
    Parse "203.0.113.9" or "10.0.0.0/8" style entries.

    Raises:
        ValueError: An entry is neither an address nor a network.
    """
    return [ipaddress.ip_network(entry.strip(), strict=False) for entry in entries]


class AccessControl(Stage):
    """Deny-first IP allow/deny evaluation."""

    def __init__(
        self,
        allowed_ips: Iterable[str] = (),
        denied_ips: Iterable[str] = (),
        trust_proxy: bool = False,
    ):
        self.allowed = parse_networks(allowed_ips)
        self.denied = parse_networks(denied_ips)
        self.trust_proxy = trust_proxy

    def is_allowed(self, client_ip: str) -> bool:
        """Evaluate the lists for one address."""
        try:
            address = ipaddress.ip_address(client_ip)
        except ValueError:
            # an unparseable peer can only match an empty allow list
            return not self.allowed

        if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
            address = address.ipv4_mapped

        if any(address in network for network in self.denied):
            return False
        if not self.allowed:
            return True
        return any(address in network for network in self.allowed)

    def check(self, request: HTTPRequest) -> StageOutcome:
        client_ip = request.remote_ip(self.trust_proxy)
        if self.is_allowed(client_ip):
            return Continue()
        return Terminate(HTTPStatus.FORBIDDEN, reason=f"IP {client_ip or '?'} not permitted")
