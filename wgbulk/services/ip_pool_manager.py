"""
IP Address Pool Manager

Derives free tunnel addresses for new WireGuard peers.

The pool is the server's network minus the reserved gateway (the server's own
address). Allocation never tracks state of its own: the set of used
addresses always comes from the config store, so identical store contents
always give the same answer.

Security considerations:
- Gateway, network and broadcast addresses are never handed out
- Every candidate is validated before it reaches the config store
"""

import ipaddress
import logging
import re
from ipaddress import IPv4Address, IPv4Network
from typing import Dict, Iterable, Set, Union

from wgbulk.services.exceptions import InvalidAddressError, PoolExhaustedError

logger = logging.getLogger(__name__)

_DOTTED_QUAD_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")

# Host number 1 is the gateway by convention; allocation starts after it
FIRST_CLIENT_HOST = 2


class AddressPool:
    """
    IPv4 address pool for WireGuard peers

    Attributes:
        network: IPv4Network the peers live in
        gateway: Reserved server address inside the network
    """

    def __init__(
        self,
        network: Union[str, IPv4Network],
        gateway: Union[str, IPv4Address, None] = None
    ):
        """
        Initialize address pool

        Args:
            network: Network CIDR (e.g., "10.0.0.0/24")
            gateway: Reserved server address, defaults to host number 1

        Raises:
            ValueError: If network CIDR is invalid or the gateway lies outside it
        """
        try:
            self.network = IPv4Network(network, strict=False)
        except ValueError as e:
            raise ValueError(f"Invalid network CIDR: {e}")

        if self.network.num_addresses < 4:
            raise ValueError(f"Network {self.network} is too small for a peer pool")

        if gateway is None:
            self.gateway = self.network.network_address + 1
        else:
            self.gateway = IPv4Address(str(gateway))
            if self.gateway not in self.network:
                raise ValueError(
                    f"Gateway {self.gateway} is not in network {self.network}"
                )

    def __repr__(self) -> str:
        return f"AddressPool(network={self.network}, gateway={self.gateway})"

    @property
    def last_host(self) -> int:
        """Host number of the last address before broadcast"""
        return self.network.num_addresses - 2

    def host_number(self, address: IPv4Address) -> int:
        return int(address) - int(self.network.network_address)

    def candidates(self) -> Iterable[IPv4Address]:
        """Yield allocatable addresses in ascending order"""
        base = self.network.network_address
        for host in range(FIRST_CLIENT_HOST, self.last_host + 1):
            address = base + host
            if address != self.gateway:
                yield address

    def capacity(self) -> int:
        total = self.last_host - FIRST_CLIENT_HOST + 1
        if self.host_number(self.gateway) >= FIRST_CLIENT_HOST:
            total -= 1
        return total

    def contains(self, address: IPv4Address) -> bool:
        return address in self.network


def allocate(pool: AddressPool, used: Iterable[IPv4Address]) -> IPv4Address:
    """
    Pick the lowest free address in the pool

    Args:
        pool: Address pool to allocate from
        used: Addresses already referenced by the config store

    Returns:
        First candidate not in the used set

    Raises:
        PoolExhaustedError: If every candidate is taken
    """
    used_set: Set[IPv4Address] = {ip for ip in used if ip in pool.network}

    for candidate in pool.candidates():
        if candidate not in used_set:
            logger.debug(f"Allocated {candidate} from {pool.network}")
            return candidate

    raise PoolExhaustedError(
        pool_range=str(pool.network),
        allocated_count=len(used_set)
    )


def validate_address(pool: AddressPool, address: Union[str, IPv4Address]) -> IPv4Address:
    """
    Check an address against the pool

    Accepts generated and externally supplied addresses alike.

    Args:
        pool: Address pool the address must belong to
        address: Address to check

    Returns:
        The parsed address

    Raises:
        InvalidAddressError: On bad syntax, a host number outside the usable
            range, an address outside the network, or the gateway address
    """
    text = str(address).strip()
    if not _DOTTED_QUAD_RE.match(text):
        raise InvalidAddressError(f"Invalid IP format: {text}")

    try:
        ip = ipaddress.IPv4Address(text)
    except ValueError as e:
        raise InvalidAddressError(f"Invalid IP format: {text} ({e})")

    if ip not in pool.network:
        raise InvalidAddressError(f"IP must be in VPN network {pool.network}: {ip}")

    host = pool.host_number(ip)
    if not 1 <= host <= pool.last_host:
        raise InvalidAddressError(
            f"IP host number must be between 1 and {pool.last_host}: {ip}"
        )

    if ip == pool.gateway:
        raise InvalidAddressError(f"IP conflicts with server IP: {ip}")

    return ip


def pool_stats(pool: AddressPool, used: Iterable[IPv4Address]) -> Dict[str, int]:
    """
    Get pool statistics

    Returns:
        Dictionary with pool statistics
    """
    total = pool.network.num_addresses - 2
    capacity = pool.capacity()
    allocated = len({ip for ip in used if ip in pool.network and ip != pool.gateway})
    available = max(capacity - allocated, 0)

    return {
        "total_addresses": total,
        "reserved_addresses": total - capacity,
        "allocated_addresses": allocated,
        "available_addresses": available,
        "utilization_percent": int((allocated / capacity) * 100) if capacity > 0 else 0
    }
