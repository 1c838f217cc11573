import ipaddress
import logging
from typing import Iterable, Set

from errors import AllocationExhausted
from models import Peer

logger = logging.getLogger(__name__)


class AddressAllocator:
    """
    Picks peer addresses from a subnet.

    The in-use set is recomputed from the peers passed to allocate(), so an
    address becomes free again as soon as its peer leaves the registry.

    Attributes:
        network: Subnet addresses are drawn from
        server_address: Reserved for the server, never handed out
    """

    def __init__(self, network: ipaddress.IPv4Network, server_address: ipaddress.IPv4Address):
        if server_address not in network:
            raise ValueError(f"Server address {server_address} is not in {network}")
        self.network = network
        self.server_address = server_address

    def is_assignable(self, address: ipaddress.IPv4Address) -> bool:
        return (
            address in self.network
            and address != self.server_address
            and address not in (self.network.network_address, self.network.broadcast_address)
        )

    def used_addresses(self, peers: Iterable[Peer]) -> Set[ipaddress.IPv4Address]:
        return {peer.address for peer in peers}

    def allocate(self, peers: Iterable[Peer]) -> ipaddress.IPv4Address:
        """
        Return the smallest host address no peer holds.

        Args:
            peers: Current registry contents

        Raises:
            AllocationExhausted: If every host address is taken
        """
        used = self.used_addresses(peers)

        for host in self.network.hosts():
            if host == self.server_address or host in used:
                continue
            logger.debug(f"Allocated address {host}")
            return host

        raise AllocationExhausted(
            f"No free address left in {self.network} ({len(used)} peers)"
        )
