"""
Durable peer registry.

One record per line: ``username,host,dataLimitGB,monthlyTrafficLimitGB`` where
``host`` is the address offset inside the subnet and an empty limit means
unlimited. The registry is the only source of truth for which peers exist;
the interface config and client profiles are derived from it.
"""
from pathlib import Path
from typing import Iterator, List, Optional
import ipaddress
import logging
import math

from allocator import AddressAllocator
from errors import (
    DuplicateAddress,
    DuplicateUser,
    NotFound,
    RegistryCorrupt,
    StorageError,
    ValidationError,
)
from files import atomic_write_text
from models import Peer

logger = logging.getLogger(__name__)

FIELD_COUNT = 4


def parse_limit(text: Optional[str]) -> Optional[float]:
    """
    Parse a GB limit as typed by an operator.

    Returns:
        The limit, or None for blank input (unlimited)

    Raises:
        ValidationError: If the value is not a non-negative number
    """
    if text is None:
        return None
    text = str(text).strip()
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        raise ValidationError(f"Invalid limit '{text}': must be a number of GB")
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise ValidationError(f"Invalid limit '{text}': must be a non-negative number of GB")
    return value


def format_limit(value: Optional[float]) -> str:
    if value is None:
        return ""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


class PeerListing:
    """Restartable view over the registry; each iteration reads the file afresh"""

    def __init__(self, registry: "PeerRegistry"):
        self._registry = registry

    def __iter__(self) -> Iterator[Peer]:
        return self._registry._iter_peers()


class PeerRegistry:
    """
    Registry stored as a line-oriented text file.

    Args:
        path: Registry file
        network: Subnet peer addresses belong to
        server_address: Address reserved for the server
    """

    def __init__(self, path, network: ipaddress.IPv4Network, server_address: ipaddress.IPv4Address):
        self.path = Path(path)
        self.network = network
        self.server_address = server_address
        self.allocator = AddressAllocator(network, server_address)

    # ---------- Reading ----------

    def list(self) -> PeerListing:
        """All peers in creation order"""
        return PeerListing(self)

    def get(self, username: str) -> Peer:
        for peer in self._iter_peers():
            if peer.username == username:
                return peer
        raise NotFound(username)

    def exists(self, username: str) -> bool:
        try:
            self.get(username)
            return True
        except NotFound:
            return False

    def _iter_peers(self) -> Iterator[Peer]:
        seen_names = set()
        seen_addresses = set()
        for lineno, line in enumerate(self._read_lines(), start=1):
            if not line.strip():
                continue
            peer = self._parse_line(line, lineno)
            if peer.username in seen_names:
                raise RegistryCorrupt(f"{self.path}:{lineno}: duplicate user '{peer.username}'")
            if peer.address in seen_addresses:
                raise RegistryCorrupt(f"{self.path}:{lineno}: duplicate address {peer.address}")
            seen_names.add(peer.username)
            seen_addresses.add(peer.address)
            yield peer

    def _parse_line(self, line: str, lineno: int) -> Peer:
        fields = line.rstrip('\r\n').split(',')
        if len(fields) != FIELD_COUNT:
            raise RegistryCorrupt(
                f"{self.path}:{lineno}: expected {FIELD_COUNT} fields, got {len(fields)}"
            )
        username, host, data_limit, traffic_limit = (f.strip() for f in fields)
        if not username:
            raise RegistryCorrupt(f"{self.path}:{lineno}: empty username")

        try:
            address = self.network.network_address + int(host)
        except (ValueError, ipaddress.AddressValueError):
            raise RegistryCorrupt(f"{self.path}:{lineno}: invalid host part '{host}'")
        if not self.allocator.is_assignable(address):
            raise RegistryCorrupt(f"{self.path}:{lineno}: address {address} is outside {self.network}")

        try:
            return Peer(
                username=username,
                address=address,
                data_limit_gb=parse_limit(data_limit),
                monthly_traffic_limit_gb=parse_limit(traffic_limit)
            )
        except ValidationError as e:
            raise RegistryCorrupt(f"{self.path}:{lineno}: {e}")

    # ---------- Writing ----------

    def format_record(self, peer: Peer) -> str:
        host = int(peer.address) - int(self.network.network_address)
        return ",".join([
            peer.username,
            str(host),
            format_limit(peer.data_limit_gb),
            format_limit(peer.monthly_traffic_limit_gb),
        ])

    def _read_lines(self) -> List[str]:
        """
        Raises:
            StorageError: If the file exists but cannot be read
        """
        try:
            return self.path.read_text(encoding='utf-8').splitlines()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(self.path, e) from e

    def _write(self, content: str) -> None:
        try:
            atomic_write_text(self.path, content)
        except OSError as e:
            raise StorageError(self.path, e) from e

    def add(self, peer: Peer) -> None:
        """
        Persist a new peer. The record is on disk when this returns.

        Raises:
            DuplicateUser: If the username exists
            DuplicateAddress: If another peer holds the address
            StorageError: If the file cannot be read or written
        """
        if not self.allocator.is_assignable(peer.address):
            raise ValueError(f"Address {peer.address} cannot be assigned in {self.network}")

        for existing in self._iter_peers():
            if existing.username == peer.username:
                raise DuplicateUser(peer.username)
            if existing.address == peer.address:
                raise DuplicateAddress(
                    f"Address {peer.address} is already held by '{existing.username}'"
                )

        lines = [line for line in self._read_lines() if line.strip()]
        lines.append(self.format_record(peer))
        self._write("\n".join(lines) + "\n")
        logger.debug(f"Registry: added {peer.username} ({peer.address})")

    def remove(self, username: str) -> Peer:
        """
        Delete a peer record.

        Returns:
            The removed peer

        Raises:
            NotFound: If the username is absent
            StorageError: If the file cannot be read or written
        """
        peer = self.get(username)

        kept = [
            line for line in self._read_lines()
            if line.strip() and line.split(',', 1)[0].strip() != username
        ]
        self._write("".join(f"{line}\n" for line in kept))
        logger.debug(f"Registry: removed {username}")
        return peer
