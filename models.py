from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple
import ipaddress

Keypair = Tuple[str, str]


@dataclass
class Peer:
    """
    One VPN client identity.

    Attributes:
        username: Unique identifier, also the base name of its files
        address: Internal address assigned from the subnet
        data_limit_gb: Total data limit, None means unlimited
        monthly_traffic_limit_gb: Monthly traffic limit, None means unlimited
        public_key: Peer's WireGuard public key when known
        created_at: Informational creation time
    """
    username: str
    address: ipaddress.IPv4Address
    data_limit_gb: Optional[float] = None
    monthly_traffic_limit_gb: Optional[float] = None
    public_key: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def allowed_ip(self) -> str:
        return f"{self.address}/32"

    def __repr__(self):
        return f"<Peer(username={self.username}, address={self.address})>"


@dataclass
class ServerIdentity:
    """Immutable server side of every generated configuration"""
    private_key: str
    public_key: str
    address: ipaddress.IPv4Address
    network: ipaddress.IPv4Network
    listen_port: int
    endpoint: str
    dns: List[str] = field(default_factory=list)
    keepalive: int = 25
    save_config: bool = False
    post_up: Optional[str] = None
    post_down: Optional[str] = None

    @property
    def interface_address(self) -> str:
        return f"{self.address}/{self.network.prefixlen}"
