import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional
import ipaddress
import re

DEFAULT_CONFIG_PATH = "/etc/wg-manager.yaml"

INTERFACE_NAME_RE = re.compile(r'^[a-zA-Z0-9_=+.-]{1,15}$')


@dataclass
class Config:
    """Main application configuration"""
    config_dir: str = "/etc/wireguard"
    peers_dir: Optional[str] = None
    interface: str = "wg0"
    subnet: str = "10.0.0.0/24"
    server_address: str = "10.0.0.1"
    listen_port: int = 51820
    endpoint: str = "auto"
    dns: List[str] = field(default_factory=lambda: ["8.8.8.8"])
    keepalive: int = 25
    wan_interface: str = "eth0"
    save_config: bool = False
    log_file: Optional[str] = None
    limits_file: Optional[str] = None
    lock_timeout: float = 10.0
    command_timeout: float = 30.0
    reload_timeout: float = 15.0

    def __post_init__(self):
        if self.peers_dir is None:
            self.peers_dir = str(Path(self.config_dir) / "peers")
        if self.log_file is None:
            self.log_file = str(Path(self.config_dir) / "wg-manager.log")
        if self.limits_file is None:
            self.limits_file = str(Path(self.config_dir) / "limits.json")

    @property
    def network(self) -> ipaddress.IPv4Network:
        return ipaddress.IPv4Network(self.subnet)

    @property
    def server_ip(self) -> ipaddress.IPv4Address:
        return ipaddress.IPv4Address(self.server_address)

    @property
    def registry_path(self) -> Path:
        return Path(self.config_dir) / "users.db"

    @property
    def interface_config_path(self) -> Path:
        return Path(self.config_dir) / f"{self.interface}.conf"

    @property
    def lock_path(self) -> Path:
        return Path(self.config_dir) / ".wg-manager.lock"

    @property
    def server_private_key_path(self) -> Path:
        return Path(self.config_dir) / "server_private.key"

    @property
    def server_public_key_path(self) -> Path:
        return Path(self.config_dir) / "server_public.key"


def _require_positive(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{name}' must be a number")
    if value <= 0:
        raise ValueError(f"'{name}' must be positive")


def validate_config(config: Config) -> Config:
    """
    Check a Config for consistency.

    Raises:
        ValueError: Naming the first invalid field
    """
    if not INTERFACE_NAME_RE.match(str(config.interface)):
        raise ValueError(f"invalid interface name '{config.interface}'")

    port = config.listen_port
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError("'listen_port' must be an integer")
    if port < 1 or port > 65535:
        raise ValueError("'listen_port' must be between 1 and 65535")

    try:
        network = ipaddress.IPv4Network(config.subnet)
    except (ipaddress.AddressValueError, ipaddress.NetmaskValueError, ValueError) as e:
        raise ValueError(f"invalid IPv4 subnet '{config.subnet}': {e}")
    if network.num_addresses < 4:
        raise ValueError(f"subnet '{config.subnet}' is too small for a server and peers")

    try:
        server_ip = ipaddress.IPv4Address(config.server_address)
    except (ipaddress.AddressValueError, ValueError) as e:
        raise ValueError(f"invalid server address '{config.server_address}': {e}")
    if server_ip not in network:
        raise ValueError(f"server address {server_ip} is not in subnet {network}")
    if server_ip in (network.network_address, network.broadcast_address):
        raise ValueError(f"server address {server_ip} must be a host address of {network}")

    if not config.endpoint or any(c.isspace() for c in str(config.endpoint)):
        raise ValueError(f"invalid endpoint '{config.endpoint}'")

    if not isinstance(config.dns, list) or not all(isinstance(d, str) for d in config.dns):
        raise ValueError("'dns' must be a list of addresses")
    for server in config.dns:
        try:
            ipaddress.ip_address(server)
        except ValueError:
            raise ValueError(f"invalid DNS server '{server}'")

    keepalive = config.keepalive
    if isinstance(keepalive, bool) or not isinstance(keepalive, int) or keepalive < 0:
        raise ValueError("'keepalive' must be a non-negative integer")

    for name in ("lock_timeout", "command_timeout", "reload_timeout"):
        _require_positive(name, getattr(config, name))

    if not isinstance(config.save_config, bool):
        raise ValueError("'save_config' must be true or false")

    return config


def load_config(path: Optional[str] = None) -> Config:
    """
    Load and validate configuration file.

    With no path the default location is tried and built-in defaults are
    used when it does not exist.

    Args:
        path: Path to YAML configuration file

    Returns:
        Config object

    Raises:
        FileNotFoundError: If an explicitly given config file doesn't exist
        ValueError: If config is invalid
    """
    explicit = path is not None
    config_path = Path(path or DEFAULT_CONFIG_PATH)
    if not config_path.exists():
        if explicit:
            raise FileNotFoundError(f"Config file not found: {path}")
        return validate_config(Config())

    with config_path.open() as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError("Config file must contain a mapping")

    known = set(Config.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

    if isinstance(data.get('dns'), str):
        data['dns'] = [data['dns']]

    return validate_config(Config(**data))
