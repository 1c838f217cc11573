import pytest
from pathlib import Path
from config import load_config, validate_config, Config
import ipaddress
import tempfile


def _write_config(content: str) -> str:
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write(content)
        return f.name


def test_load_valid_config():
    """Test loading a valid configuration file"""
    config_path = _write_config("""
config_dir: /srv/wireguard
interface: wg1
subnet: 10.8.0.0/24
server_address: 10.8.0.1
listen_port: 51821
endpoint: vpn.example.com
dns:
  - 1.1.1.1
  - 9.9.9.9
keepalive: 0
""")
    try:
        config = load_config(config_path)
        assert config.interface == "wg1"
        assert config.network == ipaddress.IPv4Network("10.8.0.0/24")
        assert config.server_ip == ipaddress.IPv4Address("10.8.0.1")
        assert config.listen_port == 51821
        assert config.dns == ["1.1.1.1", "9.9.9.9"]
        assert config.keepalive == 0
        assert config.interface_config_path == Path("/srv/wireguard/wg1.conf")
        assert config.registry_path == Path("/srv/wireguard/users.db")
        assert config.peers_dir == "/srv/wireguard/peers"
    finally:
        Path(config_path).unlink()


def test_load_missing_config():
    """Test that missing config raises FileNotFoundError"""
    with pytest.raises(FileNotFoundError):
        load_config("/nonexistent/config.yaml")


def test_defaults():
    """Test the built-in defaults describe a usable server"""
    config = validate_config(Config())
    assert config.interface == "wg0"
    assert config.subnet == "10.0.0.0/24"
    assert config.server_address == "10.0.0.1"
    assert config.listen_port == 51820
    assert config.endpoint == "auto"
    assert config.dns == ["8.8.8.8"]
    assert config.keepalive == 25
    assert config.save_config is False
    assert config.log_file == "/etc/wireguard/wg-manager.log"


def test_dns_string_is_wrapped():
    config_path = _write_config("dns: 1.1.1.1\n")
    try:
        assert load_config(config_path).dns == ["1.1.1.1"]
    finally:
        Path(config_path).unlink()


def test_empty_file_uses_defaults():
    config_path = _write_config("")
    try:
        assert load_config(config_path).subnet == "10.0.0.0/24"
    finally:
        Path(config_path).unlink()


def test_unknown_key_rejected():
    config_path = _write_config("peers: []\n")
    try:
        with pytest.raises(ValueError, match="Unknown config keys: peers"):
            load_config(config_path)
    finally:
        Path(config_path).unlink()


@pytest.mark.parametrize("overrides,message", [
    ({"listen_port": 0}, "between 1 and 65535"),
    ({"listen_port": "51820"}, "must be an integer"),
    ({"subnet": "10.0.0.0/33"}, "invalid IPv4 subnet"),
    ({"subnet": "10.0.0.0/31"}, "too small"),
    ({"server_address": "10.1.0.1"}, "is not in subnet"),
    ({"server_address": "10.0.0.0"}, "must be a host address"),
    ({"endpoint": "vpn example"}, "invalid endpoint"),
    ({"dns": ["dns.google"]}, "invalid DNS server"),
    ({"keepalive": -1}, "non-negative integer"),
    ({"lock_timeout": 0}, "'lock_timeout' must be positive"),
    ({"save_config": "yes"}, "must be true or false"),
    ({"interface": "wg0; rm -rf /"}, "invalid interface name"),
])
def test_invalid_values(overrides, message):
    with pytest.raises(ValueError, match=message):
        validate_config(Config(**overrides))


def test_derived_paths_follow_config_dir():
    config = Config(config_dir="/tmp/wg")
    assert config.lock_path == Path("/tmp/wg/.wg-manager.lock")
    assert config.limits_file == "/tmp/wg/limits.json"
    assert config.server_private_key_path == Path("/tmp/wg/server_private.key")
    assert config.server_public_key_path == Path("/tmp/wg/server_public.key")
