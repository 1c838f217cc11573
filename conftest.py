import pytest

from config import Config
from errors import KeyGenFailure
from keys import KeyStore
from manager import PeerManager


class FakeKeyProvider:
    """Deterministic keys, distinct on every call"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    def generate_keypair(self):
        if self.fail:
            raise KeyGenFailure("Key generation failed: wg not available")
        self.calls += 1
        return (f"priv{self.calls:04d}=", f"pub{self.calls:04d}=")


class FakeController:
    """Records interface operations instead of running wg-quick"""

    def __init__(self, running: bool = True):
        self.running = running
        self.calls = []
        self.sync_error = None
        self.up_error = None
        self.is_up_error = None

    def is_up(self):
        self.calls.append('is_up')
        if self.is_up_error:
            raise self.is_up_error
        return self.running

    def sync(self):
        self.calls.append('sync')
        if self.sync_error:
            raise self.sync_error

    def up(self):
        self.calls.append('up')
        if self.up_error:
            raise self.up_error
        self.running = True

    def down(self):
        self.calls.append('down')
        self.running = False


@pytest.fixture
def config(tmp_path):
    """Config rooted in a temporary directory"""
    config_dir = tmp_path / "wireguard"
    return Config(
        config_dir=str(config_dir),
        subnet="10.0.0.0/24",
        server_address="10.0.0.1",
        endpoint="203.0.113.10",
        dns=["8.8.8.8"],
        keepalive=25,
        wan_interface="eth0",
        lock_timeout=0.5
    )


@pytest.fixture
def server_keys(config):
    KeyStore(config.config_dir).save("server", ("serverpriv=", "serverpub="))
    return ("serverpriv=", "serverpub=")


@pytest.fixture
def key_provider():
    return FakeKeyProvider()


@pytest.fixture
def controller():
    return FakeController()


@pytest.fixture
def manager(config, server_keys, key_provider, controller):
    return PeerManager(config, key_provider=key_provider, controller=controller)
